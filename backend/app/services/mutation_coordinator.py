"""
Mutation/notification coordinator.

Every create/update/delete of a transaction, savings goal or budget setting
goes through here: ownership check, validation, commit, and only then an
event for the user's connected clients. A failure before the commit rolls
the session back and emits nothing. Derived figures are never recomputed
here; clients refetch them after the event.
"""
import logging
from datetime import date
from typing import Callable, Optional, Type

from fastapi import Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.errors import EntityNotFound, OwnershipViolation, ValidationFailed
from app.models import BudgetSetting, Category, GoalStatus, SavingsGoal, Transaction
from app.schemas import (
    BudgetSettingsResponse,
    BudgetSettingsUpsert,
    SavingsGoalCreate,
    SavingsGoalReplace,
    SavingsGoalResponse,
    TransactionCreate,
    TransactionResponse,
    TransactionUpdate,
)
from app.services import savings_policy
from app.services.event_publisher import EventPublisher, get_event_publisher

logger = logging.getLogger(__name__)


def serialize_transaction(transaction: Transaction) -> dict:
    return TransactionResponse.model_validate(transaction).model_dump(mode="json", by_alias=True)


def serialize_goal(goal: SavingsGoal) -> dict:
    return SavingsGoalResponse.model_validate(goal).model_dump(mode="json", by_alias=True)


def serialize_settings(settings: BudgetSetting) -> dict:
    return BudgetSettingsResponse.model_validate(settings).model_dump(mode="json", by_alias=True)


class MutationCoordinator:
    """Persists mutations for one acting user and announces them."""

    def __init__(self, db: Session, publisher: EventPublisher, user_id: int):
        self.db = db
        self.publisher = publisher
        self.user_id = user_id

    def _get_owned(self, model: Type, entity_id: int, label: str, query=None):
        """
        Load an entity and verify the acting user owns it.

        Raises:
            EntityNotFound: no such entity
            OwnershipViolation: the entity belongs to another user
        """
        query = query if query is not None else self.db.query(model)
        entity = query.filter(model.id == entity_id).first()
        if not entity:
            raise EntityNotFound(f"{label} not found")
        if entity.user_id != self.user_id:
            logger.warning(f"[COORDINATOR] User {self.user_id} denied access to {label.lower()} {entity_id}")
            raise OwnershipViolation(f"Not authorized to modify this {label.lower()}")
        return entity

    def _get_owned_goal(self, goal_id: int) -> SavingsGoal:
        # Archived goals are invisible to every read, including ownership lookups
        query = self.db.query(SavingsGoal).filter(SavingsGoal.status == GoalStatus.ACTIVE.value)
        return self._get_owned(SavingsGoal, goal_id, "Savings goal", query=query)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.db.query(Category).filter(
            Category.id == category_id,
            Category.user_id == self.user_id,
        ).first()
        if not category:
            raise ValidationFailed("categoryId: category not found")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _commit_and_publish(self, publish: Callable[[], None], entity=None) -> None:
        """
        Commit, refresh and publish as one step under the user's ordering
        lock. Two writers on the same entity publish in commit order.
        """
        with self.publisher.ordering_lock(self.user_id):
            self._commit()
            if entity is not None:
                self.db.refresh(entity)
            publish()

    # Transactions

    def create_transaction(self, data: TransactionCreate) -> Transaction:
        self._check_category(data.category_id)
        transaction = Transaction(user_id=self.user_id, **data.model_dump())
        self.db.add(transaction)
        self._commit_and_publish(
            lambda: self.publisher.publish_transaction_added(self.user_id, serialize_transaction(transaction)),
            entity=transaction,
        )

        logger.info(f"[COORDINATOR] Transaction {transaction.id} created for user {self.user_id}")
        return transaction

    def update_transaction(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        transaction = self._get_owned(Transaction, transaction_id, "Transaction")
        update_data = data.model_dump(exclude_unset=True)
        if "category_id" in update_data:
            self._check_category(update_data["category_id"])

        for field, value in update_data.items():
            setattr(transaction, field, value)
        self._commit_and_publish(
            lambda: self.publisher.publish_transaction_updated(self.user_id, serialize_transaction(transaction)),
            entity=transaction,
        )
        return transaction

    def delete_transaction(self, transaction_id: int) -> None:
        transaction = self._get_owned(Transaction, transaction_id, "Transaction")
        self.db.delete(transaction)
        self._commit_and_publish(
            lambda: self.publisher.publish_transaction_deleted(self.user_id, transaction_id),
        )

        logger.info(f"[COORDINATOR] Transaction {transaction_id} deleted for user {self.user_id}")

    # Budget settings

    def _save_settings(self, values: dict) -> BudgetSetting:
        settings = self.db.query(BudgetSetting).filter(BudgetSetting.user_id == self.user_id).first()
        if settings is not None:
            for field, value in values.items():
                setattr(settings, field, value)
            self._commit()
            return settings

        settings = BudgetSetting(user_id=self.user_id, **values)
        self.db.add(settings)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent first write won; update that row instead
            self.db.rollback()
            settings = self.db.query(BudgetSetting).filter(BudgetSetting.user_id == self.user_id).one()
            for field, value in values.items():
                setattr(settings, field, value)
            self._commit()
        return settings

    def upsert_budget_settings(self, data: BudgetSettingsUpsert) -> BudgetSetting:
        """Create the user's settings on first write, update them in place afterwards."""
        values = data.model_dump()
        with self.publisher.ordering_lock(self.user_id):
            settings = self._save_settings(values)
            self.db.refresh(settings)
            self.publisher.publish_budget_settings_updated(self.user_id, serialize_settings(settings))
        return settings

    # Savings goals

    def create_savings_goal(self, data: SavingsGoalCreate, today: Optional[date] = None) -> SavingsGoal:
        """
        Create a goal. A future-dated goal immediately receives one day's
        worth of savings as its first contribution.
        """
        today = today or date.today()
        goal = SavingsGoal(user_id=self.user_id, status=GoalStatus.ACTIVE.value, **data.model_dump())

        jump_start = savings_policy.initial_contribution(goal, today)
        if jump_start > 0:
            savings_policy.add_funds(goal, jump_start)
            logger.info(f"[COORDINATOR] Added {jump_start:.2f} to new goal '{goal.name}' for the current day")

        self.db.add(goal)
        self._commit_and_publish(
            lambda: self.publisher.publish_savings_goal_added(self.user_id, serialize_goal(goal)),
            entity=goal,
        )
        return goal

    def add_funds_to_goal(self, goal_id: int, amount) -> SavingsGoal:
        goal = self._get_owned_goal(goal_id)
        savings_policy.add_funds(goal, amount)
        self._commit_and_publish(
            lambda: self.publisher.publish_savings_goal_updated(self.user_id, serialize_goal(goal)),
            entity=goal,
        )
        return goal

    def replace_savings_goal(self, goal_id: int, data: SavingsGoalReplace) -> SavingsGoal:
        goal = self._get_owned_goal(goal_id)
        fields = data.model_dump(include={"current_amount", "target_date"}, exclude_unset=True)
        savings_policy.replace_goal(
            goal,
            name=data.name,
            target_amount=data.target_amount,
            **fields,
        )
        self._commit_and_publish(
            lambda: self.publisher.publish_savings_goal_updated(self.user_id, serialize_goal(goal)),
            entity=goal,
        )
        return goal

    def archive_savings_goal(self, goal_id: int) -> None:
        """Soft delete. The saved balance stays on the row and is not returned to the budget."""
        goal = self._get_owned_goal(goal_id)
        goal.status = GoalStatus.ARCHIVED.value
        self._commit_and_publish(
            lambda: self.publisher.publish_savings_goal_deleted(self.user_id, goal_id),
        )

        logger.info(f"[COORDINATOR] Savings goal {goal_id} archived for user {self.user_id}")


def get_coordinator(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> MutationCoordinator:
    """FastAPI dependency binding the coordinator to the acting user."""
    return MutationCoordinator(db, publisher, get_user_id())

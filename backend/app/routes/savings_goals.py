from fastapi import APIRouter, Body, Depends
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Type

from app.database import get_db
from app.models import GoalStatus, SavingsGoal
from app.db_helpers import get_user_id
from app.schemas import (
    MessageResponse,
    SavingsGoalContribution,
    SavingsGoalCreate,
    SavingsGoalReplace,
    SavingsGoalResponse,
)
from app.services.mutation_coordinator import MutationCoordinator, get_coordinator

router = APIRouter()


def _parse_body(model: Type[BaseModel], payload: Dict[str, Any]) -> BaseModel:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False)) from e


@router.get("", response_model=List[SavingsGoalResponse])
def list_savings_goals(db: Session = Depends(get_db)):
    """List the current user's active savings goals. Archived goals are never returned."""
    user_id = get_user_id()
    return (
        db.query(SavingsGoal)
        .filter(
            SavingsGoal.user_id == user_id,
            SavingsGoal.status == GoalStatus.ACTIVE.value,
        )
        .order_by(SavingsGoal.created_at, SavingsGoal.id)
        .all()
    )


@router.post("", response_model=SavingsGoalResponse, status_code=201)
def create_savings_goal(
    goal: SavingsGoalCreate,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """
    Create a savings goal.

    A goal with a future target date immediately receives today's share of
    the remaining amount as its first contribution.
    """
    return coordinator.create_savings_goal(goal)


@router.patch("/{goal_id}", response_model=SavingsGoalResponse)
def update_savings_goal(
    goal_id: int,
    payload: Dict[str, Any] = Body(...),
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """
    Update a savings goal.

    - A body carrying only `amount` adds funds to the goal.
    - Any other body is a full edit and requires `name` and `targetAmount`;
      omitted `currentAmount`/`targetDate` keep their stored values.
    """
    if set(payload) == {"amount"}:
        contribution = _parse_body(SavingsGoalContribution, payload)
        return coordinator.add_funds_to_goal(goal_id, contribution.amount)

    replacement = _parse_body(SavingsGoalReplace, payload)
    return coordinator.replace_savings_goal(goal_id, replacement)


@router.post("/{goal_id}/contributions", response_model=SavingsGoalResponse)
def add_funds(
    goal_id: int,
    contribution: SavingsGoalContribution,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """Add funds to a savings goal."""
    return coordinator.add_funds_to_goal(goal_id, contribution.amount)


@router.delete("/{goal_id}", response_model=MessageResponse)
def delete_savings_goal(
    goal_id: int,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """
    Archive a savings goal. The amount saved so far is not returned to the
    spendable budget.
    """
    coordinator.archive_savings_goal(goal_id)
    return {"message": "Savings goal deleted"}

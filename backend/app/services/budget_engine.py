"""
Daily budget derivation engine.

Turns a user's budget settings, transactions and active savings goals into a
DailyBudgetReport. calculate_daily_budget is a pure function over a snapshot;
BudgetEngineService loads that snapshot from the store on every call (no
server-side caching, so a mutation is visible to the next read).

The daily allowance is flat across the budget period: it divides the
discretionary income by the full period length and is not rebalanced by past
spending. Only today's savings slice is subtracted from the remaining
monthly balance.
"""
import calendar
import logging
from datetime import date, timedelta
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from app.errors import BudgetSettingsNotFound
from app.models import BudgetSetting, GoalStatus, SavingsGoal, Transaction, TransactionType
from app.schemas import DailyBudgetReport
from app.services.amounts import to_date, to_float
from app.services.savings_policy import AVERAGE_DAYS_PER_MONTH, monthly_savings_target

logger = logging.getLogger(__name__)


def resolve_period(settings, today: date) -> Tuple[date, date]:
    """Custom period when both dates are set, otherwise the calendar month containing today."""
    start = to_date(settings.budget_start_date)
    end = to_date(settings.budget_end_date)
    if start and end:
        return start, end

    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def _sum_expenses(transactions: Iterable) -> float:
    return sum(
        to_float(t.amount)
        for t in transactions
        if t.transaction_type == TransactionType.EXPENSE.value
    )


def calculate_daily_budget(
    settings,
    period_transactions: Iterable,
    todays_transactions: Iterable,
    goals: Iterable,
    today: date,
) -> DailyBudgetReport:
    """
    Derive the daily budget report.

    Args:
        settings: Budget settings (monthly_income, monthly_fixed_expenses, optional period dates)
        period_transactions: Transactions dated within the budget period
        todays_transactions: Transactions dated today
        goals: Active savings goals
        today: The current date

    Returns:
        DailyBudgetReport with unrounded figures
    """
    start, end = resolve_period(settings, today)
    period_length_days = (end - start).days + 1

    days_elapsed = max(0, min((today - start).days, period_length_days))
    remaining_days = max(1, (end - today).days + 1)

    monthly_income = to_float(settings.monthly_income)
    monthly_fixed_expenses = to_float(settings.monthly_fixed_expenses)
    discretionary_income = monthly_income - monthly_fixed_expenses

    spent_so_far = _sum_expenses(
        t for t in period_transactions
        if start <= to_date(t.date) <= today
    )
    todays_expenses = _sum_expenses(
        t for t in todays_transactions
        if to_date(t.date) == today
    )

    monthly_savings = monthly_savings_target(goals, discretionary_income, today)
    daily_savings_target = monthly_savings / AVERAGE_DAYS_PER_MONTH

    base_daily_budget = discretionary_income / period_length_days
    daily_spending_budget = base_daily_budget - daily_savings_target
    remaining_today = daily_spending_budget - todays_expenses
    remaining_this_month = discretionary_income - spent_so_far - daily_savings_target

    logger.debug(
        f"[BUDGET] period={start}..{end} ({period_length_days}d), "
        f"discretionary={discretionary_income:.2f}, spent={spent_so_far:.2f}, "
        f"savings={monthly_savings:.2f}/month={daily_savings_target:.2f}/day, "
        f"daily={daily_spending_budget:.2f}, remaining_today={remaining_today:.2f}"
    )

    return DailyBudgetReport(
        daily_budget=daily_spending_budget,
        remaining_today=remaining_today,
        daily_budget_remaining=remaining_today,
        full_daily_budget=base_daily_budget,
        daily_savings_target=daily_savings_target,
        monthly_savings_target=monthly_savings,
        todays_expenses=todays_expenses,
        spent_this_month=spent_so_far,
        total_budget=discretionary_income,
        remaining_this_month=remaining_this_month,
        days_left=remaining_days,
        days_elapsed=days_elapsed,
        period_start=start,
        period_end=end,
    )


class BudgetEngineService:
    """Loads a user's snapshot from the store and runs the derivation."""

    def __init__(self, db: Session):
        self.db = db

    def get_settings(self, user_id: int) -> BudgetSetting:
        settings = self.db.query(BudgetSetting).filter(BudgetSetting.user_id == user_id).first()
        if not settings:
            raise BudgetSettingsNotFound()
        return settings

    def get_transactions_in_range(self, user_id: int, start: date, end: date) -> list:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.date >= start,
                Transaction.date <= end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .all()
        )

    def get_todays_transactions(self, user_id: int, today: date) -> list:
        # Same-day range: from today's midnight up to, not including, the next midnight
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.date >= today,
                Transaction.date < today + timedelta(days=1),
            )
            .all()
        )

    def get_active_goals(self, user_id: int) -> list:
        return (
            self.db.query(SavingsGoal)
            .filter(
                SavingsGoal.user_id == user_id,
                SavingsGoal.status == GoalStatus.ACTIVE.value,
            )
            .all()
        )

    def get_daily_budget(self, user_id: int, today: Optional[date] = None) -> DailyBudgetReport:
        """
        Compute the daily budget report for a user.

        Raises:
            BudgetSettingsNotFound: if the user has no budget settings
        """
        today = today or date.today()
        settings = self.get_settings(user_id)
        start, end = resolve_period(settings, today)

        return calculate_daily_budget(
            settings=settings,
            period_transactions=self.get_transactions_in_range(user_id, start, end),
            todays_transactions=self.get_todays_transactions(user_id, today),
            goals=self.get_active_goals(user_id),
            today=today,
        )

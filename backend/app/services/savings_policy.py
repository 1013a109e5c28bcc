"""
Savings allocation policy.

Turns the active savings goals of a user into a single monthly savings target,
computes the jump-start contribution applied when a dated goal is created, and
implements the two goal edit contracts:

- add_funds: accumulate an amount into current_amount
- replace_goal: in-place full edit that keeps the goal's identity

Goals are duck-typed (target_amount, current_amount, target_date) so the
policy works on ORM rows and plain objects alike.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from app.services.amounts import to_date, to_float, to_money

logger = logging.getLogger(__name__)

AVERAGE_DAYS_PER_MONTH = 30.44
MIN_MONTHS_TO_SAVE = 0.5
UNDATED_GOAL_SAVING_RATE = 0.05

_UNSET: Any = object()


def amount_needed(goal) -> float:
    return to_float(goal.target_amount) - to_float(goal.current_amount)


def days_until_target(goal, today: date) -> Optional[int]:
    """Whole days from today to the goal's target date, at least 1. None when the goal is undated."""
    target_date = to_date(goal.target_date)
    if target_date is None:
        return None
    return max(1, (target_date - today).days)


def is_past_due(goal, today: date) -> bool:
    target_date = to_date(goal.target_date)
    return target_date is not None and target_date <= today


def goal_monthly_contribution(goal, discretionary_income: float, today: date) -> float:
    """
    Monthly amount one goal claims from the budget.

    Dated goals spread the missing amount over the months left (never less
    than half a month). Goals due today or earlier claim nothing. Undated
    goals claim up to 5% of discretionary income.
    """
    needed = amount_needed(goal)
    if needed <= 0:
        return 0.0

    if goal.target_date is not None and to_date(goal.target_date) is not None:
        if is_past_due(goal, today):
            return 0.0
        months_to_save = max(MIN_MONTHS_TO_SAVE, days_until_target(goal, today) / AVERAGE_DAYS_PER_MONTH)
        return needed / months_to_save

    return min(needed, discretionary_income * UNDATED_GOAL_SAVING_RATE)


def monthly_savings_target(goals: Iterable, discretionary_income: float, today: date) -> float:
    """Sum of the monthly contributions of all goals. No global cap is applied."""
    total = 0.0
    for goal in goals:
        contribution = goal_monthly_contribution(goal, discretionary_income, today)
        if contribution:
            logger.debug(
                f"[SAVINGS] Goal {getattr(goal, 'name', '?')}: "
                f"needed={amount_needed(goal):.2f}, monthly={contribution:.2f}"
            )
        total += contribution
    return total


def initial_contribution(goal, today: date) -> float:
    """
    Jump-start amount applied when a goal is created: one day's worth of
    savings for a future-dated goal, zero otherwise.
    """
    if goal.target_date is None or is_past_due(goal, today):
        return 0.0
    needed = amount_needed(goal)
    if needed <= 0:
        return 0.0
    return needed / days_until_target(goal, today)


def add_funds(goal, amount) -> Decimal:
    """Accumulate a contribution into the goal and return the new current amount."""
    current = goal.current_amount if goal.current_amount is not None else Decimal("0")
    goal.current_amount = to_money(Decimal(str(current)) + to_money(amount))
    return goal.current_amount


def replace_goal(
    goal,
    name: str,
    target_amount,
    current_amount=_UNSET,
    target_date=_UNSET,
):
    """
    Full edit of a goal in place. Omitted current_amount/target_date keep
    their stored values; an explicit None target_date clears the deadline.
    """
    goal.name = name
    goal.target_amount = to_money(target_amount)
    if current_amount is not _UNSET and current_amount is not None:
        goal.current_amount = to_money(current_amount)
    if target_date is not _UNSET:
        goal.target_date = to_date(target_date)
    return goal

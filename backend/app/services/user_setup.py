"""
Initial data for newly registered users: default categories and budget settings.
"""
import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from app.models import BudgetSetting, Category, User

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_INCOME = Decimal("3000")
DEFAULT_MONTHLY_FIXED_EXPENSES = Decimal("1500")

DEFAULT_CATEGORIES = [
    # Expense categories
    {"name": "Groceries", "color": "#26C7C3", "icon": "shopping-basket", "category_type": "expense"},
    {"name": "Transport", "color": "#FF7A5A", "icon": "bus", "category_type": "expense"},
    {"name": "Entertainment", "color": "#8E64F0", "icon": "music", "category_type": "expense"},
    {"name": "Utilities", "color": "#4CAF50", "icon": "bolt", "category_type": "expense"},
    {"name": "Other", "color": "#9E9E9E", "icon": "ellipsis-h", "category_type": "expense"},
    # Income categories
    {"name": "Salary", "color": "#4285F4", "icon": "briefcase", "category_type": "income"},
    {"name": "Investments", "color": "#0F9D58", "icon": "chart-line", "category_type": "income"},
    {"name": "Gifts", "color": "#F4B400", "icon": "gift", "category_type": "income"},
    {"name": "Freelance", "color": "#DB4437", "icon": "laptop", "category_type": "income"},
    {"name": "Other", "color": "#9E9E9E", "icon": "ellipsis-h", "category_type": "income"},
]


def seed_new_user(db: Session, user: User) -> None:
    """Create the default categories and budget settings for a new user. The caller commits."""
    for category in DEFAULT_CATEGORIES:
        db.add(Category(user_id=user.id, **category))

    db.add(BudgetSetting(
        user_id=user.id,
        monthly_income=DEFAULT_MONTHLY_INCOME,
        monthly_fixed_expenses=DEFAULT_MONTHLY_FIXED_EXPENSES,
    ))
    db.flush()
    logger.info(f"Seeded {len(DEFAULT_CATEGORIES)} categories and default budget settings for user {user.id}")

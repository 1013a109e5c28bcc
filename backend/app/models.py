"""
SQLAlchemy models for users, categories, transactions, budget settings and savings goals.
Monetary columns are exact decimals; conversion to float happens only in the budget engine.
"""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    Integer,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from app.database import Base


class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class GoalStatus(str, enum.Enum):
    """Lifecycle of a savings goal. Archived goals are hidden but keep their saved balance."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class User(Base):
    """
    Identity owning every other entity.
    The password hash is never serialized.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")
    categories = relationship("Category", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    budget_setting = relationship("BudgetSetting", back_populates="user", uselist=False, cascade="all, delete-orphan")
    savings_goals = relationship("SavingsGoal", back_populates="user", cascade="all, delete-orphan")


class AuthSession(Base):
    """
    Login session. The opaque token is sent back as a cookie or bearer token.
    """
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(255), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="sessions")


class Category(Base):
    """
    Labeled bucket for transactions. The type is fixed at creation.
    """
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    color = Column(String(7), nullable=False)  # Hex color
    icon = Column(String(50), nullable=False)
    category_type = Column(String(20), nullable=False, default=TransactionType.EXPENSE.value)  # income, expense

    user = relationship("User", back_populates="categories")
    transactions = relationship("Transaction", back_populates="category")

    __table_args__ = (
        Index("idx_categories_user", "user_id"),
    )


class Transaction(Base):
    """
    Dated monetary movement. Direction comes from transaction_type, never from the sign of amount.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    transaction_type = Column(String(20), nullable=False)  # income, expense
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="transactions")
    category = relationship("Category", back_populates="transactions")

    __table_args__ = (
        Index("idx_transactions_user", "user_id"),
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_category", "category_id"),
    )


class BudgetSetting(Base):
    """
    Monthly budget parameters, one row per user.
    A custom period overrides the current calendar month only when both dates are set.
    """
    __tablename__ = "budget_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    monthly_income = Column(Numeric(12, 2), nullable=False)
    monthly_fixed_expenses = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    budget_start_date = Column(Date, nullable=True)
    budget_end_date = Column(Date, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="budget_setting")


class SavingsGoal(Base):
    """
    Savings goal. Deleting archives the row; it is never physically removed.
    """
    __tablename__ = "savings_goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    target_amount = Column(Numeric(12, 2), nullable=False)
    current_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    target_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=GoalStatus.ACTIVE.value)  # active, archived
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="savings_goals")

    __table_args__ = (
        Index("idx_savings_goals_user_status", "user_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == GoalStatus.ACTIVE.value

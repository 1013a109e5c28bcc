from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional
import re


_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CamelModel(BaseModel):
    """Wire models use camelCase; snake_case is still accepted on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Auth Schemas
class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=255)
    email: str
    password: str = Field(min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip()
        if not _EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")
        return value.lower()


class LoginRequest(CamelModel):
    username: str
    password: str


class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    user: UserResponse
    token: str
    expires_at: datetime


# Category Schemas
class CategoryCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    color: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: str = Field(min_length=1, max_length=50)
    category_type: Literal["income", "expense"] = Field("expense", alias="type")


class CategoryResponse(CategoryCreate):
    id: int
    user_id: int


# Transaction Schemas
class TransactionCreate(CamelModel):
    date: date
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = None
    category_id: Optional[int] = None
    transaction_type: Literal["income", "expense"] = Field(alias="type")


class TransactionUpdate(CamelModel):
    date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = None
    category_id: Optional[int] = None
    transaction_type: Optional[Literal["income", "expense"]] = Field(None, alias="type")

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for field in ("date", "amount", "transaction_type"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class TransactionResponse(CamelModel):
    id: int
    user_id: int
    date: date
    amount: Decimal
    description: Optional[str] = None
    category_id: Optional[int] = None
    transaction_type: str = Field(alias="type")
    created_at: Optional[datetime] = None


# Budget Settings Schemas
class BudgetSettingsUpsert(CamelModel):
    monthly_income: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    monthly_fixed_expenses: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    budget_start_date: Optional[date] = None
    budget_end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.budget_start_date and self.budget_end_date and self.budget_start_date > self.budget_end_date:
            raise ValueError("budgetStartDate must not be after budgetEndDate")
        return self


class BudgetSettingsResponse(CamelModel):
    id: int
    user_id: int
    monthly_income: Decimal
    monthly_fixed_expenses: Decimal
    budget_start_date: Optional[date] = None
    budget_end_date: Optional[date] = None


# Savings Goal Schemas
class SavingsGoalCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    target_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    current_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    target_date: Optional[date] = None


class SavingsGoalReplace(CamelModel):
    """Full edit of a goal. Omitted currentAmount/targetDate keep their stored values."""
    name: str = Field(min_length=1, max_length=255)
    target_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    current_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    target_date: Optional[date] = None


class SavingsGoalContribution(CamelModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class SavingsGoalResponse(CamelModel):
    id: int
    user_id: int
    name: str
    target_amount: Decimal
    current_amount: Decimal
    target_date: Optional[date] = None
    status: str
    is_active: bool
    created_at: Optional[datetime] = None


# Daily Budget Schemas
class DailyBudgetReport(CamelModel):
    """Derived budget figures. Values are unrounded floats; negative values are valid."""
    daily_budget: float
    remaining_today: float
    daily_budget_remaining: float
    full_daily_budget: float
    daily_savings_target: float
    monthly_savings_target: float
    todays_expenses: float
    spent_this_month: float
    total_budget: float
    remaining_this_month: float
    days_left: int
    days_elapsed: int
    period_start: date
    period_end: date


# Real-time Schemas
class EventMessage(BaseModel):
    """Envelope pushed over the real-time channel."""
    type: str
    data: Optional[Any] = None
    message: Optional[str] = None


class MessageResponse(BaseModel):
    message: str

from fastapi import APIRouter
from app.routes import auth, budget_settings, categories, daily_budget, events, savings_goals, transactions

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(categories.router, prefix="/categories", tags=["categories"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(budget_settings.router, prefix="/budget-settings", tags=["budget-settings"])
api_router.include_router(savings_goals.router, prefix="/savings-goals", tags=["savings-goals"])
api_router.include_router(daily_budget.router, prefix="/daily-budget", tags=["daily-budget"])

realtime_router = events.router

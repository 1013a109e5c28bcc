from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.schemas import DailyBudgetReport
from app.services.budget_engine import BudgetEngineService

router = APIRouter()


@router.get("", response_model=DailyBudgetReport)
def get_daily_budget(db: Session = Depends(get_db)):
    """
    Compute today's budget for the current user.

    Recomputed from the store on every call. Returns 404 when the user has
    no budget settings.
    """
    return BudgetEngineService(db).get_daily_budget(get_user_id())

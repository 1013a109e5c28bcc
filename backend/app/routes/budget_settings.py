from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.schemas import BudgetSettingsResponse, BudgetSettingsUpsert
from app.services.budget_engine import BudgetEngineService
from app.services.mutation_coordinator import MutationCoordinator, get_coordinator

router = APIRouter()


@router.get("", response_model=BudgetSettingsResponse)
def get_budget_settings(db: Session = Depends(get_db)):
    """Get the current user's budget settings. 404 when none exist."""
    return BudgetEngineService(db).get_settings(get_user_id())


@router.post("", response_model=BudgetSettingsResponse, status_code=201)
def upsert_budget_settings(
    settings: BudgetSettingsUpsert,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """Create or update the current user's budget settings."""
    return coordinator.upsert_budget_settings(settings)

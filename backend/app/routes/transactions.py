from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from datetime import date
from typing import List

from app.database import get_db
from app.models import Transaction
from app.db_helpers import get_user_id
from app.schemas import MessageResponse, TransactionCreate, TransactionResponse, TransactionUpdate
from app.services.mutation_coordinator import MutationCoordinator, get_coordinator

router = APIRouter()


@router.get("", response_model=List[TransactionResponse])
def list_transactions(db: Session = Depends(get_db)):
    """List the current user's transactions, newest first."""
    user_id = get_user_id()
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .all()
    )


@router.get("/date-range", response_model=List[TransactionResponse])
def list_transactions_in_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db),
):
    """List transactions dated within [startDate, endDate], both inclusive."""
    user_id = get_user_id()
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="startDate must not be after endDate")
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.date >= start_date,
            Transaction.date <= end_date,
        )
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .all()
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    user_id = get_user_id()
    transaction = db.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.user_id == user_id,
    ).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.post("", response_model=TransactionResponse, status_code=201)
def create_transaction(
    transaction: TransactionCreate,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    """Create a transaction and notify the user's clients."""
    return coordinator.create_transaction(transaction)


@router.patch("/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    updates: TransactionUpdate,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    return coordinator.update_transaction(transaction_id, updates)


@router.delete("/{transaction_id}", response_model=MessageResponse)
def delete_transaction(
    transaction_id: int,
    coordinator: MutationCoordinator = Depends(get_coordinator),
):
    coordinator.delete_transaction(transaction_id)
    return {"message": "Transaction deleted"}

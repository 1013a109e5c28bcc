from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from app.database import get_db
from app.models import Category
from app.db_helpers import get_user_id
from app.schemas import CategoryCreate, CategoryResponse

router = APIRouter()


@router.get("", response_model=List[CategoryResponse])
def list_categories(
    category_type: Optional[Literal["income", "expense"]] = Query(None, alias="type"),
    db: Session = Depends(get_db)
):
    """List the current user's categories, optionally filtered by type."""
    user_id = get_user_id()
    query = db.query(Category).filter(Category.user_id == user_id)
    if category_type:
        query = query.filter(Category.category_type == category_type)
    return query.order_by(Category.category_type, Category.name).all()


@router.get("/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: int,
    db: Session = Depends(get_db)
):
    """Get a specific category by ID."""
    user_id = get_user_id()
    category = db.query(Category).filter(
        Category.id == category_id,
        Category.user_id == user_id
    ).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.post("", response_model=CategoryResponse, status_code=201)
def create_category(
    category: CategoryCreate,
    db: Session = Depends(get_db)
):
    """Create a new category."""
    user_id = get_user_id()
    category_data = category.model_dump()
    category_data["user_id"] = user_id
    db_category = Category(**category_data)
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category

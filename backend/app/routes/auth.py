from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime
import logging

from app.database import get_db
from app.db_helpers import (
    SESSION_COOKIE_NAME,
    create_session,
    extract_session_token,
    get_user_id,
    hash_password,
    revoke_session,
    verify_password,
)
from app.models import AuthSession, User
from app.schemas import AuthResponse, LoginRequest, MessageResponse, RegisterRequest, UserResponse
from app.services.user_setup import seed_new_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_response(response: Response, user: User, session: AuthSession) -> AuthResponse:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session.token,
        httponly=True,
        samesite="lax",
        max_age=max(0, int((session.expires_at - datetime.utcnow()).total_seconds())),
    )
    return AuthResponse(
        user=UserResponse.model_validate(user),
        token=session.token,
        expires_at=session.expires_at,
    )


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    """Register a user, seed their defaults and log them in."""
    existing = db.query(User).filter(
        or_(User.username == payload.username, User.email == payload.email)
    ).first()
    if existing:
        detail = "Username already in use" if existing.username == payload.username else "Email already in use"
        raise HTTPException(status_code=400, detail=detail)

    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    db.add(user)
    try:
        # User and defaults are committed together
        db.flush()
        seed_new_user(db, user)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(user)

    session = create_session(db, user)
    logger.info(f"Registered user {user.username} ({user.id})")
    return _session_response(response, user, session)


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.username == payload.username).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    session = create_session(db, user)
    return _session_response(response, user, session)


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    token = extract_session_token(request.headers, request.cookies)
    if token:
        revoke_session(db, token)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserResponse)
def me(db: Session = Depends(get_db)):
    """Return the acting user."""
    user = db.query(User).filter(User.id == get_user_id()).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user

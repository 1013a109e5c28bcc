"""
Database helper utilities for handling user context and authentication.
"""
import contextvars
import os
import secrets
from datetime import datetime, timedelta
from typing import Mapping, Optional

import bcrypt
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.models import AuthSession, User

SESSION_COOKIE_NAME = "budget_session"
DEFAULT_SESSION_TTL_HOURS = 720

_request_user_id: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar(
    "request_user_id",
    default=None,
)


def set_request_user_id(user_id: Optional[int]) -> contextvars.Token:
    return _request_user_id.set(user_id)


def clear_request_user_id(token: contextvars.Token) -> None:
    _request_user_id.reset(token)


def get_request_user_id() -> Optional[int]:
    return _request_user_id.get()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except ValueError:
        # Malformed hash in storage
        return False


def _get_session_ttl() -> timedelta:
    raw_value = os.getenv("SESSION_TTL_HOURS", str(DEFAULT_SESSION_TTL_HOURS))
    try:
        hours = int(raw_value)
        if hours <= 0:
            hours = DEFAULT_SESSION_TTL_HOURS
    except ValueError:
        hours = DEFAULT_SESSION_TTL_HOURS
    return timedelta(hours=hours)


def create_session(db: Session, user: User) -> AuthSession:
    """Open a login session for the user and return it with its token."""
    session = AuthSession(
        user_id=user.id,
        token=secrets.token_urlsafe(32),
        expires_at=datetime.utcnow() + _get_session_ttl(),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def revoke_session(db: Session, token: str) -> bool:
    deleted = db.query(AuthSession).filter(AuthSession.token == token).delete(synchronize_session=False)
    db.commit()
    return deleted > 0


def extract_session_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> Optional[str]:
    """Read the session token from a bearer Authorization header or the session cookie."""
    authorization = headers.get("authorization", "").strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    token = cookies.get(SESSION_COOKIE_NAME, "").strip()
    return token or None


def resolve_session_user_id(db: Session, token: Optional[str]) -> Optional[int]:
    """
    Resolve a session token to an active user id.

    Returns None for unknown, expired or inactive sessions.
    """
    if not token:
        return None

    record = (
        db.query(AuthSession)
        .join(User, User.id == AuthSession.user_id)
        .filter(AuthSession.token == token, User.is_active == True)  # noqa: E712
        .first()
    )
    if not record:
        return None

    if record.expires_at < datetime.utcnow():
        db.delete(record)
        db.commit()
        return None

    return record.user_id


def get_user_id() -> int:
    """
    Get the acting user id resolved by the auth middleware.

    Raises:
        HTTPException: 401 when the request carries no valid session
    """
    request_user_id = get_request_user_id()
    if not request_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return request_user_id

"""FastAPI dependencies: DB session and current user from JWT.

JWT is read from:
1. Authorization header (for API clients)
2. httpOnly cookie (for web frontend)
"""
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from medstock.core.config import settings
from medstock.core.exceptions import BusinessError
from medstock.core.security import decode_access_token
from medstock.db.session import SessionLocal
from medstock.models.user import User

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> int:
    """
    Extract user ID from JWT token.
    Header takes precedence over cookie.
    """
    token = None

    if credentials:
        token = credentials.credentials
    elif settings.AUTH_COOKIE_NAME in request.cookies:
        token = request.cookies[settings.AUTH_COOKIE_NAME]

    if not token:
        raise BusinessError.unauthorized("missing token")

    sub = decode_access_token(token)
    if not sub:
        raise BusinessError.unauthorized("invalid or expired token")

    try:
        user_id = int(sub)
    except ValueError:
        raise BusinessError.unauthorized(f"non-integer subject {sub!r}")
    request.state.user_id = user_id
    return user_id


def get_current_user(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> User:
    """Load current user from DB."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise BusinessError.unauthorized(f"user {user_id} not found")
    if user.status and user.status.lower() != "active":
        raise BusinessError.unauthorized(f"user {user_id} is {user.status}")
    return user

"""
Maraude Tracker - OAuth2 Authentication
Get current user from JWT token
"""
import uuid
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from maraude_tracker.database import get_db
from maraude_tracker.errors import AuthenticationError, ForbiddenError
from maraude_tracker.auth.utils import decode_access_token
from maraude_tracker.models.db_models import User
from maraude_tracker.repositories import UserRepository

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _resolve_user(token: str, db: Session) -> User:
    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    try:
        user_id = uuid.UUID(str(payload.get("user_id")))
    except ValueError:
        raise AuthenticationError("Invalid or expired token")

    user = UserRepository(db).get(user_id)
    if user is None:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.
    Raises AuthenticationError if token is invalid or user not found.
    """
    return _resolve_user(token, db)

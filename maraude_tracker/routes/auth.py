from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
import logging

from maraude_tracker.database import get_db
from maraude_tracker.errors import AuthenticationError, ConflictError, ValidationError
from maraude_tracker.models.db_models import User
from maraude_tracker.models.schemas import UserCreate, UserResponse, LoginUser, Token
from maraude_tracker.auth.utils import hash_password, verify_password, token_for_user
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.repositories import AssociationRepository, UserRepository

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)

# ========== REGISTRATION ==========

@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a volunteer or coordinator under an active association"""
    association = AssociationRepository(db).get_or_404(user_data.association_id)
    if not association.is_active:
        raise ValidationError("Association is not active")

    users = UserRepository(db)
    if users.by_email(user_data.email):
        raise ConflictError("User already exists with this email")

    new_user = users.create(
        first_name=user_data.first_name.strip(),
        last_name=user_data.last_name.strip(),
        email=user_data.email.lower(),
        hashed_password=hash_password(user_data.password),
        role=user_data.role,
        phone=user_data.phone,
        association_id=association.id,
    )
    users.commit()
    users.refresh(new_user)
    logger.info("User %s registered in association %s as %s", new_user.id, association.id, new_user.role.value)

    return Token(access_token=token_for_user(new_user), user=UserResponse.model_validate(new_user))

# ========== LOGIN ==========

@router.post("/login", response_model=Token)
async def login(credentials: LoginUser, db: Session = Depends(get_db)):
    """Login with email/password"""
    user = UserRepository(db).by_email(credentials.email)

    if not user or not verify_password(credentials.password, user.hashed_password):
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    if not user.association or not user.association.is_active:
        raise AuthenticationError("Association is inactive")

    return Token(access_token=token_for_user(user), user=UserResponse.model_validate(user))

# ========== CURRENT USER ==========

@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current authenticated user's profile"""
    return current_user


@router.post("/refresh", response_model=Token)
async def refresh_token(current_user: User = Depends(get_current_user)):
    """Issue a fresh token for the current user"""
    return Token(access_token=token_for_user(current_user), user=UserResponse.model_validate(current_user))

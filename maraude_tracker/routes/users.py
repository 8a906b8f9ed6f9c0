"""
Maraude Tracker - User Routes
Member directory, profile updates, password change and deactivation
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from maraude_tracker.database import get_db
from maraude_tracker.errors import ConflictError, ForbiddenError, ValidationError
from maraude_tracker.models.db_models import User, UserRole, MaraudeStatus
from maraude_tracker.models.schemas import (
    UserResponse, UserUpdate, UserListResponse, PasswordChange, MessageResponse, Pagination
)
from maraude_tracker.auth import policy
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.auth.utils import hash_password, verify_password
from maraude_tracker.repositories import UserRepository, MaraudeActionRepository, ReportRepository
from maraude_tracker.routes.params import PageParams, active_filter

router = APIRouter(prefix="/api/users", tags=["Users"])
logger = logging.getLogger(__name__)


def _can_view(actor: User, user: User) -> bool:
    return policy.is_self(actor, user) or policy.can_validate(actor, user)


@router.get("", response_model=UserListResponse)
async def list_users(
    pages: PageParams = Depends(),
    role: Optional[UserRole] = None,
    active: Optional[bool] = Depends(active_filter),
    association_id: Optional[UUID] = Query(None, alias="associationId"),
    current_user: User = Depends(policy.require_roles(UserRole.COORDINATOR, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """List users; coordinators only see their own association"""
    if not policy.is_admin(current_user):
        association_id = current_user.association_id

    repo = UserRepository(db)
    limit, offset = pages.window
    items, total = repo.list(
        repo.filtered(association_id=association_id, role=role, active=active),
        order_by=[User.last_name, User.first_name],
        limit=limit,
        offset=offset,
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in items],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = UserRepository(db).get_or_404(user_id)
    policy.require(_can_view(current_user, user))
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a profile; role and activation are admin-only and never on oneself"""
    repo = UserRepository(db)
    user = repo.get_or_404(user_id)
    policy.require(policy.can_edit(current_user, user))
    if policy.is_admin(user) and not policy.is_admin(current_user):
        raise ForbiddenError("Only admins can edit an admin account")

    changes = payload.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k == "phone"}

    if "role" in changes or "is_active" in changes:
        if not policy.is_admin(current_user):
            raise ForbiddenError("Only admins can change role or activation status")
        if policy.is_self(current_user, user):
            raise ForbiddenError("Cannot change your own role or activation status")

    if "email" in changes:
        changes["email"] = changes["email"].lower()
        other = repo.by_email(changes["email"])
        if other is not None and other.id != user.id:
            raise ConflictError("User already exists with this email")

    repo.update(user, changes)
    repo.commit()
    return repo.get(user.id)


@router.put("/{user_id}/password", response_model=MessageResponse)
async def change_password(
    user_id: UUID,
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repo = UserRepository(db)
    user = repo.get_or_404(user_id)
    policy.require(policy.is_self(current_user, user))

    if not verify_password(payload.current_password, user.hashed_password):
        raise ValidationError("Current password is incorrect")

    repo.update(user, {"hashed_password": hash_password(payload.new_password)})
    repo.commit()
    logger.info("Password changed for user %s", user.id)
    return MessageResponse(message="Password updated successfully")


@router.delete("/{user_id}", response_model=MessageResponse)
async def deactivate_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Soft delete: the account is deactivated, never removed"""
    repo = UserRepository(db)
    user = repo.get_or_404(user_id)
    policy.require(policy.can_manage(current_user, user))
    if policy.is_admin(user) and not policy.is_admin(current_user):
        raise ForbiddenError("Only admins can deactivate an admin account")

    if policy.is_self(current_user, user):
        raise ValidationError("Cannot delete your own account")

    repo.update(user, {"is_active": False})
    repo.commit()
    logger.info("User %s deactivated by %s", user.id, current_user.id)
    return MessageResponse(message="User deactivated successfully")


@router.get("/{user_id}/stats")
async def user_stats(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Actions and reports created by a user"""
    user = UserRepository(db).get_or_404(user_id)
    policy.require(_can_view(current_user, user))

    actions = MaraudeActionRepository(db)
    counts = {
        s.value: actions.filtered(created_by=user.id, status=s, active=None).count()
        for s in MaraudeStatus
    }
    reports = ReportRepository(db).count_by_creator(user.id)

    return {
        "stats": {
            "actions": {
                "total": sum(counts.values()),
                "completed": counts[MaraudeStatus.COMPLETED.value],
                "planned": counts[MaraudeStatus.PLANNED.value],
                "inProgress": counts[MaraudeStatus.IN_PROGRESS.value],
                "cancelled": counts[MaraudeStatus.CANCELLED.value],
            },
            "reports": {
                "total": sum(reports.values()),
                "draft": reports.get("draft", 0),
                "submitted": reports.get("submitted", 0),
                "validated": reports.get("validated", 0),
            },
        }
    }

"""
Maraude Tracker - Association Routes
Public directory, registration (pending approval) and statistics
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from uuid import UUID
import logging

from maraude_tracker.database import get_db
from maraude_tracker.errors import ConflictError, ForbiddenError
from maraude_tracker.models.db_models import User, MaraudeStatus
from maraude_tracker.models.schemas import (
    AssociationCreate, AssociationUpdate, AssociationResponse, AssociationDetail,
    AssociationListResponse, MemberResponse, UpcomingActionResponse, Pagination
)
from maraude_tracker.auth import policy
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.repositories import (
    AssociationRepository, UserRepository, MaraudeActionRepository, ReportRepository
)
from maraude_tracker.routes.params import PageParams, active_filter
from maraude_tracker.services.schedule import get_now

router = APIRouter(prefix="/api/associations", tags=["Associations"])
logger = logging.getLogger(__name__)


@router.get("", response_model=AssociationListResponse)
async def list_associations(
    pages: PageParams = Depends(),
    active: Optional[bool] = Depends(active_filter),
    db: Session = Depends(get_db)
):
    """List associations, active ones by default"""
    repo = AssociationRepository(db)
    limit, offset = pages.window
    items, total = repo.list(repo.filtered(active), order_by=repo.model.name, limit=limit, offset=offset)
    return AssociationListResponse(
        associations=[AssociationResponse.model_validate(a) for a in items],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{association_id}", response_model=AssociationDetail)
async def get_association(
    association_id: UUID,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    """Association with its active members and upcoming actions"""
    association = AssociationRepository(db).get_or_404(association_id)
    members = UserRepository(db).active_members(association.id)
    upcoming = MaraudeActionRepository(db).upcoming_for_association(association.id, now.date(), limit=5)

    return AssociationDetail(
        **AssociationResponse.model_validate(association).model_dump(),
        members=[MemberResponse.model_validate(u) for u in members],
        upcoming_actions=[UpcomingActionResponse.model_validate(a) for a in upcoming],
    )


@router.post("", response_model=AssociationResponse, status_code=status.HTTP_201_CREATED)
async def register_association(payload: AssociationCreate, db: Session = Depends(get_db)):
    """Public registration; the association waits for admin approval"""
    repo = AssociationRepository(db)
    if repo.by_email(payload.email):
        raise ConflictError("An association with this email already exists")

    data = payload.model_dump()
    data["email"] = data["email"].lower()
    association = repo.create(**data, is_active=False)
    repo.commit()
    repo.refresh(association)
    logger.info("Association %s registered, pending approval", association.id)
    return association


@router.put("/{association_id}", response_model=AssociationResponse)
async def update_association(
    association_id: UUID,
    payload: AssociationUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update an association (its coordinators or an admin)"""
    repo = AssociationRepository(db)
    association = repo.get_or_404(association_id)
    policy.require(policy.can_manage(current_user, association))

    changes = payload.model_dump(exclude_unset=True)
    if "is_active" in changes and not policy.is_admin(current_user):
        raise ForbiddenError("Only admins can change the activation status")
    changes = {k: v for k, v in changes.items() if v is not None or k not in ("name", "email", "is_active")}
    if changes.get("email"):
        changes["email"] = changes["email"].lower()
        other = repo.by_email(changes["email"])
        if other is not None and other.id != association.id:
            raise ConflictError("An association with this email already exists")

    repo.update(association, changes)
    repo.commit()
    repo.refresh(association)
    if "is_active" in changes:
        logger.info("Association %s active=%s set by %s", association.id, association.is_active, current_user.id)
    return association


@router.get("/{association_id}/stats")
async def association_stats(
    association_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Member, action and report counts"""
    association = AssociationRepository(db).get_or_404(association_id)
    policy.require(policy.can_access_association(current_user, association))

    users = UserRepository(db)
    actions = MaraudeActionRepository(db)
    total_actions = actions.filtered(association_id=association.id, active=None).count()
    completed = actions.filtered(association_id=association.id, status=MaraudeStatus.COMPLETED, active=None).count()
    planned = actions.filtered(association_id=association.id, status=MaraudeStatus.PLANNED, active=None).count()
    in_progress = actions.filtered(association_id=association.id, status=MaraudeStatus.IN_PROGRESS, active=None).count()

    return {
        "stats": {
            "users": {
                "total": users.filtered(association_id=association.id).count(),
                "active": users.filtered(association_id=association.id, active=True).count(),
            },
            "actions": {
                "total": total_actions,
                "completed": completed,
                "planned": planned,
                "inProgress": in_progress,
            },
            "reports": {
                "total": ReportRepository(db).count_for_association(association.id),
            },
        }
    }

"""
Maraude Tracker - Maraude Routes
Recurring and one-time outreach actions, today's board and the weekly plan
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from uuid import UUID
import logging

from maraude_tracker.config import settings
from maraude_tracker.database import get_db
from maraude_tracker.errors import ConflictError
from maraude_tracker.models.db_models import MaraudeAction, MaraudeStatus, User, UserRole
from maraude_tracker.models.schemas import (
    MaraudeCreate, MaraudeUpdate, MaraudeResponse, MaraudeListResponse,
    TodayActiveResponse, WeeklyScheduleResponse, DayInfo, MessageResponse, Pagination
)
from maraude_tracker.auth import policy
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.repositories import AssociationRepository, MaraudeActionRepository
from maraude_tracker.routes.params import PageParams, is_active_filter
from maraude_tracker.services import schedule
from maraude_tracker.services.schedule import get_now

router = APIRouter(prefix="/api/maraudes", tags=["Maraudes"])
logger = logging.getLogger(__name__)

# Columns that keep their stored value when a patch sends null
_REQUIRED_FIELDS = {
    "title", "start_latitude", "start_longitude", "waypoints", "is_recurring", "start_time",
    "status", "participants_count", "beneficiaries_helped", "is_active",
}


def serialize_action(action: MaraudeAction, now: datetime) -> MaraudeResponse:
    """Response model with the schedule-derived fields filled in."""
    data = MaraudeResponse.model_validate(action)
    data.next_occurrence = schedule.next_occurrence(action, now)
    data.is_happening_today = schedule.is_happening_today(action, now)
    data.day_name = schedule.day_name(action)
    return data


def _can_create(actor: User) -> bool:
    if policy.can_manage(actor):
        return True
    return actor.role == UserRole.VOLUNTEER and settings.VOLUNTEERS_CAN_CREATE_MARAUDES

# ==================== PUBLIC BOARDS ====================

@router.get("/today/active", response_model=TodayActiveResponse)
async def today_active(db: Session = Depends(get_db), now: datetime = Depends(get_now)):
    """Actions taking place today whose time slot is not over yet"""
    today = now.date()
    actions = [
        a for a in MaraudeActionRepository(db).active_today(today)
        if not schedule.slot_elapsed(a, now)
    ]
    return TodayActiveResponse(
        actions=[serialize_action(a, now) for a in actions],
        count=len(actions),
        day=today,
        current_day_of_week=schedule.iso_weekday(today),
        current_day_name=schedule.day_label(schedule.iso_weekday(today)),
    )


@router.get("/weekly-schedule", response_model=WeeklyScheduleResponse)
async def weekly_schedule(db: Session = Depends(get_db), now: datetime = Depends(get_now)):
    """Recurring active actions grouped by ISO weekday"""
    grouped = {day["value"]: [] for day in schedule.DAYS}
    for action in MaraudeActionRepository(db).recurring_active():
        grouped[action.day_of_week].append(serialize_action(action, now))
    return WeeklyScheduleResponse(
        weekly_schedule=grouped,
        days=[DayInfo(**day) for day in schedule.DAYS],
    )

# ==================== LISTING ====================

@router.get("", response_model=MaraudeListResponse)
async def list_maraudes(
    pages: PageParams = Depends(),
    action_status: Optional[MaraudeStatus] = Query(None, alias="status"),
    association_id: Optional[UUID] = Query(None, alias="associationId"),
    day_of_week: Optional[int] = Query(None, alias="dayOfWeek", ge=1, le=7),
    is_recurring: Optional[bool] = Query(None, alias="isRecurring"),
    active: Optional[bool] = Depends(is_active_filter),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    repo = MaraudeActionRepository(db)
    limit, offset = pages.window
    query = repo.filtered(
        status=action_status,
        association_id=association_id,
        day_of_week=day_of_week,
        is_recurring=is_recurring,
        active=active,
    )
    items, total = repo.list(
        query,
        order_by=[MaraudeAction.day_of_week, MaraudeAction.scheduled_date, MaraudeAction.start_time],
        limit=limit,
        offset=offset,
    )
    return MaraudeListResponse(
        actions=[serialize_action(a, now) for a in items],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{action_id}", response_model=MaraudeResponse)
async def get_maraude(action_id: UUID, db: Session = Depends(get_db), now: datetime = Depends(get_now)):
    action = MaraudeActionRepository(db).get_or_404(action_id)
    return serialize_action(action, now)

# ==================== WRITES ====================

@router.post("", response_model=MaraudeResponse, status_code=status.HTTP_201_CREATED)
async def create_maraude(
    payload: MaraudeCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    policy.require(_can_create(current_user))

    association_id = current_user.association_id
    if payload.association_id and policy.is_admin(current_user):
        association_id = AssociationRepository(db).get_or_404(payload.association_id).id

    day_of_week, scheduled_date = schedule.normalize_recurrence(
        payload.is_recurring, payload.day_of_week, payload.scheduled_date
    )

    repo = MaraudeActionRepository(db)
    data = payload.model_dump(exclude={"association_id", "waypoints", "day_of_week", "scheduled_date"})
    action = repo.create(
        **data,
        waypoints=[w.model_dump() for w in payload.waypoints],
        day_of_week=day_of_week,
        scheduled_date=scheduled_date,
        status=MaraudeStatus.PLANNED,
        created_by=current_user.id,
        association_id=association_id,
    )
    repo.commit()
    logger.info("Maraude action %s created by %s", action.id, current_user.id)
    return serialize_action(repo.get(action.id), now)


@router.put("/{action_id}", response_model=MaraudeResponse)
async def update_maraude(
    action_id: UUID,
    payload: MaraudeUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    repo = MaraudeActionRepository(db)
    action = repo.get_or_404(action_id)
    policy.require(policy.can_edit(current_user, action))

    changes = payload.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k not in _REQUIRED_FIELDS}

    # Recurrence is checked against the merged record
    is_recurring = changes.get("is_recurring", action.is_recurring)
    day_of_week, scheduled_date = schedule.normalize_recurrence(
        is_recurring,
        changes["day_of_week"] if "day_of_week" in changes else action.day_of_week,
        changes["scheduled_date"] if "scheduled_date" in changes else action.scheduled_date,
    )
    changes.update(day_of_week=day_of_week, scheduled_date=scheduled_date)

    if payload.waypoints is not None:
        changes["waypoints"] = [w.model_dump() for w in payload.waypoints]

    repo.update(action, changes)
    repo.commit()
    return serialize_action(repo.get(action.id), now)


@router.delete("/{action_id}", response_model=MessageResponse)
async def delete_maraude(
    action_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repo = MaraudeActionRepository(db)
    action = repo.get_or_404(action_id)
    policy.require(policy.can_manage(current_user, action))

    if action.reports:
        raise ConflictError("Maraude action has reports; deactivate it instead")

    repo.delete(action)
    repo.commit()
    logger.info("Maraude action %s deleted by %s", action_id, current_user.id)
    return MessageResponse(message="Maraude action deleted successfully")


@router.patch("/{action_id}/toggle", response_model=MaraudeResponse)
async def toggle_maraude(
    action_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    """Activate or deactivate an action"""
    repo = MaraudeActionRepository(db)
    action = repo.get_or_404(action_id)
    policy.require(policy.can_manage(current_user, action))

    repo.update(action, {"is_active": not action.is_active})
    repo.commit()
    logger.info("Maraude action %s active=%s", action.id, action.is_active)
    return serialize_action(repo.get(action.id), now)

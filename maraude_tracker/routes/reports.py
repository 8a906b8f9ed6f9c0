"""
Maraude Tracker - Report Routes
After-action reports, their lifecycle, statistics and email delivery
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date, datetime
from uuid import UUID
import logging

from maraude_tracker.database import get_db
from maraude_tracker.errors import ConflictError, InternalError, ValidationError
from maraude_tracker.models.db_models import MaraudeReport, ReportStatus, User, UserRole
from maraude_tracker.models.schemas import (
    ReportCreate, ReportUpdate, ReportResponse, ReportListResponse, SendEmailRequest,
    DistributionTypeCreate, DistributionTypeUpdate, DistributionTypeResponse, MessageResponse, Pagination
)
from maraude_tracker.auth import policy
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.repositories import DistributionTypeRepository, ReportRepository
from maraude_tracker.routes.params import PageParams
from maraude_tracker.services import email_service, report_lifecycle
from maraude_tracker.services.schedule import get_now

router = APIRouter(prefix="/api/reports", tags=["Reports"])
logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    "meal": "Alimentation",
    "hygiene": "Hygiène",
    "clothing": "Vêtements",
    "medical": "Médical",
    "other": "Autres services",
}


def serialize_report(report: MaraudeReport, detailed: bool = False) -> ReportResponse:
    data = ReportResponse.model_validate(report)
    if detailed:
        data.duration = report_lifecycle.report_duration_minutes(report)
        data.summary = report_lifecycle.report_summary(report)
    return data

# ==================== DISTRIBUTION TYPES ====================

@router.get("/distribution-types")
async def list_distribution_types(db: Session = Depends(get_db)):
    """Active distribution types, flat and grouped by category"""
    types = [DistributionTypeResponse.model_validate(t) for t in DistributionTypeRepository(db).active()]
    grouped = {}
    for t in types:
        grouped.setdefault(t.category.value, []).append(t.model_dump(mode="json", by_alias=True))
    return {
        "types": [t.model_dump(mode="json", by_alias=True) for t in types],
        "grouped": grouped,
        "categories": CATEGORY_LABELS,
    }


@router.post("/distribution-types", response_model=DistributionTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_distribution_type(
    payload: DistributionTypeCreate,
    current_user: User = Depends(policy.require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    repo = DistributionTypeRepository(db)
    if repo.by_name(payload.name):
        raise ConflictError("A distribution type with this name already exists")
    distribution_type = repo.create(**payload.model_dump())
    repo.commit()
    repo.refresh(distribution_type)
    return distribution_type


@router.put("/distribution-types/{type_id}", response_model=DistributionTypeResponse)
async def update_distribution_type(
    type_id: UUID,
    payload: DistributionTypeUpdate,
    current_user: User = Depends(policy.require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    repo = DistributionTypeRepository(db)
    distribution_type = repo.get_or_404(type_id)
    changes = payload.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k in ("icon", "color")}
    repo.update(distribution_type, changes)
    repo.commit()
    repo.refresh(distribution_type)
    return distribution_type

# ==================== REPORT READS ====================

@router.get("", response_model=ReportListResponse)
async def list_reports(
    pages: PageParams = Depends(),
    report_status: Optional[ReportStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    maraude_action_id: Optional[UUID] = Query(None, alias="maraudeActionId"),
    has_alerts: Optional[bool] = Query(None, alias="hasAlerts"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reports, restricted to the caller's association unless admin"""
    repo = ReportRepository(db)
    query = repo.filtered(
        association_id=None if policy.is_admin(current_user) else current_user.association_id,
        status=report_status,
        start_date=start_date,
        end_date=end_date,
        action_id=maraude_action_id,
        has_alerts=has_alerts,
    )
    limit, offset = pages.window
    items, total = repo.list(
        query,
        order_by=[MaraudeReport.report_date.desc(), MaraudeReport.created_at.desc()],
        limit=limit,
        offset=offset,
    )
    return ReportListResponse(
        reports=[serialize_report(r) for r in items],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/stats/summary")
async def reports_summary(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    association_id: Optional[UUID] = Query(None, alias="associationId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Aggregated figures; admins may pick an association or see all of them"""
    if not policy.is_admin(current_user):
        association_id = current_user.association_id

    reports = ReportRepository(db).filtered(
        association_id=association_id, start_date=start_date, end_date=end_date
    ).all()
    return {"stats": report_lifecycle.report_stats(reports)}


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    report = ReportRepository(db).get_or_404(report_id)
    policy.require(policy.can_access_association(current_user, report))
    return serialize_report(report, detailed=True)

# ==================== LIFECYCLE ====================

@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    report = report_lifecycle.create_report(db, payload, current_user)
    return serialize_report(report, detailed=True)


@router.api_route("/{report_id}", methods=["PUT", "PATCH"], response_model=ReportResponse)
async def update_report(
    report_id: UUID,
    payload: ReportUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Partial update; distributions and alerts, when sent, replace the existing ones"""
    report = report_lifecycle.update_report(db, report_id, payload, current_user)
    return serialize_report(report, detailed=True)


@router.patch("/{report_id}/submit", response_model=ReportResponse)
async def submit_report(
    report_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return serialize_report(report_lifecycle.submit_report(db, report_id, current_user), detailed=True)


@router.patch("/{report_id}/validate", response_model=ReportResponse)
async def validate_report(
    report_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    return serialize_report(report_lifecycle.validate_report(db, report_id, current_user, now), detailed=True)


@router.delete("/{report_id}", response_model=MessageResponse)
async def delete_report(
    report_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    report_lifecycle.delete_report(db, report_id, current_user)
    return MessageResponse(message="Report deleted successfully")

# ==================== EMAIL ====================

@router.post("/{report_id}/send-email")
async def send_report_email(
    report_id: UUID,
    payload: SendEmailRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    """Email a report; its email status only changes when delivery succeeds"""
    if not payload.recipients:
        raise ValidationError("Recipients required")

    report = ReportRepository(db).get_or_404(report_id)
    policy.require(policy.can_edit(current_user, report))

    recipients = [str(r) for r in payload.recipients]
    sent = await email_service.send_report_email(
        report=report,
        recipients=recipients,
        subject=payload.subject or email_service.default_subject(report),
        message=payload.message,
        sender_name=current_user.full_name,
        sender_email=current_user.email,
    )
    if not sent:
        raise InternalError("Failed to send email")

    report_lifecycle.mark_email_sent(db, report, recipients, now)
    return {"message": "Report sent by email successfully", "recipients": recipients}

"""
Maraude Tracker - Report Lifecycle
draft -> submitted -> validated, with child rows replaced wholesale on update
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from maraude_tracker.auth import policy
from maraude_tracker.config import settings
from maraude_tracker.errors import ConflictError, ForbiddenError, ValidationError
from maraude_tracker.models.db_models import MaraudeReport, ReportStatus, User
from maraude_tracker.models.schemas import DistributionInput, ReportCreate, ReportUpdate
from maraude_tracker.repositories import (
    DistributionTypeRepository, MaraudeActionRepository, ReportAlertRepository,
    ReportDistributionRepository, ReportRepository
)

logger = logging.getLogger(__name__)

DUPLICATE_REPORT_MESSAGE = "Un compte-rendu existe déjà pour cette maraude à cette date"

# Columns a patch may clear; the rest keep their value when sent as null
_CLEARABLE_FIELDS = {"general_notes", "difficulties_encountered", "positive_points", "urgent_situations_details"}


def initial_status() -> ReportStatus:
    return ReportStatus.SUBMITTED if settings.REPORTS_AUTO_SUBMIT else ReportStatus.DRAFT


def _has_urgent_situations(alert_count: int, details) -> bool:
    return alert_count > 0 or bool(details)


def _duplicate_conflict(existing: MaraudeReport) -> ConflictError:
    creator = existing.creator
    return ConflictError(DUPLICATE_REPORT_MESSAGE, details={
        "existingReportId": str(existing.id),
        "createdBy": {
            "id": str(creator.id),
            "firstName": creator.first_name,
            "lastName": creator.last_name,
        } if creator else None,
        "createdAt": existing.created_at.isoformat() if existing.created_at else None,
    })


def _check_distribution_types(db: Session, distributions: Iterable[DistributionInput]) -> None:
    types = DistributionTypeRepository(db)
    for item in distributions:
        if types.get(item.distribution_type_id) is None:
            raise ValidationError(details={"distributions": f"Unknown distribution type {item.distribution_type_id}"})


def _commit_report(db: Session, action_id, report_date, exclude_id=None) -> None:
    """Commit the unit of work, mapping a lost (action, date) race to the duplicate conflict."""
    reports = ReportRepository(db)
    try:
        reports.commit()
    except ConflictError:
        existing = reports.for_action_and_date(action_id, report_date, exclude_id=exclude_id)
        if existing is not None:
            raise _duplicate_conflict(existing)
        raise
    except SQLAlchemyError:
        reports.rollback()
        raise

# ==================== TRANSITIONS ====================

def create_report(db: Session, data: ReportCreate, actor: User) -> MaraudeReport:
    reports = ReportRepository(db)
    action = MaraudeActionRepository(db).get_or_404(data.maraude_action_id)
    policy.require(policy.can_access_association(actor, action))

    existing = reports.for_action_and_date(action.id, data.report_date)
    if existing is not None:
        raise _duplicate_conflict(existing)

    _check_distribution_types(db, data.distributions)

    status = initial_status()
    fields = data.model_dump(exclude={"distributions", "alerts"})
    report = reports.create(
        **fields,
        has_urgent_situations=_has_urgent_situations(len(data.alerts), data.urgent_situations_details),
        status=status,
        created_by=actor.id,
    )

    try:
        reports.flush()
        ReportDistributionRepository(db).add_many(report, [d.model_dump() for d in data.distributions])
        ReportAlertRepository(db).add_many(report, [a.model_dump() for a in data.alerts])
    except ConflictError:
        existing = reports.for_action_and_date(action.id, data.report_date)
        if existing is not None:
            raise _duplicate_conflict(existing)
        raise
    except SQLAlchemyError:
        reports.rollback()
        raise
    _commit_report(db, action.id, data.report_date)

    logger.info("Report %s created for action %s on %s (%s)", report.id, action.id, data.report_date, status.value)
    return reports.get(report.id)


def update_report(db: Session, report_id: UUID, patch: ReportUpdate, actor: User) -> MaraudeReport:
    reports = ReportRepository(db)
    report = reports.get_or_404(report_id)
    policy.require(policy.can_edit(actor, report))

    if report.status == ReportStatus.VALIDATED and not policy.is_admin(actor):
        raise ForbiddenError("Cannot edit validated report")

    changes = patch.model_dump(exclude_unset=True, exclude={"distributions", "alerts"})
    changes = {k: v for k, v in changes.items() if v is not None or k in _CLEARABLE_FIELDS}

    new_date = changes.get("report_date")
    if new_date is not None and new_date != report.report_date:
        existing = reports.for_action_and_date(report.maraude_action_id, new_date, exclude_id=report.id)
        if existing is not None:
            raise _duplicate_conflict(existing)

    if patch.distributions is not None:
        _check_distribution_types(db, patch.distributions)

    alert_count = len(patch.alerts) if patch.alerts is not None else len(report.alerts)
    reports.update(report, changes)
    report.has_urgent_situations = _has_urgent_situations(alert_count, report.urgent_situations_details)

    try:
        if patch.distributions is not None:
            distributions = ReportDistributionRepository(db)
            distributions.delete_for_report(report)
            distributions.add_many(report, [d.model_dump() for d in patch.distributions])
        if patch.alerts is not None:
            alerts = ReportAlertRepository(db)
            alerts.delete_for_report(report)
            alerts.add_many(report, [a.model_dump() for a in patch.alerts])
    except SQLAlchemyError:
        reports.rollback()
        raise
    _commit_report(db, report.maraude_action_id, report.report_date, exclude_id=report.id)

    logger.info("Report %s updated by %s", report.id, actor.id)
    return reports.get(report.id)


def submit_report(db: Session, report_id: UUID, actor: User) -> MaraudeReport:
    reports = ReportRepository(db)
    report = reports.get_or_404(report_id)
    policy.require(policy.is_self(actor, report) or policy.is_admin(actor))

    if report.status != ReportStatus.DRAFT:
        raise ValidationError("Only draft reports can be submitted")

    reports.update(report, {"status": ReportStatus.SUBMITTED})
    reports.commit()
    logger.info("Report %s submitted", report.id)
    return reports.get(report.id)


def validate_report(db: Session, report_id: UUID, actor: User, now: datetime) -> MaraudeReport:
    reports = ReportRepository(db)
    report = reports.get_or_404(report_id)
    policy.require(policy.can_validate(actor, report))

    if report.status != ReportStatus.SUBMITTED:
        raise ValidationError("Only submitted reports can be validated")

    reports.update(report, {
        "status": ReportStatus.VALIDATED,
        "validated_by": actor.id,
        "validation_date": now,
    })
    reports.commit()
    logger.info("Report %s validated by %s", report.id, actor.id)
    return reports.get(report.id)


def delete_report(db: Session, report_id: UUID, actor: User) -> None:
    reports = ReportRepository(db)
    report = reports.get_or_404(report_id)

    if not policy.is_admin(actor):
        policy.require(policy.is_self(actor, report) or policy.is_coordinator_of_same_association(actor, report))
        if report.status == ReportStatus.VALIDATED:
            raise ForbiddenError("Cannot delete validated report")

    try:
        ReportAlertRepository(db).delete_for_report(report)
        ReportDistributionRepository(db).delete_for_report(report)
        reports.delete(report)
        reports.commit()
    except SQLAlchemyError:
        reports.rollback()
        raise
    logger.info("Report %s deleted by %s", report_id, actor.id)


def mark_email_sent(db: Session, report: MaraudeReport, recipients: List[str], now: datetime) -> MaraudeReport:
    reports = ReportRepository(db)
    reports.update(report, {
        "email_sent": True,
        "email_sent_at": now,
        "email_recipients": list(recipients),
    })
    reports.commit()
    return reports.get(report.id)

# ==================== COMPUTED FIELDS ====================

def report_duration_minutes(report: MaraudeReport) -> int:
    """Minutes between start and end time; an end before the start means past midnight."""
    start = timedelta(hours=report.start_time.hour, minutes=report.start_time.minute, seconds=report.start_time.second)
    end = timedelta(hours=report.end_time.hour, minutes=report.end_time.minute, seconds=report.end_time.second)
    if end < start:
        end += timedelta(days=1)
    return int((end - start).total_seconds() // 60)


def report_summary(report: MaraudeReport) -> Dict[str, Any]:
    return {
        "date": report.report_date.isoformat(),
        "beneficiaries": report.beneficiaries_count,
        "volunteers": report.volunteers_count,
        "duration": report_duration_minutes(report),
        "hasAlerts": report.has_urgent_situations,
    }


def report_stats(reports: List[MaraudeReport]) -> Dict[str, Any]:
    total_beneficiaries = sum(r.beneficiaries_count for r in reports)
    stats = {
        "totalReports": len(reports),
        "totalBeneficiaries": total_beneficiaries,
        "totalVolunteers": sum(r.volunteers_count for r in reports),
        "averageBeneficiariesPerMaraude": math.floor(total_beneficiaries / len(reports) + 0.5) if reports else 0,
        "distributions": {},
        "alertsCount": {"total": 0, "critical": 0, "high": 0, "medium": 0, "low": 0},
    }

    for report in reports:
        for dist in report.distributions:
            category = dist.distribution_type.category.value
            bucket = stats["distributions"].setdefault(category, {"total": 0, "items": {}})
            bucket["total"] += dist.quantity
            name = dist.distribution_type.name
            bucket["items"][name] = bucket["items"].get(name, 0) + dist.quantity
        for alert in report.alerts:
            stats["alertsCount"]["total"] += 1
            stats["alertsCount"][alert.severity.value] += 1

    return stats

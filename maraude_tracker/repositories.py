"""
Maraude Tracker - Entity Repositories
Typed data access for every persisted entity
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, joinedload, selectinload

from maraude_tracker.errors import ConflictError, NotFoundError
from maraude_tracker.models.db_models import (
    Association, User, MaraudeAction, Merchant, DistributionType,
    MaraudeReport, ReportDistribution, ReportAlert, ReportStatus
)
from maraude_tracker.services.schedule import iso_weekday

logger = logging.getLogger(__name__)


class Repository:
    """Data access bound to one model."""

    model = None
    not_found_message = "Not found"
    # Substring of a unique-violation message -> camelCase field it concerns
    unique_fields: Dict[str, str] = {}

    def __init__(self, db: Session):
        self.db = db

    def query(self) -> Query:
        return self.db.query(self.model)

    def get(self, id) -> Optional[Any]:
        return self.db.get(self.model, id)

    def get_or_404(self, id, message: Optional[str] = None):
        obj = self.get(id)
        if obj is None:
            raise NotFoundError(message or self.not_found_message)
        return obj

    def find_one(self, **filters) -> Optional[Any]:
        return self.query().filter_by(**filters).first()

    def list(self, query: Optional[Query] = None, order_by=None,
             limit: Optional[int] = None, offset: int = 0) -> Tuple[List[Any], int]:
        """Items for one page of ``query`` plus the total row count."""
        query = query if query is not None else self.query()
        total = query.order_by(None).count()
        if order_by is not None:
            query = query.order_by(*order_by) if isinstance(order_by, (list, tuple)) else query.order_by(order_by)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all(), total

    def add(self, obj):
        self.db.add(obj)
        return obj

    def create(self, **fields):
        return self.add(self.model(**fields))

    def update(self, obj, changes: Dict[str, Any]):
        for field, value in changes.items():
            setattr(obj, field, value)
        return obj

    def delete(self, obj) -> None:
        self.db.delete(obj)

    def flush(self) -> None:
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise self._conflict(e) from e

    def commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise self._conflict(e) from e

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, obj):
        self.db.refresh(obj)
        return obj

    def _conflict(self, exc: IntegrityError) -> Exception:
        message = str(exc.orig)
        for marker, field in self.unique_fields.items():
            if marker in message:
                return ConflictError(f"{field} already in use", details={field: "already in use"})
        logger.warning("Integrity error on %s: %s", self.model.__tablename__, message)
        return exc


def page_window(page: int, limit: int) -> Tuple[int, int]:
    """(limit, offset) for a 1-based page number."""
    page = max(page, 1)
    return limit, (page - 1) * limit

# ==================== ASSOCIATIONS ====================

class AssociationRepository(Repository):
    model = Association
    not_found_message = "Association not found"
    unique_fields = {"associations.email": "email", "ix_associations_email": "email"}

    def by_email(self, email: str) -> Optional[Association]:
        return self.query().filter(func.lower(Association.email) == email.lower()).first()

    def filtered(self, active: Optional[bool]) -> Query:
        query = self.query()
        if active is not None:
            query = query.filter(Association.is_active == active)
        return query

# ==================== USERS ====================

class UserRepository(Repository):
    model = User
    not_found_message = "User not found"
    unique_fields = {"users.email": "email", "ix_users_email": "email"}

    def query(self) -> Query:
        return self.db.query(User).options(joinedload(User.association))

    def by_email(self, email: str) -> Optional[User]:
        return self.query().filter(func.lower(User.email) == email.lower()).first()

    def filtered(self, association_id=None, role=None, active: Optional[bool] = None) -> Query:
        query = self.query()
        if association_id is not None:
            query = query.filter(User.association_id == association_id)
        if role is not None:
            query = query.filter(User.role == role)
        if active is not None:
            query = query.filter(User.is_active == active)
        return query

    def active_members(self, association_id) -> List[User]:
        return (
            self.filtered(association_id=association_id, active=True)
            .order_by(User.last_name, User.first_name)
            .all()
        )

# ==================== MARAUDE ACTIONS ====================

class MaraudeActionRepository(Repository):
    model = MaraudeAction
    not_found_message = "Maraude action not found"

    def query(self) -> Query:
        return self.db.query(MaraudeAction).options(
            joinedload(MaraudeAction.association),
            joinedload(MaraudeAction.creator),
        )

    def filtered(self, status=None, association_id=None, day_of_week: Optional[int] = None,
                 is_recurring: Optional[bool] = None, active: Optional[bool] = True,
                 created_by=None) -> Query:
        query = self.query()
        if status is not None:
            query = query.filter(MaraudeAction.status == status)
        if association_id is not None:
            query = query.filter(MaraudeAction.association_id == association_id)
        if day_of_week is not None:
            query = query.filter(MaraudeAction.day_of_week == day_of_week)
        if is_recurring is not None:
            query = query.filter(MaraudeAction.is_recurring == is_recurring)
        if active is not None:
            query = query.filter(MaraudeAction.is_active == active)
        if created_by is not None:
            query = query.filter(MaraudeAction.created_by == created_by)
        return query

    def active_today(self, today: date) -> List[MaraudeAction]:
        """Active actions scheduled on ``today``, by start time."""
        return (
            self.query()
            .filter(
                MaraudeAction.is_active == True,
                or_(
                    (MaraudeAction.is_recurring == True) & (MaraudeAction.day_of_week == iso_weekday(today)),
                    (MaraudeAction.is_recurring == False) & (MaraudeAction.scheduled_date == today),
                ),
            )
            .order_by(MaraudeAction.start_time)
            .all()
        )

    def recurring_active(self) -> List[MaraudeAction]:
        return (
            self.query()
            .filter(MaraudeAction.is_active == True, MaraudeAction.is_recurring == True)
            .order_by(MaraudeAction.day_of_week, MaraudeAction.start_time)
            .all()
        )

    def upcoming_for_association(self, association_id, today: date, limit: int = 10) -> List[MaraudeAction]:
        return (
            self.db.query(MaraudeAction)
            .filter(
                MaraudeAction.association_id == association_id,
                MaraudeAction.is_active == True,
                or_(MaraudeAction.is_recurring == True, MaraudeAction.scheduled_date >= today),
            )
            .order_by(MaraudeAction.day_of_week, MaraudeAction.scheduled_date, MaraudeAction.start_time)
            .limit(limit)
            .all()
        )

# ==================== MERCHANTS ====================

class MerchantRepository(Repository):
    model = Merchant
    not_found_message = "Merchant not found"

    def query(self) -> Query:
        return self.db.query(Merchant).options(joinedload(Merchant.added_by_user))

    def by_name_and_address(self, name: str, address: str) -> Optional[Merchant]:
        return (
            self.query()
            .filter(func.lower(Merchant.name) == name.lower(), func.lower(Merchant.address) == address.lower())
            .first()
        )

    def filtered(self, category=None, verified: Optional[bool] = None, active: Optional[bool] = True,
                 search: Optional[str] = None, bbox: Optional[Tuple[float, float, float, float]] = None) -> Query:
        query = self.query()
        if category is not None:
            query = query.filter(Merchant.category == category)
        if verified is not None:
            query = query.filter(Merchant.is_verified == verified)
        if active is not None:
            query = query.filter(Merchant.is_active == active)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(
                func.lower(Merchant.name).like(pattern),
                func.lower(Merchant.description).like(pattern),
            ))
        if bbox is not None:
            min_lat, max_lat, min_lng, max_lng = bbox
            query = query.filter(
                Merchant.latitude.between(min_lat, max_lat),
                Merchant.longitude.between(min_lng, max_lng),
            )
        return query

    def all_services(self) -> List[str]:
        services = set()
        for (tags,) in self.db.query(Merchant.services).filter(Merchant.is_active == True).all():
            services.update(tags or [])
        return sorted(services)

# ==================== DISTRIBUTION TYPES ====================

class DistributionTypeRepository(Repository):
    model = DistributionType
    not_found_message = "Distribution type not found"
    unique_fields = {"distribution_types.name": "name", "distribution_types_name": "name"}

    def by_name(self, name: str) -> Optional[DistributionType]:
        return self.query().filter(func.lower(DistributionType.name) == name.lower()).first()

    def active(self) -> List[DistributionType]:
        return (
            self.query()
            .filter(DistributionType.is_active == True)
            .order_by(DistributionType.category, DistributionType.name)
            .all()
        )

# ==================== REPORTS ====================

class ReportRepository(Repository):
    model = MaraudeReport
    not_found_message = "Report not found"
    unique_fields = {"uq_maraude_reports_action_date": "reportDate", "maraude_reports.report_date": "reportDate"}

    def query(self) -> Query:
        return self.db.query(MaraudeReport).options(
            joinedload(MaraudeReport.maraude_action).joinedload(MaraudeAction.association),
            joinedload(MaraudeReport.creator),
            joinedload(MaraudeReport.validator),
            selectinload(MaraudeReport.distributions).joinedload(ReportDistribution.distribution_type),
            selectinload(MaraudeReport.alerts),
        )

    def get(self, id) -> Optional[MaraudeReport]:
        return self.query().filter(MaraudeReport.id == id).first()

    def for_action_and_date(self, action_id, report_date: date, exclude_id=None) -> Optional[MaraudeReport]:
        query = self.query().filter(
            MaraudeReport.maraude_action_id == action_id,
            MaraudeReport.report_date == report_date,
        )
        if exclude_id is not None:
            query = query.filter(MaraudeReport.id != exclude_id)
        return query.first()

    def filtered(self, association_id=None, status: Optional[ReportStatus] = None,
                 start_date: Optional[date] = None, end_date: Optional[date] = None,
                 action_id=None, has_alerts: Optional[bool] = None) -> Query:
        query = self.query()
        if association_id is not None:
            query = query.join(MaraudeReport.maraude_action).filter(MaraudeAction.association_id == association_id)
        if status is not None:
            query = query.filter(MaraudeReport.status == status)
        if start_date is not None:
            query = query.filter(MaraudeReport.report_date >= start_date)
        if end_date is not None:
            query = query.filter(MaraudeReport.report_date <= end_date)
        if action_id is not None:
            query = query.filter(MaraudeReport.maraude_action_id == action_id)
        if has_alerts is not None:
            query = query.filter(MaraudeReport.has_urgent_situations == has_alerts)
        return query

    def count_for_association(self, association_id) -> int:
        return (
            self.db.query(func.count(MaraudeReport.id))
            .join(MaraudeReport.maraude_action)
            .filter(MaraudeAction.association_id == association_id)
            .scalar()
        ) or 0

    def count_by_creator(self, user_id) -> Dict[str, int]:
        rows = (
            self.db.query(MaraudeReport.status, func.count(MaraudeReport.id))
            .filter(MaraudeReport.created_by == user_id)
            .group_by(MaraudeReport.status)
            .all()
        )
        return {status.value: count for status, count in rows}


class ReportDistributionRepository(Repository):
    model = ReportDistribution

    def delete_for_report(self, report: MaraudeReport) -> int:
        count = (
            self.db.query(ReportDistribution)
            .filter(ReportDistribution.report_id == report.id)
            .delete(synchronize_session="fetch")
        )
        self.db.expire(report, ["distributions"])
        return count

    def add_many(self, report: MaraudeReport, items) -> List[ReportDistribution]:
        return [self.create(report_id=report.id, **item) for item in items]


class ReportAlertRepository(Repository):
    model = ReportAlert

    def delete_for_report(self, report: MaraudeReport) -> int:
        count = (
            self.db.query(ReportAlert)
            .filter(ReportAlert.report_id == report.id)
            .delete(synchronize_session="fetch")
        )
        self.db.expire(report, ["alerts"])
        return count

    def add_many(self, report: MaraudeReport, items) -> List[ReportAlert]:
        return [self.create(report_id=report.id, **item) for item in items]

"""
Maraude Tracker - SQLAlchemy Database Models
All tables with proper relationships and constraints
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Float, Time, Date,
    ForeignKey, Enum as SQLEnum, JSON, Uuid, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from maraude_tracker.database import Base
import uuid
import enum

# ==================== ENUMS ====================

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    VOLUNTEER = "volunteer"

class MaraudeStatus(str, enum.Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class MerchantCategory(str, enum.Enum):
    RESTAURANT = "restaurant"
    CAFE = "cafe"
    BAKERY = "bakery"
    PHARMACY = "pharmacy"
    CLOTHING_STORE = "clothing_store"
    SUPERMARKET = "supermarket"
    LAUNDROMAT = "laundromat"
    HEALTH_CENTER = "health_center"
    OTHER = "other"

class DistributionCategory(str, enum.Enum):
    MEAL = "meal"
    HYGIENE = "hygiene"
    CLOTHING = "clothing"
    MEDICAL = "medical"
    OTHER = "other"

class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VALIDATED = "validated"

class AlertType(str, enum.Enum):
    MEDICAL = "medical"
    SOCIAL = "social"
    SECURITY = "security"
    HOUSING = "housing"
    OTHER = "other"

class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _enum(enum_cls):
    # Store the lowercase values, not the member names
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20)

# ==================== ASSOCIATION MODEL ====================

class Association(Base):
    __tablename__ = "associations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    website = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    users = relationship("User", back_populates="association")
    maraude_actions = relationship("MaraudeAction", back_populates="association")

# ==================== USER MODEL ====================

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(_enum(UserRole), default=UserRole.VOLUNTEER, nullable=False)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    association_id = Column(Uuid, ForeignKey("associations.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    association = relationship("Association", back_populates="users")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

# ==================== MARAUDE ACTION MODEL ====================

class MaraudeAction(Base):
    __tablename__ = "maraude_actions"
    __table_args__ = (
        CheckConstraint(
            "(is_recurring AND day_of_week IS NOT NULL AND scheduled_date IS NULL) OR "
            "(NOT is_recurring AND scheduled_date IS NOT NULL AND day_of_week IS NULL)",
            name="ck_maraude_actions_recurrence",
        ),
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 1 AND day_of_week <= 7)",
            name="ck_maraude_actions_day_of_week",
        ),
        Index("ix_maraude_actions_recurring_active", "is_recurring", "is_active"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Route planning (opaque client-computed values)
    start_latitude = Column(Float, nullable=False)
    start_longitude = Column(Float, nullable=False)
    start_address = Column(Text, nullable=True)
    waypoints = Column(JSON, nullable=False, default=list)
    route_polyline = Column(Text, nullable=True)
    estimated_distance = Column(Float, nullable=True)  # km
    estimated_duration = Column(Integer, nullable=True)  # minutes

    # Scheduling
    day_of_week = Column(Integer, nullable=True, index=True)  # 1=Monday .. 7=Sunday
    is_recurring = Column(Boolean, default=True, nullable=False)
    scheduled_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=True)

    # Tracking
    status = Column(_enum(MaraudeStatus), default=MaraudeStatus.PLANNED, nullable=False, index=True)
    participants_count = Column(Integer, default=0, nullable=False)
    beneficiaries_helped = Column(Integer, default=0, nullable=False)
    materials_distributed = Column(JSON, nullable=True, default=dict)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    association_id = Column(Uuid, ForeignKey("associations.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    association = relationship("Association", back_populates="maraude_actions")
    creator = relationship("User", foreign_keys=[created_by])
    reports = relationship("MaraudeReport", back_populates="maraude_action")

# ==================== MERCHANT MODEL ====================

class Merchant(Base):
    __tablename__ = "merchants"
    __table_args__ = (
        Index("ix_merchants_active_verified", "is_active", "is_verified"),
        Index("ix_merchants_location", "latitude", "longitude"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(_enum(MerchantCategory), nullable=False, index=True)
    services = Column(JSON, nullable=False, default=list)  # e.g. ["free_coffee", "shower", "wifi"]
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    website = Column(String(255), nullable=True)
    opening_hours = Column(JSON, nullable=True, default=dict)  # {"monday": "09:00-18:00", ...}
    special_instructions = Column(Text, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    contact_person = Column(String(255), nullable=True)
    added_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationship
    added_by_user = relationship("User", foreign_keys=[added_by])

# ==================== DISTRIBUTION TYPE (Reference Data) ====================

class DistributionType(Base):
    __tablename__ = "distribution_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    category = Column(_enum(DistributionCategory), nullable=False)
    icon = Column(String(50), nullable=True)
    color = Column(String(7), nullable=True)  # "#RRGGBB"
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

# ==================== REPORT MODELS ====================

class MaraudeReport(Base):
    __tablename__ = "maraude_reports"
    __table_args__ = (
        UniqueConstraint("maraude_action_id", "report_date", name="uq_maraude_reports_action_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    maraude_action_id = Column(Uuid, ForeignKey("maraude_actions.id"), nullable=False, index=True)
    report_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    beneficiaries_count = Column(Integer, default=0, nullable=False)
    volunteers_count = Column(Integer, default=0, nullable=False)
    general_notes = Column(Text, nullable=True)
    difficulties_encountered = Column(Text, nullable=True)
    positive_points = Column(Text, nullable=True)
    has_urgent_situations = Column(Boolean, default=False, nullable=False)
    urgent_situations_details = Column(Text, nullable=True)

    status = Column(_enum(ReportStatus), default=ReportStatus.DRAFT, nullable=False, index=True)
    email_sent = Column(Boolean, default=False, nullable=False)
    email_sent_at = Column(DateTime(timezone=True), nullable=True)
    email_recipients = Column(JSON, nullable=True, default=list)

    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    validated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    validation_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    maraude_action = relationship("MaraudeAction", back_populates="reports")
    creator = relationship("User", foreign_keys=[created_by])
    validator = relationship("User", foreign_keys=[validated_by])
    distributions = relationship("ReportDistribution", back_populates="report", order_by="ReportDistribution.created_at")
    alerts = relationship("ReportAlert", back_populates="report", order_by="ReportAlert.created_at")

    @property
    def association_id(self):
        return self.maraude_action.association_id if self.maraude_action else None


class ReportDistribution(Base):
    __tablename__ = "report_distributions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id = Column(Uuid, ForeignKey("maraude_reports.id"), nullable=False, index=True)
    distribution_type_id = Column(Uuid, ForeignKey("distribution_types.id"), nullable=False)
    quantity = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    report = relationship("MaraudeReport", back_populates="distributions")
    distribution_type = relationship("DistributionType")


class ReportAlert(Base):
    __tablename__ = "report_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id = Column(Uuid, ForeignKey("maraude_reports.id"), nullable=False, index=True)
    alert_type = Column(_enum(AlertType), nullable=False)
    severity = Column(_enum(AlertSeverity), nullable=False)

    # Location (optional)
    location_latitude = Column(Float, nullable=True)
    location_longitude = Column(Float, nullable=True)
    location_address = Column(Text, nullable=True)

    # Details
    person_description = Column(Text, nullable=True)
    situation_description = Column(Text, nullable=False)
    action_taken = Column(Text, nullable=True)
    follow_up_required = Column(Boolean, default=False, nullable=False)
    follow_up_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationship
    report = relationship("MaraudeReport", back_populates="alerts")

from pydantic import BaseModel, ConfigDict, EmailStr, Field, BeforeValidator, field_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Dict, List, Optional
from datetime import datetime, date, time
from uuid import UUID

from maraude_tracker.models.db_models import (
    UserRole, MaraudeStatus, MerchantCategory, DistributionCategory,
    ReportStatus, AlertType, AlertSeverity
)

#----------------------------------------------------------
# FIELD NORMALIZATION

def _blank_to_none(value: Any) -> Any:
    """Strip strings and turn empty ones into None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


OptionalStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]
OptionalTime = Annotated[Optional[time], BeforeValidator(_blank_to_none)]
OptionalDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]
Phone = Annotated[Optional[Annotated[str, Field(min_length=10, max_length=20)]], BeforeValidator(_blank_to_none)]
HexColor = Annotated[Optional[Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]], BeforeValidator(_blank_to_none)]
Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _check_website(value: Optional[str]) -> Optional[str]:
    if value and not (value.lower().startswith("http://") or value.lower().startswith("https://")):
        raise ValueError("Website must be a valid URL (http:// or https://)")
    return value


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if limit else 0)

#----------------------------------------------------------
# BRIEF (NESTED) SCHEMAS

class AssociationBrief(CamelModel):
    id: UUID
    name: str


class UserBrief(CamelModel):
    id: UUID
    first_name: str
    last_name: str

#----------------------------------------------------------
# ASSOCIATION SCHEMAS

class AssociationCreate(CamelModel):
    name: Annotated[str, Field(min_length=2, max_length=100)]
    description: OptionalStr = None
    email: EmailStr
    phone: Phone = None
    address: OptionalStr = None
    website: OptionalStr = None

    @field_validator("website")
    @classmethod
    def website_is_url(cls, value):
        return _check_website(value)


class AssociationUpdate(CamelModel):
    name: Annotated[Optional[str], Field(min_length=2, max_length=100)] = None
    description: OptionalStr = None
    email: Optional[EmailStr] = None
    phone: Phone = None
    address: OptionalStr = None
    website: OptionalStr = None
    is_active: Optional[bool] = None

    @field_validator("website")
    @classmethod
    def website_is_url(cls, value):
        return _check_website(value)


class AssociationResponse(CamelModel):
    id: UUID
    name: str
    description: Optional[str] = None
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class MemberResponse(CamelModel):
    id: UUID
    first_name: str
    last_name: str
    role: UserRole
    is_active: bool


class UpcomingActionResponse(CamelModel):
    id: UUID
    title: str
    scheduled_date: Optional[date] = None
    day_of_week: Optional[int] = None
    status: MaraudeStatus


class AssociationDetail(AssociationResponse):
    members: List[MemberResponse] = []
    upcoming_actions: List[UpcomingActionResponse] = []

#----------------------------------------------------------
# AUTH / USER SCHEMAS

class UserCreate(CamelModel):
    first_name: Annotated[str, Field(min_length=1, max_length=50)]
    last_name: Annotated[str, Field(min_length=1, max_length=50)]
    email: EmailStr
    password: Annotated[str, Field(min_length=6, max_length=255)]
    association_id: UUID
    role: UserRole = UserRole.VOLUNTEER
    phone: Phone = None

    @field_validator("role")
    @classmethod
    def role_not_admin(cls, value):
        if value == UserRole.ADMIN:
            raise ValueError("Role must be volunteer or coordinator")
        return value


class LoginUser(CamelModel):
    email: EmailStr
    password: str


class UserResponse(CamelModel):
    id: UUID
    first_name: str
    last_name: str
    email: EmailStr
    role: UserRole
    phone: Optional[str] = None
    is_active: bool
    association_id: UUID
    association: Optional[AssociationBrief] = None
    created_at: Optional[datetime] = None


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserUpdate(CamelModel):
    first_name: Annotated[Optional[str], Field(min_length=1, max_length=50)] = None
    last_name: Annotated[Optional[str], Field(min_length=1, max_length=50)] = None
    email: Optional[EmailStr] = None
    phone: Phone = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class PasswordChange(CamelModel):
    current_password: str
    new_password: Annotated[str, Field(min_length=6, max_length=255)]

#----------------------------------------------------------
# MARAUDE SCHEMAS

class Waypoint(CamelModel):
    lat: Latitude
    lng: Longitude
    address: OptionalStr = None
    name: OptionalStr = None
    order: int = 0


class MaraudeCreate(CamelModel):
    title: Annotated[str, Field(min_length=3, max_length=100)]
    description: OptionalStr = None
    start_latitude: Latitude
    start_longitude: Longitude
    start_address: OptionalStr = None
    waypoints: List[Waypoint] = []
    route_polyline: OptionalStr = None
    estimated_distance: Annotated[Optional[float], Field(ge=0)] = None
    estimated_duration: Annotated[Optional[int], Field(ge=0)] = None
    day_of_week: Annotated[Optional[int], Field(ge=1, le=7)] = None
    is_recurring: bool = True
    scheduled_date: OptionalDate = None
    start_time: time
    end_time: OptionalTime = None
    participants_count: Annotated[int, Field(ge=0)] = 0
    notes: OptionalStr = None
    association_id: Optional[UUID] = None  # honoured for admins only


class MaraudeUpdate(CamelModel):
    title: Annotated[Optional[str], Field(min_length=3, max_length=100)] = None
    description: OptionalStr = None
    start_latitude: Optional[Latitude] = None
    start_longitude: Optional[Longitude] = None
    start_address: OptionalStr = None
    waypoints: Optional[List[Waypoint]] = None
    route_polyline: OptionalStr = None
    estimated_distance: Annotated[Optional[float], Field(ge=0)] = None
    estimated_duration: Annotated[Optional[int], Field(ge=0)] = None
    day_of_week: Annotated[Optional[int], Field(ge=1, le=7)] = None
    is_recurring: Optional[bool] = None
    scheduled_date: OptionalDate = None
    start_time: Optional[time] = None
    end_time: OptionalTime = None
    status: Optional[MaraudeStatus] = None
    participants_count: Annotated[Optional[int], Field(ge=0)] = None
    beneficiaries_helped: Annotated[Optional[int], Field(ge=0)] = None
    materials_distributed: Optional[Dict[str, Any]] = None
    notes: OptionalStr = None
    is_active: Optional[bool] = None


class MaraudeResponse(CamelModel):
    id: UUID
    title: str
    description: Optional[str] = None
    start_latitude: float
    start_longitude: float
    start_address: Optional[str] = None
    waypoints: List[Waypoint] = []
    route_polyline: Optional[str] = None
    estimated_distance: Optional[float] = None
    estimated_duration: Optional[int] = None
    day_of_week: Optional[int] = None
    is_recurring: bool
    scheduled_date: Optional[date] = None
    start_time: time
    end_time: Optional[time] = None
    status: MaraudeStatus
    participants_count: int = 0
    beneficiaries_helped: int = 0
    materials_distributed: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    is_active: bool
    created_by: UUID
    association_id: UUID
    association: Optional[AssociationBrief] = None
    creator: Optional[UserBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Computed by the schedule engine
    next_occurrence: Optional[date] = None
    is_happening_today: bool = False
    day_name: str = ""

    @field_validator("waypoints", mode="before")
    @classmethod
    def sort_waypoints(cls, value):
        if isinstance(value, list):
            return sorted(value, key=lambda w: (w.get("order", 0) if isinstance(w, dict) else w.order))
        return value or []


class MaraudeListResponse(CamelModel):
    actions: List[MaraudeResponse]
    pagination: Pagination


class TodayActiveResponse(CamelModel):
    actions: List[MaraudeResponse]
    count: int
    day: date = Field(alias="date")
    current_day_of_week: int
    current_day_name: str


class DayInfo(CamelModel):
    value: int
    name: str
    short: str


class WeeklyScheduleResponse(CamelModel):
    weekly_schedule: Dict[int, List[MaraudeResponse]]
    days: List[DayInfo]

#----------------------------------------------------------
# MERCHANT SCHEMAS

class MerchantCreate(CamelModel):
    name: Annotated[str, Field(min_length=2, max_length=100)]
    description: OptionalStr = None
    category: MerchantCategory
    services: List[str] = []
    latitude: Latitude
    longitude: Longitude
    address: Annotated[str, Field(min_length=1, max_length=255)]
    phone: Phone = None
    email: OptionalEmail = None
    website: OptionalStr = None
    opening_hours: Optional[Dict[str, Any]] = None
    special_instructions: OptionalStr = None
    contact_person: OptionalStr = None

    @field_validator("website")
    @classmethod
    def website_is_url(cls, value):
        return _check_website(value)


class MerchantUpdate(CamelModel):
    name: Annotated[Optional[str], Field(min_length=2, max_length=100)] = None
    description: OptionalStr = None
    category: Optional[MerchantCategory] = None
    services: Optional[List[str]] = None
    latitude: Optional[Latitude] = None
    longitude: Optional[Longitude] = None
    address: OptionalStr = None
    phone: Phone = None
    email: OptionalEmail = None
    website: OptionalStr = None
    opening_hours: Optional[Dict[str, Any]] = None
    special_instructions: OptionalStr = None
    contact_person: OptionalStr = None
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("website")
    @classmethod
    def website_is_url(cls, value):
        return _check_website(value)


class MerchantResponse(CamelModel):
    id: UUID
    name: str
    description: Optional[str] = None
    category: MerchantCategory
    services: List[str] = []
    latitude: float
    longitude: float
    address: str
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[Dict[str, Any]] = None
    special_instructions: Optional[str] = None
    is_verified: bool
    is_active: bool
    contact_person: Optional[str] = None
    added_by: Optional[UUID] = None
    added_by_user: Optional[UserBrief] = None
    created_at: Optional[datetime] = None

#----------------------------------------------------------
# DISTRIBUTION TYPE SCHEMAS

class DistributionTypeCreate(CamelModel):
    name: Annotated[str, Field(min_length=1, max_length=100)]
    category: DistributionCategory
    icon: OptionalStr = None
    color: HexColor = None
    is_active: bool = True


class DistributionTypeUpdate(CamelModel):
    name: Annotated[Optional[str], Field(min_length=1, max_length=100)] = None
    category: Optional[DistributionCategory] = None
    icon: OptionalStr = None
    color: HexColor = None
    is_active: Optional[bool] = None


class DistributionTypeResponse(CamelModel):
    id: UUID
    name: str
    category: DistributionCategory
    icon: Optional[str] = None
    color: Optional[str] = None
    is_active: bool

#----------------------------------------------------------
# REPORT SCHEMAS

class DistributionInput(CamelModel):
    distribution_type_id: UUID
    quantity: Annotated[int, Field(ge=0)] = 0
    notes: OptionalStr = None


class AlertInput(CamelModel):
    alert_type: AlertType
    severity: AlertSeverity
    location_latitude: Optional[Latitude] = None
    location_longitude: Optional[Longitude] = None
    location_address: OptionalStr = None
    person_description: OptionalStr = None
    situation_description: Annotated[str, BeforeValidator(_blank_to_none)]
    action_taken: OptionalStr = None
    follow_up_required: bool = False
    follow_up_notes: OptionalStr = None


class ReportCreate(CamelModel):
    maraude_action_id: UUID
    report_date: date
    start_time: time
    end_time: time
    beneficiaries_count: Annotated[int, Field(ge=0)] = 0
    volunteers_count: Annotated[int, Field(ge=0)] = 0
    general_notes: OptionalStr = None
    difficulties_encountered: OptionalStr = None
    positive_points: OptionalStr = None
    urgent_situations_details: OptionalStr = None
    distributions: List[DistributionInput] = []
    alerts: List[AlertInput] = []


class ReportUpdate(CamelModel):
    report_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    beneficiaries_count: Annotated[Optional[int], Field(ge=0)] = None
    volunteers_count: Annotated[Optional[int], Field(ge=0)] = None
    general_notes: OptionalStr = None
    difficulties_encountered: OptionalStr = None
    positive_points: OptionalStr = None
    urgent_situations_details: OptionalStr = None
    distributions: Optional[List[DistributionInput]] = None
    alerts: Optional[List[AlertInput]] = None


class ReportActionBrief(CamelModel):
    id: UUID
    title: str
    start_address: Optional[str] = None
    association_id: UUID
    association: Optional[AssociationBrief] = None


class DistributionResponse(CamelModel):
    id: UUID
    distribution_type_id: UUID
    distribution_type: Optional[DistributionTypeResponse] = None
    quantity: int
    notes: Optional[str] = None


class AlertResponse(CamelModel):
    id: UUID
    alert_type: AlertType
    severity: AlertSeverity
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None
    location_address: Optional[str] = None
    person_description: Optional[str] = None
    situation_description: str
    action_taken: Optional[str] = None
    follow_up_required: bool
    follow_up_notes: Optional[str] = None


class ReportResponse(CamelModel):
    id: UUID
    maraude_action_id: UUID
    maraude_action: Optional[ReportActionBrief] = None
    report_date: date
    start_time: time
    end_time: time
    beneficiaries_count: int
    volunteers_count: int
    general_notes: Optional[str] = None
    difficulties_encountered: Optional[str] = None
    positive_points: Optional[str] = None
    has_urgent_situations: bool
    urgent_situations_details: Optional[str] = None
    status: ReportStatus
    email_sent: bool
    email_sent_at: Optional[datetime] = None
    email_recipients: Optional[List[str]] = None
    created_by: UUID
    creator: Optional[UserBrief] = None
    validated_by: Optional[UUID] = None
    validator: Optional[UserBrief] = None
    validation_date: Optional[datetime] = None
    distributions: List[DistributionResponse] = []
    alerts: List[AlertResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Computed on detail views
    duration: Optional[int] = None
    summary: Optional[Dict[str, Any]] = None


class ReportListResponse(CamelModel):
    reports: List[ReportResponse]
    pagination: Pagination


class SendEmailRequest(CamelModel):
    recipients: List[EmailStr] = []
    subject: OptionalStr = None
    message: OptionalStr = None


class MessageResponse(CamelModel):
    message: str

#----------------------------------------------------------
# LIST ENVELOPES

class AssociationListResponse(CamelModel):
    associations: List[AssociationResponse]
    pagination: Pagination


class UserListResponse(CamelModel):
    users: List[UserResponse]
    pagination: Pagination


class MerchantListResponse(CamelModel):
    merchants: List[MerchantResponse]
    pagination: Pagination

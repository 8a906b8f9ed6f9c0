"""
Maraude Tracker - Merchant Routes
Directory of partner merchants offering services to beneficiaries
"""
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from uuid import UUID
import logging
import math

from maraude_tracker.database import get_db
from maraude_tracker.errors import ConflictError, ForbiddenError
from maraude_tracker.models.db_models import Merchant, MerchantCategory, User, UserRole
from maraude_tracker.models.schemas import (
    MerchantCreate, MerchantUpdate, MerchantResponse, MerchantListResponse, MessageResponse, Pagination
)
from maraude_tracker.auth import policy
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.repositories import MerchantRepository
from maraude_tracker.routes.params import PageParams, active_filter

router = APIRouter(prefix="/api/merchants", tags=["Merchants"])
logger = logging.getLogger(__name__)

KNOWN_SERVICES = [
    "free_coffee",
    "free_meal",
    "shower",
    "restroom",
    "wifi",
    "phone_charging",
    "clothing_donation",
    "hygiene_kit",
    "first_aid",
    "information",
    "temporary_shelter",
    "food_distribution",
    "medical_consultation",
]

KM_PER_DEGREE = 111.0


def bounding_box(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) of a square around a point."""
    lat_delta = radius_km / KM_PER_DEGREE
    lng_delta = radius_km / (KM_PER_DEGREE * max(math.cos(math.radians(lat)), 1e-6))
    return lat - lat_delta, lat + lat_delta, lng - lng_delta, lng + lng_delta


def _parse_services(services: Optional[str]) -> List[str]:
    if not services:
        return []
    return [s.strip() for s in services.split(",") if s.strip()]


def _offers_any(merchant: Merchant, wanted: List[str]) -> bool:
    return bool(set(merchant.services or []) & set(wanted))


# ==================== READS ====================

@router.get("", response_model=MerchantListResponse)
async def list_merchants(
    pages: PageParams = Depends(),
    category: Optional[MerchantCategory] = None,
    services: Optional[str] = Query(None, description="Comma separated service tags"),
    verified: Optional[bool] = None,
    active: Optional[bool] = Depends(active_filter),
    search: Optional[str] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, gt=0, description="Kilometres"),
    db: Session = Depends(get_db)
):
    repo = MerchantRepository(db)
    bbox = bounding_box(lat, lng, radius) if lat is not None and lng is not None else None
    query = repo.filtered(category=category, verified=verified, active=active, search=search, bbox=bbox)
    limit, offset = pages.window

    wanted = _parse_services(services)
    if wanted:
        # JSON tag lists are matched in Python so the filter works on every backend
        matching = [m for m in query.order_by(Merchant.name).all() if _offers_any(m, wanted)]
        items, total = matching[offset:offset + limit], len(matching)
    else:
        items, total = repo.list(query, order_by=Merchant.name, limit=limit, offset=offset)

    return MerchantListResponse(
        merchants=[MerchantResponse.model_validate(m) for m in items],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/categories/list")
async def list_categories():
    return {"categories": [c.value for c in MerchantCategory]}


@router.get("/services/list")
async def list_services(db: Session = Depends(get_db)):
    """Known service tags plus any tag already used by a merchant"""
    extra = [s for s in MerchantRepository(db).all_services() if s not in KNOWN_SERVICES]
    return {"services": KNOWN_SERVICES + extra}


@router.get("/nearby/{lat}/{lng}")
async def nearby_merchants(
    lat: float = Path(..., ge=-90, le=90),
    lng: float = Path(..., ge=-180, le=180),
    radius: float = Query(5, gt=0, description="Kilometres"),
    category: Optional[MerchantCategory] = None,
    services: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Verified, active merchants inside a bounding box around a point"""
    query = MerchantRepository(db).filtered(
        category=category, verified=True, active=True, bbox=bounding_box(lat, lng, radius)
    )
    merchants = query.order_by(Merchant.name).all()
    wanted = _parse_services(services)
    if wanted:
        merchants = [m for m in merchants if _offers_any(m, wanted)]
    merchants = merchants[:50]

    return {
        "merchants": [MerchantResponse.model_validate(m).model_dump(mode="json", by_alias=True) for m in merchants],
        "location": {"lat": lat, "lng": lng},
        "radius": radius,
        "count": len(merchants),
    }


@router.get("/{merchant_id}", response_model=MerchantResponse)
async def get_merchant(merchant_id: UUID, db: Session = Depends(get_db)):
    return MerchantRepository(db).get_or_404(merchant_id)

# ==================== WRITES ====================

@router.post("", response_model=MerchantResponse, status_code=status.HTTP_201_CREATED)
async def create_merchant(
    payload: MerchantCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Add a merchant; new entries start unverified"""
    repo = MerchantRepository(db)
    if repo.by_name_and_address(payload.name, payload.address):
        raise ConflictError("A merchant with this name and address already exists")

    merchant = repo.create(
        **payload.model_dump(),
        is_verified=False,
        is_active=True,
        added_by=current_user.id,
    )
    repo.commit()
    logger.info("Merchant %s added by %s", merchant.id, current_user.id)
    return repo.get(merchant.id)


@router.put("/{merchant_id}", response_model=MerchantResponse)
async def update_merchant(
    merchant_id: UUID,
    payload: MerchantUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repo = MerchantRepository(db)
    merchant = repo.get_or_404(merchant_id)
    policy.require(policy.is_self(current_user, merchant) or policy.can_manage(current_user))

    changes = payload.model_dump(exclude_unset=True)
    changes = {
        k: v for k, v in changes.items()
        if v is not None or k not in ("name", "category", "services", "latitude", "longitude",
                                      "address", "is_verified", "is_active")
    }
    if "is_verified" in changes and not policy.is_admin(current_user):
        raise ForbiddenError("Only admins can verify merchants")
    if "is_active" in changes and not policy.can_manage(current_user):
        raise ForbiddenError("Only coordinators and admins can change the active status")

    repo.update(merchant, changes)
    repo.commit()
    return repo.get(merchant.id)


@router.delete("/{merchant_id}", response_model=MessageResponse)
async def delete_merchant(
    merchant_id: UUID,
    current_user: User = Depends(policy.require_roles(UserRole.COORDINATOR, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    repo = MerchantRepository(db)
    merchant = repo.get_or_404(merchant_id)
    repo.delete(merchant)
    repo.commit()
    logger.info("Merchant %s deleted by %s", merchant_id, current_user.id)
    return MessageResponse(message="Merchant deleted successfully")


@router.post("/{merchant_id}/verify", response_model=MerchantResponse)
async def verify_merchant(
    merchant_id: UUID,
    current_user: User = Depends(policy.require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    repo = MerchantRepository(db)
    merchant = repo.get_or_404(merchant_id)
    repo.update(merchant, {"is_verified": True})
    repo.commit()
    logger.info("Merchant %s verified by %s", merchant.id, current_user.id)
    return repo.get(merchant.id)

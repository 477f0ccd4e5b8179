"""API endpoints for promotional schemes."""
from typing import Optional, List
from uuid import UUID
from dataclasses import asdict
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Query, status

from app.schemas.scheme import (
    SchemeCreate, SchemeResponse,
    SchemeBonusRequest, SchemeBonusResponse, SchemeQualificationResponse,
)
from app.api.deps import Schemes
from app.services.scheme_service import calculate_scheme_bonus


router = APIRouter()


@router.post("", response_model=SchemeResponse, status_code=status.HTTP_201_CREATED)
async def create_scheme(
    scheme_in: SchemeCreate,
    service: Schemes,
):
    """Create a scheme."""
    data = scheme_in.model_dump()
    data["scheme_type"] = scheme_in.scheme_type.value
    return await service.create_scheme(data)


@router.get("/active", response_model=List[SchemeResponse])
async def list_active_schemes(
    service: Schemes,
    company_id: Optional[UUID] = None,
    on_date: Optional[date] = None,
):
    """Schemes active on a date (default today)."""
    return await service.get_active_schemes(company_id, on_date)


@router.post("/bonus", response_model=SchemeBonusResponse)
async def calculate_bonus(request: SchemeBonusRequest):
    """Bonus quantity for a quantity under a BUY+BONUS format."""
    bonus = calculate_scheme_bonus(request.quantity, request.scheme_format)
    return SchemeBonusResponse(**asdict(bonus))


@router.get("/{scheme_id}", response_model=SchemeResponse)
async def get_scheme(
    scheme_id: UUID,
    service: Schemes,
):
    return await service.get_scheme(scheme_id)


@router.get("/{scheme_id}/qualification", response_model=SchemeQualificationResponse)
async def check_qualification(
    scheme_id: UUID,
    service: Schemes,
    item_id: str = Query(..., min_length=1),
    quantity: Decimal = Query(..., ge=0),
    customer_id: Optional[UUID] = None,
    on_date: Optional[date] = None,
):
    """Explain whether an item/customer/quantity qualifies for a scheme."""
    return await service.check_scheme_qualification(
        scheme_id, item_id, customer_id, quantity, on_date
    )

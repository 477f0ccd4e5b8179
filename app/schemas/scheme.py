"""Pydantic schemas for promotional schemes."""
from datetime import datetime, date
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, OptionalUUID
from app.models.scheme import SchemeType
from app.services.scheme_service import SCHEME_FORMAT_PATTERN


class SchemeCreate(BaseCreateSchema):
    """Schema for creating a scheme."""
    name: str = Field(..., min_length=1, max_length=100)
    scheme_type: SchemeType
    company_id: OptionalUUID = None
    group: Optional[str] = Field(None, max_length=50)
    scheme_format: str = Field(..., max_length=50, description='e.g. "12+1"')
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    discount2_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    to2_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    claim_account_id: OptionalUUID = None
    is_active: bool = True
    description: Optional[str] = Field(None, max_length=500)
    start_date: date
    end_date: date
    applicable_items: List[str] = []
    applicable_customers: List[UUID] = []
    minimum_quantity: Decimal = Field(Decimal("0"), ge=0)
    maximum_quantity: Decimal = Field(Decimal("0"), ge=0, description="0 = unlimited")

    @field_validator("scheme_format")
    @classmethod
    def validate_scheme_format(cls, v):
        if not SCHEME_FORMAT_PATTERN.search(v):
            raise ValueError("Scheme format must look like BUY+BONUS, e.g. 12+1")
        return v

    @model_validator(mode="after")
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class SchemeResponse(BaseResponseSchema):
    id: UUID
    name: str
    scheme_type: str
    company_id: Optional[UUID] = None
    group: Optional[str] = None
    scheme_format: str
    discount_percent: Decimal
    discount2_percent: Decimal
    to2_percent: Decimal
    claim_account_id: Optional[UUID] = None
    is_active: bool
    description: Optional[str] = None
    start_date: date
    end_date: date
    applicable_items: List[str] = []
    applicable_customers: List[str] = []
    minimum_quantity: Decimal
    maximum_quantity: Decimal
    created_at: datetime


class SchemeBonusRequest(BaseModel):
    quantity: Optional[Decimal] = Field(None, ge=0)
    scheme_format: str = Field(..., max_length=50)


class SchemeBonusResponse(BaseModel):
    scheme_format: str
    purchased_quantity: Decimal
    buy_quantity: int
    free_quantity: int
    complete_sets: int
    bonus_quantity: int
    total_quantity: Decimal


class SchemeQualificationResponse(BaseModel):
    scheme_id: UUID
    scheme_name: str
    qualifies: bool
    reasons: List[str] = []
    scheme_format: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    bonus_quantity: Optional[int] = None

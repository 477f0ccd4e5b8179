"""Pydantic schemas for sales, purchase and return invoices."""
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema, OptionalUUID

from app.models.invoice import InvoiceType, GST_RATES


# ==================== Invoice Item Schemas ====================

class InvoiceItemCreate(BaseCreateSchema):
    """Schema for creating an invoice line."""
    item_id: str = Field(..., min_length=1, max_length=64)
    item_name: Optional[str] = Field(None, max_length=300)
    batch_number: Optional[str] = Field(None, max_length=50)
    batch_expiry_date: Optional[date] = None

    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)

    # Box / unit split pricing
    box_quantity: Decimal = Field(Decimal("0"), ge=0)
    unit_quantity: Decimal = Field(Decimal("0"), ge=0)
    box_rate: Decimal = Field(Decimal("0"), ge=0)
    unit_rate: Decimal = Field(Decimal("0"), ge=0)

    gst_rate: Decimal = Field(Decimal("18"))

    # Tiered discounts
    discount1_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    discount1_amount: Decimal = Field(Decimal("0"), ge=0)
    discount2_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    discount2_amount: Decimal = Field(Decimal("0"), ge=0)

    scheme_quantity: Decimal = Field(Decimal("0"), ge=0, description="Free quantity (purchase only)")

    @field_validator("gst_rate")
    @classmethod
    def validate_gst_rate(cls, v):
        if v not in GST_RATES:
            raise ValueError("GST rate must be 0, 4 or 18")
        return v


class InvoiceItemResponse(BaseResponseSchema):
    """Response schema for an invoice line including derived amounts."""
    id: UUID
    line_number: int
    item_id: str
    item_name: Optional[str] = None
    batch_number: Optional[str] = None
    batch_expiry_date: Optional[date] = None
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    box_quantity: Decimal
    unit_quantity: Decimal
    box_rate: Decimal
    unit_rate: Decimal
    gst_rate: Decimal
    discount1_percent: Decimal
    discount1_amount: Decimal
    discount2_percent: Decimal
    discount2_amount: Decimal
    scheme1_quantity: Decimal
    scheme2_quantity: Decimal
    scheme_quantity: Decimal
    carton_qty: int
    item_subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    gst_amount: Decimal
    advance_tax_percent: Decimal
    advance_tax_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal


# ==================== Invoice Schemas ====================

class ReturnMetadata(BaseModel):
    """Stored as JSON on the invoice; dump with by_alias=True."""
    model_config = ConfigDict(populate_by_name=True)

    reason: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = None
    return_date: Optional[date] = Field(None, alias="date")


class InvoiceBase(BaseCreateSchema):
    """Fields shared by create and dry-run calculation requests."""
    invoice_type: InvoiceType
    company_id: OptionalUUID = None
    customer_id: OptionalUUID = None
    supplier_id: OptionalUUID = None

    # Trade offers: percent > 0 recomputes the amount, else the amount is kept
    to1_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    to1_amount: Decimal = Field(Decimal("0"), ge=0)
    to2_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    to2_amount: Decimal = Field(Decimal("0"), ge=0)

    income_tax_base: Optional[Decimal] = Field(None, description="Amount to charge 5.5% income tax on")

    apply_schemes: bool = Field(False, description="Auto-apply active schemes to the lines")


class InvoiceCreate(InvoiceBase):
    """Schema for creating an invoice."""
    invoice_date: date
    due_date: Optional[date] = Field(None, description="Defaults to invoice date + party payment terms")
    expiry_date: Optional[date] = None

    supplier_bill_number: Optional[str] = Field(None, max_length=100)
    original_invoice_id: OptionalUUID = None
    return_metadata: Optional[ReturnMetadata] = None
    notes: Optional[str] = None

    items: List[InvoiceItemCreate] = Field(..., min_length=1)


class InvoiceCalculateRequest(InvoiceBase):
    """Dry-run totals request; nothing is saved."""
    invoice_date: Optional[date] = None
    items: List[InvoiceItemCreate] = Field(..., min_length=1)


class InvoiceUpdate(BaseUpdateSchema):
    """Schema for updating a draft or confirmed invoice."""
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    expiry_date: Optional[date] = None
    supplier_bill_number: Optional[str] = Field(None, max_length=100)
    to1_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    to1_amount: Optional[Decimal] = Field(None, ge=0)
    to2_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    to2_amount: Optional[Decimal] = Field(None, ge=0)
    income_tax_base: Optional[Decimal] = None
    notes: Optional[str] = None
    return_metadata: Optional[ReturnMetadata] = None
    original_invoice_id: OptionalUUID = None
    items: Optional[List[InvoiceItemCreate]] = Field(None, min_length=1)
    apply_schemes: bool = False


class InvoiceCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class InvoiceResponse(BaseResponseSchema):
    """Full invoice with lines, totals and balance snapshot."""
    id: UUID
    invoice_number: str
    invoice_type: str
    status: str
    payment_status: str
    company_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    supplier_bill_number: Optional[str] = None
    original_invoice_id: Optional[UUID] = None
    return_metadata: Optional[Dict[str, Any]] = None

    invoice_date: date
    due_date: date
    expiry_date: Optional[date] = None
    days_until_due: int
    is_overdue: bool

    to1_percent: Decimal
    to1_amount: Decimal
    to2_percent: Decimal
    to2_amount: Decimal
    income_tax_base: Optional[Decimal] = None
    income_tax: Decimal

    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    grand_total: Decimal
    gst18_total: Decimal
    gst4_total: Decimal
    advance_tax_total: Decimal
    non_filer_gst_total: Decimal
    income_tax_total: Decimal
    total_cartons: int

    previous_balance: Decimal
    total_balance: Decimal
    credit_limit_exceeded: bool
    available_credit: Decimal
    credit_limit_warning: Optional[str] = None

    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    items: List[InvoiceItemResponse] = []


class InvoiceBrief(BaseResponseSchema):
    """Brief invoice for listing."""
    id: UUID
    invoice_number: str
    invoice_type: str
    invoice_date: date
    due_date: date
    customer_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    grand_total: Decimal
    status: str
    payment_status: str


class InvoiceListResponse(BaseModel):
    """Response for listing invoices."""
    items: List[InvoiceBrief]
    total: int
    skip: int = 0
    limit: int = 50
    total_value: Decimal = Decimal("0")


# ==================== Calculation Schemas ====================

class TotalsResponse(BaseModel):
    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    grand_total: Decimal
    gst18_total: Decimal
    gst4_total: Decimal
    advance_tax_total: Decimal
    non_filer_gst_total: Decimal
    income_tax_total: Decimal
    to1_amount: Decimal
    to2_amount: Decimal


class CalculatedLine(BaseModel):
    line_number: int
    item_id: str
    item_subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    gst_amount: Decimal
    advance_tax_percent: Decimal
    advance_tax_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal
    scheme1_quantity: Decimal
    scheme2_quantity: Decimal
    discount2_percent: Decimal
    carton_qty: int


class AppliedScheme(BaseModel):
    line: int
    item_id: str
    scheme_id: UUID
    scheme_name: str


class CalculationResponse(BaseModel):
    """Result of a dry-run totals calculation."""
    totals: TotalsResponse
    lines: List[CalculatedLine]
    to2_percent: Decimal
    total_cartons: int
    applied_schemes: List[AppliedScheme] = []


class NextNumberResponse(BaseModel):
    invoice_type: InvoiceType
    invoice_number: str

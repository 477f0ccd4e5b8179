"""API endpoints for sales, purchase and return invoices."""
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import date

from fastapi import APIRouter, Query, status

from app.models.invoice import InvoiceType, InvoiceStatus
from app.schemas.invoice import (
    InvoiceCreate, InvoiceUpdate, InvoiceCancelRequest, InvoiceCalculateRequest,
    InvoiceItemCreate, InvoiceResponse, InvoiceBrief, InvoiceListResponse,
    CalculationResponse, CalculatedLine, TotalsResponse, NextNumberResponse,
)
from app.api.deps import Invoices


router = APIRouter()


def _invoice_data(invoice_in) -> Dict[str, Any]:
    """Dump a request body into model column values."""
    data = invoice_in.model_dump(exclude={"apply_schemes", "return_metadata"})
    if getattr(invoice_in, "invoice_type", None) is not None:
        data["invoice_type"] = invoice_in.invoice_type.value
    if getattr(invoice_in, "return_metadata", None) is not None:
        data["return_metadata"] = invoice_in.return_metadata.model_dump(by_alias=True, mode="json")
    return data


# ==================== Calculation & numbering ====================

@router.get("/next-number", response_model=NextNumberResponse)
async def get_next_invoice_number(
    service: Invoices,
    invoice_type: InvoiceType = Query(...),
):
    """Preview the number the next invoice of this type would get."""
    number = await service.generate_next_invoice_number(invoice_type.value)
    return NextNumberResponse(invoice_type=invoice_type, invoice_number=number)


@router.post("/calculate", response_model=CalculationResponse)
async def calculate_invoice(
    request: InvoiceCalculateRequest,
    service: Invoices,
):
    """Dry-run the totals pipeline without saving anything."""
    invoice, totals, application = await service.preview_totals(
        _invoice_data(request),
        apply_schemes=request.apply_schemes,
    )

    return CalculationResponse(
        totals=TotalsResponse(**totals.as_dict()),
        lines=[
            CalculatedLine(
                line_number=item.line_number,
                item_id=item.item_id,
                item_subtotal=item.item_subtotal,
                discount_amount=item.discount_amount,
                taxable_amount=item.taxable_amount,
                gst_amount=item.gst_amount,
                advance_tax_percent=item.advance_tax_percent,
                advance_tax_amount=item.advance_tax_amount,
                tax_amount=item.tax_amount,
                line_total=item.line_total,
                scheme1_quantity=item.scheme1_quantity or 0,
                scheme2_quantity=item.scheme2_quantity or 0,
                discount2_percent=item.discount2_percent or 0,
                carton_qty=item.carton_qty,
            )
            for item in invoice.items
        ],
        to2_percent=invoice.to2_percent or 0,
        total_cartons=invoice.total_cartons,
        applied_schemes=application.applied if application else [],
    )


# ==================== Invoices ====================

@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    service: Invoices,
):
    """Create an invoice; number, totals and balance snapshot are derived."""
    invoice = await service.create_invoice(
        _invoice_data(invoice_in),
        apply_schemes=invoice_in.apply_schemes,
    )
    return invoice


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    service: Invoices,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    invoice_type: Optional[InvoiceType] = None,
    status: Optional[InvoiceStatus] = None,
    party_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """List invoices with filters."""
    invoices, total, total_value = await service.list_invoices(
        invoice_type=invoice_type.value if invoice_type else None,
        status=status.value if status else None,
        party_id=party_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )

    return InvoiceListResponse(
        items=[InvoiceBrief.model_validate(inv) for inv in invoices],
        total=total,
        total_value=total_value,
        skip=skip,
        limit=limit,
    )


@router.get("/overdue", response_model=List[InvoiceBrief])
async def list_overdue_invoices(
    service: Invoices,
    on_date: Optional[date] = None,
):
    """Unpaid, non-cancelled invoices past their due date."""
    invoices = await service.find_overdue_invoices(on_date)
    return [InvoiceBrief.model_validate(inv) for inv in invoices]


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    service: Invoices,
):
    """Get invoice by ID."""
    return await service.get_invoice(invoice_id)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: UUID,
    invoice_in: InvoiceUpdate,
    service: Invoices,
):
    """Update an invoice and recalculate it."""
    data = invoice_in.model_dump(exclude_unset=True, exclude={"apply_schemes", "return_metadata"})
    if invoice_in.return_metadata is not None:
        data["return_metadata"] = invoice_in.return_metadata.model_dump(by_alias=True, mode="json")

    return await service.update_invoice(
        invoice_id,
        data,
        apply_schemes=invoice_in.apply_schemes,
    )


@router.post("/{invoice_id}/items", response_model=InvoiceResponse)
async def add_invoice_item(
    invoice_id: UUID,
    item_in: InvoiceItemCreate,
    service: Invoices,
    apply_schemes: bool = False,
):
    """Append a line and recalculate the invoice."""
    return await service.add_item(invoice_id, item_in.model_dump(), apply_schemes=apply_schemes)


@router.delete("/{invoice_id}/items/{item_id}", response_model=InvoiceResponse)
async def remove_invoice_item(
    invoice_id: UUID,
    item_id: UUID,
    service: Invoices,
):
    """Remove a line and recalculate the invoice."""
    return await service.remove_item(invoice_id, item_id)


@router.post("/{invoice_id}/confirm", response_model=InvoiceResponse)
async def confirm_invoice(
    invoice_id: UUID,
    service: Invoices,
):
    return await service.confirm_invoice(invoice_id)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def mark_invoice_paid(
    invoice_id: UUID,
    service: Invoices,
):
    return await service.mark_as_paid(invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: UUID,
    service: Invoices,
    cancel_in: Optional[InvoiceCancelRequest] = None,
):
    """Cancel an invoice. Paid invoices cannot be cancelled."""
    return await service.cancel_invoice(invoice_id, cancel_in.reason if cancel_in else None)

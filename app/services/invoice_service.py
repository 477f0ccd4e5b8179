"""Invoice Service for sales, purchase and return invoices.

Every write goes through `save_invoice`, which runs the save pipeline in a
fixed order inside the caller's transaction:

    validate -> invoice number -> duplicate supplier bill guard
             -> (optional) scheme auto-application
             -> totals engine + carton quantities
             -> party balance / credit limit snapshot
             -> flush

A failure in any step before the balance snapshot aborts the save. The
balance snapshot degrades to neutral values instead of failing.
"""
import uuid
import logging
from datetime import datetime, timezone, date, timedelta
from decimal import Decimal
from typing import Optional, Dict, List, Any, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.invoice import (
    Invoice, InvoiceItem, InvoiceType, InvoiceStatus, PaymentStatus,
    SALES_FAMILY, PURCHASE_FAMILY, GST_RATES,
)
from app.models.party import Customer, Supplier, PartyType
from app.services.balance_service import BalanceCalculationService
from app.services.carton_service import carton_service
from app.services.scheme_service import SchemeService, SchemeApplication, apply_schemes
from app.services.tax_service import to_decimal
from app.services.totals_engine import Party, InvoiceTotals, compute_totals, apply_totals


logger = logging.getLogger(__name__)


INVOICE_NUMBER_PREFIXES = {
    InvoiceType.SALES.value: "SI",
    InvoiceType.PURCHASE.value: "PI",
    InvoiceType.RETURN_SALES.value: "SR",
    InvoiceType.RETURN_PURCHASE.value: "PR",
}

# Fields a caller may change on an existing invoice
UPDATABLE_FIELDS = (
    "invoice_date", "due_date", "expiry_date", "supplier_bill_number",
    "to1_percent", "to1_amount", "to2_percent", "to2_amount",
    "income_tax_base", "notes", "return_metadata", "original_invoice_id",
)


class InvoiceError(Exception):
    """Base exception for invoice errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvoiceValidationError(InvoiceError):
    """Invoice failed validation and cannot be saved."""
    pass


class DuplicateBillNumberError(InvoiceError):
    """Supplier bill number already used on another active purchase invoice."""
    pass


class InvoiceNumberConflictError(InvoiceError):
    """Concurrent save took the same invoice number or changed the invoice."""
    pass


class InvoiceNotFoundError(InvoiceError):
    pass


class InvoiceStateError(InvoiceError):
    """Operation not allowed in the invoice's current status."""
    pass


def _build_item(data: Dict[str, Any], line_number: int) -> InvoiceItem:
    return InvoiceItem(line_number=line_number, **data)


class InvoiceService:
    """Service for invoice creation, recalculation and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.scheme_service = SchemeService(db)
        self.balance_service = BalanceCalculationService(db)

    # ==================== Numbering & duplicate guard ====================

    async def generate_next_invoice_number(
        self,
        invoice_type: str,
        year: Optional[int] = None
    ) -> str:
        """
        Next invoice number for a type, e.g. SI2025000001.

        The sequence is the count of invoices of that type already numbered
        for the year, plus one.
        """
        invoice_type = InvoiceType(invoice_type).value
        prefix = INVOICE_NUMBER_PREFIXES[invoice_type]
        year = year or datetime.now(timezone.utc).year
        number_prefix = f"{prefix}{year}"

        result = await self.db.execute(
            select(func.count(Invoice.id)).where(
                and_(
                    Invoice.invoice_type == invoice_type,
                    Invoice.invoice_number.like(f"{number_prefix}%"),
                )
            )
        )
        count = result.scalar() or 0

        return f"{number_prefix}{str(count + 1).zfill(6)}"

    async def check_duplicate_supplier_bill(
        self,
        supplier_id: uuid.UUID,
        supplier_bill_number: str,
        exclude_invoice_id: Optional[uuid.UUID] = None
    ) -> Optional[Invoice]:
        """
        Find another active purchase-family invoice with the same bill number.

        Bill numbers are compared exactly as entered.
        """
        if not supplier_id or not supplier_bill_number:
            return None

        filters = [
            Invoice.supplier_id == supplier_id,
            Invoice.supplier_bill_number == supplier_bill_number,
            Invoice.invoice_type.in_(PURCHASE_FAMILY),
            Invoice.status != InvoiceStatus.CANCELLED.value,
        ]
        if exclude_invoice_id:
            filters.append(Invoice.id != exclude_invoice_id)

        result = await self.db.execute(
            select(Invoice).where(and_(*filters)).limit(1)
        )
        return result.scalar_one_or_none()

    async def ensure_unique_supplier_bill(self, invoice: Invoice) -> None:
        existing = await self.check_duplicate_supplier_bill(
            invoice.supplier_id,
            invoice.supplier_bill_number,
            exclude_invoice_id=invoice.id,
        )
        if existing:
            logger.warning(
                f"Rejected duplicate supplier bill '{invoice.supplier_bill_number}' "
                f"for supplier {invoice.supplier_id} (existing {existing.invoice_number})"
            )
            raise DuplicateBillNumberError(
                f"Bill number '{invoice.supplier_bill_number}' already exists for this supplier "
                f"(Invoice: {existing.invoice_number}, dated {existing.invoice_date.isoformat()})",
                {
                    "supplier_bill_number": invoice.supplier_bill_number,
                    "existing_invoice_id": str(existing.id),
                    "existing_invoice_number": existing.invoice_number,
                    "existing_invoice_date": existing.invoice_date.isoformat(),
                }
            )

    # ==================== Validation ====================

    def validate_items(self, items: List[Any]) -> List[str]:
        errors = []
        if not items:
            errors.append("Invoice must contain at least one item")
            return errors

        for index, item in enumerate(items, start=1):
            quantity = to_decimal(item.quantity)
            if not item.item_id:
                errors.append(f"Line {index}: item ID is required")
            if quantity <= 0:
                errors.append(f"Line {index}: quantity must be greater than zero")
            if item.unit_price is None:
                errors.append(f"Line {index}: unit price is required")
            elif to_decimal(item.unit_price) < 0:
                errors.append(f"Line {index}: unit price cannot be negative")
            discount_percent = to_decimal(item.discount_percent)
            if discount_percent < 0 or discount_percent > 100:
                errors.append(f"Line {index}: discount must be between 0 and 100")
            if item.gst_rate is not None and to_decimal(item.gst_rate) not in GST_RATES:
                errors.append(f"Line {index}: GST rate must be 0, 4 or 18")
            scheme_quantity = to_decimal(item.scheme_quantity)
            if scheme_quantity < 0:
                errors.append(f"Line {index}: scheme quantity cannot be negative")
            elif scheme_quantity > quantity:
                errors.append(f"Line {index}: scheme quantity cannot exceed quantity")

        return errors

    def validate_invoice(self, invoice: Invoice) -> None:
        """Raise InvoiceValidationError listing every problem found."""
        errors = []

        if invoice.invoice_type not in INVOICE_NUMBER_PREFIXES:
            errors.append(
                "Type must be one of: sales, purchase, return_sales, return_purchase"
            )

        if invoice.invoice_type in SALES_FAMILY and not invoice.customer_id:
            errors.append("Customer ID is required for sales invoices")

        if invoice.invoice_type in PURCHASE_FAMILY:
            if not invoice.supplier_id:
                errors.append("Supplier ID is required for purchase invoices")
            if not invoice.supplier_bill_number:
                errors.append("Supplier bill number is required for purchase invoices")

        if invoice.is_return:
            if not invoice.original_invoice_id:
                errors.append("Original invoice is required for returns")
            if not invoice.return_metadata or not invoice.return_metadata.get("reason"):
                errors.append("Return reason is required for returns")

        if not invoice.due_date:
            errors.append("Due date is required")

        if not invoice.invoice_date:
            errors.append("Invoice date is required")
        else:
            if invoice.due_date and invoice.due_date < invoice.invoice_date:
                errors.append("Due date cannot be before invoice date")
            if invoice.expiry_date and invoice.expiry_date < invoice.invoice_date:
                errors.append("Expiry date cannot be before invoice date")

        errors.extend(self.validate_items(invoice.items))

        if errors:
            raise InvoiceValidationError("; ".join(errors), {"errors": errors})

    # ==================== Party ====================

    async def resolve_party(self, invoice: Invoice) -> Optional[Party]:
        """Load the invoice's customer or supplier once for this pass."""
        if invoice.invoice_type in SALES_FAMILY and invoice.customer_id:
            account = await self.db.get(Customer, invoice.customer_id)
            if not account:
                raise InvoiceValidationError(f"Customer {invoice.customer_id} not found")
            return Party(PartyType.CUSTOMER, account)

        if invoice.invoice_type in PURCHASE_FAMILY and invoice.supplier_id:
            account = await self.db.get(Supplier, invoice.supplier_id)
            if not account:
                raise InvoiceValidationError(f"Supplier {invoice.supplier_id} not found")
            return Party(PartyType.SUPPLIER, account)

        return None

    # ==================== Save pipeline ====================

    async def run_schemes(self, invoice: Invoice, party: Optional[Party]) -> SchemeApplication:
        schemes = await self.scheme_service.get_active_schemes(invoice.company_id, invoice.invoice_date)
        application = apply_schemes(invoice.items, schemes, party.id if party else None)

        # Drop a TO2 percent left by an earlier pass unless the user changed it
        previous = to_decimal(invoice.scheme_to2_percent)
        if previous > 0 and to_decimal(invoice.to2_percent) == previous:
            invoice.to2_percent = Decimal("0")
            invoice.to2_amount = Decimal("0")
        invoice.scheme_to2_percent = application.to2_percent
        if application.to2_percent > 0:
            invoice.to2_percent = application.to2_percent
        return application

    async def apply_balance_snapshot(self, invoice: Invoice, party: Party) -> None:
        """
        Stamp previous balance and credit-limit status; never fails the save.

        The balance queries run inside a SAVEPOINT so a database error there
        rolls back only the savepoint and leaves the outer transaction usable.
        Pending changes are flushed first so their errors are not mistaken
        for a balance failure.
        """
        await self._flush(invoice)
        try:
            async with self.db.begin_nested():
                summary = await self.balance_service.calculate_balance_summary(
                    party.id,
                    invoice.invoice_date,
                    invoice.grand_total,
                    party.party_type,
                    credit_limit=party.credit_limit,
                )
        except Exception as e:
            logger.error(f"Balance calculation failed for invoice {invoice.invoice_number}: {e}")
            invoice.previous_balance = Decimal("0")
            invoice.total_balance = invoice.grand_total
            invoice.credit_limit_exceeded = False
            invoice.available_credit = Decimal("0")
            invoice.credit_limit_warning = ""
            return

        invoice.previous_balance = summary["previous_balance"]
        invoice.total_balance = summary["total_balance"]
        invoice.credit_limit_exceeded = summary["credit_limit_exceeded"]
        invoice.available_credit = summary["available_credit"]
        invoice.credit_limit_warning = summary["warning"]

        if summary["credit_limit_exceeded"]:
            logger.warning(f"Invoice {invoice.invoice_number}: {summary['warning']}")

    async def save_invoice(
        self,
        invoice: Invoice,
        is_new: bool = False,
        apply_schemes: bool = False,
        previous_totals: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        self.validate_invoice(invoice)

        if is_new and not invoice.invoice_number:
            invoice.invoice_number = await self.generate_next_invoice_number(invoice.invoice_type)
            logger.info(f"Generated invoice number {invoice.invoice_number}")

        if invoice.is_purchase_family:
            await self.ensure_unique_supplier_bill(invoice)

        party = await self.resolve_party(invoice)

        if apply_schemes:
            await self.run_schemes(invoice, party)

        previous_grand_total = invoice.grand_total
        totals = compute_totals(invoice, party.account if party else None, previous_totals)
        apply_totals(invoice, totals)
        carton_service.apply_carton_quantities(invoice)

        if party and (is_new or previous_grand_total != totals.grand_total):
            await self.apply_balance_snapshot(invoice, party)

        if is_new:
            self.db.add(invoice)

        await self._flush(invoice)
        return invoice

    async def _flush(self, invoice: Invoice) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            if "invoice_number" in str(e.orig):
                raise InvoiceNumberConflictError(
                    f"Invoice number {invoice.invoice_number} is already in use, please retry",
                    {"error": str(e.orig)}
                )
            logger.error(f"Integrity error saving invoice {invoice.invoice_number}: {e.orig}")
            raise InvoiceValidationError(
                "Invoice could not be saved: a required field is missing or invalid",
                {"errors": [str(e.orig)]}
            )
        except StaleDataError:
            raise InvoiceNumberConflictError(
                f"Invoice {invoice.invoice_number} was modified by another request, please reload"
            )

    # ==================== CRUD ====================

    async def create_invoice(
        self,
        data: Dict[str, Any],
        created_by: Optional[uuid.UUID] = None,
        apply_schemes: bool = False
    ) -> Invoice:
        data = dict(data)
        items_data = data.pop("items", None) or []

        invoice = Invoice(
            **data,
            status=InvoiceStatus.DRAFT.value,
            payment_status=PaymentStatus.PENDING.value,
            created_by=created_by,
            items=[_build_item(item, line) for line, item in enumerate(items_data, start=1)],
        )

        if not invoice.due_date and invoice.invoice_date:
            party = await self.resolve_party(invoice)
            if party:
                invoice.due_date = party.account.get_payment_due_date(invoice.invoice_date)
            else:
                invoice.due_date = invoice.invoice_date + timedelta(days=settings.DEFAULT_PAYMENT_TERMS_DAYS)

        await self.save_invoice(invoice, is_new=True, apply_schemes=apply_schemes)

        logger.info(
            f"Created {invoice.invoice_type} invoice {invoice.invoice_number} "
            f"with {len(invoice.items)} items, grand total {invoice.grand_total}"
        )
        return invoice

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def list_invoices(
        self,
        invoice_type: Optional[str] = None,
        status: Optional[str] = None,
        party_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Invoice], int, Decimal]:
        filters = []
        if invoice_type:
            filters.append(Invoice.invoice_type == invoice_type)
        if status:
            filters.append(Invoice.status == status)
        if party_id:
            filters.append(or_(Invoice.customer_id == party_id, Invoice.supplier_id == party_id))
        if start_date:
            filters.append(Invoice.invoice_date >= start_date)
        if end_date:
            filters.append(Invoice.invoice_date <= end_date)

        query = select(Invoice)
        count_query = select(func.count(Invoice.id))
        value_query = select(func.coalesce(func.sum(Invoice.grand_total), 0))
        if filters:
            query = query.where(and_(*filters))
            count_query = count_query.where(and_(*filters))
            value_query = value_query.where(and_(*filters))

        total = (await self.db.execute(count_query)).scalar() or 0
        total_value = (await self.db.execute(value_query)).scalar() or Decimal("0")

        query = query.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc())
        query = query.offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total, to_decimal(total_value)

    def ensure_editable(self, invoice: Invoice) -> None:
        if invoice.status in (InvoiceStatus.CANCELLED.value, InvoiceStatus.PAID.value):
            raise InvoiceStateError(
                f"Invoice {invoice.invoice_number} is {invoice.status} and cannot be modified"
            )

    async def update_invoice(
        self,
        invoice_id: uuid.UUID,
        data: Dict[str, Any],
        apply_schemes: bool = False
    ) -> Invoice:
        """
        Update header fields and, when given, replace all items.

        Income tax is carried over from the stored totals unless a new
        `income_tax_base` is supplied.
        """
        invoice = await self.get_invoice(invoice_id)
        self.ensure_editable(invoice)
        previous_totals = invoice.totals

        for field in UPDATABLE_FIELDS:
            if field in data:
                setattr(invoice, field, data[field])

        if data.get("items") is not None:
            invoice.items = [
                _build_item(item, line) for line, item in enumerate(data["items"], start=1)
            ]

        return await self.save_invoice(
            invoice,
            apply_schemes=apply_schemes,
            previous_totals=previous_totals,
        )

    async def add_item(
        self,
        invoice_id: uuid.UUID,
        item_data: Dict[str, Any],
        apply_schemes: bool = False
    ) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        self.ensure_editable(invoice)

        next_line = max((item.line_number for item in invoice.items), default=0) + 1
        invoice.items.append(_build_item(item_data, next_line))

        return await self.save_invoice(
            invoice,
            apply_schemes=apply_schemes,
            previous_totals=invoice.totals,
        )

    async def remove_item(self, invoice_id: uuid.UUID, item_id: uuid.UUID) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        self.ensure_editable(invoice)

        item = next((i for i in invoice.items if i.id == item_id), None)
        if not item:
            raise InvoiceNotFoundError(f"Item {item_id} not found on invoice {invoice.invoice_number}")

        invoice.items.remove(item)

        return await self.save_invoice(invoice, previous_totals=invoice.totals)

    # ==================== Lifecycle ====================

    async def confirm_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        """Move a draft invoice to confirmed; other statuses are left as they are."""
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.DRAFT.value:
            invoice.status = InvoiceStatus.CONFIRMED.value
            invoice.confirmed_at = datetime.now(timezone.utc)
            await self.db.flush()
            logger.info(f"Confirmed invoice {invoice.invoice_number}")
        return invoice

    async def mark_as_paid(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceStateError(f"Cancelled invoice {invoice.invoice_number} cannot be paid")

        invoice.payment_status = PaymentStatus.PAID.value
        invoice.status = InvoiceStatus.PAID.value
        await self.db.flush()

        logger.info(f"Invoice {invoice.invoice_number} marked as paid")
        return invoice

    async def cancel_invoice(self, invoice_id: uuid.UUID, reason: Optional[str] = None) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvoiceStateError(f"Invoice {invoice.invoice_number} is already cancelled")
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvoiceStateError(f"Paid invoice {invoice.invoice_number} cannot be cancelled")

        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_at = datetime.now(timezone.utc)
        invoice.cancellation_reason = reason
        await self.db.flush()

        logger.info(f"Cancelled invoice {invoice.invoice_number}")
        return invoice

    # ==================== Queries ====================

    async def find_overdue_invoices(self, on_date: Optional[date] = None) -> List[Invoice]:
        on_date = on_date or date.today()
        result = await self.db.execute(
            select(Invoice).where(
                and_(
                    Invoice.due_date < on_date,
                    Invoice.payment_status != PaymentStatus.PAID.value,
                    Invoice.status != InvoiceStatus.CANCELLED.value,
                )
            ).order_by(Invoice.due_date)
        )
        return list(result.scalars().all())

    async def find_by_date_range(
        self,
        start_date: date,
        end_date: date,
        invoice_type: Optional[str] = None
    ) -> List[Invoice]:
        filters = [Invoice.invoice_date >= start_date, Invoice.invoice_date <= end_date]
        if invoice_type:
            filters.append(Invoice.invoice_type == invoice_type)

        result = await self.db.execute(
            select(Invoice).where(and_(*filters)).order_by(Invoice.invoice_date)
        )
        return list(result.scalars().all())

    # ==================== Dry run ====================

    async def preview_totals(
        self,
        data: Dict[str, Any],
        apply_schemes: bool = False
    ) -> Tuple[Invoice, InvoiceTotals, Optional[SchemeApplication]]:
        """
        Run schemes, totals and cartons on an unsaved invoice.

        Nothing is added to the session; the returned invoice is transient.
        """
        data = dict(data)
        items_data = data.pop("items", None) or []
        invoice = Invoice(
            **data,
            items=[_build_item(item, line) for line, item in enumerate(items_data, start=1)],
        )

        errors = self.validate_items(invoice.items)
        if errors:
            raise InvoiceValidationError("; ".join(errors), {"errors": errors})

        party = await self.resolve_party(invoice)

        application = None
        if apply_schemes:
            application = await self.run_schemes(invoice, party)

        totals = compute_totals(invoice, party.account if party else None)
        apply_totals(invoice, totals)
        carton_service.apply_carton_quantities(invoice)

        return invoice, totals, application

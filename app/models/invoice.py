"""Invoice models for sales, purchase and their returns.

Supports:
- Sales / purchase invoices and sales / purchase returns
- Box/unit split pricing and carton tracking per line
- GST (18% / 4% / 0%), advance tax, non-filer GST and income tax totals
- Trade offers TO1 / TO2 and scheme bonus quantities
- Party balance and credit-limit snapshot taken at save time
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType, MoneyType, RateType, QuantityType


class InvoiceType(str, Enum):
    """Invoice type enumeration."""
    SALES = "sales"
    PURCHASE = "purchase"
    RETURN_SALES = "return_sales"
    RETURN_PURCHASE = "return_purchase"


SALES_FAMILY = (InvoiceType.SALES.value, InvoiceType.RETURN_SALES.value)
PURCHASE_FAMILY = (InvoiceType.PURCHASE.value, InvoiceType.RETURN_PURCHASE.value)
RETURN_TYPES = (InvoiceType.RETURN_SALES.value, InvoiceType.RETURN_PURCHASE.value)


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


GST_RATES = (Decimal("0"), Decimal("4"), Decimal("18"))


class Invoice(Base):
    """
    Invoice aggregate root.

    Every money column below the "Derived totals" marker is written by the
    totals pipeline on each save and must never be edited by hand.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_type_date", "invoice_type", "invoice_date"),
        Index("ix_invoices_customer_date", "customer_id", "invoice_date"),
        Index("ix_invoices_supplier_date", "supplier_id", "invoice_date"),
        Index("ix_invoices_supplier_bill", "supplier_id", "supplier_bill_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Invoice Identification
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique invoice number e.g., SI2025000001"
    )
    invoice_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="sales, purchase, return_sales, return_purchase"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
        index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Parties
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=True
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=True
    )
    supplier_bill_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Supplier's own bill number (purchase family only)"
    )

    # Returns
    original_invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=True
    )
    return_metadata: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="{reason, notes, date}"
    )

    # Dates
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Validity date for estimates"
    )

    # Trade offers
    to1_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    to1_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    to2_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    to2_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    scheme_to2_percent: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        comment="TO2 percent last set by scheme application"
    )

    # Income tax base supplied by the caller (None = not recomputed this save)
    income_tax_base: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    income_tax: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # Derived totals
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    grand_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    gst18_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst4_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    advance_tax_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    non_filer_gst_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    income_tax_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    total_cartons: Mapped[int] = mapped_column(Integer, default=0)

    # Balance snapshot
    previous_balance: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    total_balance: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    credit_limit_exceeded: Mapped[bool] = mapped_column(Boolean, default=False)
    available_credit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    credit_limit_warning: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Remarks
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Audit
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.line_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_purchase_family(self) -> bool:
        return self.invoice_type in PURCHASE_FAMILY

    @property
    def is_return(self) -> bool:
        return self.invoice_type in RETURN_TYPES

    @property
    def days_until_due(self) -> int:
        """Days left until the due date (negative once overdue)."""
        return (self.due_date - date.today()).days

    @property
    def is_overdue(self) -> bool:
        return self.due_date < date.today() and self.payment_status != PaymentStatus.PAID.value

    @property
    def totals(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "total_tax": self.total_tax,
            "grand_total": self.grand_total,
            "gst18_total": self.gst18_total,
            "gst4_total": self.gst4_total,
            "advance_tax_total": self.advance_tax_total,
            "non_filer_gst_total": self.non_filer_gst_total,
            "income_tax_total": self.income_tax_total,
        }

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.invoice_number}', status='{self.status}')>"


class InvoiceItem(Base):
    """Invoice line with split pricing, scheme tracking and tax breakup."""
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Item Reference (opaque id from the item master)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    batch_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    batch_expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Pricing inputs
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    box_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    unit_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    box_rate: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    unit_rate: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst_rate: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("18"),
        comment="0, 4 or 18"
    )

    # Tiered discounts
    discount1_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    discount1_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    discount2_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    discount2_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    scheme_discount2_percent: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        comment="Discount 2 percent last set by scheme application"
    )

    # Scheme tracking (quantity only, never price)
    scheme1_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    scheme2_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    scheme_quantity: Mapped[Decimal] = mapped_column(
        QuantityType,
        default=Decimal("0"),
        comment="Free quantity received under a supplier scheme (purchase only)"
    )
    carton_qty: Mapped[int] = mapped_column(Integer, default=0)

    # Derived amounts
    item_subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    advance_tax_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    advance_tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem(item='{self.item_id}', qty={self.quantity})>"

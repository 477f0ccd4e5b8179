"""Trading party models (customers and suppliers).

Both party kinds carry the same financial-info block, so either one can act
as the account-rate provider for the invoice tax stage:
- Credit limit and payment terms
- Advance tax rate driven by the party's tax registration (0, 0.5 or 2.5 %)
- Non-filer flag for the additional non-filer GST levy
"""
import uuid
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.config import settings
from app.database import Base
from app.db_types import UUIDType, MoneyType, RateType


ADVANCE_TAX_RATES = (Decimal("0"), Decimal("0.5"), Decimal("2.5"))


class PartyType(str, Enum):
    """Which side of the trade a party sits on."""
    CUSTOMER = "Customer"
    SUPPLIER = "Supplier"


class FinancialInfoMixin:
    """Columns and tax behaviour shared by customers and suppliers."""

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    credit_limit: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Maximum outstanding balance allowed"
    )
    payment_terms: Mapped[int] = mapped_column(
        Integer,
        default=settings.DEFAULT_PAYMENT_TERMS_DAYS,
        nullable=False,
        comment="Payment terms in days (0-365)"
    )
    tax_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default=settings.DEFAULT_CURRENCY)

    advance_tax_rate: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        nullable=False,
        comment="0, 0.5 or 2.5 percent"
    )
    is_non_filer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

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

    def get_advance_tax_rate(self) -> Decimal:
        return Decimal(str(self.advance_tax_rate or 0))

    def calculate_advance_tax(self, amount: Decimal) -> Decimal:
        """Advance tax on a taxable amount at this party's registered rate."""
        return Decimal(amount) * self.get_advance_tax_rate() / Decimal("100")

    def is_non_filer_account(self) -> bool:
        return self.is_non_filer is True

    def calculate_non_filer_gst(self, amount: Decimal) -> Decimal:
        """Additional GST charged to non-filers (0 for filers)."""
        if not self.is_non_filer_account():
            return Decimal("0")
        return Decimal(amount) * settings.NON_FILER_GST_RATE / Decimal("100")

    def get_payment_due_date(self, invoice_date: Optional[date] = None) -> date:
        invoice_date = invoice_date or date.today()
        return invoice_date + timedelta(days=self.payment_terms or 0)


class Customer(FinancialInfoMixin, Base):
    """Customer (sales side) account."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    party_type = PartyType.CUSTOMER

    def __repr__(self) -> str:
        return f"<Customer(code='{self.code}', name='{self.name}')>"


class Supplier(FinancialInfoMixin, Base):
    """Supplier (purchase side) account."""
    __tablename__ = "suppliers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    party_type = PartyType.SUPPLIER

    def __repr__(self) -> str:
        return f"<Supplier(code='{self.code}', name='{self.name}')>"

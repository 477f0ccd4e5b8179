"""Party ledger entries.

Entries are posted by the accounting side of the ERP (payments, receipts,
journal vouchers, confirmed invoices). The invoice engine only reads them to
work out a party's previous balance.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Date, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, MoneyType


class LedgerEntry(Base):
    """Single debit/credit line against a customer or supplier."""
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_party_date", "party_id", "entry_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    party_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    party_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Customer, Supplier"
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    debit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    credit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="invoice, payment, receipt, journal"
    )
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry({self.party_type} {self.party_id}: Dr {self.debit} / Cr {self.credit})>"

"""Promotional scheme model.

A scheme grants bonus quantity ("12+1" = buy 12, get 1 free) and may carry
an extra line discount (discount 2) and an invoice trade offer (TO2).
Item and customer allow-lists are stored as JSON arrays of ids; an empty
list means the scheme applies to everyone.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, Date, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType, RateType, QuantityType


class SchemeType(str, Enum):
    """Which bonus tracking field a scheme writes to."""
    SCHEME1 = "scheme1"
    SCHEME2 = "scheme2"


class Scheme(Base):
    """Bonus-quantity / discount scheme offered by a company."""
    __tablename__ = "schemes"
    __table_args__ = (
        Index("ix_schemes_company_active", "company_id", "is_active"),
        Index("ix_schemes_dates", "start_date", "end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    scheme_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="scheme1, scheme2"
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    group: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    scheme_format: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment='Format like "12+1" for buy 12 get 1 free'
    )
    discount_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    discount2_percent: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        comment="Second line discount percentage (e.g., 7.69)"
    )
    to2_percent: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        comment="Trade Offer 2 percentage for this scheme"
    )
    claim_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    applicable_items: Mapped[List[str]] = mapped_column(JSONType, default=list)
    applicable_customers: Mapped[List[str]] = mapped_column(JSONType, default=list)

    minimum_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    maximum_quantity: Mapped[Decimal] = mapped_column(
        QuantityType,
        default=Decimal("0"),
        comment="0 = unlimited"
    )

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

    def is_currently_active(self, on_date: Optional[date] = None) -> bool:
        on_date = on_date or date.today()
        return bool(self.is_active) and self.start_date <= on_date <= self.end_date

    def is_item_eligible(self, item_id) -> bool:
        if not self.applicable_items:
            return True
        return str(item_id) in {str(i) for i in self.applicable_items}

    def is_customer_eligible(self, customer_id) -> bool:
        if not self.applicable_customers:
            return True
        if customer_id is None:
            return False
        return str(customer_id) in {str(c) for c in self.applicable_customers}

    def qualifies_for_scheme(self, quantity) -> bool:
        quantity = Decimal(str(quantity or 0))
        minimum = Decimal(str(self.minimum_quantity or 0))
        maximum = Decimal(str(self.maximum_quantity or 0))
        if quantity < minimum:
            return False
        if maximum > 0 and quantity > maximum:
            return False
        return True

    def __repr__(self) -> str:
        return f"<Scheme(name='{self.name}', format='{self.scheme_format}')>"

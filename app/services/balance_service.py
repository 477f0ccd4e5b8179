"""
Balance Calculation Service

Works out a party's balance position for an invoice:
- Previous balance: ledger balance at the end of the day before the invoice date
- Total balance: previous balance + current invoice amount
- Credit limit check with available credit and warning text
"""

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import LedgerEntry
from app.models.party import Customer, Supplier, PartyType
from app.services.tax_service import money, to_decimal


logger = logging.getLogger(__name__)


class BalanceCalculationError(Exception):
    """Exception raised when a balance cannot be calculated."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def _party_type(party_type: Any) -> PartyType:
    try:
        return PartyType(party_type)
    except ValueError:
        raise BalanceCalculationError(
            "Account type must be Customer or Supplier",
            {"party_type": str(party_type)}
        )


class BalanceCalculationService:
    """Service for previous balance and credit-limit checks on invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_ledger_balance(self, party_id: uuid.UUID, as_of: date) -> Decimal:
        """Signed sum of debit - credit for entries on or before `as_of`."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.debit), 0),
                func.coalesce(func.sum(LedgerEntry.credit), 0),
            ).where(
                and_(
                    LedgerEntry.party_id == party_id,
                    LedgerEntry.entry_date <= as_of,
                )
            )
        )
        debit, credit = result.one()
        return to_decimal(debit) - to_decimal(credit)

    async def calculate_previous_balance(
        self,
        party_id: uuid.UUID,
        invoice_date: date,
        party_type: Any
    ) -> Decimal:
        """Absolute ledger balance as of the day before the invoice date."""
        if not party_id:
            raise BalanceCalculationError("Account ID is required")
        if not invoice_date:
            raise BalanceCalculationError("Invoice date is required")
        _party_type(party_type)

        balance = await self.get_ledger_balance(party_id, invoice_date - timedelta(days=1))
        return money(abs(balance))

    def calculate_total_balance(self, previous_balance: Any = 0, current_invoice_amount: Any = 0) -> Decimal:
        previous_balance = to_decimal(previous_balance)
        current_invoice_amount = to_decimal(current_invoice_amount)
        if previous_balance < 0:
            raise BalanceCalculationError("Previous balance cannot be negative")
        if current_invoice_amount < 0:
            raise BalanceCalculationError("Current invoice amount cannot be negative")
        return previous_balance + current_invoice_amount

    async def get_credit_limit(self, party_id: uuid.UUID, party_type: Any) -> Optional[Decimal]:
        """Credit limit of the party, or None when the party does not exist."""
        model = Customer if _party_type(party_type) == PartyType.CUSTOMER else Supplier
        account = await self.db.get(model, party_id)
        if not account:
            return None
        return to_decimal(account.credit_limit)

    def get_credit_limit_warning(
        self,
        total_balance: Decimal,
        credit_limit: Decimal,
        party_type: Any
    ) -> str:
        exceeded_by = money(total_balance - credit_limit)
        return (
            f"WARNING: {_party_type(party_type).value} credit limit exceeded by {exceeded_by}. "
            f"Total balance: {money(total_balance)}, Credit limit: {money(credit_limit)}"
        )

    async def check_credit_limit(
        self,
        party_id: uuid.UUID,
        total_balance: Decimal,
        party_type: Any,
        credit_limit: Optional[Decimal] = None
    ) -> Dict[str, Any]:
        """
        Compare a total balance against the party's credit limit.

        Pass `credit_limit` when the party is already loaded to skip the lookup.
        """
        total_balance = to_decimal(total_balance)
        if total_balance < 0:
            raise BalanceCalculationError("Total balance cannot be negative")

        if credit_limit is None:
            credit_limit = await self.get_credit_limit(party_id, party_type)

        if credit_limit is None:
            return {
                "exceeded": False,
                "credit_limit": Decimal("0"),
                "total_balance": total_balance,
                "available_credit": Decimal("0"),
                "warning": None,
            }

        exceeded = total_balance > credit_limit
        return {
            "exceeded": exceeded,
            "credit_limit": credit_limit,
            "total_balance": total_balance,
            "available_credit": max(Decimal("0"), credit_limit - total_balance),
            "warning": self.get_credit_limit_warning(total_balance, credit_limit, party_type) if exceeded else None,
        }

    async def get_available_credit(self, party_id: uuid.UUID, current_balance: Any, party_type: Any) -> Decimal:
        current_balance = to_decimal(current_balance)
        if current_balance < 0:
            raise BalanceCalculationError("Current balance cannot be negative")

        credit_limit = await self.get_credit_limit(party_id, party_type) or Decimal("0")
        return max(Decimal("0"), credit_limit - current_balance)

    async def calculate_balance_summary(
        self,
        party_id: uuid.UUID,
        invoice_date: date,
        invoice_amount: Any,
        party_type: Any,
        credit_limit: Optional[Decimal] = None
    ) -> Dict[str, Any]:
        """
        Balance position of a party including the current invoice.

        Returns:
            {previous_balance, current_invoice_amount, total_balance,
             credit_limit, available_credit, credit_limit_exceeded, warning}
        """
        if not party_id or not invoice_date or party_type is None:
            raise BalanceCalculationError("All parameters are required")

        previous_balance = await self.calculate_previous_balance(party_id, invoice_date, party_type)
        total_balance = self.calculate_total_balance(previous_balance, invoice_amount)
        credit_check = await self.check_credit_limit(party_id, total_balance, party_type, credit_limit)

        return {
            "previous_balance": previous_balance,
            "current_invoice_amount": to_decimal(invoice_amount),
            "total_balance": total_balance,
            "credit_limit": credit_check["credit_limit"],
            "available_credit": credit_check["available_credit"],
            "credit_limit_exceeded": credit_check["exceeded"],
            "warning": credit_check["warning"],
        }

"""
Tax calculation helpers for invoices.

Handles the Pakistani trade tax stack applied by the invoice engine:
- GST at 18% (standard) and 4% (reduced) with 0% exempt lines
- Advance tax at the party's registered rate (0.5% / 2.5%)
- Additional 0.1% GST for non-filers
- Flat 5.5% income tax on a supplied base

All helpers are pure. Amounts are Decimal and quantized to paisa.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from app.config import settings


TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

GST_STANDARD_RATE = Decimal("18")
GST_REDUCED_RATE = Decimal("4")


class TaxCalculationError(Exception):
    """Raised for inputs no tax can be computed on (e.g. negative amounts)."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@runtime_checkable
class AccountRateProvider(Protocol):
    """What the tax stage needs from a customer or supplier account."""

    def get_advance_tax_rate(self) -> Decimal: ...

    def calculate_advance_tax(self, amount: Decimal) -> Decimal: ...

    def is_non_filer_account(self) -> bool: ...

    def calculate_non_filer_gst(self, amount: Decimal) -> Decimal: ...


def to_decimal(value: Any) -> Decimal:
    """Coerce int/float/str/None into Decimal (None -> 0)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_gst(taxable_amount: Decimal, gst_rate: Decimal) -> Decimal:
    """GST on a taxable amount; 0% lines carry no GST."""
    taxable_amount = to_decimal(taxable_amount)
    gst_rate = to_decimal(gst_rate)
    if taxable_amount < 0:
        raise TaxCalculationError(
            "Taxable amount cannot be negative",
            {"taxable_amount": str(taxable_amount)}
        )
    if gst_rate <= 0:
        return Decimal("0")
    return money(taxable_amount * gst_rate / HUNDRED)


def calculate_advance_tax(
    taxable_amount: Decimal,
    account: Optional[AccountRateProvider]
) -> Dict[str, Decimal]:
    """
    Advance tax for one line.

    The rate comes from the account itself because it depends on the
    party's tax registration. No account or a zero rate means no tax.

    Returns:
        {"rate": Decimal, "amount": Decimal}
    """
    if account is None:
        return {"rate": Decimal("0"), "amount": Decimal("0")}

    rate = to_decimal(account.get_advance_tax_rate())
    if rate <= 0:
        return {"rate": Decimal("0"), "amount": Decimal("0")}

    return {
        "rate": rate,
        "amount": money(account.calculate_advance_tax(to_decimal(taxable_amount))),
    }


def calculate_non_filer_gst(
    taxable_amount: Decimal,
    account: Optional[AccountRateProvider]
) -> Decimal:
    """Non-filer surcharge for one line; only ever summed at invoice level."""
    if account is None or not account.is_non_filer_account():
        return Decimal("0")
    return to_decimal(account.calculate_non_filer_gst(to_decimal(taxable_amount)))


def calculate_income_tax(amount: Optional[Any]) -> Decimal:
    """
    Income tax at the flat configured rate (5.5%).

    None, zero and negative amounts yield 0 rather than an error.
    """
    if amount is None:
        return Decimal("0")
    amount = to_decimal(amount)
    if amount <= 0:
        return Decimal("0")
    return money(amount * settings.INCOME_TAX_RATE / HUNDRED)


def apply_income_tax_to_invoice(invoice: Any, taxable_amount: Optional[Any]) -> Any:
    """
    Write income tax onto an invoice-like object.

    Sets both `income_tax` and `income_tax_total`; a missing or non-positive
    base zeroes them.
    """
    if invoice is None:
        raise TaxCalculationError("Invoice is required")

    income_tax = calculate_income_tax(taxable_amount)
    invoice.income_tax = income_tax
    invoice.income_tax_total = income_tax
    return invoice

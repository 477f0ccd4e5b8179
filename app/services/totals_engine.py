"""
Invoice Totals Engine

Ordered, pure computation of every derived money field on an invoice:

    1. Line subtotal      (box/unit split pricing or quantity x unit price)
    2. Line discounts     (discount %, tiered discount 1 / discount 2)
    3. Line taxes         (GST, advance tax, non-filer GST)
    4. Trade offers       (TO1 on subtotal, TO2 on subtotal - TO1) and grand total

The balance / credit-limit stage needs the database and lives in
BalanceCalculationService; InvoiceService runs it after this engine.

Nothing here touches the database. `compute_totals` reads a draft invoice
(ORM object or anything with the same attributes) and returns an
InvoiceTotals value; `apply_totals` writes that value back onto the invoice.
Running both twice on the same input gives identical results.
"""

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

from app.models.party import Customer, Supplier, PartyType
from app.services.tax_service import (
    AccountRateProvider,
    HUNDRED,
    GST_STANDARD_RATE,
    GST_REDUCED_RATE,
    calculate_gst,
    calculate_advance_tax,
    calculate_non_filer_gst,
    calculate_income_tax,
    money,
    to_decimal,
)


logger = logging.getLogger(__name__)


ZERO = Decimal("0")


@dataclass
class Party:
    """The invoice's resolved counterparty, tagged by side."""
    party_type: PartyType
    account: Union[Customer, Supplier]

    @property
    def id(self):
        return self.account.id

    @property
    def credit_limit(self) -> Decimal:
        return to_decimal(self.account.credit_limit)


@dataclass
class LineComputation:
    """Derived fields for one invoice line."""
    item_subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    discount1_amount: Decimal = ZERO
    discount2_amount: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    gst_rate: Decimal = ZERO
    gst_amount: Decimal = ZERO
    advance_tax_percent: Decimal = ZERO
    advance_tax_amount: Decimal = ZERO
    non_filer_gst: Decimal = ZERO
    tax_amount: Decimal = ZERO
    line_total: Decimal = ZERO


@dataclass
class TradeOfferResult:
    to1_amount: Decimal = ZERO
    to2_amount: Decimal = ZERO
    net_amount: Decimal = ZERO


@dataclass
class InvoiceTotals:
    """Invoice-level aggregates plus the per-line breakdown they came from."""
    subtotal: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    gst18_total: Decimal = ZERO
    gst4_total: Decimal = ZERO
    advance_tax_total: Decimal = ZERO
    non_filer_gst_total: Decimal = ZERO
    income_tax_total: Decimal = ZERO
    to1_amount: Decimal = ZERO
    to2_amount: Decimal = ZERO
    lines: List[LineComputation] = field(default_factory=list)

    def as_dict(self, include_lines: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_lines:
            data.pop("lines")
        return data


# ==================== Stage 1: Line subtotal ====================

def resolve_line_subtotal(line: Any) -> Decimal:
    """
    Gross amount of a line before any discount.

    Box/unit pricing wins whenever either split quantity is positive;
    otherwise quantity x unit price.
    """
    box_quantity = to_decimal(getattr(line, "box_quantity", None))
    unit_quantity = to_decimal(getattr(line, "unit_quantity", None))

    if box_quantity > 0 or unit_quantity > 0:
        box_rate = to_decimal(getattr(line, "box_rate", None))
        unit_rate = to_decimal(getattr(line, "unit_rate", None))
        return money(box_quantity * box_rate + unit_quantity * unit_rate)

    return money(to_decimal(line.quantity) * to_decimal(line.unit_price))


# ==================== Stage 2: Discounts ====================

def _tier_discount(item_subtotal: Decimal, percent: Any, fixed_amount: Any) -> Decimal:
    percent = to_decimal(percent)
    if percent > 0:
        return money(item_subtotal * percent / HUNDRED)
    return money(fixed_amount)


def apply_line_discounts(line: Any, item_subtotal: Decimal) -> Dict[str, Decimal]:
    """
    Total line discount = discount % + discount 1 + discount 2.

    Each tier is percent-driven when its percent is positive, otherwise the
    supplied fixed amount is kept. The total is capped at the line subtotal;
    any excess is trimmed from discount 2 first, then discount 1, then the
    base discount, so the taxable amount never drops below zero.
    """
    base_discount = money(item_subtotal * to_decimal(getattr(line, "discount_percent", None)) / HUNDRED)
    discount1 = _tier_discount(
        item_subtotal,
        getattr(line, "discount1_percent", None),
        getattr(line, "discount1_amount", None),
    )
    discount2 = _tier_discount(
        item_subtotal,
        getattr(line, "discount2_percent", None),
        getattr(line, "discount2_amount", None),
    )

    excess = base_discount + discount1 + discount2 - max(item_subtotal, ZERO)
    if excess > 0:
        logger.warning(
            f"Line {getattr(line, 'item_id', '?')}: discounts exceed subtotal "
            f"{item_subtotal} by {excess}, capping"
        )
        trimmed = min(discount2, excess)
        discount2 -= trimmed
        excess -= trimmed
        trimmed = min(discount1, excess)
        discount1 -= trimmed
        excess -= trimmed
        base_discount -= min(base_discount, excess)

    discount_amount = base_discount + discount1 + discount2
    return {
        "discount_amount": discount_amount,
        "discount1_amount": discount1,
        "discount2_amount": discount2,
        "taxable_amount": item_subtotal - discount_amount,
    }


# ==================== Stage 3: Taxes ====================

def calculate_line_taxes(
    taxable_amount: Decimal,
    gst_rate: Any,
    account: Optional[AccountRateProvider]
) -> Dict[str, Decimal]:
    gst_rate = to_decimal(gst_rate) if gst_rate is not None else GST_STANDARD_RATE
    gst_amount = calculate_gst(taxable_amount, gst_rate)
    advance_tax = calculate_advance_tax(taxable_amount, account)

    return {
        "gst_rate": gst_rate,
        "gst_amount": gst_amount,
        "advance_tax_percent": advance_tax["rate"],
        "advance_tax_amount": advance_tax["amount"],
        "non_filer_gst": calculate_non_filer_gst(taxable_amount, account),
        "tax_amount": gst_amount + advance_tax["amount"],
    }


def compute_line(line: Any, account: Optional[AccountRateProvider] = None) -> LineComputation:
    """Run stages 1-3 for a single line."""
    item_subtotal = resolve_line_subtotal(line)
    discounts = apply_line_discounts(line, item_subtotal)
    taxes = calculate_line_taxes(discounts["taxable_amount"], getattr(line, "gst_rate", None), account)

    return LineComputation(
        item_subtotal=item_subtotal,
        discount_amount=discounts["discount_amount"],
        discount1_amount=discounts["discount1_amount"],
        discount2_amount=discounts["discount2_amount"],
        taxable_amount=discounts["taxable_amount"],
        gst_rate=taxes["gst_rate"],
        gst_amount=taxes["gst_amount"],
        advance_tax_percent=taxes["advance_tax_percent"],
        advance_tax_amount=taxes["advance_tax_amount"],
        non_filer_gst=taxes["non_filer_gst"],
        tax_amount=taxes["tax_amount"],
        line_total=discounts["taxable_amount"] + taxes["tax_amount"],
    )


# ==================== Stage 4: Trade offers ====================

def calculate_trade_offers(
    subtotal: Decimal,
    to1_percent: Any = None,
    to1_amount: Any = None,
    to2_percent: Any = None,
    to2_amount: Any = None
) -> TradeOfferResult:
    """
    TO1 on the subtotal, TO2 on what is left after TO1.

    A positive percent recomputes the amount; a zero percent keeps the
    supplied fixed amount.
    """
    subtotal = to_decimal(subtotal)

    to1_percent = to_decimal(to1_percent)
    if to1_percent > 0:
        to1 = money(subtotal * to1_percent / HUNDRED)
    else:
        to1 = money(to1_amount)

    to2_percent = to_decimal(to2_percent)
    if to2_percent > 0:
        to2 = money((subtotal - to1) * to2_percent / HUNDRED)
    else:
        to2 = money(to2_amount)

    return TradeOfferResult(to1_amount=to1, to2_amount=to2, net_amount=subtotal - to1 - to2)


def calculate_net_after_trade_offers(
    subtotal: Any,
    to1: Optional[Mapping[str, Any]] = None,
    to2: Optional[Mapping[str, Any]] = None
) -> TradeOfferResult:
    """
    Standalone trade-offer calculator for quoting.

    `to1` / `to2` are {"percent": ..., "amount": ...}. Here a positive fixed
    amount overrides the percent. The net amount never goes below zero.
    """
    to1 = to1 or {}
    to2 = to2 or {}
    subtotal = to_decimal(subtotal)

    if subtotal <= 0:
        return TradeOfferResult(net_amount=subtotal)

    def _offer(base: Decimal, offer: Mapping[str, Any]) -> Decimal:
        fixed_amount = to_decimal(offer.get("amount"))
        if fixed_amount > 0:
            return money(fixed_amount)
        percent = to_decimal(offer.get("percent"))
        if base <= 0 or percent <= 0:
            return ZERO
        return money(base * percent / HUNDRED)

    to1_amount = _offer(subtotal, to1)
    after_to1 = subtotal - to1_amount
    to2_amount = _offer(after_to1, to2)
    net_amount = after_to1 - to2_amount

    return TradeOfferResult(
        to1_amount=to1_amount,
        to2_amount=to2_amount,
        net_amount=max(net_amount, ZERO),
    )


# ==================== Pipeline ====================

def compute_totals(
    draft: Any,
    account: Optional[AccountRateProvider] = None,
    previous_totals: Optional[Mapping[str, Any]] = None
) -> InvoiceTotals:
    """
    Compute all derived totals for a draft invoice.

    Args:
        draft: invoice-like object with `items` and trade offer fields
        account: resolved party account; None skips account-driven taxes
        previous_totals: totals of the last save, used only to carry the
            income tax forward when no `income_tax_base` is supplied

    Returns:
        InvoiceTotals with per-line breakdown in item order
    """
    lines = [compute_line(line, account) for line in draft.items]

    subtotal = sum((line.item_subtotal for line in lines), ZERO)
    total_discount = sum((line.discount_amount for line in lines), ZERO)
    line_tax = sum((line.tax_amount for line in lines), ZERO)
    gst18_total = sum((line.gst_amount for line in lines if line.gst_rate == GST_STANDARD_RATE), ZERO)
    gst4_total = sum((line.gst_amount for line in lines if line.gst_rate == GST_REDUCED_RATE), ZERO)
    advance_tax_total = sum((line.advance_tax_amount for line in lines), ZERO)
    non_filer_gst_total = money(sum((line.non_filer_gst for line in lines), ZERO))

    total_tax = line_tax + non_filer_gst_total

    trade_offers = calculate_trade_offers(
        subtotal,
        getattr(draft, "to1_percent", None),
        getattr(draft, "to1_amount", None),
        getattr(draft, "to2_percent", None),
        getattr(draft, "to2_amount", None),
    )

    grand_total = (
        subtotal - total_discount
        - trade_offers.to1_amount - trade_offers.to2_amount
        + total_tax
    )

    income_tax_base = getattr(draft, "income_tax_base", None)
    if income_tax_base is not None:
        income_tax_total = calculate_income_tax(income_tax_base)
    elif previous_totals:
        income_tax_total = money(previous_totals.get("income_tax_total"))
    else:
        income_tax_total = ZERO

    return InvoiceTotals(
        subtotal=subtotal,
        total_discount=total_discount,
        total_tax=total_tax,
        grand_total=grand_total,
        gst18_total=gst18_total,
        gst4_total=gst4_total,
        advance_tax_total=advance_tax_total,
        non_filer_gst_total=non_filer_gst_total,
        income_tax_total=income_tax_total,
        to1_amount=trade_offers.to1_amount,
        to2_amount=trade_offers.to2_amount,
        lines=lines,
    )


def apply_totals(invoice: Any, totals: InvoiceTotals) -> Any:
    """Write computed totals onto the invoice and its lines."""
    for line, computed in zip(invoice.items, totals.lines):
        line.item_subtotal = computed.item_subtotal
        line.discount_amount = computed.discount_amount
        line.discount1_amount = computed.discount1_amount
        line.discount2_amount = computed.discount2_amount
        line.taxable_amount = computed.taxable_amount
        line.gst_rate = computed.gst_rate
        line.gst_amount = computed.gst_amount
        line.advance_tax_percent = computed.advance_tax_percent
        line.advance_tax_amount = computed.advance_tax_amount
        line.tax_amount = computed.tax_amount
        line.line_total = computed.line_total

    invoice.subtotal = totals.subtotal
    invoice.total_discount = totals.total_discount
    invoice.total_tax = totals.total_tax
    invoice.grand_total = totals.grand_total
    invoice.gst18_total = totals.gst18_total
    invoice.gst4_total = totals.gst4_total
    invoice.advance_tax_total = totals.advance_tax_total
    invoice.non_filer_gst_total = totals.non_filer_gst_total
    invoice.income_tax_total = totals.income_tax_total
    invoice.income_tax = totals.income_tax_total
    invoice.to1_amount = totals.to1_amount
    invoice.to2_amount = totals.to2_amount
    return invoice

"""
Scheme Service

Handles promotional schemes on invoices:
- Parsing "BUY+BONUS" formats and computing bonus quantities
- Eligibility checks (items, customers, quantity window)
- Invoice-wide auto-application of active schemes

USAGE:
    from app.services.scheme_service import calculate_scheme_bonus

    bonus = calculate_scheme_bonus(24, "12+1")
    # bonus.complete_sets == 2, bonus.bonus_quantity == 2, bonus.total_quantity == 26
"""

import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.scheme import Scheme, SchemeType
from app.services.tax_service import to_decimal


logger = logging.getLogger(__name__)


SCHEME_FORMAT_PATTERN = re.compile(r"(\d+)\+(\d+)")


class SchemeError(Exception):
    """Base exception for scheme errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SchemeFormatError(SchemeError):
    """Scheme format string could not be used."""
    pass


class InvalidSchemeFormat(SchemeFormatError):
    """Format string does not look like BUY+BONUS."""
    pass


class InvalidSchemeOperands(SchemeFormatError):
    """BUY or BONUS part of the format is not positive."""
    pass


class SchemeNotFoundError(SchemeError):
    pass


class DuplicateSchemeError(SchemeError):
    pass


@dataclass
class SchemeBonus:
    """Result of applying a BUY+BONUS format to a quantity."""
    scheme_format: str
    purchased_quantity: Decimal
    buy_quantity: int
    free_quantity: int
    complete_sets: int
    bonus_quantity: int
    total_quantity: Decimal


@dataclass
class SchemeApplication:
    """Outcome of one invoice-wide scheme pass."""
    to2_percent: Decimal = Decimal("0")
    applied: List[Dict[str, Any]] = field(default_factory=list)


def parse_scheme_format(scheme_format: str) -> tuple:
    """Split "12+1" into (12, 1)."""
    match = SCHEME_FORMAT_PATTERN.search(scheme_format or "")
    if not match:
        raise InvalidSchemeFormat(
            f"Invalid scheme format '{scheme_format}'. Expected BUY+BONUS, e.g. 12+1",
            {"scheme_format": scheme_format}
        )

    buy_quantity = int(match.group(1))
    free_quantity = int(match.group(2))
    if buy_quantity <= 0 or free_quantity <= 0:
        raise InvalidSchemeOperands(
            f"Scheme format '{scheme_format}' must have positive buy and bonus quantities",
            {"scheme_format": scheme_format, "buy": buy_quantity, "bonus": free_quantity}
        )

    return buy_quantity, free_quantity


def calculate_scheme_bonus(quantity: Optional[Any], scheme_format: str) -> SchemeBonus:
    """
    Bonus quantity earned by `quantity` under a BUY+BONUS format.

    The format is always validated, even when quantity is zero or missing
    (which simply earns no bonus).
    """
    buy_quantity, free_quantity = parse_scheme_format(scheme_format)
    quantity = to_decimal(quantity)

    if quantity <= 0:
        complete_sets = 0
    else:
        complete_sets = math.floor(quantity / buy_quantity)

    bonus_quantity = complete_sets * free_quantity

    return SchemeBonus(
        scheme_format=scheme_format,
        purchased_quantity=quantity,
        buy_quantity=buy_quantity,
        free_quantity=free_quantity,
        complete_sets=complete_sets,
        bonus_quantity=bonus_quantity,
        total_quantity=quantity + bonus_quantity,
    )


def is_scheme_applicable(scheme: Scheme, item_id: Any, party_id: Any, quantity: Any) -> bool:
    return (
        scheme.is_item_eligible(item_id)
        and scheme.is_customer_eligible(party_id)
        and scheme.qualifies_for_scheme(quantity)
    )


def _clear_scheme_discount2(line: Any) -> None:
    previous = to_decimal(getattr(line, "scheme_discount2_percent", None))
    if previous > 0 and to_decimal(line.discount2_percent) == previous:
        line.discount2_percent = Decimal("0")
        line.discount2_amount = Decimal("0")
    line.scheme_discount2_percent = Decimal("0")


def apply_schemes(lines: Sequence[Any], schemes: Sequence[Scheme], party_id: Any) -> SchemeApplication:
    """
    Auto-apply schemes across all invoice lines.

    For every line, schemes are tried in list order. The first eligible
    scheme of each type sets that type's bonus quantity field, and the first
    eligible scheme with a discount 2 sets the line's discount 2 percent.
    The TO2 percent of every distinct applied scheme is added once to the
    invoice-level total returned to the caller.

    Lines are mutated in place. Bonus fields are reset first, and a discount 2
    percent that an earlier pass set (tracked in `scheme_discount2_percent`)
    is cleared unless the user has since changed it, so a second pass over
    the same invoice gives the same result.
    """
    result = SchemeApplication()
    applied_scheme_ids = set()

    for index, line in enumerate(lines):
        line.scheme1_quantity = Decimal("0")
        line.scheme2_quantity = Decimal("0")
        _clear_scheme_discount2(line)
        filled_types = set()
        discount2_set = False

        for scheme in schemes:
            if not is_scheme_applicable(scheme, line.item_id, party_id, line.quantity):
                continue

            scheme_type = SchemeType(scheme.scheme_type)
            touched = False

            if scheme_type not in filled_types:
                bonus = calculate_scheme_bonus(line.quantity, scheme.scheme_format)
                if scheme_type == SchemeType.SCHEME1:
                    line.scheme1_quantity = Decimal(bonus.bonus_quantity)
                else:
                    line.scheme2_quantity = Decimal(bonus.bonus_quantity)
                filled_types.add(scheme_type)
                touched = True

            discount2 = to_decimal(scheme.discount2_percent)
            if discount2 > 0 and not discount2_set:
                line.discount2_percent = discount2
                line.scheme_discount2_percent = discount2
                discount2_set = True
                touched = True

            if not touched:
                continue

            result.applied.append({
                "line": index,
                "item_id": line.item_id,
                "scheme_id": scheme.id,
                "scheme_name": scheme.name,
            })

            if scheme.id not in applied_scheme_ids:
                applied_scheme_ids.add(scheme.id)
                result.to2_percent += to_decimal(scheme.to2_percent)

    return result


class SchemeService:
    """Service for scheme lookup, creation and qualification checks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_schemes(
        self,
        company_id: Optional[uuid.UUID] = None,
        on_date: Optional[date] = None
    ) -> List[Scheme]:
        """Active schemes whose date window covers `on_date` (default today)."""
        on_date = on_date or date.today()
        filters = [
            Scheme.is_active == True,
            Scheme.start_date <= on_date,
            Scheme.end_date >= on_date,
        ]
        if company_id:
            filters.append(Scheme.company_id == company_id)

        result = await self.db.execute(
            select(Scheme).where(and_(*filters)).order_by(Scheme.name)
        )
        return list(result.scalars().all())

    async def get_scheme(self, scheme_id: uuid.UUID) -> Scheme:
        scheme = await self.db.get(Scheme, scheme_id)
        if not scheme:
            raise SchemeNotFoundError(f"Scheme {scheme_id} not found")
        return scheme

    async def create_scheme(self, data: Dict[str, Any]) -> Scheme:
        """Create a scheme after validating its format and date window."""
        parse_scheme_format(data.get("scheme_format"))

        if data["end_date"] < data["start_date"]:
            raise SchemeError("End date cannot be before start date")

        data = dict(data)
        data["applicable_items"] = [str(i) for i in data.get("applicable_items") or []]
        data["applicable_customers"] = [str(c) for c in data.get("applicable_customers") or []]

        scheme = Scheme(**data)
        self.db.add(scheme)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateSchemeError(f"A scheme named '{data.get('name')}' already exists")

        logger.info(f"Created scheme {scheme.name} ({scheme.scheme_format})")
        return scheme

    async def check_scheme_qualification(
        self,
        scheme_id: uuid.UUID,
        item_id: str,
        customer_id: Optional[uuid.UUID],
        quantity: Decimal,
        on_date: Optional[date] = None
    ) -> Dict[str, Any]:
        """Explain whether (item, customer, quantity) qualifies for a scheme."""
        scheme = await self.get_scheme(scheme_id)

        result = {
            "scheme_id": scheme.id,
            "scheme_name": scheme.name,
            "qualifies": False,
            "reasons": [],
        }

        if not scheme.is_currently_active(on_date):
            result["reasons"].append("Scheme is not currently active")
            return result

        if not scheme.is_item_eligible(item_id):
            result["reasons"].append("Item is not eligible for this scheme")
            return result

        if not scheme.is_customer_eligible(customer_id):
            result["reasons"].append("Customer is not eligible for this scheme")
            return result

        if not scheme.qualifies_for_scheme(quantity):
            minimum = to_decimal(scheme.minimum_quantity)
            maximum = to_decimal(scheme.maximum_quantity)
            if to_decimal(quantity) < minimum:
                result["reasons"].append(f"Minimum quantity {minimum} not met")
            if maximum > 0 and to_decimal(quantity) > maximum:
                result["reasons"].append(f"Quantity exceeds maximum of {maximum}")
            return result

        bonus = calculate_scheme_bonus(quantity, scheme.scheme_format)
        result["qualifies"] = True
        result["scheme_format"] = scheme.scheme_format
        result["discount_percent"] = scheme.discount_percent
        result["bonus_quantity"] = bonus.bonus_quantity
        return result

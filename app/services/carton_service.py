"""
Carton Calculation Service

Derives carton quantities from box quantities:
- Per line: ceil(box_quantity / boxes_per_carton)
- Per invoice: ceil(sum of box quantities / boxes_per_carton)

The invoice figure is computed from the summed boxes, not by adding the
per-line cartons, so three lines of 12 + 12 + 6 boxes ship as 3 cartons.
"""

import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.config import settings
from app.services.tax_service import to_decimal


class CartonCalculationError(Exception):
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def _format_count(count: Any) -> str:
    count = to_decimal(count)
    if count == count.to_integral_value():
        return str(int(count))
    return str(count.normalize())


class CartonCalculationService:
    """Carton arithmetic shared by the invoice pipeline and the API."""

    def get_default_boxes_per_carton(self) -> int:
        return settings.DEFAULT_BOXES_PER_CARTON

    def calculate_carton_qty(self, box_qty: Any = 0, boxes_per_carton: Optional[int] = None) -> int:
        """Cartons needed for `box_qty` boxes, rounded up."""
        box_qty = to_decimal(box_qty)
        if box_qty < 0:
            raise CartonCalculationError("Box quantity cannot be negative")

        divisor = boxes_per_carton if boxes_per_carton is not None else self.get_default_boxes_per_carton()
        if divisor <= 0:
            raise CartonCalculationError("Boxes per carton must be greater than zero")

        if box_qty == 0:
            return 0

        return math.ceil(box_qty / Decimal(divisor))

    def calculate_item_carton_qty(self, item: Any, boxes_per_carton: Optional[int] = None) -> int:
        if item is None:
            raise CartonCalculationError("Invalid item object")
        return self.calculate_carton_qty(getattr(item, "box_quantity", None) or 0, boxes_per_carton)

    def calculate_invoice_carton_qty(self, invoice: Any, boxes_per_carton: Optional[int] = None) -> int:
        if invoice is None or getattr(invoice, "items", None) is None:
            raise CartonCalculationError("Invalid invoice object")

        total_boxes = Decimal("0")
        for item in invoice.items:
            box_quantity = to_decimal(getattr(item, "box_quantity", None))
            if box_quantity > 0:
                total_boxes += box_quantity

        return self.calculate_carton_qty(total_boxes, boxes_per_carton)

    def calculate_all_carton_quantities(
        self,
        invoice: Any,
        boxes_per_carton: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Per-line carton breakdown.

        `total_cartons` here is the sum of line cartons, which can be larger
        than calculate_invoice_carton_qty for the same invoice.
        """
        if invoice is None or getattr(invoice, "items", None) is None:
            raise CartonCalculationError("Invalid invoice object")

        item_cartons: List[Dict[str, Any]] = []
        total_cartons = 0
        for index, item in enumerate(invoice.items):
            carton_qty = self.calculate_item_carton_qty(item, boxes_per_carton)
            item_cartons.append({
                "index": index,
                "item_id": getattr(item, "item_id", None),
                "box_quantity": to_decimal(getattr(item, "box_quantity", None)),
                "carton_qty": carton_qty,
            })
            total_cartons += carton_qty

        return {
            "item_cartons": item_cartons,
            "total_cartons": total_cartons,
            "boxes_per_carton": boxes_per_carton or self.get_default_boxes_per_carton(),
        }

    def apply_carton_quantities(self, invoice: Any, boxes_per_carton: Optional[int] = None) -> Any:
        """Set `carton_qty` on every line and `total_cartons` on the invoice."""
        for item in invoice.items:
            item.carton_qty = self.calculate_item_carton_qty(item, boxes_per_carton)
        invoice.total_cartons = self.calculate_invoice_carton_qty(invoice, boxes_per_carton)
        return invoice

    def format_carton_box_unit_display(self, carton_qty: Any = 0, box_qty: Any = 0, unit_qty: Any = 0) -> str:
        """e.g. "2 Cartons + 1 Box + 5 Units"; "0" when everything is empty."""
        parts = []
        for count, singular, plural in (
            (carton_qty, "Carton", "Cartons"),
            (box_qty, "Box", "Boxes"),
            (unit_qty, "Unit", "Units"),
        ):
            count = to_decimal(count)
            if count > 0:
                parts.append(f"{_format_count(count)} {plural if count > 1 else singular}")

        return " + ".join(parts) or "0"

    def validate_carton_data(
        self,
        box_qty: Optional[Any] = None,
        boxes_per_carton: Optional[int] = None
    ) -> Dict[str, Any]:
        errors = []
        if box_qty is not None and to_decimal(box_qty) < 0:
            errors.append("Box quantity cannot be negative")
        if boxes_per_carton is not None and boxes_per_carton <= 0:
            errors.append("Boxes per carton must be greater than zero")

        return {"valid": not errors, "errors": errors}


carton_service = CartonCalculationService()

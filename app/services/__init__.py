# Services module
from app.services.invoice_service import InvoiceService
from app.services.scheme_service import SchemeService
from app.services.balance_service import BalanceCalculationService
from app.services.carton_service import CartonCalculationService, carton_service
from app.services.totals_engine import compute_totals, apply_totals

__all__ = [
    "InvoiceService",
    "SchemeService",
    "BalanceCalculationService",
    "CartonCalculationService",
    "carton_service",
    "compute_totals",
    "apply_totals",
]

# Models module
from app.models.party import Customer, Supplier, PartyType
from app.models.ledger import LedgerEntry
from app.models.scheme import Scheme, SchemeType
from app.models.invoice import (
    Invoice, InvoiceItem, InvoiceType, InvoiceStatus, PaymentStatus,
)

__all__ = [
    "Customer",
    "Supplier",
    "PartyType",
    "LedgerEntry",
    "Scheme",
    "SchemeType",
    "Invoice",
    "InvoiceItem",
    "InvoiceType",
    "InvoiceStatus",
    "PaymentStatus",
]

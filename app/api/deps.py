from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.invoice_service import InvoiceService
from app.services.scheme_service import SchemeService


def get_invoice_service(db: Annotated[AsyncSession, Depends(get_db)]) -> InvoiceService:
    return InvoiceService(db)


def get_scheme_service(db: Annotated[AsyncSession, Depends(get_db)]) -> SchemeService:
    return SchemeService(db)


# Type aliases for cleaner endpoint signatures
Invoices = Annotated[InvoiceService, Depends(get_invoice_service)]
Schemes = Annotated[SchemeService, Depends(get_scheme_service)]

from fastapi import APIRouter

from app.api.v1.endpoints import (
    invoices,
    schemes,
)


api_router = APIRouter(prefix="/api/v1")


# ==================== Invoices ====================
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)

# ==================== Schemes ====================
api_router.include_router(
    schemes.router,
    prefix="/schemes",
    tags=["Schemes"]
)

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.database import init_db, async_session_factory
from app.services.balance_service import BalanceCalculationError
from app.services.carton_service import CartonCalculationError
from app.services.invoice_service import (
    InvoiceError,
    InvoiceValidationError,
    DuplicateBillNumberError,
    InvoiceNumberConflictError,
    InvoiceNotFoundError,
    InvoiceStateError,
)
from app.services.scheme_service import (
    SchemeError,
    SchemeFormatError,
    SchemeNotFoundError,
    DuplicateSchemeError,
)
from app.services.tax_service import TaxCalculationError


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# Most specific classes first; the first isinstance match wins
ERROR_STATUS_CODES = (
    (InvoiceNotFoundError, status.HTTP_404_NOT_FOUND),
    (SchemeNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateBillNumberError, status.HTTP_409_CONFLICT),
    (InvoiceNumberConflictError, status.HTTP_409_CONFLICT),
    (DuplicateSchemeError, status.HTTP_409_CONFLICT),
    (InvoiceValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SchemeFormatError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TaxCalculationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CartonCalculationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvoiceStateError, status.HTTP_400_BAD_REQUEST),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Invoice totals, tax and scheme engine for pharmaceutical trading.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def error_status_code(exc: Exception) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(InvoiceError)
@app.exception_handler(SchemeError)
@app.exception_handler(TaxCalculationError)
@app.exception_handler(CartonCalculationError)
@app.exception_handler(BalanceCalculationError)
async def domain_exception_handler(request: Request, exc: Exception):
    """Map service exceptions to HTTP responses."""
    return JSONResponse(
        status_code=error_status_code(exc),
        content={
            "detail": getattr(exc, "message", str(exc)),
            "type": type(exc).__name__,
            "errors": getattr(exc, "details", {}).get("errors", []),
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

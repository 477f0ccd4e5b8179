import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, get_db, custom_json_dumps
from app.models.party import Customer, Supplier
from app.models.scheme import Scheme


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def build_customer(**overrides) -> Customer:
    values = dict(
        code="C001",
        name="City Pharmacy",
        credit_limit=Decimal("100000"),
        payment_terms=30,
        currency="PKR",
        advance_tax_rate=Decimal("0"),
        is_non_filer=False,
        is_active=True,
    )
    values.update(overrides)
    return Customer(**values)


def build_supplier(**overrides) -> Supplier:
    values = dict(
        code="S001",
        name="Getz Pharma",
        credit_limit=Decimal("500000"),
        payment_terms=45,
        currency="PKR",
        advance_tax_rate=Decimal("0"),
        is_non_filer=False,
        is_active=True,
    )
    values.update(overrides)
    return Supplier(**values)


def build_scheme(**overrides) -> Scheme:
    values = dict(
        name="Buy 12 get 1",
        scheme_type="scheme1",
        scheme_format="12+1",
        discount_percent=Decimal("0"),
        discount2_percent=Decimal("0"),
        to2_percent=Decimal("0"),
        is_active=True,
        start_date=date.today() - timedelta(days=30),
        end_date=date.today() + timedelta(days=30),
        applicable_items=[],
        applicable_customers=[],
        minimum_quantity=Decimal("0"),
        maximum_quantity=Decimal("0"),
    )
    values.update(overrides)
    return Scheme(**values)


@pytest.fixture
def make_customer(db):
    async def _make(**overrides) -> Customer:
        customer = build_customer(**overrides)
        db.add(customer)
        await db.flush()
        return customer
    return _make


@pytest.fixture
def make_supplier(db):
    async def _make(**overrides) -> Supplier:
        supplier = build_supplier(**overrides)
        db.add(supplier)
        await db.flush()
        return supplier
    return _make


@pytest.fixture
async def customer(make_customer):
    return await make_customer()


@pytest.fixture
async def supplier(make_supplier):
    return await make_supplier()

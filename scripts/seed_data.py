"""Seed demo parties, an opening balance and a scheme for local testing."""
import asyncio
from datetime import date, timedelta
from decimal import Decimal

from app.database import get_db_session
from app.models import Customer, Supplier, LedgerEntry, Scheme, PartyType


async def seed():
    """Seed initial data."""
    async with get_db_session() as db:
        print("Seeding data...")

        # 1. Parties
        print("Creating customers and suppliers...")
        pharmacy = Customer(
            code="C001",
            name="City Pharmacy",
            credit_limit=Decimal("250000"),
            payment_terms=30,
            advance_tax_rate=Decimal("0.5"),
        )
        clinic = Customer(
            code="C002",
            name="Al-Shifa Clinic",
            credit_limit=Decimal("50000"),
            payment_terms=15,
            advance_tax_rate=Decimal("2.5"),
            is_non_filer=True,
        )
        distributor = Supplier(
            code="S001",
            name="Getz Pharma",
            credit_limit=Decimal("1000000"),
            payment_terms=45,
        )
        db.add_all([pharmacy, clinic, distributor])
        await db.flush()

        # 2. Opening balance
        print("Posting opening balance...")
        db.add(LedgerEntry(
            party_id=pharmacy.id,
            party_type=PartyType.CUSTOMER.value,
            entry_date=date.today() - timedelta(days=30),
            debit=Decimal("45000"),
            credit=Decimal("0"),
            description="Opening balance",
            reference_type="journal",
        ))

        # 3. Scheme
        print("Creating schemes...")
        db.add(Scheme(
            name="Panadol 12+1",
            scheme_type="scheme1",
            scheme_format="12+1",
            discount2_percent=Decimal("7.69"),
            to2_percent=Decimal("1"),
            start_date=date.today(),
            end_date=date.today() + timedelta(days=90),
            applicable_items=["PARA-500"],
            applicable_customers=[],
        ))

    print("Seed data created successfully!")


if __name__ == "__main__":
    asyncio.run(seed())

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func, text
from sqlalchemy.exc import IntegrityError

from app.models.invoice import Invoice
from app.models.ledger import LedgerEntry
from app.models.party import Customer
from app.services.balance_service import BalanceCalculationService, BalanceCalculationError
from app.services.invoice_service import (
    InvoiceService,
    InvoiceValidationError,
    DuplicateBillNumberError,
    InvoiceNotFoundError,
    InvoiceStateError,
    InvoiceNumberConflictError,
)
from conftest import build_scheme


YEAR = datetime.now(timezone.utc).year


def item(**overrides):
    values = dict(
        item_id="PARA-500",
        item_name="Paracetamol 500mg",
        quantity=Decimal("10"),
        unit_price=Decimal("100"),
        gst_rate=Decimal("18"),
    )
    values.update(overrides)
    return values


def sales_data(customer, **overrides):
    values = dict(
        invoice_type="sales",
        customer_id=customer.id,
        invoice_date=date.today(),
        items=[item()],
    )
    values.update(overrides)
    return values


def purchase_data(supplier, bill="BILL-001", **overrides):
    values = dict(
        invoice_type="purchase",
        supplier_id=supplier.id,
        supplier_bill_number=bill,
        invoice_date=date.today(),
        items=[item()],
    )
    values.update(overrides)
    return values


# ==================== Numbering ====================

async def test_invoice_numbers_are_sequential_per_type(db, customer, supplier) -> None:
    service = InvoiceService(db)

    first = await service.create_invoice(sales_data(customer))
    second = await service.create_invoice(sales_data(customer))
    purchase = await service.create_invoice(purchase_data(supplier))

    assert first.invoice_number == f"SI{YEAR}000001"
    assert second.invoice_number == f"SI{YEAR}000002"
    assert purchase.invoice_number == f"PI{YEAR}000001"


async def test_next_number_for_returns(db) -> None:
    service = InvoiceService(db)
    assert await service.generate_next_invoice_number("return_sales", 2024) == "SR2024000001"
    assert await service.generate_next_invoice_number("return_purchase", 2024) == "PR2024000001"


async def test_due_date_from_party_payment_terms(db, customer) -> None:
    invoice = await InvoiceService(db).create_invoice(sales_data(customer, invoice_date=date(2024, 1, 1)))
    assert invoice.due_date == date(2024, 1, 31)


async def test_explicit_due_date_is_kept(db, customer) -> None:
    invoice = await InvoiceService(db).create_invoice(
        sales_data(customer, invoice_date=date(2024, 1, 1), due_date=date(2024, 1, 10))
    )
    assert invoice.due_date == date(2024, 1, 10)


# ==================== Totals on save ====================

async def test_create_computes_totals_and_cartons(db, customer) -> None:
    data = sales_data(customer, items=[
        item(box_quantity=Decimal("12"), box_rate=Decimal("50"), quantity=Decimal("12")),
        item(item_id="ASP-75", box_quantity=Decimal("12"), box_rate=Decimal("50"), quantity=Decimal("12"), gst_rate=Decimal("4")),
        item(item_id="ORS", box_quantity=Decimal("6"), box_rate=Decimal("50"), quantity=Decimal("6"), gst_rate=Decimal("0")),
    ])

    invoice = await InvoiceService(db).create_invoice(data)

    assert invoice.subtotal == Decimal("1500.00")
    assert invoice.gst18_total == Decimal("108.00")
    assert invoice.gst4_total == Decimal("24.00")
    assert invoice.grand_total == Decimal("1632.00")
    assert invoice.total_cartons == 3
    assert [line.line_number for line in invoice.items] == [1, 2, 3]


async def test_update_recomputes_trade_offers(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer, items=[item(gst_rate=Decimal("0"))]))

    updated = await service.update_invoice(invoice.id, {"to1_percent": Decimal("10"), "to2_percent": Decimal("5")})

    assert updated.to1_amount == Decimal("100.00")
    assert updated.to2_amount == Decimal("45.00")
    assert updated.grand_total == Decimal("855.00")


async def test_update_keeps_income_tax(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer, income_tax_base=Decimal("1000")))
    assert invoice.income_tax_total == Decimal("55.00")

    updated = await service.update_invoice(invoice.id, {"notes": "Deliver before noon"})

    assert updated.income_tax_total == Decimal("55.00")
    assert updated.income_tax == Decimal("55.00")


async def test_replacing_items_renumbers_lines(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))

    updated = await service.update_invoice(invoice.id, {"items": [item(quantity=Decimal("2")), item(item_id="ASP-75")]})

    assert len(updated.items) == 2
    assert updated.subtotal == Decimal("1200.00")


async def test_add_and_remove_item(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))

    invoice = await service.add_item(invoice.id, item(item_id="ASP-75", unit_price=Decimal("50")))
    assert [line.line_number for line in invoice.items] == [1, 2]
    assert invoice.subtotal == Decimal("1500.00")

    invoice = await service.remove_item(invoice.id, invoice.items[0].id)
    assert len(invoice.items) == 1
    assert invoice.subtotal == Decimal("500.00")


async def test_remove_unknown_item(db, customer) -> None:
    import uuid

    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))

    with pytest.raises(InvoiceNotFoundError):
        await service.remove_item(invoice.id, uuid.uuid4())


async def test_schemes_applied_on_create(db, customer) -> None:
    db.add(build_scheme(to2_percent=Decimal("2")))
    await db.flush()

    invoice = await InvoiceService(db).create_invoice(
        sales_data(customer, items=[item(quantity=Decimal("24"), gst_rate=Decimal("0"))]),
        apply_schemes=True,
    )

    assert invoice.items[0].scheme1_quantity == 2
    assert invoice.to2_percent == Decimal("2")
    assert invoice.to2_amount == Decimal("48.00")


async def test_schemes_ignored_unless_requested(db, customer) -> None:
    db.add(build_scheme())
    await db.flush()

    invoice = await InvoiceService(db).create_invoice(sales_data(customer, items=[item(quantity=Decimal("24"))]))

    assert invoice.items[0].scheme1_quantity == 0


async def test_rerun_drops_scheme_values_when_line_stops_qualifying(db, customer) -> None:
    db.add(build_scheme(
        discount2_percent=Decimal("5"),
        to2_percent=Decimal("2"),
        minimum_quantity=Decimal("12"),
    ))
    await db.flush()
    service = InvoiceService(db)

    invoice = await service.create_invoice(
        sales_data(customer, items=[item(quantity=Decimal("24"), gst_rate=Decimal("0"))]),
        apply_schemes=True,
    )
    assert invoice.items[0].discount2_amount == Decimal("120.00")
    assert invoice.to2_amount == Decimal("48.00")

    updated = await service.update_invoice(
        invoice.id,
        {"items": [item(quantity=Decimal("5"), gst_rate=Decimal("0"))]},
        apply_schemes=True,
    )

    assert updated.items[0].scheme1_quantity == 0
    assert updated.items[0].discount2_percent == 0
    assert updated.to2_percent == 0
    assert updated.to2_amount == 0
    assert updated.grand_total == Decimal("500.00")


async def test_rerun_keeps_user_trade_offer(db, customer) -> None:
    db.add(build_scheme(to2_percent=Decimal("2"), minimum_quantity=Decimal("12")))
    await db.flush()
    service = InvoiceService(db)

    invoice = await service.create_invoice(
        sales_data(customer, items=[item(quantity=Decimal("24"), gst_rate=Decimal("0"))]),
        apply_schemes=True,
    )
    updated = await service.update_invoice(
        invoice.id,
        {"to2_percent": Decimal("3"), "items": [item(quantity=Decimal("5"), gst_rate=Decimal("0"))]},
        apply_schemes=True,
    )

    assert updated.to2_percent == Decimal("3")
    assert updated.to2_amount == Decimal("15.00")


# ==================== Validation ====================

async def test_validation_collects_every_error(db) -> None:
    data = dict(
        invoice_type="sales",
        invoice_date=date.today(),
        items=[item(quantity=Decimal("0"), gst_rate=Decimal("5"))],
    )

    with pytest.raises(InvoiceValidationError) as exc_info:
        await InvoiceService(db).create_invoice(data)

    errors = exc_info.value.details["errors"]
    assert "Customer ID is required for sales invoices" in errors
    assert "Line 1: quantity must be greater than zero" in errors
    assert "Line 1: GST rate must be 0, 4 or 18" in errors


async def test_invoice_needs_items(db, customer) -> None:
    with pytest.raises(InvoiceValidationError) as exc_info:
        await InvoiceService(db).create_invoice(sales_data(customer, items=[]))
    assert exc_info.value.details["errors"] == ["Invoice must contain at least one item"]


async def test_purchase_needs_supplier_bill(db, supplier) -> None:
    with pytest.raises(InvoiceValidationError) as exc_info:
        await InvoiceService(db).create_invoice(purchase_data(supplier, bill=None))
    assert "Supplier bill number is required for purchase invoices" in exc_info.value.details["errors"]


async def test_scheme_quantity_cannot_exceed_quantity(db, supplier) -> None:
    data = purchase_data(supplier, items=[item(scheme_quantity=Decimal("11"))])

    with pytest.raises(InvoiceValidationError) as exc_info:
        await InvoiceService(db).create_invoice(data)
    assert exc_info.value.details["errors"] == ["Line 1: scheme quantity cannot exceed quantity"]


async def test_return_needs_original_and_reason(db, customer) -> None:
    service = InvoiceService(db)

    with pytest.raises(InvoiceValidationError) as exc_info:
        await service.create_invoice(sales_data(customer, invoice_type="return_sales"))
    assert exc_info.value.details["errors"] == [
        "Original invoice is required for returns",
        "Return reason is required for returns",
    ]

    original = await service.create_invoice(sales_data(customer))
    sales_return = await service.create_invoice(sales_data(
        customer,
        invoice_type="return_sales",
        original_invoice_id=original.id,
        return_metadata={"reason": "Damaged in transit"},
    ))
    assert sales_return.invoice_number == f"SR{YEAR}000001"


async def test_unknown_customer_is_rejected(db) -> None:
    import uuid

    with pytest.raises(InvoiceValidationError):
        await InvoiceService(db).create_invoice(dict(
            invoice_type="sales",
            customer_id=uuid.uuid4(),
            invoice_date=date.today(),
            due_date=date.today(),
            items=[item()],
        ))


# ==================== Duplicate supplier bills ====================

async def test_duplicate_bill_for_same_supplier(db, supplier) -> None:
    service = InvoiceService(db)
    existing = await service.create_invoice(purchase_data(supplier))

    with pytest.raises(DuplicateBillNumberError) as exc_info:
        await service.create_invoice(purchase_data(supplier))

    assert exc_info.value.message == (
        f"Bill number 'BILL-001' already exists for this supplier "
        f"(Invoice: {existing.invoice_number}, dated {existing.invoice_date.isoformat()})"
    )


async def test_same_bill_for_other_supplier(db, supplier, make_supplier) -> None:
    other = await make_supplier(code="S002", name="Searle")
    service = InvoiceService(db)

    await service.create_invoice(purchase_data(supplier))
    invoice = await service.create_invoice(purchase_data(other))

    assert invoice.supplier_bill_number == "BILL-001"


async def test_bill_numbers_are_case_sensitive(db, supplier) -> None:
    service = InvoiceService(db)

    await service.create_invoice(purchase_data(supplier, bill="bill-001"))
    invoice = await service.create_invoice(purchase_data(supplier, bill="BILL-001"))

    assert invoice.invoice_number == f"PI{YEAR}000002"


async def test_cancelled_bill_can_be_reused(db, supplier) -> None:
    service = InvoiceService(db)
    first = await service.create_invoice(purchase_data(supplier))
    await service.cancel_invoice(first.id, "Entered twice")

    second = await service.create_invoice(purchase_data(supplier))

    assert second.supplier_bill_number == first.supplier_bill_number


async def test_updating_own_invoice_is_not_a_duplicate(db, supplier) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(purchase_data(supplier))

    updated = await service.update_invoice(invoice.id, {"notes": "Checked"})

    assert updated.notes == "Checked"


async def test_purchase_return_shares_bill_namespace(db, supplier) -> None:
    service = InvoiceService(db)
    original = await service.create_invoice(purchase_data(supplier))

    with pytest.raises(DuplicateBillNumberError):
        await service.create_invoice(purchase_data(
            supplier,
            invoice_type="return_purchase",
            original_invoice_id=original.id,
            return_metadata={"reason": "Expired stock"},
        ))


# ==================== Balance snapshot ====================

async def test_balance_snapshot_on_create(db, make_customer) -> None:
    customer = await make_customer(credit_limit=Decimal("1000"))
    db.add(LedgerEntry(
        party_id=customer.id,
        party_type="Customer",
        entry_date=date.today() - timedelta(days=5),
        debit=Decimal("500"),
        credit=Decimal("0"),
    ))
    await db.flush()

    invoice = await InvoiceService(db).create_invoice(sales_data(customer))

    assert invoice.grand_total == Decimal("1180.00")
    assert invoice.previous_balance == Decimal("500.00")
    assert invoice.total_balance == Decimal("1680.00")
    assert invoice.credit_limit_exceeded is True
    assert invoice.available_credit == 0
    assert invoice.credit_limit_warning == (
        "WARNING: Customer credit limit exceeded by 680.00. "
        "Total balance: 1680.00, Credit limit: 1000.00"
    )


async def test_balance_failure_does_not_block_save(db, customer, monkeypatch) -> None:
    async def broken_summary(self, *args, **kwargs):
        raise BalanceCalculationError("ledger unavailable")

    monkeypatch.setattr(BalanceCalculationService, "calculate_balance_summary", broken_summary)

    invoice = await InvoiceService(db).create_invoice(sales_data(customer))

    assert invoice.id is not None
    assert invoice.previous_balance == 0
    assert invoice.total_balance == invoice.grand_total
    assert invoice.credit_limit_exceeded is False
    assert invoice.credit_limit_warning == ""


async def test_balance_query_error_rolls_back_only_the_snapshot(db, customer, monkeypatch) -> None:
    async def failing_ledger_query(self, party_id, as_of):
        await self.db.execute(text("SELECT debit FROM missing_ledger_table"))

    monkeypatch.setattr(BalanceCalculationService, "get_ledger_balance", failing_ledger_query)

    invoice = await InvoiceService(db).create_invoice(sales_data(customer))

    assert invoice.previous_balance == 0
    assert invoice.total_balance == Decimal("1180.00")
    customers = await db.scalar(select(func.count(Customer.id)))
    invoices = await db.scalar(select(func.count(Invoice.id)))
    assert customers == 1
    assert invoices == 1


# ==================== Lifecycle ====================

async def test_confirm_only_moves_drafts(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))

    confirmed = await service.confirm_invoice(invoice.id)
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_at is not None

    await service.mark_as_paid(invoice.id)
    again = await service.confirm_invoice(invoice.id)
    assert again.status == "paid"


async def test_paid_invoice_cannot_be_cancelled_or_edited(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))
    paid = await service.mark_as_paid(invoice.id)
    assert paid.payment_status == "paid"

    with pytest.raises(InvoiceStateError):
        await service.cancel_invoice(invoice.id)
    with pytest.raises(InvoiceStateError):
        await service.update_invoice(invoice.id, {"notes": "late edit"})


async def test_cancelled_invoice_is_frozen(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))
    cancelled = await service.cancel_invoice(invoice.id, "Customer changed order")

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Customer changed order"
    with pytest.raises(InvoiceStateError):
        await service.cancel_invoice(invoice.id)
    with pytest.raises(InvoiceStateError):
        await service.mark_as_paid(invoice.id)
    with pytest.raises(InvoiceStateError):
        await service.add_item(invoice.id, item())


async def test_missing_invoice(db) -> None:
    import uuid

    with pytest.raises(InvoiceNotFoundError):
        await InvoiceService(db).get_invoice(uuid.uuid4())


# ==================== Queries ====================

async def test_find_overdue_invoices(db, customer) -> None:
    service = InvoiceService(db)
    overdue = await service.create_invoice(sales_data(customer, invoice_date=date(2024, 1, 1)))
    paid = await service.create_invoice(sales_data(customer, invoice_date=date(2024, 1, 1)))
    await service.mark_as_paid(paid.id)
    await service.create_invoice(sales_data(customer))

    result = await service.find_overdue_invoices()

    assert [invoice.id for invoice in result] == [overdue.id]
    assert result[0].is_overdue is True


async def test_find_by_date_range_and_list(db, customer, supplier) -> None:
    service = InvoiceService(db)
    await service.create_invoice(sales_data(customer, invoice_date=date(2024, 2, 1)))
    await service.create_invoice(sales_data(customer, invoice_date=date(2024, 3, 1)))
    await service.create_invoice(purchase_data(supplier, invoice_date=date(2024, 2, 15)))

    february = await service.find_by_date_range(date(2024, 2, 1), date(2024, 2, 29))
    assert len(february) == 2

    february_sales = await service.find_by_date_range(date(2024, 2, 1), date(2024, 2, 29), "sales")
    assert len(february_sales) == 1

    items, total, total_value = await service.list_invoices(invoice_type="sales")
    assert total == 2
    assert total_value == Decimal("2360.00")
    assert [i.invoice_date for i in items] == [date(2024, 3, 1), date(2024, 2, 1)]


async def test_preview_does_not_persist(db, customer) -> None:
    invoice, totals, application = await InvoiceService(db).preview_totals(sales_data(customer))

    assert totals.grand_total == Decimal("1180.00")
    assert invoice.items[0].line_total == Decimal("1180.00")
    assert application is None

    count = (await db.execute(select(func.count(Invoice.id)))).scalar()
    assert count == 0


async def test_dates_must_not_precede_invoice_date(db, customer) -> None:
    data = sales_data(
        customer,
        invoice_date=date(2024, 5, 10),
        due_date=date(2024, 5, 1),
        expiry_date=date(2024, 5, 2),
    )

    with pytest.raises(InvoiceValidationError) as exc_info:
        await InvoiceService(db).create_invoice(data)

    assert exc_info.value.details["errors"] == [
        "Due date cannot be before invoice date",
        "Expiry date cannot be before invoice date",
    ]


async def test_clearing_due_date_is_a_validation_error(db, customer) -> None:
    service = InvoiceService(db)
    invoice = await service.create_invoice(sales_data(customer))

    with pytest.raises(InvoiceValidationError) as exc_info:
        await service.update_invoice(invoice.id, {"due_date": None})

    assert exc_info.value.details["errors"] == ["Due date is required"]


async def test_taken_invoice_number_is_a_conflict(db, customer) -> None:
    service = InvoiceService(db)
    first = await service.create_invoice(sales_data(customer))

    with pytest.raises(InvoiceNumberConflictError):
        await service.create_invoice(sales_data(customer, invoice_number=first.invoice_number))


async def test_other_integrity_errors_are_validation_errors(db, customer, monkeypatch) -> None:
    async def failing_flush(*args, **kwargs):
        raise IntegrityError("INSERT INTO invoices", {}, Exception("NOT NULL constraint failed: invoices.due_date"))

    service = InvoiceService(db)
    monkeypatch.setattr(db, "flush", failing_flush)

    with pytest.raises(InvoiceValidationError) as exc_info:
        await service.create_invoice(sales_data(customer))

    assert exc_info.value.details["errors"] == ["NOT NULL constraint failed: invoices.due_date"]

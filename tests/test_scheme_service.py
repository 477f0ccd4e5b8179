import uuid
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.services.scheme_service import (
    SchemeService,
    SchemeError,
    SchemeFormatError,
    InvalidSchemeFormat,
    InvalidSchemeOperands,
    apply_schemes,
    calculate_scheme_bonus,
)
from conftest import build_scheme


def make_line(item_id="ITEM-1", quantity="24", **overrides):
    values = dict(
        item_id=item_id,
        quantity=Decimal(quantity),
        scheme1_quantity=Decimal("0"),
        scheme2_quantity=Decimal("0"),
        discount2_percent=Decimal("0"),
        discount2_amount=Decimal("0"),
        scheme_discount2_percent=Decimal("0"),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def scheme(**overrides):
    overrides.setdefault("id", uuid.uuid4())
    return build_scheme(**overrides)


# ==================== Bonus calculation ====================

@pytest.mark.parametrize(
    "quantity, sets, bonus, total",
    [
        (12, 1, 1, 13),
        (24, 2, 2, 26),
        (11, 0, 0, 11),
    ],
)
def test_bonus_for_twelve_plus_one(quantity, sets, bonus, total) -> None:
    result = calculate_scheme_bonus(quantity, "12+1")
    assert result.complete_sets == sets
    assert result.bonus_quantity == bonus
    assert result.total_quantity == total


def test_bonus_with_larger_free_quantity() -> None:
    result = calculate_scheme_bonus(25, "10+3")
    assert result.complete_sets == 2
    assert result.bonus_quantity == 6


def test_zero_or_missing_quantity_earns_nothing() -> None:
    assert calculate_scheme_bonus(0, "12+1").bonus_quantity == 0
    assert calculate_scheme_bonus(None, "12+1").bonus_quantity == 0


def test_invalid_format_is_rejected() -> None:
    with pytest.raises(InvalidSchemeFormat):
        calculate_scheme_bonus(12, "abc")


def test_invalid_format_is_rejected_even_without_quantity() -> None:
    with pytest.raises(InvalidSchemeFormat):
        calculate_scheme_bonus(None, "twelve plus one")


@pytest.mark.parametrize("scheme_format", ["0+1", "12+0"])
def test_non_positive_operands_are_rejected(scheme_format) -> None:
    with pytest.raises(InvalidSchemeOperands) as exc_info:
        calculate_scheme_bonus(12, scheme_format)
    assert isinstance(exc_info.value, SchemeFormatError)


# ==================== Auto-application ====================

def test_first_eligible_scheme_per_type_sets_bonus() -> None:
    line = make_line(quantity="24")
    schemes = [
        scheme(name="A", scheme_type="scheme1", scheme_format="12+1"),
        scheme(name="B", scheme_type="scheme1", scheme_format="6+1"),
        scheme(name="C", scheme_type="scheme2", scheme_format="12+2"),
    ]

    result = apply_schemes([line], schemes, party_id=None)

    assert line.scheme1_quantity == 2
    assert line.scheme2_quantity == 4
    assert [a["scheme_name"] for a in result.applied] == ["A", "C"]


def test_item_allow_list_filters_lines() -> None:
    eligible = make_line(item_id="PARA-500")
    other = make_line(item_id="ASP-75")
    schemes = [scheme(applicable_items=["PARA-500"])]

    apply_schemes([eligible, other], schemes, party_id=None)

    assert eligible.scheme1_quantity == 2
    assert other.scheme1_quantity == 0


def test_customer_allow_list_needs_matching_party() -> None:
    customer_id = uuid.uuid4()
    schemes = [scheme(applicable_customers=[str(customer_id)])]

    anonymous = make_line()
    apply_schemes([anonymous], schemes, party_id=None)
    assert anonymous.scheme1_quantity == 0

    other = make_line()
    apply_schemes([other], schemes, party_id=uuid.uuid4())
    assert other.scheme1_quantity == 0

    matching = make_line()
    apply_schemes([matching], schemes, party_id=customer_id)
    assert matching.scheme1_quantity == 2


def test_quantity_window() -> None:
    schemes = [scheme(minimum_quantity=Decimal("12"), maximum_quantity=Decimal("48"))]

    small = make_line(quantity="6")
    large = make_line(quantity="60")
    inside = make_line(quantity="48")
    apply_schemes([small, large, inside], schemes, party_id=None)

    assert small.scheme1_quantity == 0
    assert large.scheme1_quantity == 0
    assert inside.scheme1_quantity == 4


def test_discount2_from_first_scheme_that_has_one() -> None:
    line = make_line()
    schemes = [
        scheme(name="No discount", scheme_type="scheme1"),
        scheme(name="Discount", scheme_type="scheme2", discount2_percent=Decimal("7.69")),
        scheme(name="Later discount", scheme_type="scheme2", discount2_percent=Decimal("5")),
    ]

    apply_schemes([line], schemes, party_id=None)

    assert line.discount2_percent == Decimal("7.69")


def test_to2_added_once_per_distinct_scheme() -> None:
    lines = [make_line(item_id="A"), make_line(item_id="B")]
    schemes = [
        scheme(name="TO scheme", to2_percent=Decimal("2")),
        scheme(name="Other TO", scheme_type="scheme2", to2_percent=Decimal("1.5")),
    ]

    result = apply_schemes(lines, schemes, party_id=None)

    assert result.to2_percent == Decimal("3.5")
    assert len(result.applied) == 4


def test_rerun_resets_bonus_quantities() -> None:
    line = make_line(quantity="24")
    apply_schemes([line], [scheme()], party_id=None)
    assert line.scheme1_quantity == 2

    line.quantity = Decimal("5")
    apply_schemes([line], [scheme()], party_id=None)
    assert line.scheme1_quantity == 0


def test_rerun_clears_discount2_from_a_scheme_that_no_longer_applies() -> None:
    promo = scheme(discount2_percent=Decimal("5"), minimum_quantity=Decimal("12"))
    line = make_line(quantity="24")

    apply_schemes([line], [promo], party_id=None)
    assert line.scheme1_quantity == 2
    assert line.discount2_percent == Decimal("5")

    line.quantity = Decimal("5")
    apply_schemes([line], [promo], party_id=None)

    assert line.scheme1_quantity == 0
    assert line.discount2_percent == 0
    assert line.discount2_amount == 0


def test_rerun_keeps_discount2_entered_by_hand() -> None:
    line = make_line(quantity="5", discount2_percent=Decimal("3"))

    apply_schemes([line], [scheme(minimum_quantity=Decimal("12"))], party_id=None)

    assert line.discount2_percent == Decimal("3")


def test_invalid_scheme_format_aborts_application() -> None:
    with pytest.raises(InvalidSchemeFormat):
        apply_schemes([make_line()], [scheme(scheme_format="bogus")], party_id=None)


# ==================== SchemeService ====================

async def test_active_schemes_respect_date_window_and_flag(db) -> None:
    today = date.today()
    db.add_all([
        build_scheme(name="Current"),
        build_scheme(name="Expired", start_date=today - timedelta(days=60), end_date=today - timedelta(days=1)),
        build_scheme(name="Future", start_date=today + timedelta(days=1), end_date=today + timedelta(days=60)),
        build_scheme(name="Disabled", is_active=False),
    ])
    await db.flush()

    active = await SchemeService(db).get_active_schemes()

    assert [s.name for s in active] == ["Current"]


async def test_active_schemes_filter_by_company(db) -> None:
    company_id = uuid.uuid4()
    db.add_all([
        build_scheme(name="Ours", company_id=company_id),
        build_scheme(name="Theirs", company_id=uuid.uuid4()),
    ])
    await db.flush()

    active = await SchemeService(db).get_active_schemes(company_id)

    assert [s.name for s in active] == ["Ours"]


async def test_create_scheme_validates_format(db) -> None:
    service = SchemeService(db)
    data = dict(
        name="Broken",
        scheme_type="scheme1",
        scheme_format="0+1",
        start_date=date.today(),
        end_date=date.today(),
    )

    with pytest.raises(InvalidSchemeOperands):
        await service.create_scheme(data)


async def test_create_scheme_rejects_reversed_dates(db) -> None:
    data = dict(
        name="Backwards",
        scheme_type="scheme1",
        scheme_format="12+1",
        start_date=date.today(),
        end_date=date.today() - timedelta(days=1),
    )

    with pytest.raises(SchemeError):
        await SchemeService(db).create_scheme(data)


async def test_qualification_explains_rejection(db) -> None:
    service = SchemeService(db)
    created = await service.create_scheme(dict(
        name="Bulk",
        scheme_type="scheme1",
        scheme_format="12+1",
        start_date=date.today() - timedelta(days=1),
        end_date=date.today() + timedelta(days=1),
        applicable_items=["PARA-500"],
        minimum_quantity=Decimal("12"),
    ))

    wrong_item = await service.check_scheme_qualification(created.id, "ASP-75", None, Decimal("24"))
    assert wrong_item["qualifies"] is False
    assert wrong_item["reasons"] == ["Item is not eligible for this scheme"]

    too_few = await service.check_scheme_qualification(created.id, "PARA-500", None, Decimal("6"))
    assert too_few["qualifies"] is False
    assert too_few["reasons"] == ["Minimum quantity 12 not met"]

    ok = await service.check_scheme_qualification(created.id, "PARA-500", None, Decimal("36"))
    assert ok["qualifies"] is True
    assert ok["bonus_quantity"] == 3


async def test_qualification_for_inactive_scheme(db) -> None:
    service = SchemeService(db)
    created = await service.create_scheme(dict(
        name="Old",
        scheme_type="scheme1",
        scheme_format="12+1",
        start_date=date.today() - timedelta(days=10),
        end_date=date.today() - timedelta(days=5),
    ))

    result = await service.check_scheme_qualification(created.id, "ANY", None, Decimal("24"))

    assert result["qualifies"] is False
    assert result["reasons"] == ["Scheme is not currently active"]

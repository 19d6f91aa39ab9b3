from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from fleetledger.src.db import Bus
from fleetledger.src.functions import (
    changedFields,
    localDate,
    monthRange,
    normalizeExpenseName,
    splitMIME,
    updateIfChanged,
)


def test_month_range():
    assert monthRange(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert monthRange(2023, 2) == (date(2023, 2, 1), date(2023, 2, 28))
    assert monthRange(2024, 12) == (date(2024, 12, 1), date(2024, 12, 31))


def test_update_if_changed_skips_missing_and_equal_values():
    bus = Bus(internal_code="BUS-01", plate_number="AAA-111", monthly_target=Decimal(10))
    source = SimpleNamespace(
        internal_code="BUS-01", plate_number=None, monthly_target=Decimal(20)
    )

    changed = updateIfChanged(
        bus, source, ["internal_code", "plate_number", "monthly_target"]
    )

    assert changed == ["monthly_target"]
    assert bus.plate_number == "AAA-111"
    assert bus.monthly_target == Decimal(20)


def test_changed_fields_leaves_target_untouched():
    bus = Bus(internal_code="BUS-01", description="old")
    source = SimpleNamespace(internal_code="BUS-02", description="old")

    assert changedFields(bus, source, ["internal_code", "description"]) == [
        "internal_code"
    ]
    assert bus.internal_code == "BUS-01"


def test_split_mime():
    assert splitMIME("application/pdf") == {
        "type": "application",
        "sub_type": "pdf",
        "parameter": None,
    }
    assert splitMIME("text/xml; charset=UTF-8")["parameter"] == "charset=UTF-8"
    assert splitMIME(None) == {"type": None, "sub_type": None, "parameter": None}


def test_expense_names_are_normalized():
    assert normalizeExpenseName("  fuel ") == "FUEL"


def test_local_date_uses_business_timezone():
    assert localDate(datetime(2024, 3, 1, 1, 0)) == date(2024, 3, 1)
    assert localDate(datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc)) == date(2024, 2, 29)
    assert localDate(datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)) == date(2024, 3, 1)

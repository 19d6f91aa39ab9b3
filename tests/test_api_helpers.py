from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from fleetledger.api.expense_category import isCategoryInUse
from fleetledger.api.invoice import validateInvoiceFile
from fleetledger.api.profit_sharing import validateOverlap
from fleetledger.api.route import (
    ExpenseLine,
    UpdateForm,
    computeTotals,
    expenseLines,
    routeChanges,
    sameExpenses,
    validateSchedule,
)
from fleetledger.src import exceptions, validators
from fleetledger.src.constants import MAX_INVOICE_SIZE
from fleetledger.src.db import ProfitSharingGroup, Route

from conftest import addExpense, addRoute


# Invoice files
@pytest.mark.parametrize(
    "contentType", ["application/pdf", "application/xml", "image/png", "image/jpeg"]
)
def test_accepted_invoice_files(contentType):
    validateInvoiceFile(b"%PDF-1.7", contentType)


@pytest.mark.parametrize(
    "fileBytes, contentType",
    [
        (b"", "application/pdf"),
        (b"x" * (MAX_INVOICE_SIZE + 1), "application/pdf"),
        (b"data", "text/plain"),
        (b"data", "application/zip"),
        (b"data", None),
    ],
)
def test_refused_invoice_files(fileBytes, contentType):
    with pytest.raises(exceptions.InvalidInvoiceFile):
        validateInvoiceFile(fileBytes, contentType)


# Route expense lines
def test_route_totals_follow_expense_lines():
    route = Route(total_income=Decimal(500000))
    route.expenses = expenseLines(
        [ExpenseLine(name="fuel", amount=50000), ExpenseLine(name="tolls", amount=30000)]
    )

    computeTotals(route)

    assert route.total_expenses == Decimal(80000)
    assert route.net_income == Decimal(420000)
    assert [expense.name for expense in route.expenses] == ["FUEL", "TOLLS"]


def test_same_expenses_ignores_name_formatting():
    route = Route()
    route.expenses = expenseLines([ExpenseLine(name="FUEL", amount=10)])
    assert sameExpenses(route, [ExpenseLine(name=" fuel", amount=10)])
    assert not sameExpenses(route, [ExpenseLine(name="fuel", amount=11)])


# Route updates
def updateForm(route, **values):
    return SimpleNamespace(**{"id": route.id, "expenses": None, **values})


@pytest.fixture
def lockedRoute(session, bus, worker):
    route = addRoute(session, bus, worker, date(2024, 3, 10), 500000, [50000, 30000])
    route.is_locked = True
    session.commit()
    return route


def test_locked_route_refuses_new_expense_lines(lockedRoute):
    fParam = updateForm(
        lockedRoute,
        expenses=[
            ExpenseLine(name="line 0", amount=50000),
            ExpenseLine(name="fuel", amount=1),
        ],
    )

    changed = routeChanges(lockedRoute, fParam)

    assert changed == [Route.expenses.key]
    with pytest.raises(exceptions.LockedRoute):
        validators.routeMutation(lockedRoute, changed)


def test_locked_route_refuses_new_income(lockedRoute):
    changed = routeChanges(lockedRoute, updateForm(lockedRoute, total_income=Decimal(1)))

    assert changed == [Route.total_income.key]
    with pytest.raises(exceptions.LockedRoute):
        validators.routeMutation(lockedRoute, changed)


def test_locked_route_accepts_unlock_with_stored_values(lockedRoute, bus, worker):
    fParam = updateForm(
        lockedRoute,
        bus_id=bus.id,
        worker_id=worker.id,
        route_date=date(2024, 3, 10),
        total_income=Decimal("500000.00"),
        expenses=[
            ExpenseLine(name=" line 0", amount=50000),
            ExpenseLine(name="Line 1", amount=30000),
        ],
        is_locked=False,
    )

    changed = routeChanges(lockedRoute, fParam)

    assert changed == [Route.is_locked.key]
    assert validators.routeMutation(lockedRoute, changed)


def test_unlocked_route_accepts_any_change(session, bus, worker):
    route = addRoute(session, bus, worker, date(2024, 3, 10), 500000, [50000])
    fParam = updateForm(route, total_income=Decimal(1), expenses=[])

    changed = routeChanges(route, fParam)

    assert set(changed) == {Route.total_income.key, Route.expenses.key}
    assert validators.routeMutation(route, changed)


def test_route_form_requires_timezone():
    with pytest.raises(ValidationError):
        UpdateForm(id=1, start_time=datetime(2024, 3, 10, 6, 0))


def test_schedule_compares_timezones():
    start = datetime(2024, 3, 10, 6, 0, tzinfo=timezone(timedelta(hours=-5)))
    validateSchedule(start, datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))
    with pytest.raises(exceptions.InvalidValue):
        validateSchedule(start, datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc))


# Profit sharing groups
def addGroup(session, bus, start_date, end_date=None, is_active=True):
    group = ProfitSharingGroup(
        bus_id=bus.id,
        name="Group",
        start_date=start_date,
        end_date=end_date,
        is_active=is_active,
    )
    session.add(group)
    session.commit()
    return group


def newGroup(bus, start_date, end_date=None):
    return ProfitSharingGroup(
        bus_id=bus.id, name="New", start_date=start_date, end_date=end_date, is_active=True
    )


def test_overlapping_active_group_is_refused(session, bus):
    addGroup(session, bus, date(2024, 1, 1), date(2024, 6, 30))
    with pytest.raises(exceptions.OverlappingProfitSharingGroup):
        validateOverlap(session, newGroup(bus, date(2024, 6, 30), date(2024, 12, 31)))


def test_open_ended_group_overlaps_later_periods(session, bus):
    addGroup(session, bus, date(2024, 1, 1))
    with pytest.raises(exceptions.OverlappingProfitSharingGroup):
        validateOverlap(session, newGroup(bus, date(2030, 1, 1), date(2030, 2, 1)))


def test_adjacent_and_inactive_groups_are_accepted(session, bus):
    addGroup(session, bus, date(2024, 1, 1), date(2024, 6, 30))
    addGroup(session, bus, date(2024, 7, 1), None, is_active=False)
    validateOverlap(session, newGroup(bus, date(2024, 7, 1), date(2024, 12, 31)))


def test_group_does_not_overlap_itself(session, bus):
    group = addGroup(session, bus, date(2024, 1, 1), date(2024, 6, 30))
    group.end_date = date(2024, 8, 31)
    validateOverlap(session, group)


# Expense categories
def test_category_in_use(session, bus, category):
    assert not isCategoryInUse(session, category.id)
    addExpense(session, bus, category, date(2024, 1, 5), 100)
    assert isCategoryInUse(session, category.id)

from datetime import date, datetime
from decimal import Decimal

import pytest

from fleetledger.src import exceptions, reports
from fleetledger.src.db import (
    AuditLog,
    Budget,
    BudgetItem,
    Bus,
    ExpenseCategory,
    Invoice,
    ProfitSharingGroup,
    ProfitSharingMember,
    User,
)
from fleetledger.src.enums import BudgetStatus, ShareRole, UserRole

from conftest import addExpense, addRoute


def addGroup(session, bus, start_date, end_date=None) -> ProfitSharingGroup:
    group = ProfitSharingGroup(
        bus_id=bus.id, name="Owners", start_date=start_date, end_date=end_date
    )
    session.add(group)
    session.commit()
    return group


def addMember(session, group, name, percentage, role=ShareRole.PARTNER, is_active=True):
    user = User(
        full_name=name,
        national_id=f"ID-{name}",
        password="hash",
        role=UserRole.ADMIN,
    )
    session.add(user)
    session.flush()
    member = ProfitSharingMember(
        group_id=group.id,
        user_id=user.id,
        role_in_share=role,
        percentage=Decimal(percentage),
        is_active=is_active,
    )
    session.add(member)
    session.commit()
    return member


# Monthly statistics
def test_monthly_stats_scenario(session, bus, worker):
    addRoute(session, bus, worker, date(2024, 3, 10), 500000, [50000, 30000])

    stats = reports.getMonthlyStats(session, bus.id, 2024, 3)

    assert stats.total_income == Decimal(500000)
    assert stats.total_expenses == Decimal(80000)
    assert stats.net_profit == Decimal(420000)
    assert stats.routes_count == 1
    assert stats.target_progress == Decimal(42)
    assert stats.start_date == date(2024, 3, 1)
    assert stats.end_date == date(2024, 3, 31)
    assert stats.bus_code == "BUS-01"


def test_monthly_stats_only_count_the_month(session, bus, worker, category):
    addRoute(session, bus, worker, date(2024, 2, 29), 1000, [100])
    addRoute(session, bus, worker, date(2024, 3, 1), 2000, [200])
    addRoute(session, bus, worker, date(2024, 3, 31), 3000, [300])
    addRoute(session, bus, worker, date(2024, 4, 1), 4000, [400])
    addExpense(session, bus, category, date(2024, 3, 15), 700)
    addExpense(session, bus, category, date(2024, 4, 15), 900)

    stats = reports.getMonthlyStats(session, bus.id, 2024, 3)

    assert stats.total_income == Decimal(5000)
    assert stats.total_expenses == Decimal(500)
    assert stats.administrative_expenses == Decimal(700)
    assert stats.net_profit == Decimal(3800)
    assert stats.routes_count == 2


def test_monthly_stats_of_unknown_bus(session):
    with pytest.raises(exceptions.InvalidIdentifier):
        reports.getMonthlyStats(session, 404, 2024, 3)


def test_monthly_stats_default_to_current_month(session, bus, worker, monkeypatch):
    monkeypatch.setattr(reports, "today", lambda: date(2024, 2, 14))
    addRoute(session, bus, worker, date(2024, 2, 3), 100)

    stats = reports.getMonthlyStats(session, bus.id)

    assert (stats.year, stats.month) == (2024, 2)
    assert stats.end_date == date(2024, 2, 29)
    assert stats.routes_count == 1


# Profit distribution
def test_distribution_over_period(session, bus, worker, category):
    addRoute(session, bus, worker, date(2024, 5, 2), 1200000, [100000])
    addExpense(session, bus, category, date(2024, 5, 20), 100000)
    group = addGroup(session, bus, date(2024, 1, 1))
    addMember(session, group, "Partner", 30)
    addMember(session, group, "Owner", 60, role=ShareRole.OWNER)

    result = reports.getProfitDistribution(
        session, group.id, date(2024, 5, 1), date(2024, 5, 31)
    )

    assert result.totals.net_profit == Decimal(1000000)
    assert [share.user_name for share in result.distribution] == ["Owner", "Partner"]
    assert [share.amount for share in result.distribution] == [
        Decimal(600000),
        Decimal(300000),
    ]
    assert result.summary.unassigned_percentage == Decimal(10)
    assert result.summary.unassigned_amount == Decimal(100000)


def test_distribution_skips_inactive_members(session, bus, worker):
    addRoute(session, bus, worker, date(2024, 5, 2), 1000)
    group = addGroup(session, bus, date(2024, 1, 1))
    addMember(session, group, "Active", 50)
    addMember(session, group, "Gone", 50, is_active=False)

    result = reports.getProfitDistribution(
        session, group.id, date(2024, 5, 1), date(2024, 5, 31)
    )

    assert [share.user_name for share in result.distribution] == ["Active"]
    assert result.summary.assigned_percentage == Decimal(50)


def test_distribution_defaults_to_current_month(session, bus, worker, monkeypatch):
    monkeypatch.setattr(reports, "today", lambda: date(2024, 6, 18))
    addRoute(session, bus, worker, date(2024, 5, 31), 999)
    addRoute(session, bus, worker, date(2024, 6, 1), 100)
    group = addGroup(session, bus, date(2024, 1, 1))

    result = reports.getProfitDistribution(session, group.id)

    assert result.start_date == date(2024, 6, 1)
    assert result.end_date == date(2024, 6, 30)
    assert result.totals.total_income == Decimal(100)
    assert result.distribution == []
    assert result.summary.unassigned_percentage == 100


def test_distribution_with_reversed_range(session, bus):
    group = addGroup(session, bus, date(2024, 1, 1))
    with pytest.raises(exceptions.InvalidDateRange):
        reports.getProfitDistribution(
            session, group.id, date(2024, 5, 31), date(2024, 5, 1)
        )


def test_distribution_of_unknown_group(session):
    with pytest.raises(exceptions.InvalidIdentifier):
        reports.getProfitDistribution(session, 404, date(2024, 5, 1), date(2024, 5, 31))


# Budget execution
def test_budget_execution(session, bus, category):
    budget = Budget(bus_id=bus.id, name="Q1", start_date=date(2024, 1, 1))
    session.add(budget)
    session.flush()
    session.add(
        BudgetItem(
            budget_id=budget.id,
            category_id=category.id,
            planned_amount=Decimal(1000),
            committed_amount=Decimal(200),
            executed_amount=Decimal(950),
        )
    )
    session.commit()

    summary = reports.getBudgetExecution(session, budget.id)

    assert summary.budget_id == budget.id
    assert summary.items[0].category_name == "Insurance"
    assert summary.items[0].execution_percentage == Decimal(95)
    assert summary.status == BudgetStatus.NEAR_LIMIT


def test_budget_execution_of_unknown_budget(session):
    with pytest.raises(exceptions.InvalidIdentifier):
        reports.getBudgetExecution(session, 404)


# Route statistics
def test_route_stats_filter_bus_and_dates(session, bus, worker):
    otherBus = Bus(internal_code="BUS-02")
    session.add(otherBus)
    session.commit()
    addRoute(session, bus, worker, date(2024, 3, 1), 600, [100])
    addRoute(session, bus, worker, date(2024, 3, 20), 400, [300])
    addRoute(session, bus, worker, date(2024, 4, 1), 1000)
    addRoute(session, otherBus, worker, date(2024, 3, 5), 5000)

    stats = reports.getRouteStats(session, bus.id, date(2024, 3, 1), date(2024, 3, 31))

    assert stats.routes_count == 2
    assert stats.total_income == Decimal(1000)
    assert stats.total_expenses == Decimal(400)
    assert stats.net_income == Decimal(600)
    assert stats.average_income == Decimal(500)
    assert stats.average_expenses == Decimal(200)


def test_route_stats_without_routes(session, bus):
    stats = reports.getRouteStats(session, bus.id)
    assert stats.routes_count == 0
    assert stats.average_income == Decimal(0)


def test_route_stats_with_reversed_range(session):
    with pytest.raises(exceptions.InvalidDateRange):
        reports.getRouteStats(session, None, date(2024, 3, 31), date(2024, 3, 1))


# Expense statistics
def test_expense_stats_by_category(session, bus, category):
    taxes = ExpenseCategory(name="Taxes")
    session.add(taxes)
    session.commit()
    addExpense(session, bus, category, date(2024, 3, 2), 100)
    addExpense(session, bus, category, date(2024, 3, 9), 200)
    addExpense(session, bus, taxes, date(2024, 3, 15), 600)
    addExpense(session, bus, taxes, date(2024, 5, 1), 999)

    stats = reports.getExpenseStats(
        session, bus.id, start_date=date(2024, 3, 1), end_date=date(2024, 3, 31)
    )

    assert stats.expenses_count == 3
    assert stats.total_amount == Decimal(900)
    assert stats.average_amount == Decimal(300)
    assert [(c.category_name, c.total, c.count) for c in stats.by_category] == [
        ("Taxes", Decimal(600), 1),
        ("Insurance", Decimal(300), 2),
    ]

    onlyInsurance = reports.getExpenseStats(session, bus.id, category_id=category.id)
    assert onlyInsurance.expenses_count == 2


# Budget statistics
def test_budget_stats_over_overlapping_budgets(session, bus, category):
    budgets = [
        Budget(
            bus_id=bus.id,
            name="Q1",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 3, 31),
            total_planned_income=Decimal(1000),
            total_planned_expense=Decimal(600),
        ),
        Budget(
            bus_id=bus.id,
            name="Open",
            start_date=date(2023, 1, 1),
            total_planned_income=Decimal(500),
            total_planned_expense=Decimal(400),
        ),
        Budget(
            bus_id=bus.id,
            name="Q3",
            start_date=date(2024, 7, 1),
            end_date=date(2024, 9, 30),
            total_planned_income=Decimal(9000),
            total_planned_expense=Decimal(9000),
        ),
    ]
    session.add_all(budgets)
    session.flush()
    for budget in budgets:
        session.add(
            BudgetItem(
                budget_id=budget.id,
                category_id=category.id,
                planned_amount=Decimal(100),
                committed_amount=Decimal(40),
                executed_amount=Decimal(30),
            )
        )
    session.commit()

    stats = reports.getBudgetStats(session, bus.id, date(2024, 3, 1), date(2024, 4, 30))

    assert stats.budgets_count == 2
    assert stats.total_planned_income == Decimal(1500)
    assert stats.total_planned_expense == Decimal(1000)
    assert stats.total_committed == Decimal(80)
    assert stats.total_executed == Decimal(60)


def test_budget_stats_without_budgets(session):
    stats = reports.getBudgetStats(session)
    assert stats.budgets_count == 0
    assert stats.total_executed == Decimal(0)


# Audit statistics
def test_audit_stats_counts_within_range(session, worker):
    session.add_all(
        [
            AuditLog(
                actor_id=worker.id,
                action="POST",
                entity_type="route",
                created_on=datetime(2024, 3, 1, 8, 0),
            ),
            AuditLog(
                actor_id=worker.id,
                action="POST",
                entity_type="expense",
                created_on=datetime(2024, 3, 2, 8, 0),
            ),
            AuditLog(
                actor_id=None,
                action="DELETE",
                entity_type="route",
                created_on=datetime(2024, 3, 3, 8, 0),
            ),
            AuditLog(
                actor_id=worker.id,
                action="PATCH",
                entity_type="route",
                created_on=datetime(2024, 4, 1, 8, 0),
            ),
        ]
    )
    session.commit()

    stats = reports.getAuditStats(
        session, datetime(2024, 3, 1, 0, 0), datetime(2024, 3, 31, 23, 59)
    )

    assert stats.total_logs == 3
    assert [(a.action, a.count) for a in stats.by_action] == [("POST", 2), ("DELETE", 1)]
    assert [(e.entity_type, e.count) for e in stats.by_entity] == [
        ("route", 2),
        ("expense", 1),
    ]
    assert [(a.actor_name, a.count) for a in stats.top_actors] == [("Worker", 2)]


# Invoice statistics
def test_invoice_stats(session, monkeypatch):
    monkeypatch.setattr(reports, "today", lambda: date(2024, 3, 14))
    for number, amount, created_on in [
        ("F-1", 100, datetime(2024, 2, 20, 10, 0)),
        ("F-2", 250, datetime(2024, 3, 2, 10, 0)),
        ("F-3", 50, datetime(2024, 3, 10, 10, 0)),
    ]:
        session.add(
            Invoice(
                invoice_number=number,
                provider_name="Workshop",
                issue_date=created_on.date(),
                total_amount=Decimal(amount),
                file_name=f"{number}.pdf",
                file_type="application/pdf",
                file_size=1024,
                created_on=created_on,
            )
        )
    session.commit()

    stats = reports.getInvoiceStats(session)

    assert stats.invoices_count == 3
    assert stats.this_month_count == 2
    assert stats.total_amount == Decimal(400)

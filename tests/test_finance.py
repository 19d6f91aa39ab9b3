from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from fleetledger.src.enums import BudgetStatus, ShareRole
from fleetledger.src.finance import (
    auditStatistics,
    budgetExecution,
    budgetStatistics,
    budgetStatus,
    distributeProfit,
    expenseStatistics,
    invoiceStatistics,
    mostFrequent,
    percentageOf,
    routeStatistics,
    summarizeFinancials,
    targetProgress,
)


def routeRow(income, expenses):
    return SimpleNamespace(total_income=Decimal(income), total_expenses=Decimal(expenses))


def expenseRow(amount):
    return SimpleNamespace(amount=Decimal(amount))


def memberRow(member_id, percentage, role=ShareRole.PARTNER):
    return SimpleNamespace(
        member_id=member_id,
        user_id=member_id * 10,
        user_name=f"Member {member_id}",
        role_in_share=role,
        percentage=Decimal(percentage),
    )


def itemRow(item_id, planned, committed, executed):
    return SimpleNamespace(
        id=item_id,
        category_id=item_id,
        planned_amount=Decimal(planned),
        committed_amount=Decimal(committed),
        executed_amount=Decimal(executed),
    )


# Financial aggregation
def test_totals_are_sums_of_routes_and_expenses():
    routes = [routeRow(500, 80), routeRow(300, 20), routeRow(0, 15)]
    expenses = [expenseRow(40), expenseRow(60)]

    totals = summarizeFinancials(routes, expenses)

    assert totals.total_income == Decimal(800)
    assert totals.total_expenses == Decimal(115)
    assert totals.operational_profit == Decimal(685)
    assert totals.administrative_expenses == Decimal(100)
    assert totals.net_profit == Decimal(585)
    assert totals.routes_count == 3


def test_empty_period_is_all_zero():
    totals = summarizeFinancials([], [])
    assert totals.net_profit == 0
    assert totals.routes_count == 0


def test_net_profit_may_be_negative():
    totals = summarizeFinancials([routeRow(100, 50)], [expenseRow(200)])
    assert totals.net_profit == Decimal(-150)


def test_single_route_month_scenario():
    totals = summarizeFinancials([routeRow(500000, 80000)], [])
    assert totals.total_expenses == Decimal(80000)
    assert totals.net_profit == Decimal(420000)
    assert targetProgress(totals.net_profit, Decimal(1000000)) == Decimal(42)


# Target progress
def test_target_progress_halves_when_target_doubles():
    single = targetProgress(Decimal(300), Decimal(1000))
    double = targetProgress(Decimal(300), Decimal(2000))
    assert double == single / 2


def test_target_progress_without_target_is_zero():
    assert targetProgress(Decimal(5000), Decimal(0)) == 0
    assert targetProgress(Decimal(5000), None) == 0


def test_target_progress_is_not_clamped():
    assert targetProgress(Decimal(3000), Decimal(1000)) == Decimal(300)
    assert targetProgress(Decimal(-500), Decimal(1000)) == Decimal(-50)


def test_percentage_of_non_positive_whole():
    assert percentageOf(Decimal(10), Decimal(0)) == 0
    assert percentageOf(Decimal(10), Decimal(-5)) == 0


# Profit distribution
def test_distribution_scenario_with_unassigned_share():
    members = [memberRow(1, 60), memberRow(2, 30)]

    distribution, summary = distributeProfit(Decimal(1000000), members)

    assert [share.amount for share in distribution] == [Decimal(600000), Decimal(300000)]
    assert summary.assigned_percentage == Decimal(90)
    assert summary.unassigned_percentage == Decimal(10)
    assert summary.unassigned_amount == Decimal(100000)
    assert not summary.over_assigned


def test_distribution_amounts_add_up_to_net_profit():
    netProfit = Decimal("123456.78")
    members = [memberRow(1, "33.33"), memberRow(2, "41.5"), memberRow(3, "12.17")]

    distribution, summary = distributeProfit(netProfit, members)

    total = sum((share.amount for share in distribution), Decimal(0))
    assert total + summary.unassigned_amount == netProfit


def test_full_allocation_leaves_nothing_unassigned():
    distribution, summary = distributeProfit(
        Decimal(5000), [memberRow(1, 70), memberRow(2, 30)]
    )
    assert summary.unassigned_percentage == 0
    assert summary.unassigned_amount == 0


def test_over_allocation_is_reported_not_refused():
    distribution, summary = distributeProfit(
        Decimal(1000), [memberRow(1, 80), memberRow(2, 40)]
    )
    assert summary.unassigned_percentage == Decimal(-20)
    assert summary.unassigned_amount == Decimal(-200)
    assert summary.over_assigned
    assert len(distribution) == 2


def test_zero_net_profit_gives_zero_amounts():
    distribution, summary = distributeProfit(
        Decimal(0), [memberRow(1, 60), memberRow(2, 40)]
    )
    assert all(share.amount == 0 for share in distribution)
    assert summary.unassigned_amount == 0


def test_negative_net_profit_gives_negative_amounts():
    distribution, _ = distributeProfit(Decimal(-1000), [memberRow(1, 50)])
    assert distribution[0].amount == Decimal(-500)


def test_group_without_members():
    distribution, summary = distributeProfit(Decimal(1000), [])
    assert distribution == []
    assert summary.unassigned_percentage == 100
    assert summary.unassigned_amount == Decimal(1000)


def test_distribution_keeps_member_details():
    distribution, _ = distributeProfit(
        Decimal(100), [memberRow(7, 25, role=ShareRole.DRIVER)]
    )
    share = distribution[0]
    assert share.member_id == 7
    assert share.user_id == 70
    assert share.user_name == "Member 7"
    assert share.role_in_share == ShareRole.DRIVER


# Budget execution
def test_item_without_plan_has_zero_execution():
    summary = budgetExecution([itemRow(1, 0, 0, 500)])
    assert summary.items[0].execution_percentage == 0


def test_budget_execution_totals():
    items = [itemRow(1, 1000, 400, 500), itemRow(2, 3000, 1000, 1500)]

    summary = budgetExecution(items, budget_id=9)

    assert summary.budget_id == 9
    assert summary.items[0].execution_percentage == Decimal(50)
    assert summary.total_planned == Decimal(4000)
    assert summary.total_committed == Decimal(1400)
    assert summary.total_executed == Decimal(2000)
    assert summary.overall_execution_percentage == Decimal(50)
    assert summary.status == BudgetStatus.ON_TRACK


def test_budget_execution_reads_category_name():
    item = itemRow(1, 100, 0, 10)
    item.category = SimpleNamespace(name="Fuel")
    summary = budgetExecution([item])
    assert summary.items[0].category_name == "Fuel"


def test_empty_budget():
    summary = budgetExecution([])
    assert summary.items == []
    assert summary.overall_execution_percentage == 0
    assert summary.status == BudgetStatus.ON_TRACK


def test_budget_status_thresholds():
    assert budgetStatus(Decimal(1000), Decimal(900)) == BudgetStatus.ON_TRACK
    assert budgetStatus(Decimal(1000), Decimal(901)) == BudgetStatus.NEAR_LIMIT
    assert budgetStatus(Decimal(1000), Decimal(1000)) == BudgetStatus.NEAR_LIMIT
    assert budgetStatus(Decimal(1000), Decimal(1001)) == BudgetStatus.OVER_EXECUTED


# Route statistics
def test_route_statistics_averages():
    routes = [
        SimpleNamespace(total_income=500, total_expenses=80, net_income=420),
        SimpleNamespace(total_income=300, total_expenses=20, net_income=280),
    ]

    stats = routeStatistics(routes)

    assert stats.routes_count == 2
    assert stats.total_income == Decimal(800)
    assert stats.total_expenses == Decimal(100)
    assert stats.net_income == Decimal(700)
    assert stats.average_income == Decimal(400)
    assert stats.average_expenses == Decimal(50)


def test_route_statistics_without_routes():
    stats = routeStatistics([])
    assert stats.routes_count == 0
    assert stats.average_income == Decimal(0)
    assert stats.average_expenses == Decimal(0)


# Expense statistics
def test_expense_statistics_by_category():
    expenses = [
        SimpleNamespace(amount=Decimal(100), category_id=1, category_name="Insurance"),
        SimpleNamespace(amount=Decimal(300), category_id=2, category_name="Taxes"),
        SimpleNamespace(amount=Decimal(50), category_id=1, category_name="Insurance"),
    ]

    stats = expenseStatistics(expenses)

    assert stats.expenses_count == 3
    assert stats.total_amount == Decimal(450)
    assert stats.average_amount == Decimal(150)
    assert [(c.category_name, c.total, c.count) for c in stats.by_category] == [
        ("Taxes", Decimal(300), 1),
        ("Insurance", Decimal(150), 2),
    ]


def test_expense_statistics_without_expenses():
    stats = expenseStatistics([])
    assert stats.expenses_count == 0
    assert stats.average_amount == Decimal(0)
    assert stats.by_category == []


# Budget statistics
def test_budget_statistics_totals():
    budgets = [
        SimpleNamespace(total_planned_income=1000, total_planned_expense=800),
        SimpleNamespace(total_planned_income=500, total_planned_expense=200),
    ]
    items = [itemRow(1, 400, 100, 50), itemRow(2, 300, 200, 250)]

    stats = budgetStatistics(budgets, items)

    assert stats.budgets_count == 2
    assert stats.total_planned_income == Decimal(1500)
    assert stats.total_planned_expense == Decimal(1000)
    assert stats.total_committed == Decimal(300)
    assert stats.total_executed == Decimal(300)


# Audit statistics
def logRow(action, entity_type, actor_id=None, actor_name=None):
    return SimpleNamespace(
        action=action, entity_type=entity_type, actor_id=actor_id, actor_name=actor_name
    )


def test_most_frequent_breaks_ties_by_value():
    assert mostFrequent(["PATCH", "POST", "DELETE", "POST"]) == [
        ("POST", 2),
        ("DELETE", 1),
        ("PATCH", 1),
    ]
    assert mostFrequent([3, 1, 3, 2], 2) == [(3, 2), (1, 1)]


def test_audit_statistics_counts():
    logs = [
        logRow("POST", "route", 1, "Admin"),
        logRow("POST", "expense", 1, "Admin"),
        logRow("PATCH", "route", 2, "Worker"),
        logRow("DELETE", "route"),
    ]

    stats = auditStatistics(logs, topActors=1)

    assert stats.total_logs == 4
    assert [(a.action, a.count) for a in stats.by_action] == [
        ("POST", 2),
        ("DELETE", 1),
        ("PATCH", 1),
    ]
    assert [(e.entity_type, e.count) for e in stats.by_entity] == [
        ("route", 3),
        ("expense", 1),
    ]
    assert [(a.actor_id, a.actor_name, a.count) for a in stats.top_actors] == [
        (1, "Admin", 2)
    ]


# Invoice statistics
def test_invoice_statistics_this_month():
    invoices = [
        SimpleNamespace(total_amount=100, created_on=datetime(2024, 2, 28, 9, 0)),
        SimpleNamespace(total_amount=250, created_on=datetime(2024, 3, 1, 9, 0)),
        # 01:00 UTC on March 1st is still February 29th in the business timezone
        SimpleNamespace(
            total_amount=Decimal(50),
            created_on=datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc),
        ),
    ]

    stats = invoiceStatistics(invoices, date(2024, 3, 1))

    assert stats.invoices_count == 3
    assert stats.this_month_count == 1
    assert stats.total_amount == Decimal(400)

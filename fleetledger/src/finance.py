"""
Financial calculators of the dashboard.

Pure functions over rows already fetched from the database, so they can be
reused by the report queries and tested without one. Money and percentages
are handled as `Decimal` and never rounded here, rounding is a concern of
whoever presents the figures.

Statistics served next to the listing endpoints are computed here as well,
from the same kind of rows.

Soft anomalies such as a negative net profit or members holding more than
100 percent of a group are returned as computed values, never raised.
"""

from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Hashable, Iterable, List, Optional, Tuple

from fleetledger.src import schemas
from fleetledger.src.enums import BudgetStatus
from fleetledger.src.functions import localDate
from fleetledger.src.constants import (
    BUDGET_NEAR_LIMIT_RATIO,
    FULL_PERCENTAGE,
    TOP_AUDIT_ACTORS,
)


ZERO = Decimal(0)
HUNDRED = Decimal(FULL_PERCENTAGE)
NEAR_LIMIT_RATIO = Decimal(str(BUDGET_NEAR_LIMIT_RATIO))


def toDecimal(value) -> Decimal:
    """Coerce a column value to Decimal, None counts as zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def percentageOf(part: Decimal, whole: Decimal) -> Decimal:
    """`part` as a percentage of `whole`, 0 when `whole` is not positive."""
    if whole <= 0:
        return ZERO
    return part / whole * HUNDRED


def summarizeFinancials(routes: Iterable, expenses: Iterable) -> schemas.FinancialTotals:
    """
    Aggregate the routes and administrative expenses of a period.

    Args:
        routes (Iterable): Rows exposing `total_income` and `total_expenses`.
        expenses (Iterable): Rows exposing `amount`.

    Returns:
        schemas.FinancialTotals: where
            - operational_profit = total_income - total_expenses
            - net_profit = operational_profit - administrative_expenses
    """
    totalIncome = ZERO
    routeExpenses = ZERO
    routesCount = 0
    for route in routes:
        totalIncome += toDecimal(route.total_income)
        routeExpenses += toDecimal(route.total_expenses)
        routesCount += 1

    administrativeExpenses = sum((toDecimal(e.amount) for e in expenses), ZERO)
    operationalProfit = totalIncome - routeExpenses
    return schemas.FinancialTotals(
        total_income=totalIncome,
        total_expenses=routeExpenses,
        operational_profit=operationalProfit,
        administrative_expenses=administrativeExpenses,
        net_profit=operationalProfit - administrativeExpenses,
        routes_count=routesCount,
    )


def targetProgress(net_profit, monthly_target) -> Decimal:
    """
    Net profit as a percentage of the monthly target.

    Returns 0 when no positive target is configured. Not clamped, the
    result may exceed 100 or be negative.
    """
    return percentageOf(toDecimal(net_profit), toDecimal(monthly_target))


def distributeProfit(
    net_profit, members: Iterable
) -> Tuple[List[schemas.MemberShare], schemas.DistributionSummary]:
    """
    Split a net profit among the members of a profit sharing group.

    Every member receives `net_profit * percentage / 100`. Whatever is not
    assigned stays in the summary, negative when the members hold more than
    100 percent. A negative net profit yields negative amounts.

    Args:
        net_profit: Net profit of the period.
        members (Iterable): Rows exposing `member_id`, `user_id`,
            `user_name`, `role_in_share` and `percentage`.
    """
    netProfit = toDecimal(net_profit)
    distribution = []
    assigned = ZERO
    for member in members:
        percentage = toDecimal(member.percentage)
        assigned += percentage
        distribution.append(
            schemas.MemberShare(
                member_id=member.member_id,
                user_id=member.user_id,
                user_name=member.user_name,
                role_in_share=member.role_in_share,
                percentage=percentage,
                amount=netProfit * percentage / HUNDRED,
            )
        )

    unassigned = HUNDRED - assigned
    summary = schemas.DistributionSummary(
        assigned_percentage=assigned,
        unassigned_percentage=unassigned,
        unassigned_amount=netProfit * unassigned / HUNDRED,
        over_assigned=assigned > HUNDRED,
    )
    return distribution, summary


def budgetStatus(total_planned: Decimal, total_executed: Decimal) -> BudgetStatus:
    if total_executed > total_planned:
        return BudgetStatus.OVER_EXECUTED
    if total_executed > NEAR_LIMIT_RATIO * total_planned:
        return BudgetStatus.NEAR_LIMIT
    return BudgetStatus.ON_TRACK


def budgetExecution(items: Iterable, budget_id: int = None) -> schemas.BudgetExecutionSummary:
    """
    Compute the execution of a budget from its items.

    An item without a planned amount reports 0 percent whatever was executed.

    Args:
        items (Iterable): Rows exposing `id`, `category_id`, `planned_amount`,
            `committed_amount`, `executed_amount` and optionally `category`.
        budget_id (int): Echoed back in the summary.
    """
    executions = []
    totalPlanned = totalCommitted = totalExecuted = ZERO
    for item in items:
        planned = toDecimal(item.planned_amount)
        committed = toDecimal(item.committed_amount)
        executed = toDecimal(item.executed_amount)
        totalPlanned += planned
        totalCommitted += committed
        totalExecuted += executed
        category = getattr(item, "category", None)
        executions.append(
            schemas.BudgetItemExecution(
                item_id=item.id,
                category_id=item.category_id,
                category_name=category.name if category is not None else None,
                planned_amount=planned,
                committed_amount=committed,
                executed_amount=executed,
                execution_percentage=percentageOf(executed, planned),
            )
        )

    return schemas.BudgetExecutionSummary(
        budget_id=budget_id,
        items=executions,
        total_planned=totalPlanned,
        total_committed=totalCommitted,
        total_executed=totalExecuted,
        overall_execution_percentage=percentageOf(totalExecuted, totalPlanned),
        status=budgetStatus(totalPlanned, totalExecuted),
    )


def average(total: Decimal, count: int) -> Decimal:
    """Mean of `count` values summing `total`, 0 when there are none."""
    if count == 0:
        return ZERO
    return total / count


def mostFrequent(
    values: Iterable[Hashable], limit: Optional[int] = None
) -> List[Tuple[Hashable, int]]:
    """
    Occurrences of each value, most frequent first and ties by value.

    Example:
        >>> mostFrequent(["PATCH", "POST", "POST"])
        [('POST', 2), ('PATCH', 1)]
    """
    counts = sorted(Counter(values).items(), key=lambda pair: (-pair[1], pair[0]))
    return counts[:limit] if limit is not None else counts


def routeStatistics(routes: Iterable) -> schemas.RouteStats:
    """
    Totals and per route averages of a set of routes.

    Args:
        routes (Iterable): Rows exposing `total_income`, `total_expenses`
            and `net_income`.
    """
    totalIncome = totalExpenses = netIncome = ZERO
    routesCount = 0
    for route in routes:
        totalIncome += toDecimal(route.total_income)
        totalExpenses += toDecimal(route.total_expenses)
        netIncome += toDecimal(route.net_income)
        routesCount += 1

    return schemas.RouteStats(
        routes_count=routesCount,
        total_income=totalIncome,
        total_expenses=totalExpenses,
        net_income=netIncome,
        average_income=average(totalIncome, routesCount),
        average_expenses=average(totalExpenses, routesCount),
    )


def expenseStatistics(expenses: Iterable) -> schemas.ExpenseStats:
    """
    Sum, mean and per category breakdown of administrative expenses.

    Categories are listed by descending total.

    Args:
        expenses (Iterable): Rows exposing `amount`, `category_id` and
            `category_name`.
    """
    totalAmount = ZERO
    expensesCount = 0
    categories = {}
    for expense in expenses:
        amount = toDecimal(expense.amount)
        totalAmount += amount
        expensesCount += 1
        category = categories.setdefault(
            expense.category_id,
            schemas.CategoryTotal(
                category_id=expense.category_id,
                category_name=expense.category_name,
                total=ZERO,
                count=0,
            ),
        )
        category.total += amount
        category.count += 1

    byCategory = sorted(
        categories.values(), key=lambda category: (-category.total, category.category_id)
    )
    return schemas.ExpenseStats(
        expenses_count=expensesCount,
        total_amount=totalAmount,
        average_amount=average(totalAmount, expensesCount),
        by_category=byCategory,
    )


def budgetStatistics(budgets: Iterable, items: Iterable) -> schemas.BudgetStats:
    """
    Planned, committed and executed totals of a set of budgets.

    Args:
        budgets (Iterable): Rows exposing `total_planned_income` and
            `total_planned_expense`.
        items (Iterable): Items of those budgets, exposing `committed_amount`
            and `executed_amount`.
    """
    plannedIncome = plannedExpense = ZERO
    budgetsCount = 0
    for budget in budgets:
        plannedIncome += toDecimal(budget.total_planned_income)
        plannedExpense += toDecimal(budget.total_planned_expense)
        budgetsCount += 1

    committed = executed = ZERO
    for item in items:
        committed += toDecimal(item.committed_amount)
        executed += toDecimal(item.executed_amount)

    return schemas.BudgetStats(
        budgets_count=budgetsCount,
        total_planned_income=plannedIncome,
        total_planned_expense=plannedExpense,
        total_committed=committed,
        total_executed=executed,
    )


def auditStatistics(
    logs: Iterable, topActors: int = TOP_AUDIT_ACTORS
) -> schemas.AuditStats:
    """
    Count audit logs by action, by entity type and by actor.

    Logs without an actor are counted in the totals but never listed
    among the most active users.

    Args:
        logs (Iterable): Rows exposing `action`, `entity_type`, `actor_id`
            and `actor_name`.
        topActors (int): How many actors to list.
    """
    logs = list(logs)
    actorNames = {log.actor_id: log.actor_name for log in logs}
    actors = mostFrequent(
        (log.actor_id for log in logs if log.actor_id is not None), topActors
    )
    return schemas.AuditStats(
        total_logs=len(logs),
        by_action=[
            schemas.ActionCount(action=action, count=count)
            for action, count in mostFrequent(log.action for log in logs)
        ],
        by_entity=[
            schemas.EntityCount(entity_type=entityType, count=count)
            for entityType, count in mostFrequent(log.entity_type for log in logs)
        ],
        top_actors=[
            schemas.ActorCount(
                actor_id=actorId, actor_name=actorNames[actorId], count=count
            )
            for actorId, count in actors
        ],
    )


def invoiceStatistics(invoices: Iterable, monthStart: date) -> schemas.InvoiceStats:
    """
    Count and amount of the invoices, with those uploaded since `monthStart`.

    Args:
        invoices (Iterable): Rows exposing `total_amount` and `created_on`.
        monthStart (date): First day of the current month.
    """
    invoicesCount = thisMonthCount = 0
    totalAmount = ZERO
    for invoice in invoices:
        invoicesCount += 1
        totalAmount += toDecimal(invoice.total_amount)
        if localDate(invoice.created_on) >= monthStart:
            thisMonthCount += 1

    return schemas.InvoiceStats(
        invoices_count=invoicesCount,
        this_month_count=thisMonthCount,
        total_amount=totalAmount,
    )

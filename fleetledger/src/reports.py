"""
Read only financial reports.

Each report fetches the rows it needs and hands them to the calculators of
`fleetledger.src.finance`. Reports never write, running one twice over the
same data gives the same result.
"""

from datetime import date, datetime
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from fleetledger.src import exceptions, schemas, validators
from fleetledger.src.db import (
    AuditLog,
    Budget,
    BudgetItem,
    Bus,
    Expense,
    ExpenseCategory,
    Invoice,
    ProfitSharingGroup,
    ProfitSharingMember,
    Route,
    User,
)
from fleetledger.src.finance import (
    auditStatistics,
    budgetExecution,
    budgetStatistics,
    distributeProfit,
    expenseStatistics,
    invoiceStatistics,
    routeStatistics,
    summarizeFinancials,
    targetProgress,
    toDecimal,
)
from fleetledger.src.functions import monthRange, today


def periodTotals(
    session: Session, bus_id: int, start_date: date, end_date: date
) -> schemas.FinancialTotals:
    """Aggregate routes and administrative expenses of a bus over [start_date, end_date]."""
    routes = (
        session.query(Route.total_income, Route.total_expenses)
        .filter(
            Route.bus_id == bus_id,
            Route.route_date >= start_date,
            Route.route_date <= end_date,
        )
        .all()
    )
    expenses = (
        session.query(Expense.amount)
        .filter(
            Expense.bus_id == bus_id,
            Expense.expense_date >= start_date,
            Expense.expense_date <= end_date,
        )
        .all()
    )
    return summarizeFinancials(routes, expenses)


def getMonthlyStats(
    session: Session,
    bus_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> schemas.MonthlyStats:
    """
    Monthly financial statistics of a bus.

    Args:
        session (Session): Active SQLAlchemy session.
        bus_id (int): The bus to report on.
        year (int, optional): Defaults to the current year.
        month (int, optional): 1 to 12, defaults to the current month.

    Raises:
        exceptions.InvalidIdentifier: If the bus does not exist.
    """
    bus = session.query(Bus).filter(Bus.id == bus_id).first()
    if bus is None:
        raise exceptions.InvalidIdentifier()

    current = today()
    year = year or current.year
    month = month or current.month
    start_date, end_date = monthRange(year, month)

    totals = periodTotals(session, bus.id, start_date, end_date)
    monthlyTarget = toDecimal(bus.monthly_target)
    return schemas.MonthlyStats(
        **totals.model_dump(),
        bus_id=bus.id,
        bus_code=bus.internal_code,
        year=year,
        month=month,
        start_date=start_date,
        end_date=end_date,
        monthly_target=monthlyTarget,
        target_progress=targetProgress(totals.net_profit, monthlyTarget),
    )


def getProfitDistribution(
    session: Session,
    group_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> schemas.Distribution:
    """
    Distribute the net profit of the group's bus among its active members.

    A missing start defaults to the first day of the current month and a
    missing end to its last day. Members are listed by descending percentage.

    Raises:
        exceptions.InvalidIdentifier: If the group does not exist.
        exceptions.InvalidDateRange: If the end date is earlier than the start date.
    """
    group = (
        session.query(ProfitSharingGroup)
        .filter(ProfitSharingGroup.id == group_id)
        .first()
    )
    if group is None:
        raise exceptions.InvalidIdentifier()

    current = today()
    firstDay, lastDay = monthRange(current.year, current.month)
    start_date = start_date or firstDay
    end_date = end_date or lastDay
    validators.dateRange(start_date, end_date)

    totals = periodTotals(session, group.bus_id, start_date, end_date)
    members = (
        session.query(
            ProfitSharingMember.id.label("member_id"),
            ProfitSharingMember.user_id,
            User.full_name.label("user_name"),
            ProfitSharingMember.role_in_share,
            ProfitSharingMember.percentage,
        )
        .join(User, User.id == ProfitSharingMember.user_id)
        .filter(
            ProfitSharingMember.group_id == group.id,
            ProfitSharingMember.is_active == True,
        )
        .order_by(ProfitSharingMember.percentage.desc(), ProfitSharingMember.id.asc())
        .all()
    )
    distribution, summary = distributeProfit(totals.net_profit, members)
    return schemas.Distribution(
        group_id=group.id,
        bus_id=group.bus_id,
        start_date=start_date,
        end_date=end_date,
        totals=totals,
        distribution=distribution,
        summary=summary,
    )


def getBudgetExecution(
    session: Session, budget_id: int
) -> schemas.BudgetExecutionSummary:
    """
    Execution of a budget, per item and overall.

    Raises:
        exceptions.InvalidIdentifier: If the budget does not exist.
    """
    budget = session.query(Budget).filter(Budget.id == budget_id).first()
    if budget is None:
        raise exceptions.InvalidIdentifier()

    items = (
        session.query(BudgetItem)
        .filter(BudgetItem.budget_id == budget.id)
        .order_by(BudgetItem.id.asc())
        .all()
    )
    return budgetExecution(items, budget.id)


def getRouteStats(
    session: Session,
    bus_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> schemas.RouteStats:
    """
    Totals and averages of the routes run between two dates, both optional.

    Raises:
        exceptions.InvalidDateRange: If the end date is earlier than the start date.
    """
    validators.dateRange(start_date, end_date)
    query = session.query(Route.total_income, Route.total_expenses, Route.net_income)
    if bus_id is not None:
        query = query.filter(Route.bus_id == bus_id)
    if start_date is not None:
        query = query.filter(Route.route_date >= start_date)
    if end_date is not None:
        query = query.filter(Route.route_date <= end_date)
    return routeStatistics(query.all())


def getExpenseStats(
    session: Session,
    bus_id: Optional[int] = None,
    category_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> schemas.ExpenseStats:
    """
    Sum, mean and per category breakdown of the administrative expenses.

    Raises:
        exceptions.InvalidDateRange: If the end date is earlier than the start date.
    """
    validators.dateRange(start_date, end_date)
    query = session.query(
        Expense.amount,
        Expense.category_id,
        ExpenseCategory.name.label("category_name"),
    ).outerjoin(ExpenseCategory, ExpenseCategory.id == Expense.category_id)
    if bus_id is not None:
        query = query.filter(Expense.bus_id == bus_id)
    if category_id is not None:
        query = query.filter(Expense.category_id == category_id)
    if start_date is not None:
        query = query.filter(Expense.expense_date >= start_date)
    if end_date is not None:
        query = query.filter(Expense.expense_date <= end_date)
    return expenseStatistics(query.all())


def getBudgetStats(
    session: Session,
    bus_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> schemas.BudgetStats:
    """
    Totals of the budgets whose period overlaps [start_date, end_date].

    Budgets without an end date run indefinitely.

    Raises:
        exceptions.InvalidDateRange: If the end date is earlier than the start date.
    """
    validators.dateRange(start_date, end_date)
    query = session.query(Budget)
    if bus_id is not None:
        query = query.filter(Budget.bus_id == bus_id)
    if start_date is not None:
        query = query.filter(or_(Budget.end_date == None, Budget.end_date >= start_date))
    if end_date is not None:
        query = query.filter(Budget.start_date <= end_date)
    budgets = query.all()

    items = []
    if budgets:
        items = (
            session.query(BudgetItem.committed_amount, BudgetItem.executed_amount)
            .filter(BudgetItem.budget_id.in_([budget.id for budget in budgets]))
            .all()
        )
    return budgetStatistics(budgets, items)


def getAuditStats(
    session: Session,
    created_on_ge: Optional[datetime] = None,
    created_on_le: Optional[datetime] = None,
) -> schemas.AuditStats:
    """
    Audit logs counted by action, by entity type and by actor.

    Raises:
        exceptions.InvalidDateRange: If the upper bound is earlier than the lower one.
    """
    validators.dateRange(created_on_ge, created_on_le)
    query = session.query(
        AuditLog.action,
        AuditLog.entity_type,
        AuditLog.actor_id,
        User.full_name.label("actor_name"),
    ).outerjoin(User, User.id == AuditLog.actor_id)
    if created_on_ge is not None:
        query = query.filter(AuditLog.created_on >= created_on_ge)
    if created_on_le is not None:
        query = query.filter(AuditLog.created_on <= created_on_le)
    return auditStatistics(query.all())


def getInvoiceStats(session: Session) -> schemas.InvoiceStats:
    """Count and amount of every invoice, with the ones uploaded this month."""
    current = today()
    monthStart, _ = monthRange(current.year, current.month)
    invoices = session.query(Invoice.total_amount, Invoice.created_on).all()
    return invoiceStatistics(invoices, monthStart)

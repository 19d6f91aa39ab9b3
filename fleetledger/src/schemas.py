from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

from fleetledger.src.enums import BudgetStatus, ShareRole


class RequestInfo(BaseModel):
    method: str
    path: str


class HealthStatus(BaseModel):
    status: str
    version: str


class ErrorResponse(BaseModel):
    detail: str


# Financial report records, money kept as Decimal at full precision
class FinancialTotals(BaseModel):
    total_income: Decimal
    total_expenses: Decimal
    operational_profit: Decimal
    administrative_expenses: Decimal
    net_profit: Decimal
    routes_count: int


class MonthlyStats(FinancialTotals):
    bus_id: int
    bus_code: str
    year: int
    month: int
    start_date: date
    end_date: date
    monthly_target: Decimal
    target_progress: Decimal


class MemberShare(BaseModel):
    member_id: int
    user_id: int
    user_name: str
    role_in_share: ShareRole
    percentage: Decimal
    amount: Decimal


class DistributionSummary(BaseModel):
    assigned_percentage: Decimal
    unassigned_percentage: Decimal
    unassigned_amount: Decimal
    over_assigned: bool


class Distribution(BaseModel):
    group_id: int
    bus_id: int
    start_date: date
    end_date: date
    totals: FinancialTotals
    distribution: List[MemberShare]
    summary: DistributionSummary


class BudgetItemExecution(BaseModel):
    item_id: int
    category_id: int
    category_name: Optional[str] = None
    planned_amount: Decimal
    committed_amount: Decimal
    executed_amount: Decimal
    execution_percentage: Decimal


class BudgetExecutionSummary(BaseModel):
    budget_id: Optional[int] = None
    items: List[BudgetItemExecution]
    total_planned: Decimal
    total_committed: Decimal
    total_executed: Decimal
    overall_execution_percentage: Decimal
    status: BudgetStatus


# Aggregated statistics of the listing endpoints
class RouteStats(BaseModel):
    routes_count: int
    total_income: Decimal
    total_expenses: Decimal
    net_income: Decimal
    average_income: Decimal
    average_expenses: Decimal


class CategoryTotal(BaseModel):
    category_id: int
    category_name: Optional[str] = None
    total: Decimal
    count: int


class ExpenseStats(BaseModel):
    expenses_count: int
    total_amount: Decimal
    average_amount: Decimal
    by_category: List[CategoryTotal]


class BudgetStats(BaseModel):
    budgets_count: int
    total_planned_income: Decimal
    total_planned_expense: Decimal
    total_committed: Decimal
    total_executed: Decimal


class ActionCount(BaseModel):
    action: str
    count: int


class EntityCount(BaseModel):
    entity_type: str
    count: int


class ActorCount(BaseModel):
    actor_id: int
    actor_name: Optional[str] = None
    count: int


class AuditStats(BaseModel):
    total_logs: int
    by_action: List[ActionCount]
    by_entity: List[EntityCount]
    top_actors: List[ActorCount]


class InvoiceStats(BaseModel):
    invoices_count: int
    this_month_count: int
    total_amount: Decimal

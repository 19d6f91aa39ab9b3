from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import Budget, BudgetItem, Bus, ExpenseCategory, sessionMaker
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.enums import Action, BudgetStatus, Module
from fleetledger.src.loggers import logEvent
from fleetledger.src.redis import acquireLock, releaseLock
from fleetledger.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from fleetledger.src.urls import (
    URL_BUDGET,
    URL_BUDGET_ITEM,
    URL_BUDGET_EXECUTION,
    URL_BUDGET_STATS,
)

route_dashboard = APIRouter()


## Output Schema
class BudgetSchema(BaseModel):
    id: int
    bus_id: Optional[int]
    name: str
    start_date: date
    end_date: Optional[date]
    total_planned_income: float
    total_planned_expense: float
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class BudgetItemSchema(BaseModel):
    id: int
    budget_id: int
    category_id: int
    planned_amount: float
    committed_amount: float
    executed_amount: float
    updated_on: Optional[datetime]
    created_on: datetime


class ItemExecutionSchema(BaseModel):
    item_id: int
    category_id: int
    category_name: Optional[str]
    planned_amount: float
    committed_amount: float
    executed_amount: float
    execution_percentage: float


class ExecutionSchema(BaseModel):
    budget_id: Optional[int]
    items: List[ItemExecutionSchema]
    total_planned: float
    total_committed: float
    total_executed: float
    overall_execution_percentage: float
    status: BudgetStatus = Field(description=enumStr(BudgetStatus))


class BudgetStatsSchema(BaseModel):
    budgets_count: int
    total_planned_income: float
    total_planned_expense: float
    total_committed: float
    total_executed: float


## Input Forms
class CreateForm(BaseModel):
    bus_id: int | None = Field(
        Form(default=None, description="Leave empty for a fleet wide budget")
    )
    name: str = Field(Form(min_length=1, max_length=128))
    start_date: date = Field(Form())
    end_date: date | None = Field(
        Form(default=None, description="Leave empty for an open-ended budget")
    )
    total_planned_income: Decimal = Field(Form(ge=0, default=0))
    total_planned_expense: Decimal = Field(Form(ge=0, default=0))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=1, max_length=128, default=None))
    start_date: date | None = Field(Form(default=None))
    end_date: date | None = Field(Form(default=None))
    total_planned_income: Decimal | None = Field(Form(ge=0, default=None))
    total_planned_expense: Decimal | None = Field(Form(ge=0, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class CreateItemForm(BaseModel):
    budget_id: int = Field(Form())
    category_id: int = Field(Form())
    planned_amount: Decimal = Field(Form(ge=0, default=0))
    committed_amount: Decimal = Field(Form(ge=0, default=0))
    executed_amount: Decimal = Field(Form(ge=0, default=0))


class UpdateItemForm(BaseModel):
    id: int = Field(Form())
    planned_amount: Decimal | None = Field(Form(ge=0, default=None))
    committed_amount: Decimal | None = Field(Form(ge=0, default=None))
    executed_amount: Decimal | None = Field(Form(ge=0, default=None))


class DeleteItemForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    start_date = 2
    end_date = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    name: str | None = Field(Query(default=None))
    # period based
    period_start: date | None = Field(
        Query(default=None, description="Budgets still running on or after this day")
    )
    period_end: date | None = Field(
        Query(default=None, description="Budgets started on or before this day")
    )
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class ItemOrderBy(IntEnum):
    id = 1
    planned_amount = 2
    executed_amount = 3
    created_on = 4


class ItemQueryParams(BaseModel):
    budget_id: int | None = Field(Query(default=None))
    category_id: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: ItemOrderBy = Field(
        Query(default=ItemOrderBy.id, description=enumStr(ItemOrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class ExecutionQueryParams(BaseModel):
    id: int = Field(Query(description="Identifier of the budget"))


class StatsQueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    period_start: date | None = Field(Query(default=None))
    period_end: date | None = Field(Query(default=None))


## Function
def searchBudget(session: Session, qParam: QueryParams) -> List[Budget]:
    query = session.query(Budget)

    # Filters
    if qParam.bus_id is not None:
        query = query.filter(Budget.bus_id == qParam.bus_id)
    if qParam.name is not None:
        query = query.filter(Budget.name.ilike(f"%{qParam.name}%"))
    # period based
    if qParam.period_start is not None:
        query = query.filter(
            or_(Budget.end_date == None, Budget.end_date >= qParam.period_start)
        )
    if qParam.period_end is not None:
        query = query.filter(Budget.start_date <= qParam.period_end)
    # id based
    if qParam.id is not None:
        query = query.filter(Budget.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Budget.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Budget.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Budget.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Budget.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Budget.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Budget, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def searchBudgetItem(session: Session, qParam: ItemQueryParams) -> List[BudgetItem]:
    query = session.query(BudgetItem)

    # Filters
    if qParam.budget_id is not None:
        query = query.filter(BudgetItem.budget_id == qParam.budget_id)
    if qParam.category_id is not None:
        query = query.filter(BudgetItem.category_id == qParam.category_id)
    # id based
    if qParam.id is not None:
        query = query.filter(BudgetItem.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(BudgetItem.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(BudgetItem, ItemOrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def itemData(item: BudgetItem) -> dict:
    return jsonable_encoder(item, exclude={"category"})


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_BUDGET,
    tags=["Budget"],
    response_model=BudgetSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(Budget.bus_id),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Creates a budget for a period, either for a single bus or for the whole fleet.
    Requires the BUDGETS.CREATE permission.
    The end date is optional but can not be earlier than the start date.
    """,
)
async def create_budget(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.CREATE)

        validators.dateRange(fParam.start_date, fParam.end_date)
        if fParam.bus_id is not None:
            bus = session.query(Bus.id).filter(Bus.id == fParam.bus_id).first()
            if bus is None:
                raise exceptions.UnknownValue(Budget.bus_id)

        budget = Budget(
            bus_id=fParam.bus_id,
            name=fParam.name,
            start_date=fParam.start_date,
            end_date=fParam.end_date,
            total_planned_income=fParam.total_planned_income,
            total_planned_expense=fParam.total_planned_expense,
            created_by=user.id,
        )
        session.add(budget)
        session.commit()
        session.refresh(budget)

        budgetData = jsonable_encoder(budget)
        logEvent(user, request_info, budgetData, session, Budget)
        return budgetData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_BUDGET,
    tags=["Budget"],
    response_model=BudgetSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Updates the name, period or headline figures of a budget.
    Requires the BUDGETS.UPDATE permission.
    """,
)
async def update_budget(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.UPDATE)

        budget = session.query(Budget).filter(Budget.id == fParam.id).first()
        if budget is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            budget,
            fParam,
            [
                Budget.name.key,
                Budget.start_date.key,
                Budget.end_date.key,
                Budget.total_planned_income.key,
                Budget.total_planned_expense.key,
            ],
        )
        validators.dateRange(budget.start_date, budget.end_date)
        haveUpdates = session.is_modified(budget)
        if haveUpdates:
            session.commit()
            session.refresh(budget)

        budgetData = jsonable_encoder(budget)
        if haveUpdates:
            logEvent(user, request_info, budgetData, session, Budget)
        return budgetData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_BUDGET,
    tags=["Budget"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Deletes a budget together with its items.
    Requires the BUDGETS.DELETE permission.
    Unknown budgets are silently ignored.
    """,
)
async def delete_budget(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        lock = None
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.DELETE)

        lock = acquireLock(Budget.__tablename__, fParam.id)
        budget = session.query(Budget).filter(Budget.id == fParam.id).first()
        if budget is not None:
            budgetData = jsonable_encoder(budget)
            session.delete(budget)
            session.commit()
            logEvent(user, request_info, budgetData, session, Budget)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_dashboard.get(
    URL_BUDGET,
    tags=["Budget"],
    response_model=List[BudgetSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches budgets, filter by bus, name and overlap with a period.
    Requires the BUDGETS.VIEW permission.
    """,
)
async def fetch_budget(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.VIEW)

        return searchBudget(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUDGET_EXECUTION,
    tags=["Budget"],
    response_model=ExecutionSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Execution of a budget, per item and overall.
    The status is OVER_EXECUTED once the executed amount passes the planned amount
    and NEAR_LIMIT once it passes 90% of the planned amount.
    Requires the BUDGETS.VIEW permission.
    """,
)
async def fetch_budget_execution(
    qParam: ExecutionQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.VIEW)

        return reports.getBudgetExecution(session, qParam.id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUDGET_STATS,
    tags=["Budget", "Report"],
    response_model=BudgetStatsSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Planned, committed and executed totals of the budgets whose period
    overlaps the given one. Budgets without an end date run indefinitely.
    Requires the BUDGETS.VIEW permission.
    """,
)
async def fetch_budget_stats(
    qParam: StatsQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGETS, Action.VIEW)

        return reports.getBudgetStats(
            session, qParam.bus_id, qParam.period_start, qParam.period_end
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.post(
    URL_BUDGET_ITEM,
    tags=["Budget Item"],
    response_model=BudgetItemSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(BudgetItem.budget_id),
            exceptions.UnknownValue(BudgetItem.category_id),
        ]
    ),
    description="""
    Adds the planned amount of an expense category to a budget.
    A category can appear only once per budget.
    Requires the BUDGET_ITEMS.CREATE permission.
    """,
)
async def create_budget_item(
    fParam: CreateItemForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGET_ITEMS, Action.CREATE)

        budget = session.query(Budget.id).filter(Budget.id == fParam.budget_id).first()
        if budget is None:
            raise exceptions.UnknownValue(BudgetItem.budget_id)
        category = (
            session.query(ExpenseCategory.id)
            .filter(ExpenseCategory.id == fParam.category_id)
            .first()
        )
        if category is None:
            raise exceptions.UnknownValue(BudgetItem.category_id)

        item = BudgetItem(
            budget_id=fParam.budget_id,
            category_id=fParam.category_id,
            planned_amount=fParam.planned_amount,
            committed_amount=fParam.committed_amount,
            executed_amount=fParam.executed_amount,
        )
        session.add(item)
        session.commit()
        session.refresh(item)

        data = itemData(item)
        logEvent(user, request_info, data, session, BudgetItem)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_BUDGET_ITEM,
    tags=["Budget Item"],
    response_model=BudgetItemSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Updates the planned, committed or executed amount of a budget item.
    Requires the BUDGET_ITEMS.UPDATE permission.
    """,
)
async def update_budget_item(
    fParam: UpdateItemForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGET_ITEMS, Action.UPDATE)

        item = session.query(BudgetItem).filter(BudgetItem.id == fParam.id).first()
        if item is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            item,
            fParam,
            [
                BudgetItem.planned_amount.key,
                BudgetItem.committed_amount.key,
                BudgetItem.executed_amount.key,
            ],
        )
        haveUpdates = session.is_modified(item)
        if haveUpdates:
            session.commit()
            session.refresh(item)

        data = itemData(item)
        if haveUpdates:
            logEvent(user, request_info, data, session, BudgetItem)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_BUDGET_ITEM,
    tags=["Budget Item"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Removes an item from its budget.
    Requires the BUDGET_ITEMS.DELETE permission.
    Unknown items are silently ignored.
    """,
)
async def delete_budget_item(
    fParam: DeleteItemForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGET_ITEMS, Action.DELETE)

        item = session.query(BudgetItem).filter(BudgetItem.id == fParam.id).first()
        if item is not None:
            data = itemData(item)
            session.delete(item)
            session.commit()
            logEvent(user, request_info, data, session, BudgetItem)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUDGET_ITEM,
    tags=["Budget Item"],
    response_model=List[BudgetItemSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches budget items, filter by budget and category.
    Requires the BUDGET_ITEMS.VIEW permission.
    """,
)
async def fetch_budget_item(
    qParam: ItemQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUDGET_ITEMS, Action.VIEW)

        return searchBudgetItem(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

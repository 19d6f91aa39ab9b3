from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import Bus, Expense, ExpenseCategory, Invoice, sessionMaker
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.enums import Action, Module
from fleetledger.src.loggers import logEvent
from fleetledger.src.functions import (
    today,
    enumStr,
    fuseExceptionResponses,
    scopedBusId,
    updateIfChanged,
)
from fleetledger.src.urls import URL_EXPENSE, URL_EXPENSE_STATS

route_dashboard = APIRouter()


## Output Schema
class ExpenseSchema(BaseModel):
    id: int
    bus_id: int
    category_id: int
    invoice_id: Optional[int]
    amount: float
    expense_date: date
    description: Optional[str]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class CategoryTotalSchema(BaseModel):
    category_id: int
    category_name: Optional[str]
    total: float
    count: int


class ExpenseStatsSchema(BaseModel):
    expenses_count: int
    total_amount: float
    average_amount: float
    by_category: List[CategoryTotalSchema]


## Input Forms
class CreateForm(BaseModel):
    bus_id: int | None = Field(
        Form(default=None, description="Defaults to the assigned bus of a WORKER")
    )
    category_id: int = Field(Form())
    invoice_id: int | None = Field(Form(default=None))
    amount: Decimal = Field(Form(gt=0))
    expense_date: date | None = Field(Form(default=None, description="Defaults to today"))
    description: str | None = Field(Form(max_length=2048, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    category_id: int | None = Field(Form(default=None))
    invoice_id: int | None = Field(Form(default=None))
    amount: Decimal | None = Field(Form(gt=0, default=None))
    expense_date: date | None = Field(Form(default=None))
    description: str | None = Field(Form(max_length=2048, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    expense_date = 2
    amount = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    category_id: int | None = Field(Query(default=None))
    invoice_id: int | None = Field(Query(default=None))
    created_by: int | None = Field(Query(default=None))
    description: str | None = Field(Query(default=None))
    # expense_date based
    expense_date_ge: date | None = Field(Query(default=None))
    expense_date_le: date | None = Field(Query(default=None))
    # amount based
    amount_ge: float | None = Field(Query(default=None))
    amount_le: float | None = Field(Query(default=None))
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


class StatsQueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    category_id: int | None = Field(Query(default=None))
    start_date: date | None = Field(Query(default=None))
    end_date: date | None = Field(Query(default=None))


## Function
def validateCategory(session: Session, category_id: int):
    category = (
        session.query(ExpenseCategory).filter(ExpenseCategory.id == category_id).first()
    )
    if category is None:
        raise exceptions.UnknownValue(Expense.category_id)
    if not category.is_active:
        raise exceptions.InactiveEntity(Expense.category_id)


def validateInvoice(session: Session, invoice_id: int):
    if session.query(Invoice.id).filter(Invoice.id == invoice_id).first() is None:
        raise exceptions.UnknownValue(Expense.invoice_id)


def searchExpense(session: Session, qParam: QueryParams) -> List[Expense]:
    query = session.query(Expense)

    # Filters
    if qParam.bus_id is not None:
        query = query.filter(Expense.bus_id == qParam.bus_id)
    if qParam.category_id is not None:
        query = query.filter(Expense.category_id == qParam.category_id)
    if qParam.invoice_id is not None:
        query = query.filter(Expense.invoice_id == qParam.invoice_id)
    if qParam.created_by is not None:
        query = query.filter(Expense.created_by == qParam.created_by)
    if qParam.description is not None:
        query = query.filter(Expense.description.ilike(f"%{qParam.description}%"))
    # expense_date based
    if qParam.expense_date_ge is not None:
        query = query.filter(Expense.expense_date >= qParam.expense_date_ge)
    if qParam.expense_date_le is not None:
        query = query.filter(Expense.expense_date <= qParam.expense_date_le)
    # amount based
    if qParam.amount_ge is not None:
        query = query.filter(Expense.amount >= qParam.amount_ge)
    if qParam.amount_le is not None:
        query = query.filter(Expense.amount <= qParam.amount_le)
    # id based
    if qParam.id is not None:
        query = query.filter(Expense.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Expense.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Expense.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Expense.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Expense.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Expense.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Expense, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_EXPENSE,
    tags=["Expense"],
    response_model=ExpenseSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(Expense.bus_id),
            exceptions.UnknownValue(Expense.bus_id),
            exceptions.UnknownValue(Expense.category_id),
            exceptions.InactiveEntity(Expense.category_id),
            exceptions.UnknownValue(Expense.invoice_id),
        ]
    ),
    description="""
    Records an administrative expense of a bus (insurance, maintenance, taxes).
    Requires the EXPENSES.CREATE permission, a WORKER records expenses of its assigned bus only.
    The category must be active, the date defaults to today.
    """,
)
async def create_expense(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSES, Action.CREATE)

        if fParam.bus_id is None:
            fParam.bus_id = user.assigned_bus_id
        if fParam.bus_id is None:
            raise exceptions.InvalidValue(Expense.bus_id)
        validators.busAccess(user, fParam.bus_id)
        if session.query(Bus.id).filter(Bus.id == fParam.bus_id).first() is None:
            raise exceptions.UnknownValue(Expense.bus_id)
        validateCategory(session, fParam.category_id)
        if fParam.invoice_id is not None:
            validateInvoice(session, fParam.invoice_id)

        expense = Expense(
            bus_id=fParam.bus_id,
            category_id=fParam.category_id,
            invoice_id=fParam.invoice_id,
            amount=fParam.amount,
            expense_date=fParam.expense_date or today(),
            description=fParam.description,
            created_by=user.id,
        )
        session.add(expense)
        session.commit()
        session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        logEvent(user, request_info, expenseData, session, Expense)
        return expenseData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_EXPENSE,
    tags=["Expense"],
    response_model=ExpenseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.UnknownValue(Expense.category_id),
            exceptions.UnknownValue(Expense.invoice_id),
        ]
    ),
    description="""
    Updates an administrative expense.
    Requires the EXPENSES.UPDATE permission.
    Changes are saved only if the expense data has been modified.
    """,
)
async def update_expense(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSES, Action.UPDATE)

        expense = session.query(Expense).filter(Expense.id == fParam.id).first()
        if expense is None:
            raise exceptions.InvalidIdentifier()
        validators.busAccess(user, expense.bus_id)

        if fParam.category_id is not None and fParam.category_id != expense.category_id:
            validateCategory(session, fParam.category_id)
        if fParam.invoice_id is not None and fParam.invoice_id != expense.invoice_id:
            validateInvoice(session, fParam.invoice_id)

        updateIfChanged(
            expense,
            fParam,
            [
                Expense.category_id.key,
                Expense.invoice_id.key,
                Expense.amount.key,
                Expense.expense_date.key,
                Expense.description.key,
            ],
        )
        haveUpdates = session.is_modified(expense)
        if haveUpdates:
            session.commit()
            session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        if haveUpdates:
            logEvent(user, request_info, expenseData, session, Expense)
        return expenseData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_EXPENSE,
    tags=["Expense"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Deletes an administrative expense permanently.
    Requires the EXPENSES.DELETE permission.
    Unknown expense IDs are silently ignored.
    """,
)
async def delete_expense(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSES, Action.DELETE)

        expense = session.query(Expense).filter(Expense.id == fParam.id).first()
        if expense is not None:
            session.delete(expense)
            session.commit()
            logEvent(user, request_info, jsonable_encoder(expense), session, Expense)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_EXPENSE,
    tags=["Expense"],
    response_model=List[ExpenseSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches administrative expenses.
    Filter by bus, category, invoice, date, amount range and metadata.
    Requires the EXPENSES.VIEW permission, a WORKER only gets the expenses of its assigned bus.
    """,
)
async def fetch_expense(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSES, Action.VIEW)

        qParam.bus_id = scopedBusId(user, qParam.bus_id)
        return searchExpense(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_EXPENSE_STATS,
    tags=["Expense", "Report"],
    response_model=ExpenseStatsSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Sum, average and count of the administrative expenses, with a breakdown
    by category ordered by descending total.
    Filter by bus, category and an optional date range.
    Requires the EXPENSES.VIEW permission, a WORKER only gets the statistics of its assigned bus.
    """,
)
async def fetch_expense_stats(
    qParam: StatsQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSES, Action.VIEW)

        busId = scopedBusId(user, qParam.bus_id)
        return reports.getExpenseStats(
            session, busId, qParam.category_id, qParam.start_date, qParam.end_date
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Body
from fastapi.encoders import jsonable_encoder
from pydantic import AwareDatetime, BaseModel, Field
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import Bus, Route, RouteExpense, User, sessionMaker
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.enums import Action, Module, UserRole
from fleetledger.src.loggers import logEvent
from fleetledger.src.redis import acquireLock, releaseLock
from fleetledger.src.functions import (
    changedFields,
    enumStr,
    fuseExceptionResponses,
    normalizeExpenseName,
    scopedBusId,
    updateIfChanged,
)
from fleetledger.src.urls import URL_ROUTE, URL_ROUTE_STATS

route_dashboard = APIRouter()


## Output Schema
class RouteExpenseSchema(BaseModel):
    id: int
    name: str
    amount: float


class RouteSchema(BaseModel):
    id: int
    bus_id: int
    worker_id: int
    name: Optional[str]
    route_date: date
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    total_income: float
    total_expenses: float
    net_income: float
    notes: Optional[str]
    is_locked: bool
    expenses: List[RouteExpenseSchema]
    updated_on: Optional[datetime]
    created_on: datetime


class RouteStatsSchema(BaseModel):
    routes_count: int
    total_income: float
    total_expenses: float
    net_income: float
    average_income: float
    average_expenses: float


## Input Forms
class ExpenseLine(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    amount: Decimal = Field(ge=0)


class CreateForm(BaseModel):
    bus_id: int | None = Field(
        Body(default=None, description="Defaults to the assigned bus of a WORKER")
    )
    worker_id: int | None = Field(
        Body(default=None, description="Defaults to the caller")
    )
    name: str | None = Field(Body(max_length=256, default=None))
    route_date: date = Field(Body())
    start_time: AwareDatetime | None = Field(Body(default=None))
    end_time: AwareDatetime | None = Field(Body(default=None))
    total_income: Decimal = Field(Body(ge=0, default=0))
    expenses: List[ExpenseLine] = Field(Body(default=[]))
    notes: str | None = Field(Body(max_length=4096, default=None))
    is_locked: bool = Field(Body(default=False))


class UpdateForm(BaseModel):
    id: int = Field(Body())
    bus_id: int | None = Field(Body(default=None))
    worker_id: int | None = Field(Body(default=None))
    name: str | None = Field(Body(max_length=256, default=None))
    route_date: date | None = Field(Body(default=None))
    start_time: AwareDatetime | None = Field(Body(default=None))
    end_time: AwareDatetime | None = Field(Body(default=None))
    total_income: Decimal | None = Field(Body(ge=0, default=None))
    expenses: List[ExpenseLine] | None = Field(
        Body(default=None, description="Replaces every expense line of the route")
    )
    notes: str | None = Field(Body(max_length=4096, default=None))
    is_locked: bool | None = Field(Body(default=None))


class DeleteForm(BaseModel):
    id: int = Field(Body())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    route_date = 2
    total_income = 3
    net_income = 4
    updated_on = 5
    created_on = 6


class QueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    worker_id: int | None = Field(Query(default=None))
    name: str | None = Field(Query(default=None))
    is_locked: bool | None = Field(Query(default=None))
    # route_date based
    route_date_ge: date | None = Field(Query(default=None))
    route_date_le: date | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # updated_on based
    updated_on_ge: datetime | None = Field(Query(default=None))
    updated_on_le: datetime | None = Field(Query(default=None))
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
    start_date: date | None = Field(Query(default=None))
    end_date: date | None = Field(Query(default=None))


## Function
ROUTE_FIELDS = [
    Route.bus_id.key,
    Route.worker_id.key,
    Route.name.key,
    Route.route_date.key,
    Route.start_time.key,
    Route.end_time.key,
    Route.total_income.key,
    Route.notes.key,
    Route.is_locked.key,
]


def expenseLines(lines: List[ExpenseLine]) -> List[RouteExpense]:
    return [
        RouteExpense(name=normalizeExpenseName(line.name), amount=line.amount)
        for line in lines
    ]


def sameExpenses(route: Route, lines: List[ExpenseLine]) -> bool:
    current = [(expense.name, expense.amount) for expense in route.expenses]
    incoming = [(normalizeExpenseName(line.name), line.amount) for line in lines]
    return current == incoming


def routeChanges(route: Route, fParam: UpdateForm) -> List[str]:
    """
    Names of the route columns the update form would alter.

    `expenses` is listed when the incoming expense lines differ from the
    stored ones, line formatting aside.
    """
    changed = changedFields(route, fParam, ROUTE_FIELDS)
    if fParam.expenses is not None and not sameExpenses(route, fParam.expenses):
        changed.append(Route.expenses.key)
    return changed


def computeTotals(route: Route):
    """Recompute the stored totals from the expense lines and the income."""
    route.total_expenses = sum((expense.amount for expense in route.expenses), Decimal(0))
    route.net_income = route.total_income - route.total_expenses


def validateBus(session: Session, bus_id: int):
    bus = session.query(Bus).filter(Bus.id == bus_id).first()
    if bus is None:
        raise exceptions.UnknownValue(Route.bus_id)
    if not bus.is_active:
        raise exceptions.InactiveEntity(Route.bus_id)


def validateWorker(session: Session, worker_id: int):
    worker = session.query(User).filter(User.id == worker_id).first()
    if worker is None:
        raise exceptions.UnknownValue(Route.worker_id)
    if not worker.is_active:
        raise exceptions.InactiveEntity(Route.worker_id)


def validateSchedule(start_time: Optional[datetime], end_time: Optional[datetime]):
    if start_time is not None and end_time is not None and end_time < start_time:
        raise exceptions.InvalidValue(Route.end_time)


def routeData(route: Route) -> dict:
    data = jsonable_encoder(route, exclude={"expenses"})
    data["expenses"] = jsonable_encoder(route.expenses)
    return data


def searchRoute(session: Session, qParam: QueryParams) -> List[Route]:
    query = session.query(Route)

    # Filters
    if qParam.bus_id is not None:
        query = query.filter(Route.bus_id == qParam.bus_id)
    if qParam.worker_id is not None:
        query = query.filter(Route.worker_id == qParam.worker_id)
    if qParam.name is not None:
        query = query.filter(Route.name.ilike(f"%{qParam.name}%"))
    if qParam.is_locked is not None:
        query = query.filter(Route.is_locked == qParam.is_locked)
    # route_date based
    if qParam.route_date_ge is not None:
        query = query.filter(Route.route_date >= qParam.route_date_ge)
    if qParam.route_date_le is not None:
        query = query.filter(Route.route_date <= qParam.route_date_le)
    # id based
    if qParam.id is not None:
        query = query.filter(Route.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Route.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Route.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Route.id.in_(qParam.id_list))
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(Route.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(Route.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Route.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Route.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Route, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(Route.bus_id),
            exceptions.UnknownValue(Route.bus_id),
            exceptions.InactiveEntity(Route.bus_id),
            exceptions.InvalidValue(Route.end_time),
        ]
    ),
    description="""
    Records the operation of a bus for a day.
    Requires the ROUTES.CREATE permission.
    A WORKER records routes of its assigned bus only, driven by itself.
    Expense names are stored in upper case, the total expenses and net income
    are computed from the expense lines.
    The route is created unlocked unless `is_locked` is set.
    """,
)
async def create_route(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.ROUTES, Action.CREATE)

        if user.role == UserRole.WORKER:
            if fParam.bus_id is None:
                fParam.bus_id = user.assigned_bus_id
            if fParam.worker_id is not None and fParam.worker_id != user.id:
                raise exceptions.NoPermission()
        if fParam.bus_id is None:
            raise exceptions.InvalidValue(Route.bus_id)
        if fParam.worker_id is None:
            fParam.worker_id = user.id
        validators.busAccess(user, fParam.bus_id)
        validateBus(session, fParam.bus_id)
        validateWorker(session, fParam.worker_id)
        validateSchedule(fParam.start_time, fParam.end_time)

        route = Route(
            bus_id=fParam.bus_id,
            worker_id=fParam.worker_id,
            name=fParam.name,
            route_date=fParam.route_date,
            start_time=fParam.start_time,
            end_time=fParam.end_time,
            total_income=fParam.total_income,
            notes=fParam.notes,
            is_locked=fParam.is_locked,
            expenses=expenseLines(fParam.expenses),
        )
        computeTotals(route)
        session.add(route)
        session.commit()
        session.refresh(route)

        data = routeData(route)
        logEvent(user, request_info, data, session, Route)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.LockedRoute(),
            exceptions.UnknownValue(Route.bus_id),
            exceptions.InvalidValue(Route.end_time),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Updates a route.
    Requires the ROUTES.UPDATE permission.
    A locked route is read-only, the only accepted change is toggling `is_locked`.
    Sending `expenses` replaces every expense line and recomputes the totals.
    Changes are saved only if the route data has been modified.
    """,
)
async def update_route(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        lock = None
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.ROUTES, Action.UPDATE)

        lock = acquireLock(Route.__tablename__, fParam.id)
        route = session.query(Route).filter(Route.id == fParam.id).first()
        if route is None:
            raise exceptions.InvalidIdentifier()
        validators.busAccess(user, route.bus_id)

        changed = routeChanges(route, fParam)
        replaceExpenses = Route.expenses.key in changed
        validators.routeMutation(route, changed)

        if Route.bus_id.key in changed:
            validators.busAccess(user, fParam.bus_id)
            validateBus(session, fParam.bus_id)
        if Route.worker_id.key in changed:
            validateWorker(session, fParam.worker_id)
        validateSchedule(
            fParam.start_time or route.start_time, fParam.end_time or route.end_time
        )

        updateIfChanged(route, fParam, ROUTE_FIELDS)
        if replaceExpenses:
            route.expenses = expenseLines(fParam.expenses)
        if replaceExpenses or Route.total_income.key in changed:
            computeTotals(route)

        haveUpdates = bool(changed)
        if haveUpdates:
            session.commit()
            session.refresh(route)

        data = routeData(route)
        if haveUpdates:
            logEvent(user, request_info, data, session, Route)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_dashboard.delete(
    URL_ROUTE,
    tags=["Route"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Deletes a route together with its expense lines.
    Requires the ROUTES.DELETE permission, locked routes can be deleted as well.
    Unknown route IDs are silently ignored.
    """,
)
async def delete_route(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        lock = None
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.ROUTES, Action.DELETE)

        lock = acquireLock(Route.__tablename__, fParam.id)
        route = session.query(Route).filter(Route.id == fParam.id).first()
        if route is not None:
            data = routeData(route)
            session.delete(route)
            session.commit()
            logEvent(user, request_info, data, session, Route)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_dashboard.get(
    URL_ROUTE,
    tags=["Route"],
    response_model=List[RouteSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches routes with their expense lines.
    Filter by bus, worker, route date, lock state and metadata.
    Requires the ROUTES.VIEW permission, a WORKER only gets the routes of its assigned bus.
    """,
)
async def fetch_route(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.ROUTES, Action.VIEW)

        qParam.bus_id = scopedBusId(user, qParam.bus_id)
        return searchRoute(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_ROUTE_STATS,
    tags=["Route", "Report"],
    response_model=RouteStatsSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Totals of the routes run between two optional dates, with the average
    income and expenses per route (0 when there are no routes).
    Requires the ROUTES.VIEW permission, a WORKER only gets the statistics of its assigned bus.
    """,
)
async def fetch_route_stats(
    qParam: StatsQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.ROUTES, Action.VIEW)

        busId = scopedBusId(user, qParam.bus_id)
        return reports.getRouteStats(session, busId, qParam.start_date, qParam.end_date)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

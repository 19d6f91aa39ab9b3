from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import sessionMaker, Bus
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.loggers import logEvent
from fleetledger.src.enums import Action, Module
from fleetledger.src.permissions import isPermitted
from fleetledger.src.constants import REGEX_INTERNAL_CODE, REGEX_PLATE_NUMBER
from fleetledger.src.functions import (
    enumStr,
    fuseExceptionResponses,
    scopedBusId,
    updateIfChanged,
)
from fleetledger.src.urls import URL_BUS, URL_BUS_ACTIVATE, URL_BUS_STATS

route_dashboard = APIRouter()


## Output Schema
class BusSchema(BaseModel):
    id: int
    internal_code: str
    plate_number: Optional[str]
    description: Optional[str]
    monthly_target: float
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


class MonthlyStatsSchema(BaseModel):
    bus_id: int
    bus_code: str
    year: int
    month: int
    start_date: date
    end_date: date
    total_income: float
    total_expenses: float
    operational_profit: float
    administrative_expenses: float
    net_profit: float
    monthly_target: float
    target_progress: float
    routes_count: int


## Input Forms
class CreateForm(BaseModel):
    internal_code: str = Field(Form(pattern=REGEX_INTERNAL_CODE, max_length=16))
    plate_number: str | None = Field(
        Form(pattern=REGEX_PLATE_NUMBER, max_length=16, default=None)
    )
    description: str | None = Field(Form(max_length=2048, default=None))
    monthly_target: Decimal = Field(
        Form(ge=0, default=0, description="Expected net profit of a month")
    )


class UpdateForm(BaseModel):
    id: int = Field(Form())
    internal_code: str | None = Field(
        Form(pattern=REGEX_INTERNAL_CODE, max_length=16, default=None)
    )
    plate_number: str | None = Field(
        Form(pattern=REGEX_PLATE_NUMBER, max_length=16, default=None)
    )
    description: str | None = Field(Form(max_length=2048, default=None))
    monthly_target: Decimal | None = Field(Form(ge=0, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class ActivateForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    internal_code = 2
    monthly_target = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    # filters
    internal_code: str | None = Field(Query(default=None))
    plate_number: str | None = Field(Query(default=None))
    search: str | None = Field(
        Query(default=None, description="Matched against code, plate and description")
    )
    is_active: bool | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # monthly_target based
    monthly_target_ge: float | None = Field(Query(default=None))
    monthly_target_le: float | None = Field(Query(default=None))
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
    id: int = Field(Query())
    year: int | None = Field(Query(default=None, ge=2000, le=9999))
    month: int | None = Field(Query(default=None, ge=1, le=12))


## Function
def updateBus(bus: Bus, fParam: UpdateForm):
    updateIfChanged(
        bus,
        fParam,
        [
            Bus.internal_code.key,
            Bus.plate_number.key,
            Bus.description.key,
            Bus.monthly_target.key,
        ],
    )


def searchBus(session: Session, qParam: QueryParams) -> List[Bus]:
    query = session.query(Bus)

    # Filters
    if qParam.internal_code is not None:
        query = query.filter(Bus.internal_code.ilike(f"%{qParam.internal_code}%"))
    if qParam.plate_number is not None:
        query = query.filter(Bus.plate_number.ilike(f"%{qParam.plate_number}%"))
    if qParam.search is not None:
        pattern = f"%{qParam.search}%"
        query = query.filter(
            Bus.internal_code.ilike(pattern)
            | Bus.plate_number.ilike(pattern)
            | Bus.description.ilike(pattern)
        )
    if qParam.is_active is not None:
        query = query.filter(Bus.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(Bus.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Bus.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Bus.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Bus.id.in_(qParam.id_list))
    # monthly_target based
    if qParam.monthly_target_ge is not None:
        query = query.filter(Bus.monthly_target >= qParam.monthly_target_ge)
    if qParam.monthly_target_le is not None:
        query = query.filter(Bus.monthly_target <= qParam.monthly_target_le)
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(Bus.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(Bus.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Bus.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Bus.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Bus, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_BUS,
    tags=["Bus"],
    response_model=BusSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Registers a new bus in the fleet.
    Requires the BUSES.CREATE permission.
    The internal code and the plate number must be unique.
    """,
)
async def create_bus(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUSES, Action.CREATE)

        bus = Bus(
            internal_code=fParam.internal_code,
            plate_number=fParam.plate_number,
            description=fParam.description,
            monthly_target=fParam.monthly_target,
        )
        session.add(bus)
        session.commit()
        session.refresh(bus)

        busData = jsonable_encoder(bus)
        logEvent(user, request_info, busData, session, Bus)
        return busData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_BUS,
    tags=["Bus"],
    response_model=BusSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Updates an existing bus, including its monthly target.
    Requires the BUSES.UPDATE permission.
    Changes are saved only if the bus data has been modified.
    """,
)
async def update_bus(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUSES, Action.UPDATE)

        bus = session.query(Bus).filter(Bus.id == fParam.id).first()
        if bus is None:
            raise exceptions.InvalidIdentifier()

        updateBus(bus, fParam)
        haveUpdates = session.is_modified(bus)
        if haveUpdates:
            session.commit()
            session.refresh(bus)

        busData = jsonable_encoder(bus)
        if haveUpdates:
            logEvent(user, request_info, busData, session, Bus)
        return busData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_BUS,
    tags=["Bus"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Deactivates a bus, its routes, expenses and budgets are kept.
    Requires the BUSES.DELETE permission.
    Unknown or already inactive buses are silently ignored.
    """,
)
async def delete_bus(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUSES, Action.DELETE)

        bus = session.query(Bus).filter(Bus.id == fParam.id).first()
        if bus is not None and bus.is_active:
            bus.is_active = False
            session.commit()
            session.refresh(bus)
            logEvent(user, request_info, jsonable_encoder(bus), session, Bus)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_BUS_ACTIVATE,
    tags=["Bus"],
    response_model=BusSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Reactivates a deactivated bus.
    Requires the BUSES.ACTIVATE permission.
    """,
)
async def activate_bus(
    fParam: ActivateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.BUSES, Action.ACTIVATE)

        bus = session.query(Bus).filter(Bus.id == fParam.id).first()
        if bus is None:
            raise exceptions.InvalidIdentifier()

        haveUpdates = not bus.is_active
        if haveUpdates:
            bus.is_active = True
            session.commit()
            session.refresh(bus)

        busData = jsonable_encoder(bus)
        if haveUpdates:
            logEvent(user, request_info, busData, session, Bus)
        return busData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUS,
    tags=["Bus"],
    response_model=List[BusSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches the buses of the fleet with filtering, sorting, and pagination.
    Users without the BUSES.VIEW permission only get their assigned bus.
    """,
)
async def fetch_buses(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)

        if not isPermitted(user.role, Module.BUSES, Action.VIEW):
            qParam.id = scopedBusId(user, qParam.id)
        return searchBus(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUS_STATS,
    tags=["Bus", "Report"],
    response_model=MonthlyStatsSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Monthly financial statistics of a bus.
    Sums the route income and expenses of the month into the operational profit,
    subtracts the administrative expenses to get the net profit and compares it
    with the monthly target of the bus. Target progress is not clamped.
    Year and month default to the current month.
    Requires the DASHBOARD.VIEW permission, a WORKER can only query its assigned bus.
    """,
)
async def fetch_bus_stats(
    qParam: StatsQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.DASHBOARD, Action.VIEW)
        validators.busAccess(user, qParam.id)

        return reports.getMonthlyStats(session, qParam.id, qParam.year, qParam.month)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

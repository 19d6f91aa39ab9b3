from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from logging import getLogger
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import (
    Bus,
    ProfitSharingGroup,
    ProfitSharingMember,
    User,
    sessionMaker,
)
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.constants import FULL_PERCENTAGE
from fleetledger.src.enums import Action, Module, ShareRole
from fleetledger.src.loggers import logEvent
from fleetledger.src.redis import acquireLock, releaseLock
from fleetledger.src.functions import (
    enumStr,
    fuseExceptionResponses,
    scopedBusId,
    updateIfChanged,
)
from fleetledger.src.urls import (
    URL_PROFIT_SHARING_GROUP,
    URL_PROFIT_SHARING_MEMBER,
    URL_PROFIT_DISTRIBUTION,
)

route_dashboard = APIRouter()
logger = getLogger("uvicorn.error")


## Output Schema
class GroupSchema(BaseModel):
    id: int
    bus_id: int
    name: str
    start_date: date
    end_date: Optional[date]
    is_active: bool
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class MemberSchema(BaseModel):
    id: int
    group_id: int
    user_id: int
    role_in_share: ShareRole = Field(description=enumStr(ShareRole))
    percentage: float
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


class TotalsSchema(BaseModel):
    total_income: float
    total_expenses: float
    operational_profit: float
    administrative_expenses: float
    net_profit: float
    routes_count: int


class ShareSchema(BaseModel):
    member_id: int
    user_id: int
    user_name: str
    role_in_share: ShareRole = Field(description=enumStr(ShareRole))
    percentage: float
    amount: float


class SummarySchema(BaseModel):
    assigned_percentage: float
    unassigned_percentage: float
    unassigned_amount: float
    over_assigned: bool


class DistributionSchema(BaseModel):
    group_id: int
    bus_id: int
    start_date: date
    end_date: date
    totals: TotalsSchema
    distribution: List[ShareSchema]
    summary: SummarySchema


## Input Forms
class CreateGroupForm(BaseModel):
    bus_id: int = Field(Form())
    name: str = Field(Form(min_length=1, max_length=128))
    start_date: date = Field(Form())
    end_date: date | None = Field(
        Form(default=None, description="Leave empty for an open-ended group")
    )


class UpdateGroupForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=1, max_length=128, default=None))
    start_date: date | None = Field(Form(default=None))
    end_date: date | None = Field(Form(default=None))
    is_active: bool | None = Field(Form(default=None))


class DeleteGroupForm(BaseModel):
    id: int = Field(Form())


class CreateMemberForm(BaseModel):
    group_id: int = Field(Form())
    user_id: int = Field(Form())
    role_in_share: ShareRole = Field(
        Form(default=ShareRole.PARTNER, description=enumStr(ShareRole))
    )
    percentage: Decimal = Field(Form(gt=0, le=FULL_PERCENTAGE))


class UpdateMemberForm(BaseModel):
    id: int = Field(Form())
    role_in_share: ShareRole | None = Field(
        Form(default=None, description=enumStr(ShareRole))
    )
    percentage: Decimal | None = Field(
        Form(gt=0, le=FULL_PERCENTAGE, default=None)
    )
    is_active: bool | None = Field(Form(default=None))


class DeleteMemberForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class GroupOrderBy(IntEnum):
    id = 1
    start_date = 2
    updated_on = 3
    created_on = 4


class GroupQueryParams(BaseModel):
    bus_id: int | None = Field(Query(default=None))
    name: str | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
    covers_date: date | None = Field(
        Query(default=None, description="Groups whose period includes this day")
    )
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: GroupOrderBy = Field(
        Query(default=GroupOrderBy.id, description=enumStr(GroupOrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class MemberOrderBy(IntEnum):
    id = 1
    percentage = 2
    created_on = 3


class MemberQueryParams(BaseModel):
    group_id: int | None = Field(Query(default=None))
    user_id: int | None = Field(Query(default=None))
    role_in_share: ShareRole | None = Field(
        Query(default=None, description=enumStr(ShareRole))
    )
    is_active: bool | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: MemberOrderBy = Field(
        Query(default=MemberOrderBy.percentage, description=enumStr(MemberOrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class DistributionQueryParams(BaseModel):
    id: int = Field(Query(description="Identifier of the profit sharing group"))
    start_date: date | None = Field(
        Query(default=None, description="Defaults to the first day of the current month")
    )
    end_date: date | None = Field(
        Query(default=None, description="Defaults to the last day of the current month")
    )


## Function
def validateOverlap(session: Session, group: ProfitSharingGroup):
    """
    Refuse a second active group covering any day of the period of `group`
    on the same bus. Open ended periods run forever.
    """
    if not group.is_active:
        return
    query = session.query(ProfitSharingGroup.id).filter(
        ProfitSharingGroup.bus_id == group.bus_id,
        ProfitSharingGroup.is_active == True,
        or_(
            ProfitSharingGroup.end_date == None,
            ProfitSharingGroup.end_date >= group.start_date,
        ),
    )
    if group.end_date is not None:
        query = query.filter(ProfitSharingGroup.start_date <= group.end_date)
    if group.id is not None:
        query = query.filter(ProfitSharingGroup.id != group.id)
    if query.first() is not None:
        raise exceptions.OverlappingProfitSharingGroup()


def warnOverAllocation(session: Session, group_id: int):
    assigned = (
        session.query(func.coalesce(func.sum(ProfitSharingMember.percentage), 0))
        .filter(
            ProfitSharingMember.group_id == group_id,
            ProfitSharingMember.is_active == True,
        )
        .scalar()
    )
    if assigned > FULL_PERCENTAGE:
        logger.warning(
            f"Profit sharing group {group_id} is allocated {assigned}%, "
            f"above {FULL_PERCENTAGE}%"
        )


def searchGroup(session: Session, qParam: GroupQueryParams) -> List[ProfitSharingGroup]:
    query = session.query(ProfitSharingGroup)

    # Filters
    if qParam.bus_id is not None:
        query = query.filter(ProfitSharingGroup.bus_id == qParam.bus_id)
    if qParam.name is not None:
        query = query.filter(ProfitSharingGroup.name.ilike(f"%{qParam.name}%"))
    if qParam.is_active is not None:
        query = query.filter(ProfitSharingGroup.is_active == qParam.is_active)
    if qParam.covers_date is not None:
        query = query.filter(
            ProfitSharingGroup.start_date <= qParam.covers_date,
            or_(
                ProfitSharingGroup.end_date == None,
                ProfitSharingGroup.end_date >= qParam.covers_date,
            ),
        )
    # id based
    if qParam.id is not None:
        query = query.filter(ProfitSharingGroup.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(ProfitSharingGroup.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(ProfitSharingGroup.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(ProfitSharingGroup.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(ProfitSharingGroup, GroupOrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def searchMember(
    session: Session, qParam: MemberQueryParams, bus_id: Optional[int] = None
) -> List[ProfitSharingMember]:
    query = session.query(ProfitSharingMember)

    # Filters
    if bus_id is not None:
        query = query.join(
            ProfitSharingGroup, ProfitSharingGroup.id == ProfitSharingMember.group_id
        ).filter(ProfitSharingGroup.bus_id == bus_id)
    if qParam.group_id is not None:
        query = query.filter(ProfitSharingMember.group_id == qParam.group_id)
    if qParam.user_id is not None:
        query = query.filter(ProfitSharingMember.user_id == qParam.user_id)
    if qParam.role_in_share is not None:
        query = query.filter(ProfitSharingMember.role_in_share == qParam.role_in_share)
    if qParam.is_active is not None:
        query = query.filter(ProfitSharingMember.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(ProfitSharingMember.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(ProfitSharingMember.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(
        ProfitSharingMember, MemberOrderBy(qParam.order_by).name
    )
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def groupData(group: ProfitSharingGroup) -> dict:
    return jsonable_encoder(group, exclude={"bus"})


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_PROFIT_SHARING_GROUP,
    tags=["Profit Sharing"],
    response_model=GroupSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(ProfitSharingGroup.bus_id),
            exceptions.InactiveEntity(ProfitSharingGroup.bus_id),
            exceptions.InvalidDateRange(),
            exceptions.OverlappingProfitSharingGroup(),
        ]
    ),
    description="""
    Creates a profit sharing group for a bus over a period.
    The bus must be active and no other active group may cover any day of the period.
    Requires the PROFIT_SHARING.CREATE permission.
    """,
)
async def create_group(
    fParam: CreateGroupForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.CREATE)

        validators.dateRange(fParam.start_date, fParam.end_date)
        bus = session.query(Bus).filter(Bus.id == fParam.bus_id).first()
        if bus is None:
            raise exceptions.UnknownValue(ProfitSharingGroup.bus_id)
        if not bus.is_active:
            raise exceptions.InactiveEntity(ProfitSharingGroup.bus_id)

        group = ProfitSharingGroup(
            bus_id=fParam.bus_id,
            name=fParam.name,
            start_date=fParam.start_date,
            end_date=fParam.end_date,
            is_active=True,
            created_by=user.id,
        )
        validateOverlap(session, group)
        session.add(group)
        session.commit()
        session.refresh(group)

        data = groupData(group)
        logEvent(user, request_info, data, session, ProfitSharingGroup)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_PROFIT_SHARING_GROUP,
    tags=["Profit Sharing"],
    response_model=GroupSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidDateRange(),
            exceptions.OverlappingProfitSharingGroup(),
        ]
    ),
    description="""
    Updates the name, period or active flag of a profit sharing group.
    The updated period of an active group may not overlap another active group of the bus.
    Requires the PROFIT_SHARING.UPDATE permission.
    """,
)
async def update_group(
    fParam: UpdateGroupForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.UPDATE)

        group = (
            session.query(ProfitSharingGroup)
            .filter(ProfitSharingGroup.id == fParam.id)
            .first()
        )
        if group is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            group,
            fParam,
            [
                ProfitSharingGroup.name.key,
                ProfitSharingGroup.start_date.key,
                ProfitSharingGroup.end_date.key,
                ProfitSharingGroup.is_active.key,
            ],
        )
        haveUpdates = session.is_modified(group)
        if haveUpdates:
            validators.dateRange(group.start_date, group.end_date)
            validateOverlap(session, group)
            session.commit()
            session.refresh(group)

        data = groupData(group)
        if haveUpdates:
            logEvent(user, request_info, data, session, ProfitSharingGroup)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_PROFIT_SHARING_GROUP,
    tags=["Profit Sharing"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Deletes a profit sharing group together with its members.
    Requires the PROFIT_SHARING.DELETE permission.
    Unknown groups are silently ignored.
    """,
)
async def delete_group(
    fParam: DeleteGroupForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        lock = None
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.DELETE)

        lock = acquireLock(ProfitSharingGroup.__tablename__, fParam.id)
        group = (
            session.query(ProfitSharingGroup)
            .filter(ProfitSharingGroup.id == fParam.id)
            .first()
        )
        if group is not None:
            data = groupData(group)
            session.delete(group)
            session.commit()
            logEvent(user, request_info, data, session, ProfitSharingGroup)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_dashboard.get(
    URL_PROFIT_SHARING_GROUP,
    tags=["Profit Sharing"],
    response_model=List[GroupSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches profit sharing groups, filter by bus, name, active flag and covered day.
    Requires the PROFIT_SHARING.VIEW permission, a WORKER only gets the groups of its assigned bus.
    """,
)
async def fetch_group(
    qParam: GroupQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.VIEW)

        qParam.bus_id = scopedBusId(user, qParam.bus_id)
        return searchGroup(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_PROFIT_DISTRIBUTION,
    tags=["Profit Sharing"],
    response_model=DistributionSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Distributes the net profit of the group's bus over a period among its active members.
    The period defaults to the current calendar month.
    Members are listed by descending percentage, the summary reports the unassigned
    share and flags a group allocated above 100%.
    Requires the PROFIT_SHARING.VIEW permission and access to the bus of the group.
    """,
)
async def fetch_distribution(
    qParam: DistributionQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.VIEW)

        group = (
            session.query(ProfitSharingGroup)
            .filter(ProfitSharingGroup.id == qParam.id)
            .first()
        )
        if group is None:
            raise exceptions.InvalidIdentifier()
        validators.busAccess(user, group.bus_id)

        return reports.getProfitDistribution(
            session, group.id, qParam.start_date, qParam.end_date
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.post(
    URL_PROFIT_SHARING_MEMBER,
    tags=["Profit Sharing"],
    response_model=MemberSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(ProfitSharingMember.group_id),
            exceptions.UnknownValue(ProfitSharingMember.user_id),
            exceptions.DuplicateGroupMember(),
        ]
    ),
    description="""
    Adds a user to a profit sharing group with a percentage in (0, 100].
    A user can be a member of a group only once.
    Allocating more than 100% over a group is accepted and logged as a warning.
    Requires the PROFIT_SHARING.CREATE permission.
    """,
)
async def create_member(
    fParam: CreateMemberForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.CREATE)

        group = (
            session.query(ProfitSharingGroup.id)
            .filter(ProfitSharingGroup.id == fParam.group_id)
            .first()
        )
        if group is None:
            raise exceptions.UnknownValue(ProfitSharingMember.group_id)
        memberUser = session.query(User.id).filter(User.id == fParam.user_id).first()
        if memberUser is None:
            raise exceptions.UnknownValue(ProfitSharingMember.user_id)
        existing = (
            session.query(ProfitSharingMember.id)
            .filter(
                ProfitSharingMember.group_id == fParam.group_id,
                ProfitSharingMember.user_id == fParam.user_id,
            )
            .first()
        )
        if existing is not None:
            raise exceptions.DuplicateGroupMember()

        member = ProfitSharingMember(
            group_id=fParam.group_id,
            user_id=fParam.user_id,
            role_in_share=fParam.role_in_share,
            percentage=fParam.percentage,
            is_active=True,
        )
        session.add(member)
        session.commit()
        session.refresh(member)

        warnOverAllocation(session, member.group_id)
        data = jsonable_encoder(member)
        logEvent(user, request_info, data, session, ProfitSharingMember)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_PROFIT_SHARING_MEMBER,
    tags=["Profit Sharing"],
    response_model=MemberSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Updates the role, percentage or active flag of a group member.
    Inactive members are left out of the profit distribution.
    Requires the PROFIT_SHARING.UPDATE permission.
    """,
)
async def update_member(
    fParam: UpdateMemberForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.UPDATE)

        member = (
            session.query(ProfitSharingMember)
            .filter(ProfitSharingMember.id == fParam.id)
            .first()
        )
        if member is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            member,
            fParam,
            [
                ProfitSharingMember.role_in_share.key,
                ProfitSharingMember.percentage.key,
                ProfitSharingMember.is_active.key,
            ],
        )
        haveUpdates = session.is_modified(member)
        if haveUpdates:
            session.commit()
            session.refresh(member)
            warnOverAllocation(session, member.group_id)

        data = jsonable_encoder(member)
        if haveUpdates:
            logEvent(user, request_info, data, session, ProfitSharingMember)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_PROFIT_SHARING_MEMBER,
    tags=["Profit Sharing"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Removes a member from its group.
    Requires the PROFIT_SHARING.DELETE permission.
    Unknown members are silently ignored.
    """,
)
async def delete_member(
    fParam: DeleteMemberForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.DELETE)

        member = (
            session.query(ProfitSharingMember)
            .filter(ProfitSharingMember.id == fParam.id)
            .first()
        )
        if member is not None:
            data = jsonable_encoder(member)
            session.delete(member)
            session.commit()
            logEvent(user, request_info, data, session, ProfitSharingMember)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_PROFIT_SHARING_MEMBER,
    tags=["Profit Sharing"],
    response_model=List[MemberSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches profit sharing members, ordered by descending percentage by default.
    Requires the PROFIT_SHARING.VIEW permission, a WORKER only gets the members
    of the groups of its assigned bus.
    """,
)
async def fetch_member(
    qParam: MemberQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.PROFIT_SHARING, Action.VIEW)

        bus_id = scopedBusId(user, None)
        return searchMember(session, qParam, bus_id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

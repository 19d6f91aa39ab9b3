from datetime import datetime
from enum import IntEnum
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import AuditLog, sessionMaker
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.enums import Action, Module
from fleetledger.src.functions import enumStr, fuseExceptionResponses
from fleetledger.src.urls import URL_AUDIT_LOG, URL_AUDIT_STATS

route_dashboard = APIRouter()


## Output Schema
class AuditLogSchema(BaseModel):
    id: int
    actor_id: Optional[int]
    action: str
    entity_type: str
    entity_id: Optional[int]
    description: Optional[str]
    details: Optional[Any]
    created_on: datetime


class ActionCountSchema(BaseModel):
    action: str
    count: int


class EntityCountSchema(BaseModel):
    entity_type: str
    count: int


class ActorCountSchema(BaseModel):
    actor_id: int
    actor_name: Optional[str]
    count: int


class AuditStatsSchema(BaseModel):
    total_logs: int
    by_action: List[ActionCountSchema]
    by_entity: List[EntityCountSchema]
    top_actors: List[ActorCountSchema]


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    created_on = 2


class QueryParams(BaseModel):
    actor_id: int | None = Field(Query(default=None))
    action: str | None = Field(
        Query(default=None, description="HTTP method of the action, ex:- POST")
    )
    entity_type: str | None = Field(
        Query(default=None, description="Table name of the entity, ex:- route")
    )
    entity_id: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
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
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))


## Function
def searchAuditLog(session: Session, qParam: QueryParams) -> List[AuditLog]:
    query = session.query(AuditLog)

    # Filters
    if qParam.actor_id is not None:
        query = query.filter(AuditLog.actor_id == qParam.actor_id)
    if qParam.action is not None:
        query = query.filter(AuditLog.action == qParam.action.upper())
    if qParam.entity_type is not None:
        query = query.filter(AuditLog.entity_type == qParam.entity_type)
    if qParam.entity_id is not None:
        query = query.filter(AuditLog.entity_id == qParam.entity_id)
    # id based
    if qParam.id is not None:
        query = query.filter(AuditLog.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(AuditLog.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(AuditLog.id <= qParam.id_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(AuditLog.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(AuditLog.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(AuditLog, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.get(
    URL_AUDIT_LOG,
    tags=["Audit"],
    response_model=List[AuditLogSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches the audit trail of mutating actions, newest first by default.
    Filter by actor, action, entity type, entity id and creation time.
    Audit records are read only.
    Requires the AUDIT.VIEW permission.
    """,
)
async def fetch_audit_log(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.AUDIT, Action.VIEW)

        return searchAuditLog(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_AUDIT_STATS,
    tags=["Audit", "Report"],
    response_model=AuditStatsSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidDateRange(),
        ]
    ),
    description="""
    Counts the audit logs by action and by entity type, most frequent first,
    and lists the five most active users.
    Filter by creation time.
    Requires the AUDIT.VIEW permission.
    """,
)
async def fetch_audit_stats(
    qParam: StatsQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.AUDIT, Action.VIEW)

        return reports.getAuditStats(session, qParam.created_on_ge, qParam.created_on_le)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

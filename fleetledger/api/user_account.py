from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, EmailStr
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.constants import REGEX_NATIONAL_ID, REGEX_PASSWORD
from fleetledger.src.db import Bus, User, UserToken, sessionMaker
from fleetledger.src import argon2, exceptions, validators, getters
from fleetledger.src.enums import Action, Module, UserRole
from fleetledger.src.loggers import logEvent
from fleetledger.src.permissions import isPermitted
from fleetledger.src.functions import enumStr, fuseExceptionResponses
from fleetledger.src.urls import URL_USER_ACCOUNT, URL_USER_ACTIVATE

route_dashboard = APIRouter()


## Output Schema
class UserSchema(BaseModel):
    id: int
    full_name: str
    national_id: str
    email_id: Optional[str]
    role: int
    assigned_bus_id: Optional[int]
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    full_name: str = Field(Form(min_length=1, max_length=64))
    national_id: str = Field(Form(pattern=REGEX_NATIONAL_ID, max_length=32))
    password: str = Field(Form(pattern=REGEX_PASSWORD, min_length=8, max_length=32))
    email_id: EmailStr | None = Field(
        Form(max_length=256, default=None, description="Email in RFC 5322 format")
    )
    role: UserRole = Field(Form(description=enumStr(UserRole), default=UserRole.WORKER))
    assigned_bus_id: int | None = Field(
        Form(default=None, description="Required for WORKER accounts")
    )


class UpdateForm(BaseModel):
    id: int | None = Field(Form(default=None))
    full_name: str | None = Field(Form(min_length=1, max_length=64, default=None))
    password: str | None = Field(
        Form(pattern=REGEX_PASSWORD, min_length=8, max_length=32, default=None)
    )
    email_id: EmailStr | None = Field(
        Form(max_length=256, default=None, description="Email in RFC 5322 format")
    )
    # Administrative fields
    national_id: str | None = Field(
        Form(pattern=REGEX_NATIONAL_ID, max_length=32, default=None)
    )
    role: UserRole | None = Field(Form(description=enumStr(UserRole), default=None))
    assigned_bus_id: int | None = Field(Form(default=None))


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
    full_name = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    full_name: str | None = Field(Query(default=None))
    national_id: str | None = Field(Query(default=None))
    email_id: str | None = Field(Query(default=None))
    role: UserRole | None = Field(Query(default=None, description=enumStr(UserRole)))
    assigned_bus_id: int | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
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


## Function
def assignableBus(session: Session, bus_id: int) -> Bus:
    bus = session.query(Bus).filter(Bus.id == bus_id).first()
    if bus is None:
        raise exceptions.UnknownValue(User.assigned_bus_id)
    if not bus.is_active:
        raise exceptions.InactiveEntity(User.assigned_bus_id)
    return bus


def searchUser(session: Session, qParam: QueryParams) -> List[User]:
    query = session.query(User)

    # Filters
    if qParam.full_name is not None:
        query = query.filter(User.full_name.ilike(f"%{qParam.full_name}%"))
    if qParam.national_id is not None:
        query = query.filter(User.national_id.ilike(f"%{qParam.national_id}%"))
    if qParam.email_id is not None:
        query = query.filter(User.email_id.ilike(f"%{qParam.email_id}%"))
    if qParam.role is not None:
        query = query.filter(User.role == qParam.role)
    if qParam.assigned_bus_id is not None:
        query = query.filter(User.assigned_bus_id == qParam.assigned_bus_id)
    if qParam.is_active is not None:
        query = query.filter(User.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(User.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(User.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(User.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(User.id.in_(qParam.id_list))
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(User.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(User.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(User.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(User.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(User, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_USER_ACCOUNT,
    tags=["Account"],
    response_model=UserSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(User.assigned_bus_id),
            exceptions.UnknownValue(User.assigned_bus_id),
            exceptions.InactiveEntity(User.assigned_bus_id),
        ]
    ),
    description="""
    Create a new user account.
    Requires the USERS.CREATE permission.
    The password is hashed using Argon2 before storing.
    A WORKER account must be assigned to an active bus.
    Duplicate national IDs and emails are not allowed.
    """,
)
async def create_user(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        actor = getters.tokenUser(token, session)
        validators.permission(actor, Module.USERS, Action.CREATE)

        if fParam.assigned_bus_id is not None:
            assignableBus(session, fParam.assigned_bus_id)
        elif fParam.role == UserRole.WORKER:
            raise exceptions.InvalidValue(User.assigned_bus_id)

        user = User(
            full_name=fParam.full_name,
            national_id=fParam.national_id,
            password=argon2.makePassword(fParam.password),
            email_id=fParam.email_id,
            role=fParam.role,
            assigned_bus_id=fParam.assigned_bus_id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        logEvent(actor, request_info, userData, session, User)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_USER_ACCOUNT,
    tags=["Account"],
    response_model=UserSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidValue(User.assigned_bus_id),
        ]
    ),
    description="""
    Update a user account.
    Every user can update its own name, email and password.
    The national ID, role and assigned bus can only be changed with the USERS.UPDATE permission.
    Changing the role or bus of an account signs it out of every device.
    Modifications are only saved if changes are detected.
    """,
)
async def update_user(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        actor = getters.tokenUser(token, session)

        if fParam.id is None:
            fParam.id = actor.id
        isSelfUpdate = fParam.id == actor.id
        hasUpdatePermission = isPermitted(actor.role, Module.USERS, Action.UPDATE)
        if not isSelfUpdate and not hasUpdatePermission:
            raise exceptions.NoPermission()

        user = session.query(User).filter(User.id == fParam.id).first()
        if user is None:
            raise exceptions.InvalidIdentifier()

        if fParam.password is not None:
            user.password = argon2.makePassword(fParam.password)
        if fParam.full_name is not None and user.full_name != fParam.full_name:
            user.full_name = fParam.full_name
        if fParam.email_id is not None and user.email_id != fParam.email_id:
            user.email_id = fParam.email_id

        administrative = [fParam.national_id, fParam.role, fParam.assigned_bus_id]
        if any(value is not None for value in administrative):
            if not hasUpdatePermission:
                raise exceptions.NoPermission()
            if fParam.national_id is not None and user.national_id != fParam.national_id:
                user.national_id = fParam.national_id
            if fParam.role is not None and user.role != fParam.role:
                user.role = fParam.role
            if (
                fParam.assigned_bus_id is not None
                and user.assigned_bus_id != fParam.assigned_bus_id
            ):
                assignableBus(session, fParam.assigned_bus_id)
                user.assigned_bus_id = fParam.assigned_bus_id
            if user.role == UserRole.WORKER and user.assigned_bus_id is None:
                raise exceptions.InvalidValue(User.assigned_bus_id)
            # The scope of the account changed, force a new sign in
            if session.is_modified(user) and not isSelfUpdate:
                session.query(UserToken).filter(UserToken.user_id == user.id).delete()

        haveUpdates = session.is_modified(user)
        if haveUpdates:
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        if haveUpdates:
            logEvent(actor, request_info, userData, session, User)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_USER_ACCOUNT,
    tags=["Account"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.SelfDeletion(),
        ]
    ),
    description="""
    Deactivate a user account, the record is kept for the history it owns.
    Requires the USERS.DELETE permission. Self deactivation is not allowed.
    Every token of the account is revoked.
    Unknown or already inactive accounts are silently ignored.
    """,
)
async def delete_user(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        actor = getters.tokenUser(token, session)
        validators.permission(actor, Module.USERS, Action.DELETE)

        if fParam.id == actor.id:
            raise exceptions.SelfDeletion()

        user = session.query(User).filter(User.id == fParam.id).first()
        if user is not None and user.is_active:
            user.is_active = False
            session.query(UserToken).filter(UserToken.user_id == user.id).delete()
            session.commit()
            session.refresh(user)
            userData = jsonable_encoder(user, exclude={"password"})
            logEvent(actor, request_info, userData, session, User)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_USER_ACTIVATE,
    tags=["Account"],
    response_model=UserSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Reactivate a deactivated user account.
    Requires the USERS.ACTIVATE permission.
    """,
)
async def activate_user(
    fParam: ActivateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        actor = getters.tokenUser(token, session)
        validators.permission(actor, Module.USERS, Action.ACTIVATE)

        user = session.query(User).filter(User.id == fParam.id).first()
        if user is None:
            raise exceptions.InvalidIdentifier()

        haveUpdates = not user.is_active
        if haveUpdates:
            user.is_active = True
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        if haveUpdates:
            logEvent(actor, request_info, userData, session, User)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_USER_ACCOUNT,
    tags=["Account"],
    response_model=List[UserSchema],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Fetch user accounts with filtering, sorting, and pagination.
    Users without the USERS.VIEW permission only get their own account.
    """,
)
async def fetch_user(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        actor = getters.tokenUser(token, session)

        if not isPermitted(actor.role, Module.USERS, Action.VIEW):
            qParam.id = actor.id
        return searchUser(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

from datetime import datetime, timedelta, timezone
from enum import IntEnum
from secrets import token_hex
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetledger.api.bearer import bearer_user
from fleetledger.src.constants import MAX_USER_TOKENS, MAX_TOKEN_VALIDITY
from fleetledger.src.db import User, UserToken, sessionMaker
from fleetledger.src import argon2, exceptions, validators, getters
from fleetledger.src.enums import UserRole
from fleetledger.src.loggers import logEvent
from fleetledger.src.functions import enumStr, fuseExceptionResponses
from fleetledger.src.urls import URL_USER_TOKEN

route_dashboard = APIRouter()


## Output Schema
class MaskedUserTokenSchema(BaseModel):
    id: int
    user_id: int
    expires_in: int
    expires_at: datetime
    client_details: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


class UserTokenSchema(MaskedUserTokenSchema):
    access_token: str
    token_type: Optional[str] = "bearer"
    role: int
    assigned_bus_id: Optional[int]


## Input Forms
class CreateForm(BaseModel):
    national_id: str = Field(Form(max_length=32))
    password: str = Field(Form(max_length=32))
    client_details: str | None = Field(Form(max_length=1024, default=None))


class UpdateForm(BaseModel):
    id: int | None = Field(Form(default=None))


class DeleteForm(BaseModel):
    id: int | None = Field(Form(default=None))


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    user_id: int | None = Field(Query(default=None))
    client_details: str | None = Field(Query(default=None))
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


## Function
def tokenData(token: UserToken, user: User) -> dict:
    data = jsonable_encoder(token)
    data["role"] = user.role
    data["assigned_bus_id"] = user.assigned_bus_id
    return data


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_USER_TOKEN,
    tags=["Token"],
    response_model=UserTokenSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [exceptions.InactiveAccount(), exceptions.InvalidCredentials()]
    ),
    description="""
    Issues a new access token after validating the national ID and password.
    The role and the assigned bus of the account are returned with the token.
    Limits active tokens using MAX_USER_TOKENS (the oldest one is rotated out).
    Sets expiration with expires_in=MAX_TOKEN_VALIDITY (in seconds).
    """,
)
async def create_token(
    fParam: CreateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        user = session.query(User).filter(User.national_id == fParam.national_id).first()
        if user is None:
            raise exceptions.InvalidCredentials()
        if not argon2.checkPassword(fParam.password, user.password):
            raise exceptions.InvalidCredentials()
        if not user.is_active:
            raise exceptions.InactiveAccount()
        if argon2.needsRehash(user.password):
            user.password = argon2.makePassword(fParam.password)

        # Remove excess tokens from DB
        tokens = (
            session.query(UserToken)
            .filter(UserToken.user_id == user.id)
            .order_by(UserToken.created_on.desc())
            .all()
        )
        for token in tokens[MAX_USER_TOKENS - 1 :]:
            session.delete(token)
        session.flush()

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=MAX_TOKEN_VALIDITY)
        token = UserToken(
            user_id=user.id,
            expires_in=MAX_TOKEN_VALIDITY,
            expires_at=expires_at,
            client_details=fParam.client_details,
        )
        session.add(token)
        session.commit()
        session.refresh(token)

        data = tokenData(token, user)
        logData = jsonable_encoder(token, exclude={"access_token"})
        logEvent(user, request_info, logData, session, UserToken)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_USER_TOKEN,
    tags=["Token"],
    response_model=UserTokenSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Refreshes an access token of the caller.
    If no id is provided, refreshes the token used in this request.
    An explicit id must identify the token used in this request.
    Extends expires_at by MAX_TOKEN_VALIDITY seconds and rotates the access_token value.
    """,
)
async def refresh_token(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)

        if fParam.id is not None:
            if session.query(UserToken).filter(UserToken.id == fParam.id).first() is None:
                raise exceptions.InvalidIdentifier()
            if fParam.id != token.id:
                raise exceptions.NoPermission()

        token.expires_in += MAX_TOKEN_VALIDITY
        token.expires_at += timedelta(seconds=MAX_TOKEN_VALIDITY)
        token.access_token = token_hex(32)
        session.commit()
        session.refresh(token)

        data = tokenData(token, user)
        logData = jsonable_encoder(token, exclude={"access_token"})
        logEvent(user, request_info, logData, session, UserToken)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_USER_TOKEN,
    tags=["Token"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Revokes an access token.
    If no ID is provided, the token used in the request is revoked (sign out).
    Any token of the caller can be revoked by ID, an ADMIN can revoke the tokens of every user.
    Unknown token IDs are silently ignored.
    """,
)
async def delete_token(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)

        if fParam.id is None:
            tokenToDelete = token
        else:
            tokenToDelete = (
                session.query(UserToken).filter(UserToken.id == fParam.id).first()
            )
            if tokenToDelete is None:
                return Response(status_code=status.HTTP_204_NO_CONTENT)
            isSelfDelete = tokenToDelete.user_id == user.id
            if not isSelfDelete and user.role != UserRole.ADMIN:
                raise exceptions.NoPermission()

        session.delete(tokenToDelete)
        session.commit()
        logData = jsonable_encoder(tokenToDelete, exclude={"access_token"})
        logEvent(user, request_info, logData, session, UserToken)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_USER_TOKEN,
    tags=["Token"],
    response_model=List[MaskedUserTokenSchema],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Lists masked access tokens, the access_token value itself is never returned.
    An ADMIN sees the tokens of every user, any other user only its own.
    """,
)
async def fetch_tokens(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)

        query = session.query(UserToken)

        # Filters
        if user.role != UserRole.ADMIN:
            query = query.filter(UserToken.user_id == user.id)
        if qParam.user_id is not None:
            query = query.filter(UserToken.user_id == qParam.user_id)
        if qParam.client_details is not None:
            query = query.filter(
                UserToken.client_details.ilike(f"%{qParam.client_details}%")
            )
        # id based
        if qParam.id is not None:
            query = query.filter(UserToken.id == qParam.id)
        if qParam.id_ge is not None:
            query = query.filter(UserToken.id >= qParam.id_ge)
        if qParam.id_le is not None:
            query = query.filter(UserToken.id <= qParam.id_le)
        if qParam.id_list is not None:
            query = query.filter(UserToken.id.in_(qParam.id_list))
        # created_on based
        if qParam.created_on_ge is not None:
            query = query.filter(UserToken.created_on >= qParam.created_on_ge)
        if qParam.created_on_le is not None:
            query = query.filter(UserToken.created_on <= qParam.created_on_le)

        # Ordering
        orderingAttribute = getattr(UserToken, OrderBy(qParam.order_by).name)
        if qParam.order_in == OrderIn.ASC:
            query = query.order_by(orderingAttribute.asc())
        else:
            query = query.order_by(orderingAttribute.desc())

        # Pagination
        query = query.offset(qParam.offset).limit(qParam.limit)
        return query.all()
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.db import BudgetItem, Expense, ExpenseCategory, sessionMaker
from fleetledger.src import exceptions, validators, getters
from fleetledger.src.enums import Action, Module
from fleetledger.src.loggers import logEvent
from fleetledger.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from fleetledger.src.urls import URL_EXPENSE_CATEGORY, URL_EXPENSE_CATEGORY_ACTIVATE

route_dashboard = APIRouter()


## Output Schema
class ExpenseCategorySchema(BaseModel):
    id: int
    name: str
    description: Optional[str]
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=1, max_length=64))
    description: str | None = Field(Form(max_length=2048, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=1, max_length=64, default=None))
    description: str | None = Field(Form(max_length=2048, default=None))


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
    name = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.name, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


## Function
def isCategoryInUse(session: Session, category_id: int) -> bool:
    expense = session.query(Expense.id).filter(Expense.category_id == category_id)
    item = session.query(BudgetItem.id).filter(BudgetItem.category_id == category_id)
    return expense.first() is not None or item.first() is not None


def searchExpenseCategory(
    session: Session, qParam: QueryParams
) -> List[ExpenseCategory]:
    query = session.query(ExpenseCategory)

    # Filters
    if qParam.name is not None:
        query = query.filter(ExpenseCategory.name.ilike(f"%{qParam.name}%"))
    if qParam.is_active is not None:
        query = query.filter(ExpenseCategory.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(ExpenseCategory.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(ExpenseCategory.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(ExpenseCategory.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(ExpenseCategory.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(ExpenseCategory, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_EXPENSE_CATEGORY,
    tags=["Expense Category"],
    response_model=ExpenseCategorySchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Creates a category for administrative expenses, the name must be unique.
    Requires the EXPENSE_CATEGORIES.CREATE permission.
    """,
)
async def create_expense_category(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSE_CATEGORIES, Action.CREATE)

        category = ExpenseCategory(name=fParam.name, description=fParam.description)
        session.add(category)
        session.commit()
        session.refresh(category)

        categoryData = jsonable_encoder(category)
        logEvent(user, request_info, categoryData, session, ExpenseCategory)
        return categoryData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_EXPENSE_CATEGORY,
    tags=["Expense Category"],
    response_model=ExpenseCategorySchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Renames or describes an expense category.
    Requires the EXPENSE_CATEGORIES.UPDATE permission.
    """,
)
async def update_expense_category(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSE_CATEGORIES, Action.UPDATE)

        category = (
            session.query(ExpenseCategory)
            .filter(ExpenseCategory.id == fParam.id)
            .first()
        )
        if category is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            category,
            fParam,
            [ExpenseCategory.name.key, ExpenseCategory.description.key],
        )
        haveUpdates = session.is_modified(category)
        if haveUpdates:
            session.commit()
            session.refresh(category)

        categoryData = jsonable_encoder(category)
        if haveUpdates:
            logEvent(user, request_info, categoryData, session, ExpenseCategory)
        return categoryData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_EXPENSE_CATEGORY,
    tags=["Expense Category"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.EntityInUse(ExpenseCategory),
        ]
    ),
    description="""
    Deactivates an expense category.
    Requires the EXPENSE_CATEGORIES.DELETE permission.
    A category still referenced by expenses or budget items cannot be deactivated.
    Unknown or already inactive categories are silently ignored.
    """,
)
async def delete_expense_category(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSE_CATEGORIES, Action.DELETE)

        category = (
            session.query(ExpenseCategory)
            .filter(ExpenseCategory.id == fParam.id)
            .first()
        )
        if category is not None and category.is_active:
            if isCategoryInUse(session, category.id):
                raise exceptions.EntityInUse(ExpenseCategory)
            category.is_active = False
            session.commit()
            session.refresh(category)
            categoryData = jsonable_encoder(category)
            logEvent(user, request_info, categoryData, session, ExpenseCategory)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_EXPENSE_CATEGORY_ACTIVATE,
    tags=["Expense Category"],
    response_model=ExpenseCategorySchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Reactivates an expense category.
    Requires the EXPENSE_CATEGORIES.ACTIVATE permission.
    """,
)
async def activate_expense_category(
    fParam: ActivateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSE_CATEGORIES, Action.ACTIVATE)

        category = (
            session.query(ExpenseCategory)
            .filter(ExpenseCategory.id == fParam.id)
            .first()
        )
        if category is None:
            raise exceptions.InvalidIdentifier()

        haveUpdates = not category.is_active
        if haveUpdates:
            category.is_active = True
            session.commit()
            session.refresh(category)

        categoryData = jsonable_encoder(category)
        if haveUpdates:
            logEvent(user, request_info, categoryData, session, ExpenseCategory)
        return categoryData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_EXPENSE_CATEGORY,
    tags=["Expense Category"],
    response_model=List[ExpenseCategorySchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches expense categories, ordered by name by default.
    Requires the EXPENSE_CATEGORIES.VIEW permission.
    """,
)
async def fetch_expense_category(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.EXPENSE_CATEGORIES, Action.VIEW)

        return searchExpenseCategory(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

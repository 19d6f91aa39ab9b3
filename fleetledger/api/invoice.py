from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum
from io import BytesIO
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form, UploadFile, File
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from fleetledger.api.bearer import bearer_user
from fleetledger.src.constants import INVOICE_FILES, MAX_INVOICE_SIZE
from fleetledger.src.db import Expense, Invoice, sessionMaker
from fleetledger.src import exceptions, validators, getters, reports
from fleetledger.src.enums import Action, Module
from fleetledger.src.loggers import logEvent
from fleetledger.src.minio import uploadFile, downloadFile, deleteFile
from fleetledger.src.functions import (
    enumStr,
    fuseExceptionResponses,
    splitMIME,
    updateIfChanged,
)
from fleetledger.src.urls import URL_INVOICE, URL_INVOICE_FILE, URL_INVOICE_STATS

route_dashboard = APIRouter()

# MIME types accepted for scanned or digital invoices
INVOICE_MIME_TYPES = {"application", "image"}
INVOICE_APPLICATION_SUB_TYPES = {"pdf", "xml"}


## Output Schema
class InvoiceSchema(BaseModel):
    id: int
    invoice_number: str
    provider_name: str
    issue_date: date
    total_amount: float
    file_name: str
    file_type: str
    file_size: int
    uploaded_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class InvoiceStatsSchema(BaseModel):
    invoices_count: int
    this_month_count: int
    total_amount: float


## Input Forms
class CreateForm(BaseModel):
    invoice_number: str = Field(Form(min_length=1, max_length=64))
    provider_name: str = Field(Form(min_length=1, max_length=128))
    issue_date: date = Field(Form())
    total_amount: Decimal = Field(Form(ge=0))
    file: UploadFile = Field(File(description="PDF, XML or image of the invoice"))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    invoice_number: str | None = Field(Form(min_length=1, max_length=64, default=None))
    provider_name: str | None = Field(Form(min_length=1, max_length=128, default=None))
    issue_date: date | None = Field(Form(default=None))
    total_amount: Decimal | None = Field(Form(ge=0, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class OrderBy(IntEnum):
    id = 1
    issue_date = 2
    total_amount = 3
    file_size = 4
    created_on = 5


class FileQueryParams(BaseModel):
    id: int = Field(Query(description="Identifier of the invoice"))


class QueryParams(BaseModel):
    provider_name: str | None = Field(Query(default=None))
    invoice_number: str | None = Field(Query(default=None))
    search: str | None = Field(
        Query(default=None, description="Matches the invoice number or the provider")
    )
    uploaded_by: int | None = Field(Query(default=None))
    # issue_date based
    issue_date_ge: date | None = Field(Query(default=None))
    issue_date_le: date | None = Field(Query(default=None))
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
def validateInvoiceFile(fileBytes: bytes, contentType: Optional[str]):
    if not fileBytes or len(fileBytes) > MAX_INVOICE_SIZE:
        raise exceptions.InvalidInvoiceFile()
    mimeInfo = splitMIME(contentType)
    if mimeInfo["type"] not in INVOICE_MIME_TYPES:
        raise exceptions.InvalidInvoiceFile()
    if (
        mimeInfo["type"] == "application"
        and mimeInfo["sub_type"] not in INVOICE_APPLICATION_SUB_TYPES
    ):
        raise exceptions.InvalidInvoiceFile()


def searchInvoice(session: Session, qParam: QueryParams) -> List[Invoice]:
    query = session.query(Invoice)

    # Filters
    if qParam.provider_name is not None:
        query = query.filter(Invoice.provider_name.ilike(f"%{qParam.provider_name}%"))
    if qParam.invoice_number is not None:
        query = query.filter(Invoice.invoice_number == qParam.invoice_number)
    if qParam.search is not None:
        query = query.filter(
            or_(
                Invoice.invoice_number.ilike(f"%{qParam.search}%"),
                Invoice.provider_name.ilike(f"%{qParam.search}%"),
            )
        )
    if qParam.uploaded_by is not None:
        query = query.filter(Invoice.uploaded_by == qParam.uploaded_by)
    # issue_date based
    if qParam.issue_date_ge is not None:
        query = query.filter(Invoice.issue_date >= qParam.issue_date_ge)
    if qParam.issue_date_le is not None:
        query = query.filter(Invoice.issue_date <= qParam.issue_date_le)
    # id based
    if qParam.id is not None:
        query = query.filter(Invoice.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Invoice.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Invoice.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Invoice.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Invoice.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Invoice.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Invoice, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Dashboard]
@route_dashboard.post(
    URL_INVOICE,
    tags=["Invoice"],
    response_model=InvoiceSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidInvoiceFile(),
        ]
    ),
    description="""
    Uploads a supplier invoice with its metadata.
    The file must be a PDF, an XML or an image of at most 10 MB.
    It is stored in the `invoice-files` bucket of MinIO under the invoice id.
    Requires the INVOICES.CREATE permission.
    """,
)
async def create_invoice(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.CREATE)

        fileBytes = await fParam.file.read()
        validateInvoiceFile(fileBytes, fParam.file.content_type)

        invoice = Invoice(
            invoice_number=fParam.invoice_number,
            provider_name=fParam.provider_name,
            issue_date=fParam.issue_date,
            total_amount=fParam.total_amount,
            file_name=fParam.file.filename,
            file_type=fParam.file.content_type,
            file_size=len(fileBytes),
            uploaded_by=user.id,
        )
        session.add(invoice)
        session.flush()
        uploadFile(
            INVOICE_FILES,
            str(invoice.id),
            len(fileBytes),
            BytesIO(fileBytes),
            invoice.file_type,
        )
        session.commit()
        session.refresh(invoice)

        invoiceData = jsonable_encoder(invoice)
        logEvent(user, request_info, invoiceData, session, Invoice)
        return invoiceData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.patch(
    URL_INVOICE,
    tags=["Invoice"],
    response_model=InvoiceSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Updates the metadata of an invoice, the stored file is left untouched.
    Requires the INVOICES.UPDATE permission.
    """,
)
async def update_invoice(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.UPDATE)

        invoice = session.query(Invoice).filter(Invoice.id == fParam.id).first()
        if invoice is None:
            raise exceptions.InvalidIdentifier()

        updateIfChanged(
            invoice,
            fParam,
            [
                Invoice.invoice_number.key,
                Invoice.provider_name.key,
                Invoice.issue_date.key,
                Invoice.total_amount.key,
            ],
        )
        haveUpdates = session.is_modified(invoice)
        if haveUpdates:
            session.commit()
            session.refresh(invoice)

        invoiceData = jsonable_encoder(invoice)
        if haveUpdates:
            logEvent(user, request_info, invoiceData, session, Invoice)
        return invoiceData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.delete(
    URL_INVOICE,
    tags=["Invoice"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.EntityInUse(Invoice),
        ]
    ),
    description="""
    Deletes an invoice and its stored file.
    An invoice still linked to an expense can not be deleted.
    Requires the INVOICES.DELETE permission.
    Unknown invoices are silently ignored.
    """,
)
async def delete_invoice(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.DELETE)

        invoice = session.query(Invoice).filter(Invoice.id == fParam.id).first()
        if invoice is not None:
            linked = session.query(Expense.id).filter(Expense.invoice_id == invoice.id)
            if linked.first() is not None:
                raise exceptions.EntityInUse(Invoice)

            invoiceData = jsonable_encoder(invoice)
            session.delete(invoice)
            session.commit()
            deleteFile(INVOICE_FILES, str(invoiceData["id"]))
            logEvent(user, request_info, invoiceData, session, Invoice)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_INVOICE,
    tags=["Invoice"],
    response_model=List[InvoiceSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetches invoice metadata.
    Filter by provider, invoice number, free text search, uploader and issue date.
    Requires the INVOICES.VIEW permission.
    """,
)
async def fetch_invoice(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.VIEW)

        return searchInvoice(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_INVOICE_FILE,
    tags=["Invoice"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Downloads the stored file of an invoice with its original name and type.
    Requires the INVOICES.VIEW permission.
    """,
)
async def download_invoice(
    qParam: FileQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.VIEW)

        invoice = session.query(Invoice).filter(Invoice.id == qParam.id).first()
        if invoice is None:
            raise exceptions.InvalidIdentifier()

        fileBytes = downloadFile(INVOICE_FILES, str(invoice.id))
        return StreamingResponse(
            BytesIO(fileBytes),
            media_type=invoice.file_type,
            headers={
                "Content-Disposition": f'attachment; filename="{invoice.file_name}"'
            },
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_INVOICE_STATS,
    tags=["Invoice", "Report"],
    response_model=InvoiceStatsSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Number of invoices, how many were uploaded during the current month
    and their summed amount.
    Requires the INVOICES.VIEW permission.
    """,
)
async def fetch_invoice_stats(bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.tokenUser(token, session)
        validators.permission(user, Module.INVOICES, Action.VIEW)

        return reports.getInvoiceStats(session)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

from calendar import monthrange
from datetime import date, datetime
from typing import List, Dict, Optional, Tuple

from fleetledger.src import schemas
from fleetledger.src.exceptions import APIException, NoPermission
from fleetledger.src.enums import UserRole
from fleetledger.src.constants import TMZ_SECONDARY


def fuseExceptionResponses(exceptions: List[APIException]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation by fusing multiple APIException instances.

    Args:
        exceptions (List[APIException]): List of instantiated exceptions.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"detail": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Example:
        >>> enumStr(UserRole)
        'ADMIN: 1, WORKER: 2'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> List[str]:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Designed for use with SQLAlchemy models, where `fields` are typically
    provided as `Model.field.key`.

    Returns:
        List[str]: Names of the attributes that were actually changed.

    Example:
        >>> updateIfChanged(bus, fParam, [Bus.plate_number.key, Bus.monthly_target.key])
        ['monthly_target']
    """
    changed = []
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)
                changed.append(field)
    return changed


def changedFields(targetObj, sourceObj, fields: List[str]) -> List[str]:
    """Names of the fields of `sourceObj` that would alter `targetObj` if applied."""
    return [
        field
        for field in fields
        if getattr(sourceObj, field, None) is not None
        and getattr(targetObj, field) != getattr(sourceObj, field)
    ]


def splitMIME(mimeType: str) -> Dict[str, Optional[str]]:
    """
    Safely split a MIME type string into type, subtype, and optional parameters.

    Example:
        >>> splitMIME("application/pdf")
        {'type': 'application', 'sub_type': 'pdf', 'parameter': None}

        >>> splitMIME("text/plain; charset=UTF-8")
        {'type': 'text', 'sub_type': 'plain', 'parameter': 'charset=UTF-8'}

        >>> splitMIME("invalidstring")
        {'type': 'invalidstring', 'sub_type': None, 'parameter': None}
    """
    if not mimeType or "/" not in mimeType:
        return {"type": mimeType or None, "sub_type": None, "parameter": None}

    type_part, rest = mimeType.split("/", 1)
    type_part = type_part.strip() or None

    if ";" in rest:
        subType, *params = [p.strip() for p in rest.split(";")]
        parameter = "; ".join(params) if params else None
    else:
        subType, parameter = rest.strip() or None, None

    return {"type": type_part, "sub_type": subType, "parameter": parameter}


def scopedBusId(user, requested: Optional[int]) -> Optional[int]:
    """
    Resolve the bus a query must be restricted to.

    An ADMIN gets whatever was requested (None meaning every bus),
    a WORKER is always pinned to its assigned bus.
    """
    if user.role == UserRole.ADMIN:
        return requested
    if user.assigned_bus_id is None:
        raise NoPermission()
    return user.assigned_bus_id


def monthRange(year: int, month: int) -> Tuple[date, date]:
    """
    First and last day of a calendar month.

    Example:
        >>> monthRange(2024, 2)
        (datetime.date(2024, 2, 1), datetime.date(2024, 2, 29))
    """
    lastDay = monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, lastDay)


def normalizeExpenseName(name: str) -> str:
    """Route expense names are stored stripped and in upper case."""
    return name.strip().upper()


def today() -> date:
    """Current date in the local timezone of the business."""
    return datetime.now(TMZ_SECONDARY).date()


def localDate(value: datetime) -> date:
    """Calendar date of a timestamp in the business timezone, naive values are taken as is."""
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(TMZ_SECONDARY).date()

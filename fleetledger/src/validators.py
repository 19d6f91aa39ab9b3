"""
Validation and permission checks for FleetLedger API.

This module centralizes guard logic such as:
- Token validation
- Role based permission and bus scope checks
- Date range validation
- Route lock enforcement

All functions raise appropriate exceptions from `fleetledger.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional
from sqlalchemy.orm.session import Session

from fleetledger.src.db import Route, User, UserToken
from fleetledger.src.enums import Action, Module, UserRole
from fleetledger.src.permissions import isPermitted
from fleetledger.src import exceptions


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------
def userToken(access_token: str, session: Session) -> UserToken:
    """
    Validate a user access token.

    Args:
        access_token (str): The bearer token string provided by the client.
        session (Session): Active SQLAlchemy session for DB lookup.

    Returns:
        UserToken: The valid token object from the database.

    Raises:
        exceptions.InvalidToken: If the token is not found or has expired.
    """
    current_time = datetime.now(timezone.utc)

    token = (
        session.query(UserToken)
        .filter(
            UserToken.access_token == access_token,
            UserToken.expires_at > current_time,
        )
        .first()
    )

    if token is None:
        raise exceptions.InvalidToken()

    return token


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------
def permission(user: User, module: Module, action: Action) -> bool:
    """
    Validate that the user's role grants `action` on `module`.

    Raises:
        exceptions.NoPermission: If the role does not have the required permission.
    """
    if user and isPermitted(user.role, module, action):
        return True
    raise exceptions.NoPermission()


def busAccess(user: User, bus_id: Optional[int]) -> bool:
    """
    Validate that the user may operate on the given bus.

    An ADMIN may access every bus. A WORKER only its assigned bus,
    and nothing at all when no bus is assigned.

    Raises:
        exceptions.NoPermission: If the bus is outside of the user's scope.
    """
    if user.role == UserRole.ADMIN:
        return True
    if user.assigned_bus_id is not None and user.assigned_bus_id == bus_id:
        return True
    raise exceptions.NoPermission()


# ---------------------------------------------------------------------------
# Other validations
# ---------------------------------------------------------------------------
def dateRange(start_date: Optional[date], end_date: Optional[date]) -> bool:
    """
    Validate a date period. An open end (None) is always valid.

    Raises:
        exceptions.InvalidDateRange: If the end date is earlier than the start date.
    """
    if start_date is not None and end_date is not None and end_date < start_date:
        raise exceptions.InvalidDateRange()
    return True


def routeMutation(route: Route, changedFields: Iterable[str]) -> bool:
    """
    Validate an update of a route against its lock state.

    A locked route is read-only, the only change accepted is the one
    that toggles `is_locked` itself.

    Args:
        route (Route): The route as stored.
        changedFields (Iterable[str]): Names of the columns the update would alter.

    Raises:
        exceptions.LockedRoute: If a locked route would get any other change.
    """
    if not route.is_locked:
        return True
    if set(changedFields) - {Route.is_locked.key}:
        raise exceptions.LockedRoute()
    return True

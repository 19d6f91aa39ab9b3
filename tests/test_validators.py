from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from fleetledger.src import exceptions, validators, getters
from fleetledger.src.db import Route, UserToken
from fleetledger.src.enums import Action, Module, UserRole
from fleetledger.src.functions import scopedBusId


def makeUser(role, assigned_bus_id=None, **kwargs):
    return SimpleNamespace(role=role, assigned_bus_id=assigned_bus_id, **kwargs)


ADMIN = makeUser(UserRole.ADMIN)
WORKER = makeUser(UserRole.WORKER, assigned_bus_id=3)
UNASSIGNED_WORKER = makeUser(UserRole.WORKER)


# Permission
def test_permission_passes_for_granted_pair():
    assert validators.permission(WORKER, Module.ROUTES, Action.CREATE)


def test_permission_raises_for_refused_pair():
    with pytest.raises(exceptions.NoPermission):
        validators.permission(WORKER, Module.BUDGETS, Action.VIEW)


# Bus scope
def test_admin_accesses_any_bus():
    assert validators.busAccess(ADMIN, 99)


def test_worker_accesses_its_bus_only():
    assert validators.busAccess(WORKER, 3)
    with pytest.raises(exceptions.NoPermission):
        validators.busAccess(WORKER, 4)


def test_worker_without_bus_accesses_nothing():
    with pytest.raises(exceptions.NoPermission):
        validators.busAccess(UNASSIGNED_WORKER, None)


def test_scoped_bus_of_admin_is_the_requested_one():
    assert scopedBusId(ADMIN, 7) == 7
    assert scopedBusId(ADMIN, None) is None


def test_scoped_bus_of_worker_is_the_assigned_one():
    assert scopedBusId(WORKER, None) == 3
    assert scopedBusId(WORKER, 8) == 3


def test_scoped_bus_of_unassigned_worker():
    with pytest.raises(exceptions.NoPermission):
        scopedBusId(UNASSIGNED_WORKER, None)


# Date range
def test_date_range():
    assert validators.dateRange(date(2024, 1, 1), date(2024, 1, 1))
    assert validators.dateRange(date(2024, 1, 1), None)
    with pytest.raises(exceptions.InvalidDateRange):
        validators.dateRange(date(2024, 1, 2), date(2024, 1, 1))


# Route lock
def test_unlocked_route_accepts_any_change():
    route = Route(is_locked=False)
    assert validators.routeMutation(route, ["total_income", "notes"])


def test_locked_route_refuses_field_changes():
    route = Route(is_locked=True)
    with pytest.raises(exceptions.LockedRoute):
        validators.routeMutation(route, ["total_income"])
    with pytest.raises(exceptions.LockedRoute):
        validators.routeMutation(route, ["is_locked", "notes"])


def test_locked_route_accepts_lock_toggle():
    route = Route(is_locked=True)
    assert validators.routeMutation(route, ["is_locked"])
    assert validators.routeMutation(route, [])


# Tokens
def test_expired_token_is_refused(session, worker):
    token = UserToken(
        user_id=worker.id,
        expires_in=60,
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    session.add(token)
    session.commit()

    with pytest.raises(exceptions.InvalidToken):
        validators.userToken(token.access_token, session)


def test_valid_token_resolves_its_user(session, worker):
    token = UserToken(
        user_id=worker.id,
        expires_in=3600,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    session.add(token)
    session.commit()

    found = validators.userToken(token.access_token, session)
    assert getters.tokenUser(found, session).id == worker.id


def test_unknown_token_is_refused(session):
    with pytest.raises(exceptions.InvalidToken):
        validators.userToken("missing", session)


def test_inactive_user_is_refused(session, worker):
    token = UserToken(
        user_id=worker.id,
        expires_in=3600,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    session.add(token)
    worker.is_active = False
    session.commit()

    with pytest.raises(exceptions.InactiveAccount):
        getters.tokenUser(token, session)

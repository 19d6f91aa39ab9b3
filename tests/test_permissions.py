import pytest

from fleetledger.src.enums import Action, Module, UserRole
from fleetledger.src.permissions import (
    MODULE_ACTIONS,
    ROLE_PERMISSIONS,
    isPermitted,
    permittedActions,
)


def test_every_module_declares_its_actions():
    assert set(MODULE_ACTIONS) == set(Module)


def test_admin_is_granted_every_declared_pair():
    for module, actions in MODULE_ACTIONS.items():
        for action in actions:
            assert isPermitted(UserRole.ADMIN, module, action)


def test_undeclared_pairs_are_refused_even_for_admin():
    assert not isPermitted(UserRole.ADMIN, Module.AUDIT, Action.DELETE)
    assert not isPermitted(UserRole.ADMIN, Module.ROUTES, Action.ACTIVATE)


def test_worker_permissions_stay_within_declared_pairs():
    declared = ROLE_PERMISSIONS[UserRole.ADMIN]
    assert ROLE_PERMISSIONS[UserRole.WORKER] <= declared


@pytest.mark.parametrize(
    "module, action",
    [
        (Module.DASHBOARD, Action.VIEW),
        (Module.ROUTES, Action.VIEW),
        (Module.ROUTES, Action.CREATE),
        (Module.EXPENSES, Action.CREATE),
        (Module.EXPENSE_CATEGORIES, Action.VIEW),
        (Module.PROFIT_SHARING, Action.VIEW),
    ],
)
def test_worker_is_granted(module, action):
    assert isPermitted(UserRole.WORKER, module, action)


@pytest.mark.parametrize(
    "module, action",
    [
        (Module.BUDGETS, Action.VIEW),
        (Module.ROUTES, Action.DELETE),
        (Module.ROUTES, Action.UPDATE),
        (Module.USERS, Action.CREATE),
        (Module.BUSES, Action.VIEW),
        (Module.AUDIT, Action.VIEW),
        (Module.INVOICES, Action.VIEW),
    ],
)
def test_worker_is_refused(module, action):
    assert not isPermitted(UserRole.WORKER, module, action)


def test_unknown_role_has_no_permission():
    assert permittedActions(99) == frozenset()
    assert not isPermitted(99, Module.DASHBOARD, Action.VIEW)


def test_plain_integer_role_is_accepted():
    assert isPermitted(int(UserRole.WORKER), Module.ROUTES, Action.CREATE)

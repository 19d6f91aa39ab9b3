"""
Role based permission table.

Each role maps to a closed set of `(Module, Action)` pairs. Lookups are
done on the enums themselves, a pair missing from the table is refused.
"""

from typing import Dict, FrozenSet, Tuple

from fleetledger.src.enums import Action, Module, UserRole


Permission = Tuple[Module, Action]

CRUD = (Action.VIEW, Action.CREATE, Action.UPDATE, Action.DELETE)

# Actions that exist for each module
MODULE_ACTIONS: Dict[Module, Tuple[Action, ...]] = {
    Module.DASHBOARD: (Action.VIEW,),
    Module.USERS: CRUD + (Action.ACTIVATE,),
    Module.BUSES: CRUD + (Action.ACTIVATE,),
    Module.ROUTES: CRUD,
    Module.EXPENSES: CRUD,
    Module.EXPENSE_CATEGORIES: CRUD + (Action.ACTIVATE,),
    Module.BUDGETS: CRUD,
    Module.BUDGET_ITEMS: CRUD,
    Module.PROFIT_SHARING: CRUD,
    Module.INVOICES: CRUD,
    Module.AUDIT: (Action.VIEW,),
}

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[Permission]] = {
    UserRole.ADMIN: frozenset(
        (module, action)
        for module, actions in MODULE_ACTIONS.items()
        for action in actions
    ),
    UserRole.WORKER: frozenset(
        {
            (Module.DASHBOARD, Action.VIEW),
            (Module.ROUTES, Action.VIEW),
            (Module.ROUTES, Action.CREATE),
            (Module.EXPENSES, Action.VIEW),
            (Module.EXPENSES, Action.CREATE),
            (Module.EXPENSE_CATEGORIES, Action.VIEW),
            (Module.PROFIT_SHARING, Action.VIEW),
        }
    ),
}


def permittedActions(role: int) -> FrozenSet[Permission]:
    """Every `(Module, Action)` pair granted to the role, empty for an unknown role."""
    try:
        return ROLE_PERMISSIONS[UserRole(role)]
    except ValueError:
        return frozenset()


def isPermitted(role: int, module: Module, action: Action) -> bool:
    return (module, action) in permittedActions(role)

from enum import IntEnum


class UserRole(IntEnum):
    ADMIN = 1
    WORKER = 2


class ShareRole(IntEnum):
    OWNER = 1
    DRIVER = 2
    PARTNER = 3


class BudgetStatus(IntEnum):
    ON_TRACK = 1
    NEAR_LIMIT = 2
    OVER_EXECUTED = 3


class Module(IntEnum):
    DASHBOARD = 1
    USERS = 2
    BUSES = 3
    ROUTES = 4
    EXPENSES = 5
    EXPENSE_CATEGORIES = 6
    BUDGETS = 7
    BUDGET_ITEMS = 8
    PROFIT_SHARING = 9
    INVOICES = 10
    AUDIT = 11


class Action(IntEnum):
    VIEW = 1
    CREATE = 2
    UPDATE = 3
    DELETE = 4
    ACTIVATE = 5

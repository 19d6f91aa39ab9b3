from fastapi import FastAPI
from fleetledger.api import (
    user_token,
    user_account,
    bus,
    route,
    expense_category,
    expense,
    invoice,
    budget,
    profit_sharing,
    audit_log,
)


# ------------------------------------------------------
# Dashboard app shared by administrators and workers,
# what each one may do is decided by the permission table
# ------------------------------------------------------
app_dashboard = FastAPI(title="Dashboard APP")


# ------------------------------------------------------
# Account routers
# ------------------------------------------------------
app_dashboard.include_router(user_token.route_dashboard)
app_dashboard.include_router(user_account.route_dashboard)


# ------------------------------------------------------
# Fleet and finance routers
# ------------------------------------------------------
app_dashboard.include_router(bus.route_dashboard)
app_dashboard.include_router(route.route_dashboard)
app_dashboard.include_router(expense_category.route_dashboard)
app_dashboard.include_router(expense.route_dashboard)
app_dashboard.include_router(invoice.route_dashboard)
app_dashboard.include_router(budget.route_dashboard)
app_dashboard.include_router(profit_sharing.route_dashboard)
app_dashboard.include_router(audit_log.route_dashboard)

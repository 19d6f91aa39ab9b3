"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application
for accessing the different resources of the fleet ledger.

These URLs are relative paths and are prefixed by the mount point of
the dashboard application when making requests.
"""

# -------------------------------
# Authentication & Accounts
# -------------------------------
URL_USER_TOKEN = "/account/token"
URL_USER_ACCOUNT = "/account"
URL_USER_ACTIVATE = "/account/activate"

# -------------------------------
# Fleet
# -------------------------------
URL_BUS = "/bus"
URL_BUS_ACTIVATE = "/bus/activate"
URL_BUS_STATS = "/bus/stats"
URL_ROUTE = "/route"
URL_ROUTE_STATS = "/route/stats"

# -------------------------------
# Expenses
# -------------------------------
URL_EXPENSE = "/expense"
URL_EXPENSE_STATS = "/expense/stats"
URL_EXPENSE_CATEGORY = "/expense/category"
URL_EXPENSE_CATEGORY_ACTIVATE = "/expense/category/activate"
URL_INVOICE = "/invoice"
URL_INVOICE_FILE = "/invoice/file"
URL_INVOICE_STATS = "/invoice/stats"

# -------------------------------
# Budgets
# -------------------------------
URL_BUDGET = "/budget"
URL_BUDGET_ITEM = "/budget/item"
URL_BUDGET_EXECUTION = "/budget/execution"
URL_BUDGET_STATS = "/budget/stats"

# -------------------------------
# Profit sharing
# -------------------------------
URL_PROFIT_SHARING_GROUP = "/profit_sharing/group"
URL_PROFIT_SHARING_MEMBER = "/profit_sharing/member"
URL_PROFIT_DISTRIBUTION = "/profit_sharing/group/distribution"

# -------------------------------
# Audit
# -------------------------------
URL_AUDIT_LOG = "/audit"
URL_AUDIT_STATS = "/audit/stats"

"""Finance Insights package.

Backend for a personal banking dashboard: syncs accounts and transactions
from Plaid, detects internal transfers between the user's own accounts and
serves the transaction feed and cashflow analytics.  See ``api.py`` and
``sync_service.py`` for entry points.
"""

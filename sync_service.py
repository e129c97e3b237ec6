"""
sync_service.py
---------------
Pull accounts and transactions from the aggregation provider, upsert them
and refresh the persisted transfer flags for the synced window.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

import pandas as pd
from sqlalchemy.orm import Session

import plaid_integration
from database import Account, Transaction
from queries import date_bounds
from transfers import TRANSFER_CLASSIFIER_WINDOW, classify_transfers

logger = logging.getLogger(__name__)

DEFAULT_MONTHS_BACK = 6
MAX_MONTHS_BACK = 24
MAX_RANGE_DAYS = 730
# Rows near the window edges may already exist under the same provider id.
EXISTING_LOOKUP_PADDING = timedelta(days=2)


def resolve_sync_window(
    months_back: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """
    Work out which dates to sync.

    Explicit dates win and must be supplied together; otherwise the window
    ends today (UTC) and reaches back ``months_back`` months.
    """
    if from_date is not None or to_date is not None:
        if from_date is None or to_date is None:
            raise ValueError("Both from_date and to_date must be supplied together.")
        if from_date > to_date:
            raise ValueError("from_date cannot be after to_date.")
        if (to_date - from_date).days > MAX_RANGE_DAYS:
            raise ValueError("The maximum sync range is 24 months.")
        return from_date, to_date

    if months_back is None:
        months_back = DEFAULT_MONTHS_BACK
    if months_back < 1 or months_back > MAX_MONTHS_BACK:
        raise ValueError(f"months_back must be between 1 and {MAX_MONTHS_BACK}.")

    end = today or datetime.utcnow().date()
    start = (pd.Timestamp(end) - pd.DateOffset(months=months_back)).date()
    return start, end


def _upsert_accounts(db: Session, accounts: list[dict], now: datetime) -> dict:
    existing = {a.external_id: a for a in db.query(Account).all()}
    for source in accounts:
        account = existing.get(source["id"])
        if account is None:
            account = Account(external_id=source["id"], created_at=now)
            db.add(account)
            existing[source["id"]] = account

        account.name = source.get("name") or ""
        account.institution_name = source.get("institution_name")
        account.account_number = source.get("account_number")
        account.current_balance = source.get("current_balance")
        account.currency = source.get("currency") or "NZD"
        account.updated_at = now
        account.last_synced_at = now

    db.commit()
    return existing


def run_sync(db: Session, from_date: date, to_date: date, source=plaid_integration) -> dict:
    """
    Sync one window and reclassify transfers inside it.

    ``source`` is anything exposing ``get_accounts()`` and
    ``get_transactions(account_id, start_date, end_date)``; the Plaid module by
    default.
    """
    now = datetime.utcnow()
    accounts = source.get_accounts()
    account_map = _upsert_accounts(db, accounts, now)

    lower, upper = date_bounds(from_date, to_date, EXISTING_LOOKUP_PADDING)
    existing = {
        t.external_id: t
        for t in db.query(Transaction)
        .filter(Transaction.transaction_date >= lower, Transaction.transaction_date <= upper)
        .all()
    }

    transactions_synced = 0
    for source_account in accounts:
        for row in source.get_transactions(source_account["id"], from_date, to_date):
            account = account_map.get(row.get("account_id"))
            if account is None:
                continue

            txn = existing.get(row["id"])
            if txn is None:
                txn = db.query(Transaction).filter(Transaction.external_id == row["id"]).first()
            if txn is None:
                txn = Transaction(external_id=row["id"], created_at=now, is_bank_transfer=False)
                db.add(txn)
            existing[row["id"]] = txn

            txn.account = account
            txn.amount = row["amount"]
            txn.description = row.get("description") or ""
            txn.merchant_name = row.get("merchant_name")
            txn.reference = row.get("reference")
            txn.transaction_type = row.get("transaction_type")
            txn.transaction_date = row["date"]
            txn.updated_at = now
            transactions_synced += 1

    db.commit()

    lower, upper = date_bounds(from_date, to_date, TRANSFER_CLASSIFIER_WINDOW)
    batch = (
        db.query(Transaction)
        .filter(Transaction.transaction_date >= lower, Transaction.transaction_date <= upper)
        .all()
    )
    classify_transfers(batch)
    db.commit()

    logger.info(
        "Sync completed. Accounts: %d, Transactions: %d, Window: %s -> %s",
        len(accounts),
        transactions_synced,
        from_date,
        to_date,
    )
    return {
        "accounts_synced": len(accounts),
        "transactions_synced": transactions_synced,
        "from_date": from_date,
        "to_date": to_date,
    }

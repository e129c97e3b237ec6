"""
analytics.py
------------
Cashflow aggregations for the dashboard. Internal transfers are left out of
every total so money moved between the user's own accounts is not counted as
income or spend.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

import pandas as pd
from sqlalchemy.orm import Session, joinedload

from database import Account, Transaction, TransactionAnnotation, TRANSACTION_TYPE
from queries import filter_transactions, find_read_time_transfer_ids

UNCLASSIFIED = "Unclassified"
COLUMNS = ["ID", "AccountID", "Date", "Amount", "IsBankTransfer", "CategoryID", "Category"]


def transactions_to_df(
    db: Session,
    category_type: str = TRANSACTION_TYPE,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_ids: Optional[List[int]] = None,
    excluded_account_ids: Optional[List[int]] = None,
    experimental_transfer_matching: bool = False,
) -> pd.DataFrame:
    """
    Loads the filtered transactions with their category for ``category_type``
    and drops transfers.
    """
    query = db.query(Transaction).options(
        joinedload(Transaction.annotation).joinedload(TransactionAnnotation.transaction_type_category),
        joinedload(Transaction.annotation).joinedload(TransactionAnnotation.spend_type_category),
    )
    txns = filter_transactions(query, from_date, to_date, account_ids, excluded_account_ids).all()
    if not txns:
        return pd.DataFrame(columns=COLUMNS)

    rows = []
    for t in txns:
        category = None
        if t.annotation is not None:
            category = (
                t.annotation.transaction_type_category
                if category_type == TRANSACTION_TYPE
                else t.annotation.spend_type_category
            )
        rows.append(
            {
                "ID": t.id,
                "AccountID": t.account_id,
                "Date": t.transaction_date,
                "Amount": float(t.amount or 0),
                "IsBankTransfer": bool(t.is_bank_transfer),
                "CategoryID": category.id if category else None,
                "Category": category.name if category else UNCLASSIFIED,
            }
        )

    df = pd.DataFrame(rows, columns=COLUMNS)
    df["Date"] = pd.to_datetime(df["Date"])
    df["CategoryID"] = df["CategoryID"].astype(object)

    if experimental_transfer_matching:
        transfer_ids = find_read_time_transfer_ids(db, from_date, to_date, account_ids, excluded_account_ids)
        df = df[~df["ID"].isin(transfer_ids)]
    else:
        df = df[~df["IsBankTransfer"]]
    return df


def _money_in_out(df: pd.DataFrame, keys: List[str]) -> pd.DataFrame:
    df = df.copy()
    df["MoneyIn"] = df["Amount"].where(df["Amount"] >= 0, 0.0).abs()
    df["MoneyOut"] = df["Amount"].where(df["Amount"] < 0, 0.0).abs()
    grouped = df.groupby(keys, dropna=False, sort=False)[["MoneyIn", "MoneyOut"]].sum().reset_index()
    grouped["Net"] = grouped["MoneyIn"] - grouped["MoneyOut"]
    return grouped


def _category_id(value) -> Optional[int]:
    return None if pd.isna(value) else int(value)


def category_cashflow(db: Session, category_type: str = TRANSACTION_TYPE, **filters) -> List[dict]:
    """Money in / out per category, largest absolute net first."""
    df = transactions_to_df(db, category_type, **filters)
    if df.empty:
        return []

    grouped = _money_in_out(df, ["CategoryID", "Category"])
    grouped["AbsNet"] = grouped["Net"].abs()
    grouped = grouped.sort_values("AbsNet", ascending=False, kind="stable")

    return [
        {
            "category_id": _category_id(row["CategoryID"]),
            "category_name": row["Category"],
            "category_type": category_type,
            "money_in": round(float(row["MoneyIn"]), 2),
            "money_out": round(float(row["MoneyOut"]), 2),
            "net": round(float(row["Net"]), 2),
        }
        for _, row in grouped.iterrows()
    ]


def monthly_overview(db: Session, category_type: str = TRANSACTION_TYPE, **filters) -> List[dict]:
    """Money in / out per calendar month and category."""
    df = transactions_to_df(db, category_type, **filters)
    if df.empty:
        return []

    df = df.copy()
    df["Year"] = df["Date"].dt.year
    df["Month"] = df["Date"].dt.month
    grouped = _money_in_out(df, ["Year", "Month", "CategoryID", "Category"])
    grouped = grouped.sort_values(["Year", "Month", "Category"], kind="stable")

    return [
        {
            "year": int(row["Year"]),
            "month": int(row["Month"]),
            "category_id": _category_id(row["CategoryID"]),
            "category_name": row["Category"],
            "category_type": category_type,
            "money_in": round(float(row["MoneyIn"]), 2),
            "money_out": round(float(row["MoneyOut"]), 2),
        }
        for _, row in grouped.iterrows()
    ]


def account_balances(
    db: Session,
    account_ids: Optional[List[int]] = None,
    excluded_account_ids: Optional[List[int]] = None,
) -> List[dict]:
    query = db.query(Account)
    if account_ids:
        query = query.filter(Account.id.in_(account_ids))
    if excluded_account_ids:
        query = query.filter(Account.id.notin_(excluded_account_ids))

    return [
        {
            "account_id": a.id,
            "account_name": a.name,
            "account_number": a.account_number,
            "current_balance": float(a.current_balance) if a.current_balance is not None else None,
            "currency": a.currency,
        }
        for a in query.order_by(Account.name).all()
    ]

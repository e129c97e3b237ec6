import csv
import os
from typing import Optional

import pandas as pd
from sqlalchemy.orm import Session, joinedload

from database import Transaction, TransactionAnnotation

EXPORT_TIMEZONE = os.getenv("EXPORT_TIMEZONE", "Pacific/Auckland")

EXPORT_COLUMNS = [
    "transaction_date_utc",
    "transaction_date_local",
    "amount",
    "direction",
    "is_bank_transfer",
    "account_name",
    "institution_name",
    "account_number_masked",
    "description",
    "merchant_name",
    "reference",
    "transaction_type_raw",
    "transaction_type_category",
    "spend_type_category",
    "note",
]


def mask_account_number(account_number: Optional[str]) -> Optional[str]:
    """
    Replaces every digit but the last four with ``*``, keeping separators.
    """
    if not account_number or not account_number.strip():
        return None

    digit_count = sum(ch.isdigit() for ch in account_number)
    if digit_count <= 4:
        return account_number

    to_mask = digit_count - 4
    masked = []
    for ch in account_number:
        if ch.isdigit() and to_mask > 0:
            masked.append("*")
            to_mask -= 1
        else:
            masked.append(ch)
    return "".join(masked)


def _category_name(annotation, attr: str) -> Optional[str]:
    if annotation is None:
        return None
    category = getattr(annotation, attr)
    return category.name if category else None


def export_transactions_csv(db: Session, timezone: str = EXPORT_TIMEZONE) -> str:
    """
    Builds a CSV of every transaction, newest first, with all fields quoted.
    """
    txns = (
        db.query(Transaction)
        .options(
            joinedload(Transaction.account),
            joinedload(Transaction.annotation).joinedload(TransactionAnnotation.transaction_type_category),
            joinedload(Transaction.annotation).joinedload(TransactionAnnotation.spend_type_category),
        )
        .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
        .all()
    )

    df = pd.DataFrame(
        [
            {
                "utc": t.transaction_date,
                "amount": str(t.amount),
                "direction": t.direction,
                "is_bank_transfer": "true" if t.is_bank_transfer else "false",
                "account_name": t.account.name if t.account else None,
                "institution_name": t.account.institution_name if t.account else None,
                "account_number_masked": mask_account_number(t.account.account_number) if t.account else None,
                "description": t.description,
                "merchant_name": t.merchant_name,
                "reference": t.reference,
                "transaction_type_raw": t.transaction_type,
                "transaction_type_category": _category_name(t.annotation, "transaction_type_category"),
                "spend_type_category": _category_name(t.annotation, "spend_type_category"),
                "note": t.annotation.note if t.annotation else None,
            }
            for t in txns
        ],
        columns=["utc"] + EXPORT_COLUMNS[2:],
    )

    utc = pd.to_datetime(df["utc"]).dt.tz_localize("UTC")
    df.insert(0, "transaction_date_local", utc.dt.tz_convert(timezone).dt.strftime("%Y-%m-%d %H:%M:%S"))
    df.insert(0, "transaction_date_utc", utc.dt.strftime("%Y-%m-%d %H:%M:%SZ"))
    df = df.drop(columns=["utc"])

    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, na_rep="")

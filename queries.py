"""
queries.py
----------
Read-side helpers shared by the transaction feed, analytics and export:
filtering, read-time transfer detection and annotations.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Query, Session, joinedload

from database import Category, Transaction, TransactionAnnotation, TRANSACTION_TYPE, SPEND_TYPE
from transfers import TRANSFER_MATCH_WINDOW, TransferMatchCandidate, find_matched_transfer_ids

FEED_LIMIT = 5000


class TransactionNotFound(LookupError):
    pass


def parse_id_list(csv: Optional[str]) -> List[int]:
    """Parse ``"3, 5,x,3"`` into ``[3, 5]``; unparseable entries are ignored."""
    if not csv or not csv.strip():
        return []

    ids: List[int] = []
    for value in csv.split(","):
        value = value.strip()
        if not value.isdigit():
            continue
        parsed = int(value)
        if parsed not in ids:
            ids.append(parsed)
    return ids


def date_bounds(
    from_date: Optional[date],
    to_date: Optional[date],
    padding: timedelta = timedelta(0),
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive datetime bounds covering whole days, widened by ``padding``."""
    lower = datetime.combine(from_date, time.min) - padding if from_date else None
    upper = datetime.combine(to_date, time.max) + padding if to_date else None
    return lower, upper


def filter_transactions(
    query: Query,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_ids: Optional[List[int]] = None,
    excluded_account_ids: Optional[List[int]] = None,
    padding: timedelta = timedelta(0),
) -> Query:
    lower, upper = date_bounds(from_date, to_date, padding)
    if lower is not None:
        query = query.filter(Transaction.transaction_date >= lower)
    if upper is not None:
        query = query.filter(Transaction.transaction_date <= upper)
    if account_ids:
        query = query.filter(Transaction.account_id.in_(account_ids))
    if excluded_account_ids:
        query = query.filter(Transaction.account_id.notin_(excluded_account_ids))
    return query


def load_transfer_candidates(
    db: Session,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_ids: Optional[List[int]] = None,
    excluded_account_ids: Optional[List[int]] = None,
) -> List[TransferMatchCandidate]:
    """
    Candidates for the read-time matcher.

    The range is padded by the matching window on both sides so a transfer
    whose counterpart falls just outside the visible range is still found.
    """
    query = db.query(
        Transaction.id,
        Transaction.account_id,
        Transaction.amount,
        Transaction.transaction_date,
    )
    query = filter_transactions(
        query, from_date, to_date, account_ids, excluded_account_ids, padding=TRANSFER_MATCH_WINDOW
    )
    return [
        TransferMatchCandidate(id=row.id, account_id=row.account_id, amount=row.amount, timestamp=row.transaction_date)
        for row in query.all()
    ]


def find_read_time_transfer_ids(
    db: Session,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_ids: Optional[List[int]] = None,
    excluded_account_ids: Optional[List[int]] = None,
) -> set:
    candidates = load_transfer_candidates(db, from_date, to_date, account_ids, excluded_account_ids)
    return find_matched_transfer_ids(candidates)


def get_transaction_feed(
    db: Session,
    account_ids: Optional[List[int]] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    include_bank_transfers: bool = True,
    direction: str = "all",
    transaction_type_category_ids: Optional[List[int]] = None,
    spend_type_category_ids: Optional[List[int]] = None,
    experimental_transfer_matching: bool = False,
) -> List[tuple[Transaction, bool]]:
    """
    Returns ``(transaction, is_bank_transfer)`` pairs, newest first.

    With ``experimental_transfer_matching`` the transfer flag is recomputed
    from a padded candidate window instead of read from storage.
    """
    query = db.query(Transaction).options(
        joinedload(Transaction.account),
        joinedload(Transaction.annotation).joinedload(TransactionAnnotation.transaction_type_category),
        joinedload(Transaction.annotation).joinedload(TransactionAnnotation.spend_type_category),
    )
    query = filter_transactions(query, from_date, to_date, account_ids)

    direction = (direction or "all").strip().lower()
    if direction == "in":
        query = query.filter(Transaction.amount >= 0)
    elif direction == "out":
        query = query.filter(Transaction.amount < 0)

    if transaction_type_category_ids:
        query = query.filter(
            Transaction.annotation.has(
                TransactionAnnotation.transaction_type_category_id.in_(transaction_type_category_ids)
            )
        )
    if spend_type_category_ids:
        query = query.filter(
            Transaction.annotation.has(TransactionAnnotation.spend_type_category_id.in_(spend_type_category_ids))
        )

    matched: set = set()
    if experimental_transfer_matching:
        matched = find_read_time_transfer_ids(db, from_date, to_date, account_ids)
        if not include_bank_transfers and matched:
            query = query.filter(Transaction.id.notin_(matched))
    elif not include_bank_transfers:
        query = query.filter(Transaction.is_bank_transfer.is_(False))

    transactions = (
        query.order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
        .limit(FEED_LIMIT)
        .all()
    )

    if experimental_transfer_matching:
        return [(t, t.id in matched) for t in transactions]
    return [(t, bool(t.is_bank_transfer)) for t in transactions]


def update_annotation(
    db: Session,
    transaction_id: int,
    transaction_type_category_id: Optional[int] = None,
    spend_type_category_id: Optional[int] = None,
    note: Optional[str] = None,
) -> TransactionAnnotation:
    """Creates or replaces the annotation of a transaction."""
    transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if transaction is None:
        raise TransactionNotFound(f"Transaction {transaction_id} not found.")

    if transaction_type_category_id is not None and not _category_exists(
        db, transaction_type_category_id, TRANSACTION_TYPE
    ):
        raise ValueError("Invalid Transaction Type category.")
    if spend_type_category_id is not None and not _category_exists(db, spend_type_category_id, SPEND_TYPE):
        raise ValueError("Invalid Type of spend category.")

    now = datetime.utcnow()
    annotation = transaction.annotation
    if annotation is None:
        annotation = TransactionAnnotation(transaction_id=transaction.id, created_at=now)
        transaction.annotation = annotation
        db.add(annotation)

    annotation.transaction_type_category_id = transaction_type_category_id
    annotation.spend_type_category_id = spend_type_category_id
    annotation.note = note.strip() if note and note.strip() else None
    annotation.updated_at = now
    db.commit()
    return annotation


def _category_exists(db: Session, category_id: int, category_type: str) -> bool:
    return (
        db.query(Category.id)
        .filter(Category.id == category_id, Category.category_type == category_type)
        .first()
        is not None
    )

"""
transfers.py
------------

Detect internal transfers between the user's own accounts.

Two related algorithms live here:

``find_matched_transfer_ids``
    The read-time matcher.  Given lightweight candidates it returns the ids
    that form at least one transfer pair.  Nothing is stored; callers use the
    result to filter or tag a response.

``classify_transfers``
    The sync-time classifier.  It flags ORM ``Transaction`` rows in place by
    keyword and by a stricter pairing rule, and the caller commits the
    session afterwards.

Both share the same pairing search: bucket by absolute amount, sort each
bucket by time, and only compare rows that are close enough in time.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Hashable, Iterable, Iterator, Sequence

logger = logging.getLogger(__name__)

# Read-time matching searches a wider band than the sync-time classifier.
TRANSFER_MATCH_WINDOW = timedelta(days=4)
TRANSFER_CLASSIFIER_WINDOW = timedelta(days=1)

# Heuristic tuning, not derived from data.
TRANSFER_KEYWORDS = (
    "transfer",
    "xfer",
    "between accounts",
    "internal transfer",
    "payment to",
)
TOKEN_OVERLAP_THRESHOLD = 0.45
MIN_TOKEN_LENGTH = 3

_TOKEN_SPLIT = re.compile(r"[ \-/\\.,]+")


@dataclass(frozen=True)
class TransferMatchCandidate:
    """Minimal projection of a transaction needed for pairing."""

    id: Hashable
    account_id: Hashable
    amount: Decimal | float
    timestamp: datetime


def _pairs_within_window(
    items: Iterable[Any],
    window: timedelta,
    amount_of: Callable[[Any], Any],
    timestamp_of: Callable[[Any], datetime],
    sort_key: Callable[[Any], Any],
) -> Iterator[tuple[Any, Any]]:
    """Yield (earlier, later) pairs with equal absolute amount inside ``window``."""
    groups: dict[Any, list] = defaultdict(list)
    for item in items:
        groups[abs(amount_of(item))].append(item)

    for group in groups.values():
        if len(group) < 2:
            continue

        ordered = sorted(group, key=sort_key)
        for index, left in enumerate(ordered):
            for right in ordered[index + 1:]:
                # Sorted by time, so everything after this is further away.
                if timestamp_of(right) - timestamp_of(left) > window:
                    break
                yield left, right


def _has_opposite_signs(left, right) -> bool:
    if left == 0 or right == 0:
        return False
    return (left > 0) != (right > 0)


def find_matched_transfer_ids(
    candidates: Iterable[TransferMatchCandidate],
    window: timedelta = TRANSFER_MATCH_WINDOW,
) -> set:
    """Return the ids of every candidate that takes part in a transfer pair.

    A pair matches when the two candidates sit on different accounts, carry
    equal absolute amounts with strictly opposite signs, and are at most
    ``window`` apart (inclusive).  A candidate may match more than one
    counterpart; no exclusivity is enforced.
    """
    matched: set = set()
    pairs = _pairs_within_window(
        candidates,
        window,
        amount_of=lambda c: c.amount,
        timestamp_of=lambda c: c.timestamp,
        sort_key=lambda c: (c.timestamp, c.id),
    )
    for left, right in pairs:
        if left.account_id == right.account_id:
            continue
        if not _has_opposite_signs(left.amount, right.amount):
            continue
        matched.add(left.id)
        matched.add(right.id)

    logger.debug("Read-time transfer matching flagged %d candidates", len(matched))
    return matched


def contains_transfer_keyword(description: str | None, keywords: Sequence[str] = TRANSFER_KEYWORDS) -> bool:
    if not description or not description.strip():
        return False
    normalized = description.strip().lower()
    return any(keyword in normalized for keyword in keywords)


def tokenize(description: str | None) -> set[str]:
    """Lowercase word set used for description overlap; short tokens are dropped."""
    if not description:
        return set()
    tokens = (token.strip() for token in _TOKEN_SPLIT.split(description.lower()))
    return {token for token in tokens if len(token) >= MIN_TOKEN_LENGTH}


def token_overlap(left: str | None, right: str | None) -> float:
    """Jaccard similarity of the two descriptions' token sets."""
    left_tokens = tokenize(left)
    right_tokens = tokenize(right)
    if not left_tokens or not right_tokens:
        return 0.0
    union = left_tokens | right_tokens
    return len(left_tokens & right_tokens) / len(union)


def classify_transfers(
    transactions: Sequence[Any],
    window: timedelta = TRANSFER_CLASSIFIER_WINDOW,
    keywords: Sequence[str] = TRANSFER_KEYWORDS,
    overlap_threshold: float = TOKEN_OVERLAP_THRESHOLD,
) -> None:
    """Set ``is_bank_transfer`` on each transaction in place.

    The caller owns the batch and persists the flags afterwards.  A flag that
    is already true is never cleared here, so callers wanting a clean
    reclassification must reset the flags first.

    Args:
        transactions: Objects exposing ``id``, ``account_id``, ``amount``,
            ``description``, ``transaction_date`` and ``is_bank_transfer``
            (normally ``database.Transaction`` rows).
        window: Maximum time gap for the pairing pass.
        keywords: Phrases that mark a description as a transfer.
        overlap_threshold: Token overlap a pair must exceed when neither
            side carries a keyword.
    """
    has_keyword: dict[int, bool] = {}
    for txn in transactions:
        flagged = contains_transfer_keyword(txn.description, keywords)
        has_keyword[id(txn)] = flagged
        txn.is_bank_transfer = bool(txn.is_bank_transfer) or flagged

    pairs = _pairs_within_window(
        transactions,
        window,
        amount_of=lambda t: t.amount,
        timestamp_of=lambda t: t.transaction_date,
        sort_key=lambda t: (t.transaction_date, t.id if t.id is not None else 0),
    )
    paired = 0
    for left, right in pairs:
        if left.account_id == right.account_id:
            continue
        if not _has_opposite_signs(left.amount, right.amount):
            continue
        if not (
            has_keyword[id(left)]
            or has_keyword[id(right)]
            or token_overlap(left.description, right.description) > overlap_threshold
        ):
            continue
        left.is_bank_transfer = True
        right.is_bank_transfer = True
        paired += 1

    logger.debug(
        "Classified %d transactions: %d keyword hits, %d transfer pairs",
        len(transactions),
        sum(has_keyword.values()),
        paired,
    )

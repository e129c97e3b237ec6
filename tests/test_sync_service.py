"""
Sync window and sync orchestration
==================================

Usage:
    pytest tests/test_sync_service.py -v
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

import api
from database import Account, Transaction
from plaid_integration import normalize_transaction
from sync_service import resolve_sync_window, run_sync


class FakeSource:
    """Stands in for the Plaid module."""

    def __init__(self, accounts, transactions):
        self.accounts = accounts
        self.transactions = transactions
        self.requests = []

    def get_accounts(self):
        return self.accounts

    def get_transactions(self, account_id, start_date, end_date):
        self.requests.append((account_id, start_date, end_date))
        return [t for t in self.transactions if t["account_id"] == account_id]


def source_txn(id, account_id, amount, description, when):
    return {
        "id": id,
        "account_id": account_id,
        "amount": Decimal(amount),
        "description": description,
        "merchant_name": None,
        "reference": None,
        "transaction_type": "online",
        "date": when,
    }


ACCOUNTS = [
    {"id": "plaid-acc-1", "name": "Everyday", "institution_name": "ANZ", "account_number": "1234",
     "current_balance": Decimal("1500.00"), "currency": "NZD"},
    {"id": "plaid-acc-2", "name": "Savings", "institution_name": "ANZ", "account_number": "5678",
     "current_balance": Decimal("9000.00"), "currency": "NZD"},
]


def fake_source():
    return FakeSource(ACCOUNTS, [
        source_txn("t1", "plaid-acc-1", "-300.00", "J Smith Savings Account", datetime(2025, 3, 10)),
        source_txn("t2", "plaid-acc-2", "300.00", "J Smith Savings", datetime(2025, 3, 10)),
        source_txn("t3", "plaid-acc-1", "-48.20", "Countdown Ponsonby", datetime(2025, 3, 11)),
        source_txn("t4", "plaid-acc-1", "-20.00", "Online transfer fee", datetime(2025, 3, 12)),
        source_txn("t5", "plaid-acc-9", "-5.00", "Unknown account", datetime(2025, 3, 12)),
    ])


class TestResolveSyncWindow:

    def test_uses_months_back_when_provided(self):
        start, end = resolve_sync_window(months_back=3, today=date(2025, 5, 15))

        assert end == date(2025, 5, 15)
        assert start == date(2025, 2, 15)

    def test_defaults_to_six_months(self):
        start, end = resolve_sync_window(today=date(2025, 8, 31))

        assert (start, end) == (date(2025, 2, 28), date(2025, 8, 31))

    def test_explicit_dates_win(self):
        assert resolve_sync_window(months_back=2, from_date=date(2025, 1, 1), to_date=date(2025, 1, 31)) == (
            date(2025, 1, 1),
            date(2025, 1, 31),
        )

    def test_requires_both_dates(self):
        with pytest.raises(ValueError, match="from_date.*to_date"):
            resolve_sync_window(from_date=date(2025, 1, 1))

    def test_rejects_reversed_dates(self):
        with pytest.raises(ValueError, match="cannot be after"):
            resolve_sync_window(from_date=date(2025, 2, 1), to_date=date(2025, 1, 1))

    def test_rejects_ranges_over_24_months(self):
        with pytest.raises(ValueError, match="24 months"):
            resolve_sync_window(from_date=date(2022, 1, 1), to_date=date(2025, 1, 1))

    @pytest.mark.parametrize("months_back", [0, 25])
    def test_rejects_months_back_out_of_range(self, months_back):
        with pytest.raises(ValueError, match="months_back"):
            resolve_sync_window(months_back=months_back)


class TestRunSync:

    def test_upserts_accounts_and_transactions(self, db):
        source = fake_source()

        result = run_sync(db, date(2025, 3, 1), date(2025, 3, 31), source=source)

        assert result["accounts_synced"] == 2
        assert result["transactions_synced"] == 4
        assert {a.external_id for a in db.query(Account).all()} == {"plaid-acc-1", "plaid-acc-2"}
        assert db.query(Transaction).count() == 4
        assert source.requests[0] == ("plaid-acc-1", date(2025, 3, 1), date(2025, 3, 31))

        savings = db.query(Account).filter(Account.external_id == "plaid-acc-2").one()
        assert savings.current_balance == Decimal("9000.00")
        assert savings.last_synced_at is not None

    def test_classifies_transfers_after_upsert(self, db):
        run_sync(db, date(2025, 3, 1), date(2025, 3, 31), source=fake_source())

        flags = {t.external_id: t.is_bank_transfer for t in db.query(Transaction).all()}
        # t1/t2 pair on token overlap, t4 on keyword
        assert flags == {"t1": True, "t2": True, "t3": False, "t4": True}

    def test_resync_updates_rows_in_place(self, db):
        run_sync(db, date(2025, 3, 1), date(2025, 3, 31), source=fake_source())

        changed = fake_source()
        changed.transactions[2]["description"] = "Countdown Grey Lynn"
        result = run_sync(db, date(2025, 3, 1), date(2025, 3, 31), source=changed)

        assert result["transactions_synced"] == 4
        assert db.query(Transaction).count() == 4
        assert db.query(Account).count() == 2
        t3 = db.query(Transaction).filter(Transaction.external_id == "t3").one()
        assert t3.description == "Countdown Grey Lynn"


class TestSyncEndpoint:

    def test_sync_endpoint_runs_against_source(self, client, monkeypatch):
        monkeypatch.setattr(api, "sync_source", fake_source())

        response = client.post("/api/sync", json={"from_date": "2025-03-01", "to_date": "2025-03-31"})

        assert response.status_code == 200
        body = response.json()
        assert body["accounts_synced"] == 2
        assert body["transactions_synced"] == 4
        assert body["from_date"] == "2025-03-01"

    def test_sync_endpoint_rejects_half_window(self, client, monkeypatch):
        monkeypatch.setattr(api, "sync_source", fake_source())

        response = client.post("/api/sync", json={"from_date": "2025-03-01"})

        assert response.status_code == 400
        assert "from_date" in response.json()["error"]


class TestNormalizeTransaction:

    def test_flips_plaid_sign_and_prefers_original_description(self):
        row = normalize_transaction({
            "transaction_id": "abc",
            "account_id": "acc",
            "amount": 12.5,
            "name": "COUNTDOWN",
            "original_description": "COUNTDOWN PONSONBY 1234",
            "date": date(2025, 3, 10),
            "payment_channel": "in store",
        })

        assert row["amount"] == Decimal("-12.50")
        assert row["description"] == "COUNTDOWN PONSONBY 1234"
        assert row["date"] == datetime(2025, 3, 10)
        assert row["transaction_type"] == "in store"

    def test_inflow_becomes_positive(self):
        row = normalize_transaction({"transaction_id": "x", "account_id": "acc", "amount": -300, "name": "Pay",
                                     "date": "2025-03-10"})

        assert row["amount"] == Decimal("300.00")
        assert row["date"] == datetime(2025, 3, 10)

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api import app
from database import Account, Base, Transaction, get_db


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def add_account(db):
    def _add(external_id: str, name: str = None, **kwargs) -> Account:
        account = Account(external_id=external_id, name=name or external_id, **kwargs)
        db.add(account)
        db.commit()
        return account

    return _add


@pytest.fixture
def add_transaction(db):
    def _add(
        external_id: str,
        account: Account,
        amount: str,
        description: str,
        when: datetime,
        is_bank_transfer: bool = False,
    ) -> Transaction:
        txn = Transaction(
            external_id=external_id,
            account_id=account.id,
            amount=Decimal(amount),
            description=description,
            transaction_date=when,
            is_bank_transfer=is_bank_transfer,
        )
        db.add(txn)
        db.commit()
        return txn

    return _add

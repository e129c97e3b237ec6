import os
from datetime import datetime
from sqlalchemy import create_engine, Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import sessionmaker, declarative_base, relationship
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database Setup
# Default to local SQLite, but allow override for Postgres
DB_URL = os.getenv("DATABASE_URL", "sqlite:///finance_insights.db")

engine = create_engine(DB_URL, connect_args={"check_same_thread": False} if "sqlite" in DB_URL else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Category types
TRANSACTION_TYPE = "TransactionType"
SPEND_TYPE = "SpendType"
CATEGORY_TYPES = (TRANSACTION_TYPE, SPEND_TYPE)

# --- Models ---

class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, index=True)  # aggregation provider account id
    name = Column(String, default="")
    institution_name = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    current_balance = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, default="NZD")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    last_synced_at = Column(DateTime, nullable=True)

    transactions = relationship("Transaction", back_populates="account")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, index=True)  # aggregation provider transaction id
    account_id = Column(Integer, ForeignKey("accounts.id"), index=True)
    amount = Column(Numeric(12, 2))                # positive = money in
    description = Column(String, default="")
    merchant_name = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    transaction_type = Column(String, nullable=True)  # raw provider type
    transaction_date = Column(DateTime, index=True)   # naive UTC

    # Cached heuristic, written by transfers.classify_transfers at sync time
    is_bank_transfer = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("Account", back_populates="transactions")
    annotation = relationship("TransactionAnnotation", back_populates="transaction", uselist=False)

    @property
    def direction(self) -> str:
        return "In" if (self.amount or 0) >= 0 else "Out"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    category_type = Column(String, index=True)  # 'TransactionType' or 'SpendType'
    name = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


class TransactionAnnotation(Base):
    __tablename__ = "transaction_annotations"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), unique=True)
    transaction_type_category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    spend_type_category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    note = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    transaction = relationship("Transaction", back_populates="annotation")
    transaction_type_category = relationship("Category", foreign_keys=[transaction_type_category_id])
    spend_type_category = relationship("Category", foreign_keys=[spend_type_category_id])

# --- Init DB ---
def init_db():
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

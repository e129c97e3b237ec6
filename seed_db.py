from datetime import datetime, timedelta
from decimal import Decimal

from database import init_db, SessionLocal, Account, Category, Transaction, TransactionAnnotation, TRANSACTION_TYPE, SPEND_TYPE
from transfers import classify_transfers

def seed_demo_data(db):
    """Adds two accounts, a few categories and a month of sample activity."""
    now = datetime.utcnow().replace(microsecond=0)

    daily = Account(external_id="acc_demo_1", name="Daily Account", institution_name="ANZ New Zealand",
                    account_number="01-0123-0456789-00", current_balance=Decimal("2450.10"), last_synced_at=now)
    savings = Account(external_id="acc_demo_2", name="Savings Account", institution_name="ASB Bank",
                      account_number="12-3456-7890123-50", current_balance=Decimal("9800.00"), last_synced_at=now)
    db.add_all([daily, savings])

    salary = Category(category_type=TRANSACTION_TYPE, name="Salary")
    groceries = Category(category_type=TRANSACTION_TYPE, name="Groceries")
    unavoidable = Category(category_type=SPEND_TYPE, name="Unavoidable")
    leisure = Category(category_type=SPEND_TYPE, name="Leisure")
    db.add_all([salary, groceries, unavoidable, leisure])
    db.flush()

    rows = [
        ("txn_demo_1", daily, "3500.00", "Monthly salary", now - timedelta(days=20)),
        ("txn_demo_2", daily, "-142.35", "Countdown groceries", now - timedelta(days=15)),
        ("txn_demo_3", daily, "-500.00", "Transfer to savings", now - timedelta(days=10)),
        ("txn_demo_4", savings, "500.00", "Transfer from daily", now - timedelta(days=10)),
        ("txn_demo_5", daily, "-64.90", "Cinema and dinner", now - timedelta(days=4)),
    ]
    transactions = []
    for external_id, account, amount, description, when in rows:
        txn = Transaction(external_id=external_id, account=account, amount=Decimal(amount),
                          description=description, transaction_date=when, is_bank_transfer=False)
        transactions.append(txn)
    db.add_all(transactions)
    db.flush()

    db.add_all([
        TransactionAnnotation(transaction_id=transactions[0].id, transaction_type_category_id=salary.id),
        TransactionAnnotation(transaction_id=transactions[1].id, transaction_type_category_id=groceries.id,
                              spend_type_category_id=unavoidable.id),
        TransactionAnnotation(transaction_id=transactions[4].id, spend_type_category_id=leisure.id,
                              note="Birthday"),
    ])

    classify_transfers(transactions)
    db.commit()
    return transactions

def seed():
    init_db()
    db = SessionLocal()

    # Check if data exists
    if db.query(Account).first():
        print("Accounts already exist. Skipping seed.")
        db.close()
        return

    transactions = seed_demo_data(db)
    print(f"Database initialized with {len(transactions)} demo transactions.")
    db.close()

if __name__ == "__main__":
    seed()

from database import engine, Base

def migrate_db():
    print("Migrating database...")
    # Creates any missing tables (accounts, transactions, categories, annotations)
    Base.metadata.create_all(bind=engine)
    print("Migration complete!")

if __name__ == "__main__":
    migrate_db()

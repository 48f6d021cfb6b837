from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from pharmastock.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _migrate_add_columns(bind=None):
    """Add missing columns to existing tables (works for both SQLite and PostgreSQL)."""
    bind = bind or engine
    inspector = inspect(bind)
    tables = inspector.get_table_names()

    if "orders" in tables:
        existing = {col["name"] for col in inspector.get_columns("orders")}
        new_cols = {
            "po_approved": "BOOLEAN DEFAULT FALSE",
            "po_rejected": "BOOLEAN DEFAULT FALSE",
            "po_handling_charges": "FLOAT DEFAULT 0.0",
            "po_fred_charges": "FLOAT DEFAULT 0.0",
            "paid_amount": "FLOAT DEFAULT 0.0",
            "payment_status": "VARCHAR DEFAULT 'unpaid'",
        }
        with bind.begin() as conn:
            for col_name, col_type in new_cols.items():
                if col_name not in existing:
                    conn.execute(text(f"ALTER TABLE orders ADD COLUMN {col_name} {col_type}"))

    if "order_item_sizes" in tables:
        existing = {col["name"] for col in inspector.get_columns("order_item_sizes")}
        new_cols = {
            "batch_number": "VARCHAR DEFAULT ''",
            "lot_number": "VARCHAR DEFAULT ''",
            "expiry_date": "DATE DEFAULT NULL",
            "batch_id": "VARCHAR DEFAULT ''",
        }
        with bind.begin() as conn:
            for col_name, col_type in new_cols.items():
                if col_name not in existing:
                    conn.execute(text(f"ALTER TABLE order_item_sizes ADD COLUMN {col_name} {col_type}"))

    if "product_sizes" in tables:
        existing = {col["name"] for col in inspector.get_columns("product_sizes")}
        if "cost_price" not in existing:
            with bind.begin() as conn:
                conn.execute(text("ALTER TABLE product_sizes ADD COLUMN cost_price FLOAT DEFAULT NULL"))

    if "product_batches" in tables:
        existing = {col["name"] for col in inspector.get_columns("product_batches")}
        new_cols = {
            "size_id": "VARCHAR DEFAULT NULL",
            "supplier_id": "VARCHAR DEFAULT NULL",
        }
        with bind.begin() as conn:
            for col_name, col_type in new_cols.items():
                if col_name not in existing:
                    conn.execute(text(f"ALTER TABLE product_batches ADD COLUMN {col_name} {col_type}"))


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import pharmastock.models.batch  # noqa: F401
    import pharmastock.models.inventory_log  # noqa: F401
    import pharmastock.models.order  # noqa: F401
    import pharmastock.models.product  # noqa: F401
    import pharmastock.models.user  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _migrate_add_columns(bind)

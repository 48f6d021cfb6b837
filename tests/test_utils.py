"""
Test utilities and factories for creating test data
"""
import random
import string
from datetime import date, timedelta

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pharmastock.database import Base, get_db, init_db
from pharmastock.main import app
from pharmastock.models.user import UserRole
from pharmastock.schemas.batch import BatchCreate
from pharmastock.schemas.order import OrderCreate, OrderItemCreate, OrderItemSizeCreate
from pharmastock.schemas.product import ProductCreate, SizeCreate
from pharmastock.services import auth_service, batch_service, order_service, product_service


def make_session_factory():
    """Fresh in-memory database shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def in_days(days: int) -> date:
    return date.today() + timedelta(days=days)


class TestDataFactory:
    """Factory class for creating test data"""

    __test__ = False

    @staticmethod
    def random_string(length=6):
        return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))

    @staticmethod
    def create_user(db, username=None, password="testpass123", role=UserRole.ADMIN.value):
        username = username or f"user_{TestDataFactory.random_string()}".lower()
        return auth_service.create_user(db, username, password, role=role)

    @staticmethod
    def create_product(db, sku=None, batch_tracked=True, price=10.0, cost_price=None, stock=0, sizes=1):
        """Create a product with ``sizes`` sizes; returns the product."""
        sku = sku or f"SKU-{TestDataFactory.random_string()}"
        return product_service.create_product(db, ProductCreate(
            sku=sku,
            name=f"Product {sku}",
            category="Analgesics",
            batch_tracked=batch_tracked,
            sizes=[
                SizeCreate(
                    sku=f"{sku}-{i}",
                    size_value=str(100 * (i + 1)),
                    size_unit="tablets",
                    price=price,
                    cost_price=cost_price,
                    stock=stock,
                )
                for i in range(sizes)
            ],
        ))

    @staticmethod
    def create_batch(db, product, quantity=10, expiry_date=None, batch_number="", size=None, cost_per_unit=None):
        size = size or (product.sizes[0] if product.sizes else None)
        return batch_service.create_batch(db, BatchCreate(
            product_id=product.id,
            size_id=size.id if size else None,
            batch_number=batch_number,
            lot_number=f"LOT-{TestDataFactory.random_string(4)}",
            expiry_date=expiry_date or in_days(365),
            quantity=quantity,
            cost_per_unit=cost_per_unit,
        ), created_by="tester")

    @staticmethod
    def create_sale_order(db, product, quantity, size=None, price=None):
        size = size or product.sizes[0]
        return order_service.create_order(db, OrderCreate(
            customer_name="Walk-in",
            items=[OrderItemCreate(
                product_id=product.id,
                sizes=[OrderItemSizeCreate(size_id=size.id, quantity=quantity, price=price)],
            )],
        ))

    @staticmethod
    def create_purchase_order(db, product, quantity, price, size=None, expiry_date=None, batch_number=""):
        size = size or product.sizes[0]
        if expiry_date is None and product.batch_tracked:
            expiry_date = in_days(540)
        return order_service.create_order(db, OrderCreate(
            order_type="purchase",
            customer_name="Acme Pharma Supply",
            items=[OrderItemCreate(
                product_id=product.id,
                sizes=[OrderItemSizeCreate(
                    size_id=size.id,
                    quantity=quantity,
                    price=price,
                    batch_number=batch_number,
                    expiry_date=expiry_date,
                )],
            )],
        ))


class AuthenticatedTestClient:
    """TestClient bound to a test database and logged in as a fresh user"""

    def __init__(self, session_factory, role=UserRole.ADMIN.value):
        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

        db = session_factory()
        try:
            self.user = TestDataFactory.create_user(db, role=role)
            self.token = auth_service.create_access_token(self.user)
        finally:
            db.close()
        self.client.headers["Authorization"] = f"Bearer {self.token}"

    def close(self):
        app.dependency_overrides.pop(get_db, None)
        self.client.close()


def drop_all(engine):
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

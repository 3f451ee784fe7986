"""Pytest configuration and fixtures."""
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MONCASH_WEBHOOK_SECRET"] = "whsec_test"
os.environ.pop("BREVO_API_KEY", None)
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SUPER_ADMIN_EMAILS"] = "root@marketplace.test"

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from models import Base, Order, OrderItem, Store, StoreIncident, TransactionRecord, User
from models.ledger import TRANSACTION_TYPE_SALE

WEBHOOK_SECRET = "whsec_test"
NOW = datetime(2026, 10, 19, 12, 0, 0)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    File-backed SQLite per test: batch jobs open one session per store and
    the lock tests need independent connections.
    """
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient

    from database import get_session, get_session_factory
    from main import app

    def override_get_session():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(role: str = "admin", user_id: str = "admin-1", email: str = "ops@marketplace.test") -> str:
    return jwt.encode({"id": user_id, "role": role, "email": email}, "test-secret", algorithm="HS256")


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def super_admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(role='super_admin', user_id='root-1')}"}


def add_order(db: Session, order_id: str, items: list[tuple], user_id: str = "buyer-1", total=None) -> Order:
    """items: (vendor_id, price, quantity) tuples."""
    if total is None:
        total = sum(Decimal(str(price)) * qty for _, price, qty in items)
    order = Order(id=order_id, user_id=user_id, status="pending", total=total, currency="HTG")
    for vendor_id, price, qty in items:
        order.items.append(OrderItem(vendor_id=vendor_id, price=Decimal(str(price)), quantity=qty))
    db.add(order)
    db.commit()
    return order


def add_store(db: Session, store_id: str, vendor_id: str = None, active: bool = True) -> Store:
    store = Store(id=store_id, vendor_id=vendor_id or f"vendor-{store_id}", name=f"Store {store_id}", is_active=active)
    db.add(store)
    db.commit()
    return store


def add_sales(db: Session, store: Store, count: int, when: datetime) -> None:
    for i in range(count):
        db.add(TransactionRecord(
            vendor_id=store.vendor_id,
            order_id=f"{store.id}-sale-{when.isoformat()}-{i}",
            amount=Decimal("85.00"),
            platform_fee=Decimal("15.00"),
            currency="HTG",
            type=TRANSACTION_TYPE_SALE,
            status="completed",
            transaction_id=f"tx-{store.id}-{i}",
            created_at=when,
        ))
    db.commit()


def add_incidents(db: Session, store: Store, incident_type, count: int, when: datetime) -> None:
    for _ in range(count):
        db.add(StoreIncident(store_id=store.id, type=incident_type, created_at=when))
    db.commit()


def add_user(db: Session, user_id: str = "buyer-1", email: str = "buyer@marketplace.test") -> User:
    user = User(id=user_id, email=email, role="buyer")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def days_ago(now):
    return lambda days: now - timedelta(days=days)

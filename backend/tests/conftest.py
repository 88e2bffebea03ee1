"""Shared fixtures: in-memory SQLite with per-test rollback, users, tokens, fake LLM."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("GROQ_API_KEY", "")

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from medstock.api.deps import get_db
from medstock.core.security import create_access_token
from medstock.db.base import Base
from medstock.main import app
from medstock.models import Drug, Order, OrderItem, User
from medstock_ai import groq_client

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite does not emit BEGIN itself; take over so SAVEPOINT works
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


Base.metadata.create_all(bind=engine)


@pytest.fixture
def db():
    """Session bound to an outer transaction that is rolled back after each test."""
    connection = engine.connect()
    outer = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint", autoflush=False)
    try:
        yield session
    finally:
        session.close()
        outer.rollback()
        connection.close()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class FakeGroqClient:
    """Stands in for GroqClient. `replies` are returned in order; None means unavailable."""

    def __init__(self, replies=None, available=True):
        self.replies = list(replies or [])
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    def complete(self, messages, temperature=0, max_tokens=800, max_retries=2):
        self.calls.append(messages)
        if not self.available or not self.replies:
            return None
        return self.replies.pop(0)


@pytest.fixture
def fake_llm(monkeypatch):
    """Install a fake LLM; returns a factory so tests can script replies."""
    def install(replies=None, available=True):
        fake = FakeGroqClient(replies, available)
        monkeypatch.setattr(groq_client, "_groq_client", fake)
        return fake

    return install


@pytest.fixture(autouse=True)
def no_real_llm(monkeypatch):
    monkeypatch.setattr(groq_client, "_groq_client", FakeGroqClient(available=False))


def make_user(db, name, role, email=None, status="Active"):
    user = User(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        hashed_password="not-a-real-hash",
        role=role,
        status=status,
    )
    db.add(user)
    db.commit()
    return user


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def admin(db):
    return make_user(db, "Admin", "admin")


@pytest.fixture
def institute(db):
    return make_user(db, "City Hospital", "institute")


@pytest.fixture
def other_institute(db):
    return make_user(db, "District Clinic", "institute")


@pytest.fixture
def pharmacy(db):
    return make_user(db, "Care Pharmacy", "pharmacy")


def make_drug(db, owner, name="Paracetamol", stock=100, price="2.50", batch_no="B-001", exp_days=365, **extra):
    drug = Drug(
        name=name,
        batch_no=batch_no,
        stock=stock,
        price=Decimal(price),
        created_by=owner.id,
        mfg_date=date.today() - timedelta(days=30),
        exp_date=date.today() + timedelta(days=exp_days) if exp_days is not None else None,
        **extra,
    )
    db.add(drug)
    db.commit()
    return drug


def make_order(db, buyer, seller, lines, recipient=None, order_no="ORD-0001", transaction_type="institute"):
    """lines: [(drug or None, quantity, unit_price)]; all items sold by `seller`."""
    order = Order(
        order_no=order_no,
        user_id=buyer.id,
        recipient_id=recipient.id if recipient else None,
        transaction_type=transaction_type,
        total_amount=Decimal("0"),
    )
    db.add(order)
    db.flush()
    total = Decimal("0")
    for drug, quantity, unit_price in lines:
        price = Decimal(unit_price)
        db.add(OrderItem(
            order_id=order.id,
            drug_id=drug.id if drug else None,
            custom_name=None if drug else "Custom compound",
            quantity=quantity,
            unit_price=price,
            total_price=price * quantity,
            seller_id=seller.id,
            status="pending",
        ))
        total += price * quantity
    order.total_amount = total
    db.commit()
    return order

"""Shared fixtures: in-memory SQLite, recording senders and a TestClient.

The tests and the app share one Session so rows created in a test are
visible to the request handlers and vice versa.
"""

import os
import re
import uuid
from decimal import Decimal
from types import SimpleNamespace

# Must be set before mmart.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mmart.channels import ChannelSenders
from mmart.channels.base import ChannelSender
from mmart.core.database import make_engine
from mmart.core.deps import get_db, get_verification_issuer, get_voucher_notifier
from mmart.core.errors import DeliveryFailed
from mmart.core.security import create_access_token, get_password_hash
from mmart.main import app
from mmart.models import (
    AdminUser,
    Base,
    Category,
    Order,
    OrderItem,
    Product,
    User,
    Voucher,
)
from mmart.services.verification import VerificationCodeIssuer
from mmart.services.voucher_assignment import VoucherNotifier

PASSWORD = "correct-horse"


class RecordingSender(ChannelSender):
    """Keeps every message instead of sending it; ``fail`` simulates a provider outage."""

    def __init__(self, name: str, fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent = []

    def _deliver(self, address, message, subject=None, html=None):
        if self.fail:
            raise DeliveryFailed("provider down")
        self.sent.append({"address": address, "message": message, "subject": subject, "html": html})

    @property
    def last_code(self) -> str:
        return re.search(r"\b(\d{6})\b", self.sent[-1]["message"]).group(1)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def senders():
    return ChannelSenders(phone=RecordingSender("sms"), email=RecordingSender("email"))


@pytest.fixture
def issuer(senders):
    return VerificationCodeIssuer(senders)


@pytest.fixture
def client(db, senders):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_verification_issuer] = lambda: VerificationCodeIssuer(senders)
    app.dependency_overrides[get_voucher_notifier] = lambda: VoucherNotifier(senders.email)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="ada@example.com", phone_number="08031234567", name="Ada Obi", **fields):
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone_number=phone_number,
            hashed_password=get_password_hash(PASSWORD),
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def other_user(make_user):
    return make_user(email="bola@example.com", phone_number="08039876543", name="Bola Ade")


def bearer(subject: str, role: str) -> dict:
    token = create_access_token(subject=subject, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(user):
    return bearer(user.id, "user")


@pytest.fixture
def admin(db):
    admin = AdminUser(id=str(uuid.uuid4()), username="admin", hashed_password=get_password_hash(PASSWORD))
    db.add(admin)
    db.commit()
    return admin


@pytest.fixture
def admin_headers(admin):
    return bearer(admin.id, "admin")


@pytest.fixture
def catalog(db):
    groceries = Category(id=str(uuid.uuid4()), name="Groceries")
    electronics = Category(id=str(uuid.uuid4()), name="Electronics")
    rice = Product(id=str(uuid.uuid4()), name="Rice 5kg", price=Decimal("100.00"), category=groceries)
    beans = Product(id=str(uuid.uuid4()), name="Beans 1kg", price=Decimal("50.00"), category=groceries)
    phone = Product(id=str(uuid.uuid4()), name="Phone", price=Decimal("200.00"), category=electronics)
    db.add_all([groceries, electronics, rice, beans, phone])
    db.commit()
    return SimpleNamespace(groceries=groceries, electronics=electronics, rice=rice, beans=beans, phone=phone)


@pytest.fixture
def make_voucher(db):
    def _make(code="SAVE10", type="percentage", value="10", categories=(), products=(), **fields):
        min_spend = Decimal(str(fields.pop("min_spend", "0")))
        voucher = Voucher(
            id=str(uuid.uuid4()),
            code=code,
            type=type,
            value=Decimal(str(value)),
            min_spend=min_spend,
            **fields,
        )
        voucher.categories = list(categories)
        voucher.products = list(products)
        db.add(voucher)
        db.commit()
        return voucher

    return _make


@pytest.fixture
def make_order(db):
    def _make(owner, lines, **fields):
        subtotal = sum((p.price * qty for p, qty in lines), Decimal("0"))
        order = Order(
            id=str(uuid.uuid4()),
            user_id=owner.id,
            subtotal=subtotal,
            discount=Decimal("0"),
            total=subtotal,
            **fields,
        )
        order.items = [
            OrderItem(id=str(uuid.uuid4()), product_id=p.id, quantity=qty, unit_price=p.price)
            for p, qty in lines
        ]
        db.add(order)
        db.commit()
        return order

    return _make

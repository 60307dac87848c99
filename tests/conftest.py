"""Shared fixtures: in-memory SQLite schema per test, model factories, an
in-memory gateway, a fixed clock and a capturing logger."""
from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENV", "local")

import pytest
from fastapi.testclient import TestClient

import app.db.models  # noqa: F401
from app.api.deps import get_clock, get_gateway
from app.core.clock import FixedClock
from app.core.security import create_access_token, hash_password
from app.db.session import Base, SessionLocal, engine
from app.main import app as fastapi_app
from app.models.booking import Booking, PaymentMethod
from app.models.booking_user import BookingUser
from app.models.client import Client
from app.models.school import School
from app.models.user import User
from app.models.voucher import Voucher
from app.models.voucher_log import PENDING, VoucherLog
from app.services import email_service
from app.services.gateway import CONFIRMED, PARTIALLY_REFUNDED, GatewayRefund, GatewayTransaction


def _id() -> str:
    return str(uuid.uuid4())


class FakeGateway:
    """In-memory GatewayClient. Tests seed transactions and inspect calls."""

    def __init__(self):
        self.link: str | None = "https://pay.example.test/?payment=abc"
        self.create_error: Exception | None = None
        self.created: list = []
        self.transactions: dict[int, GatewayTransaction] = {}
        self.fetch_error: Exception | None = None
        self.fetch_calls = 0
        self.on_fetch = None
        self.refund_status: str = PARTIALLY_REFUNDED
        self.refund_error: Exception | None = None
        self.refunds: list[tuple[int, int]] = []

    def add_transaction(self, transaction_id: int, total_amount: int | None, reference: str,
                        status: str = CONFIRMED, time: str | None = "2026-10-19 10:00:00",
                        refunded_amount: int = 0) -> GatewayTransaction:
        tx = GatewayTransaction(
            id=transaction_id,
            status=status,
            time=time,
            total_amount=total_amount,
            refunded_amount=refunded_amount,
            currency="CHF",
            brand="visa",
            reference_id=reference,
        )
        self.transactions[transaction_id] = tx
        return tx

    def create_gateway(self, credentials, request):
        if self.create_error:
            raise self.create_error
        self.created.append(request)
        return self.link

    def retrieve_transaction(self, credentials, transaction_id):
        self.fetch_calls += 1
        if self.on_fetch:
            self.on_fetch(transaction_id)
        if self.fetch_error:
            raise self.fetch_error
        return self.transactions.get(transaction_id)

    def refund(self, credentials, transaction_id, amount):
        if self.refund_error:
            raise self.refund_error
        self.refunds.append((transaction_id, amount))
        return GatewayRefund(status=self.refund_status)


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


@dataclass
class LogCapture:
    logger: logging.Logger
    records: list = field(default_factory=list)

    def errors(self) -> list[logging.LogRecord]:
        return [r for r in self.records if r.levelno >= logging.ERROR]


class Factory:
    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def school(self, **kw) -> School:
        values = dict(id=_id(), name="Ecole Suisse de Ski", payrexx_instance="boukii-test",
                      payrexx_key="secret-api-key", bookings_comission_cash=Decimal("7.70"),
                      conditions_url="https://school.example/terms")
        values.update(kw)
        return self._save(School(**values))

    def client(self, **kw) -> Client:
        values = dict(id=_id(), first_name="Anna", last_name="Muster", email="anna@example.com",
                      phone="+41 79 000 00 00", address="Bahnhofstrasse 1", cp="8001",
                      province="Zurich", country="CH")
        values.update(kw)
        return self._save(Client(**values))

    def booking(self, school: School, users: int = 2, **kw) -> Booking:
        values = dict(id=_id(), school_id=school.id, price_total=Decimal("120.00"), currency="CHF",
                      paid=False, paid_total=Decimal("0"), payment_method_id=PaymentMethod.ONLINE,
                      source="panel")
        values.update(kw)
        booking = Booking(**values)
        self.db.add(booking)
        for _ in range(users):
            self.db.add(BookingUser(id=_id(), booking_id=booking.id, price=Decimal("60.00")))
        self.db.commit()
        return booking

    def voucher(self, school: School, quantity: str = "50.00", **kw) -> Voucher:
        values = dict(id=_id(), code=f"V-{uuid.uuid4().hex[:8]}", quantity=Decimal(quantity),
                      remaining_balance=Decimal(quantity), payed=False, school_id=school.id)
        values.update(kw)
        return self._save(Voucher(**values))

    def voucher_log(self, voucher: Voucher, booking: Booking, amount: str, status: str | None = PENDING) -> VoucherLog:
        return self._save(VoucherLog(id=_id(), voucher_id=voucher.id, booking_id=booking.id,
                                     amount=Decimal(amount), status=status))

    def staff(self, role: str = "admin", school_id: str | None = None, password: str = "correct-horse") -> User:
        return self._save(User(id=_id(), email=f"{role}-{uuid.uuid4().hex[:6]}@boukii.test", full_name="Staff",
                               role=role, school_id=school_id, password_hash=hash_password(password)))


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def log_capture() -> LogCapture:
    logger = logging.getLogger(f"tests.capture.{uuid.uuid4().hex}")
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    handler = _ListHandler()
    logger.addHandler(handler)
    return LogCapture(logger=logger, records=handler.records)


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> list[tuple[str, str, str]]:
    """Replace the SMTP/SendGrid transport; every test sees what would have been sent."""
    sent: list[tuple[str, str, str]] = []

    def _fake_send(to_email, subject, body, attachments):
        sent.append((to_email, subject, body))

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture
def client(gateway, clock):
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers

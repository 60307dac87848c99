from decimal import Decimal

import pytest

from app.models.booking_log import BookingLog
from app.models.payment import Payment
from app.services.gateway import PARTIALLY_REFUNDED, REFUNDED
from app.services.payrexx_client import PayrexxError
from app.services.refund_service import RefundService


@pytest.fixture
def service(db, gateway, clock, log_capture):
    return RefundService(db, gateway, clock=clock, logger=log_capture.logger)


@pytest.fixture
def paid_booking(factory):
    school = factory.school()
    booking = factory.booking(school, paid=True, paid_total=Decimal("120.00"), payrexx_reference="REF-100")
    booking.set_transaction({"id": 777, "time": "2026-10-19 10:00:00", "totalAmount": 12000,
                             "refundedAmount": 0, "currency": "CHF", "brand": "visa", "referenceId": "REF-100"})
    factory.db.commit()
    return booking


def test_partial_refund_is_success(service, paid_booking, gateway):
    gateway.refund_status = PARTIALLY_REFUNDED

    result = service.refund(paid_booking, Decimal("40.00"))

    assert result
    assert result.status == PARTIALLY_REFUNDED
    assert gateway.refunds == [(777, 4000)]


def test_full_refund_is_success(service, paid_booking, gateway):
    gateway.refund_status = REFUNDED

    assert service.refund(paid_booking, 120)


def test_refund_leaves_local_state_alone(service, paid_booking, db):
    service.refund(paid_booking, Decimal("40.00"))

    db.refresh(paid_booking)
    assert paid_booking.get_transaction()["refundedAmount"] == 0
    assert paid_booking.payrexx_refund is False
    assert db.query(Payment).count() == 0


def test_other_gateway_status_is_failure(service, paid_booking, gateway, log_capture):
    gateway.refund_status = "error"

    result = service.refund(paid_booking, Decimal("40.00"))

    assert not result
    assert result.status == "error"
    assert len(log_capture.errors()) == 1


def test_gateway_exception_is_failure(service, paid_booking, gateway):
    gateway.refund_error = PayrexxError("Payrexx 422: amount too high")

    result = service.refund(paid_booking, Decimal("40.00"))

    assert not result
    assert "amount too high" in result.error


def test_no_stored_transaction_is_failure(service, factory, gateway):
    booking = factory.booking(factory.school(), paid=True)

    result = service.refund(booking, Decimal("10.00"))

    assert not result
    assert "no stored transaction" in result.error
    assert gateway.refunds == []


def test_missing_credentials_is_failure(service, paid_booking, gateway, db):
    paid_booking.school.payrexx_key = None
    db.commit()

    assert not service.refund(paid_booking, Decimal("10.00"))
    assert gateway.refunds == []


def test_refund_and_record_books_partial_refund(service, paid_booking, gateway, db):
    result = service.refund_and_record(paid_booking, Decimal("40.00"), actor="finance@boukii.test")

    assert result
    db.refresh(paid_booking)
    assert paid_booking.payrexx_refund is True
    snapshot = paid_booking.get_transaction()
    assert snapshot["refundedAmount"] == 4000
    assert snapshot["totalAmount"] == 12000
    payment = db.query(Payment).one()
    assert (payment.amount, payment.status) == (Decimal("40.00"), "partial_refund")
    log = db.query(BookingLog).one()
    assert (log.action, log.actor) == ("refund", "finance@boukii.test")


def test_refund_and_record_full_refund_status(service, paid_booking, gateway, db):
    gateway.refund_status = REFUNDED

    service.refund_and_record(paid_booking, Decimal("120.00"))

    assert db.query(Payment).one().status == "refund"


@pytest.mark.parametrize("amount", ["0", "-5", "120.01"])
def test_refund_and_record_rejects_bad_amounts(service, paid_booking, gateway, db, amount):
    result = service.refund_and_record(paid_booking, Decimal(amount))

    assert not result
    assert gateway.refunds == []
    assert db.query(Payment).count() == 0


def test_refund_and_record_logs_failure_without_ledger_rows(service, paid_booking, gateway, db):
    gateway.refund_status = "error"

    assert not service.refund_and_record(paid_booking, Decimal("40.00"))

    db.refresh(paid_booking)
    assert paid_booking.payrexx_refund is False
    assert db.query(Payment).count() == 0
    assert db.query(BookingLog).one().action == "refund_failed"

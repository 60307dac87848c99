import asyncio
import logging
from decimal import Decimal

import pytest

from app.api.v1.routes import payments as payments_routes
from app.models.booking import Booking, PaymentMethod
from app.models.booking_log import BookingLog
from app.models.email_log import EmailLog
from app.models.payment import Payment
from app.services.gateway import REFUNDED

BASKET = {
    "price_base": {"name": "Private lesson", "quantity": 1, "price": "120.00"},
    "price_total": "120.00",
}

FORM = {
    "transaction[status]": "confirmed",
    "transaction[id]": "555",
    "transaction[referenceId]": "REF-100",
    "transaction[amount]": "12000",
    "transaction[invoice][currencyAlpha3]": "CHF",
}


@pytest.fixture
def school(factory):
    return factory.school()


def test_form_notification_settles_and_sends_email_after_response(client, factory, school, gateway, db, sent_emails):
    buyer = factory.client()
    booking = factory.booking(school, payrexx_reference="REF-100", source="web", client_main_id=buyer.id,
                              payment_method_id=PaymentMethod.BOUKII_PAY)
    gateway.add_transaction(555, 12000, "REF-100")

    r = client.post("/api/v1/payrexx/notification", data=FORM)

    assert r.status_code == 200
    assert r.text == "OK"
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.paid is True
    assert booking.paid_total == Decimal("120.00")
    assert db.query(EmailLog).one().status == "sent"
    assert [e[0] for e in sent_emails] == ["anna@example.com"]


def test_json_notification_is_accepted(client, factory, school, gateway, db):
    booking = factory.booking(school, payrexx_reference="REF-100")
    gateway.add_transaction(555, 12000, "REF-100")
    payload = {"transaction": {"status": "confirmed", "id": 555, "referenceId": "REF-100", "amount": 12000}}

    first = client.post("/api/v1/payrexx/notification", json=payload)
    second = client.post("/api/v1/payrexx/notification", json=payload)

    assert (first.text, second.text) == ("OK", "OK")
    assert db.query(Payment).filter(Payment.booking_id == booking.id).count() == 1


def test_malformed_reference_answers_ok_with_one_error_and_no_writes(client, factory, school, db, caplog):
    factory.booking(school, payrexx_reference="REF-100")
    caplog.set_level(logging.INFO, logger="app.payrexx")

    r = client.post("/api/v1/payrexx/notification", data=dict(FORM, **{"transaction[referenceId]": ""}))

    assert r.status_code == 200
    assert r.text == "OK"
    errors = [rec for rec in caplog.records if rec.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert db.query(Payment).count() == 0
    assert db.query(BookingLog).count() == 0
    assert db.query(EmailLog).count() == 0


def test_internal_failure_still_answers_ok(client, factory, school, gateway, db):
    factory.booking(school, payrexx_reference="REF-100")
    gateway.fetch_error = RuntimeError("database of the gateway is down")

    r = client.post("/api/v1/payrexx/notification", data=FORM)

    assert (r.status_code, r.text) == (200, "OK")
    assert db.query(Payment).count() == 0


def test_garbage_body_answers_ok(client):
    r = client.post("/api/v1/payrexx/notification", content=b"{not json", headers={"content-type": "application/json"})

    assert (r.status_code, r.text) == (200, "OK")


def test_notification_is_reconciled_off_the_event_loop(client, monkeypatch):
    seen = []

    def _process(db, gateway, payload, clock=None):
        try:
            asyncio.get_running_loop()
            seen.append("event loop")
        except RuntimeError:
            seen.append("worker thread")
        return []

    monkeypatch.setattr(payments_routes, "process_notification", _process)

    r = client.post("/api/v1/payrexx/notification", data=FORM)

    assert r.text == "OK"
    assert seen == ["worker thread"]


def test_finish_page(client):
    r = client.get("/api/v1/payrexx/finish", params={"status": "cancel"})

    assert r.status_code == 200
    assert r.text == "Payrexx close cancel"


def test_ops_routes_require_staff_token(client, factory, school):
    booking = factory.booking(school)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/payment-link", json={"basket": BASKET})

    assert r.status_code == 401


def test_payment_link(client, factory, school, gateway, auth_headers):
    booking = factory.booking(school)
    staff = factory.staff()

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/payment-link",
                    json={"basket": BASKET, "redirectTo": "panel"}, headers=auth_headers(staff))

    assert r.status_code == 200
    assert r.json() == {"ok": True, "url": gateway.link, "error": None}


def test_payment_link_failure_is_reported_not_raised(client, factory, auth_headers):
    school = factory.school(payrexx_key="")
    booking = factory.booking(school)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/payment-link",
                    json={"basket": BASKET}, headers=auth_headers(factory.staff()))

    assert r.status_code == 200
    assert r.json()["ok"] is False
    assert r.json()["url"] == ""


def test_staff_of_another_school_is_forbidden(client, factory, school, auth_headers):
    booking = factory.booking(school)
    other = factory.staff(role="ops", school_id=factory.school(name="Other").id)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/payment-link",
                    json={"basket": BASKET}, headers=auth_headers(other))

    assert r.status_code == 403


def test_unknown_booking_is_404(client, factory, auth_headers):
    r = client.post("/api/v1/ops/bookings/nope/payment-link", json={"basket": BASKET},
                    headers=auth_headers(factory.staff()))

    assert r.status_code == 404


def test_paid_booking_gets_no_new_link(client, factory, school, auth_headers):
    booking = factory.booking(school, paid=True)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/payment-link", json={"basket": BASKET},
                    headers=auth_headers(factory.staff()))

    assert r.status_code == 409


def test_send_pay_link(client, factory, school, auth_headers, sent_emails):
    buyer = factory.client()
    booking = factory.booking(school, client_main_id=buyer.id)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/send-pay-link", json={"basket": BASKET},
                    headers=auth_headers(factory.staff()))

    assert r.json() == {"ok": True}
    assert len(sent_emails) == 1


def test_voucher_payment_link(client, factory, school, gateway, auth_headers):
    voucher = factory.voucher(school)

    r = client.post(f"/api/v1/ops/vouchers/{voucher.id}/payment-link", json={},
                    headers=auth_headers(factory.staff(role="finance")))

    assert r.json()["ok"] is True
    assert gateway.created[0].amount == 5000


def _paid_booking(factory, school):
    booking = factory.booking(school, paid=True, paid_total=Decimal("120.00"), payrexx_reference="REF-100")
    booking.set_transaction({"id": 777, "totalAmount": 12000, "refundedAmount": 0, "referenceId": "REF-100"})
    factory.db.commit()
    return booking


def test_refund_route(client, factory, school, gateway, db, auth_headers):
    booking = _paid_booking(factory, school)

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/refund", json={"amount": "40.00"},
                    headers=auth_headers(factory.staff(role="finance")))

    assert r.status_code == 200
    assert r.json() == {"ok": True, "status": "partially-refunded", "error": None}
    assert gateway.refunds == [(777, 4000)]
    db.expire_all()
    assert db.get(Booking, booking.id).payrexx_refund is True
    assert db.query(Payment).one().status == "partial_refund"


def test_refund_route_rejections(client, factory, school, gateway, auth_headers):
    staff = factory.staff()
    unpaid = factory.booking(school)
    paid = _paid_booking(factory, school)

    assert client.post(f"/api/v1/ops/bookings/{unpaid.id}/refund", json={"amount": "10"},
                       headers=auth_headers(staff)).status_code == 409
    assert client.post(f"/api/v1/ops/bookings/{paid.id}/refund", json={"amount": "500"},
                       headers=auth_headers(staff)).status_code == 400
    assert client.post(f"/api/v1/ops/bookings/{paid.id}/refund", json={"amount": "0"},
                       headers=auth_headers(staff)).status_code == 422

    gateway.refund_status = "error"
    assert client.post(f"/api/v1/ops/bookings/{paid.id}/refund", json={"amount": "10"},
                       headers=auth_headers(staff)).status_code == 502
    assert gateway.refunds == [(777, 1000)]


def test_full_refund_route(client, factory, school, gateway, db, auth_headers):
    booking = _paid_booking(factory, school)
    gateway.refund_status = REFUNDED

    r = client.post(f"/api/v1/ops/bookings/{booking.id}/refund", json={"amount": "120"},
                    headers=auth_headers(factory.staff()))

    assert r.json()["status"] == REFUNDED
    assert db.query(Payment).one().status == "refund"


def test_verification_route(client, factory, school, gateway, auth_headers):
    booking = factory.booking(school, payrexx_reference="REF-100")
    gateway.add_transaction(555, 12000, "REF-100")
    client.post("/api/v1/payrexx/notification", data=FORM)

    r = client.get(f"/api/v1/ops/bookings/{booking.id}/payrexx-verification",
                   headers=auth_headers(factory.staff()))

    body = r.json()
    assert body["overall_status"] == "all_verified"
    assert body["found"] == 1

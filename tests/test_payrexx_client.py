import base64
import hashlib
import hmac
from urllib.parse import urlencode

import pytest
import requests

from app.services.gateway import BasketLine, GatewayCredentials, GatewayRequest, RedirectUrls
from app.services.payrexx_client import PayrexxClient, PayrexxError, _flatten, _signature, gateway_params

CREDS = GatewayCredentials(instance="boukii-test", key="secret-api-key", base_domain="payrexx.com")


class _Response:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = "x" if payload is not None else ""

    def json(self):
        return self._payload


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params, timeout))
        if self.error:
            raise self.error
        return self.response

    def request(self, method, url, data=None, timeout=None):
        self.calls.append((method, url, data, timeout))
        if self.error:
            raise self.error
        return self.response


def test_flatten_uses_bracket_notation():
    pairs = _flatten({"basket": [{"name": {1: "Lesson"}, "quantity": 1, "amount": 12000}], "vatRate": None})

    assert pairs == [
        ("basket[0][name][1]", "Lesson"),
        ("basket[0][quantity]", "1"),
        ("basket[0][amount]", "12000"),
    ]


def test_signature_is_base64_hmac_sha256_of_query():
    query = urlencode([("amount", "4000")])
    expected = base64.b64encode(hmac.new(b"secret-api-key", query.encode(), hashlib.sha256).digest()).decode()

    assert _signature("secret-api-key", query) == expected


def test_gateway_params_carry_fields_terms_and_redirects():
    req = GatewayRequest(
        reference="REF-100",
        amount=12000,
        currency="CHF",
        basket=[BasketLine(name="Lesson", quantity=1, amount=12000)],
        fields={"forename": "Anna", "phone": ""},
        redirect=RedirectUrls(success="https://x/?status=success", failed="https://x/?status=failed",
                              cancel="https://x/?status=cancel"),
        vat_rate=7.7,
        terms_url="https://school.example/terms",
        validity_minutes=15,
    )

    params = gateway_params(req)

    assert params["referenceId"] == "REF-100"
    assert params["fields"] == {"forename": {"value": "Anna"}, "terms": {"value": "https://school.example/terms"}}
    assert params["successRedirectUrl"] == "https://x/?status=success"
    assert params["validity"] == 15


def test_create_gateway_posts_signed_form():
    session = _Session(_Response({"status": "success", "data": [{"id": 1, "link": "https://pay/abc"}]}))
    client = PayrexxClient(timeout=7, session=session)

    link = client.create_gateway(CREDS, GatewayRequest(reference="REF-100", amount=100, currency="CHF"))

    assert link == "https://pay/abc"
    method, url, data, timeout = session.calls[0]
    assert (method, url, timeout) == ("POST", "https://api.payrexx.com/v1.0/Gateway/?instance=boukii-test", 7)
    assert data[-1][0] == "ApiSignature"
    assert data[-1][1] == _signature("secret-api-key", urlencode(data[:-1]))


def test_retrieve_transaction_maps_invoice_and_brand():
    session = _Session(_Response({"status": "success", "data": [{
        "id": 555,
        "status": "confirmed",
        "time": "2026-10-19 10:00:00",
        "referenceId": "REF-100",
        "invoice": {"totalAmount": 12000, "refundedAmount": 0, "currencyAlpha3": "CHF"},
        "payment": {"brand": "mastercard"},
    }]}))

    tx = PayrexxClient(session=session).retrieve_transaction(CREDS, 555)

    assert session.calls[0][1] == "https://api.payrexx.com/v1.0/Transaction/555/?instance=boukii-test"
    assert (tx.id, tx.status, tx.total_amount, tx.currency, tx.brand) == (555, "confirmed", 12000, "CHF", "mastercard")


def test_refund_posts_amount():
    session = _Session(_Response({"status": "success", "data": [{"status": "partially-refunded"}]}))

    result = PayrexxClient(session=session).refund(CREDS, 777, 4000)

    method, url, data, _ = session.calls[0]
    assert url == "https://api.payrexx.com/v1.0/Transaction/777/refund?instance=boukii-test"
    assert ("amount", "4000") in data
    assert result.status == "partially-refunded"


def test_api_error_raises():
    session = _Session(_Response({"status": "error", "message": "Invalid signature"}, status_code=401))

    with pytest.raises(PayrexxError, match="Invalid signature"):
        PayrexxClient(session=session).retrieve_transaction(CREDS, 1)


def test_transport_error_raises():
    session = _Session(error=requests.ConnectTimeout("timed out"))

    with pytest.raises(PayrexxError, match="transport error"):
        PayrexxClient(session=session).retrieve_transaction(CREDS, 1)

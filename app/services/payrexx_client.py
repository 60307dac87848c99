import base64
import hashlib
import hmac
import logging
from urllib.parse import urlencode

import requests

from app.core.config import settings
from app.services.gateway import (
    GatewayCredentials,
    GatewayRefund,
    GatewayRequest,
    GatewayTransaction,
)

logger = logging.getLogger("app.payrexx.client")

API_VERSION = "v1.0"


class PayrexxError(RuntimeError):
    pass


def _flatten(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested params into bracket notation: basket[0][name][1]=..."""
    out: list[tuple[str, str]] = []
    for k, v in params.items():
        key = f"{prefix}[{k}]" if prefix else str(k)
        if v is None:
            continue
        if isinstance(v, dict):
            out.extend(_flatten(v, key))
        elif isinstance(v, (list, tuple)):
            out.extend(_flatten({i: item for i, item in enumerate(v)}, key))
        elif isinstance(v, bool):
            out.append((key, "1" if v else "0"))
        else:
            out.append((key, str(v)))
    return out


def _signature(api_key: str, query: str) -> str:
    sig = hmac.new(api_key.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(sig).decode("utf-8")


def gateway_params(req: GatewayRequest) -> dict:
    """Map a GatewayRequest onto the gateway's form parameters."""
    params: dict = {
        "referenceId": req.reference,
        "amount": req.amount,
        "currency": req.currency,
        "vatRate": req.vat_rate,
        "basket": [line.as_payload() for line in req.basket],
        "purpose": req.purpose or None,
        "validity": req.validity_minutes,
    }
    fields = {name: {"value": value} for name, value in req.fields.items() if value}
    if req.terms_url:
        fields["terms"] = {"value": req.terms_url}
    if fields:
        params["fields"] = fields
    if req.redirect:
        params["successRedirectUrl"] = req.redirect.success
        params["failedRedirectUrl"] = req.redirect.failed
        params["cancelRedirectUrl"] = req.redirect.cancel
    return params


class PayrexxClient:
    def __init__(self, timeout: int | None = None, session: requests.Session | None = None):
        self.timeout = timeout or settings.PAYREXX_TIMEOUT
        self.http = session or requests.Session()

    def _url(self, creds: GatewayCredentials, resource: str, object_id: int | None = None, action: str = "") -> str:
        path = f"/{API_VERSION}/{resource}/"
        if object_id is not None:
            path += f"{object_id}/"
        if action:
            path += action
        return f"https://api.{creds.base_domain}{path}?{urlencode({'instance': creds.instance})}"

    def request(self, creds: GatewayCredentials, method: str, resource: str,
                object_id: int | None = None, action: str = "", params: dict | None = None) -> dict:
        pairs = _flatten(params or {})
        signature = _signature(creds.key, urlencode(pairs))
        pairs.append(("ApiSignature", signature))
        url = self._url(creds, resource, object_id, action)
        try:
            if method.upper() == "GET":
                r = self.http.get(url, params=pairs, timeout=self.timeout)
            else:
                r = self.http.request(method.upper(), url, data=pairs, timeout=self.timeout)
        except requests.RequestException as e:
            raise PayrexxError(f"Payrexx {method} {resource} transport error: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400 or data.get("status") != "success":
            raise PayrexxError(f"Payrexx {r.status_code}: {data.get('message') or data}")
        items = data.get("data") or []
        if isinstance(items, dict):
            return items
        if not items:
            raise PayrexxError(f"Payrexx {resource}: empty response")
        return items[0]

    def create_gateway(self, credentials: GatewayCredentials, request: GatewayRequest) -> str | None:
        data = self.request(credentials, "POST", "Gateway", params=gateway_params(request))
        logger.info("gateway created", extra={"reference": request.reference, "amount": request.amount})
        return data.get("link") or None

    def retrieve_transaction(self, credentials: GatewayCredentials, transaction_id: int) -> GatewayTransaction | None:
        data = self.request(credentials, "GET", "Transaction", object_id=transaction_id)
        return GatewayTransaction.from_api(data)

    def refund(self, credentials: GatewayCredentials, transaction_id: int, amount: int) -> GatewayRefund:
        data = self.request(credentials, "POST", "Transaction", object_id=transaction_id,
                            action="refund", params={"amount": amount})
        return GatewayRefund(status=str(data.get("status") or ""))

"""Capability contract between the payment core and the hosted-payment gateway.

The reconciliation and session services only depend on `GatewayClient`;
`app.services.payrexx_client.PayrexxClient` is the production adapter and the
tests provide an in-memory fake.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from app.core.config import settings
from app.core.errors import MissingCredentialsError

CONFIRMED = "confirmed"
REFUNDED = "refunded"
PARTIALLY_REFUNDED = "partially-refunded"

REFUND_OK_STATUSES = (REFUNDED, PARTIALLY_REFUNDED)


@dataclass(frozen=True)
class GatewayCredentials:
    instance: str
    key: str
    base_domain: str


@dataclass
class BasketLine:
    name: str
    quantity: int
    amount: int  # minor units (cents), line total

    def as_payload(self) -> dict:
        # name is keyed by gateway language id; 1 is the default language
        return {"name": {1: self.name}, "quantity": self.quantity, "amount": self.amount}


@dataclass
class RedirectUrls:
    success: str = ""
    failed: str = ""
    cancel: str = ""

    def __bool__(self) -> bool:
        return bool(self.success or self.failed or self.cancel)


@dataclass
class GatewayRequest:
    reference: str
    amount: int  # minor units
    currency: str
    basket: list[BasketLine] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)
    redirect: RedirectUrls = field(default_factory=RedirectUrls)
    vat_rate: float | None = None
    terms_url: str | None = None
    purpose: str = ""
    validity_minutes: int | None = None


@dataclass
class GatewayTransaction:
    id: int
    status: str
    time: str | None = None
    total_amount: int | None = None      # minor units; the gateway sometimes omits it
    refunded_amount: int | None = None
    currency: str | None = None
    brand: str | None = None
    reference_id: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "GatewayTransaction":
        invoice = data.get("invoice") or {}
        payment = data.get("payment") or {}
        return cls(
            id=int(data.get("id") or 0),
            status=str(data.get("status") or ""),
            time=data.get("time"),
            total_amount=invoice.get("totalAmount"),
            refunded_amount=invoice.get("refundedAmount"),
            currency=invoice.get("currencyAlpha3"),
            brand=payment.get("brand"),
            reference_id=data.get("referenceId"),
        )


@dataclass
class GatewayRefund:
    status: str


@runtime_checkable
class GatewayClient(Protocol):
    def create_gateway(self, credentials: GatewayCredentials, request: GatewayRequest) -> str | None: ...

    def retrieve_transaction(self, credentials: GatewayCredentials, transaction_id: int) -> GatewayTransaction | None: ...

    def refund(self, credentials: GatewayCredentials, transaction_id: int, amount: int) -> GatewayRefund: ...


def school_credentials(school) -> GatewayCredentials:
    """Gateway credentials for a School; raises MissingCredentialsError when unusable."""
    if school is None:
        raise MissingCredentialsError("No school attached")
    if not school.has_payrexx_credentials:
        raise MissingCredentialsError(f"No credentials for School ID={school.id}")
    domain = (settings.PAYREXX_API_BASE_DOMAIN or "").strip()
    if not domain:
        raise MissingCredentialsError("PAYREXX_API_BASE_DOMAIN is not configured")
    return GatewayCredentials(instance=school.payrexx_instance.strip(), key=school.payrexx_key.strip(), base_domain=domain)

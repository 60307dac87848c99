"""Hosted payment page creation for bookings and vouchers.

Payment links are advisory: every failure is logged and comes back as an
empty `SessionResult`, never as an exception.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.errors import InvalidBasketError
from app.models.booking import Booking
from app.models.client import Client
from app.models.school import School
from app.models.voucher import Voucher
from app.schemas.payments import BasketBreakdown
from app.services.basket_service import basket_total, build_basket, payment_summary, to_minor
from app.services.booking_log_service import log_booking_event
from app.services.booking_service import get_or_generate_reference, get_or_generate_voucher_reference
from app.services.email_service import pay_link_email, queue_email
from app.services.gateway import BasketLine, GatewayClient, GatewayRequest, RedirectUrls, school_credentials

log = logging.getLogger("app.payrexx.session")


@dataclass
class SessionResult:
    url: str = ""
    error: str | None = None

    def __bool__(self) -> bool:
        return bool(self.url)


def redirect_urls(redirect_to: str | None) -> RedirectUrls:
    """panel -> back-office bookings list, app -> this API's finish page, URL -> that URL, None -> no redirect."""
    if not redirect_to:
        return RedirectUrls()
    if redirect_to == "panel":
        base = f"{settings.ADMIN_URL.rstrip('/')}/bookings"
    elif redirect_to == "app":
        base = f"{settings.API_PUBLIC_URL.rstrip('/')}/api/v1/payrexx/finish"
    else:
        base = redirect_to
    return RedirectUrls(
        success=f"{base}?status=success",
        failed=f"{base}?status=failed",
        cancel=f"{base}?status=cancel",
    )


def buyer_fields(buyer: Client | None) -> dict[str, str]:
    if buyer is None:
        return {}
    return {
        "forename": buyer.first_name,
        "surname": buyer.last_name,
        "phone": buyer.phone,
        "email": buyer.email,
        "street": buyer.address,
        "postcode": buyer.cp,
        "place": buyer.province,
        "country": buyer.country,
    }


class GatewaySessionService:
    def __init__(self, db: Session, gateway: GatewayClient, clock: Clock = system_clock,
                 logger: logging.Logger | None = None):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.log = logger or log

    def create_booking_session(self, school: School, booking: Booking, basket: BasketBreakdown | dict,
                               buyer: Client | None = None, redirect_to: str | None = None) -> SessionResult:
        try:
            credentials = school_credentials(school)
            # basket first: a rejected basket must not stamp a reference nor reach the gateway
            lines = build_basket(basket)
            reference = get_or_generate_reference(self.db, booking)
            title, description = payment_summary(lines, booking.currency)
            vat_rate = school.bookings_comission_cash
            request = GatewayRequest(
                reference=reference,
                amount=basket_total(lines),
                currency=booking.currency,
                basket=lines,
                fields=buyer_fields(buyer),
                redirect=redirect_urls(redirect_to),
                vat_rate=float(vat_rate) if vat_rate is not None else None,
                terms_url=school.conditions_url or None,
                purpose=f"{title}\n{description}",
                validity_minutes=settings.PAYREXX_WEB_VALIDITY_MINUTES if booking.source == "web" else None,
            )
            link = self.gateway.create_gateway(credentials, request)
        except Exception as exc:
            self.log.error("booking payment link failed", extra={"booking_id": booking.id}, exc_info=True)
            return SessionResult(error=str(exc))

        if not link:
            self.log.error("gateway returned no link", extra={"booking_id": booking.id, "reference": reference})
            return SessionResult(error="Gateway returned no link")
        return SessionResult(url=link)

    def create_voucher_session(self, school: School, voucher: Voucher, buyer: Client | None = None,
                               redirect_to: str | None = "app") -> SessionResult:
        """One basket line named after the voucher reference, worth its face value; no VAT."""
        try:
            credentials = school_credentials(school)
            amount = to_minor(voucher.quantity)
            if amount <= 0:
                raise InvalidBasketError(f"Voucher {voucher.id} has no face value")
            reference = get_or_generate_voucher_reference(self.db, voucher)
            request = GatewayRequest(
                reference=reference,
                amount=amount,
                currency=settings.DEFAULT_CURRENCY,
                basket=[BasketLine(name=reference, quantity=1, amount=amount)],
                fields=buyer_fields(buyer),
                redirect=redirect_urls(redirect_to),
                terms_url=school.conditions_url or None,
            )
            link = self.gateway.create_gateway(credentials, request)
        except Exception as exc:
            self.log.error("voucher payment link failed", extra={"voucher_id": voucher.id}, exc_info=True)
            return SessionResult(error=str(exc))

        if not link:
            self.log.error("gateway returned no link", extra={"voucher_id": voucher.id, "reference": reference})
            return SessionResult(error="Gateway returned no link")
        return SessionResult(url=link)

    def send_pay_link(self, school: School, booking: Booking, basket: BasketBreakdown | dict,
                      buyer: Client | None, redirect_to: str | None = None, actor: str = "system") -> bool:
        """Create a booking link and email it to the buyer."""
        if buyer is None or not buyer.email:
            self.log.info("pay link not sent, buyer has no email", extra={"booking_id": booking.id})
            return False
        result = self.create_booking_session(school, booking, basket, buyer=buyer, redirect_to=redirect_to)
        if not result:
            return False

        log_booking_event(self.db, booking.id, "send_pay_link", actor=actor,
                          description=f"Payment link sent to {buyer.email}", details={"url": result.url})
        subject, body = pay_link_email(school, booking, buyer, result.url)
        queue_email(self.db, buyer.email, subject, body, related_reference=booking.payrexx_reference or "",
                    clock=self.clock)
        return True

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.errors import NoTransactionError, RefundRejectedError
from app.models.booking import Booking
from app.services.basket_service import to_minor
from app.services.booking_log_service import log_booking_event
from app.services.gateway import REFUND_OK_STATUSES, REFUNDED, GatewayClient, school_credentials
from app.services.ledger_service import CENT, record_refund

log = logging.getLogger("app.payrexx.refund")


@dataclass
class RefundResult:
    ok: bool
    status: str | None = None
    error: str | None = None

    def __bool__(self) -> bool:
        return self.ok


class RefundService:
    def __init__(self, db: Session, gateway: GatewayClient, clock: Clock = system_clock,
                 logger: logging.Logger | None = None):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.log = logger or log

    def refund(self, booking: Booking, amount) -> RefundResult:
        """Ask the gateway to refund `amount` (major units) of the booking's stored transaction.

        Never raises and never touches local state; the caller decides what a
        falsy result means.
        """
        try:
            transaction_id = booking.get_transaction().get("id")
            if not transaction_id:
                raise NoTransactionError(f"Booking {booking.id} has no stored transaction")
            credentials = school_credentials(booking.school)
            response = self.gateway.refund(credentials, int(transaction_id), to_minor(amount))
            if response.status not in REFUND_OK_STATUSES:
                raise RefundRejectedError(response.status)
        except Exception as exc:
            self.log.error("refund failed", extra={"booking_id": booking.id, "amount": str(amount)}, exc_info=True)
            return RefundResult(ok=False, status=getattr(exc, "status", None), error=str(exc))

        self.log.info("refund accepted", extra={"booking_id": booking.id, "amount": str(amount),
                                                "refund_status": response.status})
        return RefundResult(ok=True, status=response.status)

    def refund_and_record(self, booking: Booking, amount, actor: str = "system") -> RefundResult:
        """Refund through the gateway and, on success, book it locally in one commit."""
        amount = Decimal(str(amount)).quantize(CENT)
        if amount <= 0:
            return RefundResult(ok=False, error="Refund amount must be positive")
        if amount > Decimal(booking.price_total or 0):
            return RefundResult(ok=False, error="Amount to refund exceeds total booking price")

        result = self.refund(booking, amount)
        db = self.db
        try:
            if not result:
                log_booking_event(db, booking.id, "refund_failed", actor=actor,
                                  description=f"Refund of {amount} {booking.currency} failed",
                                  details={"status": result.status, "error": result.error})
                db.commit()
                return result

            snapshot = booking.get_transaction()
            snapshot["refundedAmount"] = int(snapshot.get("refundedAmount") or 0) + to_minor(amount)
            booking.set_transaction(snapshot)
            booking.payrexx_refund = True
            record_refund(db, booking, amount, full=result.status == REFUNDED)
            log_booking_event(db, booking.id, "refund", actor=actor,
                              description=f"Refunded {amount} {booking.currency}",
                              details={"status": result.status, "transaction_id": snapshot.get("id")})
            db.commit()
        except Exception:
            db.rollback()
            raise
        return result

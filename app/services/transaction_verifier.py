"""Read-only cross-check of a booking's local Payment rows against the gateway."""
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.booking import Booking
from app.models.payment import Payment
from app.services.gateway import GatewayClient, school_credentials
from app.services.ledger_service import CENT, minor_to_major

log = logging.getLogger("app.payrexx.verify")

TEST_PREFIX = "TEST "

# local Payment.status -> gateway statuses that agree with it
STATUS_MAP = {
    "paid": ("confirmed", "authorized", "captured", "paid", "settled"),
    "refund": ("refunded",),
    "partial_refund": ("partially-refunded", "partially_refunded"),
}


@dataclass
class PaymentCheck:
    payment_id: str
    amount: str
    reference: str
    status: str
    is_test: bool = False
    found: bool = False
    amount_matches: bool = False
    status_matches: bool = False
    gateway_amount: str | None = None
    gateway_status: str | None = None
    issues: list[str] = field(default_factory=list)


@dataclass
class VerificationReport:
    booking_id: str
    overall_status: str = "no_payrexx_payments"
    total_payments: int = 0
    found: int = 0
    missing: int = 0
    amount_discrepancies: int = 0
    test_transactions: int = 0
    payments: list[PaymentCheck] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def overall_status(report: VerificationReport) -> str:
    if report.total_payments == 0:
        return "no_payrexx_payments"
    if report.test_transactions == report.total_payments:
        return "all_test_transactions"
    if report.missing > report.found:
        return "critical_missing_transactions"
    if report.missing:
        return "missing_transactions"
    if report.amount_discrepancies:
        return "amount_mismatches"
    return "all_verified"


class TransactionVerifier:
    def __init__(self, db: Session, gateway: GatewayClient, logger: logging.Logger | None = None):
        self.db = db
        self.gateway = gateway
        self.log = logger or log

    def verify_booking(self, booking: Booking) -> VerificationReport:
        report = VerificationReport(booking_id=booking.id)
        school = booking.school
        if school is None or not school.has_payrexx_credentials:
            report.overall_status = "no_payrexx_credentials"
            return report

        try:
            credentials = school_credentials(school)
            payments = self.db.execute(
                select(Payment)
                .where(Payment.booking_id == booking.id, Payment.payrexx_reference.isnot(None))
                .order_by(Payment.created_at.asc())
            ).scalars().all()
            report.total_payments = len(payments)

            for payment in payments:
                check = PaymentCheck(
                    payment_id=payment.id,
                    amount=str(payment.amount),
                    reference=payment.payrexx_reference,
                    status=payment.status,
                )
                report.payments.append(check)

                if payment.payrexx_reference.startswith(TEST_PREFIX):
                    check.is_test = True
                    check.issues.append("test_transaction_not_verified")
                    report.test_transactions += 1
                    continue

                tx = self._fetch(credentials, payment)
                if tx is None:
                    check.issues.append("not_found_in_payrexx")
                    report.missing += 1
                    continue

                check.found = True
                report.found += 1
                check.gateway_status = tx.status
                check.status_matches = tx.status.lower() in STATUS_MAP.get(payment.status, ())
                if tx.total_amount is not None:
                    gateway_amount = minor_to_major(tx.total_amount)
                    check.gateway_amount = str(gateway_amount)
                    # refund rows carry the refunded amount, not the transaction total
                    if payment.status == "paid":
                        check.amount_matches = abs(Decimal(payment.amount) - gateway_amount) < CENT
                    else:
                        check.amount_matches = True
                if not check.amount_matches:
                    check.issues.append("amount_mismatch")
                    report.amount_discrepancies += 1
                if not check.status_matches:
                    check.issues.append("status_mismatch")

            report.overall_status = overall_status(report)
        except Exception as exc:
            self.log.error("payrexx verification failed", extra={"booking_id": booking.id}, exc_info=True)
            report.overall_status = "error"
            report.error = str(exc)
        return report

    def _fetch(self, credentials, payment: Payment):
        snapshot = payment.get_transaction()
        transaction_id = snapshot.get("id")
        if not transaction_id:
            return None
        try:
            return self.gateway.retrieve_transaction(credentials, int(transaction_id))
        except Exception:
            self.log.warning("transaction lookup failed",
                             extra={"payment_id": payment.id, "transaction_id": transaction_id}, exc_info=True)
            return None

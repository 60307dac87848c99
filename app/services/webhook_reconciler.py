"""Convergence point for gateway notifications.

Deliveries are at-least-once and unordered. `paid` / `payed`, re-read under a
row lock after the authoritative fetch, is the only gate against double
settlement. Nothing is written unless the gateway itself confirms the
transaction.
"""
import logging
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.errors import ReconciliationTargetNotFoundError, TransactionFetchError
from app.models.booking import Booking, GATEWAY_PAYMENT_METHODS, PaymentMethod
from app.models.client import Client
from app.models.voucher import Voucher
from app.services.booking_log_service import log_booking_event
from app.services.booking_service import resurrect_booking
from app.services.email_service import booking_paid_email, enqueue_email, voucher_paid_email
from app.services.gateway import CONFIRMED, GatewayClient, GatewayTransaction, school_credentials
from app.services.ledger_service import (
    minor_to_major,
    record_payment,
    settle_pending_voucher_logs,
    transaction_snapshot,
)

log = logging.getLogger("app.payrexx.webhook")


class Outcome(str, Enum):
    IGNORED = "ignored"
    ALREADY_SETTLED = "already_settled"
    BOOKING_PAID = "booking_paid"
    VOUCHER_PAID = "voucher_paid"


def _booking_settled(booking: Booking) -> bool:
    return bool(booking.paid) or booking.payment_method_id not in GATEWAY_PAYMENT_METHODS


class WebhookReconciler:
    def __init__(self, db: Session, gateway: GatewayClient, clock: Clock = system_clock,
                 logger: logging.Logger | None = None):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.log = logger or log
        # outbox rows committed by the last reconcile(); dispatched after the HTTP response
        self.queued_email_ids: list[str] = []

    def reconcile(self, payload: dict) -> Outcome:
        """Apply one notification. Raises on anything that should be looked at by a human."""
        self.queued_email_ids = []
        transaction = payload.get("transaction") if isinstance(payload, dict) else None
        if not isinstance(transaction, dict) or transaction.get("status") != CONFIRMED:
            self.log.info("ignoring notification that is not a confirmation")
            return Outcome.IGNORED

        reference = str(transaction.get("referenceId") or "").strip()
        if len(reference) <= 2:
            raise ReconciliationTargetNotFoundError(reference)

        # no lifecycle filter: a cancelled booking must still be found so a late payment can resurrect it
        booking = self.db.execute(
            select(Booking).where(Booking.payrexx_reference == reference)
        ).scalar_one_or_none()
        if booking is not None:
            return self._settle_booking(booking, transaction, reference)

        voucher = self.db.execute(
            select(Voucher).where(Voucher.payrexx_reference == reference)
        ).scalar_one_or_none()
        if voucher is not None:
            return self._settle_voucher(voucher, transaction, reference)

        raise ReconciliationTargetNotFoundError(reference)

    def _fetch_confirmed(self, school, transaction: dict, reference: str) -> tuple[int, GatewayTransaction]:
        credentials = school_credentials(school)
        try:
            transaction_id = int(transaction.get("id"))
        except (TypeError, ValueError):
            raise TransactionFetchError(f"Notification for {reference!r} has no usable transaction id")
        try:
            tx = self.gateway.retrieve_transaction(credentials, transaction_id)
        except Exception as exc:
            raise TransactionFetchError(f"Could not fetch transaction {transaction_id}: {exc}") from exc
        if tx is None:
            raise TransactionFetchError(f"Transaction {transaction_id} not found at gateway")
        if tx.status != CONFIRMED:
            raise TransactionFetchError(
                f"Transaction {transaction_id} is {tx.status!r} at gateway, notification claimed confirmed"
            )
        return transaction_id, tx

    def _webhook_amount(self, transaction: dict) -> int | None:
        try:
            return int(transaction.get("amount"))
        except (TypeError, ValueError):
            return None

    def _settle_booking(self, booking: Booking, transaction: dict, reference: str) -> Outcome:
        if _booking_settled(booking):
            self.log.info("booking already settled", extra={"booking_id": booking.id, "reference": reference})
            return Outcome.ALREADY_SETTLED

        transaction_id, tx = self._fetch_confirmed(booking.school, transaction, reference)

        db = self.db
        try:
            locked = db.execute(
                select(Booking)
                .where(Booking.id == booking.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            if _booking_settled(locked):
                db.rollback()
                self.log.info("booking settled concurrently", extra={"booking_id": locked.id, "reference": reference})
                return Outcome.ALREADY_SETTLED

            was_cancelled = locked.is_cancelled
            restored = resurrect_booking(locked)

            debited = Decimal("0")
            web_voucher_checkout = (
                locked.payment_method_id == PaymentMethod.BOUKII_PAY and locked.source == "web"
            )
            if web_voucher_checkout:
                debited = settle_pending_voucher_logs(db, locked)

            now = self.clock.now()
            snapshot = transaction_snapshot(tx, transaction_id, reference, self._webhook_amount(transaction),
                                            fallback_time=now.isoformat())
            amount = minor_to_major(snapshot["totalAmount"])
            locked.paid = True
            locked.set_transaction(snapshot)
            locked.paid_total = Decimal(locked.paid_total or 0) + amount
            record_payment(db, locked, snapshot, amount)
            log_booking_event(
                db, locked.id, "payrexx_paid", actor="payrexx",
                description=f"Payment of {amount} {locked.currency} confirmed",
                details={"transaction_id": transaction_id, "resurrected": was_cancelled,
                         "booking_users_restored": restored, "voucher_debited": str(debited)},
            )

            email_ids = []
            if web_voucher_checkout:
                email_id = self._enqueue_buyer_email(locked)
                if email_id:
                    email_ids.append(email_id)

            db.commit()
        except Exception:
            db.rollback()
            raise

        self.queued_email_ids = email_ids
        self.log.info("booking paid", extra={"booking_id": locked.id, "reference": reference,
                                             "transaction_id": transaction_id, "amount": str(amount)})
        return Outcome.BOOKING_PAID

    def _settle_voucher(self, voucher: Voucher, transaction: dict, reference: str) -> Outcome:
        if voucher.payed:
            self.log.info("voucher already settled", extra={"voucher_id": voucher.id, "reference": reference})
            return Outcome.ALREADY_SETTLED

        transaction_id, tx = self._fetch_confirmed(voucher.school, transaction, reference)

        db = self.db
        try:
            locked = db.execute(
                select(Voucher)
                .where(Voucher.id == voucher.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            if locked.payed:
                db.rollback()
                return Outcome.ALREADY_SETTLED

            snapshot = transaction_snapshot(tx, transaction_id, reference, self._webhook_amount(transaction),
                                            fallback_time=self.clock.now().isoformat())
            locked.payed = True
            locked.set_transaction(snapshot)

            email_ids = []
            buyer = db.get(Client, locked.client_id) if locked.client_id else None
            if buyer is not None and buyer.email:
                subject, body = voucher_paid_email(locked.school, locked, buyer)
                email_ids.append(enqueue_email(db, buyer.email, subject, body, related_reference=reference))

            db.commit()
        except Exception:
            db.rollback()
            raise

        self.queued_email_ids = email_ids
        self.log.info("voucher paid", extra={"voucher_id": locked.id, "reference": reference,
                                             "transaction_id": transaction_id})
        return Outcome.VOUCHER_PAID

    def _enqueue_buyer_email(self, booking: Booking) -> str | None:
        buyer = self.db.get(Client, booking.client_main_id) if booking.client_main_id else None
        if buyer is None or not buyer.email:
            self.log.info("no buyer email for paid booking", extra={"booking_id": booking.id})
            return None
        subject, body = booking_paid_email(booking.school, booking, buyer)
        return enqueue_email(self.db, buyer.email, subject, body, related_reference=booking.payrexx_reference or "")


def process_notification(db: Session, gateway: GatewayClient, payload: dict, clock: Clock = system_clock,
                         logger: logging.Logger | None = None) -> list[str]:
    """Top-level webhook handling: never raises. Returns outbox ids to dispatch after the response."""
    logger = logger or log
    reconciler = WebhookReconciler(db, gateway, clock=clock, logger=logger)
    try:
        reconciler.reconcile(payload)
    except Exception:
        transaction = payload.get("transaction") if isinstance(payload, dict) else None
        reference = transaction.get("referenceId") if isinstance(transaction, dict) else None
        logger.exception("payrexx notification not reconciled", extra={"reference": reference})
        return []
    return reconciler.queued_email_ids

"""Settlement bookkeeping shared by the webhook reconciler and the refund flow.

Nothing here commits: callers own the unit of work.
"""
import json
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.booking import Booking
from app.models.payment import Payment
from app.models.voucher import Voucher
from app.models.voucher_log import PENDING, VoucherLog
from app.services.gateway import GatewayTransaction

CENT = Decimal("0.01")


def minor_to_major(amount: int) -> Decimal:
    return (Decimal(int(amount)) / 100).quantize(CENT)


def transaction_snapshot(tx: GatewayTransaction, transaction_id: int, reference: str,
                         webhook_amount: int | None, fallback_time: str | None = None) -> dict:
    """Normalized transaction facts stored on the booking/voucher.

    The webhook amount is only used when the verified transaction carries no
    invoice total.
    """
    total = tx.total_amount if tx.total_amount is not None else webhook_amount
    return {
        "id": transaction_id,
        "time": tx.time or fallback_time,
        "totalAmount": int(total or 0),
        "refundedAmount": int(tx.refunded_amount or 0),
        "currency": tx.currency,
        "brand": tx.brand,
        "referenceId": reference,
    }


def record_payment(db: Session, booking: Booking, snapshot: dict, amount: Decimal) -> Payment:
    payment = Payment(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        school_id=booking.school_id,
        amount=amount,
        status="paid",
        payrexx_reference=snapshot.get("referenceId"),
        payrexx_transaction=json.dumps(snapshot),
    )
    db.add(payment)
    return payment


def record_refund(db: Session, booking: Booking, amount: Decimal, full: bool) -> Payment:
    payment = Payment(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        school_id=booking.school_id,
        amount=amount,
        status="refund" if full else "partial_refund",
        notes="payrexx refund",
        payrexx_reference=booking.payrexx_reference,
        payrexx_transaction=booking.payrexx_transaction,
    )
    db.add(payment)
    return payment


def settle_pending_voucher_logs(db: Session, booking: Booking) -> Decimal:
    """Debit every voucher reserved by this booking and clear its pending log.

    Returns the total debited across vouchers.
    """
    logs = db.execute(
        select(VoucherLog)
        .where(VoucherLog.booking_id == booking.id, VoucherLog.status == PENDING)
        .with_for_update()
    ).scalars().all()
    debited = Decimal("0")
    for log in logs:
        voucher = db.execute(
            select(Voucher).where(Voucher.id == log.voucher_id).with_for_update()
        ).scalar_one_or_none()
        if voucher is None:
            continue
        amount = abs(Decimal(log.amount))
        voucher.remaining_balance = Decimal(voucher.remaining_balance) - amount
        log.status = None
        debited += amount
    return debited


def expected_remaining_balance(db: Session, voucher: Voucher) -> Decimal:
    """Face value minus every cleared debit; must equal remaining_balance."""
    cleared = db.execute(
        select(VoucherLog.amount).where(VoucherLog.voucher_id == voucher.id, VoucherLog.status.is_(None))
    ).scalars().all()
    return Decimal(voucher.quantity) - sum((abs(Decimal(a)) for a in cleared), Decimal("0"))

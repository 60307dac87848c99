from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.models.booking import Booking, BookingStatus
from app.models.booking_user import BookingUser
from app.models.voucher import Voucher


def _with_env_prefix(ref: str) -> str:
    return ref if settings.is_production else f"TEST {ref}"


def get_or_generate_reference(db: Session, booking: Booking) -> str:
    """Stamp the gateway reference once; later calls return the stored value."""
    if not booking.payrexx_reference:
        booking.payrexx_reference = _with_env_prefix(f"Boukii #{booking.id}")
        db.commit()
    return booking.payrexx_reference


def get_or_generate_voucher_reference(db: Session, voucher: Voucher) -> str:
    if not voucher.payrexx_reference:
        voucher.payrexx_reference = _with_env_prefix(f"Boukii Voucher #{voucher.id}")
        db.commit()
    return voucher.payrexx_reference


def derive_booking_status(booking: Booking) -> int:
    """Recompute Booking.status from the cancel state of its participants.

    All participants cancelled -> ALL_CANCELLED; live booking with some
    cancelled -> SOME_CANCELLED; live booking with none cancelled -> CONFIRMED.
    A cancelled booking with live participants keeps its current status.
    Re-running on unchanged participants never changes the result.
    """
    users = list(booking.booking_users)
    cancelled = [u for u in users if u.is_cancelled]
    if users and len(cancelled) == len(users):
        booking.status = BookingStatus.ALL_CANCELLED
    elif not booking.is_cancelled and cancelled:
        booking.status = BookingStatus.SOME_CANCELLED
    elif not booking.is_cancelled:
        booking.status = BookingStatus.CONFIRMED
    return booking.status


def cancel_booking_user(db: Session, booking_user: BookingUser, clock: Clock = system_clock) -> Booking:
    booking_user.cancel(clock.now())
    booking = booking_user.booking
    derive_booking_status(booking)
    db.commit()
    return booking


def cancel_booking(db: Session, booking: Booking, clock: Clock = system_clock) -> Booking:
    """Optimistic cancel (e.g. unpaid web checkout abandoned); a late payment may resurrect it."""
    now = clock.now()
    for bu in booking.booking_users:
        if not bu.is_cancelled:
            bu.cancel(now)
    booking.cancel(now)
    derive_booking_status(booking)
    db.commit()
    return booking


def resurrect_booking(booking: Booking) -> int:
    """Undo a cancel of the booking and its cancelled participants. Returns participants restored.

    A live booking is left as is: participants cancelled on it stay cancelled.
    """
    if not booking.is_cancelled:
        return 0
    booking.resurrect()
    restored = 0
    for bu in booking.booking_users:
        if bu.is_cancelled:
            bu.resurrect()
            restored += 1
    derive_booking_status(booking)
    return restored

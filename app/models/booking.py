import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import IntEnum

from sqlalchemy import String, Integer, DateTime, Boolean, Numeric, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base
from app.models.lifecycle import Lifecycle


class PaymentMethod(IntEnum):
    CASH = 1
    BOUKII_PAY = 2     # gateway, may be topped up with vouchers on the web shop
    ONLINE = 3         # gateway link sent to the client
    OTHER = 4
    NO_PAYMENT = 5


GATEWAY_PAYMENT_METHODS = (PaymentMethod.BOUKII_PAY, PaymentMethod.ONLINE)


class BookingStatus(IntEnum):
    CONFIRMED = 0
    SOME_CANCELLED = 2
    ALL_CANCELLED = 3


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    school_id: Mapped[str] = mapped_column(ForeignKey("schools.id"), index=True)
    client_main_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    price_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="CHF")
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    payment_method_id: Mapped[int] = mapped_column(Integer, default=PaymentMethod.CASH)

    payrexx_reference: Mapped[str | None] = mapped_column(String(120), unique=True, index=True, nullable=True)
    payrexx_transaction: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON snapshot, overwritten wholesale
    payrexx_refund: Mapped[bool] = mapped_column(Boolean, default=False)

    source: Mapped[str] = mapped_column(String(20), default="panel")  # web, panel, app
    status: Mapped[int] = mapped_column(Integer, default=BookingStatus.CONFIRMED)

    lifecycle: Mapped[str] = mapped_column(String(12), default=Lifecycle.ACTIVE.value)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    school = relationship("School")
    booking_users = relationship("BookingUser", back_populates="booking", order_by="BookingUser.id")
    vouchers_logs = relationship("VoucherLog", back_populates="booking")

    @property
    def is_cancelled(self) -> bool:
        return self.lifecycle == Lifecycle.CANCELLED.value

    def cancel(self, now: datetime) -> None:
        self.lifecycle = Lifecycle.CANCELLED.value
        self.deleted_at = now

    def resurrect(self) -> None:
        """Undo an optimistic cancel; the booking is a live sale again."""
        self.lifecycle = Lifecycle.ACTIVE.value
        self.deleted_at = None

    def get_transaction(self) -> dict:
        if not self.payrexx_transaction:
            return {}
        try:
            return json.loads(self.payrexx_transaction)
        except (json.JSONDecodeError, TypeError):
            return {}

    def set_transaction(self, snapshot: dict) -> None:
        self.payrexx_transaction = json.dumps(snapshot)

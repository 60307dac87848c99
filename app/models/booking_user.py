from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Integer, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base
from app.models.lifecycle import Lifecycle


class BookingUser(Base):
    """One participant slot of a Booking; cancelled independently of its Booking."""
    __tablename__ = "booking_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.id"), index=True)
    client_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    status: Mapped[int] = mapped_column(Integer, default=1)  # 1 active, 2 cancelled

    lifecycle: Mapped[str] = mapped_column(String(12), default=Lifecycle.ACTIVE.value)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    booking = relationship("Booking", back_populates="booking_users")

    @property
    def is_cancelled(self) -> bool:
        return self.lifecycle == Lifecycle.CANCELLED.value

    def cancel(self, now: datetime) -> None:
        self.lifecycle = Lifecycle.CANCELLED.value
        self.deleted_at = now
        self.status = 2

    def resurrect(self) -> None:
        self.lifecycle = Lifecycle.ACTIVE.value
        self.deleted_at = None
        self.status = 1

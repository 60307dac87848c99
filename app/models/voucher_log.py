from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base

PENDING = "pending"


class VoucherLog(Base):
    __tablename__ = "vouchers_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    voucher_id: Mapped[str] = mapped_column(ForeignKey("vouchers.id"), index=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # debits stored negative
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)  # pending | NULL (cleared)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    voucher = relationship("Voucher", back_populates="vouchers_logs")
    booking = relationship("Booking", back_populates="vouchers_logs")

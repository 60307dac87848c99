import json
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base

class Payment(Base):
    """Append-only settlement row; never updated after insert."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.id"), index=True)
    school_id: Mapped[str] = mapped_column(String(36), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    status: Mapped[str] = mapped_column(String(20), default="paid")  # paid, refund, partial_refund
    notes: Mapped[str] = mapped_column(String(255), default="")
    payrexx_reference: Mapped[str | None] = mapped_column(String(120), index=True, nullable=True)
    payrexx_transaction: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def get_transaction(self) -> dict:
        if not self.payrexx_transaction:
            return {}
        try:
            return json.loads(self.payrexx_transaction)
        except (json.JSONDecodeError, TypeError):
            return {}

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base

class School(Base):
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    payrexx_instance: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payrexx_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bookings_comission_cash: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)  # sent as gateway VAT rate
    conditions_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def has_payrexx_credentials(self) -> bool:
        return bool((self.payrexx_instance or "").strip() and (self.payrexx_key or "").strip())

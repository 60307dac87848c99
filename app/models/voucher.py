import json
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Boolean, Numeric, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


class Voucher(Base):
    __tablename__ = "vouchers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2))            # face value
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    payed: Mapped[bool] = mapped_column(Boolean, default=False)

    client_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    school_id: Mapped[str] = mapped_column(ForeignKey("schools.id"), index=True)

    payrexx_reference: Mapped[str | None] = mapped_column(String(120), unique=True, index=True, nullable=True)
    payrexx_transaction: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    school = relationship("School")
    vouchers_logs = relationship("VoucherLog", back_populates="voucher")

    def get_transaction(self) -> dict:
        if not self.payrexx_transaction:
            return {}
        try:
            return json.loads(self.payrexx_transaction)
        except (json.JSONDecodeError, TypeError):
            return {}

    def set_transaction(self, snapshot: dict) -> None:
        self.payrexx_transaction = json.dumps(snapshot)

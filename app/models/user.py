from sqlalchemy import String, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

STAFF_ROLES = ("ops", "finance", "admin", "superadmin")

class User(Base):
    """Back-office staff login."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(200), default="")
    role: Mapped[str] = mapped_column(String(30), index=True)  # ops, finance, admin, superadmin
    school_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)  # None = all schools
    password_hash: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def can_access_school(self, school_id: str) -> bool:
        return self.role == "superadmin" or self.school_id is None or self.school_id == school_id

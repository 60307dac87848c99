import uuid, json
from sqlalchemy.orm import Session
from app.models.booking_log import BookingLog

def log_booking_event(db: Session, booking_id: str, action: str, actor: str = "system",
                      description: str = "", details: dict | None = None) -> None:
    """Append an audit row; committed by the caller's unit of work."""
    db.add(BookingLog(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        action=action,
        actor=actor,
        description=description,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

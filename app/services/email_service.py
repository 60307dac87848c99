import base64
import logging
import smtplib
import uuid
from email.message import EmailMessage

import requests
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.db.session import SessionLocal
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)


def enqueue_email(db: Session, to_email: str, subject: str, body: str, related_reference: str = "") -> str:
    """Add a queued outbox row to the caller's transaction. Nothing is sent until dispatch."""
    eid = str(uuid.uuid4())
    db.add(
        EmailLog(
            id=eid,
            to_email=to_email,
            subject=subject,
            body=body,
            status="queued",
            related_reference=related_reference,
        )
    )
    return eid


def queue_email(db: Session, to_email: str, subject: str, body: str, related_reference: str = "",
                clock: Clock = system_clock) -> str:
    """Queue and attempt immediate send. Body is stored so the worker can retry on failure."""
    eid = enqueue_email(db, to_email, subject, body, related_reference)
    db.commit()
    _deliver(db, db.get(EmailLog, eid), clock)
    db.commit()
    return eid


def _deliver(db: Session, log: EmailLog | None, clock: Clock = system_clock) -> bool:
    if log is None:
        return False
    log.attempts = (log.attempts or 0) + 1
    try:
        send_email(log.to_email, log.subject, log.body or "", attachments=[])
    except Exception:
        # Some buyers enter unreachable addresses; the worker retries, the caller never sees it.
        logger.warning("email send failed", extra={"email_id": log.id, "to": log.to_email}, exc_info=True)
        log.status = "failed"
        return False
    log.status = "sent"
    log.sent_at = clock.now()
    return True


def dispatch_emails(email_ids: list[str], clock: Clock = system_clock) -> dict:
    """Send outbox rows after the HTTP response; runs with its own session."""
    if not email_ids:
        return {"sent": 0, "failed": 0}
    db: Session = SessionLocal()
    sent, failed = 0, 0
    try:
        for eid in email_ids:
            log = db.get(EmailLog, eid)
            if log is None or log.status == "sent":
                continue
            if _deliver(db, log, clock):
                sent += 1
            else:
                failed += 1
            db.commit()
    except Exception:
        db.rollback()
        logger.exception("email dispatch aborted", extra={"email_ids": email_ids})
    finally:
        db.close()
    return {"sent": sent, "failed": failed}


def send_email(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body, attachments)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    for filename, content, mime in attachments:
        maintype, subtype = (mime.split("/", 1) + ["octet-stream"])[:2]
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    if attachments:
        payload["attachments"] = [
            {
                "content": base64.b64encode(content).decode("utf-8"),
                "type": mime,
                "filename": filename,
                "disposition": "attachment",
            }
            for filename, content, mime in attachments
        ]

    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50, clock: Clock = system_clock) -> dict:
    """Process up to `limit` queued or failed emails; retry send and update status. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(EmailLog.status.in_(["queued", "failed"]), EmailLog.body.isnot(None), EmailLog.body != "")
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        if _deliver(db, log, clock):
            sent += 1
        else:
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}


# Message bodies

def booking_paid_email(school, booking, buyer) -> tuple[str, str]:
    subject = f"{school.name}: booking confirmed"
    name = f"{buyer.first_name} {buyer.last_name}".strip() or "Hello"
    body = (
        f"{name},\n\n"
        f"Your payment for booking {booking.payrexx_reference} was received.\n"
        f"Total paid: {booking.paid_total} {booking.currency}\n\n"
        f"{school.name}\n"
    )
    return subject, body


def voucher_paid_email(school, voucher, buyer) -> tuple[str, str]:
    subject = f"{school.name}: your voucher {voucher.code}"
    name = f"{buyer.first_name} {buyer.last_name}".strip() or "Hello"
    body = (
        f"{name},\n\n"
        f"Your payment for voucher {voucher.code} was received.\n"
        f"Value: {voucher.quantity} {settings.DEFAULT_CURRENCY}\n\n"
        f"{school.name}\n"
    )
    return subject, body


def pay_link_email(school, booking, buyer, link: str) -> tuple[str, str]:
    subject = f"{school.name}: payment for booking {booking.payrexx_reference}"
    name = f"{buyer.first_name} {buyer.last_name}".strip() or "Hello"
    body = (
        f"{name},\n\n"
        f"Please complete the payment of {booking.price_total} {booking.currency} here:\n"
        f"{link}\n\n"
        f"{school.name}\n"
    )
    return subject, body

from __future__ import annotations
import json
import re
from urllib.parse import parse_qsl

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_gateway, require_staff
from app.core.clock import Clock
from app.db.session import get_db
from app.models.booking import Booking
from app.models.client import Client
from app.models.user import User
from app.models.voucher import Voucher
from app.schemas.payments import (
    FinishStatus,
    PaymentLinkOut,
    PaymentLinkRequest,
    RefundOut,
    RefundRequest,
    VoucherPaymentLinkRequest,
)
from app.services.email_service import dispatch_emails
from app.services.gateway import GatewayClient
from app.services.gateway_session_service import GatewaySessionService
from app.services.refund_service import RefundService
from app.services.transaction_verifier import TransactionVerifier
from app.services.webhook_reconciler import process_notification

router = APIRouter(tags=["payments"])

_KEY_PART = re.compile(r"[^\[\]]+")


def unflatten_form(pairs: list[tuple[str, str]]) -> dict:
    """transaction[invoice][amount]=100 -> {"transaction": {"invoice": {"amount": "100"}}}"""
    out: dict = {}
    for key, value in pairs:
        parts = _KEY_PART.findall(key)
        if not parts:
            continue
        node = out
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return out


def parse_notification(body: bytes, content_type: str) -> dict:
    """The gateway posts form-encoded bodies; JSON is accepted too. Unparseable bodies become {}."""
    text = body.decode("utf-8", errors="replace").strip()
    if "json" in content_type or text.startswith("{"):
        try:
            data = json.loads(text or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return unflatten_form(parse_qsl(text, keep_blank_values=True))


@router.post("/payrexx/notification", response_class=PlainTextResponse)
async def payrexx_notification(request: Request, background_tasks: BackgroundTasks,
                               db: Session = Depends(get_db),
                               gateway: GatewayClient = Depends(get_gateway),
                               clock: Clock = Depends(get_clock)):
    body = await request.body()
    payload = parse_notification(body, request.headers.get("content-type", ""))
    # gateway fetch and row locks are blocking; keep them off the event loop
    email_ids = await run_in_threadpool(process_notification, db, gateway, payload, clock=clock)
    if email_ids:
        background_tasks.add_task(dispatch_emails, email_ids, clock=clock)
    return "OK"


@router.get("/payrexx/finish", response_class=PlainTextResponse)
def payrexx_finish(status: FinishStatus = "success"):
    """Landing page for the "app" redirect target; the mobile app closes its webview on it."""
    return f"Payrexx close {status}"


def _booking_for(db: Session, booking_id: str, user: User) -> Booking:
    b = db.get(Booking, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Booking not found")
    if not user.can_access_school(b.school_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    return b


def _buyer(db: Session, client_id: str | None) -> Client | None:
    return db.get(Client, client_id) if client_id else None


@router.post("/ops/bookings/{booking_id}/payment-link", response_model=PaymentLinkOut)
def booking_payment_link(booking_id: str, body: PaymentLinkRequest,
                         db: Session = Depends(get_db),
                         gateway: GatewayClient = Depends(get_gateway),
                         clock: Clock = Depends(get_clock),
                         user: User = Depends(require_staff)):
    b = _booking_for(db, booking_id, user)
    if b.paid:
        raise HTTPException(status_code=409, detail="Booking is already paid")
    result = GatewaySessionService(db, gateway, clock=clock).create_booking_session(
        b.school, b, body.basket, buyer=_buyer(db, b.client_main_id), redirect_to=body.redirectTo,
    )
    return PaymentLinkOut(ok=bool(result), url=result.url, error=result.error)


@router.post("/ops/bookings/{booking_id}/send-pay-link")
def booking_send_pay_link(booking_id: str, body: PaymentLinkRequest,
                          db: Session = Depends(get_db),
                          gateway: GatewayClient = Depends(get_gateway),
                          clock: Clock = Depends(get_clock),
                          user: User = Depends(require_staff)):
    b = _booking_for(db, booking_id, user)
    if b.paid:
        raise HTTPException(status_code=409, detail="Booking is already paid")
    sent = GatewaySessionService(db, gateway, clock=clock).send_pay_link(
        b.school, b, body.basket, _buyer(db, b.client_main_id), redirect_to=body.redirectTo, actor=user.email,
    )
    return {"ok": sent}


@router.post("/ops/vouchers/{voucher_id}/payment-link", response_model=PaymentLinkOut)
def voucher_payment_link(voucher_id: str, body: VoucherPaymentLinkRequest,
                         db: Session = Depends(get_db),
                         gateway: GatewayClient = Depends(get_gateway),
                         clock: Clock = Depends(get_clock),
                         user: User = Depends(require_staff)):
    v = db.get(Voucher, voucher_id)
    if not v:
        raise HTTPException(status_code=404, detail="Voucher not found")
    if not user.can_access_school(v.school_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    if v.payed:
        raise HTTPException(status_code=409, detail="Voucher is already paid")
    result = GatewaySessionService(db, gateway, clock=clock).create_voucher_session(
        v.school, v, buyer=_buyer(db, v.client_id), redirect_to=body.redirectTo,
    )
    return PaymentLinkOut(ok=bool(result), url=result.url, error=result.error)


@router.post("/ops/bookings/{booking_id}/refund", response_model=RefundOut)
def booking_refund(booking_id: str, body: RefundRequest,
                   db: Session = Depends(get_db),
                   gateway: GatewayClient = Depends(get_gateway),
                   clock: Clock = Depends(get_clock),
                   user: User = Depends(require_staff)):
    b = _booking_for(db, booking_id, user)
    if not b.paid:
        raise HTTPException(status_code=409, detail="Booking is not paid")
    if body.amount > b.price_total:
        raise HTTPException(status_code=400, detail="Amount to refund exceeds total booking price")
    result = RefundService(db, gateway, clock=clock).refund_and_record(b, body.amount, actor=user.email)
    if not result:
        raise HTTPException(status_code=502, detail=result.error or "Refund failed")
    return RefundOut(ok=True, status=result.status)


@router.get("/ops/bookings/{booking_id}/payrexx-verification")
def booking_payrexx_verification(booking_id: str,
                                 db: Session = Depends(get_db),
                                 gateway: GatewayClient = Depends(get_gateway),
                                 user: User = Depends(require_staff)):
    b = _booking_for(db, booking_id, user)
    return TransactionVerifier(db, gateway).verify_booking(b).as_dict()

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from agromarket.errors import ValidationError
from agromarket.extensions import db
from agromarket.integrations.payments.callbacks import parse_stk_callback, parse_transaction_date
from agromarket.ledger import KINDS, PaymentStatus, order_source_status
from agromarket.models import ORDER_MODELS, WebhookEvent
from agromarket.services.escrow_service import EscrowStatus, transition_escrow
from agromarket.services.notification_service import get_notifier
from agromarket.services.timeline_service import record_event
from agromarket.utils.money import minor_to_whole_units

PROVIDER = "mpesa"

ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Accepted"}

UNKNOWN_ORDER = "unknown_checkout_request_id"

# A received row older than this is treated as abandoned by a crashed worker.
RECEIVED_LEASE_SECONDS = 300


def _payload_hash(payload) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def find_order_by_checkout(checkout_request_id: str):
    # Retail first, then bulk; checkout ids are unique per gateway so at most one matches.
    for kind in KINDS:
        order = ORDER_MODELS[kind].query.filter_by(checkout_request_id=checkout_request_id).first()
        if order is not None:
            return order
    return None


def _claim_event(cb, payload, request_id: str | None):
    """Insert the event row; returns None when this callback was already handled.

    An existing row is taken over again when its last attempt failed, when it
    arrived before its order existed, or when a worker claimed it and never
    finished within the lease.
    """
    now = datetime.utcnow()
    event = WebhookEvent(
        provider=PROVIDER,
        event_id=cb.checkout_request_id,
        result_code=int(cb.result_code),
        status="received",
        claimed_at=now,
        request_id=(request_id or "")[:64] or None,
        payload_hash=_payload_hash(payload),
        payload_json=json.dumps(payload, separators=(",", ":"), default=str)[:20000],
    )
    try:
        db.session.add(event)
        db.session.commit()
        return event
    except IntegrityError:
        db.session.rollback()

    stale_before = now - timedelta(seconds=RECEIVED_LEASE_SECONDS)
    reopened = (
        WebhookEvent.query
        .filter(
            WebhookEvent.provider == PROVIDER,
            WebhookEvent.event_id == cb.checkout_request_id,
            or_(
                WebhookEvent.status == "failed",
                and_(WebhookEvent.status == "ignored", WebhookEvent.error == UNKNOWN_ORDER),
                and_(
                    WebhookEvent.status == "received",
                    or_(WebhookEvent.claimed_at.is_(None), WebhookEvent.claimed_at < stale_before),
                ),
            ),
        )
        .update(
            {
                "status": "received",
                "error": None,
                "processed_at": None,
                "claimed_at": now,
                "result_code": event.result_code,
                "payload_hash": event.payload_hash,
                "payload_json": event.payload_json,
            },
            synchronize_session=False,
        )
    )
    if not reopened:
        db.session.rollback()
        return None
    db.session.commit()
    # State changes downstream are conditional so a rerun is safe.
    return WebhookEvent.query.filter_by(provider=PROVIDER, event_id=cb.checkout_request_id).first()


def _apply_success(order, cb, notifier) -> bool:
    v = order.variant
    model = type(order)
    updated = (
        model.query
        .filter_by(
            id=order.id,
            payment_status=PaymentStatus.PENDING,
            order_status=order_source_status(order.kind, v.confirmed_status),
        )
        .update(
            {
                "payment_status": v.held_payment_status,
                "order_status": v.confirmed_status,
                "mpesa_receipt_number": str(cb.item("MpesaReceiptNumber") or "")[:64] or None,
                "mpesa_transaction_date": parse_transaction_date(cb.item("TransactionDate")),
                "mpesa_phone_number": str(cb.item("PhoneNumber") or "")[:32] or None,
                "payment_failure_reason": None,
                "updated_at": datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if not updated:
        return False
    db.session.refresh(order)

    paid = cb.item("Amount")
    expected = minor_to_whole_units(order.total_minor)
    if paid is not None and str(paid) != str(expected):
        current_app.logger.warning(
            "mpesa_amount_mismatch reference=%s expected=%s paid=%s", order.reference, expected, paid
        )

    transition_escrow(
        order,
        EscrowStatus.HELD,
        idempotency_key=f"payment:{cb.checkout_request_id}",
        actor={"type": "gateway"},
        reason=f"receipt={order.mpesa_receipt_number or ''}",
    )
    record_event(order, None, "payment_confirmed", order.mpesa_receipt_number or "")

    for seller_id in order.seller_ids():
        notifier.notify(
            seller_id,
            kind="payment",
            title="Payment Confirmed",
            message=f"Payment for order {order.reference} is confirmed. Accept it to schedule pickup.",
            related_type=order.kind,
            related_id=order.reference,
            dedupe_key=f"payment-confirmed:{order.reference}:{seller_id}",
        )
    if order.buyer_id is not None:
        notifier.notify(
            order.buyer_id,
            kind="payment",
            title="Payment Received",
            message=f"We received your payment for order {order.reference}.",
            related_type=order.kind,
            related_id=order.reference,
            dedupe_key=f"payment-received:{order.reference}",
        )
    return True


def _apply_failure(order, cb, notifier) -> bool:
    model = type(order)
    reason = (cb.result_desc or f"ResultCode {cb.result_code}")[:240]
    updated = (
        model.query
        .filter_by(id=order.id, payment_status=PaymentStatus.PENDING)
        .update(
            {
                "payment_status": PaymentStatus.FAILED,
                "payment_failure_reason": reason,
                "updated_at": datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if not updated:
        return False
    db.session.refresh(order)
    record_event(order, None, "payment_failed", reason)
    if order.buyer_id is not None:
        notifier.notify(
            order.buyer_id,
            kind="payment",
            title="Payment Failed",
            message=f"Payment for order {order.reference} failed: {reason}",
            related_type=order.kind,
            related_id=order.reference,
            dedupe_key=f"payment-failed:{order.reference}",
        )
    return True


def process_stk_callback(payload, *, notifier=None, request_id: str | None = None) -> dict:
    """Settle the order a payment callback refers to. Safe to call repeatedly.

    Returns a small status dict for logging; the HTTP acknowledgement sent
    to the gateway never depends on it.
    """
    try:
        cb = parse_stk_callback(payload)
    except ValidationError as e:
        current_app.logger.warning("mpesa_callback_invalid err=%s", e.message)
        return {"ok": False, "status": "invalid", "error": e.message}

    event = _claim_event(cb, payload, request_id)
    if event is None:
        current_app.logger.info("mpesa_callback_duplicate checkout_request_id=%s", cb.checkout_request_id)
        return {"ok": True, "status": "duplicate", "checkout_request_id": cb.checkout_request_id}

    try:
        order = find_order_by_checkout(cb.checkout_request_id)
        if order is None:
            event.status = "ignored"
            event.error = UNKNOWN_ORDER
            event.processed_at = datetime.utcnow()
            db.session.commit()
            current_app.logger.warning(
                "mpesa_callback_unknown_order checkout_request_id=%s", cb.checkout_request_id
            )
            return {"ok": True, "status": "ignored", "checkout_request_id": cb.checkout_request_id}

        notifier = notifier or get_notifier()
        if cb.succeeded:
            applied = _apply_success(order, cb, notifier)
        else:
            applied = _apply_failure(order, cb, notifier)

        event.order_kind = order.kind
        event.order_reference = order.reference
        event.status = "processed" if applied else "ignored"
        if not applied:
            event.error = f"order_not_pending payment_status={order.payment_status}"
        event.processed_at = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(
            "mpesa_callback_failed checkout_request_id=%s", cb.checkout_request_id
        )
        failed = WebhookEvent.query.filter_by(provider=PROVIDER, event_id=cb.checkout_request_id).first()
        if failed is not None:
            failed.status = "failed"
            failed.error = str(e)[:2000]
            db.session.commit()
        raise

    current_app.logger.info(
        "mpesa_callback_processed checkout_request_id=%s reference=%s result_code=%s applied=%s",
        cb.checkout_request_id,
        order.reference,
        cb.result_code,
        applied,
    )
    return {
        "ok": True,
        "status": event.status,
        "checkout_request_id": cb.checkout_request_id,
        "order_id": order.reference,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
    }

"""Delivery-task lifecycle shared by retail riders and bulk drivers.

Every state change is a single conditional UPDATE whose WHERE clause holds
the precondition, so two callers racing for the same task or scan cannot
both succeed. The per-kind column names come from ``ledger.VARIANTS``.
"""
from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from agromarket.errors import Conflict, Forbidden, InvalidScan, NotFound
from agromarket.extensions import db
from agromarket.ledger import (
    BULK,
    KINDS,
    RETAIL,
    OrderStatus,
    PaymentStatus,
    TaskStatus,
    is_payment_held,
    order_source_status,
    task_source_status,
    variant_for,
)
from agromarket.models import ORDER_MODELS, TASK_MODELS, User
from agromarket.services.escrow_service import EscrowStatus, transition_escrow
from agromarket.services.notification_service import active_courier_ids, get_notifier
from agromarket.services.order_placement_service import get_order
from agromarket.services.timeline_service import record_event
from agromarket.utils.money import money_major_to_minor, money_minor_to_major

PICKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits
PICKUP_CODE_LENGTH = 6
DELIVERY_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5
RECENT_DELIVERIES = 5

_TASK_PREFIX = {RETAIL: "DT", BULK: "BDT"}


def generate_pickup_code() -> str:
    return "".join(secrets.choice(PICKUP_CODE_ALPHABET) for _ in range(PICKUP_CODE_LENGTH))


def generate_delivery_code() -> str:
    return f"{secrets.randbelow(10 ** DELIVERY_CODE_LENGTH):0{DELIVERY_CODE_LENGTH}d}"


def _task_reference(kind: str) -> str:
    return f"{_TASK_PREFIX[kind]}-{uuid.uuid4().hex[:16].upper()}"


def _kinds_for_task_reference(ref: str) -> tuple[str, ...]:
    head = (ref or "").split("-", 1)[0].upper()
    for kind, prefix in _TASK_PREFIX.items():
        if head == prefix:
            return (kind,)
    return KINDS


def _kinds_for_order_reference(ref: str) -> tuple[str, ...]:
    head = (ref or "").split("-", 1)[0].upper()
    for kind in KINDS:
        if head == variant_for(kind).reference_prefix:
            return (kind,)
    return KINDS


def _find_order_any(reference: str):
    ref = (reference or "").strip()
    if not ref:
        return None
    for kind in _kinds_for_order_reference(ref):
        order = ORDER_MODELS[kind].query.filter_by(reference=ref).first()
        if order is not None:
            return order
    return None


def task_for_order(order):
    v = order.variant
    model = TASK_MODELS[order.kind]
    return model.query.filter(getattr(model, v.task_order_field) == int(order.id)).first()


def _delivery_fee_minor(kind: str) -> int:
    key = "BULK_DELIVERY_FEE" if kind == BULK else "RETAIL_DELIVERY_FEE"
    default = 500 if kind == BULK else 100
    return money_major_to_minor(current_app.config.get(key, default))


def _format_address(address: dict) -> str:
    parts = [str(address.get(k) or "").strip() for k in ("street", "city")]
    return ", ".join(p for p in parts if p)


def accept_order(kind: str, order_ref: str, seller, *, notifier=None):
    """Seller acknowledges a paid order and opens a delivery task for couriers."""
    order = get_order(kind, order_ref)
    v = order.variant
    if int(seller.id) not in order.seller_ids():
        raise Forbidden()
    awaiting = order_source_status(order.kind, OrderStatus.QR_SCANNING)
    if (
        order.order_status != awaiting
        or not is_payment_held(order.kind, order.payment_status)
        or order.task_id is not None
    ):
        raise Conflict("Order is not awaiting acceptance")
    if task_for_order(order) is not None:
        raise Conflict("Order already has a delivery task")

    task_model = TASK_MODELS[order.kind]
    fee_minor = _delivery_fee_minor(order.kind)
    task = None
    for attempt in range(MAX_CODE_ATTEMPTS):
        candidate = task_model(
            reference=_task_reference(order.kind),
            status=task_source_status(TaskStatus.AWAITING_PICKUP),
            pickup_code=generate_pickup_code(),
            delivery_fee_minor=fee_minor,
        )
        setattr(candidate, v.task_order_field, int(order.id))
        setattr(candidate, v.task_seller_field, int(seller.id))
        setattr(candidate, v.task_buyer_code_field, generate_delivery_code())
        candidate.delivery_address = order.shipping_address
        try:
            with db.session.begin_nested():
                db.session.add(candidate)
        except IntegrityError:
            if task_for_order(order) is not None:
                db.session.rollback()
                current_app.logger.info("accept_order_conflict kind=%s reference=%s", order.kind, order.reference)
                raise Conflict("Order already has a delivery task")
            current_app.logger.info(
                "pickup_code_collision kind=%s reference=%s attempt=%s", order.kind, order.reference, attempt + 1
            )
            continue
        task = candidate
        break
    if task is None:
        db.session.rollback()
        raise Conflict("Could not allocate a pickup code, try again")

    updated = (
        ORDER_MODELS[order.kind].query
        .filter_by(id=order.id, order_status=awaiting, task_id=None)
        .update(
            {"order_status": OrderStatus.QR_SCANNING, "task_id": int(task.id), "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.session.rollback()
        raise Conflict("Order is not awaiting acceptance")
    db.session.refresh(order)

    record_event(order, seller.id, "order_accepted", task.reference)
    notifier = notifier or get_notifier()
    notifier.notify(
        seller.id,
        kind="task",
        title="Order Accepted",
        message=f"Order {order.reference} is ready for pickup. Show pickup code {task.pickup_code} to the courier.",
        related_type="task",
        related_id=task.reference,
        dedupe_key=f"order-accepted:{order.reference}",
    )
    notifier.notify_many(
        active_courier_ids(),
        kind="task",
        title="New Delivery Task Available",
        message=f"A new {v.label} delivery is available: {_format_address(task.delivery_address)}.",
        related_type="task",
        related_id=task.reference,
        dedupe_prefix=f"task-available:{task.reference}",
    )
    db.session.commit()
    current_app.logger.info(
        "order_accepted kind=%s reference=%s task=%s seller_id=%s",
        order.kind,
        order.reference,
        task.reference,
        seller.id,
    )
    return task


def claim_task(task_ref: str, courier, *, notifier=None):
    """First courier to claim an open task gets it; everyone else gets Conflict."""
    ref = (task_ref or "").strip()
    now = datetime.utcnow()
    claimed_kind = None
    for kind in _kinds_for_task_reference(ref):
        model = TASK_MODELS[kind]
        courier_col = getattr(model, variant_for(kind).task_courier_field)
        updated = (
            model.query
            .filter(
                model.reference == ref,
                model.status == task_source_status(TaskStatus.AWAITING_PICKUP),
                courier_col.is_(None),
            )
            .update(
                {
                    courier_col.key: int(courier.id),
                    "status": TaskStatus.AWAITING_PICKUP,
                    "accepted_at": now,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated:
            claimed_kind = kind
            break

    if claimed_kind is None:
        db.session.rollback()
        exists = any(
            TASK_MODELS[kind].query.filter_by(reference=ref).first() is not None
            for kind in _kinds_for_task_reference(ref)
        )
        if not exists:
            raise NotFound("Task not found")
        current_app.logger.info("task_claim_conflict task=%s courier_id=%s", ref, courier.id)
        raise Conflict("Task has already been taken")

    task = TASK_MODELS[claimed_kind].query.filter_by(reference=ref).first()
    db.session.refresh(task)
    order = db.session.get(ORDER_MODELS[claimed_kind], int(task.order_ref_id))
    record_event(order, courier.id, "task_claimed", task.reference)
    notifier = notifier or get_notifier()
    notifier.notify(
        task.seller_ref_id,
        kind="task",
        title="Courier Assigned",
        message=f"{courier.name or 'A courier'} will pick up order {order.reference}.",
        related_type="task",
        related_id=task.reference,
        dedupe_key=f"task-claimed:{task.reference}",
    )
    db.session.commit()
    current_app.logger.info("task_claimed task=%s kind=%s courier_id=%s", task.reference, claimed_kind, courier.id)
    return task


def _scan(order_ref: str, code: str, courier, *, from_status: str, to_status: str, code_field, stamp_field: str):
    order = _find_order_any(order_ref)
    if order is None:
        raise InvalidScan()
    v = order.variant
    model = TASK_MODELS[order.kind]
    now = datetime.utcnow()
    updated = (
        model.query
        .filter(
            getattr(model, v.task_order_field) == int(order.id),
            getattr(model, v.task_courier_field) == int(courier.id),
            code_field(model, v) == (code or "").strip().upper(),
            model.status == from_status,
        )
        .update({"status": to_status, stamp_field: now, "updated_at": now}, synchronize_session=False)
    )
    if not updated:
        db.session.rollback()
        current_app.logger.warning(
            "scan_rejected kind=%s reference=%s courier_id=%s expected_status=%s",
            order.kind,
            order.reference,
            courier.id,
            from_status,
        )
        raise InvalidScan()
    return order, task_for_order(order)


def confirm_pickup(order_ref: str, code: str, courier, *, notifier=None):
    """Courier scans the seller's pickup code; goods are now in transit."""
    order, task = _scan(
        order_ref,
        code,
        courier,
        from_status=task_source_status(TaskStatus.IN_TRANSIT),
        to_status=TaskStatus.IN_TRANSIT,
        code_field=lambda model, v: model.pickup_code,
        stamp_field="picked_up_at",
    )
    v = order.variant
    updated = (
        ORDER_MODELS[order.kind].query
        .filter_by(id=order.id, order_status=order_source_status(order.kind, v.in_delivery_status))
        .update({"order_status": v.in_delivery_status, "updated_at": datetime.utcnow()}, synchronize_session=False)
    )
    if not updated:
        db.session.rollback()
        raise Conflict("Order is no longer awaiting pickup")
    db.session.refresh(order)
    db.session.refresh(task)

    record_event(order, courier.id, "picked_up", task.reference)
    notifier = notifier or get_notifier()
    notifier.notify(
        task.seller_ref_id,
        kind="task",
        title="Order Picked Up",
        message=f"Order {order.reference} was collected by the courier.",
        related_type=order.kind,
        related_id=order.reference,
        dedupe_key=f"picked-up:{order.reference}:seller",
    )
    if order.buyer_id is not None:
        notifier.notify(
            order.buyer_id,
            kind="task",
            title="Order On The Way",
            message=f"Order {order.reference} is on its way. Share your delivery code only with the courier at your door.",
            related_type=order.kind,
            related_id=order.reference,
            dedupe_key=f"picked-up:{order.reference}:buyer",
        )
    db.session.commit()
    current_app.logger.info("task_picked_up task=%s reference=%s courier_id=%s", task.reference, order.reference, courier.id)
    return task


def confirm_delivery(order_ref: str, code: str, courier, *, notifier=None):
    """Courier enters the buyer's code; the order completes and held funds are released."""
    order, task = _scan(
        order_ref,
        code,
        courier,
        from_status=task_source_status(TaskStatus.DELIVERED),
        to_status=TaskStatus.DELIVERED,
        code_field=lambda model, v: getattr(model, v.task_buyer_code_field),
        stamp_field="delivered_at",
    )
    updated = (
        ORDER_MODELS[order.kind].query
        .filter_by(id=order.id, order_status=order_source_status(order.kind, OrderStatus.DELIVERED))
        .update(
            {
                "order_status": OrderStatus.DELIVERED,
                "payment_status": PaymentStatus.PAID,
                "updated_at": datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.session.rollback()
        raise Conflict("Order is no longer in delivery")
    db.session.refresh(order)
    db.session.refresh(task)

    transition_escrow(
        order,
        EscrowStatus.RELEASED,
        idempotency_key=f"delivery:{task.reference}",
        actor={"type": "courier", "id": courier.id},
        reason="delivery_confirmed",
    )
    record_event(order, courier.id, "delivered", task.reference)
    notifier = notifier or get_notifier()
    notifier.notify(
        task.seller_ref_id,
        kind="payment",
        title="Funds Released",
        message=f"Order {order.reference} was delivered and the funds have been released.",
        related_type=order.kind,
        related_id=order.reference,
        dedupe_key=f"delivered:{order.reference}:seller",
    )
    if order.buyer_id is not None:
        notifier.notify(
            order.buyer_id,
            kind="task",
            title="Order Delivered",
            message=f"Order {order.reference} has been delivered.",
            related_type=order.kind,
            related_id=order.reference,
            dedupe_key=f"delivered:{order.reference}:buyer",
        )
    db.session.commit()
    current_app.logger.info("task_delivered task=%s reference=%s courier_id=%s", task.reference, order.reference, courier.id)
    return task


def _courier_view(task, *, include_buyer_contact: bool) -> dict | None:
    order = db.session.get(ORDER_MODELS[task.kind], int(task.order_ref_id))
    seller = db.session.get(User, int(task.seller_ref_id))
    if order is None or seller is None:
        return None
    view = {
        "id": task.reference,
        "kind": task.kind,
        "type": task.variant.label,
        "order_id": order.reference,
        "total_amount": order.total_amount,
        "seller_name": seller.display_name,
        "pickup_address": seller.address or "",
        "delivery_address": _format_address(task.delivery_address),
        "delivery_fee": task.delivery_fee,
        "status": task.status,
        "created_at": task.created_at.isoformat() if task.created_at else None,
    }
    if include_buyer_contact:
        buyer = db.session.get(User, int(order.buyer_id)) if order.buyer_id is not None else None
        view["buyer_name"] = buyer.display_name if buyer else ""
        view["buyer_phone"] = (buyer.phone if buyer else None) or order.mpesa_phone or ""
    return view


def _collect(tasks, *, include_buyer_contact: bool) -> list[tuple]:
    out = []
    for task in tasks:
        view = _courier_view(task, include_buyer_contact=include_buyer_contact)
        if view is not None:
            out.append((task.created_at or datetime.min, view))
    return out


def list_available_tasks() -> list[dict]:
    rows = []
    for kind in KINDS:
        model = TASK_MODELS[kind]
        courier_col = getattr(model, variant_for(kind).task_courier_field)
        tasks = model.query.filter(model.status == TaskStatus.AWAITING_ACCEPTANCE, courier_col.is_(None)).all()
        rows.extend(_collect(tasks, include_buyer_contact=False))
    rows.sort(key=lambda r: r[0])
    return [view for _, view in rows]


def list_courier_tasks(courier, *, active_only: bool = False) -> list[dict]:
    rows = []
    for kind in KINDS:
        model = TASK_MODELS[kind]
        courier_col = getattr(model, variant_for(kind).task_courier_field)
        query = model.query.filter(courier_col == int(courier.id))
        if active_only:
            query = query.filter(model.status.in_(TaskStatus.ACTIVE))
        rows.extend(_collect(query.all(), include_buyer_contact=True))
    rows.sort(key=lambda r: r[0], reverse=True)
    return [view for _, view in rows]


def courier_earnings(courier) -> dict:
    total_minor = 0
    count = 0
    delivered = []
    for kind in KINDS:
        model = TASK_MODELS[kind]
        courier_col = getattr(model, variant_for(kind).task_courier_field)
        base = model.query.filter(courier_col == int(courier.id), model.status == TaskStatus.DELIVERED)
        fee_sum, n = (
            db.session.query(func.coalesce(func.sum(model.delivery_fee_minor), 0), func.count(model.id))
            .filter(courier_col == int(courier.id), model.status == TaskStatus.DELIVERED)
            .one()
        )
        total_minor += int(fee_sum or 0)
        count += int(n or 0)
        recent = base.order_by(model.delivered_at.desc()).limit(RECENT_DELIVERIES).all()
        delivered.extend(recent)

    delivered.sort(key=lambda t: t.delivered_at or datetime.min, reverse=True)
    recent_views = []
    for task in delivered[:RECENT_DELIVERIES]:
        view = _courier_view(task, include_buyer_contact=False)
        if view is not None:
            view["delivered_at"] = task.delivered_at.isoformat() if task.delivered_at else None
            recent_views.append(view)
    return {
        "total_earnings": money_minor_to_major(total_minor),
        "total_earnings_minor": total_minor,
        "completed_deliveries": count,
        "recent_deliveries": recent_views,
    }


def get_task_for_seller(kind: str, order_ref: str, seller) -> dict:
    order = get_order(kind, order_ref)
    if int(seller.id) not in order.seller_ids():
        raise Forbidden()
    task = task_for_order(order)
    if task is None:
        raise NotFound("No delivery task for this order")
    data = task.to_dict(include_pickup_code=True)
    data["order_id"] = order.reference
    return data


def get_delivery_code_for_buyer(kind: str, order_ref: str, buyer) -> dict:
    order = get_order(kind, order_ref)
    if order.buyer_id != int(buyer.id):
        raise Forbidden()
    task = task_for_order(order)
    if task is None:
        raise NotFound("No delivery task for this order")
    return {
        "order_id": order.reference,
        "task_id": task.reference,
        "task_status": task.status,
        "delivery_code": task.delivery_confirmation_code,
    }

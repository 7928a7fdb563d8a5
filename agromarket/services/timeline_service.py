from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from agromarket.errors import Forbidden
from agromarket.extensions import db
from agromarket.models import TASK_MODELS, OrderEvent


def record_event(order, actor_id: int | None, event: str, note: str = "") -> OrderEvent | None:
    """Append one timeline entry; repeated (order, event, actor) triples are kept once."""
    actor_part = int(actor_id) if actor_id is not None else "system"
    key = f"{order.kind}:{int(order.id)}:{event}:{actor_part}"[:160]
    existing = OrderEvent.query.filter_by(idempotency_key=key).first()
    if existing:
        return existing
    row = OrderEvent(
        order_kind=order.kind,
        order_id=int(order.id),
        actor_user_id=int(actor_id) if actor_id is not None else None,
        event=event[:64],
        note=(note or "")[:240],
        idempotency_key=key,
    )
    try:
        with db.session.begin_nested():
            db.session.add(row)
    except IntegrityError:
        current_app.logger.info("order_event_duplicate key=%s", key)
        return OrderEvent.query.filter_by(idempotency_key=key).first()
    return row


def assert_can_view(order, user) -> None:
    """Buyer, sellers, the assigned courier and admins may read an order."""
    role = (getattr(user, "role", "") or "").strip().lower()
    if role == "admin":
        return
    participants = set(order.seller_ids())
    if order.buyer_id is not None:
        participants.add(int(order.buyer_id))
    courier_id = _courier_for(order)
    if courier_id is not None:
        participants.add(int(courier_id))
    if int(user.id) not in participants:
        raise Forbidden()


def order_timeline(order, user) -> list[dict]:
    assert_can_view(order, user)
    rows = (
        OrderEvent.query
        .filter_by(order_kind=order.kind, order_id=int(order.id))
        .order_by(OrderEvent.created_at.asc(), OrderEvent.id.asc())
        .all()
    )
    return [row.to_dict() for row in rows]


def _courier_for(order) -> int | None:
    if getattr(order, "task_id", None) is None:
        return None
    task = db.session.get(TASK_MODELS[order.kind], int(order.task_id))
    return task.courier_id if task else None

from __future__ import annotations

from sqlalchemy import func

from agromarket.extensions import db
from agromarket.ledger import BULK, RETAIL, OrderStatus, PaymentStatus
from agromarket.models import BulkOrder, EscrowTransition, Order, OrderItem
from agromarket.utils.money import money_minor_to_major


class EscrowStatus:
    NONE = "NONE"
    HELD = "HELD"
    RELEASED = "RELEASED"

    ALLOWED = {
        NONE: {NONE, HELD},
        HELD: {HELD, RELEASED},
        RELEASED: {RELEASED},
    }


def _parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        actor_type = str(actor.get("type") or "system")
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return actor_type, actor_id
    return "system", None


def current_escrow_status(order) -> str:
    last = (
        EscrowTransition.query
        .filter_by(order_kind=order.kind, order_id=int(order.id))
        .order_by(EscrowTransition.id.desc())
        .first()
    )
    return last.to_status if last else EscrowStatus.NONE


def transition_escrow(
    order,
    to_state: str,
    *,
    idempotency_key: str,
    actor=None,
    reason: str = "",
) -> EscrowTransition:
    """Append a settlement-ledger row for ``order``; replays return the first row.

    Flushes only. The caller owns the transaction so the ledger row commits
    together with the order status change it records.
    """
    if order is None:
        raise ValueError("order required")
    key = (idempotency_key or "").strip()[:160]
    if not key:
        raise ValueError("idempotency_key required")

    existing = EscrowTransition.query.filter_by(
        order_kind=order.kind, order_id=int(order.id), idempotency_key=key
    ).first()
    if existing:
        return existing

    current = current_escrow_status(order)
    target = (to_state or EscrowStatus.NONE).strip().upper()
    if target not in EscrowStatus.ALLOWED.get(current, {current}):
        raise ValueError(f"invalid_escrow_transition {current}->{target}")

    actor_type, actor_id = _parse_actor(actor)
    row = EscrowTransition(
        escrow_id=f"{order.kind}:{int(order.id)}",
        order_kind=order.kind,
        order_id=int(order.id),
        from_status=current,
        to_status=target,
        amount_minor=int(order.total_minor or 0),
        actor_type=actor_type[:32],
        actor_id=actor_id,
        idempotency_key=key,
        reason=(reason or "")[:240],
    )
    db.session.add(row)
    db.session.flush()
    return row


def _held_sum(model, held_status: str) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(model.total_minor), 0))
        .filter(model.payment_status == held_status)
        .filter(model.order_status.notin_(tuple(OrderStatus.TERMINAL)))
        .scalar()
    )
    return int(total or 0)


def escrow_balance() -> dict:
    """Funds currently held across both order kinds, recomputed on every call."""
    retail_minor = _held_sum(Order, PaymentStatus.PAID)
    bulk_minor = _held_sum(BulkOrder, PaymentStatus.ESCROW)
    total_minor = retail_minor + bulk_minor
    return {
        RETAIL: money_minor_to_major(retail_minor),
        BULK: money_minor_to_major(bulk_minor),
        "total": money_minor_to_major(total_minor),
        "retail_minor": retail_minor,
        "bulk_minor": bulk_minor,
        "total_minor": total_minor,
    }


def _retail_seller_sums(seller_id: int) -> tuple[int, int]:
    line_total = func.coalesce(func.sum(OrderItem.unit_price_minor * OrderItem.quantity), 0)
    base = db.session.query(line_total).join(Order, Order.id == OrderItem.order_id).filter(
        OrderItem.vendor_id == int(seller_id)
    )
    held = base.filter(
        Order.payment_status == PaymentStatus.PAID,
        Order.order_status.notin_(tuple(OrderStatus.TERMINAL)),
    ).scalar()
    released = base.filter(Order.order_status == OrderStatus.DELIVERED).scalar()
    return int(held or 0), int(released or 0)


def _bulk_seller_sums(seller_id: int) -> tuple[int, int]:
    base = db.session.query(func.coalesce(func.sum(BulkOrder.total_minor - BulkOrder.service_fee_minor), 0)).filter(
        BulkOrder.farmer_id == int(seller_id)
    )
    held = base.filter(
        BulkOrder.payment_status == PaymentStatus.ESCROW,
        BulkOrder.order_status.notin_(tuple(OrderStatus.TERMINAL)),
    ).scalar()
    released = base.filter(BulkOrder.order_status == OrderStatus.DELIVERED).scalar()
    return int(held or 0), int(released or 0)


def seller_escrow_summary(seller_id: int, kind: str = BULK) -> dict:
    # Seller figures exclude the platform service fee.
    if kind == RETAIL:
        held, released = _retail_seller_sums(seller_id)
    else:
        held, released = _bulk_seller_sums(seller_id)
    return {
        "seller_id": int(seller_id),
        "kind": kind,
        "sales_in_escrow": money_minor_to_major(held),
        "earnings_released": money_minor_to_major(released),
        "sales_in_escrow_minor": held,
        "earnings_released_minor": released,
    }

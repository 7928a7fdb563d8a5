"""Order and delivery-task states shared by retail (B2C) and bulk (B2B) orders.

Both variants run the same state machine; only the labels of a few order
states and the names of the counterparty columns differ. ``VARIANTS`` is the
field-name table the services use so the state machine is written once.
"""
from __future__ import annotations

from dataclasses import dataclass

RETAIL = "retail"
BULK = "bulk"
KINDS = (RETAIL, BULK)


class PaymentStatus:
    PENDING = "Pending"
    PAID = "Paid"
    ESCROW = "Escrow"
    FAILED = "Failed"


class OrderStatus:
    PROCESSING = "Processing"
    NEW_ORDER = "New Order"
    PENDING = "Pending"
    QR_SCANNING = "QR Scanning"
    IN_DELIVERY = "In Delivery"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    TERMINAL = {DELIVERED, CANCELLED}


class TaskStatus:
    AWAITING_ACCEPTANCE = "Awaiting Acceptance"
    AWAITING_PICKUP = "Accepted/Awaiting Pickup"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    ACTIVE = (AWAITING_PICKUP, IN_TRANSIT)
    TERMINAL = {DELIVERED, CANCELLED}


@dataclass(frozen=True)
class Variant:
    kind: str
    label: str
    # order-side labels
    confirmed_status: str
    in_delivery_status: str
    held_payment_status: str
    # order columns
    buyer_field: str
    # task columns
    task_order_field: str
    task_seller_field: str
    task_courier_field: str
    task_buyer_code_field: str
    reference_prefix: str


VARIANTS = {
    RETAIL: Variant(
        kind=RETAIL,
        label="B2C",
        confirmed_status=OrderStatus.NEW_ORDER,
        in_delivery_status=OrderStatus.IN_DELIVERY,
        held_payment_status=PaymentStatus.PAID,
        buyer_field="user_id",
        task_order_field="order_id",
        task_seller_field="vendor_id",
        task_courier_field="rider_id",
        task_buyer_code_field="buyer_confirmation_code",
        reference_prefix="ORD",
    ),
    BULK: Variant(
        kind=BULK,
        label="B2B",
        confirmed_status=OrderStatus.PENDING,
        in_delivery_status=OrderStatus.IN_TRANSIT,
        held_payment_status=PaymentStatus.ESCROW,
        buyer_field="vendor_id",
        task_order_field="bulk_order_id",
        task_seller_field="seller_id",
        task_courier_field="driver_id",
        task_buyer_code_field="vendor_confirmation_code",
        reference_prefix="BLK",
    ),
}


def variant_for(kind: str | None) -> Variant:
    key = (kind or "").strip().lower()
    if key in ("b2c", "retail", "order", "orders"):
        key = RETAIL
    elif key in ("b2b", "bulk", "bulk_order", "bulk-orders"):
        key = BULK
    if key not in VARIANTS:
        raise ValueError(f"unknown_order_kind {kind!r}")
    return VARIANTS[key]


def order_transitions(kind: str) -> dict[str, set[str]]:
    v = variant_for(kind)
    return {
        OrderStatus.PROCESSING: {v.confirmed_status, OrderStatus.CANCELLED},
        v.confirmed_status: {OrderStatus.QR_SCANNING, OrderStatus.CANCELLED},
        OrderStatus.QR_SCANNING: {v.in_delivery_status, OrderStatus.CANCELLED},
        v.in_delivery_status: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
        OrderStatus.DELIVERED: set(),
        OrderStatus.CANCELLED: set(),
    }


TASK_TRANSITIONS = {
    TaskStatus.AWAITING_ACCEPTANCE: {TaskStatus.AWAITING_PICKUP, TaskStatus.CANCELLED},
    TaskStatus.AWAITING_PICKUP: {TaskStatus.IN_TRANSIT, TaskStatus.CANCELLED},
    TaskStatus.IN_TRANSIT: {TaskStatus.DELIVERED, TaskStatus.CANCELLED},
    TaskStatus.DELIVERED: set(),
    TaskStatus.CANCELLED: set(),
}


def can_transition(kind: str, current: str, target: str) -> bool:
    return target in order_transitions(kind).get(current, set())


def can_transition_task(current: str, target: str) -> bool:
    return target in TASK_TRANSITIONS.get(current, set())


def assert_transition(kind: str, current: str, target: str) -> None:
    if not can_transition(kind, current, target):
        raise ValueError(f"invalid_order_transition {kind} {current}->{target}")


def is_payment_held(kind: str, payment_status: str | None) -> bool:
    return (payment_status or "") == variant_for(kind).held_payment_status


def order_source_status(kind: str, target: str) -> str:
    """The single status an order must be in to move forward into ``target``.

    Services use it as the WHERE clause of their conditional UPDATEs, so the
    table above is the only place the forward flow is defined.
    """
    sources = [s for s, nexts in order_transitions(kind).items() if target in nexts]
    if len(sources) != 1:
        raise ValueError(f"no_single_order_source {kind} {target}")
    return sources[0]


def task_source_status(target: str) -> str:
    sources = [s for s, nexts in TASK_TRANSITIONS.items() if target in nexts]
    if len(sources) != 1:
        raise ValueError(f"no_single_task_source {target}")
    return sources[0]

from __future__ import annotations

import json
from datetime import datetime

from agromarket.extensions import db
from agromarket.ledger import BULK, RETAIL, TaskStatus, variant_for
from agromarket.utils.money import money_minor_to_major


class _TaskColumns:
    id = db.Column(db.Integer, primary_key=True)
    # Public id handed to couriers; unique across both task tables.
    reference = db.Column(db.String(40), nullable=False, unique=True, index=True)

    status = db.Column(db.String(32), nullable=False, default=TaskStatus.AWAITING_ACCEPTANCE, index=True)
    pickup_code = db.Column(db.String(16), nullable=False, unique=True)
    delivery_address_json = db.Column(db.Text, nullable=False, default="{}")
    delivery_fee_minor = db.Column(db.Integer, nullable=False, default=0)

    accepted_at = db.Column(db.DateTime, nullable=True)
    picked_up_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    kind = ""

    @property
    def variant(self):
        return variant_for(self.kind)

    @property
    def order_ref_id(self) -> int:
        return getattr(self, self.variant.task_order_field)

    @property
    def seller_ref_id(self) -> int:
        return getattr(self, self.variant.task_seller_field)

    @property
    def courier_id(self) -> int | None:
        return getattr(self, self.variant.task_courier_field)

    @property
    def delivery_confirmation_code(self) -> str:
        return getattr(self, self.variant.task_buyer_code_field) or ""

    @property
    def delivery_address(self) -> dict:
        raw = (self.delivery_address_json or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    @delivery_address.setter
    def delivery_address(self, value: dict) -> None:
        self.delivery_address_json = json.dumps(value or {}, separators=(",", ":"), ensure_ascii=False)

    @property
    def delivery_fee(self) -> float:
        return money_minor_to_major(self.delivery_fee_minor)

    def to_dict(self, *, include_pickup_code: bool = False) -> dict:
        data = {
            "id": self.reference,
            "kind": self.kind,
            "type": self.variant.label,
            "order_id": int(self.order_ref_id),
            "seller_id": int(self.seller_ref_id),
            "courier_id": int(self.courier_id) if self.courier_id is not None else None,
            "status": self.status,
            "delivery_address": self.delivery_address,
            "delivery_fee": self.delivery_fee,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "picked_up_at": self.picked_up_at.isoformat() if self.picked_up_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_pickup_code:
            data["pickup_code"] = self.pickup_code
        return data


class DeliveryTask(_TaskColumns, db.Model):
    """Retail delivery: vendor hands off to a rider."""

    __tablename__ = "delivery_tasks"
    __table_args__ = (
        db.Index("ix_delivery_tasks_vendor_status", "vendor_id", "status"),
        db.Index("ix_delivery_tasks_rider_status", "rider_id", "status"),
    )

    kind = RETAIL

    # One task per order; the unique index rejects a second concurrent acceptance.
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    rider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    buyer_confirmation_code = db.Column(db.String(16), nullable=False)


class BulkDeliveryTask(_TaskColumns, db.Model):
    """Bulk delivery: farmer hands off to a driver."""

    __tablename__ = "bulk_delivery_tasks"
    __table_args__ = (
        db.Index("ix_bulk_delivery_tasks_seller_status", "seller_id", "status"),
        db.Index("ix_bulk_delivery_tasks_driver_status", "driver_id", "status"),
    )

    kind = BULK

    bulk_order_id = db.Column(db.Integer, db.ForeignKey("bulk_orders.id"), nullable=False, unique=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    vendor_confirmation_code = db.Column(db.String(16), nullable=False)

from __future__ import annotations

import json
from datetime import datetime

from agromarket.extensions import db
from agromarket.ledger import BULK, RETAIL, OrderStatus, PaymentStatus, variant_for
from agromarket.utils.money import money_minor_to_major


def _load_json(raw) -> dict:
    text = (raw or "").strip() if isinstance(raw, str) else ""
    if not text:
        return {}
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else {}
    except Exception:
        return {}


def _dump_json(data) -> str:
    try:
        return json.dumps(data or {}, separators=(",", ":"), ensure_ascii=False)
    except Exception:
        return "{}"


class _OrderColumns:
    """Columns and serialization shared by retail and bulk orders."""

    id = db.Column(db.Integer, primary_key=True)
    # Public id, allocated before the payment push so the callback can be correlated.
    reference = db.Column(db.String(40), nullable=False, unique=True, index=True)

    total_minor = db.Column(db.Integer, nullable=False, default=0)
    service_fee_minor = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(24), nullable=False, default=PaymentStatus.PENDING, index=True)
    order_status = db.Column(db.String(32), nullable=False, default=OrderStatus.PROCESSING, index=True)

    shipping_address_json = db.Column(db.Text, nullable=False, default="{}")

    mpesa_phone = db.Column(db.String(32), nullable=True)
    checkout_request_id = db.Column(db.String(96), nullable=True, unique=True, index=True)
    merchant_request_id = db.Column(db.String(96), nullable=True)
    mpesa_receipt_number = db.Column(db.String(64), nullable=True)
    mpesa_transaction_date = db.Column(db.DateTime, nullable=True)
    mpesa_phone_number = db.Column(db.String(32), nullable=True)
    payment_failure_reason = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    kind = ""

    @property
    def variant(self):
        return variant_for(self.kind)

    @property
    def buyer_id(self) -> int | None:
        return getattr(self, self.variant.buyer_field, None)

    @property
    def total_amount(self) -> float:
        return money_minor_to_major(self.total_minor)

    @property
    def shipping_address(self) -> dict:
        return _load_json(self.shipping_address_json)

    @shipping_address.setter
    def shipping_address(self, value: dict) -> None:
        self.shipping_address_json = _dump_json(value)

    def seller_ids(self) -> list[int]:
        raise NotImplementedError

    def _base_dict(self) -> dict:
        return {
            "id": int(self.id),
            "kind": self.kind,
            "type": self.variant.label,
            "reference": self.reference,
            "buyer_id": int(self.buyer_id) if self.buyer_id is not None else None,
            "seller_ids": self.seller_ids(),
            "total_amount": self.total_amount,
            "service_fee": money_minor_to_major(self.service_fee_minor),
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "shipping_address": self.shipping_address,
            "checkout_request_id": self.checkout_request_id or "",
            "mpesa_receipt_number": self.mpesa_receipt_number or "",
            "mpesa_transaction_date": self.mpesa_transaction_date.isoformat() if self.mpesa_transaction_date else None,
            "payment_failure_reason": self.payment_failure_reason or "",
            "task_id": int(self.task_id) if getattr(self, "task_id", None) is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Order(_OrderColumns, db.Model):
    """Retail (B2C) order: a buyer purchasing from one or more vendors."""

    __tablename__ = "orders"

    kind = RETAIL

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    task_id = db.Column(db.Integer, nullable=True, index=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="selectin",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def seller_ids(self) -> list[int]:
        seen = []
        for item in self.items:
            if item.vendor_id is not None and int(item.vendor_id) not in seen:
                seen.append(int(item.vendor_id))
        return seen

    def to_dict(self):
        data = self._base_dict()
        data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False, default="")
    image_path = db.Column(db.String(1024), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # Price captured at order time; later catalog edits never touch it.
    unit_price_minor = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        qty = int(self.quantity or 0)
        return {
            "product_id": int(self.product_id),
            "vendor_id": int(self.vendor_id),
            "name": self.name or "",
            "image_path": self.image_path or "",
            "quantity": qty,
            "price": money_minor_to_major(self.unit_price_minor),
            "line_total": money_minor_to_major(int(self.unit_price_minor or 0) * qty),
        }


class BulkOrder(_OrderColumns, db.Model):
    """Bulk (B2B) order: a vendor buying produce from exactly one farmer."""

    __tablename__ = "bulk_orders"

    kind = BULK

    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    task_id = db.Column(db.Integer, nullable=True, index=True)

    items = db.relationship(
        "BulkOrderItem",
        backref="bulk_order",
        lazy="selectin",
        order_by="BulkOrderItem.id",
        cascade="all, delete-orphan",
    )

    def seller_ids(self) -> list[int]:
        return [int(self.farmer_id)] if self.farmer_id is not None else []

    def to_dict(self):
        data = self._base_dict()
        data["farmer_id"] = int(self.farmer_id) if self.farmer_id is not None else None
        data["items"] = [item.to_dict() for item in self.items]
        return data


class BulkOrderItem(db.Model):
    __tablename__ = "bulk_order_items"

    id = db.Column(db.Integer, primary_key=True)
    bulk_order_id = db.Column(db.Integer, db.ForeignKey("bulk_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(160), nullable=False, default="")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_minor = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        qty = int(self.quantity or 0)
        return {
            "product_id": int(self.product_id),
            "name": self.name or "",
            "quantity": qty,
            "price": money_minor_to_major(self.unit_price_minor),
            "line_total": money_minor_to_major(int(self.unit_price_minor or 0) * qty),
        }

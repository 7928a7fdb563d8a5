from __future__ import annotations

import uuid
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from agromarket.errors import Forbidden, GatewayError, NotFound, ValidationError
from agromarket.extensions import db
from agromarket.integrations.common import IntegrationMisconfiguredError
from agromarket.integrations.payments.daraja_provider import normalize_msisdn
from agromarket.integrations.payments.factory import get_payments_provider
from agromarket.ledger import BULK, RETAIL, OrderStatus, PaymentStatus, variant_for
from agromarket.models import ITEM_MODELS, ORDER_MODELS, BulkOrder, Order, OrderItem, User
from agromarket.services.catalog_service import resolve_product
from agromarket.services.notification_service import get_notifier
from agromarket.services.timeline_service import assert_can_view, record_event
from agromarket.utils.money import line_total_minor, money_major_to_minor, money_minor_to_major

MAX_LINES = 100
MAX_QUANTITY = 10_000
ADDRESS_REQUIRED = ("street", "city")
ADDRESS_OPTIONAL = ("postal_code", "country")
LIST_LIMIT = 200


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int


def _kind(kind: str) -> str:
    try:
        return variant_for(kind).kind
    except ValueError:
        raise ValidationError("Unknown order type")


def parse_items(raw) -> list[OrderLine]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    if len(raw) > MAX_LINES:
        raise ValidationError(f"at most {MAX_LINES} items per order")
    lines = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        pid = entry.get("product_id", entry.get("productId"))
        qty = entry.get("quantity")
        # bool is an int subclass; reject it explicitly
        if isinstance(pid, bool) or isinstance(qty, bool):
            raise ValidationError(f"items[{idx}] is invalid")
        try:
            pid = int(pid)
        except (TypeError, ValueError):
            raise ValidationError(f"items[{idx}].product_id is required")
        if not isinstance(qty, int) or qty < 1 or qty > MAX_QUANTITY:
            raise ValidationError(f"items[{idx}].quantity must be a positive integer")
        lines.append(OrderLine(product_id=pid, quantity=qty))
    return lines


def parse_shipping_address(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("shipping_address is required")
    address = {}
    for key in ADDRESS_REQUIRED:
        value = str(raw.get(key) or "").strip()
        if not value:
            raise ValidationError(f"shipping_address.{key} is required")
        address[key] = value[:160]
    postal = raw.get("postal_code", raw.get("postalCode"))
    if postal:
        address["postal_code"] = str(postal).strip()[:32]
    if raw.get("country"):
        address["country"] = str(raw.get("country")).strip()[:64]
    return address


def parse_phone(raw) -> str:
    try:
        return normalize_msisdn(str(raw or ""))
    except ValueError:
        raise ValidationError("A valid M-Pesa phone number is required")


def _fee_minor(kind: str) -> int:
    key = "BULK_SERVICE_FEE" if kind == BULK else "RETAIL_SERVICE_FEE"
    return money_major_to_minor(current_app.config.get(key, 1))


def new_order_reference(kind: str) -> str:
    return f"{variant_for(kind).reference_prefix}-{uuid.uuid4().hex[:16].upper()}"


def place_order(kind, buyer, items, shipping_address, phone, *, provider=None, notifier=None):
    """Price an order from the catalog, push the payment prompt, then persist it.

    Nothing is written unless the gateway accepted the push. The order is
    saved as Pending/Processing and is settled by the payment callback.
    """
    kind = _kind(kind)
    v = variant_for(kind)
    lines = parse_items(items)
    address = parse_shipping_address(shipping_address)
    msisdn = parse_phone(phone)

    resolved = [resolve_product(kind, line.product_id) for line in lines]
    if kind == BULK:
        farmers = {r.seller_id for r in resolved}
        if len(farmers) != 1:
            raise ValidationError("A bulk order must contain produce from a single farmer")
        if int(buyer.id) in farmers:
            raise Forbidden("Farmers cannot order their own produce")

    subtotal = sum(line_total_minor(r.unit_price_minor, line.quantity) for r, line in zip(resolved, lines))
    fee = _fee_minor(kind)
    total = subtotal + fee
    reference = new_order_reference(kind)

    if provider is None:
        try:
            provider = get_payments_provider()
        except IntegrationMisconfiguredError as exc:
            current_app.logger.error("payments_misconfigured kind=%s err=%s", kind, exc)
            raise GatewayError("Payments are temporarily unavailable", detail={"stage": "config"})
    result = provider.initiate(
        amount_minor=total,
        phone=msisdn,
        correlation_id=reference,
        description=f"{v.label} order",
    )
    if not result.accepted:
        current_app.logger.warning(
            "stk_push_rejected kind=%s reference=%s response_code=%s provider=%s",
            kind,
            reference,
            result.response_code,
            provider.name,
        )
        raise GatewayError(
            result.customer_message or "Payment request was rejected",
            detail={"response_code": str(result.response_code)},
        )

    order_model = ORDER_MODELS[kind]
    item_model = ITEM_MODELS[kind]
    order = order_model(
        reference=reference,
        total_minor=total,
        service_fee_minor=fee,
        payment_status=PaymentStatus.PENDING,
        order_status=OrderStatus.PROCESSING,
        mpesa_phone=msisdn,
        checkout_request_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id or None,
    )
    setattr(order, v.buyer_field, int(buyer.id))
    if kind == BULK:
        order.farmer_id = resolved[0].seller_id
    order.shipping_address = address

    for r, line in zip(resolved, lines):
        item = item_model(
            product_id=r.product_id,
            name=r.name,
            quantity=line.quantity,
            unit_price_minor=r.unit_price_minor,
        )
        if kind == RETAIL:
            item.vendor_id = r.seller_id
            item.image_path = r.image_path
        order.items.append(item)

    try:
        db.session.add(order)
        db.session.flush()
        record_event(order, buyer.id, "order_placed", f"checkout={result.checkout_request_id}")

        notifier = notifier or get_notifier()
        for seller_id in order.seller_ids():
            notifier.notify(
                seller_id,
                title="New Order",
                message=f"You have a new {v.label} order {reference} awaiting payment confirmation.",
                related_type=kind,
                related_id=reference,
                dedupe_key=f"order-placed:{reference}:{seller_id}",
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        # The push already reached the payer; the callback for it will be logged as unknown.
        current_app.logger.exception(
            "order_persist_failed kind=%s reference=%s checkout_request_id=%s",
            kind,
            reference,
            result.checkout_request_id,
        )
        raise

    current_app.logger.info(
        "order_placed kind=%s reference=%s buyer_id=%s total_minor=%s checkout_request_id=%s",
        kind,
        reference,
        buyer.id,
        total,
        result.checkout_request_id,
    )
    return order


def get_order(kind: str, reference: str):
    kind = _kind(kind)
    order = ORDER_MODELS[kind].query.filter_by(reference=(reference or "").strip()).first()
    if order is None:
        raise NotFound("Order not found")
    return order


def payment_status_for(kind: str, reference: str, user) -> dict:
    order = get_order(kind, reference)
    is_admin = (getattr(user, "role", "") or "").strip().lower() == "admin"
    if not is_admin and order.buyer_id != int(user.id):
        raise Forbidden()
    return {
        "order_id": order.reference,
        "kind": order.kind,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "failure_reason": order.payment_failure_reason or "",
        "mpesa_receipt_number": order.mpesa_receipt_number or "",
        "total_amount": order.total_amount,
    }


def _newest_first(query, model):
    return query.order_by(model.created_at.desc(), model.id.desc()).limit(LIST_LIMIT).all()


def list_orders_for_buyer(kind: str, user) -> list[dict]:
    kind = _kind(kind)
    model = ORDER_MODELS[kind]
    buyer_col = getattr(model, variant_for(kind).buyer_field)
    return [order.to_dict() for order in _newest_first(model.query.filter(buyer_col == int(user.id)), model)]


def list_orders_for_seller(kind: str, user, status: str | None = None) -> list[dict]:
    """Orders that include this seller's goods; retail lines of other vendors are left out."""
    kind = _kind(kind)
    uid = int(user.id)
    if kind == RETAIL:
        model = Order
        query = Order.query.filter(Order.items.any(OrderItem.vendor_id == uid))
    else:
        model = BulkOrder
        query = BulkOrder.query.filter(BulkOrder.farmer_id == uid)
    status = (status or "").strip()
    if status:
        query = query.filter(model.order_status == status)
    rows = _newest_first(query, model)

    buyer_ids = {int(order.buyer_id) for order in rows if order.buyer_id is not None}
    buyers = {u.id: u for u in User.query.filter(User.id.in_(buyer_ids)).all()} if buyer_ids else {}
    out = []
    for order in rows:
        data = order.to_dict()
        if kind == RETAIL:
            mine = [item for item in order.items if int(item.vendor_id) == uid]
            data["items"] = [item.to_dict() for item in mine]
            data["seller_subtotal"] = money_minor_to_major(
                sum(line_total_minor(item.unit_price_minor, item.quantity) for item in mine)
            )
        buyer = buyers.get(order.buyer_id)
        data["buyer"] = {
            "id": int(order.buyer_id) if order.buyer_id is not None else None,
            "name": (buyer.name if buyer else "") or "",
            "phone": (buyer.phone if buyer else "") or "",
        }
        out.append(data)
    return out


def order_detail_for(kind: str, reference: str, user) -> dict:
    order = get_order(kind, reference)
    assert_can_view(order, user)
    return order.to_dict()

from __future__ import annotations

from flask import Blueprint, jsonify, request

from agromarket.errors import ValidationError
from agromarket.extensions import db
from agromarket.ledger import BULK, RETAIL
from agromarket.services.dispatch_service import accept_order, get_delivery_code_for_buyer, get_task_for_seller
from agromarket.services.order_placement_service import (
    get_order,
    list_orders_for_buyer,
    list_orders_for_seller,
    order_detail_for,
    payment_status_for,
    place_order,
)
from agromarket.services.timeline_service import order_timeline
from agromarket.utils.auth import SELLER_ROLES, require_user
from agromarket.utils.idempotency import lookup_response, release_key, store_response

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("JSON object body required")
    return payload


def _place(kind: str, buyer_role: str):
    buyer = require_user(buyer_role)
    payload = _json_body()

    scope = f"place_order:{kind}"
    idem = lookup_response(buyer.id, scope, payload)
    if idem is not None and idem[0] != "miss":
        return jsonify(idem[1]), idem[2]
    row = idem[1] if idem is not None else None

    try:
        order = place_order(
            kind,
            buyer,
            payload.get("items"),
            payload.get("shipping_address", payload.get("shippingAddress")),
            payload.get("phone") or payload.get("mpesa_phone"),
        )
    except Exception:
        db.session.rollback()
        if row is not None:
            release_key(row)
        raise

    body = {
        "ok": True,
        "message": "Payment prompt sent. Complete the payment on your phone.",
        "order": order.to_dict(),
    }
    if row is not None:
        store_response(row, body, 201)
    return jsonify(body), 201


@orders_bp.post("/orders")
def create_retail_order():
    return _place(RETAIL, "buyer")


@orders_bp.post("/bulk-orders")
def create_bulk_order():
    return _place(BULK, "vendor")


@orders_bp.get("/orders/<kind>/mine")
def my_orders(kind):
    buyer = require_user("buyer", "vendor")
    return jsonify({"ok": True, "items": list_orders_for_buyer(kind, buyer)}), 200


@orders_bp.get("/orders/<kind>/selling")
def seller_orders(kind):
    seller = require_user(*SELLER_ROLES)
    items = list_orders_for_seller(kind, seller, status=request.args.get("status"))
    return jsonify({"ok": True, "items": items}), 200


@orders_bp.get("/orders/<kind>/<ref>")
def order_detail(kind, ref):
    user = require_user()
    return jsonify({"ok": True, "order": order_detail_for(kind, ref, user)}), 200


@orders_bp.get("/orders/<kind>/<ref>/status")
def order_payment_status(kind, ref):
    user = require_user()
    return jsonify({"ok": True, **payment_status_for(kind, ref, user)}), 200


@orders_bp.patch("/orders/<kind>/<ref>/accept")
def seller_accept(kind, ref):
    seller = require_user(*SELLER_ROLES)
    task = accept_order(kind, ref, seller)
    return jsonify({
        "ok": True,
        "message": "Order accepted. A courier will be assigned.",
        "task": task.to_dict(include_pickup_code=True),
    }), 201


@orders_bp.get("/orders/<kind>/<ref>/task")
def seller_task(kind, ref):
    seller = require_user(*SELLER_ROLES)
    return jsonify({"ok": True, "task": get_task_for_seller(kind, ref, seller)}), 200


@orders_bp.get("/orders/<kind>/<ref>/delivery-code")
def buyer_delivery_code(kind, ref):
    buyer = require_user("buyer", "vendor")
    return jsonify({"ok": True, **get_delivery_code_for_buyer(kind, ref, buyer)}), 200


@orders_bp.get("/orders/<kind>/<ref>/timeline")
def timeline(kind, ref):
    user = require_user()
    order = get_order(kind, ref)
    return jsonify({"ok": True, "order_id": order.reference, "items": order_timeline(order, user)}), 200

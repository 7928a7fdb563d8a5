from __future__ import annotations

from flask import Blueprint, jsonify, request

from agromarket.errors import ValidationError
from agromarket.services.dispatch_service import (
    claim_task,
    confirm_delivery,
    confirm_pickup,
    courier_earnings,
    list_available_tasks,
    list_courier_tasks,
)
from agromarket.utils.auth import COURIER_ROLES, require_user

rider_bp = Blueprint("rider_bp", __name__, url_prefix="/api/rider")


def _scan_body() -> tuple[str, str]:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("JSON object body required")
    order_ref = str(payload.get("order_id") or payload.get("orderId") or "").strip()
    code = str(payload.get("code") or payload.get("confirmation_code") or "").strip()
    if not order_ref or not code:
        raise ValidationError("order_id and code are required")
    return order_ref, code


@rider_bp.get("/tasks/available")
def available_tasks():
    require_user(*COURIER_ROLES)
    return jsonify({"ok": True, "items": list_available_tasks()}), 200


@rider_bp.get("/tasks/mine")
def my_tasks():
    courier = require_user(*COURIER_ROLES)
    active_only = (request.args.get("active") or "").strip().lower() in ("1", "true", "yes")
    return jsonify({"ok": True, "items": list_courier_tasks(courier, active_only=active_only)}), 200


@rider_bp.post("/tasks/<task_ref>/accept")
def accept_task(task_ref):
    courier = require_user(*COURIER_ROLES)
    task = claim_task(task_ref, courier)
    return jsonify({"ok": True, "message": "Task accepted", "task": task.to_dict()}), 200


@rider_bp.post("/confirm-pickup")
def pickup():
    courier = require_user(*COURIER_ROLES)
    order_ref, code = _scan_body()
    task = confirm_pickup(order_ref, code, courier)
    return jsonify({"ok": True, "message": "Pickup confirmed", "task": task.to_dict()}), 200


@rider_bp.post("/confirm-delivery")
def delivery():
    courier = require_user(*COURIER_ROLES)
    order_ref, code = _scan_body()
    task = confirm_delivery(order_ref, code, courier)
    return jsonify({"ok": True, "message": "Delivery confirmed", "task": task.to_dict()}), 200


@rider_bp.get("/earnings")
def earnings():
    courier = require_user(*COURIER_ROLES)
    return jsonify({"ok": True, **courier_earnings(courier)}), 200

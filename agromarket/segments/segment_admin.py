from __future__ import annotations

from flask import Blueprint, jsonify, request

from agromarket.errors import ValidationError
from agromarket.ledger import BULK, RETAIL
from agromarket.services.escrow_service import escrow_balance, seller_escrow_summary
from agromarket.utils.auth import role_of, require_user

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api")


@admin_bp.get("/admin/escrow-balance")
def admin_escrow_balance():
    require_user("admin")
    return jsonify({"ok": True, **escrow_balance()}), 200


@admin_bp.get("/farmer/escrow-summary")
def farmer_escrow_summary():
    user = require_user("farmer", "vendor", "admin")
    role = role_of(user)
    if role == "admin":
        seller_id = request.args.get("seller_id", type=int)
        if not seller_id:
            raise ValidationError("seller_id is required")
        kind = RETAIL if (request.args.get("kind") or "").strip().lower() == RETAIL else BULK
    else:
        seller_id = int(user.id)
        kind = BULK if role == "farmer" else RETAIL
    return jsonify({"ok": True, **seller_escrow_summary(seller_id, kind)}), 200

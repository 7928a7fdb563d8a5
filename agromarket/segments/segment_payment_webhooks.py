from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from agromarket.extensions import db
from agromarket.services.payment_callback_service import ACKNOWLEDGEMENT, process_stk_callback
from agromarket.utils.observability import get_request_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/payments")


@webhooks_bp.post("/mpesa/callback")
def mpesa_callback():
    # The gateway only needs to know we received it; processing outcome never changes the answer.
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        current_app.logger.warning("mpesa_callback_unparseable request_id=%s", get_request_id())
        return jsonify(ACKNOWLEDGEMENT), 200

    if current_app.config.get("MPESA_CALLBACK_QUEUE"):
        try:
            from agromarket.tasks.payment_tasks import process_mpesa_callback_task

            process_mpesa_callback_task.delay(payload=payload, trace_id=get_request_id())
            return jsonify(ACKNOWLEDGEMENT), 200
        except Exception:
            current_app.logger.exception("mpesa_callback_enqueue_failed request_id=%s", get_request_id())

    try:
        process_stk_callback(payload, request_id=get_request_id())
    except Exception:
        db.session.rollback()
        current_app.logger.exception("mpesa_callback_inline_failed request_id=%s", get_request_id())
    return jsonify(ACKNOWLEDGEMENT), 200

from __future__ import annotations

from datetime import datetime

from agromarket.errors import ValidationError
from agromarket.integrations.payments.base import StkCallback


def parse_stk_callback(payload) -> StkCallback:
    """Read ``{"Body": {"stkCallback": {...}}}`` as posted by the gateway."""
    if not isinstance(payload, dict):
        raise ValidationError("callback payload must be an object")
    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise ValidationError("Body.stkCallback is required")

    checkout_request_id = str(stk.get("CheckoutRequestID") or "").strip()
    if not checkout_request_id:
        raise ValidationError("CheckoutRequestID is required")
    try:
        result_code = int(stk.get("ResultCode"))
    except (TypeError, ValueError):
        raise ValidationError("ResultCode must be an integer")

    items = {}
    meta = stk.get("CallbackMetadata")
    raw_items = meta.get("Item") if isinstance(meta, dict) else None
    if isinstance(raw_items, list):
        for entry in raw_items:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("Name") or "").strip()
            if name:
                items[name] = entry.get("Value")

    return StkCallback(
        checkout_request_id=checkout_request_id,
        result_code=result_code,
        result_desc=str(stk.get("ResultDesc") or "").strip(),
        merchant_request_id=str(stk.get("MerchantRequestID") or "").strip(),
        items=items,
    )


def parse_transaction_date(value) -> datetime | None:
    # TransactionDate arrives as a 14-digit number: YYYYMMDDHHMMSS
    raw = str(value or "").strip()
    if len(raw) != 14 or not raw.isdigit():
        return None
    try:
        return datetime.strptime(raw, "%Y%m%d%H%M%S")
    except ValueError:
        return None

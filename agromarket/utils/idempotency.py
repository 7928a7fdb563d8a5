from __future__ import annotations

import hashlib
import json
from typing import Any

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from agromarket.extensions import db
from agromarket.models import IdempotencyKey


def _canonical_json(payload: Any) -> str:
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(payload)


def _hash_request(*, scope: str, user_id: int | None, payload: Any) -> str:
    raw = f"{scope.strip()}|{user_id if user_id is not None else ''}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def _reuse_conflict_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        {
            "ok": False,
            "error": "IDEMPOTENCY_KEY_REUSE",
            "message": "This Idempotency-Key was already used with a different request payload.",
            "status": 409,
        },
        409,
    )


def _in_flight_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        {
            "ok": False,
            "error": "IDEMPOTENCY_KEY_IN_FLIGHT",
            "message": "A request with this Idempotency-Key is still being processed.",
            "status": 409,
        },
        409,
    )


def lookup_response(user_id: int | None, scope: str, payload: Any, *, idempotency_key: str | None = None):
    """Reserve ``idempotency_key`` for ``scope`` or replay its first response.

    Returns ``None`` when no key was supplied, ``("miss", row, 0)`` when the
    caller should run the operation and then ``store_response``, or
    ``("hit"|"conflict", body, status)`` when the stored answer must be
    returned as-is.
    """
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        return None

    scope_key = (scope or "").strip()[:128]
    req_hash = _hash_request(scope=scope_key, user_id=user_id, payload=payload)

    row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
    if row is None:
        row = IdempotencyKey(
            key=k,
            scope=scope_key,
            user_id=int(user_id) if user_id is not None else None,
            request_hash=req_hash,
        )
        try:
            db.session.add(row)
            db.session.commit()
            return ("miss", row, 0)
        except IntegrityError:
            db.session.rollback()
            row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
            if row is None:
                raise

    if (row.request_hash or "").strip() and row.request_hash != req_hash:
        return _reuse_conflict_response()
    if not row.completed:
        return _in_flight_response()
    try:
        body = json.loads(row.response_body_json)
    except ValueError:
        body = {"ok": True}
    return ("hit", body, int(row.response_code or 200))


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_body_json = json.dumps(response_json, separators=(",", ":"), default=str)
    row.response_code = int(status_code or 200)
    db.session.add(row)
    db.session.commit()


def release_key(row: IdempotencyKey) -> None:
    """Forget a reserved key whose operation failed so the client may retry."""
    db.session.delete(row)
    db.session.commit()

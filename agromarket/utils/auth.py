from __future__ import annotations

from flask import g, request

from agromarket.errors import Forbidden, Unauthorized
from agromarket.extensions import db
from agromarket.models import User
from agromarket.utils.jwt_utils import decode_token, get_bearer_token

SELLER_ROLES = ("vendor", "farmer")
COURIER_ROLES = ("rider", "driver")


def current_user() -> User | None:
    cached = getattr(g, "_auth_user", None)
    if cached is not None:
        return cached
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, uid)
    if user is None or (user.status or "active") != "active":
        return None
    g._auth_user = user
    return user


def role_of(user: User | None) -> str:
    if not user:
        return "guest"
    return (user.role or "buyer").strip().lower()


def require_user(*roles: str) -> User:
    """Return the authenticated user or raise; ``roles`` restricts who may call."""
    user = current_user()
    if user is None:
        raise Unauthorized()
    if roles and role_of(user) not in roles:
        raise Forbidden()
    return user

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from agromarket.extensions import db
from agromarket.models import Notification, User


class NotificationPort:
    """Where order-flow notices go. Implementations must not raise."""

    def notify(
        self,
        recipient_id: int,
        *,
        message: str,
        related_type: str | None = None,
        related_id: str | None = None,
        kind: str = "order",
        title: str = "Order Alert",
        dedupe_key: str | None = None,
    ):
        raise NotImplementedError

    def notify_many(self, recipient_ids, *, dedupe_prefix: str | None = None, **kwargs) -> int:
        sent = 0
        for rid in dict.fromkeys(int(r) for r in recipient_ids if r is not None):
            key = f"{dedupe_prefix}:{rid}" if dedupe_prefix else None
            if self.notify(rid, dedupe_key=key, **kwargs) is not None:
                sent += 1
        return sent


class DatabaseNotifier(NotificationPort):
    """Writes in-app notifications inside a savepoint of the caller's transaction."""

    def notify(
        self,
        recipient_id: int,
        *,
        message: str,
        related_type: str | None = None,
        related_id: str | None = None,
        kind: str = "order",
        title: str = "Order Alert",
        dedupe_key: str | None = None,
    ) -> Notification | None:
        key = (dedupe_key or "").strip()[:160] or None
        try:
            if key and Notification.query.filter_by(dedupe_key=key).first() is not None:
                return None
            row = Notification(
                user_id=int(recipient_id),
                kind=(kind or "order")[:32],
                title=(title or "Order Alert")[:160],
                message=message or "",
                related_type=(related_type or None),
                related_id=str(related_id)[:64] if related_id is not None else None,
                dedupe_key=key,
            )
            with db.session.begin_nested():
                db.session.add(row)
            return row
        except SQLAlchemyError as e:
            current_app.logger.warning(
                "notification_write_failed user_id=%s dedupe_key=%s err=%s", recipient_id, key, e
            )
            return None


def active_courier_ids() -> list[int]:
    rows = (
        db.session.query(User.id)
        .filter(User.role.in_(("rider", "driver")), User.status == "active")
        .order_by(User.id.asc())
        .all()
    )
    return [int(r[0]) for r in rows]


def get_notifier() -> NotificationPort:
    notifier = current_app.extensions.get("agromarket.notifier")
    if notifier is None:
        notifier = DatabaseNotifier()
        current_app.extensions["agromarket.notifier"] = notifier
    return notifier

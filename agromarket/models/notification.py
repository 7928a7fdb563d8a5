from datetime import datetime

from agromarket.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, default="order")  # order | task | payment
    title = db.Column(db.String(160), nullable=False, default="Order Alert")
    message = db.Column(db.Text, nullable=False)

    related_type = db.Column(db.String(32), nullable=True)  # retail | bulk | task
    related_id = db.Column(db.String(64), nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    # Set for transition notices so at-least-once callers never notify twice.
    dedupe_key = db.Column(db.String(160), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.kind or "order",
            "title": self.title or "",
            "message": self.message or "",
            "related_type": self.related_type or "",
            "related_id": self.related_id or "",
            "is_read": bool(self.is_read),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

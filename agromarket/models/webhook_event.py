from datetime import datetime

from agromarket.extensions import db


class WebhookEvent(db.Model):
    """Processed-callback log; one row per gateway checkout request."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("provider", "event_id", name="uq_webhook_event_provider_event"),
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="mpesa")
    event_id = db.Column(db.String(128), nullable=False, index=True)
    order_kind = db.Column(db.String(16), nullable=True)
    order_reference = db.Column(db.String(40), nullable=True)
    result_code = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), nullable=False, default="received")  # received | processed | ignored | failed
    processed_at = db.Column(db.DateTime, nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    payload_hash = db.Column(db.String(128), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event_id": self.event_id,
            "order_kind": self.order_kind or "",
            "order_reference": self.order_reference or "",
            "result_code": self.result_code,
            "status": self.status or "",
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "request_id": self.request_id or "",
            "payload_hash": self.payload_hash or "",
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

from datetime import datetime
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from agromarket.extensions import db


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    password_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # buyer | vendor | farmer | rider | admin
    role = db.Column(db.String(32), nullable=False, default="buyer", index=True)
    status = db.Column(db.String(24), nullable=False, default="active")

    # Display names used by the courier task views
    business_name = db.Column(db.String(160), nullable=True)
    farm_name = db.Column(db.String(160), nullable=True)
    # Where couriers collect goods from this seller
    address = db.Column(db.String(255), nullable=True)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def display_name(self) -> str:
        return (self.farm_name or self.business_name or self.name or "").strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": getattr(self, "phone", None),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "role": self.role or "buyer",
            "status": self.status or "active",
            "business_name": self.business_name or "",
            "farm_name": self.farm_name or "",
            "address": self.address or "",
        }

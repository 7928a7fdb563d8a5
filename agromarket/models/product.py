from datetime import datetime

from agromarket.extensions import db


class Product(db.Model):
    """Retail catalog entry sold by a vendor. Read-only for the order flow."""

    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Float, nullable=False, default=0.0)
    image_path = db.Column(db.String(1024), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def seller_id(self):
        return self.vendor_id

    def to_dict(self):
        return {
            "id": int(self.id),
            "vendor_id": int(self.vendor_id) if self.vendor_id is not None else None,
            "name": self.name or "",
            "price": float(self.price or 0.0),
            "image_path": self.image_path or "",
        }


class BulkProduct(db.Model):
    """Bulk produce listed by a farmer for vendors."""

    __tablename__ = "bulk_products"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Float, nullable=False, default=0.0)
    unit = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def seller_id(self):
        return self.owner_id

    @property
    def image_path(self):
        return None

    def to_dict(self):
        return {
            "id": int(self.id),
            "owner_id": int(self.owner_id) if self.owner_id is not None else None,
            "name": self.name or "",
            "price": float(self.price or 0.0),
            "unit": self.unit or "",
        }

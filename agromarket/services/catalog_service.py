from __future__ import annotations

from dataclasses import dataclass

from agromarket.errors import NotFound
from agromarket.extensions import db
from agromarket.ledger import variant_for
from agromarket.models import PRODUCT_MODELS
from agromarket.utils.money import money_major_to_minor


@dataclass(frozen=True)
class ResolvedProduct:
    product_id: int
    seller_id: int
    name: str
    unit_price_minor: int
    image_path: str | None = None


def resolve_product(kind: str, product_id) -> ResolvedProduct:
    """Authoritative price and seller for a catalog entry.

    Client-supplied prices are never read; this is the only source of the
    unit price that ends up on an order line.
    """
    model = PRODUCT_MODELS[variant_for(kind).kind]
    try:
        pid = int(product_id)
    except (TypeError, ValueError):
        raise NotFound(f"Product {product_id} not found")
    product = db.session.get(model, pid)
    if product is None or product.seller_id is None:
        raise NotFound(f"Product {pid} not found")
    return ResolvedProduct(
        product_id=int(product.id),
        seller_id=int(product.seller_id),
        name=product.name or "",
        unit_price_minor=money_major_to_minor(product.price),
        image_path=product.image_path,
    )

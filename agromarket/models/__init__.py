from agromarket.ledger import BULK, RETAIL
from agromarket.models.user import User
from agromarket.models.product import Product, BulkProduct
from agromarket.models.order import Order, OrderItem, BulkOrder, BulkOrderItem
from agromarket.models.delivery_task import DeliveryTask, BulkDeliveryTask
from agromarket.models.notification import Notification
from agromarket.models.webhook_event import WebhookEvent
from agromarket.models.escrow_transition import EscrowTransition
from agromarket.models.order_event import OrderEvent
from agromarket.models.idempotency_key import IdempotencyKey

ORDER_MODELS = {RETAIL: Order, BULK: BulkOrder}
ITEM_MODELS = {RETAIL: OrderItem, BULK: BulkOrderItem}
TASK_MODELS = {RETAIL: DeliveryTask, BULK: BulkDeliveryTask}
PRODUCT_MODELS = {RETAIL: Product, BULK: BulkProduct}

__all__ = [
    "User",
    "Product",
    "BulkProduct",
    "Order",
    "OrderItem",
    "BulkOrder",
    "BulkOrderItem",
    "DeliveryTask",
    "BulkDeliveryTask",
    "Notification",
    "WebhookEvent",
    "EscrowTransition",
    "OrderEvent",
    "IdempotencyKey",
    "ORDER_MODELS",
    "ITEM_MODELS",
    "TASK_MODELS",
    "PRODUCT_MODELS",
]

from __future__ import annotations

import itertools
import os
import unittest

from agromarket import create_app
from agromarket.extensions import db
from agromarket.integrations.payments.base import PaymentsProvider, StkPushResult
from agromarket.models import BulkProduct, Product, User
from agromarket.services.notification_service import NotificationPort
from agromarket.services.order_placement_service import place_order
from agromarket.services.payment_callback_service import process_stk_callback
from agromarket.utils.jwt_utils import create_access_token

_ENV = {
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "DATABASE_URL": "sqlite:///:memory:",
    "AGROMARKET_ENV": "test",
    "PAYMENTS_PROVIDER": "mock",
    "MOCK_PAYMENTS_FORCE_FAIL": "0",
    "MPESA_CALLBACK_QUEUE": "0",
    "RETAIL_SERVICE_FEE": "1",
    "BULK_SERVICE_FEE": "1",
    "RETAIL_DELIVERY_FEE": "100",
    "BULK_DELIVERY_FEE": "500",
}

_seq = itertools.count(1)


class RecordingNotifier(NotificationPort):
    def __init__(self):
        self.sent = []

    def notify(self, recipient_id, *, message, related_type=None, related_id=None, kind="order", title="Order Alert", dedupe_key=None):
        self.sent.append(
            {
                "recipient_id": int(recipient_id),
                "title": title,
                "message": message,
                "related_id": related_id,
                "dedupe_key": dedupe_key,
            }
        )
        return self.sent[-1]

    def recipients(self, title: str | None = None) -> list[int]:
        return [n["recipient_id"] for n in self.sent if title is None or n["title"] == title]


class ScriptedProvider(PaymentsProvider):
    """Gateway double that answers with a fixed result and counts pushes."""

    name = "scripted"

    def __init__(self, *, response_code="0", customer_message="Success. Request accepted for processing", error=None, checkout_request_id=None):
        self.response_code = response_code
        self.checkout_request_id = checkout_request_id
        self.customer_message = customer_message
        self.error = error
        self.calls = []

    def initiate(self, *, amount_minor, phone, correlation_id, description=""):
        self.calls.append({"amount_minor": amount_minor, "phone": phone, "correlation_id": correlation_id})
        if self.error is not None:
            raise self.error
        accepted = str(self.response_code) == "0"
        return StkPushResult(
            response_code=str(self.response_code),
            checkout_request_id=(self.checkout_request_id or f"ws_CO_test_{len(self.calls)}_{correlation_id}") if accepted else "",
            merchant_request_id="mr-test",
            customer_message=self.customer_message,
            provider=self.name,
        )


def stk_callback(checkout_request_id, *, result_code=0, amount=None, receipt="QKT7ABCD12", when="20260105143015", phone=254712345678, desc=None):
    stk = {
        "MerchantRequestID": "mr-test",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": desc or ("The service request is processed successfully." if result_code == 0 else "Request cancelled by user"),
    }
    if result_code == 0:
        items = [
            {"Name": "MpesaReceiptNumber", "Value": receipt},
            {"Name": "TransactionDate", "Value": int(when)},
            {"Name": "PhoneNumber", "Value": phone},
        ]
        if amount is not None:
            items.insert(0, {"Name": "Amount", "Value": amount})
        stk["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": stk}}


class FulfillmentTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {key: os.getenv(key) for key in _ENV}
        os.environ.update(_ENV)
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def setUp(self):
        self.app.extensions.pop("agromarket.notifier", None)
        self.app.extensions.pop("agromarket.payments", None)
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()

    def make_user(self, role: str, name: str = "", **extra) -> int:
        n = next(_seq)
        with self.app.app_context():
            user = User(
                name=name or f"{role.title()} {n}",
                email=f"{role}-{n}@agromarket.test",
                phone=f"07{n:08d}",
                role=role,
                **extra,
            )
            user.set_password("Passw0rd!")
            db.session.add(user)
            db.session.commit()
            return int(user.id)

    def make_product(self, vendor_id: int, price: float, name: str = "Sukuma wiki") -> int:
        with self.app.app_context():
            product = Product(vendor_id=vendor_id, name=name, price=price)
            db.session.add(product)
            db.session.commit()
            return int(product.id)

    def make_bulk_product(self, farmer_id: int, price: float, name: str = "Maize 90kg") -> int:
        with self.app.app_context():
            product = BulkProduct(owner_id=farmer_id, name=name, price=price, unit="bag")
            db.session.add(product)
            db.session.commit()
            return int(product.id)

    def user(self, user_id: int) -> User:
        # Call inside an app context.
        return db.session.get(User, user_id)

    def auth(self, user_id: int) -> dict:
        with self.app.app_context():
            token = create_access_token(user_id)
        return {"Authorization": f"Bearer {token}"}

    def place_paid_order(self, kind: str, buyer_id: int, product_id: int, quantity: int = 1) -> str:
        """Place an order and settle its payment callback; returns the order reference."""
        with self.app.app_context():
            order = place_order(
                kind,
                self.user(buyer_id),
                [{"product_id": product_id, "quantity": quantity}],
                {"street": "Moi Avenue 12", "city": "Nairobi"},
                "0712345678",
                provider=ScriptedProvider(),
                notifier=RecordingNotifier(),
            )
            process_stk_callback(stk_callback(order.checkout_request_id), notifier=RecordingNotifier())
            return order.reference

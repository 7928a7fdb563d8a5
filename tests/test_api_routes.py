from __future__ import annotations

import unittest
from unittest.mock import patch

from agromarket.extensions import db
from agromarket.models import IdempotencyKey, Order

from fulfillment_case import FulfillmentTestCase, ScriptedProvider, stk_callback

ADDRESS = {"street": "Biashara St 7", "city": "Kisumu", "postalCode": "40100"}


class ApiRoutesTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.provider = ScriptedProvider()
        self.app.extensions["agromarket.payments"] = self.provider
        self.buyer_id = self.make_user("buyer")
        self.vendor_id = self.make_user("vendor", address="Kibuye Market")
        self.rider_id = self.make_user("rider")
        self.admin_id = self.make_user("admin")
        self.product = self.make_product(self.vendor_id, 150.0)

    def _place(self, headers=None):
        return self.client.post(
            "/api/orders",
            json={
                "items": [{"productId": self.product, "quantity": 2}],
                "shippingAddress": ADDRESS,
                "phone": "+254 712 345 678",
            },
            headers={**self.auth(self.buyer_id), **(headers or {})},
        )

    def _settle(self, order: dict):
        res = self.client.post("/api/payments/mpesa/callback", json=stk_callback(order["checkout_request_id"]))
        self.assertEqual(res.status_code, 200)

    def test_place_order_recomputes_price(self):
        res = self._place()
        self.assertEqual(res.status_code, 201)
        order = res.get_json()["order"]
        self.assertEqual(order["total_amount"], 301.0)
        self.assertEqual(order["payment_status"], "Pending")
        self.assertEqual(order["order_status"], "Processing")
        self.assertEqual(order["shipping_address"]["postal_code"], "40100")
        self.assertEqual(self.provider.calls[0]["amount_minor"], 30100)
        self.assertEqual(self.provider.calls[0]["phone"], "254712345678")

    def test_place_order_requires_buyer_role(self):
        res = self.client.post("/api/orders", json={"items": []})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "UNAUTHORIZED")

        res = self.client.post("/api/orders", json={"items": []}, headers=self.auth(self.rider_id))
        self.assertEqual(res.status_code, 403)

    def test_rejected_push_returns_gateway_error_and_stores_nothing(self):
        self.app.extensions["agromarket.payments"] = ScriptedProvider(
            response_code="1", customer_message="Insufficient balance"
        )
        res = self._place()
        self.assertEqual(res.status_code, 502)
        body = res.get_json()
        self.assertEqual(body["message"], "Insufficient balance")
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 0)

    def test_idempotency_key_replays_first_response(self):
        first = self._place({"Idempotency-Key": "checkout-42"})
        second = self._place({"Idempotency-Key": "checkout-42"})
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.get_json()["order"]["reference"], second.get_json()["order"]["reference"])
        self.assertEqual(len(self.provider.calls), 1)
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 1)

    def test_idempotency_key_released_after_failure(self):
        self.app.extensions["agromarket.payments"] = ScriptedProvider(response_code="1")
        self.assertEqual(self._place({"Idempotency-Key": "retry-me"}).status_code, 502)
        with self.app.app_context():
            self.assertEqual(IdempotencyKey.query.count(), 0)
        self.app.extensions["agromarket.payments"] = self.provider
        self.assertEqual(self._place({"Idempotency-Key": "retry-me"}).status_code, 201)

    def test_end_to_end_delivery(self):
        order = self._place().get_json()["order"]
        ref = order["reference"]
        self._settle(order)

        status = self.client.get(f"/api/orders/retail/{ref}/status", headers=self.auth(self.buyer_id)).get_json()
        self.assertEqual(status["payment_status"], "Paid")
        self.assertEqual(status["order_status"], "New Order")

        accepted = self.client.patch(f"/api/orders/retail/{ref}/accept", headers=self.auth(self.vendor_id))
        self.assertEqual(accepted.status_code, 201)
        task = accepted.get_json()["task"]
        pickup_code = task["pickup_code"]

        again = self.client.patch(f"/api/orders/retail/{ref}/accept", headers=self.auth(self.vendor_id))
        self.assertEqual(again.status_code, 409)

        pool = self.client.get("/api/rider/tasks/available", headers=self.auth(self.rider_id)).get_json()["items"]
        self.assertEqual([t["id"] for t in pool], [task["id"]])
        self.assertEqual(pool[0]["pickup_address"], "Kibuye Market")

        claimed = self.client.post(f"/api/rider/tasks/{task['id']}/accept", headers=self.auth(self.rider_id))
        self.assertEqual(claimed.status_code, 200)

        bad = self.client.post(
            "/api/rider/confirm-pickup",
            json={"orderId": ref, "code": "WRONG1"},
            headers=self.auth(self.rider_id),
        )
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.get_json()["error"], "INVALID_SCAN")

        picked = self.client.post(
            "/api/rider/confirm-pickup",
            json={"order_id": ref, "code": pickup_code},
            headers=self.auth(self.rider_id),
        )
        self.assertEqual(picked.status_code, 200)

        code = self.client.get(f"/api/orders/retail/{ref}/delivery-code", headers=self.auth(self.buyer_id))
        self.assertEqual(code.status_code, 200)
        delivery_code = code.get_json()["delivery_code"]
        self.assertEqual(
            self.client.get(f"/api/orders/retail/{ref}/delivery-code", headers=self.auth(self.rider_id)).status_code,
            403,
        )

        balance = self.client.get("/api/admin/escrow-balance", headers=self.auth(self.admin_id)).get_json()
        self.assertEqual(balance["retail"], 301.0)

        delivered = self.client.post(
            "/api/rider/confirm-delivery",
            json={"order_id": ref, "code": delivery_code},
            headers=self.auth(self.rider_id),
        )
        self.assertEqual(delivered.status_code, 200)
        self.assertEqual(delivered.get_json()["task"]["status"], "Delivered")

        balance = self.client.get("/api/admin/escrow-balance", headers=self.auth(self.admin_id)).get_json()
        self.assertEqual(balance["total"], 0.0)

        earnings = self.client.get("/api/rider/earnings", headers=self.auth(self.rider_id)).get_json()
        self.assertEqual(earnings["completed_deliveries"], 1)
        self.assertEqual(earnings["total_earnings"], 100.0)

        summary = self.client.get("/api/farmer/escrow-summary", headers=self.auth(self.vendor_id)).get_json()
        self.assertEqual(summary["kind"], "retail")
        self.assertEqual(summary["earnings_released"], 300.0)

        timeline = self.client.get(f"/api/orders/retail/{ref}/timeline", headers=self.auth(self.buyer_id)).get_json()
        events = [e["event"] for e in timeline["items"]]
        self.assertEqual(events[0], "order_placed")
        self.assertEqual(events[-1], "delivered")

    def test_admin_endpoints_are_admin_only(self):
        res = self.client.get("/api/admin/escrow-balance", headers=self.auth(self.vendor_id))
        self.assertEqual(res.status_code, 403)

        res = self.client.get("/api/farmer/escrow-summary", headers=self.auth(self.admin_id))
        self.assertEqual(res.status_code, 400)
        res = self.client.get(
            f"/api/farmer/escrow-summary?seller_id={self.vendor_id}&kind=retail",
            headers=self.auth(self.admin_id),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["seller_id"], self.vendor_id)

    def test_payment_status_is_private_to_buyer(self):
        order = self._place().get_json()["order"]
        other = self.make_user("buyer")
        res = self.client.get(f"/api/orders/retail/{order['reference']}/status", headers=self.auth(other))
        self.assertEqual(res.status_code, 403)

    def test_inactive_user_is_rejected(self):
        with self.app.app_context():
            user = self.user(self.buyer_id)
            user.status = "suspended"
            db.session.commit()
        self.assertEqual(self._place().status_code, 401)

    def test_request_reuses_user_loaded_for_auth_context(self):
        with patch("agromarket.utils.auth.decode_token") as second_decode:
            res = self.client.get("/api/rider/earnings", headers=self.auth(self.rider_id))
        self.assertEqual(res.status_code, 200)
        second_decode.assert_not_called()

    def test_suspended_user_is_not_cached_for_the_request(self):
        with self.app.app_context():
            self.user(self.rider_id).status = "suspended"
            db.session.commit()
        res = self.client.get("/api/rider/earnings", headers=self.auth(self.rider_id))
        self.assertEqual(res.status_code, 401)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import unittest

from agromarket.ledger import BULK, RETAIL, OrderStatus
from agromarket.services.order_placement_service import place_order

from fulfillment_case import FulfillmentTestCase, RecordingNotifier, ScriptedProvider

ADDRESS = {"street": "Ronald Ngala St 9", "city": "Nairobi"}


class OrderViewsTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer", name="Achieng")
        self.other_buyer_id = self.make_user("buyer")
        self.vendor_id = self.make_user("vendor")
        self.second_vendor_id = self.make_user("vendor")
        self.rider_id = self.make_user("rider")
        self.admin_id = self.make_user("admin")
        self.tomatoes = self.make_product(self.vendor_id, 120.0, name="Tomatoes")
        self.onions = self.make_product(self.second_vendor_id, 80.0, name="Onions")

    def _unpaid_order(self, buyer_id, lines) -> str:
        with self.app.app_context():
            order = place_order(
                RETAIL,
                self.user(buyer_id),
                [{"product_id": pid, "quantity": qty} for pid, qty in lines],
                ADDRESS,
                "0712345678",
                provider=ScriptedProvider(),
                notifier=RecordingNotifier(),
            )
            return order.reference

    def test_buyer_sees_only_own_orders_newest_first(self):
        first = self.place_paid_order(RETAIL, self.buyer_id, self.tomatoes)
        second = self._unpaid_order(self.buyer_id, [(self.onions, 3)])
        self.place_paid_order(RETAIL, self.other_buyer_id, self.tomatoes)

        res = self.client.get("/api/orders/retail/mine", headers=self.auth(self.buyer_id))
        self.assertEqual(res.status_code, 200)
        refs = [o["reference"] for o in res.get_json()["items"]]
        self.assertEqual(refs, [second, first])

    def test_seller_sees_only_their_lines_of_a_shared_order(self):
        ref = self._unpaid_order(self.buyer_id, [(self.tomatoes, 2), (self.onions, 1)])

        res = self.client.get("/api/orders/retail/selling", headers=self.auth(self.second_vendor_id))
        self.assertEqual(res.status_code, 200)
        [order] = res.get_json()["items"]
        self.assertEqual(order["reference"], ref)
        self.assertEqual([item["name"] for item in order["items"]], ["Onions"])
        self.assertEqual(order["seller_subtotal"], 80.0)
        with self.app.app_context():
            phone = self.user(self.buyer_id).phone
        self.assertEqual(order["buyer"], {"id": self.buyer_id, "name": "Achieng", "phone": phone})

        mine = self.client.get("/api/orders/retail/selling", headers=self.auth(self.vendor_id)).get_json()["items"]
        self.assertEqual([item["name"] for item in mine[0]["items"]], ["Tomatoes"])
        self.assertEqual(mine[0]["seller_subtotal"], 240.0)

    def test_seller_status_filter(self):
        paid = self.place_paid_order(RETAIL, self.buyer_id, self.tomatoes)
        unpaid = self._unpaid_order(self.buyer_id, [(self.tomatoes, 1)])
        headers = self.auth(self.vendor_id)

        res = self.client.get(f"/api/orders/retail/selling?status={OrderStatus.NEW_ORDER}", headers=headers)
        self.assertEqual([o["reference"] for o in res.get_json()["items"]], [paid])
        res = self.client.get(f"/api/orders/retail/selling?status={OrderStatus.PROCESSING}", headers=headers)
        self.assertEqual([o["reference"] for o in res.get_json()["items"]], [unpaid])

    def test_selling_is_for_sellers_only(self):
        res = self.client.get("/api/orders/retail/selling", headers=self.auth(self.buyer_id))
        self.assertEqual(res.status_code, 403)
        res = self.client.get("/api/orders/retail/mine")
        self.assertEqual(res.status_code, 401)

    def test_bulk_orders_match_on_farmer(self):
        farmer_id = self.make_user("farmer")
        other_farmer_id = self.make_user("farmer")
        bulk_buyer_id = self.make_user("vendor")
        maize = self.make_bulk_product(farmer_id, 3000.0)
        ref = self.place_paid_order(BULK, bulk_buyer_id, maize, 2)

        res = self.client.get("/api/orders/bulk/selling", headers=self.auth(farmer_id))
        [order] = res.get_json()["items"]
        self.assertEqual(order["reference"], ref)
        self.assertEqual(order["buyer"]["id"], bulk_buyer_id)
        res = self.client.get("/api/orders/bulk/selling", headers=self.auth(other_farmer_id))
        self.assertEqual(res.get_json()["items"], [])

        res = self.client.get("/api/orders/bulk/mine", headers=self.auth(bulk_buyer_id))
        self.assertEqual([o["reference"] for o in res.get_json()["items"]], [ref])

    def test_detail_is_for_participants_and_admin(self):
        ref = self._unpaid_order(self.buyer_id, [(self.tomatoes, 1)])
        url = f"/api/orders/retail/{ref}"

        for user_id in (self.buyer_id, self.vendor_id, self.admin_id):
            res = self.client.get(url, headers=self.auth(user_id))
            self.assertEqual(res.status_code, 200)
            self.assertEqual(res.get_json()["order"]["reference"], ref)
        for user_id in (self.other_buyer_id, self.second_vendor_id, self.rider_id):
            res = self.client.get(url, headers=self.auth(user_id))
            self.assertEqual(res.status_code, 403)

    def test_detail_of_unknown_order(self):
        res = self.client.get("/api/orders/retail/ORD-NOPE", headers=self.auth(self.buyer_id))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "NOT_FOUND")


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from agromarket.extensions import db
from agromarket.ledger import BULK, RETAIL
from agromarket.models import BulkDeliveryTask, DeliveryTask
from agromarket.services.dispatch_service import (
    accept_order,
    claim_task,
    confirm_delivery,
    confirm_pickup,
    courier_earnings,
    list_available_tasks,
    list_courier_tasks,
)

from fulfillment_case import FulfillmentTestCase, RecordingNotifier


class CourierViewsTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer", name="Wanjiru")
        self.vendor_id = self.make_user("vendor", business_name="Mama Mboga", address="Stall 9, Gikomba")
        self.farmer_id = self.make_user("farmer", farm_name="Nyeri Hills Farm", address="Othaya Road")
        self.bulk_buyer_id = self.make_user("vendor")
        self.rider_id = self.make_user("rider")
        self.product = self.make_product(self.vendor_id, 80.0)
        self.bulk_product = self.make_bulk_product(self.farmer_id, 1500.0)

        retail_ref = self.place_paid_order(RETAIL, self.buyer_id, self.product, 1)
        bulk_ref = self.place_paid_order(BULK, self.bulk_buyer_id, self.bulk_product, 1)
        with self.app.app_context():
            retail = accept_order(RETAIL, retail_ref, self.user(self.vendor_id), notifier=RecordingNotifier())
            bulk = accept_order(BULK, bulk_ref, self.user(self.farmer_id), notifier=RecordingNotifier())
            # make the bulk task the older one
            bulk.created_at = datetime.utcnow() - timedelta(hours=1)
            db.session.commit()
            self.retail_task = retail.reference
            self.bulk_task = bulk.reference
            self.retail_ref = retail_ref
            self.bulk_ref = bulk_ref

    def test_available_tasks_oldest_first_without_codes(self):
        with self.app.app_context():
            tasks = list_available_tasks()
        self.assertEqual([t["id"] for t in tasks], [self.bulk_task, self.retail_task])

        bulk, retail = tasks
        self.assertEqual(bulk["type"], "B2B")
        self.assertEqual(bulk["seller_name"], "Nyeri Hills Farm")
        self.assertEqual(bulk["pickup_address"], "Othaya Road")
        self.assertEqual(bulk["delivery_fee"], 500.0)
        self.assertEqual(bulk["order_id"], self.bulk_ref)

        self.assertEqual(retail["type"], "B2C")
        self.assertEqual(retail["seller_name"], "Mama Mboga")
        self.assertEqual(retail["pickup_address"], "Stall 9, Gikomba")
        self.assertEqual(retail["delivery_address"], "Moi Avenue 12, Nairobi")
        self.assertEqual(retail["total_amount"], 81.0)
        self.assertEqual(retail["delivery_fee"], 100.0)

        for task in tasks:
            self.assertNotIn("pickup_code", task)
            self.assertNotIn("delivery_code", task)
            self.assertNotIn("buyer_phone", task)

    def test_claimed_task_leaves_pool_and_shows_buyer_contact(self):
        with self.app.app_context():
            claim_task(self.retail_task, self.user(self.rider_id), notifier=RecordingNotifier())
            available = [t["id"] for t in list_available_tasks()]
            mine = list_courier_tasks(self.user(self.rider_id))
        self.assertEqual(available, [self.bulk_task])
        self.assertEqual(len(mine), 1)
        self.assertEqual(mine[0]["id"], self.retail_task)
        self.assertEqual(mine[0]["buyer_name"], "Wanjiru")
        self.assertTrue(mine[0]["buyer_phone"])
        self.assertNotIn("pickup_code", mine[0])

    def test_active_filter_and_earnings(self):
        with self.app.app_context():
            rider = self.user(self.rider_id)
            claim_task(self.retail_task, rider, notifier=RecordingNotifier())
            claim_task(self.bulk_task, rider, notifier=RecordingNotifier())

            retail = DeliveryTask.query.filter_by(reference=self.retail_task).first()
            pickup, code = retail.pickup_code, retail.buyer_confirmation_code
            confirm_pickup(self.retail_ref, pickup, rider, notifier=RecordingNotifier())
            confirm_delivery(self.retail_ref, code, rider, notifier=RecordingNotifier())

            active = list_courier_tasks(rider, active_only=True)
            everything = list_courier_tasks(rider)
            earnings = courier_earnings(rider)
            bulk_status = BulkDeliveryTask.query.filter_by(reference=self.bulk_task).first().status

        self.assertEqual([t["id"] for t in active], [self.bulk_task])
        self.assertEqual(active[0]["status"], bulk_status)
        # newest first
        self.assertEqual([t["id"] for t in everything], [self.retail_task, self.bulk_task])
        self.assertEqual(earnings["completed_deliveries"], 1)
        self.assertEqual(earnings["total_earnings"], 100.0)
        self.assertEqual(earnings["total_earnings_minor"], 10000)
        self.assertEqual([d["id"] for d in earnings["recent_deliveries"]], [self.retail_task])
        self.assertIsNotNone(earnings["recent_deliveries"][0]["delivered_at"])

    def test_new_courier_has_no_earnings(self):
        newcomer = self.make_user("driver")
        with self.app.app_context():
            earnings = courier_earnings(self.user(newcomer))
        self.assertEqual(earnings["total_earnings"], 0.0)
        self.assertEqual(earnings["completed_deliveries"], 0)
        self.assertEqual(earnings["recent_deliveries"], [])


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import unittest

from agromarket.ledger import BULK, RETAIL
from agromarket.models import EscrowTransition, Order
from agromarket.services.dispatch_service import accept_order, claim_task, confirm_delivery, confirm_pickup
from agromarket.services.escrow_service import (
    EscrowStatus,
    current_escrow_status,
    escrow_balance,
    seller_escrow_summary,
    transition_escrow,
)
from agromarket.services.order_placement_service import place_order
from agromarket.services.payment_callback_service import process_stk_callback

from fulfillment_case import FulfillmentTestCase, RecordingNotifier, ScriptedProvider, stk_callback


class EscrowBalanceTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer")
        self.vendor_id = self.make_user("vendor")
        self.farmer_id = self.make_user("farmer")
        self.rider_id = self.make_user("rider")
        self.product = self.make_product(self.vendor_id, 120.5)
        self.bulk_product = self.make_bulk_product(self.farmer_id, 2000.0)

    def test_empty_balance(self):
        with self.app.app_context():
            snapshot = escrow_balance()
        self.assertEqual(snapshot["total"], 0.0)
        self.assertEqual(snapshot["total_minor"], 0)

    def test_only_held_orders_count(self):
        self.place_paid_order(RETAIL, self.buyer_id, self.product, 2)
        self.place_paid_order(BULK, self.vendor_id, self.bulk_product, 1)
        with self.app.app_context():
            pending = place_order(
                RETAIL,
                self.user(self.buyer_id),
                [{"product_id": self.product, "quantity": 5}],
                {"street": "Tom Mboya St", "city": "Nairobi"},
                "0712345678",
                provider=ScriptedProvider(),
                notifier=RecordingNotifier(),
            )
            failed = place_order(
                RETAIL,
                self.user(self.buyer_id),
                [{"product_id": self.product, "quantity": 3}],
                {"street": "Tom Mboya St", "city": "Nairobi"},
                "0712345678",
                provider=ScriptedProvider(),
                notifier=RecordingNotifier(),
            )
            process_stk_callback(stk_callback(failed.checkout_request_id, result_code=1), notifier=RecordingNotifier())
            self.assertIsNotNone(pending.id)

            snapshot = escrow_balance()
        self.assertEqual(snapshot["retail_minor"], 24200)
        self.assertEqual(snapshot["bulk_minor"], 200100)
        self.assertEqual(snapshot["total_minor"], 224300)
        self.assertEqual(snapshot["retail"], 242.0)
        self.assertEqual(snapshot["bulk"], 2001.0)
        self.assertEqual(snapshot["total"], 2243.0)

    def test_seller_summary_moves_from_escrow_to_released(self):
        ref = self.place_paid_order(RETAIL, self.buyer_id, self.product, 2)
        with self.app.app_context():
            summary = seller_escrow_summary(self.vendor_id, RETAIL)
            self.assertEqual(summary["sales_in_escrow_minor"], 24100)
            self.assertEqual(summary["earnings_released_minor"], 0)

            task = accept_order(RETAIL, ref, self.user(self.vendor_id), notifier=RecordingNotifier())
            task_ref, pickup, code = task.reference, task.pickup_code, task.buyer_confirmation_code
            rider = self.user(self.rider_id)
            claim_task(task_ref, rider, notifier=RecordingNotifier())
            confirm_pickup(ref, pickup, rider, notifier=RecordingNotifier())
            confirm_delivery(ref, code, rider, notifier=RecordingNotifier())

            summary = seller_escrow_summary(self.vendor_id, RETAIL)
            self.assertEqual(summary["sales_in_escrow"], 0.0)
            self.assertEqual(summary["earnings_released"], 241.0)

    def test_bulk_seller_summary_excludes_fee(self):
        self.place_paid_order(BULK, self.vendor_id, self.bulk_product, 3)
        with self.app.app_context():
            summary = seller_escrow_summary(self.farmer_id, BULK)
        self.assertEqual(summary["sales_in_escrow"], 6000.0)
        self.assertEqual(summary["earnings_released"], 0.0)


class EscrowLedgerTestCase(FulfillmentTestCase):
    def test_transitions_are_idempotent_and_ordered(self):
        buyer_id = self.make_user("buyer")
        vendor_id = self.make_user("vendor")
        product = self.make_product(vendor_id, 10.0)
        ref = self.place_paid_order(RETAIL, buyer_id, product)
        with self.app.app_context():
            order = Order.query.filter_by(reference=ref).first()
            self.assertEqual(current_escrow_status(order), EscrowStatus.HELD)

            first = transition_escrow(order, EscrowStatus.RELEASED, idempotency_key="release-1")
            again = transition_escrow(order, EscrowStatus.RELEASED, idempotency_key="release-1")
            self.assertEqual(first.id, again.id)
            self.assertEqual(EscrowTransition.query.filter_by(order_id=order.id).count(), 2)

            with self.assertRaises(ValueError):
                transition_escrow(order, EscrowStatus.HELD, idempotency_key="hold-again")
            with self.assertRaises(ValueError):
                transition_escrow(order, EscrowStatus.HELD, idempotency_key="")


if __name__ == "__main__":
    unittest.main()

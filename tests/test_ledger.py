from __future__ import annotations

import unittest

from agromarket.ledger import (
    BULK,
    RETAIL,
    OrderStatus,
    PaymentStatus,
    TaskStatus,
    assert_transition,
    can_transition,
    can_transition_task,
    is_payment_held,
    order_source_status,
    task_source_status,
    variant_for,
)


class LedgerTransitionsTestCase(unittest.TestCase):
    def test_retail_happy_path(self):
        path = [
            OrderStatus.PROCESSING,
            OrderStatus.NEW_ORDER,
            OrderStatus.QR_SCANNING,
            OrderStatus.IN_DELIVERY,
            OrderStatus.DELIVERED,
        ]
        for current, target in zip(path, path[1:]):
            self.assertTrue(can_transition(RETAIL, current, target), f"{current}->{target}")

    def test_bulk_uses_its_own_labels(self):
        path = [
            OrderStatus.PROCESSING,
            OrderStatus.PENDING,
            OrderStatus.QR_SCANNING,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ]
        for current, target in zip(path, path[1:]):
            self.assertTrue(can_transition(BULK, current, target), f"{current}->{target}")
        self.assertFalse(can_transition(BULK, OrderStatus.PROCESSING, OrderStatus.NEW_ORDER))
        self.assertFalse(can_transition(RETAIL, OrderStatus.QR_SCANNING, OrderStatus.IN_TRANSIT))

    def test_no_skipping_or_regression(self):
        self.assertFalse(can_transition(RETAIL, OrderStatus.NEW_ORDER, OrderStatus.IN_DELIVERY))
        self.assertFalse(can_transition(RETAIL, OrderStatus.IN_DELIVERY, OrderStatus.QR_SCANNING))
        with self.assertRaises(ValueError):
            assert_transition(RETAIL, OrderStatus.PROCESSING, OrderStatus.DELIVERED)

    def test_terminals_are_exclusive(self):
        for kind in (RETAIL, BULK):
            self.assertFalse(can_transition(kind, OrderStatus.DELIVERED, OrderStatus.CANCELLED))
            self.assertFalse(can_transition(kind, OrderStatus.CANCELLED, OrderStatus.DELIVERED))
            self.assertTrue(can_transition(kind, OrderStatus.QR_SCANNING, OrderStatus.CANCELLED))

    def test_task_moves_forward_only(self):
        self.assertTrue(can_transition_task(TaskStatus.AWAITING_ACCEPTANCE, TaskStatus.AWAITING_PICKUP))
        self.assertTrue(can_transition_task(TaskStatus.AWAITING_PICKUP, TaskStatus.IN_TRANSIT))
        self.assertTrue(can_transition_task(TaskStatus.IN_TRANSIT, TaskStatus.DELIVERED))
        self.assertFalse(can_transition_task(TaskStatus.IN_TRANSIT, TaskStatus.AWAITING_PICKUP))
        self.assertFalse(can_transition_task(TaskStatus.DELIVERED, TaskStatus.CANCELLED))

    def test_held_payment_status_per_kind(self):
        self.assertTrue(is_payment_held(RETAIL, PaymentStatus.PAID))
        self.assertFalse(is_payment_held(RETAIL, PaymentStatus.ESCROW))
        self.assertTrue(is_payment_held(BULK, PaymentStatus.ESCROW))
        self.assertFalse(is_payment_held(BULK, PaymentStatus.PENDING))

    def test_variant_aliases_and_fields(self):
        self.assertEqual(variant_for("B2C").kind, RETAIL)
        self.assertEqual(variant_for("b2b").kind, BULK)
        self.assertEqual(variant_for(BULK).task_courier_field, "driver_id")
        self.assertEqual(variant_for(RETAIL).task_buyer_code_field, "buyer_confirmation_code")
        with self.assertRaises(ValueError):
            variant_for("wholesale")

    def test_source_status_comes_from_the_tables(self):
        self.assertEqual(order_source_status(RETAIL, OrderStatus.NEW_ORDER), OrderStatus.PROCESSING)
        self.assertEqual(order_source_status(RETAIL, OrderStatus.QR_SCANNING), OrderStatus.NEW_ORDER)
        self.assertEqual(order_source_status(BULK, OrderStatus.QR_SCANNING), OrderStatus.PENDING)
        self.assertEqual(order_source_status(BULK, OrderStatus.DELIVERED), OrderStatus.IN_TRANSIT)
        self.assertEqual(task_source_status(TaskStatus.AWAITING_PICKUP), TaskStatus.AWAITING_ACCEPTANCE)
        self.assertEqual(task_source_status(TaskStatus.DELIVERED), TaskStatus.IN_TRANSIT)

    def test_source_status_needs_exactly_one_predecessor(self):
        with self.assertRaises(ValueError):
            order_source_status(RETAIL, OrderStatus.CANCELLED)
        with self.assertRaises(ValueError):
            order_source_status(RETAIL, OrderStatus.PROCESSING)
        with self.assertRaises(ValueError):
            task_source_status(TaskStatus.CANCELLED)


if __name__ == "__main__":
    unittest.main()

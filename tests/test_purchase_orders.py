"""
Tests for purchase order approval and rejection, including weighted-average costing
"""
import unittest

from pharmastock.models.batch import BatchStatus, ProductBatch
from pharmastock.models.order import OrderStatus
from pharmastock.schemas.order import OrderCreate, OrderItemCreate, OrderItemSizeCreate
from pharmastock.services import allocation_service, batch_service, order_service, purchase_order_service
from pharmastock.services.purchase_order_service import reverse_weighted_average_cost, weighted_average_cost
from test_utils import TestDataFactory, drop_all, make_session_factory


class WeightedAverageCostTests(unittest.TestCase):
    def test_blend(self):
        self.assertAlmostEqual(weighted_average_cost(10.0, 10, 6.0, 10), 8.0)
        self.assertAlmostEqual(weighted_average_cost(0.0, 0, 4.5, 20), 4.5)

    def test_reverse_undoes_blend(self):
        cost = weighted_average_cost(12.0, 30, 9.0, 15)
        self.assertAlmostEqual(reverse_weighted_average_cost(cost, 45, 9.0, 15), 12.0)

    def test_reverse_to_zero_units_is_undefined(self):
        self.assertIsNone(reverse_weighted_average_cost(4.5, 20, 4.5, 20))

    def test_reverse_below_zero_raises(self):
        with self.assertRaises(ValueError):
            reverse_weighted_average_cost(4.5, 10, 4.5, 20)


class PurchaseOrderTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        drop_all(self.engine)


class UntrackedPurchaseOrderTests(PurchaseOrderTestCase):
    def setUp(self):
        super().setUp()
        self.product = TestDataFactory.create_product(self.db, batch_tracked=False, price=10.0, stock=10)
        self.size = self.product.sizes[0]

    def test_approve_adds_stock_and_blends_cost(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        self.assertTrue(po.order_number.startswith("PO-"))

        po = purchase_order_service.approve_purchase_order(self.db, po.id, created_by="admin")

        self.assertTrue(po.po_approved)
        self.assertEqual(po.status, OrderStatus.CONFIRMED)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 20)
        self.assertAlmostEqual(self.size.cost_price, 8.0)

    def test_approve_then_reject_restores_stock_and_cost(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        purchase_order_service.approve_purchase_order(self.db, po.id)
        po = purchase_order_service.reject_purchase_order(self.db, po.id)

        self.assertTrue(po.po_rejected)
        self.assertFalse(po.po_approved)
        self.assertEqual(po.status, OrderStatus.CANCELLED)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 10)
        self.assertAlmostEqual(self.size.effective_cost, 10.0)

    def test_charges_are_added_on_approval_and_cleared_on_rejection(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        po = purchase_order_service.approve_purchase_order(self.db, po.id, handling_charges=5.0, fred_charges=3.0)
        self.assertEqual(po.total_amount, 68.0)

        po = purchase_order_service.reject_purchase_order(self.db, po.id)
        self.assertEqual(po.po_handling_charges, 0.0)
        self.assertEqual(po.po_fred_charges, 0.0)
        self.assertEqual(po.total_amount, 60.0)

    def test_double_approval_refused(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        purchase_order_service.approve_purchase_order(self.db, po.id)
        with self.assertRaises(ValueError):
            purchase_order_service.approve_purchase_order(self.db, po.id)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 20)

    def test_double_rejection_refused(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        purchase_order_service.approve_purchase_order(self.db, po.id)
        purchase_order_service.reject_purchase_order(self.db, po.id)
        with self.assertRaises(ValueError):
            purchase_order_service.reject_purchase_order(self.db, po.id)
        with self.assertRaises(ValueError):
            purchase_order_service.approve_purchase_order(self.db, po.id)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 10)

    def test_reject_unapproved_only_flags(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        po = purchase_order_service.reject_purchase_order(self.db, po.id)
        self.assertTrue(po.po_rejected)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 10)
        self.assertIsNone(self.size.cost_price)

    def test_reject_after_stock_was_sold_refused(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        purchase_order_service.approve_purchase_order(self.db, po.id)
        sale = TestDataFactory.create_sale_order(self.db, self.product, 15)
        order_service.confirm_order(self.db, sale.id)

        with self.assertRaises(ValueError):
            purchase_order_service.reject_purchase_order(self.db, po.id)
        po = order_service.get_order(self.db, po.id)
        self.assertTrue(po.po_approved)
        self.assertFalse(po.po_rejected)

    def test_sales_orders_cannot_be_approved(self):
        sale = TestDataFactory.create_sale_order(self.db, self.product, 1)
        with self.assertRaises(ValueError):
            purchase_order_service.approve_purchase_order(self.db, sale.id)

    def test_purchase_orders_are_not_confirmed_or_cancelled(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 10, 6.0)
        with self.assertRaises(ValueError):
            order_service.confirm_order(self.db, po.id)
        with self.assertRaises(ValueError):
            order_service.cancel_order(self.db, po.id)

    def test_zero_cost_basis_survives_approve_and_reject(self):
        free = TestDataFactory.create_product(self.db, batch_tracked=False, price=20.0, cost_price=0.0, stock=10)
        size = free.sizes[0]
        self.assertEqual(size.effective_cost, 0.0)

        po = TestDataFactory.create_purchase_order(self.db, free, 10, 5.0)
        purchase_order_service.approve_purchase_order(self.db, po.id)
        self.db.refresh(size)
        self.assertEqual(size.stock, 20)
        self.assertAlmostEqual(size.cost_price, 2.5)

        purchase_order_service.reject_purchase_order(self.db, po.id)
        self.db.refresh(size)
        self.assertEqual(size.stock, 10)
        self.assertEqual(size.cost_price, 0.0)

    def test_failed_reject_leaves_every_line_untouched(self):
        product = TestDataFactory.create_product(self.db, batch_tracked=False, price=10.0, cost_price=4.0, stock=5, sizes=2)
        first, second = product.sizes
        po = order_service.create_order(self.db, OrderCreate(
            order_type="purchase",
            customer_name="Acme Pharma Supply",
            items=[OrderItemCreate(
                product_id=product.id,
                sizes=[
                    OrderItemSizeCreate(size_id=first.id, quantity=10, price=7.0),
                    OrderItemSizeCreate(size_id=second.id, quantity=10, price=7.0),
                ],
            )],
        ))
        purchase_order_service.approve_purchase_order(self.db, po.id)
        sale = TestDataFactory.create_sale_order(self.db, product, 8, size=second)
        order_service.confirm_order(self.db, sale.id)

        with self.assertRaises(ValueError):
            purchase_order_service.reject_purchase_order(self.db, po.id)

        self.db.refresh(first)
        self.db.refresh(second)
        self.assertEqual(first.stock, 15)
        self.assertAlmostEqual(first.cost_price, 6.0)
        self.assertEqual(second.stock, 7)
        po = order_service.get_order(self.db, po.id)
        self.assertTrue(po.po_approved)
        self.assertFalse(po.po_rejected)

    def test_missing_order_returns_none(self):
        self.assertIsNone(purchase_order_service.approve_purchase_order(self.db, "missing"))
        self.assertIsNone(purchase_order_service.reject_purchase_order(self.db, "missing"))


class TrackedPurchaseOrderTests(PurchaseOrderTestCase):
    def setUp(self):
        super().setUp()
        self.product = TestDataFactory.create_product(self.db, batch_tracked=True, price=10.0)
        self.size = self.product.sizes[0]

    def test_lot_tracked_line_needs_expiry(self):
        with self.assertRaises(ValueError):
            order_service.create_order(self.db, OrderCreate(
                order_type="purchase",
                items=[OrderItemCreate(
                    product_id=self.product.id,
                    sizes=[OrderItemSizeCreate(size_id=self.size.id, quantity=5, price=2.0)],
                )],
            ))

    def test_approve_receives_a_batch(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 20, 4.5, batch_number="SUP-778")
        po = purchase_order_service.approve_purchase_order(self.db, po.id)

        line = po.items[0].sizes[0]
        batch = self.db.query(ProductBatch).filter(ProductBatch.id == line.batch_id).first()
        self.assertIsNotNone(batch)
        self.assertEqual(batch.batch_number, "SUP-778")
        self.assertEqual(batch.quantity, 20)
        self.assertEqual(batch.cost_per_unit, 4.5)
        self.assertEqual(batch.supplier_id, "Acme Pharma Supply")
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 20)
        self.assertAlmostEqual(self.size.cost_price, 4.5)

    def test_reject_empties_the_received_batch(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 20, 4.5)
        po = purchase_order_service.approve_purchase_order(self.db, po.id)
        batch_id = po.items[0].sizes[0].batch_id

        purchase_order_service.reject_purchase_order(self.db, po.id)

        batch = batch_service.get_batch(self.db, batch_id)
        self.assertEqual(batch.quantity, 0)
        self.assertEqual(batch.status, BatchStatus.DEPLETED)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 0)
        # No stock remains, so the pre-approval cost comes back
        self.assertIsNone(self.size.cost_price)
        self.assertEqual(batch_service.verify_batch_ledger(self.db), [])

    def test_reject_restores_cost_over_existing_stock(self):
        TestDataFactory.create_batch(self.db, self.product, quantity=10)
        first = TestDataFactory.create_purchase_order(self.db, self.product, 10, 8.0)
        purchase_order_service.approve_purchase_order(self.db, first.id)
        self.db.refresh(self.size)
        self.assertAlmostEqual(self.size.cost_price, 9.0)

        second = TestDataFactory.create_purchase_order(self.db, self.product, 20, 6.0)
        purchase_order_service.approve_purchase_order(self.db, second.id)
        self.db.refresh(self.size)
        self.assertAlmostEqual(self.size.cost_price, 7.5)

        purchase_order_service.reject_purchase_order(self.db, second.id)
        self.db.refresh(self.size)
        self.assertEqual(self.size.stock, 20)
        self.assertAlmostEqual(self.size.cost_price, 9.0)

    def test_reject_after_batch_was_drawn_refused(self):
        po = TestDataFactory.create_purchase_order(self.db, self.product, 20, 4.5)
        po = purchase_order_service.approve_purchase_order(self.db, po.id)
        allocation_service.allocate_from_batches(self.db, self.product.id, 5, size_id=self.size.id)

        with self.assertRaises(ValueError):
            purchase_order_service.reject_purchase_order(self.db, po.id)
        batch = batch_service.get_batch(self.db, po.items[0].sizes[0].batch_id)
        self.assertEqual(batch.quantity, 15)


if __name__ == "__main__":
    unittest.main()

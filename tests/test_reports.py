"""
Tests for inventory, expiry, movement and ledger reports
"""
import csv
import io
import unittest
from datetime import date

from pharmastock.models.batch import MovementType
from pharmastock.services import batch_service, order_service, report_service
from test_utils import TestDataFactory, drop_all, make_session_factory


class ReportTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        drop_all(self.engine)

    def test_inventory_summary_values(self):
        TestDataFactory.create_product(self.db, batch_tracked=False, price=10.0, cost_price=4.0, stock=50)
        TestDataFactory.create_product(self.db, batch_tracked=False, price=2.0, stock=5)

        summary = report_service.inventory_summary(self.db)

        self.assertEqual(summary["total_products"], 2)
        self.assertEqual(summary["total_units_in_stock"], 55)
        self.assertEqual(summary["inventory_value_at_cost"], 210.0)
        self.assertEqual(summary["inventory_value_at_price"], 510.0)
        self.assertEqual(summary["low_stock_count"], 1)
        self.assertEqual(summary["by_category"][0]["total_units"], 55)

    def test_expiry_buckets(self):
        product = TestDataFactory.create_product(self.db)
        today = date(2025, 1, 1)
        TestDataFactory.create_batch(self.db, product, quantity=3, expiry_date=date(2025, 1, 10))
        TestDataFactory.create_batch(self.db, product, quantity=4, expiry_date=date(2025, 2, 20))
        TestDataFactory.create_batch(self.db, product, quantity=5, expiry_date=date(2026, 1, 1))

        report = report_service.expiry_report(self.db, days=90, today=today)

        self.assertEqual(report["counts"]["within_30_days"], 1)
        self.assertEqual(report["counts"]["within_60_days"], 1)
        self.assertEqual(report["units_at_risk"], 7)
        self.assertEqual(report["counts"]["beyond_90_days"], 0)

    def test_wide_expiry_window_fills_last_bucket(self):
        product = TestDataFactory.create_product(self.db)
        today = date(2025, 1, 1)
        TestDataFactory.create_batch(self.db, product, quantity=5, expiry_date=date(2025, 7, 1))

        report = report_service.expiry_report(self.db, days=365, today=today)

        self.assertEqual(report["counts"]["beyond_90_days"], 1)
        self.assertEqual(report["units_at_risk"], 5)

    def test_movement_report_and_ledger(self):
        product = TestDataFactory.create_product(self.db)
        batch = TestDataFactory.create_batch(self.db, product, quantity=10, batch_number="MV-1")
        batch_service.record_movement(self.db, batch.id, MovementType.DISPOSAL, 2, notes="Broken vials")

        rows = report_service.batch_movement_report(self.db, product_id=product.id)
        self.assertEqual([r["movement_type"] for r in rows], ["disposal", "receipt"])
        self.assertEqual(rows[0]["signed_quantity"], -2)
        self.assertEqual(rows[0]["batch_number"], "MV-1")

        ledger = report_service.ledger_reconciliation(self.db)
        self.assertTrue(ledger["in_sync"])
        self.assertEqual(ledger["batches_checked"], 1)

    def test_top_products_counts_confirmed_sales_only(self):
        product = TestDataFactory.create_product(self.db, batch_tracked=False, price=3.0, stock=100)
        confirmed = TestDataFactory.create_sale_order(self.db, product, 4)
        order_service.confirm_order(self.db, confirmed.id)
        TestDataFactory.create_sale_order(self.db, product, 50)

        top = report_service.top_products(self.db)

        self.assertEqual(len(top), 1)
        self.assertEqual(top[0]["total_sold"], 4)
        self.assertEqual(top[0]["total_revenue"], 12.0)

    def test_batch_csv_export(self):
        product = TestDataFactory.create_product(self.db, sku="AMOX")
        TestDataFactory.create_batch(self.db, product, quantity=6, batch_number="CSV-1", cost_per_unit=1.25)

        rows = list(csv.reader(io.StringIO(report_service.export_batches_csv(self.db))))

        self.assertEqual(rows[0], report_service.BATCH_CSV_COLUMNS)
        self.assertEqual(rows[1][0], "AMOX")
        self.assertEqual(rows[1][2], "CSV-1")
        self.assertEqual(rows[1][6], "6")
        self.assertEqual(rows[1][7], "1.25")
        self.assertEqual(rows[1][8], "active")


if __name__ == "__main__":
    unittest.main()

# Overview: Threaded concurrency tests for allocation, dispatch and roll numbering.

"""
Scripted concurrency tests against a file-backed SQLite database.

Every worker thread pushes its own app context, so each one gets its own
session and connection, like separate requests would.
"""
import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta

from rollstock import create_app
from rollstock.errors import InsufficientStockError, RollstockError
from rollstock.extensions import db
from rollstock.models import Batch, Category, Gsm, Product, Quality, Roll, RollStatus, Sku, Supplier
from rollstock.services import allocation_service, dispatch_service, roll_service


POOL_SIZE = 6


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "RETRY_ATTEMPTS": 25,
            "RETRY_BACKOFF_BASE": 0.01,
            "RETRY_BACKOFF_MAX": 0.2,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            supplier = Supplier(name="Concurrent Mills", code="SUP-0100")
            category = Category(name="Sublimation", code="SUB")
            gsm = Gsm(name="55", value=55)
            quality = Quality(name="Premium")
            db.session.add_all([supplier, category, gsm, quality])
            db.session.flush()

            product = Product(category_id=category.id, gsm_id=gsm.id, quality_id=quality.id)
            db.session.add(product)
            db.session.flush()
            sku = Sku(product_id=product.id, sku_code="SUB-55-PREM-44", width_inches=44,
                      category_name="Sublimation", gsm="55", quality_name="Premium")
            batch = Batch(batch_code="BATCH-2410-001", supplier_id=supplier.id)
            db.session.add_all([sku, batch])
            db.session.commit()
            self.supplier_id = supplier.id
            self.batch_id = batch.id
            self.sku_id = sku.id

            start = datetime(2024, 10, 1, 8, 0, 0)
            rolls = roll_service.create_rolls(self.supplier_id, self.batch_id, [
                {"width_inches": 44, "original_length": 1000, "sku_id": self.sku_id,
                 "received_at": start + timedelta(hours=i)}
                for i in range(POOL_SIZE)
            ])
            self.roll_ids = [r.id for r in rolls]

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, args_list):
        threads = [threading.Thread(target=target, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_allocations_claim_each_roll_once(self):
        """N callers against a pool of exactly N rolls: every roll claimed once."""
        claimed = []
        errors = []
        lock = threading.Lock()

        def worker(ref):
            with self.app.app_context():
                try:
                    rolls = allocation_service.allocate(self.sku_id, 1, 500, ref)
                    with lock:
                        claimed.extend((ref, r.id) for r in rolls)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads(worker, [(f"SO-{i}/1",) for i in range(POOL_SIZE)])

        self.assertFalse(errors)
        self.assertEqual(len(claimed), POOL_SIZE)
        self.assertEqual(sorted(rid for _, rid in claimed), sorted(self.roll_ids))

        with self.app.app_context():
            for ref, rid in claimed:
                roll = db.session.get(Roll, rid)
                self.assertEqual(roll.status, RollStatus.ALLOCATED)
                self.assertEqual(roll.allocation_ref, ref)

    def test_oversubscribed_pool_fails_cleanly(self):
        """More callers than rolls: exactly POOL_SIZE succeed, the rest get InsufficientStock."""
        successes = []
        failures = []
        lock = threading.Lock()

        def worker(ref):
            with self.app.app_context():
                try:
                    allocation_service.allocate(self.sku_id, 2, 0, ref)
                    with lock:
                        successes.append(ref)
                except Exception as exc:
                    with lock:
                        failures.append(exc)
                finally:
                    db.session.remove()

        callers = POOL_SIZE
        self._run_threads(worker, [(f"SO-X{i}/1",) for i in range(callers)])

        self.assertEqual(len(successes), POOL_SIZE // 2)
        self.assertEqual(len(failures), callers - POOL_SIZE // 2)
        for exc in failures:
            self.assertIsInstance(exc, InsufficientStockError)

        with self.app.app_context():
            for ref in successes:
                self.assertEqual(len(allocation_service.get_allocated_rolls(ref)), 2)
            allocated = db.session.query(Roll).filter_by(status=RollStatus.ALLOCATED).count()
            self.assertEqual(allocated, POOL_SIZE)

    def test_concurrent_dispatch_of_same_rolls(self):
        """Two shipments racing for the same rolls: one wins, the other conflicts."""
        with self.app.app_context():
            rolls = allocation_service.allocate(self.sku_id, 3, 0, "SO-D/1")
            ids = [r.id for r in rolls]

        results = []
        lock = threading.Lock()

        def worker(ref):
            with self.app.app_context():
                try:
                    dispatch_service.dispatch(ref, ids)
                    with lock:
                        results.append(("ok", ref))
                except RollstockError as exc:
                    with lock:
                        results.append((exc.code, ref))
                finally:
                    db.session.remove()

        self._run_threads(worker, [("DC-A",), ("DC-B",)])

        outcomes = sorted(code for code, _ in results)
        self.assertEqual(outcomes, ["STATE_CONFLICT", "ok"])
        winner = next(ref for code, ref in results if code == "ok")

        with self.app.app_context():
            refs = {db.session.get(Roll, rid).dispatch_ref for rid in ids}
            self.assertEqual(refs, {winner})

    def test_concurrent_receipts_get_unique_roll_numbers(self):
        numbers = []
        errors = []
        lock = threading.Lock()

        def worker(index):
            with self.app.app_context():
                try:
                    rolls = roll_service.create_rolls(self.supplier_id, self.batch_id, [
                        {"width_inches": 44, "original_length": 500,
                         "received_at": datetime(2024, 10, 15, 8, 0, 0)},
                        {"width_inches": 44, "original_length": 600,
                         "received_at": datetime(2024, 10, 15, 9, 0, 0)},
                    ])
                    with lock:
                        numbers.extend(r.roll_number for r in rolls)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads(worker, [(i,) for i in range(5)])

        self.assertFalse(errors)
        self.assertEqual(len(numbers), 10)
        self.assertEqual(len(set(numbers)), 10)


if __name__ == "__main__":
    unittest.main()

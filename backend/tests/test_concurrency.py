# Overview: Threaded races against a file-backed SQLite database.

"""
Concurrency tests for branchledger.

Each worker runs in its own app context and session against a shared
on-disk database, so the SQLite write lock is actually contended.
"""
import os
import tempfile
import threading
import unittest

from branchledger import create_app
from branchledger.errors import PreconditionFailed
from branchledger.extensions import db
from branchledger.models import Branch, Company, Order, PaymentMethod, User
from branchledger.services import discount_service, document_service, payment_service


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SECRET_KEY": "concurrency-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            company = Company(name="Concurrency Co", is_active=True)
            db.session.add(company)
            db.session.commit()

            manager = User(company_id=company.id, username="mgr", full_name="Manager", role="manager")
            cashier = User(company_id=company.id, username="cash", full_name="Cashier", role="cashier")
            db.session.add_all([manager, cashier])
            db.session.commit()
            self.manager_id = manager.id
            self.cashier_id = cashier.id

            branch = Branch(company_id=company.id, name="Centro", code="C1", manager_id=manager.id)
            db.session.add(branch)
            method = PaymentMethod(name="Tarjeta", abbreviation="TC", is_cash=False, is_active=True)
            db.session.add(method)
            db.session.commit()
            self.branch_id = branch.id
            self.method_id = method.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.app.extensions["realtime"].shutdown()
        self.tmpdir.cleanup()

    def _race(self, *targets):
        results = []
        lock = threading.Lock()

        def run(target):
            with self.app.app_context():
                try:
                    value = target()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=run, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_order_folios_unique_and_contiguous(self):
        def create():
            order = document_service.create_order(
                branch_id=self.branch_id, actor_id=self.cashier_id, total_cents=100,
            )
            return order.folio

        results = self._race(*[create for _ in range(8)])

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(sorted(results), list(range(1, 9)))

    def test_competing_payments_never_overpay(self):
        with self.app.app_context():
            order = document_service.create_order(
                branch_id=self.branch_id, actor_id=self.cashier_id, total_cents=10000,
            )
            order_id = order.id

        def pay():
            payment_service.register_payment(
                parent_id=order_id, amount_cents=6000, payment_method_id=self.method_id,
            )
            return "paid"

        results = self._race(pay, pay)

        self.assertEqual(results.count("paid"), 1)
        losers = [r for r in results if r != "paid"]
        self.assertTrue(all(isinstance(r, PreconditionFailed) for r in losers))
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual((order.paid_cents, order.remaining_cents), (6000, 4000))

    def test_folio_redeemed_once(self):
        with self.app.app_context():
            auth = discount_service.request_authorization(
                message="Regular customer",
                branch_id=self.branch_id,
                discount_value=15,
                discount_type="percentage",
                requester_id=self.cashier_id,
            )
            auth = discount_service.decide(auth_id=auth.id, manager_id=self.manager_id, approve=True)
            auth_id = auth.id
            folio = auth.auth_folio

        def use():
            discount_service.redeem(auth_folio=folio, branch_id=self.branch_id, actor_id=self.cashier_id)
            return "redeemed"

        results = self._race(use, use)

        self.assertEqual(results.count("redeemed"), 1)
        losers = [r for r in results if r != "redeemed"]
        self.assertEqual(len(losers), 1)
        self.assertIsInstance(losers[0], PreconditionFailed)
        with self.app.app_context():
            self.assertTrue(discount_service.get_authorization(auth_id).is_redeemed)


if __name__ == "__main__":
    unittest.main()

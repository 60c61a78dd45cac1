import unittest

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from settlement import create_app
from settlement.extensions import db
from settlement.services.concurrency import ConcurrencyConflict, PersistenceFailure, run_with_retry


class RetryPolicyTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "RETRY_ATTEMPTS": 3,
            "RETRY_BACKOFF_BASE": 0,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def _flaky(self, failures, exc_factory):
        calls = []

        def op():
            calls.append(1)
            if len(calls) <= failures:
                raise exc_factory()
            return "ok"

        return op, calls

    def test_transient_failure_is_retried(self):
        op, calls = self._flaky(2, lambda: OperationalError("UPDATE", {}, Exception("database is locked")))
        self.assertEqual(run_with_retry(op), "ok")
        self.assertEqual(len(calls), 3)

    def test_persistent_failure_surfaces_after_bounded_attempts(self):
        op, calls = self._flaky(10, lambda: OperationalError("UPDATE", {}, Exception("database is locked")))
        with self.assertRaises(PersistenceFailure):
            run_with_retry(op)
        self.assertEqual(len(calls), 3)

    def test_conflict_is_never_retried(self):
        op, calls = self._flaky(10, lambda: ConcurrencyConflict("stale"))
        with self.assertRaises(ConcurrencyConflict):
            run_with_retry(op)
        self.assertEqual(len(calls), 1)

    def test_stale_data_becomes_conflict(self):
        op, calls = self._flaky(10, lambda: StaleDataError("version mismatch"))
        with self.assertRaises(ConcurrencyConflict):
            run_with_retry(op)
        self.assertEqual(len(calls), 1)

    def test_business_errors_propagate_unchanged(self):
        op, calls = self._flaky(10, lambda: ValueError("bad input"))
        with self.assertRaises(ValueError):
            run_with_retry(op)
        self.assertEqual(len(calls), 1)

    def test_explicit_attempts_override_config(self):
        op, calls = self._flaky(10, lambda: OperationalError("UPDATE", {}, Exception("locked")))
        with self.assertRaises(PersistenceFailure):
            run_with_retry(op, attempts=1)
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()

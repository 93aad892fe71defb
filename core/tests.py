from django.db import IntegrityError, OperationalError
from django.test import SimpleTestCase, override_settings

from .retry import TransientStoreFailure, with_store_retry


class StoreRetryTests(SimpleTestCase):
    def setUp(self):
        self.delays = []

    def flaky(self, failures):
        calls = {"count": 0}

        @with_store_retry(attempts=3, backoff=0.5, sleep=self.delays.append)
        def operation():
            calls["count"] += 1
            if calls["count"] <= failures:
                raise OperationalError("database is locked")
            return "ok"

        return operation, calls

    def test_recovers_after_transient_failures(self):
        operation, calls = self.flaky(2)
        self.assertEqual(operation(), "ok")
        self.assertEqual(calls["count"], 3)
        self.assertEqual(self.delays, [0.5, 1.0])

    def test_gives_up_after_last_attempt(self):
        operation, calls = self.flaky(5)
        with self.assertRaises(TransientStoreFailure):
            operation()
        self.assertEqual(calls["count"], 3)

    def test_other_errors_are_not_retried(self):
        calls = []

        @with_store_retry(sleep=self.delays.append)
        def operation():
            calls.append(1)
            raise IntegrityError("duplicate key")

        with self.assertRaises(IntegrityError):
            operation()
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.delays, [])

    @override_settings(STORE_RETRY_ATTEMPTS=2, STORE_RETRY_BACKOFF=0.1)
    def test_defaults_come_from_settings(self):
        calls = []

        @with_store_retry(sleep=self.delays.append)
        def operation():
            calls.append(1)
            raise OperationalError("server closed the connection")

        with self.assertRaises(TransientStoreFailure):
            operation()
        self.assertEqual(len(calls), 2)
        self.assertEqual(self.delays, [0.1])

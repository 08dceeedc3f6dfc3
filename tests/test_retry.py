from __future__ import annotations

import unittest

import httpx

from solana_sweepstakes.errors import RpcError
from solana_sweepstakes.retry import RetryPolicy


class RetryPolicyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps = []
        self.policy = RetryPolicy(max_attempts=3, base_delay_s=1.0, timeout_s=4.0)

    def _run(self, operation):
        return self.policy.run(operation, label="test", sleep=self.sleeps.append)

    def test_success_first_try(self) -> None:
        outcome = self._run(lambda t: t * 2)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, 8.0)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_backoff_doubles(self) -> None:
        self.assertEqual([self.policy.delay_for(n) for n in (1, 2, 3)], [1.0, 2.0, 4.0])

    def test_recovers_after_transient_failures(self) -> None:
        failures = [httpx.ReadTimeout("slow"), RpcError({"code": -32005})]

        def op(timeout):
            if failures:
                raise failures.pop(0)
            return "ok"

        outcome = self._run(op)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_exhaustion_is_a_result(self) -> None:
        def op(timeout):
            raise httpx.ConnectError("down")

        with self.assertLogs("retry", level="WARNING"):
            outcome = self._run(op)
        self.assertTrue(outcome.exhausted)
        self.assertIsInstance(outcome.error, httpx.ConnectError)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_programming_errors_propagate(self) -> None:
        def op(timeout):
            raise KeyError("result")

        with self.assertRaises(KeyError):
            self._run(op)
        self.assertEqual(self.sleeps, [])


if __name__ == "__main__":
    unittest.main()

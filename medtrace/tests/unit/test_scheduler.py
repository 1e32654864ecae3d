import asyncio
import logging
import unittest

from medtrace.common.errors import ProvisionCancelled
from medtrace.common.scheduler import RetryPolicy, retry, fan_out, run_cancellable


logger = logging.getLogger(__name__)


class TestRetryPolicy(unittest.TestCase):
    def test_invalid_policies(self):
        with self.assertRaises(ValueError):
            RetryPolicy(0, 1)
        with self.assertRaises(ValueError):
            RetryPolicy(3, -1)

    def test_delay_with_jitter(self):
        policy = RetryPolicy(3, 1, jitter=0.5)
        for _ in range(10):
            assert 1 <= policy.delay() <= 1.5
        assert RetryPolicy(3, 2).delay() == 2

    def test_parse(self):
        default = RetryPolicy(20, 3)
        assert RetryPolicy.parse(None, default) is default

        policy = RetryPolicy.parse({"max_attempts": 5}, default)
        assert policy.max_attempts == 5
        assert policy.interval == 3


class TestRetry(unittest.TestCase):
    def test_accepted_at_attempt(self):
        calls = []

        async def call():
            calls.append(1)
            return len(calls) >= 3

        ok, result, attempts = asyncio.run(retry(call, RetryPolicy(5, 0)))

        assert ok is True
        assert result is True
        assert attempts == 3
        assert len(calls) == 3

    def test_budget_exhausted(self):
        failures = []

        async def call():
            return False

        ok, result, attempts = asyncio.run(
            retry(call, RetryPolicy(4, 0), on_failure=lambda n, r: failures.append(n))
        )

        assert ok is False
        assert attempts == 4
        assert failures == [1, 2, 3, 4]

    def test_custom_accept(self):
        async def call():
            return {"code": 0}

        ok, result, attempts = asyncio.run(
            retry(call, RetryPolicy(2, 0), accept=lambda r: r["code"] == 0)
        )
        assert ok is True
        assert attempts == 1


class TestFanOut(unittest.TestCase):
    def test_sequential_order(self):
        seen = []

        async def call(item):
            seen.append(item)
            await asyncio.sleep(0)
            return item * 10

        results = asyncio.run(fan_out([1, 2, 3, 4], call))
        assert results == [10, 20, 30, 40]
        assert seen == [1, 2, 3, 4]

    def test_parallel_bound_and_order(self):
        state = {"current": 0, "peak": 0}

        async def call(item):
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
            await asyncio.sleep(0.01 * (5 - item))
            state["current"] -= 1
            return item

        results = asyncio.run(fan_out([1, 2, 3, 4], call, max_parallel=2))
        assert results == [1, 2, 3, 4]
        assert state["peak"] == 2

    def test_first_failure_cancels_rest(self):
        cancelled = []

        async def call(item):
            if item == 1:
                raise RuntimeError("org1 failed")
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append(item)
                raise
            return item

        with self.assertRaises(RuntimeError):
            asyncio.run(fan_out([1, 2, 3], call, max_parallel=3))
        assert sorted(cancelled) == [2, 3]

    def test_sequential_failure_stops(self):
        seen = []

        async def call(item):
            seen.append(item)
            if item == 2:
                raise RuntimeError("org2 failed")
            return item

        with self.assertRaises(RuntimeError):
            asyncio.run(fan_out([1, 2, 3], call))
        assert seen == [1, 2]


class TestRunCancellable(unittest.TestCase):
    def test_returns_result(self):
        async def work():
            return "anchors-updated"

        assert asyncio.run(run_cancellable(work(), deadline=1)) == "anchors-updated"

    def test_deadline(self):
        with self.assertRaises(ProvisionCancelled) as ctx:
            asyncio.run(run_cancellable(asyncio.sleep(5), deadline=0.1))
        assert ctx.exception.step == "deadline"

    def test_external_cancel(self):
        async def scenario():
            task = asyncio.ensure_future(asyncio.sleep(5))
            asyncio.get_running_loop().call_later(0.05, task.cancel)
            await run_cancellable(task)

        with self.assertRaises(ProvisionCancelled) as ctx:
            asyncio.run(scenario())
        assert ctx.exception.step == "cancel"


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()

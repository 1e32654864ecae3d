import random
import asyncio
import logging

from medtrace.common.errors import ProvisionCancelled


logger = logging.getLogger(__name__)


class RetryPolicy:
    """Bounded retry schedule

    Arguments:
        max_attempts {int} -- Number of calls before giving up (>= 1)
        interval {float} -- Seconds between two consecutive attempts

    Keyword Arguments:
        jitter {float} -- Upper bound of a random delay added to
        every interval (default: {0})
    """

    def __init__(self, max_attempts, interval, jitter=0.0):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if interval < 0 or jitter < 0:
            raise ValueError("interval and jitter must not be negative")
        self.max_attempts = int(max_attempts)
        self.interval = float(interval)
        self.jitter = float(jitter)

    def delay(self):
        if self.jitter:
            return self.interval + random.uniform(0, self.jitter)
        return self.interval

    @classmethod
    def parse(cls, data, default):
        """Builds a policy from a config dict, falling back to default
        for any key that is absent"""
        if not data:
            return default
        return cls(
            data.get("max_attempts", default.max_attempts),
            data.get("interval", default.interval),
            data.get("jitter", default.jitter),
        )

    def __repr__(self):
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"interval={self.interval}, jitter={self.jitter})"
        )


async def retry(call, policy, uid="call", accept=bool, on_failure=None):
    """Calls call until accept(result) holds or the policy budget ends.
    Each attempt is a fresh call; the sleep between attempts is where
    a cancellation of the running task takes effect.

    Arguments:
        call {coroutine function} -- Zero-argument coroutine function
        policy {RetryPolicy} -- Attempts and spacing

    Keyword Arguments:
        uid {string} -- Name used in logs (default: {"call"})
        accept {callable} -- Success predicate over the call result (default: {bool})
        on_failure {callable} -- Invoked with (attempt, result) after every
        rejected attempt (default: {None})

    Returns:
        tuple -- (bool, result, attempts) whether an attempt was accepted,
        the last result and the number of attempts made
    """
    result = None

    for attempt in range(1, policy.max_attempts + 1):
        result = await call()

        if accept(result):
            logger.debug(f"Task {uid} accepted at attempt {attempt}")
            return True, result, attempt

        logger.debug(f"Task {uid} attempt {attempt}/{policy.max_attempts} rejected")
        if on_failure:
            on_failure(attempt, result)

        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.delay())

    return False, result, policy.max_attempts


async def fan_out(items, call, max_parallel=1):
    """Runs call(item) for every item and returns the results in
    items order. With max_parallel <= 1 items are processed one after
    the other; otherwise at most max_parallel calls are in flight.
    The first failure cancels the calls still running and is re-raised.

    Arguments:
        items {list} -- Inputs, e.g. organizations
        call {coroutine function} -- One-argument coroutine function

    Keyword Arguments:
        max_parallel {int} -- Bound of concurrent calls (default: {1})

    Returns:
        list -- Results of call indexed as items
    """
    items = list(items)

    if max_parallel is None or max_parallel <= 1:
        results = []
        for item in items:
            results.append(await call(item))
        return results

    semaphore = asyncio.Semaphore(max_parallel)

    async def bounded(item):
        async with semaphore:
            return await call(item)

    tasks = [asyncio.ensure_future(bounded(item)) for item in items]

    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def run_cancellable(aw, deadline=None):
    """Runs an orchestration coroutine so that an external cancel or
    an exceeded deadline surfaces as ProvisionCancelled

    Arguments:
        aw {coroutine} -- The orchestration to execute

    Keyword Arguments:
        deadline {float} -- Seconds allowed for the whole run (default: {None})

    Returns:
        object -- Whatever the coroutine returns
    """
    try:
        if deadline:
            return await asyncio.wait_for(aw, deadline)
        return await aw

    except asyncio.TimeoutError:
        raise ProvisionCancelled(f"deadline of {deadline}s exceeded", step="deadline")

    except asyncio.CancelledError:
        raise ProvisionCancelled("run cancelled", step="cancel")

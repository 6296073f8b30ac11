import asyncio
import time
from unittest.mock import patch

import pytest

from traffic_test_agent.cancel import CancellationToken
from traffic_test_agent.errors import GenerationCancelled
from traffic_test_agent.ratelimit import DEFAULT_LIMIT, RateLimit, RateLimiter


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTryAcquire:
    def test_admits_up_to_limit(self):
        limiter = RateLimiter(limits={"openai": RateLimit(3, 60.0)}, clock=FakeClock())
        assert [limiter.try_acquire("openai") for _ in range(4)] == [True, True, True, False]

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(limits={"openai": RateLimit(1, 60.0)}, clock=clock)
        assert limiter.try_acquire("openai")
        clock.now += 59
        assert not limiter.try_acquire("openai")
        clock.now += 1
        assert limiter.try_acquire("openai")

    def test_backends_are_independent(self):
        limiter = RateLimiter(limits={"openai": RateLimit(1, 60.0), "local": RateLimit(1, 60.0)}, clock=FakeClock())
        assert limiter.try_acquire("openai")
        assert not limiter.try_acquire("openai")
        assert limiter.try_acquire("local")

    def test_unknown_backend_uses_default(self):
        limiter = RateLimiter(clock=FakeClock())
        assert limiter.limit_for("somewhere-else") == DEFAULT_LIMIT
        assert limiter.remaining("somewhere-else") == 30

    def test_builtin_limits(self):
        limiter = RateLimiter()
        assert limiter.limit_for("openai").max_requests == 60
        assert limiter.limit_for("anthropic").max_requests == 50
        assert limiter.limit_for("local").max_requests == 100


class TestIntrospection:
    def test_remaining_and_reset_in(self):
        clock = FakeClock()
        limiter = RateLimiter(limits={"openai": RateLimit(2, 60.0)}, clock=clock)
        assert limiter.reset_in("openai") == 0.0
        limiter.try_acquire("openai")
        clock.now += 10
        limiter.try_acquire("openai")
        assert limiter.remaining("openai") == 0
        assert limiter.reset_in("openai") == pytest.approx(50.0)

    def test_reset(self):
        limiter = RateLimiter(limits={"openai": RateLimit(1, 60.0)}, clock=FakeClock())
        limiter.try_acquire("openai")
        limiter.reset("openai")
        assert limiter.try_acquire("openai")
        limiter.reset()
        assert limiter.remaining("openai") == 1


class TestWaitForSlot:
    def test_sleeps_are_capped(self):
        clock = FakeClock()
        limiter = RateLimiter(limits={"openai": RateLimit(1, 60.0)}, clock=clock)
        assert limiter.try_acquire("openai")
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)
            clock.now += delay

        async def run():
            with patch("traffic_test_agent.ratelimit.asyncio.sleep", fake_sleep):
                await limiter.wait_for_slot("openai")

        asyncio.run(run())
        assert max(sleeps) <= 5.0
        assert sum(sleeps) == pytest.approx(60.0)
        assert limiter.remaining("openai") == 0

    def test_waits_for_window_to_free(self):
        limiter = RateLimiter(limits={"local": RateLimit(1, 0.05)})
        limiter.try_acquire("local")
        started = time.monotonic()
        asyncio.run(limiter.wait_for_slot("local"))
        assert time.monotonic() - started >= 0.04

    def test_cancellation_aborts_wait(self):
        limiter = RateLimiter(limits={"openai": RateLimit(1, 60.0)})
        limiter.try_acquire("openai")

        async def run():
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            await limiter.wait_for_slot("openai", token)

        started = time.monotonic()
        with pytest.raises(GenerationCancelled):
            asyncio.run(run())
        assert time.monotonic() - started < 1.0

    def test_concurrent_waiters_never_exceed_limit(self):
        limiter = RateLimiter(limits={"local": RateLimit(2, 0.1)})
        admitted = []

        async def worker(i):
            await limiter.wait_for_slot("local")
            admitted.append(time.monotonic())

        async def run():
            await asyncio.gather(*(worker(i) for i in range(4)))

        asyncio.run(run())
        admitted.sort()
        assert len(admitted) == 4
        # No three admissions fit inside one window.
        assert admitted[2] - admitted[0] >= 0.09

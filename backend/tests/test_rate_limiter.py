import asyncio

import pytest

from shortlinks.core.errors import RateLimited, ValidationError
from shortlinks.core.rate_limiter import RateLimitOptions, TokenBucketLimiter

OPTIONS = RateLimitOptions(max_attempts=3, window_ms=60_000, block_duration_ms=600_000)


@pytest.fixture
def limiter(clock):
    return TokenBucketLimiter(
        default_options=OPTIONS,
        registry_size=10,
        registry_ttl_seconds=3600,
        concurrency_registry_size=10,
        concurrency_registry_ttl_seconds=1800,
        clock=clock,
    )


def test_bucket_starts_full(limiter):
    status = limiter.get_limit_status("login")
    assert status.has_limiter is False

    result = limiter.consume("login")
    assert result.allowed is True
    assert result.remaining == 2


def test_exhaustion_blocks_key(limiter, clock):
    for _ in range(3):
        assert limiter.consume("login").allowed

    rejected = limiter.consume("login")
    assert rejected.allowed is False
    assert rejected.remaining == 0

    # Tokens dripped back do not help while blocked
    clock.advance(60_000)
    assert limiter.consume("login").allowed is False
    assert limiter.get_limit_status("login").is_blocked is True

    clock.advance(540_001)
    assert limiter.consume("login").allowed is True


def test_no_block_without_block_duration(clock):
    limiter = TokenBucketLimiter(
        default_options=RateLimitOptions(max_attempts=2, window_ms=1000, block_duration_ms=0),
        clock=clock,
    )
    assert limiter.consume("k").allowed
    assert limiter.consume("k").allowed
    assert limiter.consume("k").allowed is False
    assert limiter.get_limit_status("k").is_blocked is False

    clock.advance(1000)
    assert limiter.consume("k").allowed is True


def test_window_caps_consumption(clock):
    limiter = TokenBucketLimiter(
        default_options=RateLimitOptions(max_attempts=2, window_ms=1000, block_duration_ms=0),
        clock=clock,
    )
    assert limiter.consume("k").allowed
    assert limiter.consume("k").allowed

    # One token dripped back, but the window is already used up
    clock.advance(500)
    assert limiter.consume("k").allowed is False


def test_is_allowed_does_not_consume(limiter):
    for _ in range(5):
        peek = limiter.is_allowed("login")
        assert peek.allowed is True
        assert peek.remaining == 3


def test_reset_clears_block(limiter):
    for _ in range(4):
        limiter.consume("login")
    assert limiter.get_limit_status("login").is_blocked

    limiter.reset("login")
    status = limiter.get_limit_status("login")
    assert status.is_blocked is False
    assert status.remaining == 3


def test_keys_are_independent(limiter):
    for _ in range(4):
        limiter.consume("a")
    assert limiter.consume("b").allowed is True


@pytest.mark.parametrize("key", ["", "   ", None])
def test_invalid_key(limiter, key):
    with pytest.raises(ValueError):
        limiter.consume(key)


async def test_check_limit_runs_action(limiter):
    calls = []

    async def action():
        calls.append(1)
        return "done"

    outcome = await limiter.check_limit("op", action)
    assert outcome.allowed is True
    assert outcome.result == "done"
    assert outcome.error is None
    assert calls == [1]


async def test_check_limit_rejection_skips_action(limiter):
    calls = []
    for _ in range(3):
        await limiter.check_limit("op", lambda: calls.append(1))

    outcome = await limiter.check_limit("op", lambda: calls.append(1))
    assert outcome.allowed is False
    assert isinstance(outcome.error, RateLimited)
    assert outcome.error.reason == "Rate limit exceeded. Please try again in 10 minutes."
    assert outcome.error.retry_after_ms == 600_000
    assert len(calls) == 3


async def test_check_limit_without_block_message(clock):
    limiter = TokenBucketLimiter(
        default_options=RateLimitOptions(max_attempts=1, window_ms=1000, block_duration_ms=0),
        clock=clock,
    )
    await limiter.check_limit("op", lambda: None)
    outcome = await limiter.check_limit("op", lambda: None)

    assert outcome.error.reason == "Too many attempts. Please try again later."
    assert outcome.error.retry_after_ms is None


async def test_check_limit_captures_engine_errors(limiter):
    def action():
        raise ValidationError("bad input")

    outcome = await limiter.check_limit("op", action)
    assert outcome.allowed is True
    assert isinstance(outcome.error, ValidationError)
    # The token stays spent
    assert outcome.remaining == 2


async def test_check_limit_propagates_other_errors(limiter):
    def action():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await limiter.check_limit("op", action)


async def test_check_limit_requires_callable(limiter):
    with pytest.raises(TypeError):
        await limiter.check_limit("op", "not callable")


async def test_concurrency_limit(limiter):
    running = 0
    peak = 0

    async def action():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return True

    results = await asyncio.gather(
        *(limiter.with_concurrency_limit("upload", action, concurrency=2) for _ in range(6))
    )
    assert all(results)
    assert peak == 2


async def test_concurrency_rejects_bad_value(limiter):
    with pytest.raises(ValueError):
        await limiter.with_concurrency_limit("upload", lambda: None, concurrency=0)


async def test_batch_execute(limiter):
    results = await limiter.batch_execute("batch", [lambda i=i: i for i in range(5)])

    assert [r.allowed for r in results] == [True, True, True, False, False]
    assert [r.result for r in results[:3]] == [0, 1, 2]


async def test_batch_execute_requires_actions(limiter):
    with pytest.raises(ValueError):
        await limiter.batch_execute("batch", [])


async def test_rate_limited_decorator(limiter):
    @limiter.rate_limited("decorated")
    async def greet(name):
        return f"hi {name}"

    assert await greet("a") == "hi a"
    assert await greet("b") == "hi b"
    assert await greet("c") == "hi c"
    assert await greet("d") is None


def test_registry_eviction_resets_bucket(clock):
    limiter = TokenBucketLimiter(default_options=OPTIONS, registry_size=2, clock=clock)
    for _ in range(4):
        limiter.consume("a")
    assert limiter.get_limit_status("a").is_blocked

    limiter.consume("b")
    limiter.consume("c")

    # "a" was evicted and comes back with a full bucket
    assert limiter.get_limit_status("a").has_limiter is False
    assert limiter.consume("a").allowed is True


def test_cleanup_drops_everything(limiter):
    limiter.consume("a")
    limiter.cleanup()
    assert limiter.get_limit_status("a").has_limiter is False

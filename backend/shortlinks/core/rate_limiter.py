"""Token bucket rate limiter with a blocking cooldown.

Each key gets its own bucket holding at most ``max_attempts`` tokens. Tokens
drip back continuously at ``max_attempts / window_ms``, and no more than
``max_attempts`` tokens may be removed inside one fixed refill window.

States per key:

    Open       tokens available
    Exhausted  no token left, window not yet refilled
    Blocked    ``blocked_until`` in the future; every call is rejected
               regardless of tokens

With a block duration configured, the first rejected ``consume`` moves the
key straight to Blocked, not merely Exhausted.

Buckets live in a bounded LRU-with-TTL registry. An evicted key comes back
with a fresh, full bucket.

Nothing here awaits between reading and updating a bucket, so token
consumption is atomic on a single event loop without a lock.
"""

import asyncio
import functools
import inspect
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..utils.cache import LRUTTLCache
from ..utils.clock import monotonic_ms
from .errors import RateLimited, ShortLinkError

logger = logging.getLogger(__name__)

Action = Callable[[], Union[Any, Awaitable[Any]]]


class RateLimitOptions(BaseModel):
    """Limits for one key. Times are in milliseconds."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(5, gt=0)
    window_ms: int = Field(60 * 1000, gt=0)
    block_duration_ms: int = Field(10 * 60 * 1000, ge=0)


@dataclass
class ConsumeResult:
    allowed: bool
    remaining: int
    error: Optional[str] = None


@dataclass
class LimitResult:
    """Outcome of ``check_limit``: the action's result or the error it raised"""
    allowed: bool
    remaining: int
    result: Any = None
    error: Optional[ShortLinkError] = None


@dataclass
class LimitStatus:
    has_limiter: bool
    remaining: Optional[int] = None
    is_blocked: Optional[bool] = None


def _validate_key(key: str) -> None:
    if not key or not isinstance(key, str) or not key.strip():
        raise ValueError("Rate limiter key is required and must be a non-empty string")


def _validate_concurrency(concurrency: int) -> None:
    if not isinstance(concurrency, int) or concurrency <= 0:
        raise ValueError("Concurrency must be a positive integer")


async def _run(action: Action) -> Any:
    result = action()
    if inspect.isawaitable(result):
        result = await result
    return result


class TokenBucket:
    """State of a single limiter key"""

    def __init__(self, options: RateLimitOptions, clock: Callable[[], float]):
        self.options = options
        self._clock = clock

        now = clock()
        self.content = float(options.max_attempts)
        self.last_drip = now
        self.window_start = now
        self.tokens_this_window = 0
        self.blocked_until = 0.0

    @property
    def rate(self) -> float:
        """Tokens per millisecond"""
        return self.options.max_attempts / self.options.window_ms

    def _drip(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_drip)
        self.last_drip = now
        self.content = min(float(self.options.max_attempts), self.content + elapsed * self.rate)

    def _roll_window(self, now: float) -> None:
        if now < self.window_start or now - self.window_start >= self.options.window_ms:
            self.window_start = now
            self.tokens_this_window = 0

    def is_blocked(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return self.blocked_until > now

    def tokens_remaining(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        self._roll_window(now)
        self._drip(now)
        window_left = self.options.max_attempts - self.tokens_this_window
        return max(0, min(math.floor(self.content), window_left))

    def consume(self) -> ConsumeResult:
        now = self._clock()

        if self.is_blocked(now):
            return ConsumeResult(allowed=False, remaining=0, error="Rate limit exceeded - blocked")

        self._roll_window(now)
        self._drip(now)

        if self.tokens_this_window < self.options.max_attempts and self.content >= 1:
            self.content -= 1
            self.tokens_this_window += 1
            return ConsumeResult(allowed=True, remaining=self.tokens_remaining(now))

        if self.options.block_duration_ms > 0:
            self.blocked_until = now + self.options.block_duration_ms

        return ConsumeResult(allowed=False, remaining=0, error="Rate limit exceeded")

    def reset(self) -> None:
        now = self._clock()
        self.content = float(self.options.max_attempts)
        self.last_drip = now
        self.window_start = now
        self.tokens_this_window = 0
        self.blocked_until = 0.0


class TokenBucketLimiter:
    """Per-key token buckets plus per-key concurrency gates.

    Args:
        default_options: Limits used when a call passes none
        clock: Monotonic clock in milliseconds
    """

    def __init__(self, default_options: Optional[RateLimitOptions] = None,
                 registry_size: int = None,
                 registry_ttl_seconds: float = None,
                 concurrency_registry_size: int = None,
                 concurrency_registry_ttl_seconds: float = None,
                 clock: Callable[[], float] = monotonic_ms):
        self.default_options = default_options or RateLimitOptions(
            block_duration_ms=settings.RATE_LIMIT_BLOCK_MS
        )
        self._clock = clock
        seconds = lambda: clock() / 1000  # noqa: E731

        self._buckets: LRUTTLCache[TokenBucket] = LRUTTLCache(
            max_size=registry_size or settings.LIMITER_REGISTRY_SIZE,
            ttl=registry_ttl_seconds or settings.LIMITER_REGISTRY_TTL_SECONDS,
            timer=seconds,
        )
        self._gates: LRUTTLCache[asyncio.Semaphore] = LRUTTLCache(
            max_size=concurrency_registry_size or settings.CONCURRENCY_REGISTRY_SIZE,
            ttl=concurrency_registry_ttl_seconds or settings.CONCURRENCY_REGISTRY_TTL_SECONDS,
            timer=seconds,
            update_age_on_get=True,
        )

    def _get_bucket(self, key: str, options: Optional[RateLimitOptions]) -> TokenBucket:
        """The first call for a key fixes its options until eviction or cleanup"""
        _validate_key(key)

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(options or self.default_options, self._clock)
            self._buckets.set(key, bucket)
        return bucket

    def consume(self, key: str, options: Optional[RateLimitOptions] = None) -> ConsumeResult:
        """Try to take one token for ``key``"""
        result = self._get_bucket(key, options).consume()
        if not result.allowed:
            logger.warning(f"Rate limit hit for '{key}': {result.error}")
        return result

    def is_allowed(self, key: str, options: Optional[RateLimitOptions] = None) -> ConsumeResult:
        """Peek without consuming a token"""
        bucket = self._get_bucket(key, options)

        if bucket.is_blocked():
            return ConsumeResult(allowed=False, remaining=0)

        remaining = bucket.tokens_remaining()
        return ConsumeResult(allowed=remaining > 0, remaining=remaining)

    def reset(self, key: str) -> None:
        """Clear both token state and block state"""
        _validate_key(key)

        bucket = self._buckets.get(key)
        if bucket is not None:
            bucket.reset()

    def get_limit_status(self, key: str) -> LimitStatus:
        _validate_key(key)

        bucket = self._buckets.get(key)
        if bucket is None:
            return LimitStatus(has_limiter=False)

        return LimitStatus(
            has_limiter=True,
            remaining=bucket.tokens_remaining(),
            is_blocked=bucket.is_blocked(),
        )

    def _rejection(self, bucket: TokenBucket, result: ConsumeResult) -> RateLimited:
        now = self._clock()
        if bucket.is_blocked(now):
            retry_after_ms = int(bucket.blocked_until - now)
            minutes = math.ceil(bucket.options.block_duration_ms / 60000)
            return RateLimited(
                f"Rate limit exceeded. Please try again in {minutes} minutes.",
                remaining=result.remaining,
                retry_after_ms=retry_after_ms,
            )
        return RateLimited(
            "Too many attempts. Please try again later.",
            remaining=result.remaining,
        )

    async def check_limit(self, key: str, action: Action,
                          options: Optional[RateLimitOptions] = None) -> LimitResult:
        """
        Consume a token, then run ``action`` if one was available.

        A rejected call never runs the action. Engine errors raised by the
        action are returned in ``LimitResult.error``; anything else
        propagates.
        """
        if not callable(action):
            raise TypeError("Action must be a function")

        bucket = self._get_bucket(key, options)
        consumed = self.consume(key, options)

        if not consumed.allowed:
            return LimitResult(
                allowed=False,
                remaining=consumed.remaining,
                error=self._rejection(bucket, consumed),
            )

        try:
            result = await _run(action)
        except ShortLinkError as error:
            return LimitResult(allowed=True, remaining=bucket.tokens_remaining(), error=error)

        return LimitResult(allowed=True, remaining=consumed.remaining, result=result)

    async def with_concurrency_limit(self, key: str, action: Action, concurrency: int = 1) -> Any:
        """
        Run ``action`` with at most ``concurrency`` in-flight calls per key.

        Independent of the token buckets. The gate size is fixed by the
        first call for a key.
        """
        _validate_key(key)
        _validate_concurrency(concurrency)
        if not callable(action):
            raise TypeError("Action must be a function")

        gate = self._gates.get(key)
        if gate is None:
            gate = asyncio.Semaphore(concurrency)
            self._gates.set(key, gate)

        async with gate:
            return await _run(action)

    async def batch_execute(self, key: str, actions: List[Action],
                            options: Optional[RateLimitOptions] = None) -> List[LimitResult]:
        """Run actions one by one, each through ``check_limit``"""
        if not actions:
            raise ValueError("At least one action must be provided")

        results = []
        for action in actions:
            results.append(await self.check_limit(key, action, options))
        return results

    def rate_limited(self, key: str, options: Optional[RateLimitOptions] = None):
        """Decorator: the wrapped coroutine returns None when rate limited"""
        _validate_key(key)

        def decorator(fn):
            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                outcome = await self.check_limit(key, lambda: fn(*args, **kwargs), options)
                if not outcome.allowed:
                    return None
                if outcome.error is not None:
                    raise outcome.error
                return outcome.result
            return wrapper

        return decorator

    def purge_stale(self) -> int:
        return self._buckets.purge_stale() + self._gates.purge_stale()

    def cleanup(self) -> None:
        """Drop every bucket and gate"""
        self._buckets.clear()
        self._gates.clear()

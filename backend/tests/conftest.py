from datetime import datetime, timedelta, timezone

import pytest

from shortlinks.config import Settings
from shortlinks.context import create_context
from shortlinks.core.security import CredentialHasher
from shortlinks.core.shortener import ShortCodeGenerator
from shortlinks.services.analytics import AnalyticsAggregator
from shortlinks.services.clicks import ClickRecorder
from shortlinks.services.links import LinkRegistry
from shortlinks.services.store import MemoryStore

# Low iteration count keeps password tests fast
FAST_ITERATIONS = 1000


class FakeClock:
    """Millisecond clock moved by hand"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeNow:
    """Wall clock returning a fixed UTC datetime until advanced"""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        BASE_URL="https://sho.rt",
        PASSWORD_HASH_ITERATIONS=FAST_ITERATIONS,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def now():
    return FakeNow()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store, now):
    return LinkRegistry(
        store,
        generator=ShortCodeGenerator(length=6, max_attempts=10),
        hasher=CredentialHasher(iterations=FAST_ITERATIONS),
        now=now,
        base_url="https://sho.rt",
        default_expiration_days=365,
        max_expiration_days=3650,
        reject_suspicious=True,
    )


@pytest.fixture
def recorder(store, registry, now):
    return ClickRecorder(store, registry, now=now)


@pytest.fixture
def aggregator(registry, recorder):
    aggregator = AnalyticsAggregator(registry, recorder, cache_size=10, cache_ttl_seconds=300)
    recorder.on_recorded = aggregator.invalidate
    return aggregator


@pytest.fixture
async def context(test_settings, store):
    ctx = await create_context(test_settings, store=store)
    yield ctx
    await ctx.close()


@pytest.fixture
def service(context):
    return context.service

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, settings as default_settings
from .core.rate_limiter import RateLimitOptions, TokenBucketLimiter
from .core.security import CredentialHasher
from .core.shortener import ShortCodeGenerator
from .database import create_engine, create_session_maker, init_models
from .services.analytics import AnalyticsAggregator
from .services.clicks import ClickRecorder
from .services.links import LinkRegistry
from .services.shortener import ShortenerService
from .services.store import BaseStore, FallbackStore, MemoryStore, SqlStore
from .utils.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Every engine component, wired together"""
    settings: Settings
    store: BaseStore
    registry: LinkRegistry
    recorder: ClickRecorder
    aggregator: AnalyticsAggregator
    limiter: TokenBucketLimiter
    service: ShortenerService
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


async def create_store(app_settings: Settings) -> tuple[BaseStore, AsyncEngine]:
    """SQL store from DATABASE_URL, backed by memory when configured"""
    engine = create_engine(app_settings.DATABASE_URL)
    await init_models(engine)

    store: BaseStore = SqlStore(create_session_maker(engine))
    if app_settings.STORAGE_FALLBACK_TO_MEMORY:
        store = FallbackStore(store, MemoryStore())
    return store, engine


async def create_context(app_settings: Optional[Settings] = None,
                         store: Optional[BaseStore] = None,
                         initialize: bool = True) -> AppContext:
    """
    Build the engine.

    Args:
        app_settings: Settings to use instead of the environment ones
        store: Store to use instead of the configured database
        initialize: Run the startup integrity check and purge

    Returns:
        The wired components
    """
    app_settings = app_settings or default_settings

    engine = None
    if store is None:
        store, engine = await create_store(app_settings)

    registry = LinkRegistry(
        store,
        generator=ShortCodeGenerator(
            length=app_settings.SHORT_CODE_LENGTH,
            max_attempts=app_settings.SHORT_CODE_MAX_ATTEMPTS,
        ),
        hasher=CredentialHasher(iterations=app_settings.PASSWORD_HASH_ITERATIONS),
        locks=KeyedLock(),
        base_url=app_settings.BASE_URL,
        default_expiration_days=app_settings.DEFAULT_EXPIRATION_DAYS,
        max_expiration_days=app_settings.MAX_EXPIRATION_DAYS,
        reject_suspicious=app_settings.REJECT_SUSPICIOUS_URLS,
    )
    recorder = ClickRecorder(store, registry)
    aggregator = AnalyticsAggregator(
        registry,
        recorder,
        cache_size=app_settings.ANALYTICS_CACHE_SIZE,
        cache_ttl_seconds=app_settings.ANALYTICS_CACHE_TTL_SECONDS,
    )
    # New clicks make cached analytics stale
    recorder.on_recorded = aggregator.invalidate

    limiter = TokenBucketLimiter(
        default_options=RateLimitOptions(block_duration_ms=app_settings.RATE_LIMIT_BLOCK_MS),
        registry_size=app_settings.LIMITER_REGISTRY_SIZE,
        registry_ttl_seconds=app_settings.LIMITER_REGISTRY_TTL_SECONDS,
        concurrency_registry_size=app_settings.CONCURRENCY_REGISTRY_SIZE,
        concurrency_registry_ttl_seconds=app_settings.CONCURRENCY_REGISTRY_TTL_SECONDS,
    )
    service = ShortenerService(
        store,
        registry,
        recorder,
        aggregator,
        limiter,
        shorten_limit=RateLimitOptions(
            max_attempts=app_settings.SHORTEN_RATE_LIMIT,
            window_ms=app_settings.SHORTEN_RATE_WINDOW_MS,
            block_duration_ms=app_settings.RATE_LIMIT_BLOCK_MS,
        ),
    )

    if initialize:
        await service.initialize()

    logger.info("Shortener engine ready")
    return AppContext(
        settings=app_settings,
        store=store,
        registry=registry,
        recorder=recorder,
        aggregator=aggregator,
        limiter=limiter,
        service=service,
        engine=engine,
    )

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..core.errors import (LinkExpired, LinkNotFound, ShortLinkError,
                           StorageError, ValidationError)
from ..core.rate_limiter import RateLimitOptions, TokenBucketLimiter
from ..schemas.analytics import LinkAnalytics, StorageStats
from ..schemas.click import ClickData
from ..schemas.link import LinkOptions, LinkUpdate, ShortenedLink, StorageSettings
from .analytics import AnalyticsAggregator
from .clicks import ClickRecorder
from .export import export_analytics, export_links
from .links import LinkRegistry
from .store import STORAGE_KEYS, BaseStore

logger = logging.getLogger(__name__)

SHORTEN_LIMIT_KEY = "url_shortening"
GENERIC_STORAGE_ERROR = "Storage is unavailable. Please try again later."

LIST_COLLECTIONS = [STORAGE_KEYS["URLS"], STORAGE_KEYS["CLICKS"], STORAGE_KEYS["PERMANENT"]]


@dataclass
class LinkResult:
    """Outcome of a link mutation: the link, or the reason it failed"""
    link: Optional[ShortenedLink] = None
    error: Optional[ShortLinkError] = None
    remaining: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.link is not None


def _public_error(error: ShortLinkError) -> ShortLinkError:
    """Storage details stay in the logs"""
    if isinstance(error, StorageError):
        logger.error(f"Storage failure: {error.reason}")
        return StorageError(GENERIC_STORAGE_ERROR)
    return error


class ShortenerService:
    """
    Public API of the engine.

    Mutations that create links pass through the rate limiter first; reads
    bypass it. Failures of mutations come back as ``LinkResult.error``
    instead of being raised, and click recording never raises at all.
    """

    def __init__(self, store: BaseStore, registry: LinkRegistry,
                 recorder: ClickRecorder, aggregator: AnalyticsAggregator,
                 limiter: TokenBucketLimiter,
                 shorten_limit: Optional[RateLimitOptions] = None):
        self.store = store
        self.registry = registry
        self.recorder = recorder
        self.aggregator = aggregator
        self.limiter = limiter
        self.shorten_limit = shorten_limit or RateLimitOptions(
            max_attempts=settings.SHORTEN_RATE_LIMIT,
            window_ms=settings.SHORTEN_RATE_WINDOW_MS,
            block_duration_ms=settings.RATE_LIMIT_BLOCK_MS,
        )
        self.storage_settings = StorageSettings(
            default_expiration_days=registry.default_expiration_days
        )
        self.is_initialized = False

    # Startup

    async def initialize(self) -> None:
        """Check storage integrity, load settings and purge expired links"""
        if self.is_initialized:
            return

        try:
            await self.ensure_storage_integrity()
            await self._load_storage_settings()
            if self.storage_settings.auto_cleanup:
                await self.registry.purge_expired()
            self.is_initialized = True
        except StorageError as e:
            logger.error(f"Error initializing shortener service: {e.reason}")

    async def ensure_storage_integrity(self) -> None:
        """Reset collections holding the wrong type instead of failing"""
        try:
            for key in LIST_COLLECTIONS:
                value = await self.store.get(key)
                if value is None:
                    await self.store.set(key, [])
                elif not isinstance(value, list):
                    logger.warning(f"{key} storage is corrupted, resetting to empty list")
                    await self.store.set(key, [])

            settings_key = STORAGE_KEYS["SETTINGS"]
            raw_settings = await self.store.get(settings_key)
            if raw_settings is not None and not isinstance(raw_settings, dict):
                logger.warning("Settings storage is corrupted, resetting to defaults")
                await self.store.set(settings_key, StorageSettings().model_dump())
        except StorageError as e:
            # Start fresh rather than abort
            logger.error(f"Error ensuring storage integrity: {e.reason}")
            await self.store.clear()
            for key in LIST_COLLECTIONS:
                await self.store.set(key, [])

    async def _load_storage_settings(self) -> None:
        raw = await self.store.get(STORAGE_KEYS["SETTINGS"])
        if isinstance(raw, dict):
            try:
                self.storage_settings = StorageSettings.model_validate(raw)
            except PydanticValidationError:
                logger.warning("Invalid storage settings, using defaults")
                self.storage_settings = StorageSettings()
        self.registry.default_expiration_days = self.storage_settings.default_expiration_days

    # Links

    async def shorten_url(self, original_url: str,
                          options: Union[LinkOptions, dict, None] = None) -> LinkResult:
        """
        Create a short link, rate limited per ``url_shortening``.

        A rejected call never reaches the registry and returns a
        ``RateLimited`` error.
        """
        async def perform_shortening() -> ShortenedLink:
            if not original_url or not isinstance(original_url, str):
                raise ValidationError("URL is required and must be a string")
            return await self.registry.create(original_url, options)

        outcome = await self.limiter.check_limit(
            SHORTEN_LIMIT_KEY, perform_shortening, self.shorten_limit
        )

        if outcome.error is not None:
            if outcome.allowed:
                logger.info(f"Shortening rejected: {outcome.error.reason}")
            return LinkResult(error=_public_error(outcome.error), remaining=outcome.remaining)

        return LinkResult(link=outcome.result, remaining=outcome.remaining)

    async def get_url_by_short_code(self, short_code: str) -> Optional[ShortenedLink]:
        return await self.registry.find(short_code)

    async def list_urls(self) -> List[ShortenedLink]:
        return await self.registry.list_active()

    async def update_url(self, link_id: str,
                         fields: Union[LinkUpdate, dict]) -> LinkResult:
        try:
            link = await self.registry.update(link_id, fields)
        except ShortLinkError as e:
            logger.info(f"Update of {link_id} rejected: {e.reason}")
            return LinkResult(error=_public_error(e))

        if link is None:
            return LinkResult(error=LinkNotFound(f"URL not found: {link_id}"))
        return LinkResult(link=link)

    async def delete_url(self, link_id: str) -> bool:
        deleted = await self.registry.delete(link_id)
        if deleted:
            self.aggregator.invalidate(link_id)
        return deleted

    async def verify_link_password(self, short_code: str, password: str) -> bool:
        """True when the link is unprotected or the password matches"""
        link = await self.registry.find(short_code)
        if link is None:
            return False
        if not link.is_protected:
            return True
        return self.registry.hasher.verify_password(password, link.password_hash)

    # Clicks and analytics

    async def record_click(self, short_code: str,
                           data: Union[ClickData, dict, None] = None) -> None:
        """Record a visit. Never raises: analytics must not block a redirect."""
        try:
            await self.recorder.record(short_code, data)
        except LinkExpired:
            logger.warning(f"Attempted to record click on expired URL: {short_code}")
        except ShortLinkError as e:
            logger.error(f"Error recording click for {short_code}: {e.reason}")
        except Exception:
            logger.exception(f"Unexpected error recording click for {short_code}")

    async def get_url_analytics(self, link_id: str) -> LinkAnalytics:
        return await self.aggregator.compute_analytics(link_id)

    async def get_storage_stats(self) -> StorageStats:
        all_links = await self.registry.list_all()
        active = [link for link in all_links if not self.registry.is_expired(link)]

        return StorageStats(
            total_urls=len(all_links),
            total_clicks=await self.recorder.count(),
            active_urls=len(active),
            expired_urls=len(all_links) - len(active),
        )

    # Permanent storage

    async def add_to_permanent_storage(self, link_id: str) -> bool:
        return await self.registry.pin(link_id)

    async def remove_from_permanent_storage(self, link_id: str) -> bool:
        return await self.registry.unpin(link_id)

    async def is_in_permanent_storage(self, link_id: str) -> bool:
        return await self.registry.is_pinned(link_id)

    # Settings and maintenance

    async def get_storage_settings(self) -> StorageSettings:
        return self.storage_settings

    async def update_storage_settings(self, fields: dict) -> StorageSettings:
        try:
            updated = StorageSettings.model_validate(
                {**self.storage_settings.model_dump(), **fields}
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid settings: {e.errors()[0]['msg']}") from e

        await self.store.set(STORAGE_KEYS["SETTINGS"], updated.model_dump())
        self.storage_settings = updated
        self.registry.default_expiration_days = updated.default_expiration_days
        return updated

    async def perform_cleanup(self) -> int:
        """Purge expired links (when enabled) and sweep in-memory caches"""
        purged = 0
        if self.storage_settings.auto_cleanup:
            purged = await self.registry.purge_expired()

        stale = self.aggregator.purge_stale() + self.limiter.purge_stale()
        logger.debug(f"Cleanup: {purged} links purged, {stale} cache entries dropped")
        return purged

    async def clear_all_data(self) -> None:
        await self.store.clear()
        self.aggregator.clear_cache()
        self.limiter.cleanup()
        self.storage_settings = StorageSettings()
        self.registry.default_expiration_days = self.storage_settings.default_expiration_days
        await self.ensure_storage_integrity()
        logger.info("All shortener data cleared")

    # Export

    async def export_urls(self, fmt: str = "csv") -> str:
        return export_links(await self.registry.list_active(), fmt)

    async def export_url_analytics(self, link_id: str, fmt: str = "csv") -> str:
        return export_analytics(await self.get_url_analytics(link_id), fmt)

import logging
import time
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from ..config import settings
from ..core.errors import LinkNotFound
from ..schemas.analytics import LinkAnalytics, TimelinePoint
from ..schemas.click import ClickEvent
from ..utils.cache import LRUTTLCache
from ..utils.user_agent import UNKNOWN
from .clicks import ClickRecorder
from .links import LinkRegistry

logger = logging.getLogger(__name__)

# Fixed English names keep grouping keys locale independent
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _key(value) -> str:
    return str(value) if value else UNKNOWN


def _count(keys: Iterable[str]) -> Dict[str, int]:
    return dict(Counter(keys))


def group_by_date(clicks: List[ClickEvent]) -> Dict[str, int]:
    """Clicks per calendar day (UTC), YYYY-MM-DD"""
    return _count(click.timestamp.strftime("%Y-%m-%d") for click in clicks)


def group_by_hour(clicks: List[ClickEvent]) -> Dict[str, int]:
    """Clicks per hour of day, 00 to 23"""
    return _count(click.timestamp.strftime("%H") for click in clicks)


def group_by_day_of_week(clicks: List[ClickEvent]) -> Dict[str, int]:
    return _count(DAY_NAMES[click.timestamp.weekday()] for click in clicks)


def group_by_field(clicks: List[ClickEvent], field: str) -> Dict[str, int]:
    return _count(_key(getattr(click, field)) for click in clicks)


def group_by_location_field(clicks: List[ClickEvent], field: str) -> Dict[str, int]:
    return _count(
        _key(getattr(click.location, field) if click.location else None)
        for click in clicks
    )


def group_by_utm_field(clicks: List[ClickEvent], field: str) -> Dict[str, int]:
    return _count(_key((click.utm_parameters or {}).get(field)) for click in clicks)


def get_clicks_timeline(clicks: List[ClickEvent]) -> List[TimelinePoint]:
    """Daily counts, ascending by date"""
    return [
        TimelinePoint(date=date, clicks=count)
        for date, count in sorted(group_by_date(clicks).items())
    ]


def build_link_analytics(link_id: str, clicks: List[ClickEvent]) -> LinkAnalytics:
    """
    Aggregate a link's click log.

    Pure function of the events: the same set of events gives the same
    result regardless of their order.
    """
    conversions = [click for click in clicks if click.is_conversion]
    total = len(clicks)

    return LinkAnalytics(
        link_id=link_id,
        total_clicks=total,
        clicks_by_date=group_by_date(clicks),
        clicks_by_hour=group_by_hour(clicks),
        clicks_by_day_of_week=group_by_day_of_week(clicks),
        clicks_by_referrer=group_by_field(clicks, "referrer"),
        clicks_by_device=group_by_field(clicks, "device"),
        clicks_by_browser=group_by_field(clicks, "browser"),
        clicks_by_country=group_by_location_field(clicks, "country"),
        clicks_by_region=group_by_location_field(clicks, "region"),
        clicks_by_city=group_by_location_field(clicks, "city"),
        clicks_by_utm_source=group_by_utm_field(clicks, "source"),
        clicks_by_utm_medium=group_by_utm_field(clicks, "medium"),
        clicks_by_utm_campaign=group_by_utm_field(clicks, "campaign"),
        clicks_by_utm_term=group_by_utm_field(clicks, "term"),
        clicks_by_utm_content=group_by_utm_field(clicks, "content"),
        clicks_timeline=get_clicks_timeline(clicks),
        total_conversions=len(conversions),
        conversion_rate=len(conversions) / total if total > 0 else 0.0,
        conversion_value=float(sum(click.conversion_value or 0 for click in clicks)),
        conversions_by_date=group_by_date(conversions),
        conversions_by_type=group_by_field(conversions, "conversion_type"),
        conversions_by_utm_source=group_by_utm_field(conversions, "source"),
        conversions_by_utm_medium=group_by_utm_field(conversions, "medium"),
        conversions_by_utm_campaign=group_by_utm_field(conversions, "campaign"),
    )


class AnalyticsAggregator:
    """Computes link analytics, caching results per link id with a TTL"""

    def __init__(self, registry: LinkRegistry, recorder: ClickRecorder,
                 cache_size: int = None, cache_ttl_seconds: float = None,
                 timer: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.recorder = recorder
        self.cache: LRUTTLCache[LinkAnalytics] = LRUTTLCache(
            max_size=cache_size or settings.ANALYTICS_CACHE_SIZE,
            ttl=cache_ttl_seconds or settings.ANALYTICS_CACHE_TTL_SECONDS,
            timer=timer,
        )

    @staticmethod
    def _cache_key(link_id: str) -> str:
        return f"analytics_{link_id}"

    async def compute_analytics(self, link_id: str) -> LinkAnalytics:
        """
        Get complete analytics for a link.

        Raises:
            LinkNotFound: No stored link has this id
        """
        cache_key = self._cache_key(link_id)
        cached: Optional[LinkAnalytics] = self.cache.get(cache_key)
        if cached is not None:
            return cached

        # Expired links keep their history
        link = await self.registry.find_by_id(link_id, include_expired=True)
        if link is None:
            raise LinkNotFound(f"URL not found: {link_id}")

        clicks = await self.recorder.events_for(link_id)
        analytics = build_link_analytics(link_id, clicks)

        self.cache.set(cache_key, analytics)
        logger.debug(f"Computed analytics for {link_id}: {analytics.total_clicks} clicks")
        return analytics

    def invalidate(self, link_id: str) -> None:
        self.cache.delete(self._cache_key(link_id))

    def purge_stale(self) -> int:
        return self.cache.purge_stale()

    def clear_cache(self) -> None:
        self.cache.clear()

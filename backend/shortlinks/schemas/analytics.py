from typing import Dict, List

from pydantic import BaseModel


class TimelinePoint(BaseModel):
    """Single point in the daily timeline"""
    date: str  # YYYY-MM-DD
    clicks: int


class LinkAnalytics(BaseModel):
    """Complete analytics for a link, derived from its click log"""
    link_id: str
    total_clicks: int
    clicks_by_date: Dict[str, int]
    clicks_by_hour: Dict[str, int]
    clicks_by_day_of_week: Dict[str, int]
    clicks_by_referrer: Dict[str, int]
    clicks_by_device: Dict[str, int]
    clicks_by_browser: Dict[str, int]
    clicks_by_country: Dict[str, int]
    clicks_by_region: Dict[str, int]
    clicks_by_city: Dict[str, int]
    clicks_by_utm_source: Dict[str, int]
    clicks_by_utm_medium: Dict[str, int]
    clicks_by_utm_campaign: Dict[str, int]
    clicks_by_utm_term: Dict[str, int]
    clicks_by_utm_content: Dict[str, int]
    clicks_timeline: List[TimelinePoint]

    # Conversion metrics
    total_conversions: int
    conversion_rate: float  # conversions / total clicks, 0.0 without clicks
    conversion_value: float
    conversions_by_date: Dict[str, int]
    conversions_by_type: Dict[str, int]
    conversions_by_utm_source: Dict[str, int]
    conversions_by_utm_medium: Dict[str, int]
    conversions_by_utm_campaign: Dict[str, int]


class StorageStats(BaseModel):
    total_urls: int
    total_clicks: int
    active_urls: int
    expired_urls: int

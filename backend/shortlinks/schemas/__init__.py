from .link import ShortenedLink, LinkOptions, LinkUpdate, StorageSettings
from .click import ClickEvent, ClickData, GeoLocation
from .analytics import LinkAnalytics, TimelinePoint, StorageStats

__all__ = [
    "ShortenedLink", "LinkOptions", "LinkUpdate", "StorageSettings",
    "ClickEvent", "ClickData", "GeoLocation",
    "LinkAnalytics", "TimelinePoint", "StorageStats",
]

import csv
import json
from io import StringIO
from typing import List

from ..core.errors import ValidationError
from ..schemas.analytics import LinkAnalytics
from ..schemas.link import ShortenedLink

EXPORT_FORMATS = ("csv", "json")

LINK_HEADERS = [
    "ID", "Original URL", "Short URL", "Short Code", "Created At", "Expires At",
    "Clicks", "Has Password", "Has Custom Alias", "Has UTM Parameters", "Flagged",
]

# (section title, key column, LinkAnalytics attribute)
ANALYTICS_SECTIONS = [
    ("Clicks by Date", "Date", "clicks_by_date"),
    ("Clicks by Referrer", "Referrer", "clicks_by_referrer"),
    ("Clicks by Device", "Device", "clicks_by_device"),
    ("Clicks by Browser", "Browser", "clicks_by_browser"),
    ("Clicks by Country", "Country", "clicks_by_country"),
    ("Clicks by UTM Source", "UTM Source", "clicks_by_utm_source"),
    ("Conversions by Type", "Type", "conversions_by_type"),
]


def _check_format(fmt: str) -> str:
    fmt = (fmt or "").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}")
    return fmt


def _yes_no(value) -> str:
    return "Yes" if value else "No"


def export_links(links: List[ShortenedLink], fmt: str = "csv") -> str:
    """Export links as CSV rows or a JSON array. Password hashes are never exported."""
    fmt = _check_format(fmt)

    if fmt == "json":
        data = [link.model_dump(mode="json", exclude={"password_hash"}) for link in links]
        return json.dumps(data, indent=2)

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(LINK_HEADERS)

    for link in links:
        writer.writerow([
            link.id,
            link.original_url,
            link.short_url,
            link.short_code,
            link.created_at.isoformat(),
            link.expires_at.isoformat() if link.expires_at else "",
            link.click_count,
            _yes_no(link.is_protected),
            _yes_no(link.custom_alias),
            _yes_no(link.utm_parameters),
            _yes_no(link.flagged),
        ])

    return output.getvalue()


def export_analytics(analytics: LinkAnalytics, fmt: str = "csv") -> str:
    """Export one link's analytics as sectioned CSV or as JSON"""
    fmt = _check_format(fmt)

    if fmt == "json":
        return analytics.model_dump_json(indent=2)

    output = StringIO()
    writer = csv.writer(output)

    writer.writerow(["Basic Analytics"])
    writer.writerow(["Total Clicks", analytics.total_clicks])
    writer.writerow(["Total Conversions", analytics.total_conversions])
    writer.writerow(["Conversion Rate", f"{analytics.conversion_rate:.4f}"])
    writer.writerow(["Conversion Value", f"{analytics.conversion_value:.2f}"])

    for title, column, attribute in ANALYTICS_SECTIONS:
        counts = getattr(analytics, attribute)
        if not counts:
            continue
        writer.writerow([])
        writer.writerow([title])
        writer.writerow([column, "Clicks"])
        for key, count in sorted(counts.items()):
            writer.writerow([key, count])

    return output.getvalue()

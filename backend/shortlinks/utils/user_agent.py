from typing import Optional

from user_agents import parse

UNKNOWN = "Unknown"

# ua-parser only reports families, device types are picked from these
SMART_TV_MARKERS = ("smart-tv", "smarttv", "smart tv", "google tv", "android tv", "apple tv",
                    "appletv", "tvos", "fire tv", "roku", "chromecast", "bravia", "hbbtv")
CONSOLE_MARKERS = ("playstation", "xbox", "nintendo", "ouya")
WEARABLE_MARKERS = ("watch", "wear os")


def _families(parsed) -> str:
    parts = (parsed.device.family, parsed.device.brand, parsed.os.family)
    return " ".join(part for part in parts if part).lower()


def device_class(parsed) -> str:
    """Device type of a parsed User-Agent, "Desktop" when nothing specific is found"""
    families = _families(parsed)
    if any(marker in families for marker in SMART_TV_MARKERS):
        return "Smart TV"
    if any(marker in families for marker in CONSOLE_MARKERS):
        return "Console"
    if any(marker in families for marker in WEARABLE_MARKERS):
        return "Wearable"
    if parsed.is_tablet:
        return "Tablet"
    if parsed.is_mobile:
        return "Mobile"
    return "Desktop"


def browser_name(parsed) -> str:
    family = parsed.browser.family
    if not family or family == "Other":
        return UNKNOWN
    return family


def detect_device(user_agent: Optional[str]) -> str:
    if not user_agent:
        return UNKNOWN
    return device_class(parse(user_agent))


def detect_browser(user_agent: Optional[str]) -> str:
    if not user_agent:
        return UNKNOWN
    return browser_name(parse(user_agent))

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse


MAX_URL_LENGTH = 2048
MIN_PASSWORD_LENGTH = 6

# Best-effort heuristic, not a security boundary
SUSPICIOUS_TLDS = ['tk', 'ml', 'ga', 'cf']
SUSPICIOUS_PATTERNS = ['bit.ly', 'tinyurl.com', 'shorturl.at']

# Hostname label: letters, digits, inner hyphens (no underscores)
_LABEL_RE = re.compile(r'^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$', re.IGNORECASE)
_TLD_RE = re.compile(r'^(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$', re.IGNORECASE)


def _is_ip(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def _is_fqdn(hostname: str) -> bool:
    # Internationalized names are checked in their punycode form
    try:
        hostname = hostname.encode('idna').decode('ascii')
    except UnicodeError:
        return False
    labels = hostname.split('.')
    if len(labels) < 2:
        return False
    if not _TLD_RE.match(labels[-1]):
        return False
    return all(_LABEL_RE.match(label) for label in labels)


def is_valid_url(url: str) -> tuple[bool, str]:
    """
    Validate that a URL is an absolute http/https URL.

    Args:
        url: The URL to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not url or not isinstance(url, str):
        return False, "URL is required"

    if len(url) > MAX_URL_LENGTH:
        return False, f"URL is too long (max {MAX_URL_LENGTH} characters)"

    if any(c.isspace() for c in url):
        return False, "Invalid URL format"

    try:
        result = urlparse(url)
        hostname = result.hostname
        # Accessing .port raises on garbage like "host:abc"
        result.port
    except ValueError:
        return False, "Invalid URL"

    if not result.scheme:
        return False, "Invalid URL format"

    # Only http and https
    if result.scheme.lower() not in ['http', 'https']:
        return False, "Only HTTP and HTTPS URLs are allowed"

    if not result.netloc or not hostname:
        return False, "Invalid URL format"

    # Trailing dots are rejected: split() leaves an empty label
    if not (_is_ip(hostname) or _is_fqdn(hostname)):
        return False, "Invalid URL format"

    return True, ""


def check_suspicious_url(url: str) -> tuple[bool, str]:
    """
    Match the URL's hostname against the suspicious-domain heuristic.

    Returns:
        Tuple of (is_suspicious, reason)
    """
    hostname = (urlparse(url).hostname or '').lower()

    if any(hostname.endswith(f'.{tld}') for tld in SUSPICIOUS_TLDS):
        return True, "Suspicious domain"

    if any(pattern in hostname for pattern in SUSPICIOUS_PATTERNS):
        return True, "URL shortener detected"

    return False, ""


def validate_password(password: Optional[str]) -> tuple[bool, str]:
    """Passwords are optional, but a supplied one must be long enough"""
    if password is None:
        return True, ""
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    return True, ""

"""
Error taxonomy of the shortening engine.

Every error carries a human-readable ``reason``. Components raise them;
``ShortenerService`` turns mutation failures into ``LinkResult.error``
values instead of letting them escape.
"""

from typing import Optional


class ShortLinkError(Exception):
    """Base class for all engine errors"""

    default_reason = "Operation failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class ValidationError(ShortLinkError):
    """Bad URL, alias, date or password; always fixable by the caller"""

    default_reason = "Invalid input"


class AliasTaken(ShortLinkError):
    default_reason = "Custom alias is already in use"


class GenerationExhausted(ShortLinkError):
    default_reason = "Unable to generate unique short code. Please try again."


class RateLimited(ShortLinkError):
    """Limiter rejection. ``retry_after_ms`` is set while a block is active."""

    default_reason = "Rate limit exceeded"

    def __init__(self, reason: Optional[str] = None, remaining: int = 0,
                 retry_after_ms: Optional[int] = None):
        super().__init__(reason)
        self.remaining = remaining
        self.retry_after_ms = retry_after_ms


class LinkNotFound(ShortLinkError):
    default_reason = "Link not found"


class LinkExpired(ShortLinkError):
    default_reason = "Link has expired"


class StorageError(ShortLinkError):
    default_reason = "Storage is unavailable"

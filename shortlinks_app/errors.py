"""
Error taxonomy for the URL shortener.

User-facing errors (validation, conflict, not found, expired) are raised by the
service layer and mapped to HTTP statuses by the API. Store failures are fatal.
Cache and transport failures never leave their own layer: ``CacheLayer`` and
``EventChannel`` catch them and degrade to no-ops.
"""

from typing import Any, Optional


class ShortenerError(Exception):
    """Base class for all service errors"""

    status_code: int = 500
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)


class ValidationError(ShortenerError):
    """Malformed input (bad short code, bad pagination, ...)"""

    status_code = 400
    default_detail = "Invalid input"


class CodeConflictError(ShortenerError):
    """A caller-supplied short code is already taken"""

    status_code = 409
    default_detail = "Short code already exists. Please choose a different one."


class NotFoundError(ShortenerError):
    """
    Resource is absent, owned by another principal, or deactivated.

    These cases are deliberately collapsed into one outcome so that callers
    cannot discover the existence or ownership of other users' URLs.
    """

    status_code = 404
    default_detail = "URL not found"


class ExpiredError(ShortenerError):
    """Resource exists but its expires_at is in the past"""

    status_code = 410
    default_detail = "Short URL has expired"


class StoreError(ShortenerError):
    """Durable store failed; the current operation is aborted"""

    status_code = 500
    default_detail = "Storage failure"


class ConflictError(StoreError):
    """Unique constraint violation on short_code (store level)"""

    status_code = 409
    default_detail = "Short code already exists"


class CacheUnavailableError(ShortenerError):
    """Cache backend unreachable. Never surfaced to callers."""

    default_detail = "Cache unavailable"


class TransportUnavailableError(ShortenerError):
    """Event transport unreachable. Never surfaced to callers."""

    default_detail = "Event transport unavailable"

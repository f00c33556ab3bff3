"""Error taxonomy shared by the upstream client, the cache layer and the app."""
from typing import Optional


class WaniKaniError(Exception):
    """Base class for every error raised by this package."""


class AuthError(WaniKaniError):
    """No API credential is configured."""


class HttpError(WaniKaniError):
    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"WaniKani API error: {status}")


class RateLimitError(HttpError):
    """The provider answered 429 Too Many Requests."""

    def __init__(self, message: str = "", retry_after: Optional[float] = None) -> None:
        self.retry_after = retry_after
        super().__init__(429, message or "WaniKani API error: 429")


class NetworkError(WaniKaniError):
    """Transport failure: connection refused, DNS, timeout, bad body."""


class ValidationError(WaniKaniError):
    """Malformed caller input, rejected before any I/O."""

"""
Error taxonomy for remote access, resolution and cache maintenance.

Every error carries a short machine-readable ``kind`` so callers on the
write path can surface ``{kind, message}`` without a stack trace.
"""

from typing import Any, Dict, Optional


class BrandSyncError(Exception):
    """Base class for all brandsync errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class RemoteError(BrandSyncError):
    """A remote CRM call failed."""

    kind = "remote_error"

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AuthenticationError(RemoteError):
    """401 from the remote API. Never retried."""

    kind = "authentication_error"


class RateLimitedError(RemoteError):
    """429 from the remote API. Retried with backoff."""

    kind = "rate_limited"

    def __init__(self, message: str = "", status: Optional[int] = 429, retry_after: Optional[float] = None):
        super().__init__(message, status=status)
        self.retry_after = retry_after


class TransientRemoteError(RemoteError):
    """Any other 4xx/5xx, timeout or connection failure. Retried once."""

    kind = "transient_remote_error"


class NotFoundError(BrandSyncError):
    """The resolution cascade produced no acceptable candidate."""

    kind = "not_found"


class CorruptCacheEntry(BrandSyncError):
    """A cached payload or store file could not be read back."""

    kind = "corrupt_cache_entry"


class StoreError(BrandSyncError):
    """Persisting a snapshot or cache entry failed."""

    kind = "store_error"


class InvalidInputError(BrandSyncError):
    """A local input file could not be parsed."""

    kind = "invalid_input"


class ThresholdWarning(UserWarning):
    """Cache size is over the operational limit. Reported, never fatal."""

    kind = "threshold_warning"

    def __init__(self, count: int, limit: int):
        super().__init__(f"Cache exceeds {limit} limit: {count} records")
        self.count = count
        self.limit = limit

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class IncompleteFetchError(RemoteError):
    """A paginated fetch lost a page; the result can not replace a snapshot."""

    kind = "incomplete_fetch"

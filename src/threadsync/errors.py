"""Error taxonomy for the persistence side channel."""


class ThreadSyncError(Exception):
    """Base class for all threadsync errors."""

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(ThreadSyncError):
    """The requested record does not exist (expected; drives fallback classification)."""


class NetworkError(ThreadSyncError):
    """Transport failure or unexpected non-2xx status."""


class ConflictError(ThreadSyncError):
    """409 on create: the record already exists."""


class MalformedResponse(ThreadSyncError):
    """Response body could not be decoded, even after sanitizing."""


class ServiceUnavailable(ThreadSyncError):
    """The health probe failed; persistence is off for this session."""

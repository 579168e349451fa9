"""
Error taxonomy for quote resolution.

Only StoreUnavailableError escapes the resolver. The source errors are raised
and caught inside the adapters so one symbol never fails a batch.
"""


class PriceCacheError(Exception):
    """Base class for all price cache errors."""


class StoreUnavailableError(PriceCacheError):
    """The quote store could not be read or written."""


class AdapterNotApplicable(PriceCacheError):
    """A source cannot serve this request (e.g. no broker credentials)."""


class SourceUnreachableError(PriceCacheError):
    """Network failure, timeout or non-2xx status from an upstream source."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(PriceCacheError):
    """Upstream answered but the payload lacks the expected fields."""

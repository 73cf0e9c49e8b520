"""Exception taxonomy for the enrichment pipeline.

Provider errors never leave the adapter that raised them; they are
converted to "no data" plus a circuit-breaker failure.  Cache and
persistence errors are logged and degrade to a miss / a skipped write.
Only ``InvalidRequest`` and ``CandidateDiscoveryFailure`` reach callers.
"""

from __future__ import annotations


class ScreenerError(Exception):
    """Base class for every error raised by this package."""


class ProviderError(ScreenerError):
    """A market-data provider could not serve a request."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderUnavailable(ProviderError):
    """Network failure, timeout or non-success HTTP status."""


class ProviderRateLimited(ProviderError):
    """The provider explicitly throttled us (HTTP 429)."""

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f"rate limited (retry after {retry_after}s)" if retry_after else "rate limited"
        super().__init__(provider, detail)


class ProviderMalformedResponse(ProviderError):
    """The payload did not have the shape the adapter expects."""


class CacheLookupFailure(ScreenerError):
    """Reading cached quotes from the store failed."""


class PersistenceFailure(ScreenerError):
    """Writing resolved quotes to the store failed."""


class InvalidRequest(ScreenerError):
    """Malformed filters, comparisons or request body."""


class CandidateDiscoveryFailure(ScreenerError):
    """No candidate symbols could be discovered and none are cached."""

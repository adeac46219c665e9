"""Exception taxonomy for the FitSync engine.

Provider-level errors (``ProviderError`` subclasses) are raised by adapters and
the credential manager and are always resolved inside the sync cycle: retried
once, skipped, or turned into a clean abort.  ``CredentialUnavailable`` ends a
cycle and is surfaced to the caller.  ``StoreError`` is fatal for a cycle.
"""

from __future__ import annotations


class FitSyncError(Exception):
    """Base class for all engine errors."""


# ---------------------------------------------------------------------------
# Credential errors
# ---------------------------------------------------------------------------


class CredentialUnavailable(FitSyncError):
    """No usable access token and every refresh path is exhausted."""


class ReauthorizationRequired(FitSyncError):
    """Silent refresh was rejected; the user must re-consent interactively."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(FitSyncError):
    """A call to the external fitness provider did not succeed.

    Attributes:
        status_code: HTTP status returned by the provider, if any.
        source:      Provider slug that raised the error.
    """

    def __init__(
        self, message: str, status_code: int | None = None, source: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.source = source


class ProviderRateLimited(ProviderError):
    """The provider asked us to back off (HTTP 429 / RATE_LIMIT_EXCEEDED)."""


class ProviderUnauthorized(ProviderError):
    """The provider rejected the access token (HTTP 401)."""


class ProviderTransientError(ProviderError):
    """Timeout, transport failure, 5xx, or any other non-success response."""


class MalformedResponse(ProviderError):
    """A successful response (or one bucket of it) could not be interpreted."""


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------


class StoreError(FitSyncError):
    """The backing store could not complete a read or write."""

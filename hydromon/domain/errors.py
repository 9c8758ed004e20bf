"""Exception hierarchy for hydromon.

Everything raised below the telemetry service derives from ``HydromonError``.
The service absorbs all of them and degrades to cached or fallback data.
"""

from __future__ import annotations


class HydromonError(Exception):
    """Base exception for all hydromon errors."""


class RemoteError(HydromonError):
    """Failure talking to the external device-reporting service."""

    def __init__(self, message: str, *, url: str = "", status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class RemoteTimeout(RemoteError):
    """No response within the per-attempt timeout. Retried."""


class RemoteTransportError(RemoteError):
    """Connection-level failure other than a timeout. Not retried."""


class RemoteAuthError(RemoteError):
    """The service rejected our credentials (after any query-key fallback)."""


class RemoteResponseError(RemoteError):
    """Non-2xx status, wrong content type or an undecodable body."""

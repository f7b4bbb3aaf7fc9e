"""Custom exception hierarchy for feedrouter."""

from __future__ import annotations


class RouterError(Exception):
    """Base exception for all feedrouter errors."""


class RouterConfigError(RouterError):
    """Invalid or missing configuration."""


class FetchError(RouterError):
    """Upstream source unreachable or returned a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class DecodeError(RouterError):
    """Source text could not be decoded into a key/value mapping.

    The CSV decoder degrades to a partial or empty mapping for malformed
    rows, so in practice this is only raised for input that is not text.
    """

"""Error taxonomy shared by the HTTP layer and the upstream client."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""


class ValidationError(RelayError):
    """Request fields are missing or malformed. Raised before any upstream call."""

    def __init__(self, message: str, errors: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.errors = errors or {}


class UpstreamError(RelayError):
    """Base class for failures talking to the upstream completion API."""


class UpstreamAPIError(UpstreamError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(f"Upstream API call failed: {message}")
        self.status_code = status_code
        self.upstream_message = message


class UpstreamMalformedResponse(UpstreamError):
    """Upstream answered 2xx but the body lacks the expected content."""


class UpstreamTransportError(UpstreamError):
    """Connection-level failure: connect error, reset, or timeout."""

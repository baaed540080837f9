"""Exception hierarchy for probe failures.

Every failure is terminal for the probe attempt; nothing here is retried.
"""

from __future__ import annotations


class ProbeError(Exception):
    """Base class for all probe failures."""


class InvalidUrl(ProbeError):
    """The URL is not an absolute http/https URL. Raised before any I/O."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class NetworkError(ProbeError):
    """DNS, connect, TLS or stream failure. Wraps the transport's exception."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


class ProbeTimeout(ProbeError):
    """The probe did not complete within its allotted time."""

    def __init__(self, timeout: float, cause: BaseException | None = None) -> None:
        self.timeout = timeout
        self.cause = cause
        detail = f": {cause}" if cause is not None and str(cause) else ""
        super().__init__(f"Timed out after {timeout:g}s{detail}")


class ProbeCancelled(ProbeError):
    """The caller abandoned the probe before it completed."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Probe of {url} was cancelled")

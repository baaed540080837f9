"""Connection lifecycle listeners.

The transport layer reports each step of a request's connection
lifecycle to a :class:`ConnectionEventSink`:

    DNS -> TCP -> TLS -> request headers -> response headers

:class:`ProbeSession` is the sink used by the probe engine.  One session
is created per probe and owns every in-progress timestamp for that
probe, so concurrent probes never share mutable timing state.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Optional, Sequence

from latprobe.clock import PhaseClock
from latprobe.models import LatencyReport

logger = logging.getLogger(__name__)


class ConnectionEventSink:
    """Listener for one request's connection lifecycle.

    All callbacks are no-ops; subclasses override the ones they need.
    DNS and TLS callbacks only fire when those phases actually happen,
    and none of the connection callbacks fire when a pooled connection
    is reused.
    """

    def on_dns_start(self, host: str) -> None:
        pass

    def on_dns_end(self, host: str, addresses: Sequence[str]) -> None:
        pass

    def on_connect_start(self, address: str, port: int) -> None:
        pass

    def on_connect_end(self, address: str, port: int) -> None:
        pass

    def on_tls_start(self, server_hostname: Optional[str]) -> None:
        pass

    def on_tls_end(self, tls_version: Optional[str]) -> None:
        pass

    def on_request_headers_start(self) -> None:
        pass

    def on_request_end(self) -> None:
        pass

    def on_response_headers_end(
        self,
        status_code: Optional[int] = None,
        http_version: Optional[str] = None,
    ) -> None:
        pass


class SessionState(enum.Enum):
    IDLE = "idle"
    DNS_RESOLVING = "dns_resolving"
    CONNECTING = "connecting"
    TLS_HANDSHAKING = "tls_handshaking"
    REQUEST_SENDING = "request_sending"
    AWAITING_RESPONSE_HEADERS = "awaiting_response_headers"
    RECEIVING_BODY = "receiving_body"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL_STATES = (SessionState.COMPLETE, SessionState.FAILED, SessionState.CANCELLED)


class ProbeSession(ConnectionEventSink):
    """Report builder for a single in-flight probe.

    Each ``*_start`` callback marks the clock; the matching ``*_end``
    callback stores the elapsed seconds.  An end without its start is
    ignored and the phase stays at 0.

    Once the session is finished, failed or cancelled it is closed:
    later callbacks are dropped so an abandoned request can never write
    into a report.  Callbacks may arrive from any thread.
    """

    def __init__(self, clock: Optional[PhaseClock] = None, url: str = "") -> None:
        self.clock = clock or PhaseClock()
        self.url = url
        self.state = SessionState.IDLE
        self.error: Optional[BaseException] = None

        self._lock = threading.Lock()
        self._dns_start: Optional[float] = None
        self._connect_start: Optional[float] = None
        self._tls_start: Optional[float] = None
        self._request_start: Optional[float] = None

        self.dns_lookup_seconds = 0.0
        self.tcp_connect_seconds = 0.0
        self.tls_handshake_seconds = 0.0
        self.time_to_first_byte_seconds = 0.0
        self.tls_version: Optional[str] = None
        self.status_code: Optional[int] = None
        self.http_version: Optional[str] = None
        self.new_connection = False

    @property
    def active(self) -> bool:
        return self.state not in _TERMINAL_STATES

    def _writable(self, event: str) -> bool:
        # Caller holds the lock.
        if self.state in _TERMINAL_STATES:
            logger.debug(
                "Dropping %s for %s: session already %s",
                event, self.url or "probe", self.state.value,
            )
            return False
        return True

    # -- transport callbacks ------------------------------------------

    def on_dns_start(self, host: str) -> None:
        with self._lock:
            if not self._writable("dns_start"):
                return
            self.state = SessionState.DNS_RESOLVING
            self._dns_start = self.clock.mark()

    def on_dns_end(self, host: str, addresses: Sequence[str]) -> None:
        with self._lock:
            if not self._writable("dns_end") or self._dns_start is None:
                return
            self.dns_lookup_seconds = self.clock.elapsed(self._dns_start)
            self._dns_start = None
        logger.debug("Resolved %s -> %s", host, ", ".join(addresses))

    def on_connect_start(self, address: str, port: int) -> None:
        with self._lock:
            if not self._writable("connect_start"):
                return
            self.state = SessionState.CONNECTING
            self.new_connection = True
            self._connect_start = self.clock.mark()

    def on_connect_end(self, address: str, port: int) -> None:
        with self._lock:
            if not self._writable("connect_end") or self._connect_start is None:
                return
            self.tcp_connect_seconds = self.clock.elapsed(self._connect_start)
            self._connect_start = None

    def on_tls_start(self, server_hostname: Optional[str]) -> None:
        with self._lock:
            if not self._writable("tls_start"):
                return
            self.state = SessionState.TLS_HANDSHAKING
            self._tls_start = self.clock.mark()

    def on_tls_end(self, tls_version: Optional[str]) -> None:
        with self._lock:
            if not self._writable("tls_end") or self._tls_start is None:
                return
            self.tls_handshake_seconds = self.clock.elapsed(self._tls_start)
            self.tls_version = tls_version
            self._tls_start = None

    def on_request_headers_start(self) -> None:
        with self._lock:
            if not self._writable("request_headers_start"):
                return
            self.state = SessionState.REQUEST_SENDING
            self._request_start = self.clock.mark()

    def on_request_end(self) -> None:
        with self._lock:
            if not self._writable("request_end"):
                return
            self.state = SessionState.AWAITING_RESPONSE_HEADERS

    def on_response_headers_end(
        self,
        status_code: Optional[int] = None,
        http_version: Optional[str] = None,
    ) -> None:
        with self._lock:
            if not self._writable("response_headers_end") or self._request_start is None:
                return
            self.time_to_first_byte_seconds = self.clock.elapsed(self._request_start)
            self._request_start = None
            self.state = SessionState.RECEIVING_BODY
            if status_code is not None:
                self.status_code = status_code
            if http_version is not None:
                self.http_version = http_version

    # -- lifecycle ----------------------------------------------------

    def finish(
        self,
        total_seconds: float,
        body_byte_count: int,
        status_code: Optional[int] = None,
        http_version: Optional[str] = None,
    ) -> LatencyReport:
        """Close the session and build its report.

        Raises ``RuntimeError`` if the session is already closed, so a
        report is never produced twice or after a failure.
        """
        with self._lock:
            if self.state in _TERMINAL_STATES:
                raise RuntimeError(
                    f"Cannot finish probe session in state {self.state.value!r}"
                )
            self.state = SessionState.COMPLETE

        speed = body_byte_count / total_seconds if total_seconds > 0 else 0.0
        return LatencyReport(
            dns_lookup_seconds=self.dns_lookup_seconds,
            tcp_connect_seconds=self.tcp_connect_seconds,
            tls_handshake_seconds=self.tls_handshake_seconds,
            time_to_first_byte_seconds=self.time_to_first_byte_seconds,
            total_seconds=total_seconds,
            download_speed_bytes_per_second=speed,
            body_byte_count=body_byte_count,
            url=self.url,
            status_code=status_code if status_code is not None else self.status_code,
            http_version=http_version or self.http_version,
            tls_version=self.tls_version,
            connection_reused=not self.new_connection,
        )

    def fail(self, exc: BaseException) -> None:
        with self._lock:
            if self.state in _TERMINAL_STATES:
                return
            self.state = SessionState.FAILED
            self.error = exc

    def cancel(self) -> None:
        with self._lock:
            if self.state in _TERMINAL_STATES:
                return
            self.state = SessionState.CANCELLED

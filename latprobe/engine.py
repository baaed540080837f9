"""Core measurement engine for latprobe.

Measures the phases of one HTTP(S) request:
  DNS -> TCP -> TLS -> TTFB -> Total (including body drain)

Phase boundaries come from the instrumented transport; each probe gets
its own :class:`~latprobe.events.ProbeSession`, so any number of probes
may run concurrently over one shared client and connection pool.

Public API:
    HttpProbe       -- run timed fetches over a shared httpx client
    parse_probe_url -- validate a URL without touching the network
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import httpx

from latprobe.clock import PhaseClock
from latprobe.config import NO_CACHE_HEADERS, SUPPORTED_SCHEMES
from latprobe.errors import InvalidUrl, NetworkError, ProbeTimeout
from latprobe.events import ProbeSession
from latprobe.models import LatencyReport, ProbeConfig
from latprobe.transport import InstrumentedTransport, bound_sink, trace_hook

logger = logging.getLogger(__name__)

# Signature: (clock, url) -> session
SessionFactory = Callable[[PhaseClock, str], ProbeSession]


def parse_probe_url(url: str) -> httpx.URL:
    """Validate *url* as an absolute http/https URL.

    Raises
    ------
    InvalidUrl
        If the URL is empty, unparseable, relative, not http/https or
        has no host.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl(str(url), "URL is empty")

    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, ValueError, TypeError) as exc:
        raise InvalidUrl(url, str(exc)) from exc

    if not parsed.scheme:
        raise InvalidUrl(url, "URL must be absolute (missing scheme)")
    if parsed.scheme not in SUPPORTED_SCHEMES:
        raise InvalidUrl(url, f"unsupported scheme {parsed.scheme!r}, expected http or https")
    if not parsed.host:
        raise InvalidUrl(url, "URL has no host")
    return parsed


class HttpProbe:
    """Runs timed, cache-bypassing GET requests.

    Parameters
    ----------
    config:
        Client configuration (timeouts, DNS server, pool limits, ...).
    transport:
        Transport override.  Defaults to an
        :class:`~latprobe.transport.InstrumentedTransport`; a transport
        without instrumentation still yields total time and throughput,
        with the connection phases left at 0.
    clock:
        Clock shared by all sessions created by this probe.
    session_factory:
        Builds the per-call session.  Defaults to :class:`ProbeSession`.
    """

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[PhaseClock] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config = config or ProbeConfig()
        self._clock = clock or PhaseClock()
        self._session_factory = session_factory or _default_session
        self._client = httpx.AsyncClient(
            transport=transport or InstrumentedTransport(self.config),
            timeout=httpx.Timeout(self.config.timeout),
            follow_redirects=self.config.follow_redirects,
            headers={"User-Agent": self.config.user_agent},
        )

    async def __aenter__(self) -> HttpProbe:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def run(self, url: str, timeout_seconds: Optional[float] = None) -> LatencyReport:
        """Probe *url* once and return its latency breakdown.

        The whole exchange, body included, must finish within
        *timeout_seconds* (``config.timeout`` when omitted).

        Raises
        ------
        InvalidUrl
            Before any network activity, if *url* is not a valid
            absolute http/https URL.
        ProbeTimeout
            If the exchange exceeded the timeout.
        NetworkError
            On DNS, connect, TLS or stream failure.
        asyncio.CancelledError
            If the calling task is cancelled; no report is produced.
        """
        target = parse_probe_url(url)
        timeout = self.config.timeout if timeout_seconds is None else timeout_seconds
        if timeout <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout!r}")

        session = self._session_factory(self._clock, str(target))
        logger.debug("Probing %s (timeout %.1fs)", target, timeout)

        try:
            report = await asyncio.wait_for(
                self._execute(target, session, timeout), timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            session.fail(exc)
            logger.debug("Probe of %s timed out after %.1fs", target, timeout)
            raise ProbeTimeout(timeout) from exc
        except asyncio.CancelledError:
            # Only a cancelled caller lands here; wait_for turns its own
            # expiry into TimeoutError above.
            session.cancel()
            logger.debug("Probe of %s cancelled", target)
            raise

        logger.debug(
            "Probe of %s done: %d bytes in %.6fs",
            target, report.body_byte_count, report.total_seconds,
        )
        return report

    async def _execute(
        self,
        target: httpx.URL,
        session: ProbeSession,
        timeout: float,
    ) -> LatencyReport:
        """Send the request and drain the body, timing the whole exchange."""
        request = self._client.build_request(
            "GET",
            target,
            headers=NO_CACHE_HEADERS,
            timeout=httpx.Timeout(timeout),
            extensions={"trace": trace_hook(session)},
        )

        try:
            with bound_sink(session):
                start_total = session.clock.mark()
                response = await self._client.send(request, stream=True)
                try:
                    async for _ in response.aiter_bytes():
                        pass
                finally:
                    await response.aclose()
                total_seconds = session.clock.elapsed(start_total)
                # Bytes as received, before content decoding.
                body_bytes = response.num_bytes_downloaded
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            session.fail(exc)
            raise ProbeTimeout(timeout, exc) from exc
        except (httpx.HTTPError, OSError) as exc:
            session.fail(exc)
            logger.debug("Probe of %s failed: %s", target, exc)
            raise NetworkError(exc) from exc

        return session.finish(
            total_seconds=total_seconds,
            body_byte_count=body_bytes,
            status_code=response.status_code,
            http_version=response.http_version,
        )


def _default_session(clock: PhaseClock, url: str) -> ProbeSession:
    return ProbeSession(clock=clock, url=url)


async def probe(
    url: str,
    timeout_seconds: Optional[float] = None,
    config: Optional[ProbeConfig] = None,
) -> LatencyReport:
    """Probe *url* once with a throwaway client."""
    async with HttpProbe(config) as http_probe:
        return await http_probe.run(url, timeout_seconds)


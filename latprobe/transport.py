"""Transport instrumentation for httpx.

Connection lifecycle events reach the current probe's sink from two
places:

  * :class:`InstrumentedBackend`, an httpcore network backend that
    resolves the host itself (DNS) before opening the socket (TCP).
  * :func:`trace_hook`, a callable for httpcore's ``trace`` request
    extension, which reports the TLS handshake and the request and
    response header boundaries.

The backend is shared by every connection in the pool and receives no
request, so the sink for the request being connected is looked up in a
context variable bound with :func:`bound_sink`.  Each asyncio task has
its own context, so concurrent probes see their own sinks.
"""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import ipaddress
import logging
import socket
from typing import Any, Awaitable, Callable, Iterable, Iterator, Optional

import dns.asyncresolver
import dns.exception
import dns.rdatatype
import httpcore
import httpx

from latprobe.events import ConnectionEventSink
from latprobe.models import ProbeConfig

logger = logging.getLogger(__name__)

TraceHook = Callable[[str, dict], Awaitable[None]]

_NULL_SINK = ConnectionEventSink()

_current_sink: contextvars.ContextVar[ConnectionEventSink] = contextvars.ContextVar(
    "latprobe_current_sink", default=_NULL_SINK,
)


@contextlib.contextmanager
def bound_sink(sink: ConnectionEventSink) -> Iterator[ConnectionEventSink]:
    """Route backend events raised in the current task to *sink*."""
    token = _current_sink.set(sink)
    try:
        yield sink
    finally:
        _current_sink.reset(token)


def current_sink() -> ConnectionEventSink:
    return _current_sink.get()


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# DNS resolution
# ---------------------------------------------------------------------------

def _address_family(config: ProbeConfig) -> int:
    if config.ipv4_only:
        return socket.AF_INET
    if config.ipv6_only:
        return socket.AF_INET6
    return socket.AF_UNSPEC


async def _resolve_system(host: str, port: int, config: ProbeConfig) -> list[str]:
    """Resolve via the OS resolver (honours /etc/hosts and the system cache)."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(
        host, port, family=_address_family(config), type=socket.SOCK_STREAM,
    )
    return _unique(info[4][0] for info in infos)


async def _resolve_nameserver(host: str, config: ProbeConfig, timeout: float) -> list[str]:
    """Resolve via dnspython against ``config.dns_server``.

    Falls back from A to AAAA when the preferred record type yields no
    answer, unless an address family is forced.
    """
    resolver = dns.asyncresolver.Resolver(configure=False)
    resolver.nameservers = [config.dns_server]
    resolver.lifetime = timeout

    if config.ipv6_only:
        rdtypes = [dns.rdatatype.AAAA]
    elif config.ipv4_only:
        rdtypes = [dns.rdatatype.A]
    else:
        rdtypes = [dns.rdatatype.A, dns.rdatatype.AAAA]

    last_error: Optional[Exception] = None
    for rdtype in rdtypes:
        try:
            answer = await resolver.resolve(host, rdtype)
        except dns.exception.Timeout:
            raise
        except dns.exception.DNSException as exc:
            last_error = exc
            continue
        return _unique(rdata.to_text() for rdata in answer)

    # All record types failed -- propagate the last error.
    raise last_error  # type: ignore[misc]


async def resolve_host(
    host: str,
    port: int,
    config: ProbeConfig,
    timeout: Optional[float] = None,
) -> list[str]:
    """Resolve *host* to a non-empty list of addresses.

    Raises
    ------
    httpcore.ConnectTimeout
        Resolution did not finish within *timeout*.
    httpcore.ConnectError
        The name could not be resolved.
    """
    budget = timeout if timeout is not None else config.timeout
    try:
        if config.dns_server:
            addresses = await _resolve_nameserver(host, config, budget)
        else:
            addresses = await asyncio.wait_for(
                _resolve_system(host, port, config), timeout=budget,
            )
    except (asyncio.TimeoutError, dns.exception.Timeout) as exc:
        raise httpcore.ConnectTimeout(f"DNS resolution of {host} timed out") from exc
    except (OSError, dns.exception.DNSException) as exc:
        raise httpcore.ConnectError(f"DNS resolution of {host} failed: {exc}") from exc

    if not addresses:
        raise httpcore.ConnectError(f"DNS resolution of {host} returned no addresses")
    return addresses


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


# ---------------------------------------------------------------------------
# Network backend
# ---------------------------------------------------------------------------

class InstrumentedBackend(httpcore.AsyncNetworkBackend):
    """Network backend that reports DNS and TCP phases to the current sink.

    Only new connections pass through here; a request served from a
    pooled connection produces no DNS or connect events.
    """

    def __init__(
        self,
        config: ProbeConfig,
        backend: Optional[httpcore.AsyncNetworkBackend] = None,
    ) -> None:
        self._config = config
        self._backend = backend or httpcore.AnyIOBackend()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[Any]] = None,
    ) -> httpcore.AsyncNetworkStream:
        sink = current_sink()
        addresses = [host]

        if not is_ip_literal(host):
            sink.on_dns_start(host)
            addresses = await resolve_host(host, port, self._config, timeout)
            sink.on_dns_end(host, addresses)

        # Addresses are tried in resolver order; the connect phase covers
        # the attempt that succeeded.
        last_error: Optional[Exception] = None
        for address in addresses:
            sink.on_connect_start(address, port)
            try:
                stream = await self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                logger.debug("Connect to %s:%d failed: %s", address, port, exc)
                last_error = exc
                continue
            sink.on_connect_end(address, port)
            logger.debug("Connected to %s:%d (%s)", address, port, host)
            return stream

        # Every address refused -- propagate the last error.
        raise last_error  # type: ignore[misc]

    async def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable[Any]] = None,
    ) -> httpcore.AsyncNetworkStream:
        return await self._backend.connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options,
        )

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)


class InstrumentedTransport(httpx.AsyncHTTPTransport):
    """``httpx.AsyncHTTPTransport`` whose pool connects through
    :class:`InstrumentedBackend`.

    The transport is safe for concurrent use and is meant to be shared
    by every probe made through one client.
    """

    def __init__(
        self,
        config: ProbeConfig,
        network_backend: Optional[httpcore.AsyncNetworkBackend] = None,
    ) -> None:
        limits = httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_keepalive_connections,
            keepalive_expiry=config.keepalive_expiry,
        )
        super().__init__(verify=config.verify, http2=config.http2, limits=limits)

        # Rebuild the pool on the instrumented backend; the rest of the
        # transport (exception mapping, response wrapping) is unchanged.
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=httpx.create_ssl_context(verify=config.verify),
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=config.http2,
            network_backend=network_backend or InstrumentedBackend(config),
        )


# ---------------------------------------------------------------------------
# httpcore trace extension
# ---------------------------------------------------------------------------

def _tls_version(stream: Any) -> Optional[str]:
    """Best-effort TLS version from a connected httpcore stream."""
    get_extra_info = getattr(stream, "get_extra_info", None)
    if get_extra_info is None:
        return None
    ssl_obj = get_extra_info("ssl_object")
    if ssl_obj is not None:
        return ssl_obj.version()
    return None


def _response_head(event_name: str, info: dict) -> tuple[Optional[int], Optional[str]]:
    """Extract (status_code, http_version) from a receive_response_headers event."""
    value = info.get("return_value")
    if not isinstance(value, tuple):
        return None, None
    if event_name.startswith("http2."):
        # (status, headers)
        status = value[0] if value else None
        return (status if isinstance(status, int) else None), "HTTP/2"
    # (http_version, status, reason_phrase, headers)
    if len(value) < 2:
        return None, None
    version = value[0].decode("ascii", "replace") if isinstance(value[0], bytes) else value[0]
    status = value[1] if isinstance(value[1], int) else None
    return status, version


def trace_hook(sink: ConnectionEventSink) -> TraceHook:
    """Build an httpcore ``trace`` extension that forwards to *sink*."""

    async def _trace(event_name: str, info: dict) -> None:
        if event_name == "connection.start_tls.started":
            sink.on_tls_start(info.get("server_hostname"))
        elif event_name == "connection.start_tls.complete":
            sink.on_tls_end(_tls_version(info.get("return_value")))
        elif event_name.endswith(".send_request_headers.started"):
            sink.on_request_headers_start()
        elif event_name.endswith(".send_request_body.complete"):
            sink.on_request_end()
        elif event_name.endswith(".receive_response_headers.complete"):
            status, version = _response_head(event_name, info)
            sink.on_response_headers_end(status, version)

    return _trace

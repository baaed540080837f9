"""Shared fixtures: a scriptable local HTTP/1.1 server."""

import asyncio
import socket
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

import pytest
import trustme


@dataclass
class ServerBehavior:
    """How the local server answers each request."""

    header_delay: float = 0.0
    body: bytes = b"hello"
    chunks: int = 1
    chunk_delay: float = 0.0
    stall_after_first_chunk: float = 0.0


@dataclass
class LocalHTTPServer:
    """Keep-alive HTTP/1.1 server on 127.0.0.1 with configurable pacing and optional TLS."""

    behavior: ServerBehavior
    port: int = 0
    connections: int = 0
    requests: list[dict[str, str]] = field(default_factory=list)
    body_started: asyncio.Event = field(default_factory=asyncio.Event)
    ssl_context: ssl.SSLContext | None = None
    _server: asyncio.AbstractServer | None = None

    @property
    def url(self) -> str:
        scheme = "https" if self.ssl_context else "http"
        return f"{scheme}://127.0.0.1:{self.port}/payload"

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle, "127.0.0.1", 0, ssl=self.ssl_context,
        )
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        behavior = self.behavior
        try:
            while True:
                head = await reader.readuntil(b"\r\n\r\n")
                self.requests.append(_parse_headers(head))

                if behavior.header_delay:
                    await asyncio.sleep(behavior.header_delay)
                writer.write(
                    b"HTTP/1.1 200 OK\r\n"
                    b"Content-Type: application/octet-stream\r\n"
                    + f"Content-Length: {len(behavior.body)}\r\n\r\n".encode()
                )
                await writer.drain()

                for index, piece in enumerate(_split(behavior.body, behavior.chunks)):
                    if index and behavior.chunk_delay:
                        await asyncio.sleep(behavior.chunk_delay)
                    writer.write(piece)
                    await writer.drain()
                    if index == 0:
                        self.body_started.set()
                        if behavior.stall_after_first_chunk:
                            await asyncio.sleep(behavior.stall_after_first_chunk)
        except (asyncio.IncompleteReadError, ConnectionError, ssl.SSLError):
            pass
        finally:
            writer.close()


def _parse_headers(head: bytes) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in head.decode("latin-1").split("\r\n")[1:]:
        if ":" in line:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
    return headers


def _split(body: bytes, chunks: int) -> list[bytes]:
    if chunks <= 1 or not body:
        return [body]
    size = -(-len(body) // chunks)
    return [body[i:i + size] for i in range(0, len(body), size)]


@pytest.fixture
async def http_server() -> AsyncIterator[Callable[..., Awaitable[LocalHTTPServer]]]:
    """Factory fixture starting a local server with the given behavior."""
    servers: list[LocalHTTPServer] = []

    async def _start(
        ssl_context: ssl.SSLContext | None = None, **kwargs: object,
    ) -> LocalHTTPServer:
        server = LocalHTTPServer(
            ServerBehavior(**kwargs), ssl_context=ssl_context,  # type: ignore[arg-type]
        )
        await server.start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop()


@pytest.fixture
def unused_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="session")
def tls_server_context() -> ssl.SSLContext:
    """Server-side TLS context with a throwaway certificate for 127.0.0.1."""
    ca = trustme.CA()
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ca.issue_cert("127.0.0.1", "localhost").configure_cert(context)
    return context

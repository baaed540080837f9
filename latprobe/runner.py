"""Background execution of probes for blocking callers.

A UI thread (or any synchronous code) cannot await :meth:`HttpProbe.run`.
:class:`ProbeRunner` owns an event loop on a daemon thread, submits
probes to it and hands back a :class:`ProbeHandle` that can be waited
on, polled or cancelled from the calling thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Callable, Optional

import httpx

from latprobe.engine import HttpProbe, SessionFactory
from latprobe.errors import ProbeCancelled
from latprobe.models import LatencyReport, ProbeConfig

logger = logging.getLogger(__name__)


class ProbeHandle:
    """Result handle for one submitted probe."""

    def __init__(self, url: str, future: concurrent.futures.Future) -> None:
        self.url = url
        self._future = future

    def result(self, timeout: Optional[float] = None) -> LatencyReport:
        """Block until the probe finishes and return its report.

        Raises the probe's :class:`~latprobe.errors.ProbeError`, or
        :class:`~latprobe.errors.ProbeCancelled` if the handle was
        cancelled.  *timeout* bounds the wait only; it raises
        ``concurrent.futures.TimeoutError`` and leaves the probe running.
        """
        try:
            return self._future.result(timeout)
        except concurrent.futures.CancelledError as exc:
            raise ProbeCancelled(self.url) from exc

    def cancel(self) -> bool:
        """Abandon the probe. The in-flight request is cancelled and no report is delivered."""
        return self._future.cancel()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, fn: Callable[[ProbeHandle], None]) -> None:
        """Call *fn* with this handle once the probe finishes, fails or is cancelled.

        The callback runs on the runner's loop thread.
        """
        self._future.add_done_callback(lambda _: fn(self))


class ProbeRunner:
    """Runs probes on a private event loop thread.

    All submitted probes share one :class:`HttpProbe`, and therefore one
    connection pool.
    """

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="latprobe-runner", daemon=True,
        )
        self._probe = HttpProbe(config, transport=transport, session_factory=session_factory)
        self._closed = False
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def __enter__(self) -> ProbeRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit(self, url: str, timeout_seconds: Optional[float] = None) -> ProbeHandle:
        """Start probing *url* in the background."""
        if self._closed:
            raise RuntimeError("ProbeRunner is closed")
        future = asyncio.run_coroutine_threadsafe(
            self._probe.run(url, timeout_seconds), self._loop,
        )
        return ProbeHandle(url, future)

    def close(self) -> None:
        """Cancel unfinished probes, close the shared client and stop the loop thread."""
        if self._closed:
            return
        self._closed = True
        try:
            asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop).result()
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()
            logger.debug("Probe runner stopped")

    async def _shutdown(self) -> None:
        # Let cancelled probes unwind before the loop stops, so their
        # sessions are closed and no task is left pending.
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._probe.aclose()

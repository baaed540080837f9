"""Tests for ProbeSession phase recording and its closed-session guard."""

import pytest

from latprobe.clock import PhaseClock
from latprobe.events import ConnectionEventSink, ProbeSession, SessionState


class StepClock(PhaseClock):
    """Clock that advances by a fixed step on every reading."""

    def __init__(self, step: float = 0.01) -> None:
        self.now = 0.0
        self.step = step
        super().__init__(self._tick)

    def _tick(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture
def session() -> ProbeSession:
    return ProbeSession(clock=StepClock(0.01), url="http://example.test/")


def _full_lifecycle(session: ProbeSession) -> None:
    session.on_dns_start("example.test")
    session.on_dns_end("example.test", ["192.0.2.1"])
    session.on_connect_start("192.0.2.1", 443)
    session.on_connect_end("192.0.2.1", 443)
    session.on_tls_start("example.test")
    session.on_tls_end("TLSv1.3")
    session.on_request_headers_start()
    session.on_request_end()
    session.on_response_headers_end(200, "HTTP/1.1")


def test_records_every_phase(session: ProbeSession) -> None:
    """Each start/end pair stores one clock step."""
    _full_lifecycle(session)

    assert session.dns_lookup_seconds == pytest.approx(0.01)
    assert session.tcp_connect_seconds == pytest.approx(0.01)
    assert session.tls_handshake_seconds == pytest.approx(0.01)
    assert session.time_to_first_byte_seconds == pytest.approx(0.01)
    assert session.tls_version == "TLSv1.3"
    assert session.state is SessionState.RECEIVING_BODY


def test_state_follows_lifecycle(session: ProbeSession) -> None:
    """Callbacks walk the session through the connection states."""
    assert session.state is SessionState.IDLE
    session.on_dns_start("example.test")
    assert session.state is SessionState.DNS_RESOLVING
    session.on_connect_start("192.0.2.1", 80)
    assert session.state is SessionState.CONNECTING
    session.on_tls_start("example.test")
    assert session.state is SessionState.TLS_HANDSHAKING
    session.on_request_headers_start()
    assert session.state is SessionState.REQUEST_SENDING
    session.on_request_end()
    assert session.state is SessionState.AWAITING_RESPONSE_HEADERS


def test_missing_phases_stay_zero(session: ProbeSession) -> None:
    """Without DNS or TLS events those phases report 0."""
    session.on_connect_start("127.0.0.1", 80)
    session.on_connect_end("127.0.0.1", 80)
    session.on_request_headers_start()
    session.on_response_headers_end(200, "HTTP/1.1")

    report = session.finish(total_seconds=0.5, body_byte_count=100)

    assert report.dns_lookup_seconds == 0.0
    assert report.tls_handshake_seconds == 0.0
    assert report.tls_version is None
    assert report.connection_reused is False


def test_end_without_start_is_ignored(session: ProbeSession) -> None:
    """An end callback with no matching start leaves the phase at 0."""
    session.on_dns_end("example.test", ["192.0.2.1"])
    session.on_tls_end("TLSv1.3")
    session.on_response_headers_end(200)

    assert session.dns_lookup_seconds == 0.0
    assert session.tls_handshake_seconds == 0.0
    assert session.time_to_first_byte_seconds == 0.0


def test_no_connect_events_means_reused(session: ProbeSession) -> None:
    """A request served from a pooled connection reports zero setup phases."""
    session.on_request_headers_start()
    session.on_response_headers_end(200, "HTTP/1.1")

    report = session.finish(total_seconds=0.2, body_byte_count=10)

    assert report.connection_reused is True
    assert report.dns_lookup_seconds == 0.0
    assert report.tcp_connect_seconds == 0.0
    assert report.tls_handshake_seconds == 0.0


def test_finish_computes_download_speed(session: ProbeSession) -> None:
    """Speed is body bytes over total seconds."""
    report = session.finish(total_seconds=0.25, body_byte_count=1000)

    assert report.download_speed_bytes_per_second == pytest.approx(4000.0)
    assert report.body_byte_count == 1000
    assert report.url == "http://example.test/"
    assert session.state is SessionState.COMPLETE


@pytest.mark.parametrize("total", [0.0, -1.0])
def test_finish_guards_non_positive_total(session: ProbeSession, total: float) -> None:
    """A non-positive total yields a speed of 0 instead of dividing by it."""
    report = session.finish(total_seconds=total, body_byte_count=1000)

    assert report.download_speed_bytes_per_second == 0.0


def test_finish_prefers_explicit_status(session: ProbeSession) -> None:
    """Status and version passed to finish() override traced values."""
    session.on_request_headers_start()
    session.on_response_headers_end(301, "HTTP/1.1")

    report = session.finish(0.1, 0, status_code=200, http_version="HTTP/2")

    assert report.status_code == 200
    assert report.http_version == "HTTP/2"


def test_finish_twice_raises(session: ProbeSession) -> None:
    """A session produces at most one report."""
    session.finish(total_seconds=0.1, body_byte_count=1)

    with pytest.raises(RuntimeError, match="complete"):
        session.finish(total_seconds=0.1, body_byte_count=1)


def test_completed_session_drops_late_events(session: ProbeSession) -> None:
    """Callbacks after finish() do not touch the recorded values."""
    session.on_request_headers_start()
    session.on_response_headers_end(200)
    session.finish(total_seconds=0.1, body_byte_count=1)
    ttfb = session.time_to_first_byte_seconds

    session.on_request_headers_start()
    session.on_response_headers_end(500)
    session.on_dns_start("late.test")
    session.on_dns_end("late.test", ["192.0.2.9"])

    assert session.time_to_first_byte_seconds == ttfb
    assert session.dns_lookup_seconds == 0.0
    assert session.status_code == 200
    assert session.state is SessionState.COMPLETE


def test_cancelled_session_rejects_writes_and_report(session: ProbeSession) -> None:
    """A cancelled session neither records events nor builds a report."""
    session.on_connect_start("192.0.2.1", 80)
    session.cancel()

    session.on_connect_end("192.0.2.1", 80)

    assert session.state is SessionState.CANCELLED
    assert session.active is False
    assert session.tcp_connect_seconds == 0.0
    with pytest.raises(RuntimeError):
        session.finish(total_seconds=0.1, body_byte_count=1)


def test_fail_records_error_once(session: ProbeSession) -> None:
    """fail() keeps the first error and closes the session."""
    first = ConnectionError("refused")
    session.fail(first)
    session.fail(ValueError("later"))
    session.cancel()

    assert session.state is SessionState.FAILED
    assert session.error is first


def test_base_sink_is_a_no_op() -> None:
    """The base listener accepts every callback without side effects."""
    sink = ConnectionEventSink()

    sink.on_dns_start("example.test")
    sink.on_dns_end("example.test", [])
    sink.on_connect_start("192.0.2.1", 80)
    sink.on_connect_end("192.0.2.1", 80)
    sink.on_tls_start(None)
    sink.on_tls_end(None)
    sink.on_request_headers_start()
    sink.on_request_end()
    sink.on_response_headers_end()

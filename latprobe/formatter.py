"""Plain-text rendering of probe results."""

from __future__ import annotations

from latprobe.models import LatencyReport


def format_report(report: LatencyReport) -> str:
    """Render *report* as the fixed six-line text block."""
    lines = [
        "DNS Lookup:        %.6f s" % report.dns_lookup_seconds,
        "TCP Connect:       %.6f s" % report.tcp_connect_seconds,
        "TLS Handshake:     %.6f s" % report.tls_handshake_seconds,
        "TTFB:              %.6f s" % report.time_to_first_byte_seconds,
        "Total Time:        %.6f s" % report.total_seconds,
        "Download Speed:    %.0f bytes/sec" % report.download_speed_bytes_per_second,
    ]
    return "\n".join(lines)


def format_error(exc: BaseException) -> str:
    """Render a failure as ``Error: <message>``."""
    message = str(exc) or type(exc).__name__
    return f"Error: {message}"

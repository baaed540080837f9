"""latprobe: per-phase latency measurement for a single HTTP(S) request."""

__version__ = "0.1.0"

from latprobe.clock import PhaseClock  # noqa: E402
from latprobe.engine import HttpProbe  # noqa: E402
from latprobe.errors import (  # noqa: E402
    InvalidUrl,
    NetworkError,
    ProbeCancelled,
    ProbeError,
    ProbeTimeout,
)
from latprobe.events import ConnectionEventSink, ProbeSession  # noqa: E402
from latprobe.formatter import format_error, format_report  # noqa: E402
from latprobe.models import LatencyReport, ProbeConfig  # noqa: E402
from latprobe.runner import ProbeHandle, ProbeRunner  # noqa: E402

__all__ = [
    "ConnectionEventSink",
    "HttpProbe",
    "InvalidUrl",
    "LatencyReport",
    "NetworkError",
    "PhaseClock",
    "ProbeCancelled",
    "ProbeConfig",
    "ProbeError",
    "ProbeHandle",
    "ProbeRunner",
    "ProbeSession",
    "ProbeTimeout",
    "__version__",
    "format_error",
    "format_report",
]

"""Constants and configuration for latprobe."""

from latprobe import __version__

# Default per-probe budget (seconds)
DEFAULT_TIMEOUT = 10.0

# Connection pool defaults
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_MAX_KEEPALIVE = 5
DEFAULT_KEEPALIVE_EXPIRY = 5.0

# User agent for probe requests
USER_AGENT = f"latprobe/{__version__}"

# Sent on every probe so the measurement is a real round trip, not a cache hit
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

SUPPORTED_SCHEMES = ("http", "https")

# Phase-specific thresholds for color coding (seconds)
PHASE_THRESHOLDS = {
    "dns": {"fast": 0.005, "medium": 0.020},
    "tcp": {"fast": 0.010, "medium": 0.030},
    "tls": {"fast": 0.020, "medium": 0.050},
    "ttfb": {"fast": 0.030, "medium": 0.080},
    "total": {"fast": 0.050, "medium": 0.150},
}

# Phase display names, in report order
PHASE_NAMES = ["dns", "tcp", "tls", "ttfb", "total"]
PHASE_LABELS = {
    "dns": "DNS Lookup",
    "tcp": "TCP Connect",
    "tls": "TLS Handshake",
    "ttfb": "TTFB",
    "total": "Total Time",
}

"""
Prometheus metrics for Matchcenter.
Module-level collectors; import the one you need and label it at the call site.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
SOURCE_REQUESTS = Counter(
    "mc_source_requests_total",
    "Total upstream source HTTP requests",
    ["source", "endpoint", "outcome"],
)
CACHE_LOOKUPS = Counter(
    "mc_cache_lookups_total",
    "Tiered cache lookups by result",
    ["result"],
)
CACHE_STORES = Counter(
    "mc_cache_stores_total",
    "Tiered cache store decisions by lifecycle category",
    ["category", "stored"],
)
RESOLUTIONS = Counter(
    "mc_resolutions_total",
    "Match resolutions by outcome",
    ["outcome"],
)
POLL_TICKS = Counter(
    "mc_poll_ticks_total",
    "Poll controller ticks by outcome",
    ["outcome"],
)
BRANCH_FAILURES = Counter(
    "mc_branch_failures_total",
    "Isolated parallel fetch branches that failed",
    ["page", "branch"],
)

# ── Histograms ──────────────────────────────────────────────────────────
SOURCE_LATENCY = Histogram(
    "mc_source_latency_seconds",
    "Upstream source request latency in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
POLL_INTERVAL = Histogram(
    "mc_poll_interval_seconds",
    "Computed polling interval per lifecycle category",
    ["category"],
    buckets=(5, 10, 15, 30, 60, 120, 300),
)

# ── Gauges ──────────────────────────────────────────────────────────────
CACHE_ENTRIES = Gauge(
    "mc_cache_entries",
    "Entries currently held by the in-memory cache store",
)
WS_CONNECTIONS = Gauge(
    "mc_ws_connections_active",
    "Currently active WebSocket connections",
)
POLL_SESSIONS = Gauge(
    "mc_poll_sessions_active",
    "Poll controllers currently in the polling state",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)

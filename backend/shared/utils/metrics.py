"""
Metrics for the fantasy live services.
Wraps prometheus_client; every collector is module-level and label-scoped.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Upstream ────────────────────────────────────────────────────────────
UPSTREAM_REQUESTS = Counter(
    "fl_upstream_requests_total",
    "Total upstream HTTP requests",
    ["endpoint", "status"],
)
UPSTREAM_LATENCY = Histogram(
    "fl_upstream_latency_seconds",
    "Upstream request latency in seconds",
    ["endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Cache ───────────────────────────────────────────────────────────────
CACHE_REQUESTS = Counter(
    "fl_cache_requests_total",
    "Resource cache lookups by outcome",
    ["resource", "result"],
)

# ── Scoring ─────────────────────────────────────────────────────────────
SCORING_LATENCY = Histogram(
    "fl_scoring_seconds",
    "Time to build a derived scoring view",
    ["view"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── News detector ───────────────────────────────────────────────────────
DETECTOR_CYCLES = Counter(
    "fl_news_cycles_total",
    "News change-detection cycles by outcome",
    ["outcome"],
)
NEWS_EVENTS = Counter(
    "fl_news_events_total",
    "News change events emitted",
    ["change_type"],
)
DETECTOR_LAST_CHECKED = Gauge(
    "fl_news_last_checked_timestamp_seconds",
    "Unix time of the last news detection attempt",
)
TRACKED_PLAYERS = Gauge(
    "fl_news_tracked_players",
    "Players present in the current news snapshot",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


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

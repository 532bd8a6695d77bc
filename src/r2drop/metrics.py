"""Prometheus metrics definitions for r2drop.

All metrics use the ``r2drop_`` prefix for namespace isolation. They are
registered lazily by :func:`init_metrics`; until then the ``record_*``
helpers are no-ops, so library users who never enable metrics leave the
global ``prometheus_client`` registry untouched.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: operation, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Retry / abort counters
# ---------------------------------------------------------------------------
retries_total: Counter | None = None
multipart_aborts_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_uploaded_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global requests_total, retries_total, multipart_aborts_total, bytes_uploaded_total

    if _initialized:
        return

    requests_total = Counter(
        "r2drop_requests_total",
        "Total object store requests by operation and HTTP status",
        ["operation", "status"],
    )

    retries_total = Counter(
        "r2drop_retries_total",
        "Total retried object store requests by operation",
        ["operation"],
    )

    multipart_aborts_total = Counter(
        "r2drop_multipart_aborts_total",
        "Total multipart uploads aborted after a failure",
    )

    bytes_uploaded_total = Counter(
        "r2drop_bytes_uploaded_total",
        "Total request body bytes successfully uploaded",
    )

    _initialized = True


def record_request(operation: str, status: int) -> None:
    if requests_total is not None:
        requests_total.labels(operation=operation, status=str(status)).inc()


def record_retry(operation: str) -> None:
    if retries_total is not None:
        retries_total.labels(operation=operation).inc()


def record_abort() -> None:
    if multipart_aborts_total is not None:
        multipart_aborts_total.inc()


def record_bytes(count: int) -> None:
    if bytes_uploaded_total is not None and count > 0:
        bytes_uploaded_total.inc(count)

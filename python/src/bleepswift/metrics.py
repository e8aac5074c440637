"""Prometheus metrics definitions for BleepSwift.

All BleepSwift metrics use the ``bleepswift_`` prefix for namespace
isolation. They count client-side activity: requests sent to Swift (by
method and response status), bytes uploaded in object bodies, and segments
uploaded on behalf of large objects.

Metrics are opt-in. Until ``init_metrics()`` has been called, the
module-level references stay ``None`` and nothing is recorded, so that
importing the library never registers collectors in the global registry.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: method, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Upload counters
# ---------------------------------------------------------------------------
bytes_uploaded_total: Counter | None = None
segments_uploaded_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global requests_total, bytes_uploaded_total, segments_uploaded_total

    if _initialized:
        return

    requests_total = Counter(
        "bleepswift_requests_total",
        "Total requests sent to Swift by method and response status",
        ["method", "status"],
    )

    bytes_uploaded_total = Counter(
        "bleepswift_bytes_uploaded_total",
        "Total bytes uploaded in object bodies",
    )

    segments_uploaded_total = Counter(
        "bleepswift_segments_uploaded_total",
        "Total large object segments uploaded",
    )

    _initialized = True

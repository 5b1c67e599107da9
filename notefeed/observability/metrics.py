"""Prometheus metrics for the notification feed.

All series live in a private registry under the `notefeed_` prefix:

    notefeed_records_ingested_total{source}    fetch | stream
    notefeed_records_dropped_total{source}     malformed records skipped
    notefeed_duplicates_replaced_total{kind}   items superseded by a newer record
    notefeed_stream_disconnects_total{reason}  cannot_connect | no_connection
    notefeed_reconcile_attempts_total{outcome} success | failed | exhausted
    notefeed_feed_size{owner}
    notefeed_fetch_duration_seconds{mode}      older | reload
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

PREFIX = "notefeed"

REGISTRY = CollectorRegistry(auto_describe=True)

FETCH_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


def _counter(name: str, doc: str, label: str) -> Counter:
    return Counter(f"{PREFIX}_{name}_total", doc, [label], registry=REGISTRY)


RECORDS_INGESTED = _counter(
    "records_ingested", "Raw notification records normalized into items", "source"
)
RECORDS_DROPPED = _counter(
    "records_dropped", "Raw notification records dropped as malformed", "source"
)
DUPLICATES_REPLACED = _counter(
    "duplicates_replaced", "Existing items superseded by a newer record", "kind"
)
STREAM_DISCONNECTS = _counter("stream_disconnects", "Live channel disconnects", "reason")
RECONCILE_ATTEMPTS = _counter(
    "reconcile_attempts", "Reconcile attempts after a disconnect", "outcome"
)

FEED_SIZE = Gauge(
    f"{PREFIX}_feed_size", "Items currently held in a feed", ["owner"], registry=REGISTRY
)

FETCH_DURATION = Histogram(
    f"{PREFIX}_fetch_duration_seconds",
    "Paginated fetch latency",
    ["mode"],
    buckets=FETCH_BUCKETS,
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    """Text exposition of every notefeed series."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

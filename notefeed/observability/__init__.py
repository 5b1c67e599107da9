"""Observability for the notification feed.

Provides:
- Correlation ID context management for operation tracing
- Structured logging with context propagation
- Prometheus metrics

Usage:
    from notefeed.observability import get_logger, RECORDS_INGESTED

    logger = get_logger("pagination")
    logger.info("page_fetched", count=20)

    RECORDS_INGESTED.labels(source="fetch").inc()
"""

from notefeed.observability.context import (
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    correlation_id_context,
    operation_id,
)
from notefeed.observability.logging import (
    get_logger,
    configure_logging,
    add_correlation_id_processor,
    bind_context,
    clear_context,
)
from notefeed.observability.metrics import (
    RECORDS_INGESTED,
    RECORDS_DROPPED,
    DUPLICATES_REPLACED,
    STREAM_DISCONNECTS,
    RECONCILE_ATTEMPTS,
    FEED_SIZE,
    FETCH_DURATION,
    REGISTRY,
    get_metrics_text,
    get_metrics_content_type,
)

__all__ = [
    # Context
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    "operation_id",
    # Logging
    "get_logger",
    "configure_logging",
    "add_correlation_id_processor",
    "bind_context",
    "clear_context",
    # Metrics
    "RECORDS_INGESTED",
    "RECORDS_DROPPED",
    "DUPLICATES_REPLACED",
    "STREAM_DISCONNECTS",
    "RECONCILE_ATTEMPTS",
    "FEED_SIZE",
    "FETCH_DURATION",
    "REGISTRY",
    "get_metrics_text",
    "get_metrics_content_type",
]

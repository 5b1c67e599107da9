"""structlog setup for notefeed.

Every entry carries the correlation id of the feed operation that produced
it (initial load, load older, reconcile), so one reconcile's fetch,
normalize and dedup lines can be pulled out of an interleaved multi-account
log. Output goes to stderr: `notefeed watch` prints the feed on stdout.

Usage:
    from notefeed.observability.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", json_output=False)
    log = get_logger("stream", owner="alice")
    log.info("stream_opened")
"""

import logging
import sys
from typing import Any, List, Optional

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from notefeed.observability.context import get_correlation_id

NO_CORRELATION_ID = "none"


def add_correlation_id_processor(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp the current correlation id (or "none") on the entry."""
    event_dict["correlation_id"] = get_correlation_id() or NO_CORRELATION_ID
    return event_dict


def _processors(json_output: bool, add_timestamp: bool) -> List[Processor]:
    chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id_processor,
        structlog.processors.add_log_level,
    ]
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    chain += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        chain.append(structlog.processors.JSONRenderer())
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog for the process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines when True, human-readable console otherwise.
        add_timestamp: Add an ISO-8601 UTC timestamp to each entry.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # aiohttp and asyncio log through the stdlib
    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(message)s")
    logging.getLogger().setLevel(log_level)

    structlog.configure(
        processors=_processors(json_output, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: Optional[str] = None, **initial_context: Any) -> Any:
    """Logger bound to a component name and any extra context."""
    context = dict(initial_context)
    if component:
        context["component"] = component
    logger = structlog.get_logger()
    return logger.bind(**context) if context else logger


def bind_context(**context: Any) -> None:
    """Attach context to every entry logged from the current task."""
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()

"""Correlation ids for feed operations.

Each controller operation (initial load, load older, reconcile) runs under
its own id, kept in a ContextVar so concurrent feeds for different owners
never see each other's id.

Usage:
    with correlation_id_context(operation_id("reconcile", "alice")):
        await fetcher.fetch_newer_than(newest_id, 40, "alice")
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_current: ContextVar[Optional[str]] = ContextVar("notefeed_correlation_id", default=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set (or generate) the id for the current context and return it."""
    corr_id = corr_id or _new_id()
    _current.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    return _current.get()


def clear_correlation_id() -> None:
    _current.set(None)


@contextmanager
def correlation_id_context(corr_id: Optional[str] = None) -> Iterator[str]:
    """Run a block under `corr_id` (generated when None), then restore."""
    token = _current.set(corr_id or _new_id())
    try:
        yield _current.get()
    finally:
        _current.reset(token)


def operation_id(operation: str, owner: str) -> str:
    """Readable id such as "load_older-alice-1f2e3d4c"."""
    return f"{operation}-{owner}-{uuid.uuid4().hex[:8]}"

"""Correlation ids for booking operations.

Every public operation of the booking core runs inside a request scope.
Log records emitted while the scope is open, from the state machine down
into the store, carry the same ``request_id``. A caller that already has an
id (an HTTP request id, a job id) binds it once and every nested operation
reuses it; otherwise each operation gets a fresh one.

Usage:
    with request_scope("REQ-abc123"):
        machine.claim(slot_id, client_id)  # all records carry REQ-abc123

    %(request_id)s in a formatter prints the id.
"""

import functools
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional, TypeVar

UNSCOPED = "NO_REQUEST_ID"

_request_id: ContextVar[str] = ContextVar("request_id", default=UNSCOPED)

F = TypeVar("F", bound=Callable)


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


def current_request_id() -> str:
    """Id bound to the running operation, or ``UNSCOPED`` outside one."""
    return _request_id.get()


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a correlation id until the block exits.

    Without an explicit id, an id bound by an enclosing scope is kept and a
    new one is generated only at the outermost level. The previous binding
    is restored on exit, including when the block raises.
    """
    if request_id is None:
        bound = _request_id.get()
        request_id = bound if bound != UNSCOPED else new_request_id()
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


def in_request_scope(func: F) -> F:
    """Run ``func`` inside ``request_scope()``."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with request_scope():
            return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


class RequestIdFilter(logging.Filter):
    """Stamps the bound request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True


def get_request_logger(name: str) -> logging.Logger:
    """Module logger whose records carry ``request_id``."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, RequestIdFilter) for f in logger.filters):
        logger.addFilter(RequestIdFilter())
    return logger

"""JSON logs for the assistant API, tagged with the request and action in flight.

Every record carries ``request_id`` (set per HTTP request by the middleware)
and ``action_id`` (set while the registry runs an action, including each
step of a composed action).
"""

import contextvars
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from pythonjsonlogger.json import JsonFormatter

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
action_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("action_id", default="")

# Commerce backend calls are logged per action already
QUIET_LOGGERS = ("httpx", "httpcore")


class ContextFilter(logging.Filter):
    """Stamp records with the current request and action ids."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.action_id = action_id_var.get("")  # type: ignore[attr-defined]
        return True


@contextmanager
def action_context(action_id: str) -> Iterator[None]:
    """Tag records logged inside the block with ``action_id``.

    Nested blocks restore the outer action on exit, so a composed action's
    own records keep its id after each step returns.
    """
    token = action_id_var.set(action_id)
    try:
        yield
    finally:
        action_id_var.reset(token)


def setup_logging(*, debug: bool = False) -> None:
    """Send JSON lines to stderr. Backend HTTP client chatter stays at WARNING."""
    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(action_id)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_request_id() -> str:
    """Short id echoed back in ``X-Request-ID`` when the client sent none."""
    return uuid.uuid4().hex[:16]

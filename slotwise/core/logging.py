"""
LOGGING SETUP

main.py calls configure_logging() once at startup, and the request
middleware calls set_request_id() for every incoming request. The
RequestIdFilter stamps each record with that id, so every line written
while serving one booking request can be grepped out together.
"""

import logging
from contextvars import ContextVar

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s [%(request_id)s] %(name)s %(levelname)s: %(message)s"


def set_request_id(request_id: str) -> None:
    """Set the correlation id for the current context."""
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Injects request_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True


def configure_logging(level: str) -> None:
    """Configure the root handler once with the request-id aware format."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(getattr(h, "_slotwise", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestIdFilter())
    handler._slotwise = True  # type: ignore[attr-defined]
    root.addHandler(handler)

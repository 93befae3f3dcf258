"""JSON logging for the settlement service.

Records carry the request trace id plus the payment reference and order id
being worked on. Identifiers are bound for the duration of a `log_context`
block, so nothing leaks into the next request handled by the same worker.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from settlepay.common.config import settings

CONTEXT_FIELDS = ("trace_id", "reference", "order_id")
_context: dict[str, ContextVar[str]] = {name: ContextVar(name, default="") for name in CONTEXT_FIELDS}


def bind_trace_id(trace_id: str) -> None:
    """Set the trace id for the rest of the current request."""

    _context["trace_id"].set(trace_id)


def current_context() -> dict[str, str]:
    return {name: var.get() for name, var in _context.items()}


@contextmanager
def log_context(**fields: str | None):
    """Attach settlement identifiers to records logged inside the block.

    `None` or empty values leave the outer binding in place.
    """

    tokens = []
    for name, value in fields.items():
        if value:
            var = _context[name]
            tokens.append((var, var.set(str(value))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class SettlementContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in current_context().items():
            setattr(record, name, value)
        return True


def build_formatter(service_name: str) -> JsonFormatter:
    return JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
        static_fields={"service": service_name},
    )


def configure_logging() -> None:
    """Route every logger to one JSON stdout handler."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SettlementContextFilter())
    handler.setFormatter(build_formatter(settings.service_name))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)


logger = logging.getLogger("settlepay")

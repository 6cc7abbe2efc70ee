"""
DWN Client Observability

Logging setup with optional structured (JSON line) output and request-scoped
correlation ids carried in a context variable, so that every log line emitted
while a facade call is in flight can be tied back to that call.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from dwnclient.config import DwnConfig, get_config

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

_ROOT_LOGGER = "dwnclient"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    operation: str = ""
    target: str = ""
    status: Optional[int] = None
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StructuredFormatter(logging.Formatter):
    """Render each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        event = LogEvent(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=getattr(record, "correlation_id", "") or correlation_id_var.get(),
            operation=getattr(record, "operation", ""),
            target=getattr(record, "target", ""),
            status=getattr(record, "status", None),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event.to_json()


class CorrelationFilter(logging.Filter):
    """Attach the current correlation id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(
    config: Optional[DwnConfig] = None,
    stream: Any = None,
) -> logging.Logger:
    """Install a single handler on the package logger.

    Calling it again replaces the handler, so level or format changes in the
    configuration take effect.
    """
    cfg = config or get_config()
    logger = logging.getLogger(_ROOT_LOGGER)
    for h in list(logger.handlers):
        if getattr(h, "_dwnclient_handler", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._dwnclient_handler = True  # type: ignore[attr-defined]
    handler.addFilter(CorrelationFilter())
    if cfg.logging.json.get():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))
    logger.addHandler(handler)
    logger.setLevel(str(cfg.logging.level.get()).upper())
    return logger


def generate_correlation_id() -> str:
    return f"dwn-{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> str:
    return correlation_id_var.get()


@contextlib.contextmanager
def request_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of one request.

    Nested scopes keep the outer id so a record operation issued from inside a
    facade call stays attributed to that call.
    """
    current = correlation_id_var.get()
    cid = correlation_id or current or generate_correlation_id()
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)

"""Log setup for the API, the CLI and batch jobs.

One enrichment fans out to a dozen concurrent provider calls, and a batch
sweep runs several workers at once. Every record therefore carries the id
of the request or job it belongs to (`correlation_id`), read from a
ContextVar so it follows awaits and tasks spawned by asyncio.gather.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Attributes lifted from `extra={...}` into the JSON line
EXTRA_FIELDS = ("country", "municipality", "layer_id", "step", "duration_ms")

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(cid)s: %(message)s"


def get_correlation_id() -> str:
    return correlation_id.get()


@contextmanager
def correlation_scope(cid: str | None = None, prefix: str = "job"):
    """Tag every record logged inside the block with `cid` (generated when omitted)."""
    value = cid or f"{prefix}-{uuid.uuid4().hex[:12]}"
    token = correlation_id.set(value)
    try:
        yield value
    finally:
        correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message, ids and layer extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = correlation_id.get()
        if cid:
            entry["correlation_id"] = cid
        entry.update(
            (key, getattr(record, key))
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs; the correlation id is bracketed after the logger name."""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        cid = correlation_id.get()
        record.cid = f" [{cid}]" if cid else ""
        return super().format(record)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Replace the root handlers with a single stderr handler.

    json_format=False gives TextFormatter output, meant for the CLI and local
    development. Unknown level names fall back to INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if json_format else TextFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""Structured logging configuration.

Provides a JSON formatter and a job_id context variable. The CLI calls
`configure_logging()` once at startup. Worker threads use
`with job_context(job_id)` so every record emitted while a document is in
flight carries its correlation id.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from ocrpdf.utils.redact import redact_text

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)

_STANDARD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_text(record.getMessage()),
        }
        jid = job_id_var.get()
        if jid:
            data["job_id"] = jid
        if record.exc_info:
            data["exc_info"] = redact_text(self.formatException(record.exc_info))
        for key, value in record.__dict__.items():
            if key in _STANDARD_FIELDS or key.startswith("_"):
                continue
            data[key] = redact_text(value) if isinstance(value, str) else value
        return json.dumps(data, ensure_ascii=False, default=str)


def configure_logging(level: int | str = logging.INFO, force: bool = False) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger()
    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
    elif any(
        isinstance(h, logging.StreamHandler) for h in root.handlers
    ):  # already configured
        root.setLevel(level)
        for handler in root.handlers:
            handler.setLevel(level)
        return
    # stdout carries the JSON outcome report
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.setLevel(level)
    root.addHandler(handler)


@contextmanager
def job_context(jid: str | None) -> Iterator[None]:
    token = job_id_var.set(jid)
    try:
        yield
    finally:
        job_id_var.reset(token)


__all__ = ["JsonFormatter", "configure_logging", "job_context", "job_id_var"]

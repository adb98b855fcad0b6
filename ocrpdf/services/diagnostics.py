"""Diagnostic stream: attempts, state transitions and escalations.

Components never return their intermediate history; they emit
`DiagnosticEvent`s to an injected sink instead. Production runs log them,
tests record them and assert on attempt counts and waits.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ocrpdf.logging_setup import job_id_var
from ocrpdf.models.job import Attempt, Verdict
from ocrpdf.services.interfaces import DiagnosticSink
from ocrpdf.utils.logging_utils import structured_log
from ocrpdf.utils.redact import redact_mapping

_LOG = logging.getLogger("diagnostics")


@dataclass(frozen=True, slots=True)
class DiagnosticEvent:
    component: str
    event: str
    fields: Dict[str, Any] = field(default_factory=dict)
    attempt: Optional[Attempt] = None
    job_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        component: str,
        event: str,
        *,
        attempt: Optional[Attempt] = None,
        **fields: Any,
    ) -> "DiagnosticEvent":
        return cls(
            component=component,
            event=event,
            fields=fields,
            attempt=attempt,
            job_id=job_id_var.get(),
        )


class LoggingDiagnostics(DiagnosticSink):
    """Writes every event as one structured log line, credentials scrubbed."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _LOG

    def emit(self, event: DiagnosticEvent) -> None:
        payload: Dict[str, Any] = redact_mapping(event.fields)
        payload["component"] = event.component
        if event.attempt is not None:
            payload.update(
                operation=event.attempt.operation,
                attempt=event.attempt.number,
                waited_seconds=round(event.attempt.waited_seconds, 3),
                verdict=event.attempt.verdict.value,
                status_code=event.attempt.status_code,
            )
        failed = event.event.endswith("_failed") or (
            event.attempt is not None and event.attempt.verdict is not Verdict.SUCCESS
        )
        level = logging.WARNING if failed else logging.INFO
        structured_log(self._logger, level, event.event, **payload)


class RecordingDiagnostics(DiagnosticSink):
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[DiagnosticEvent] = []

    def emit(self, event: DiagnosticEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[DiagnosticEvent]:
        with self._lock:
            return list(self._events)

    def events_named(self, name: str) -> List[DiagnosticEvent]:
        return [event for event in self.events if event.event == name]

    def attempts(self, operation: str | None = None) -> List[Attempt]:
        return [
            event.attempt
            for event in self.events
            if event.attempt is not None
            and (operation is None or event.attempt.operation == operation)
        ]


__all__ = ["DiagnosticEvent", "LoggingDiagnostics", "RecordingDiagnostics"]

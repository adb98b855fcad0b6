"""Submit a batch generation job and poll it to a terminal state.

The monitor owns one `AsyncJob` per run. Polls happen immediately after
submission and then every `batch_poll_interval_seconds`, bounded by
`batch_max_wait_seconds` of wall-clock time measured with the injected clock.
A poll that fails (even with a permanent status) is not a job failure; only
`max_consecutive_poll_failures` failures in a row abandon monitoring.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from ocrpdf.config import AppConfig
from ocrpdf.errors import (
    MonitoringFailure,
    MonitoringTimeout,
    PermanentRequestError,
    RemoteJobCancelled,
    RemoteJobFailed,
    TransientNetworkError,
)
from ocrpdf.models.job import AsyncJob, ExtractionResult, JobState, TierPlan
from ocrpdf.services.diagnostics import DiagnosticEvent, LoggingDiagnostics
from ocrpdf.services.gemini_client import GeminiClient
from ocrpdf.services.interfaces import DiagnosticSink
from ocrpdf.services.result_extractor import ResultExtractor, dig
from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("batch_monitor")


def read_state(body: Mapping[str, Any]) -> tuple[JobState, Optional[str]]:
    """State from `metadata.state`, falling back to top-level `state`."""
    raw = dig(body, ("metadata", "state"))
    if not isinstance(raw, str) or not raw.strip():
        raw = body.get("state") if isinstance(body, Mapping) else None
    return JobState.from_wire(raw), raw if isinstance(raw, str) else None


class BatchJobMonitor:
    def __init__(
        self,
        client: GeminiClient,
        config: AppConfig,
        observer: Optional[DiagnosticSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        extractor: Optional[ResultExtractor] = None,
    ) -> None:
        self._client = client
        self._config = config
        self._observer = observer or LoggingDiagnostics()
        self._sleep = sleep
        self._clock = clock
        self._extractor = extractor or ResultExtractor()

    def run(
        self, request_body: Mapping[str, Any], *, plan: TierPlan, display_name: str
    ) -> ExtractionResult:
        submitted = self._client.submit_batch(
            request_body, plan=plan, display_name=display_name
        )
        name = submitted.get("name") or dig(submitted, ("metadata", "name"))
        if not isinstance(name, str) or not name:
            raise RemoteJobFailed(
                "Batch submission response did not include a job name",
                component="batch_monitor",
            )
        job = AsyncJob(
            name=name,
            display_name=display_name,
            max_wait_seconds=self._config.batch_max_wait_seconds,
        )
        structured_log(
            _LOG,
            logging.INFO,
            "batch_submitted",
            job_name=name,
            display_name=display_name,
        )
        self._emit(job, "batch_submitted")
        terminal_body = self._await_terminal(job, plan)
        return self._resolve(job, plan, terminal_body)

    def _await_terminal(self, job: AsyncJob, plan: TierPlan) -> Dict[str, Any]:
        started = self._clock()
        while True:
            body = self._poll(job, plan)
            if body is not None:
                state, raw = read_state(body)
                self._observe(job, state, raw)
                if state.is_terminal:
                    return body

            job.waited_seconds = self._clock() - started
            remaining = job.max_wait_seconds - job.waited_seconds
            if remaining <= 0:
                self._timeout(job)
            self._sleep(min(self._config.batch_poll_interval_seconds, remaining))
            job.waited_seconds = self._clock() - started
            if job.waited_seconds >= job.max_wait_seconds:
                self._timeout(job)

    def _poll(self, job: AsyncJob, plan: TierPlan) -> Optional[Dict[str, Any]]:
        job.polls += 1
        try:
            body = self._client.get_batch(
                job.name,
                plan=plan,
                operation="batch_poll",
                max_attempts=self._config.batch_poll_attempts,
            )
        except (TransientNetworkError, PermanentRequestError) as exc:
            job.consecutive_poll_failures += 1
            structured_log(
                _LOG,
                logging.WARNING,
                "batch_poll_failed",
                job_name=job.name,
                polls=job.polls,
                consecutive_failures=job.consecutive_poll_failures,
                status_code=exc.status_code,
                error=exc.message,
            )
            self._emit(
                job,
                "batch_poll_failed",
                consecutive_failures=job.consecutive_poll_failures,
                error=exc.message,
            )
            if job.consecutive_poll_failures >= self._config.max_consecutive_poll_failures:
                raise MonitoringFailure(
                    f"Batch status check failed {job.consecutive_poll_failures} times in a row "
                    f"for {job.name}; remote state unknown",
                    component="batch_monitor",
                    detail={"job_name": job.name, "polls": job.polls},
                ) from exc
            return None
        job.consecutive_poll_failures = 0
        return body

    def _observe(self, job: AsyncJob, state: JobState, raw: Optional[str]) -> None:
        if state is JobState.UNKNOWN:
            structured_log(
                _LOG,
                logging.WARNING,
                "batch_state_unknown",
                job_name=job.name,
                raw_state=raw,
                polls=job.polls,
            )
        else:
            structured_log(
                _LOG,
                logging.INFO,
                "batch_poll",
                job_name=job.name,
                state=state.value,
                polls=job.polls,
                waited_seconds=round(job.waited_seconds, 1),
            )
        if state is not job.state:
            previous = job.state
            job.state = state
            self._emit(
                job,
                "job_state_changed",
                from_state=previous.value,
                to_state=state.value,
                raw_state=raw,
            )

    def _resolve(
        self, job: AsyncJob, plan: TierPlan, terminal_body: Dict[str, Any]
    ) -> ExtractionResult:
        if job.state is JobState.FAILED:
            message = dig(terminal_body, ("error", "message")) or "Batch job reported failure"
            raise RemoteJobFailed(
                f"{job.name}: {message}",
                component="batch_monitor",
                detail={"job_name": job.name},
            )
        if job.state is JobState.CANCELLED:
            raise RemoteJobCancelled(
                f"{job.name} was cancelled", component="batch_monitor"
            )
        body = self._client.get_batch(
            job.name,
            plan=plan,
            operation="batch_result",
            max_attempts=self._config.batch_result_attempts,
        )
        result = self._extractor.extract(body)
        self._emit(job, "batch_result_retrieved", pattern=result.pattern)
        return result

    def _timeout(self, job: AsyncJob) -> None:
        structured_log(
            _LOG,
            logging.ERROR,
            "batch_wait_timeout",
            job_name=job.name,
            state=job.state.value,
            waited_seconds=round(job.waited_seconds, 1),
            polls=job.polls,
        )
        self._emit(job, "batch_wait_timeout")
        raise MonitoringTimeout(
            f"{job.name} still {job.state.value} after {job.waited_seconds:.0f}s "
            f"(limit {job.max_wait_seconds:.0f}s)",
            component="batch_monitor",
            detail={"job_name": job.name, "state": job.state.value},
        )

    def _emit(self, job: AsyncJob, event: str, **fields: Any) -> None:
        self._observer.emit(
            DiagnosticEvent.create(
                "batch_monitor",
                event,
                job_name=job.name,
                state=job.state.value,
                polls=job.polls,
                waited_seconds=job.waited_seconds,
                **fields,
            )
        )


__all__ = ["BatchJobMonitor", "read_state"]

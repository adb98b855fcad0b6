"""Execute one logical HTTP call with bounded, classified retries.

Only `TransientNetworkError` is retried. Permanent responses, content the
model refused (RECITATION) and responses without extractable text stop the
loop on the attempt that produced them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from ocrpdf.errors import (
    ContentRejected,
    ContentUnreadable,
    PermanentRequestError,
    TransientNetworkError,
)
from ocrpdf.models.job import Attempt, Verdict
from ocrpdf.services.backoff import BackoffPolicy
from ocrpdf.services.diagnostics import DiagnosticEvent, LoggingDiagnostics
from ocrpdf.services.error_classifier import CallOutcome, ErrorClassifier
from ocrpdf.services.interfaces import DiagnosticSink, MetricsClient
from ocrpdf.services.metrics import NullMetrics
from ocrpdf.utils.redact import redact_text

_DETAIL_LIMIT = 300


@dataclass(frozen=True, slots=True)
class RequestSpec:
    method: str
    url: str
    operation: str
    api_key: Optional[str] = field(default=None, repr=False)
    json_body: Any = None
    content: Optional[bytes] = field(default=None, repr=False)
    content_type: Optional[str] = None
    timeout: Union[float, httpx.Timeout, None] = None
    expects_content: bool = False
    headers: Mapping[str, str] = field(default_factory=dict)

    def build_headers(self) -> Dict[str, str]:
        headers = dict(self.headers)
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        if self.content_type:
            headers["Content-Type"] = self.content_type
        return headers


class ResilientInvoker:
    def __init__(
        self,
        http_client: httpx.Client,
        classifier: Optional[ErrorClassifier] = None,
        observer: Optional[DiagnosticSink] = None,
        metrics: Optional[MetricsClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = http_client
        self._classifier = classifier or ErrorClassifier()
        self._observer = observer or LoggingDiagnostics()
        self._metrics = metrics or NullMetrics()
        self._sleep = sleep

    def invoke(
        self, spec: RequestSpec, *, max_attempts: int, backoff: BackoffPolicy
    ) -> Dict[str, Any]:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        pending_wait = [0.0]

        def _sleep(seconds: float) -> None:
            pending_wait[0] = seconds
            self._sleep(seconds)

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=backoff.tenacity_wait(),
            retry=retry_if_exception_type(TransientNetworkError),
            sleep=_sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                waited = pending_wait[0]
                pending_wait[0] = 0.0
                return self._attempt(
                    spec,
                    number=attempt.retry_state.attempt_number,
                    waited=waited,
                    max_attempts=max_attempts,
                )
        raise RuntimeError(f"{spec.operation} exhausted retries")  # pragma: no cover

    def _attempt(
        self, spec: RequestSpec, *, number: int, waited: float, max_attempts: int
    ) -> Dict[str, Any]:
        try:
            response = self._client.request(
                spec.method,
                spec.url,
                headers=spec.build_headers(),
                json=spec.json_body if spec.content is None else None,
                content=spec.content,
                timeout=spec.timeout if spec.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TransportError as exc:
            outcome = CallOutcome.from_error(exc)
        else:
            outcome = CallOutcome.from_response(response)

        verdict = self._classifier.classify(outcome, expects_content=spec.expects_content)
        status = self._classifier.effective_status(
            outcome, expects_content=spec.expects_content
        )
        detail = self._describe(spec, outcome)
        self._record(spec, number, waited, verdict, status, detail, max_attempts)

        if verdict is Verdict.SUCCESS:
            return outcome.body
        context = {"operation": spec.operation, "attempt": number, "status_code": status}
        if verdict is Verdict.PERMANENT:
            raise PermanentRequestError(
                f"{spec.operation} rejected with status {status}: {detail}",
                status_code=status,
                component="invoker",
                detail=context,
            )
        if verdict is Verdict.ESCALATE:
            raise ContentRejected(
                f"{spec.operation} content rejected (finishReason RECITATION)",
                component="invoker",
                detail=context,
            )
        if verdict is Verdict.UNREADABLE:
            raise ContentUnreadable(
                f"{spec.operation} returned no extractable text",
                component="invoker",
                detail=context,
            )
        raise TransientNetworkError(
            f"{spec.operation} failed after {number} attempt(s): {detail}",
            status_code=status,
            attempts=number,
            component="invoker",
            detail=context,
        )

    def _record(
        self,
        spec: RequestSpec,
        number: int,
        waited: float,
        verdict: Verdict,
        status: Optional[int],
        detail: str,
        max_attempts: int,
    ) -> None:
        attempt = Attempt(
            operation=spec.operation,
            number=number,
            waited_seconds=waited,
            verdict=verdict,
            status_code=status,
            detail=detail,
        )
        self._observer.emit(
            DiagnosticEvent.create(
                "invoker", "request_attempt", attempt=attempt, max_attempts=max_attempts
            )
        )
        self._metrics.increment(
            "request_attempts", stage=spec.operation, outcome=verdict.value
        )

    def _describe(self, spec: RequestSpec, outcome: CallOutcome) -> str:
        if outcome.transport_error is not None:
            text = f"{type(outcome.transport_error).__name__}: {outcome.transport_error}"
        elif outcome.is_http_success and isinstance(outcome.body, dict):
            text = f"HTTP {outcome.status_code}"
            error = outcome.body.get("error")
            if isinstance(error, dict) and error.get("message"):
                text = f"{text}: {error['message']}"
        else:
            text = f"HTTP {outcome.status_code}: {outcome.raw_text.strip()}"
        return redact_text(text, secrets=(spec.api_key,))[:_DETAIL_LIMIT]


__all__ = ["RequestSpec", "ResilientInvoker"]

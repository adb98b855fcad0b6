"""Per-document control flow: tier selection, execution, one-time escalation.

FAST sends the encoded pages inline to `generateContent` and waits for the
answer. HEAVY uploads the PDF, references it by URI inside a batch job and
hands it to the monitor. A FAST response refused with RECITATION is retried
once on HEAVY; a refusal on HEAVY is final.

Domain failures never escape `process()`: each becomes a `ProcessingOutcome`
carrying a `FailureDetail`.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ocrpdf.config import AppConfig
from ocrpdf.errors import ContentRejected, OcrPdfError
from ocrpdf.logging_setup import job_context
from ocrpdf.models.job import (
    ExtractionJob,
    ExtractionResult,
    FailureDetail,
    OutcomeStatus,
    ProcessingOutcome,
    Tier,
    TierPlan,
)
from ocrpdf.services.batch_monitor import BatchJobMonitor
from ocrpdf.services.diagnostics import DiagnosticEvent, LoggingDiagnostics
from ocrpdf.services.gemini_client import (
    GeminiClient,
    build_generate_request,
    file_part,
)
from ocrpdf.services.interfaces import DiagnosticSink, MetricsClient
from ocrpdf.services.metrics import NullMetrics
from ocrpdf.services.result_extractor import ResultExtractor
from ocrpdf.services.strategy import StrategySelector
from ocrpdf.utils.logging_utils import stage_marker, structured_log
from ocrpdf.utils.redact import redact_text

_LOG = logging.getLogger("orchestrator")


def batch_display_name(job_id: str) -> str:
    return f"pdf-ocr-{job_id}"


class JobOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        client: GeminiClient,
        monitor: BatchJobMonitor,
        selector: Optional[StrategySelector] = None,
        extractor: Optional[ResultExtractor] = None,
        observer: Optional[DiagnosticSink] = None,
        metrics: Optional[MetricsClient] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._config = config
        self._client = client
        self._monitor = monitor
        self._selector = selector or StrategySelector(config)
        self._extractor = extractor or ResultExtractor()
        self._observer = observer or LoggingDiagnostics()
        self._metrics = metrics or NullMetrics()
        self._clock = clock

    def process(self, job: ExtractionJob) -> ProcessingOutcome:
        document = job.document
        started = self._clock()
        tier: Optional[Tier] = None
        escalated = False
        with job_context(document.job_id):
            try:
                plan = self._selector.select(job.payload.estimated_bytes)
                tier = plan.tier
                if plan.tier is Tier.FAST:
                    try:
                        result = self._run_fast(job, plan)
                    except ContentRejected as exc:
                        plan = self._selector.plan_for(Tier.HEAVY, job.payload.estimated_bytes)
                        tier = plan.tier
                        escalated = True
                        self._record_escalation(job, exc)
                        result = self._run_heavy(job, plan)
                else:
                    result = self._run_heavy(job, plan)
            except OcrPdfError as exc:
                outcome = self._failure(job, exc, tier, escalated, self._clock() - started)
            else:
                outcome = ProcessingOutcome(
                    job_id=document.job_id,
                    source=document.source,
                    status=OutcomeStatus.SUCCEEDED,
                    tier=tier,
                    text=result.text,
                    usage=result.usage,
                    escalated=escalated,
                    duration_seconds=self._clock() - started,
                )
            self._finish(outcome)
        return outcome

    def _run_fast(self, job: ExtractionJob, plan: TierPlan) -> ExtractionResult:
        with stage_marker(_LOG, stage="fast_extraction", tier=plan.tier.value) as marker:
            request = build_generate_request(
                job.prompt, job.payload.parts, temperature=self._config.temperature
            )
            body = self._client.generate_content(request, plan=plan)
            result = self._extractor.extract(body)
            marker.add_completion_fields(text_length=len(result.text), pattern=result.pattern)
            return result

    def _run_heavy(self, job: ExtractionJob, plan: TierPlan) -> ExtractionResult:
        with stage_marker(_LOG, stage="heavy_extraction", tier=plan.tier.value) as marker:
            payload = job.payload
            file_uri = self._client.upload_file(
                payload.upload_path, mime_type=payload.upload_mime, plan=plan
            )
            request = build_generate_request(
                job.prompt,
                [file_part(file_uri, payload.upload_mime)],
                temperature=self._config.temperature,
            )
            result = self._monitor.run(
                request, plan=plan, display_name=batch_display_name(job.document.job_id)
            )
            marker.add_completion_fields(text_length=len(result.text), pattern=result.pattern)
            return result

    def _record_escalation(self, job: ExtractionJob, exc: ContentRejected) -> None:
        structured_log(
            _LOG,
            logging.WARNING,
            "tier_escalated",
            source=job.document.source,
            reason=exc.message,
            tier=Tier.HEAVY.value,
        )
        self._observer.emit(
            DiagnosticEvent.create(
                "orchestrator",
                "tier_escalated",
                from_tier=Tier.FAST.value,
                to_tier=Tier.HEAVY.value,
                reason=exc.message,
            )
        )

    def _failure(
        self,
        job: ExtractionJob,
        exc: OcrPdfError,
        tier: Optional[Tier],
        escalated: bool,
        duration: float,
    ) -> ProcessingOutcome:
        message = redact_text(
            exc.message,
            secrets=(self._config.fast_api_key, self._config.heavy_api_key),
        )
        return ProcessingOutcome(
            job_id=job.document.job_id,
            source=job.document.source,
            status=exc.kind,
            tier=tier,
            escalated=escalated,
            failure=FailureDetail(component=exc.component, kind=exc.kind, message=message),
            duration_seconds=duration,
        )

    def _finish(self, outcome: ProcessingOutcome) -> None:
        tier_label = outcome.tier.value if outcome.tier else "none"
        self._metrics.increment("documents", stage=tier_label, outcome=outcome.status.value)
        self._metrics.observe_latency("document", outcome.duration_seconds, stage=tier_label)
        structured_log(
            _LOG,
            logging.INFO if outcome.succeeded else logging.ERROR,
            "document_finished",
            source=outcome.source,
            status=outcome.status.value,
            tier=tier_label,
            escalated=outcome.escalated,
            text_length=len(outcome.text),
            tokens=outcome.usage.as_csv(),
            error=outcome.failure.message if outcome.failure else None,
        )
        self._observer.emit(
            DiagnosticEvent.create(
                "orchestrator",
                "document_finished",
                status=outcome.status.value,
                tier=tier_label,
                escalated=outcome.escalated,
            )
        )


__all__ = ["JobOrchestrator", "batch_display_name"]

"""End-to-end processing of one source: acquire, encode, extract, write."""

from __future__ import annotations

import logging
import tempfile
import uuid
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from ocrpdf.config import AppConfig
from ocrpdf.errors import OcrPdfError
from ocrpdf.logging_setup import job_context
from ocrpdf.models.job import (
    ExtractionJob,
    FailureDetail,
    OutcomeStatus,
    ProcessingOutcome,
)
from ocrpdf.services.acquisition import UNPROCESSED_DIR, acquire_document
from ocrpdf.services.orchestrator import JobOrchestrator
from ocrpdf.services.payload import build_payload, find_page_images
from ocrpdf.utils.logging_utils import stage_marker, structured_log
from ocrpdf.utils.redact import redact_text

_LOG = logging.getLogger("pipeline")


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


def discover_sources(directory: Path) -> List[Path]:
    """PDFs under `<dir>/unprocessed` when that folder exists, else under `<dir>`."""
    root = Path(directory)
    unprocessed = root / UNPROCESSED_DIR
    if unprocessed.is_dir():
        root = unprocessed
    return sorted(
        path for path in root.rglob("*") if path.is_file() and path.suffix.lower() == ".pdf"
    )


def failed_outcome(
    source: str, exc: BaseException, *, job_id: str = "", component: str = "pipeline"
) -> ProcessingOutcome:
    """Outcome for an error that escaped the orchestrator."""
    if isinstance(exc, OcrPdfError):
        kind, component, message = exc.kind, exc.component, exc.message
    else:
        kind, message = OutcomeStatus.UNEXPECTED_ERROR, f"{type(exc).__name__}: {exc}"
    return ProcessingOutcome(
        job_id=job_id,
        source=source,
        status=kind,
        failure=FailureDetail(component=component, kind=kind, message=redact_text(message)),
    )


class DocumentPipeline:
    def __init__(
        self,
        config: AppConfig,
        orchestrator: JobOrchestrator,
        *,
        http_client: Optional[httpx.Client],
        prompt: str,
        pages_dir: Optional[Path] = None,
        output_dir: Optional[Path] = None,
        job_id_factory: Callable[[], str] = new_job_id,
    ) -> None:
        self._config = config
        self._orchestrator = orchestrator
        self._http_client = http_client
        self._prompt = prompt
        self._pages_dir = pages_dir
        self._output_dir = output_dir if output_dir is not None else config.output_dir
        self._job_id_factory = job_id_factory

    def run(self, source: str, category: str) -> ProcessingOutcome:
        job_id = self._job_id_factory()
        temp_base = self._config.temp_base_dir
        if temp_base is not None:
            Path(temp_base).mkdir(parents=True, exist_ok=True)
        with job_context(job_id), tempfile.TemporaryDirectory(
            prefix=f"ocrpdf-{job_id}-", dir=temp_base
        ) as workdir:
            try:
                with stage_marker(_LOG, stage="acquisition", source=source, category=category):
                    document = acquire_document(
                        source,
                        category=category,
                        workdir=Path(workdir),
                        job_id=job_id,
                        http_client=self._http_client,
                    )
                    images = (
                        find_page_images(self._pages_dir, document.stem)
                        if self._pages_dir is not None
                        else None
                    )
                    payload = build_payload(document, images)
            except OcrPdfError as exc:
                return failed_outcome(source, exc, job_id=job_id)

            outcome = self._orchestrator.process(
                ExtractionJob(document=document, payload=payload, prompt=self._prompt)
            )
            if outcome.succeeded and self._output_dir is not None:
                self._write(document.stem, outcome)
            return outcome

    def _write(self, stem: str, outcome: ProcessingOutcome) -> None:
        target_dir = Path(self._output_dir)  # type: ignore[arg-type]
        target = target_dir / f"{stem}.md"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(outcome.text + "\n", encoding="utf-8")
        except OSError as exc:
            # extraction already succeeded; the outcome still carries the text
            structured_log(
                _LOG, logging.ERROR, "output_write_failed", source=outcome.source, error=str(exc)
            )
            return
        structured_log(
            _LOG, logging.INFO, "output_written", source=outcome.source, text_length=len(outcome.text)
        )


__all__ = ["DocumentPipeline", "discover_sources", "failed_outcome", "new_job_id"]

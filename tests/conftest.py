from __future__ import annotations

from pathlib import Path

import pytest

from ocrpdf.config import get_config
from ocrpdf.models.job import Document, EncodedPayload, ExtractionJob
from ocrpdf.services.gemini_client import inline_part
from tests.stubs.gemini_stub import PDF_BYTES

_ENV_VARS = (
    "AI_API_KEY_FREE",
    "AI_API_KEY_PAID",
    "AI_API_KEY",
    "GEMINI_API_KEY",
    "AI_MODEL",
    "GEMINI_MODEL",
    "API_SIZE_THRESHOLD",
    "MAX_PARALLEL_JOBS",
    "PDF_TEMP_BASE_DIR",
    "OCR_OUTPUT_DIR",
    "LOG_LEVEL",
    "BATCH_POLL_INTERVAL",
    "BATCH_MAX_WAIT",
    "BACKOFF_BASE_SECONDS",
    "BACKOFF_CAP_SECONDS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "report.pdf"
    path.write_bytes(PDF_BYTES)
    return path


@pytest.fixture
def make_job(pdf_file: Path):
    def _make(estimated_bytes: int, *, job_id: str = "job-1") -> ExtractionJob:
        document = Document(
            source=str(pdf_file),
            path=pdf_file,
            size_bytes=pdf_file.stat().st_size,
            category="clip",
            is_remote=False,
            job_id=job_id,
        )
        payload = EncodedPayload(
            parts=(inline_part("image/png", "aGVsbG8="),),
            estimated_bytes=estimated_bytes,
            upload_path=pdf_file,
        )
        return ExtractionJob(document=document, payload=payload, prompt="Transcribe.")

    return _make

"""Wire contract for the Gemini generative language REST API.

Builds request bodies (inline parts, file reference, batch envelope) and
routes every call through `ResilientInvoker`, so retry policy and error
classification are identical for generation, upload, submission and polling.
Credentials travel in the `x-goog-api-key` header only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from ocrpdf.config import AppConfig
from ocrpdf.errors import AcquisitionError, PermanentRequestError
from ocrpdf.models.job import TierPlan
from ocrpdf.services.backoff import BackoffPolicy
from ocrpdf.services.invoker import RequestSpec, ResilientInvoker
from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("gemini_client")

BATCH_REQUEST_KEY = "request-1"


def build_generate_request(
    prompt: str, parts: Sequence[Mapping[str, Any]], *, temperature: float
) -> Dict[str, Any]:
    """Sync `generateContent` body: the prompt text first, then the data parts."""
    return {
        "contents": [{"parts": [{"text": prompt}, *[dict(part) for part in parts]]}],
        "generationConfig": {"temperature": temperature},
    }


def inline_part(mime_type: str, data_b64: str) -> Dict[str, Any]:
    return {"inline_data": {"mime_type": mime_type, "data": data_b64}}


def file_part(file_uri: str, mime_type: str = "application/pdf") -> Dict[str, Any]:
    return {"fileData": {"mimeType": mime_type, "fileUri": file_uri}}


def build_batch_envelope(request_body: Mapping[str, Any], display_name: str) -> Dict[str, Any]:
    return {
        "batch": {
            "display_name": display_name,
            "input_config": {
                "requests": {
                    "requests": [
                        {
                            "request": dict(request_body),
                            "metadata": {"key": BATCH_REQUEST_KEY},
                        }
                    ]
                }
            },
        }
    }


class GeminiClient:
    def __init__(
        self,
        config: AppConfig,
        invoker: ResilientInvoker,
        backoff: Optional[BackoffPolicy] = None,
    ) -> None:
        self._config = config
        self._invoker = invoker
        self._backoff = backoff or BackoffPolicy.from_config(config)

    def _model_url(self, action: str) -> str:
        base = self._config.api_base_url.rstrip("/")
        return f"{base}/models/{self._config.model}:{action}"

    def _timeout(self, seconds: float) -> httpx.Timeout:
        return httpx.Timeout(seconds, connect=min(seconds, self._config.connect_timeout_seconds))

    def generate_content(self, request_body: Mapping[str, Any], *, plan: TierPlan) -> Dict[str, Any]:
        spec = RequestSpec(
            method="POST",
            url=self._model_url("generateContent"),
            operation="generate_content",
            api_key=plan.api_key,
            json_body=dict(request_body),
            timeout=self._timeout(self._config.realtime_timeout_seconds),
            expects_content=True,
        )
        return self._invoker.invoke(
            spec, max_attempts=self._config.request_max_attempts, backoff=self._backoff
        )

    def upload_file(self, path: Path, *, mime_type: str, plan: TierPlan) -> str:
        """Upload a file to the File API and return its URI."""
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise AcquisitionError(
                f"Cannot read upload source {path.name}: {exc}", component="gemini_client"
            ) from exc
        spec = RequestSpec(
            method="POST",
            url=f"{self._config.upload_base_url.rstrip('/')}/files",
            operation="upload_file",
            api_key=plan.api_key,
            content=data,
            content_type=mime_type,
            timeout=self._timeout(self._config.batch_api_timeout_seconds),
        )
        body = self._invoker.invoke(
            spec, max_attempts=self._config.upload_max_attempts, backoff=self._backoff
        )
        file_info = body.get("file") if isinstance(body.get("file"), dict) else {}
        uri = file_info.get("uri") or body.get("uri")
        if not isinstance(uri, str) or not uri:
            raise PermanentRequestError(
                "File upload response did not include a file uri",
                component="gemini_client",
                detail={"keys": sorted(body)},
            )
        structured_log(
            _LOG, logging.INFO, "file_uploaded", bytes=len(data), source=path.name
        )
        return uri

    def submit_batch(
        self, request_body: Mapping[str, Any], *, plan: TierPlan, display_name: str
    ) -> Dict[str, Any]:
        spec = RequestSpec(
            method="POST",
            url=self._model_url("batchGenerateContent"),
            operation="batch_submit",
            api_key=plan.api_key,
            json_body=build_batch_envelope(request_body, display_name),
            timeout=self._timeout(self._config.batch_api_timeout_seconds),
        )
        return self._invoker.invoke(
            spec, max_attempts=self._config.request_max_attempts, backoff=self._backoff
        )

    def get_batch(
        self, batch_name: str, *, plan: TierPlan, operation: str, max_attempts: int
    ) -> Dict[str, Any]:
        base = self._config.api_base_url.rstrip("/")
        spec = RequestSpec(
            method="GET",
            url=f"{base}/{batch_name.lstrip('/')}",
            operation=operation,
            api_key=plan.api_key,
            timeout=self._timeout(self._config.batch_api_timeout_seconds),
        )
        return self._invoker.invoke(spec, max_attempts=max_attempts, backoff=self._backoff)


__all__ = [
    "GeminiClient",
    "build_generate_request",
    "build_batch_envelope",
    "inline_part",
    "file_part",
    "BATCH_REQUEST_KEY",
]

"""Custom exception hierarchy for the OCR extraction orchestrator.

Each error carries the component that raised it and a `kind` matching an
`OutcomeStatus`, so the orchestrator can turn any failure into a structured
outcome without string matching.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from ocrpdf.models.job import OutcomeStatus


class OcrPdfError(Exception):
    """Base class for all domain failures."""

    kind: OutcomeStatus = OutcomeStatus.UNEXPECTED_ERROR

    def __init__(
        self,
        message: str,
        *,
        component: str = "unknown",
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.component = component
        self.detail = dict(detail or {})


class ConfigurationError(OcrPdfError):
    """Fatal misconfiguration, e.g. missing credential for the required tier."""

    kind = OutcomeStatus.CONFIGURATION_ERROR


class PermanentRequestError(OcrPdfError):
    """Auth / forbidden / not-found / rate-limit responses; never retried."""

    kind = OutcomeStatus.PERMANENT_REQUEST_ERROR

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class TransientNetworkError(OcrPdfError):
    """Retryable failure; surfaces only once the attempt budget is exhausted."""

    kind = OutcomeStatus.TRANSIENT_NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        attempts: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.attempts = attempts


class ContentRejected(OcrPdfError):
    """The model declined the content (finishReason RECITATION)."""

    kind = OutcomeStatus.CONTENT_REJECTED


class ContentUnreadable(OcrPdfError):
    """A valid response carried no extractable text."""

    kind = OutcomeStatus.CONTENT_UNREADABLE


class MonitoringTimeout(OcrPdfError):
    """The async job did not reach a terminal state within the wait budget."""

    kind = OutcomeStatus.MONITORING_TIMEOUT


class MonitoringFailure(OcrPdfError):
    """Too many consecutive poll failures; the remote job state is unknown."""

    kind = OutcomeStatus.MONITORING_FAILURE


class RemoteJobFailed(OcrPdfError):
    """The remote batch job reported failure."""

    kind = OutcomeStatus.REMOTE_JOB_FAILED


class RemoteJobCancelled(OcrPdfError):
    """The remote batch job was cancelled."""

    kind = OutcomeStatus.REMOTE_JOB_CANCELLED


class AcquisitionError(OcrPdfError):
    """Raised when the source document cannot be downloaded, copied or read."""

    kind = OutcomeStatus.ACQUISITION_ERROR


__all__ = [
    "OcrPdfError",
    "ConfigurationError",
    "PermanentRequestError",
    "TransientNetworkError",
    "ContentRejected",
    "ContentUnreadable",
    "MonitoringTimeout",
    "MonitoringFailure",
    "RemoteJobFailed",
    "RemoteJobCancelled",
    "AcquisitionError",
]

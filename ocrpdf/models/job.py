"""Data structures shared by the extraction orchestration layer.

Everything here is a plain dataclass or enum so jobs can be handed between
threads without locking: documents, plans, usage counters and outcomes are
frozen; only `AsyncJob` is mutable and it is owned by a single monitor.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


class Tier(str, Enum):
    """Service access tier. FAST is the free realtime API, HEAVY the paid batch API."""

    FAST = "FAST"
    HEAVY = "HEAVY"


class RequestStyle(str, Enum):
    INLINE = "inline"
    FILE_REFERENCE = "file_reference"


class ExecutionPath(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


TIER_REQUEST_STYLE: Dict[Tier, RequestStyle] = {
    Tier.FAST: RequestStyle.INLINE,
    Tier.HEAVY: RequestStyle.FILE_REFERENCE,
}
TIER_EXECUTION: Dict[Tier, ExecutionPath] = {
    Tier.FAST: ExecutionPath.SYNC,
    Tier.HEAVY: ExecutionPath.ASYNC,
}


class Verdict(str, Enum):
    """Classification of a single network attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    ESCALATE = "escalate"
    UNREADABLE = "unreadable"


class JobState(str, Enum):
    """Lifecycle of a remote batch job.

    SUBMITTED -> {PENDING, RUNNING, PROCESSING} -> {SUCCEEDED, FAILED, CANCELLED}.
    UNKNOWN is transient: the poll response could not be parsed.
    """

    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @classmethod
    def from_wire(cls, raw: Any) -> "JobState":
        """Map `BATCH_STATE_RUNNING`, `JOB_STATE_RUNNING` or `RUNNING` to a member."""
        if not isinstance(raw, str) or not raw.strip():
            return cls.UNKNOWN
        value = raw.strip().upper()
        for prefix in ("BATCH_STATE_", "JOB_STATE_"):
            if value.startswith(prefix):
                value = value[len(prefix):]
                break
        if value == "CANCELED":
            value = "CANCELLED"
        try:
            state = cls(value)
        except ValueError:
            return cls.UNKNOWN
        if state is cls.SUBMITTED:
            # local-only state, never reported by the service
            return cls.UNKNOWN
        return state


_TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})


class OutcomeStatus(str, Enum):
    """Terminal status of one document: success or the failure kind."""

    SUCCEEDED = "succeeded"
    CONFIGURATION_ERROR = "configuration_error"
    PERMANENT_REQUEST_ERROR = "permanent_request_error"
    TRANSIENT_NETWORK_ERROR = "transient_network_error"
    CONTENT_REJECTED = "content_rejected"
    CONTENT_UNREADABLE = "content_unreadable"
    MONITORING_TIMEOUT = "monitoring_timeout"
    MONITORING_FAILURE = "monitoring_failure"
    REMOTE_JOB_FAILED = "remote_job_failed"
    REMOTE_JOB_CANCELLED = "remote_job_cancelled"
    ACQUISITION_ERROR = "acquisition_error"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True, slots=True)
class Document:
    source: str
    path: Path
    size_bytes: int
    category: str
    is_remote: bool
    job_id: str
    page_count: Optional[int] = None

    @property
    def stem(self) -> str:
        return self.path.stem


@dataclass(frozen=True, slots=True)
class EncodedPayload:
    """Inline parts for the realtime request plus the file the batch path uploads.

    `estimated_bytes` is the combined base64 length of the inline data, which is
    what the remote service measures against its request size limit.
    """

    parts: Tuple[Dict[str, Any], ...]
    estimated_bytes: int
    upload_path: Path
    upload_mime: str = "application/pdf"


@dataclass(frozen=True, slots=True)
class ExtractionJob:
    document: Document
    payload: EncodedPayload
    prompt: str


@dataclass(frozen=True, slots=True)
class TierPlan:
    tier: Tier
    api_key: str
    request_style: RequestStyle
    execution: ExecutionPath
    estimated_bytes: int
    threshold_bytes: int


@dataclass(frozen=True, slots=True)
class Attempt:
    operation: str
    number: int
    waited_seconds: float
    verdict: Verdict
    status_code: Optional[int] = None
    detail: str = ""


@dataclass(slots=True)
class AsyncJob:
    name: str
    display_name: str
    max_wait_seconds: float
    state: JobState = JobState.SUBMITTED
    waited_seconds: float = 0.0
    polls: int = 0
    consecutive_poll_failures: int = 0


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    reasoning: int = 0
    total: int = 0

    def __post_init__(self) -> None:
        for name in ("input", "output", "reasoning", "total"):
            if getattr(self, name) < 0:
                raise ValueError(f"token count '{name}' must be non-negative")

    @classmethod
    def from_counts(
        cls,
        *,
        input: Optional[int],  # noqa: A002 - mirrors the usage field name
        output: Optional[int],
        reasoning: Optional[int],
        total: Optional[int],
    ) -> "TokenUsage":
        """Build usage from reported counts; a missing output is derived from total."""
        prompt = max(0, int(input or 0))
        thoughts = max(0, int(reasoning or 0))
        overall = max(0, int(total or 0))
        candidates = int(output or 0)
        if candidates <= 0:
            candidates = max(0, overall - prompt - thoughts)
        return cls(input=prompt, output=candidates, reasoning=thoughts, total=overall)

    def as_csv(self) -> str:
        return f"{self.input},{self.output},{self.reasoning},{self.total}"


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    text: str
    usage: TokenUsage
    pattern: str = ""


@dataclass(frozen=True, slots=True)
class FailureDetail:
    component: str
    kind: OutcomeStatus
    message: str


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    job_id: str
    source: str
    status: OutcomeStatus
    tier: Optional[Tier] = None
    text: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    escalated: bool = False
    failure: Optional[FailureDetail] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def to_dict(self, *, include_text: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "job_id": self.job_id,
            "source": self.source,
            "status": self.status.value,
            "tier": self.tier.value if self.tier else None,
            "escalated": self.escalated,
            "usage": asdict(self.usage),
            "text_length": len(self.text),
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if self.failure is not None:
            payload["failure"] = {
                "component": self.failure.component,
                "kind": self.failure.kind.value,
                "message": self.failure.message,
            }
        if include_text:
            payload["text"] = self.text
        return payload


__all__ = [
    "Tier",
    "RequestStyle",
    "ExecutionPath",
    "TIER_REQUEST_STYLE",
    "TIER_EXECUTION",
    "Verdict",
    "JobState",
    "OutcomeStatus",
    "Document",
    "EncodedPayload",
    "ExtractionJob",
    "TierPlan",
    "Attempt",
    "AsyncJob",
    "TokenUsage",
    "ExtractionResult",
    "FailureDetail",
    "ProcessingOutcome",
]

"""Map the outcome of one HTTP attempt to a retry verdict.

Status codes are judged before any content rule: a non-2xx response is never
inspected for text. Permanent statuses are the ones where repeating the same
request cannot help (bad credentials, forbidden, missing resource, quota).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import httpx

from ocrpdf.models.job import Verdict

PERMANENT_STATUS_CODES = frozenset({401, 403, 404, 429})
RECITATION = "RECITATION"


@dataclass(frozen=True, slots=True)
class CallOutcome:
    """What one attempt produced: a response, or a transport failure."""

    status_code: Optional[int] = None
    body: Any = None
    raw_text: str = ""
    transport_error: Optional[BaseException] = None

    @classmethod
    def from_response(cls, response: httpx.Response) -> "CallOutcome":
        raw = response.text
        body: Any = None
        if raw.strip():
            try:
                body = json.loads(raw)
            except ValueError:
                body = None
        return cls(status_code=response.status_code, body=body, raw_text=raw)

    @classmethod
    def from_error(cls, exc: BaseException) -> "CallOutcome":
        return cls(transport_error=exc)

    @property
    def is_http_success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


def iter_text_parts(node: Any) -> Iterator[str]:
    """Yield every non-empty string stored under a `text` key, depth first."""
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "text" and isinstance(value, str):
                if value.strip():
                    yield value
            else:
                yield from iter_text_parts(value)
    elif isinstance(node, list):
        for item in node:
            yield from iter_text_parts(item)


def mentions_recitation(node: Any) -> bool:
    if isinstance(node, dict):
        if node.get("finishReason") == RECITATION:
            return True
        return any(mentions_recitation(value) for value in node.values())
    if isinstance(node, list):
        return any(mentions_recitation(item) for item in node)
    return False


class ErrorClassifier:
    """Stateless; safe to share between threads."""

    def __init__(self, permanent_status_codes: frozenset[int] = PERMANENT_STATUS_CODES) -> None:
        self._permanent = permanent_status_codes

    def effective_status(
        self, outcome: CallOutcome, *, expects_content: bool = True
    ) -> Optional[int]:
        """HTTP status, or the code of an error embedded in a 2xx generation body."""
        if outcome.is_http_success and expects_content:
            embedded = _embedded_error_code(outcome.body)
            if embedded is not None:
                return embedded
        return outcome.status_code

    def classify(self, outcome: CallOutcome, *, expects_content: bool) -> Verdict:
        if outcome.transport_error is not None or outcome.status_code is None:
            return Verdict.RETRYABLE
        if not outcome.is_http_success:
            return self._verdict_for_status(outcome.status_code)
        body = outcome.body
        if not isinstance(body, dict):
            # empty, truncated or non-JSON 2xx body
            return Verdict.RETRYABLE
        if not expects_content:
            # batch and file resources carry their own `error`; the caller reads it
            return Verdict.SUCCESS
        if "error" in body:
            code = _embedded_error_code(body)
            if code is None:
                return Verdict.RETRYABLE
            return self._verdict_for_status(code)
        if next(iter_text_parts(body), None) is not None:
            return Verdict.SUCCESS
        if mentions_recitation(body):
            return Verdict.ESCALATE
        return Verdict.UNREADABLE

    def _verdict_for_status(self, status: int) -> Verdict:
        if status in self._permanent:
            return Verdict.PERMANENT
        return Verdict.RETRYABLE


def _embedded_error_code(body: Any) -> Optional[int]:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if not isinstance(error, dict):
        return None
    code = error.get("code")
    if isinstance(code, bool):
        return None
    if isinstance(code, int):
        return code
    if isinstance(code, str) and code.isdigit():
        return int(code)
    return None


__all__ = [
    "CallOutcome",
    "ErrorClassifier",
    "PERMANENT_STATUS_CODES",
    "iter_text_parts",
    "mentions_recitation",
]

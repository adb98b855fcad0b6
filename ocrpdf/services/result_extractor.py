"""Pull the generated text and token usage out of a response body.

Realtime and batch responses nest the same candidate structure at different
depths, and the batch API has moved it between releases. Every known layout
is tried in a fixed priority order; the first one yielding non-empty text
wins.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from ocrpdf.errors import ContentRejected, ContentUnreadable, RemoteJobFailed
from ocrpdf.models.job import ExtractionResult, TokenUsage
from ocrpdf.services.error_classifier import mentions_recitation
from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("result_extractor")

PathElement = Union[str, int]

_BATCH_OUTPUT: Tuple[PathElement, ...] = (
    "metadata", "output", "inlinedResponses", "inlinedResponses", 0,
)
_BATCH_RESPONSE: Tuple[PathElement, ...] = (
    "response", "inlinedResponses", "inlinedResponses", 0,
)
_FIRST_CANDIDATE_PARTS: Tuple[PathElement, ...] = ("candidates", 0, "content", "parts")

_ERROR_MESSAGE_PATHS: Sequence[Tuple[PathElement, ...]] = (
    _BATCH_RESPONSE + ("error", "message"),
    _BATCH_OUTPUT + ("error", "message"),
)

_USAGE_PATHS: Sequence[Tuple[str, Tuple[PathElement, ...]]] = (
    ("batch_response_usage", _BATCH_RESPONSE + ("response", "usageMetadata")),
    ("usage", ("usageMetadata",)),
    ("batch_output_usage", _BATCH_OUTPUT + ("response", "usageMetadata")),
)

_FENCE_OPEN = re.compile(r"^```markdown[ \t]*", re.MULTILINE)
_FENCE_CLOSE = re.compile(r"[ \t]*```[ \t]*$", re.MULTILINE)


def dig(node: Any, path: Sequence[PathElement]) -> Any:
    current = node
    for element in path:
        if isinstance(element, int):
            if not isinstance(current, list) or len(current) <= element:
                return None
            current = current[element]
        else:
            if not isinstance(current, dict) or element not in current:
                return None
            current = current[element]
    return current


def _single_text(path: Tuple[PathElement, ...]) -> Callable[[Any], Optional[str]]:
    def _extract(body: Any) -> Optional[str]:
        value = dig(body, path)
        return value if isinstance(value, str) else None

    return _extract


def _joined_parts(path: Tuple[PathElement, ...]) -> Callable[[Any], Optional[str]]:
    def _extract(body: Any) -> Optional[str]:
        parts = dig(body, path)
        if not isinstance(parts, list):
            return None
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        return "\n".join(texts) if texts else None

    return _extract


TEXT_PATTERNS: Sequence[Tuple[str, Callable[[Any], Optional[str]]]] = (
    (
        "batch_output_first_part",
        _single_text(_BATCH_OUTPUT + ("response",) + _FIRST_CANDIDATE_PARTS + (0, "text")),
    ),
    ("batch_response_parts", _joined_parts(_BATCH_RESPONSE + ("response",) + _FIRST_CANDIDATE_PARTS)),
    ("candidate_parts", _joined_parts(_FIRST_CANDIDATE_PARTS)),
    ("content_parts", _joined_parts(("content", "parts"))),
    ("parts", _joined_parts(("parts",))),
    ("text", _single_text(("text",))),
)


def clean_text(raw: str) -> str:
    """Drop surrounding ```markdown fences and a leading blank line."""
    text = _FENCE_OPEN.sub("", raw)
    text = _FENCE_CLOSE.sub("", text)
    lines: List[str] = [line for line in text.split("\n") if line.strip() not in ("```markdown", "```")]
    if lines and not lines[0].strip():
        lines = lines[1:]
    return "\n".join(lines).strip("\n")


class ResultExtractor:
    def extract(self, body: Any) -> ExtractionResult:
        error_message = self._inline_error(body)
        if error_message:
            raise RemoteJobFailed(
                f"Batch request failed: {error_message}", component="result_extractor"
            )
        usage = self.extract_usage(body)
        for name, pattern in TEXT_PATTERNS:
            raw = pattern(body)
            if raw is None or not raw.strip():
                continue
            text = clean_text(raw)
            if not text.strip():
                continue
            structured_log(
                _LOG,
                logging.INFO,
                "text_extracted",
                pattern=name,
                text_length=len(text),
                tokens=usage.as_csv(),
            )
            return ExtractionResult(text=text, usage=usage, pattern=name)
        if mentions_recitation(body):
            raise ContentRejected(
                "Response blocked with finishReason RECITATION", component="result_extractor"
            )
        raise ContentUnreadable(
            "No extractable text in response", component="result_extractor"
        )

    def extract_usage(self, body: Any) -> TokenUsage:
        for name, path in _USAGE_PATHS:
            usage = dig(body, path)
            if isinstance(usage, dict) and usage:
                _LOG.debug("usage_pattern_matched", extra={"pattern": name})
                return TokenUsage.from_counts(
                    input=_as_int(usage.get("promptTokenCount")),
                    output=_as_int(usage.get("candidatesTokenCount")),
                    reasoning=_as_int(usage.get("thoughtsTokenCount")),
                    total=_as_int(usage.get("totalTokenCount")),
                )
        return TokenUsage()

    @staticmethod
    def _inline_error(body: Any) -> Optional[str]:
        for path in _ERROR_MESSAGE_PATHS:
            message = dig(body, path)
            if isinstance(message, str) and message.strip() and message != "null":
                return message
        return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


__all__ = ["ResultExtractor", "TEXT_PATTERNS", "clean_text", "dig"]

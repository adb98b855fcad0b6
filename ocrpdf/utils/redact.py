"""Utility helpers to scrub credentials from logs and failure details."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

DEFAULT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bAIza[0-9A-Za-z_\-]{20,}"),  # Google API key
    re.compile(r"(?<=[?&]key=)[^&\s\"']+"),  # key= query param
    re.compile(r"(?i)(?<=x-goog-api-key: )\S+"),  # header dump
    re.compile(r"(?i)(?<=Bearer )[A-Za-z0-9._\-]+"),
)

SENSITIVE_KEYS = frozenset({"api_key", "x-goog-api-key", "authorization", "key"})

REDACTION_TOKEN = "[REDACTED]"


def redact_text(
    value: str,
    *,
    patterns: Iterable[re.Pattern[str]] | None = None,
    replacement: str = REDACTION_TOKEN,
    secrets: Iterable[str | None] = (),
) -> str:
    """Redact API keys from text payloads.

    `secrets` lets callers scrub the exact configured key values, which do not
    always match the generic key pattern.
    """
    compiled = tuple(patterns or DEFAULT_PATTERNS)
    scrubbed = value
    for secret in secrets:
        if secret:
            scrubbed = scrubbed.replace(secret, replacement)
    for pattern in compiled:
        scrubbed = pattern.sub(replacement, scrubbed)
    return scrubbed


def redact_mapping(
    payload: Mapping[str, Any],
    *,
    patterns: Iterable[re.Pattern[str]] | None = None,
    replacement: str = REDACTION_TOKEN,
) -> dict[str, Any]:
    """Recursively redact mapping values; values under credential keys are dropped."""
    result: dict[str, Any] = {}
    compiled = tuple(patterns or DEFAULT_PATTERNS)
    for key, value in payload.items():
        if isinstance(key, str) and key.lower() in SENSITIVE_KEYS:
            result[key] = replacement
            continue
        result[key] = _redact_value(value, compiled, replacement)
    return result


def _redact_value(
    value: Any,
    patterns: tuple[re.Pattern[str], ...],
    replacement: str,
) -> Any:
    if isinstance(value, str):
        return redact_text(value, patterns=patterns, replacement=replacement)
    if isinstance(value, Mapping):
        return redact_mapping(value, patterns=patterns, replacement=replacement)
    if isinstance(value, list):
        return [_redact_value(item, patterns, replacement) for item in value]
    if isinstance(value, tuple):
        return tuple(_redact_value(item, patterns, replacement) for item in value)
    return value


__all__ = ["redact_text", "redact_mapping", "REDACTION_TOKEN", "SENSITIVE_KEYS"]

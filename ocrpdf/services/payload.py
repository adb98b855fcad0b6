"""Encode a document into request parts and load the extraction prompt."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ocrpdf.errors import AcquisitionError
from ocrpdf.models.job import Document, EncodedPayload
from ocrpdf.services.gemini_client import inline_part

DEFAULT_PROMPT = (
    "Transcribe all text in the attached document as Markdown, preserving "
    "headings, lists and tables in reading order."
)

_IMAGE_MIME: Dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


def _encode(path: Path) -> str:
    try:
        return base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as exc:
        raise AcquisitionError(f"Cannot read {path.name}: {exc}", component="payload") from exc


def build_payload(
    document: Document, page_images: Optional[Sequence[Path]] = None
) -> EncodedPayload:
    """Inline parts from pre-rendered page images, or from the PDF itself.

    The upload target for the batch path is always the PDF.
    """
    parts: List[Dict[str, object]] = []
    if page_images:
        for image in page_images:
            mime = _IMAGE_MIME.get(Path(image).suffix.lower(), "image/png")
            parts.append(inline_part(mime, _encode(Path(image))))
    else:
        parts.append(inline_part("application/pdf", _encode(document.path)))
    estimated = sum(len(part["inline_data"]["data"]) for part in parts)  # type: ignore[index]
    return EncodedPayload(
        parts=tuple(parts),
        estimated_bytes=estimated,
        upload_path=document.path,
        upload_mime="application/pdf",
    )


def find_page_images(pages_dir: Path, stem: str) -> List[Path]:
    """Page images named `<stem>-<n>.<ext>` (pdftoppm style), ordered by page number."""
    candidates = []
    for path in Path(pages_dir).iterdir():
        if path.suffix.lower() not in _IMAGE_MIME or not path.stem.startswith(f"{stem}-"):
            continue
        suffix = path.stem[len(stem) + 1:]
        if suffix.isdigit():
            candidates.append((int(suffix), path))
    return [path for _, path in sorted(candidates)]


def load_prompt(path: Optional[Path] = None) -> str:
    if path is None:
        return DEFAULT_PROMPT
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise AcquisitionError(f"Cannot read prompt file {path}: {exc}", component="payload") from exc
    return text or DEFAULT_PROMPT


__all__ = ["build_payload", "find_page_images", "load_prompt", "DEFAULT_PROMPT"]

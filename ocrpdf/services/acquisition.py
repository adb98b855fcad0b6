"""Fetch the source PDF into the job's working directory and validate it."""

from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx
from pypdf import PdfReader

from ocrpdf.errors import AcquisitionError
from ocrpdf.models.job import Document
from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("acquisition")

PDF_MAGIC = b"%PDF-"

# Files under this folder are consumed (moved) so a rerun does not submit them again.
UNPROCESSED_DIR = "unprocessed"

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
# Some hosts only serve the file to something that looks like a browser
# navigation; others reject the Sec-Fetch headers outright.
BROWSER_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
    "User-Agent": _USER_AGENT,
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
    "Upgrade-Insecure-Requests": "1",
}
MINIMAL_HEADERS = {"User-Agent": _USER_AGENT, "Accept": "application/pdf,*/*"}


def is_remote(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def is_inbox_source(source: str) -> bool:
    return not is_remote(source) and UNPROCESSED_DIR in Path(source).parent.parts


def default_category(source: str) -> str:
    if not is_remote(source) and Path(source).is_dir():
        return "scan"
    return "clip"


def _target_name(source: str) -> str:
    if is_remote(source):
        name = Path(unquote(urlparse(source).path)).name
    else:
        name = Path(source).name
    if not name or not name.lower().endswith(".pdf"):
        name = f"{Path(name).stem or 'document'}.pdf"
    return name


def page_count(data: bytes) -> Optional[int]:
    try:
        reader = PdfReader(io.BytesIO(data))
        return len(reader.pages)
    except Exception as exc:  # pypdf raises many parse error types
        _LOG.debug("page_count_unavailable", extra={"error_type": type(exc).__name__})
        return None


def _download(source: str, target: Path, http_client: httpx.Client) -> bytes:
    last_error: Optional[str] = None
    for label, headers in (("browser", BROWSER_HEADERS), ("minimal", MINIMAL_HEADERS)):
        try:
            response = http_client.get(source, headers=headers, follow_redirects=True)
        except httpx.HTTPError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        else:
            if response.is_success and response.content:
                target.write_bytes(response.content)
                return response.content
            last_error = f"HTTP {response.status_code}"
        structured_log(
            _LOG,
            logging.WARNING,
            "download_attempt_failed",
            source=source,
            reason=label,
            error=last_error,
        )
    raise AcquisitionError(
        f"Download failed for {source}: {last_error}", component="acquisition"
    )


def acquire_document(
    source: str,
    *,
    category: str,
    workdir: Path,
    job_id: str,
    http_client: Optional[httpx.Client] = None,
) -> Document:
    """Download, move or copy `source` into `workdir` and return the validated Document.

    Local files from an `unprocessed` inbox are moved; any other local file is
    copied and left where the user put it.
    """
    target = Path(workdir) / _target_name(source)
    remote = is_remote(source)
    if remote:
        if http_client is None:
            raise AcquisitionError("An HTTP client is required for URL sources", component="acquisition")
        data = _download(source, target, http_client)
    else:
        path = Path(source)
        if not path.is_file():
            raise AcquisitionError(f"File not found: {source}", component="acquisition")
        action = "move" if is_inbox_source(source) else "copy"
        try:
            if action == "move":
                shutil.move(str(path), str(target))
            else:
                shutil.copyfile(path, target)
            data = target.read_bytes()
        except OSError as exc:
            raise AcquisitionError(
                f"Cannot {action} {source}: {exc}", component="acquisition"
            ) from exc

    if not data:
        raise AcquisitionError(f"{source} is empty", component="acquisition")
    if not data.startswith(PDF_MAGIC):
        raise AcquisitionError(
            f"{source} does not appear to be a valid PDF (missing %PDF- header)",
            component="acquisition",
        )
    pages = page_count(data)
    structured_log(
        _LOG,
        logging.INFO,
        "document_acquired",
        source=source,
        bytes=len(data),
        pages=pages,
        category=category,
    )
    return Document(
        source=source,
        path=target,
        size_bytes=len(data),
        category=category,
        is_remote=remote,
        job_id=job_id,
        page_count=pages,
    )


__all__ = [
    "UNPROCESSED_DIR",
    "acquire_document",
    "default_category",
    "is_inbox_source",
    "is_remote",
    "page_count",
]

"""Command line entrypoint: `ocrpdf [INPUT] [CATEGORY]`.

INPUT is a URL, a PDF file, or a directory. A directory is processed in
batch mode (`<dir>/unprocessed` is preferred when present) with at most
`MAX_PARALLEL_JOBS` documents in flight. Outcomes are printed as a JSON array
on stdout; logs go to stderr. The extracted text is part of that report
unless an output directory receives it as `<name>.md`.

Exit status: 0 when every document succeeded, 1 when any failed or the
configuration is unusable, 2 for invalid arguments.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

import httpx

from ocrpdf.config import AppConfig, get_config
from ocrpdf.errors import OcrPdfError
from ocrpdf.logging_setup import configure_logging
from ocrpdf.models.job import ProcessingOutcome
from ocrpdf.services.acquisition import default_category, is_remote
from ocrpdf.services.backoff import BackoffPolicy
from ocrpdf.services.batch_monitor import BatchJobMonitor
from ocrpdf.services.concurrency import ConcurrencyController
from ocrpdf.services.diagnostics import LoggingDiagnostics
from ocrpdf.services.error_classifier import ErrorClassifier
from ocrpdf.services.gemini_client import GeminiClient
from ocrpdf.services.interfaces import DiagnosticSink, MetricsClient
from ocrpdf.services.invoker import ResilientInvoker
from ocrpdf.services.metrics import NullMetrics, PrometheusMetrics
from ocrpdf.services.orchestrator import JobOrchestrator
from ocrpdf.services.payload import load_prompt
from ocrpdf.services.pipeline import DocumentPipeline, discover_sources, failed_outcome

_LOG = logging.getLogger("ocrpdf.cli")

CATEGORIES = ("clip", "scan", "paper")


def build_pipeline(
    config: AppConfig,
    http_client: httpx.Client,
    *,
    prompt: str,
    pages_dir: Optional[Path] = None,
    observer: Optional[DiagnosticSink] = None,
    metrics: Optional[MetricsClient] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> DocumentPipeline:
    """Wire the orchestration stack around one shared HTTP client."""
    observer = observer or LoggingDiagnostics()
    metrics = metrics or NullMetrics()
    invoker = ResilientInvoker(
        http_client, ErrorClassifier(), observer=observer, metrics=metrics, sleep=sleep
    )
    client = GeminiClient(config, invoker, BackoffPolicy.from_config(config))
    monitor = BatchJobMonitor(client, config, observer=observer, sleep=sleep, clock=clock)
    orchestrator = JobOrchestrator(
        config, client, monitor, observer=observer, metrics=metrics
    )
    return DocumentPipeline(
        config,
        orchestrator,
        http_client=http_client,
        prompt=prompt,
        pages_dir=pages_dir,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocrpdf",
        description="Extract text from PDFs with the Gemini API (realtime or batch tier).",
    )
    parser.add_argument("input", help="PDF URL, PDF file, or directory of PDFs.")
    parser.add_argument(
        "category",
        nargs="?",
        choices=CATEGORIES,
        help="Document category (default: clip for URL/file, scan for directory).",
    )
    parser.add_argument("--pages-dir", type=Path, help="Directory of pre-rendered page images.")
    parser.add_argument("--prompt-file", type=Path, help="File holding the extraction prompt.")
    parser.add_argument("--output-dir", type=Path, help="Write <name>.md for each success here.")
    parser.add_argument("--max-parallel", type=int, help="Override MAX_PARALLEL_JOBS.")
    parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port.")
    parser.add_argument("--log-level", help="Override LOG_LEVEL.")
    return parser


def _resolve_sources(raw: str) -> Optional[List[str]]:
    if is_remote(raw):
        return [raw]
    path = Path(raw)
    if path.is_dir():
        return [str(item) for item in discover_sources(path)]
    if path.is_file():
        return [raw]
    return None


def run_cli(
    argv: Optional[Iterable[str]] = None,
    *,
    http_client: Optional[httpx.Client] = None,
    config: Optional[AppConfig] = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        config = config or get_config()
        updates = {}
        if args.max_parallel is not None:
            if args.max_parallel < 1:
                parser.error("--max-parallel must be >= 1")
            updates["max_parallel_jobs"] = args.max_parallel
        if args.output_dir is not None:
            updates["output_dir"] = args.output_dir
        if updates:
            config = config.model_copy(update=updates)
        configure_logging(args.log_level or config.log_level)
        config.validate_required()
    except OcrPdfError as exc:
        _LOG.error("configuration_invalid", extra={"error": exc.message})
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    sources = _resolve_sources(args.input)
    if sources is None:
        print(
            f"Error: Invalid input - not a valid URL, existing file, or directory: {args.input}",
            file=sys.stderr,
        )
        return 2
    batch_mode = not is_remote(args.input) and Path(args.input).is_dir()
    category = args.category or default_category(args.input)

    try:
        prompt = load_prompt(args.prompt_file)
    except OcrPdfError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2
    if args.pages_dir is not None and not args.pages_dir.is_dir():
        print(f"Error: Page image directory not found: {args.pages_dir}", file=sys.stderr)
        return 2

    metrics: MetricsClient = (
        PrometheusMetrics.serve(args.metrics_port) if args.metrics_port else NullMetrics()
    )
    _LOG.info(
        "run_started",
        extra={"documents": len(sources), "batch_mode": batch_mode, "category": category},
    )

    owns_client = http_client is None
    client = http_client or httpx.Client(
        timeout=httpx.Timeout(
            config.batch_api_timeout_seconds, connect=config.connect_timeout_seconds
        )
    )
    try:
        pipeline = build_pipeline(
            config, client, prompt=prompt, pages_dir=args.pages_dir, metrics=metrics
        )
        outcomes = _run_all(pipeline, sources, category, config.max_parallel_jobs)
    finally:
        if owns_client:
            client.close()

    # without an output directory the report is the only place the text lands
    include_text = config.output_dir is None
    report = [outcome.to_dict(include_text=include_text) for outcome in outcomes]
    print(json.dumps(report, indent=2, ensure_ascii=False))
    failed = sum(1 for outcome in outcomes if not outcome.succeeded)
    _LOG.info("run_finished", extra={"documents": len(outcomes), "failed": failed})
    return 0 if failed == 0 else 1


def _run_all(
    pipeline: DocumentPipeline, sources: Sequence[str], category: str, max_workers: int
) -> List[ProcessingOutcome]:
    controller = ConcurrencyController(max_workers)
    return controller.run(
        sources,
        lambda source: pipeline.run(source, category),
        lambda source, exc: failed_outcome(source, exc),
    )


def main() -> None:  # pragma: no cover - thin wrapper
    sys.exit(run_cli())


if __name__ == "__main__":  # pragma: no cover
    main()


__all__ = ["build_pipeline", "run_cli", "main"]

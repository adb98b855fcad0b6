"""Bounded fan-out of independent document jobs over a thread pool."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("concurrency")

T = TypeVar("T")
R = TypeVar("R")


class ConcurrencyController:
    """Runs at most `max_workers` jobs at once; extra items queue for a slot.

    Results come back in input order. A worker exception is turned into a
    result by `on_error`, so one failing document never cancels the others.
    """

    def __init__(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers

    def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], R],
        on_error: Callable[[T, BaseException], R],
    ) -> List[R]:
        if not items:
            return []
        width = min(self.max_workers, len(items))
        structured_log(
            _LOG, logging.INFO, "fanout_started", max_workers=width, items=len(items)
        )
        results: List[R] = []
        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="ocrpdf") as executor:
            futures: List[tuple[Future[R], T]] = [
                (executor.submit(worker, item), item) for item in items
            ]
            for future, item in futures:
                try:
                    results.append(future.result())
                except Exception as exc:
                    _LOG.exception("worker_failed", extra={"error_type": type(exc).__name__})
                    results.append(on_error(item, exc))
        return results


__all__ = ["ConcurrencyController"]

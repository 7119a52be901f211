"""Bounded worker pool and a thread-safe result collector."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Generic, Iterable, List, Tuple, TypeVar


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 20

T = TypeVar("T")
R = TypeVar("R")
D = TypeVar("D")


class ResultCollector(Generic[R, D]):
    """
    Append-only store shared by workers.

    ``add`` is the only mutation; readers take a :meth:`snapshot` once every
    worker has finished.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, R] = {}
        self._diagnostics: List[D] = []

    def add(self, key: str, result: R, diagnostics: Iterable[D] = ()) -> None:
        with self._lock:
            self._results[key] = result
            self._diagnostics.extend(diagnostics)

    def snapshot(self) -> Tuple[Dict[str, R], List[D]]:
        with self._lock:
            return dict(self._results), list(self._diagnostics)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def run_bounded(
    fn: Callable[[T], Any],
    items: Iterable[T],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> None:
    """
    Run ``fn`` over ``items`` with at most ``max_workers`` threads.

    ``fn`` is expected to record its own failures; an exception escaping it is
    logged and does not stop the remaining items.
    """
    items = list(items)
    if not items:
        return

    workers = max(1, min(max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(fn, item): item for item in items}
        for future in as_completed(futures):
            error = future.exception()
            if error is not None:
                logger.error("worker failed for %s: %s", futures[future], error)

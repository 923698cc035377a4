"""
Bounded worker pool for batches of independent units of work.

Each worker pulls the next task until the queue is exhausted. Tasks
must not share mutable state.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import psutil

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_concurrency() -> int:
    """Worker count sized to the logical CPUs of this machine."""
    return psutil.cpu_count(logical=True) or 1


def run_concurrent(tasks: Sequence[Callable[[], T]], limit: Optional[int] = None) -> List[T]:
    """
    Run ``tasks`` with at most ``limit`` in flight.

    Results come back in task order. The first exception raised by a
    task stops the remaining workers from pulling new work and is
    re-raised to the caller.
    """
    if not tasks:
        return []

    limit = max(1, limit or default_concurrency())
    worker_count = min(limit, len(tasks))
    results: List[Optional[T]] = [None] * len(tasks)
    next_index = 0
    lock = threading.Lock()
    failed = threading.Event()

    def worker() -> None:
        nonlocal next_index
        while not failed.is_set():
            with lock:
                current = next_index
                if current >= len(tasks):
                    return
                next_index += 1
            try:
                results[current] = tasks[current]()
            except Exception:
                failed.set()
                raise

    logger.debug(f"[Pool] Running {len(tasks)} tasks on {worker_count} workers")
    with ThreadPoolExecutor(max_workers=worker_count) as pool:
        futures = [pool.submit(worker) for _ in range(worker_count)]
        for future in futures:
            future.result()

    return results  # type: ignore[return-value]

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Hashable, TypeVar

from src.errors import AnalyticsError, DataUnavailable

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

_POLL_SECONDS = 0.05


def run_bounded(
    calls: dict[K, Callable[[], T]],
    max_workers: int = 4,
    timeout: float = 15.0,
) -> dict[K, T | AnalyticsError]:
    """
    Runs provider calls concurrently with at most `max_workers` in flight.

    Each call gets `timeout` seconds from the moment it starts. A call that
    raises or runs out of time yields an AnalyticsError for its key
    (DataUnavailable unless the call raised another AnalyticsError); the other
    keys are unaffected. Result order follows `calls`.
    """
    if not calls:
        return {}
    if max_workers <= 0:
        raise ValueError("max_workers must be > 0")

    started: dict[K, float] = {}
    lock = threading.Lock()

    def _wrap(key: K, fn: Callable[[], T]) -> T:
        with lock:
            started[key] = time.monotonic()
        return fn()

    # hung calls hold their worker, so cap the whole batch as well
    waves = math.ceil(len(calls) / max_workers)
    batch_deadline = time.monotonic() + timeout * (waves + 1)

    results: dict[K, T | AnalyticsError] = {}
    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures: dict[Future, K] = {executor.submit(_wrap, k, fn): k for k, fn in calls.items()}
    pending = set(futures)

    try:
        while pending:
            done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for fut in done:
                key = futures[fut]
                results[key] = _outcome(key, fut)

            now = time.monotonic()
            for fut in list(pending):
                key = futures[fut]
                with lock:
                    t0 = started.get(key)
                expired = (t0 is not None and now - t0 > timeout) or now > batch_deadline
                if expired:
                    pending.discard(fut)
                    fut.cancel()
                    logger.warning("price call for %r timed out after %.1fs", key, timeout)
                    results[key] = DataUnavailable(f"{key!r}: timed out after {timeout:.1f}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return {k: results[k] for k in calls}


def _outcome(key: Hashable, fut: Future) -> object:
    try:
        return fut.result()
    except AnalyticsError as e:
        logger.warning("price call for %r failed: %s", key, e)
        return e
    except Exception as e:
        logger.exception("price call for %r raised", key)
        return DataUnavailable(f"{key!r}: {e}")

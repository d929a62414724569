from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from app.errors import CallTimeout, is_retryable

logger = logging.getLogger("questpay.retry")

T = TypeVar("T")

# One pool per call label. A timed-out call keeps its thread until it returns.
POOL_SIZE = 8
_pools: dict[str, ThreadPoolExecutor] = {}
_busy: dict[str, int] = {}
_pools_lock = threading.Lock()


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float, multiplier: float = 2.0) -> float:
    # attempt is 1-based: 1 -> base, 2 -> base*2, 3 -> base*4 ... capped
    delay = base_delay * (multiplier ** max(0, attempt - 1))
    return min(delay, max_delay)


def retry_transient(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``fn`` up to ``attempts`` times.

    Only errors whose kind is transient (network/timeout) are retried; anything
    else propagates on the first failure. ``on_retry(next_attempt, exc)`` runs
    before each retry so callers can record the attempt.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return fn()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= attempts:
                raise
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            logger.warning(
                "transient failure on attempt %s/%s, retrying in %.2fs: %s",
                attempt,
                attempts,
                delay,
                exc,
            )
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, exc)
            sleep(delay)


def _pool_for(label: str) -> ThreadPoolExecutor:
    with _pools_lock:
        pool = _pools.get(label)
        if pool is None:
            prefix = "external-" + "-".join(label.split())
            pool = ThreadPoolExecutor(max_workers=POOL_SIZE, thread_name_prefix=prefix)
            _pools[label] = pool
            _busy[label] = 0
        return pool


def _track(label: str, delta: int) -> int:
    with _pools_lock:
        _busy[label] += delta
        return _busy[label]


def busy_threads(label: str) -> int:
    with _pools_lock:
        return _busy.get(label, 0)


def call_with_timeout(fn: Callable[[], T], *, timeout_s: float, label: str = "external call") -> T:
    """
    Run ``fn`` on the pool for ``label`` and wait at most ``timeout_s``.
    Each label (field extractor, transfer rail, ...) has its own pool so a
    collaborator that hangs cannot starve calls to the others.
    """
    pool = _pool_for(label)

    def run() -> T:
        _track(label, +1)
        try:
            return fn()
        finally:
            _track(label, -1)

    future = pool.submit(run)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeout:
        started = not future.cancel()
        logger.warning(
            "%s timed out after %gs (started=%s); %d/%d pool threads busy",
            label,
            timeout_s,
            started,
            busy_threads(label),
            POOL_SIZE,
        )
        raise CallTimeout(f"{label} timed out after {timeout_s:g}s")

"""
Shared thread pool and reduction helpers for data-parallel loops.

Every data-parallel loop in the package (per-tree training, split-candidate
search, gradient accumulation, evaluation counting) runs on one module-level
``ThreadPoolExecutor``. Results that must be combined go through
:class:`Reduction`: each task returns a local partial and partials are merged
one at a time under a lock.

Work submitted from a thread that already belongs to the pool runs inline, so
nested loops never wait on the pool they occupy.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import (
    Any, Callable, Generic, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar
)

from .config import config

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')

DEFAULT_NUM_THREADS = 5

_pool: Optional[ThreadPoolExecutor] = None
_pool_size: Optional[int] = None
_pool_lock = threading.Lock()
_worker_state = threading.local()


def _reset_after_fork() -> None:
    global _pool, _pool_size, _pool_lock
    # Pool threads do not survive fork; the child builds its own pool lazily.
    _pool = None
    _pool_size = None
    _pool_lock = threading.Lock()


if hasattr(os, 'register_at_fork'):
    os.register_at_fork(after_in_child=_reset_after_fork)


def get_num_threads() -> int:
    """Number of threads used by the shared pool."""
    if _pool_size is not None:
        return _pool_size
    configured = config.get('parallel.num_threads', DEFAULT_NUM_THREADS)
    return max(1, int(configured or DEFAULT_NUM_THREADS))


def set_num_threads(num_threads: int) -> None:
    """Resize the shared pool. Running tasks finish on the old pool."""
    global _pool, _pool_size
    if num_threads < 1:
        raise ValueError(f"num_threads must be at least 1, got {num_threads}")
    with _pool_lock:
        old_pool = _pool
        _pool = None
        _pool_size = num_threads
    if old_pool is not None:
        old_pool.shutdown(wait=False)
    logger.debug(f"Shared thread pool resized to {num_threads} threads")


@contextmanager
def thread_count(num_threads: Optional[int]) -> Iterator[int]:
    """
    Run a block with the shared pool sized to ``num_threads``.

    The previous size is restored on exit. ``None`` or the current size leaves
    the pool untouched.
    """
    previous = get_num_threads()
    if not num_threads or num_threads == previous:
        yield previous
        return
    set_num_threads(num_threads)
    try:
        yield num_threads
    finally:
        set_num_threads(previous)


def _get_pool() -> ThreadPoolExecutor:
    global _pool, _pool_size
    with _pool_lock:
        if _pool is None:
            size = _pool_size or get_num_threads()
            _pool_size = size
            _pool = ThreadPoolExecutor(max_workers=size, thread_name_prefix='loan_ensemble')
        return _pool


def in_worker_thread() -> bool:
    """True when called from inside a shared-pool task."""
    return getattr(_worker_state, 'active', False)


def _run_marked(func: Callable[..., T], *args: Any) -> T:
    _worker_state.active = True
    try:
        return func(*args)
    finally:
        _worker_state.active = False


def split_range(n_items: int, n_parts: int) -> List[Tuple[int, int]]:
    """Split ``range(n_items)`` into ``n_parts`` contiguous ``(start, stop)`` blocks.

    Block sizes are ``n_items // n_parts`` with one extra item for each of the
    first ``n_items % n_parts`` blocks, so N=10 over 3 parts gives 4, 3, 3.

    Args:
        n_items: Number of items to split
        n_parts: Number of blocks

    Returns:
        List of half-open ranges covering every index exactly once
    """
    if n_parts < 1:
        raise ValueError(f"n_parts must be at least 1, got {n_parts}")
    if n_items < 0:
        raise ValueError(f"n_items must be non-negative, got {n_items}")

    base, extra = divmod(n_items, n_parts)
    blocks = []
    start = 0
    for part in range(n_parts):
        size = base + (1 if part < extra else 0)
        blocks.append((start, start + size))
        start += size
    return blocks


def parallel_map(func: Callable[[T], R], items: Sequence[T]) -> List[R]:
    """Apply ``func`` to every item on the shared pool, preserving order."""
    items = list(items)
    if len(items) <= 1 or in_worker_thread() or get_num_threads() == 1:
        return [func(item) for item in items]

    pool = _get_pool()
    futures = [pool.submit(_run_marked, func, item) for item in items]
    return [future.result() for future in futures]


class Reduction(Generic[R]):
    """Accumulator that merges partial results under exclusive access."""

    def __init__(self, initial: R, merge: Callable[[R, Any], R]):
        self._value = initial
        self._merge = merge
        self._lock = threading.Lock()

    def add(self, partial: Any) -> None:
        with self._lock:
            self._value = self._merge(self._value, partial)

    @property
    def value(self) -> R:
        with self._lock:
            return self._value


def parallel_reduce(
    tasks: Iterable[Callable[[], T]],
    merge: Callable[[R, T], R],
    initial: R
) -> R:
    """Run partial-result tasks on the shared pool and merge their outputs.

    Args:
        tasks: Zero-argument callables, each returning a local partial result
        merge: Combines the running value with one partial
        initial: Starting value of the reduction

    Returns:
        The merged value once every task has completed
    """
    tasks = list(tasks)
    reduction = Reduction(initial, merge)

    def run(task: Callable[[], T]) -> None:
        reduction.add(task())

    if len(tasks) <= 1 or in_worker_thread() or get_num_threads() == 1:
        for task in tasks:
            run(task)
        return reduction.value

    pool = _get_pool()
    futures = [pool.submit(_run_marked, run, task) for task in tasks]
    wait(futures)
    for future in futures:
        # Re-raise the first task failure in submission order.
        future.result()
    return reduction.value


def reduce_over_chunks(
    n_items: int,
    chunk_fn: Callable[[int, int], T],
    merge: Callable[[R, T], R],
    initial: R,
    n_chunks: Optional[int] = None
) -> R:
    """Split ``range(n_items)`` into contiguous chunks and reduce ``chunk_fn(start, stop)``."""
    n_chunks = n_chunks or get_num_threads()
    n_chunks = max(1, min(n_chunks, n_items)) if n_items else 1
    tasks = [
        (lambda start=start, stop=stop: chunk_fn(start, stop))
        for start, stop in split_range(n_items, n_chunks)
        if stop > start
    ]
    return parallel_reduce(tasks, merge, initial)

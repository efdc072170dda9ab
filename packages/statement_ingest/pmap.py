"""Order-preserving bounded fan-out over ``ThreadPoolExecutor``.

Used to classify independent transactions in parallel. Outcomes do not depend
on scheduling: results are stitched back in input order, and the first mapper
error cancels work that has not started and propagates unchanged.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    if concurrency == 1:
        return [mapper(item) for item in iterable]

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    pending: dict[Future[OutT], int] = {}

    def _top_up(pool: ThreadPoolExecutor) -> None:
        while len(pending) < concurrency:
            try:
                idx, item = next(it)
            except StopIteration:
                return
            pending[pool.submit(mapper, item)] = idx

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        _top_up(pool)
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception:
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise
            _top_up(pool)

    return [results[i] for i in range(len(results))]


__all__ = ["p_map"]

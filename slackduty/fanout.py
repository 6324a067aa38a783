# slackduty/fanout.py
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def fan_out(
    fn: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int | None = None,
    label: str = "task",
) -> list[R]:
    """
    Run ``fn(item)`` for every item on a thread pool and collect the results
    in completion order.

    Every task runs to completion. If any task raised, the first exception
    seen while draining ``as_completed`` is re-raised once the pool is done;
    later ones are logged at DEBUG and dropped.

    ``max_workers=None`` means one thread per item.
    """
    items = list(items)
    if not items:
        return []

    workers = len(items) if max_workers is None else max(1, min(len(items), max_workers))
    results: list[R] = []
    first_error: BaseException | None = None

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"slackduty-{label}") as pool:
        futures = {pool.submit(fn, item): item for item in items}
        for fut in as_completed(futures):
            try:
                results.append(fut.result())
            except Exception as e:
                if first_error is None:
                    first_error = e
                else:
                    LOG.debug("Discarding additional %s error for %r: %r", label, futures[fut], e)

    if first_error is not None:
        raise first_error
    return results

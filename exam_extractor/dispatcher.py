"""
Dispatcher
==========
Bounded-concurrency runner shared by the unit layer (units of one
document) and the batch layer (documents of one run).

Results come back indexed by original position, not completion order,
and a failure in one invocation is captured into that item's slot.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class DispatchResult(Generic[R]):
    """Value or captured failure for one dispatched item."""
    index: int
    value: Optional[R] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.exception is None


def run_with_concurrency(
    items: Sequence[T],
    process: Callable[[T, int], R],
    concurrency: int = 4,
    name: str = "dispatch",
) -> list[DispatchResult[R]]:
    """
    Run ``process(item, index)`` for every item with at most
    ``concurrency`` invocations in flight.

    Returns:
        One DispatchResult per item, in input order.
    """
    if not items:
        return []

    workers = max(1, min(concurrency, len(items)))
    results: list[Optional[DispatchResult[R]]] = [None] * len(items)

    def _run(index: int, item: T) -> None:
        # Each worker writes only its own slot.
        try:
            results[index] = DispatchResult(
                index=index, value=process(item, index)
            )
        except Exception as e:
            logger.error(f"{name}[{index}] failed: {e}")
            results[index] = DispatchResult(
                index=index, error=str(e) or type(e).__name__, exception=e
            )

    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix=name
    ) as executor:
        for index, item in enumerate(items):
            executor.submit(_run, index, item)

    return results

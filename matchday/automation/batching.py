"""
Batch executor with bounded concurrency and inter-batch pacing.

Items are split into batches of `batch_size`. Each batch runs concurrently
under a semaphore with an all-settled policy: a failing item never cancels its
siblings. All outcomes of a batch are collected before the pause and the next
batch. The result list always has one record per input item, in input order.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchItemResult(Generic[T]):
    item: T
    success: bool
    duration_ms: int
    value: Any = None
    error: Optional[BaseException] = None


def partition(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split into ceil(N / batch_size) consecutive chunks."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


async def run_in_batches(
    items: Sequence[T],
    action: Callable[[T], Awaitable[Any]],
    batch_size: int = 3,
    delay_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[BatchItemResult[T]]:
    """
    Run `action` over `items`, `batch_size` at a time.

    An item succeeds when `action` returns; any exception is captured in the
    item's result. The pause is observed between batches only.
    """
    batches = partition(items, batch_size)
    semaphore = asyncio.Semaphore(batch_size)
    results: list[BatchItemResult[T]] = []

    async def _run_one(item: T) -> BatchItemResult[T]:
        async with semaphore:
            started = time.monotonic()
            try:
                value = await action(item)
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                return BatchItemResult(item=item, success=False, duration_ms=duration_ms, error=e)
            duration_ms = int((time.monotonic() - started) * 1000)
            return BatchItemResult(item=item, success=True, duration_ms=duration_ms, value=value)

    for index, batch in enumerate(batches):
        batch_results = await asyncio.gather(*(_run_one(item) for item in batch))
        results.extend(batch_results)

        failed = sum(1 for r in batch_results if not r.success)
        logger.debug(
            f"[BATCH] {index + 1}/{len(batches)} done: {len(batch) - failed} ok, {failed} failed"
        )

        if index < len(batches) - 1 and delay_seconds > 0:
            await sleep(delay_seconds)

    return results

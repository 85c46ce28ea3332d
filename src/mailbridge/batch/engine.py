"""Chunked concurrent execution of a per-item operation.

``run_batch`` splits the id list into consecutive chunks, runs every item of
a chunk concurrently, and waits for the whole chunk to settle before starting
the next one, so at most ``chunk_size`` operations are in flight.  Each
item's failure is captured in its own ``ItemOutcome``; nothing is retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import Any

import structlog

from mailbridge.batch.models import BatchReport, ItemOutcome
from mailbridge.errors import RemoteOperationFailure
from mailbridge.observability.metrics import BATCH_ITEMS

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 50

ItemOperation = Callable[[str], Awaitable[Any]]


def chunked(ids: Sequence[str], chunk_size: int) -> Iterator[Sequence[str]]:
    """Yield consecutive slices of ``ids`` with at most ``chunk_size`` items."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    for start in range(0, len(ids), chunk_size):
        yield ids[start : start + chunk_size]


def failure_reason(exc: BaseException) -> str:
    """Return the human-readable reason recorded for a failed item."""
    if isinstance(exc, RemoteOperationFailure):
        return exc.message
    if isinstance(exc, asyncio.CancelledError):
        return "cancelled"
    return str(exc) or type(exc).__name__


async def run_batch(
    ids: Sequence[str],
    operation: ItemOperation,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BatchReport:
    """Run ``operation`` for every id and report per-item outcomes.

    Args:
        ids: Item ids in the order they should appear in the report.
        operation: Coroutine function called once per id.  Raising marks
            the item failed; returning (any value) marks it succeeded.
        chunk_size: Maximum number of concurrent operations.

    Returns:
        A ``BatchReport`` with one entry per input id, in input order.

    Raises:
        ValueError: If ``chunk_size`` is not positive.
    """
    outcomes: list[ItemOutcome] = []

    for index, chunk in enumerate(chunked(ids, chunk_size)):
        results = await asyncio.gather(
            *(operation(item_id) for item_id in chunk),
            return_exceptions=True,
        )
        chunk_failures = 0
        for item_id, result in zip(chunk, results, strict=True):
            if isinstance(result, Exception | asyncio.CancelledError):
                chunk_failures += 1
                outcomes.append(ItemOutcome(id=item_id, success=False, reason=failure_reason(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(ItemOutcome(id=item_id, success=True))

        BATCH_ITEMS.labels(outcome="success").inc(len(chunk) - chunk_failures)
        BATCH_ITEMS.labels(outcome="failure").inc(chunk_failures)
        logger.debug(
            "batch_chunk_completed",
            chunk=index,
            size=len(chunk),
            failed=chunk_failures,
        )

    report = BatchReport(total=len(outcomes), per_item=tuple(outcomes))
    logger.info("batch_completed", total=report.total, failed=report.failed)
    return report

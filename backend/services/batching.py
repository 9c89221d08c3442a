"""
Chunked batch writes with bounded parallelism.

A failed chunk (or the failed part of one) is counted and reported, never
raised: the remaining chunks still run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Sequence, TypeVar

from config import WRITE_CONCURRENCY

logger = logging.getLogger("batching")

T = TypeVar("T")


class PartialBatchError(Exception):
    """A chunk worker wrote `succeeded` rows before failing on the rest"""

    def __init__(self, message: str, succeeded: int):
        super().__init__(message)
        self.succeeded = succeeded


@dataclass
class BatchOutcome:
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "BatchOutcome") -> "BatchOutcome":
        return BatchOutcome(
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_chunks(
    items: Sequence[T],
    chunk_size: int,
    worker: Callable[[Sequence[T]], Awaitable[object]],
    concurrency: int = WRITE_CONCURRENCY,
    label: str = "batch",
) -> BatchOutcome:
    """
    Run worker over each chunk of items, at most `concurrency` chunks at a time.

    Each chunk counts as len(chunk) successes or len(chunk) failures, except
    when the worker raises PartialBatchError: then only the rows it did not
    write are failures.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))
    outcome = BatchOutcome()

    async def run_one(index: int, chunk: Sequence[T]):
        async with semaphore:
            try:
                await worker(chunk)
            except Exception as e:
                written = e.succeeded if isinstance(e, PartialBatchError) else 0
                failed = len(chunk) - written
                logger.error(f"{label} chunk {index} failed ({failed}/{len(chunk)} rows): {e}")
                outcome.succeeded += written
                outcome.failed += failed
                outcome.errors.append(f"chunk {index}: {e}")
            else:
                outcome.succeeded += len(chunk)

    await asyncio.gather(
        *(run_one(i, chunk) for i, chunk in enumerate(chunked(items, chunk_size)))
    )
    return outcome

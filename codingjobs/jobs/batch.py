"""Batch processor: run a job over fixed-size batches with checkpoints.

Before every batch the live job row is re-read. A job that was paused,
cancelled, failed, deleted or superseded by a resumed run stops there and
hands back whatever was accumulated so far.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from codingjobs.jobs.models import JobStatus
from codingjobs.jobs.store import MAX_RUNNING_PROGRESS, JobStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 500

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")
AccT = TypeVar("AccT")

ProgressReporter = Callable[[float], Awaitable[None]]


def overall_progress(start: int, batch_len: int, total: int, fraction: float) -> int:
    """Overall percentage for ``fraction`` of the batch that begins at ``start``."""
    if total <= 0:
        return 0
    fraction = min(max(fraction, 0.0), 1.0)
    value = math.floor(start / total * 100 + fraction * (batch_len / total) * 100)
    return min(value, MAX_RUNNING_PROGRESS)


@dataclass(slots=True)
class BatchRunOutcome(Generic[AccT]):
    result: AccT
    processed_items: int
    total_items: int
    stopped_reason: str | None = None

    @property
    def finished(self) -> bool:
        return self.stopped_reason is None


class BatchProcessor:
    """Split a job's items into batches and checkpoint between them."""

    def __init__(self, store: JobStore, batch_size: int = BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self.batch_size = batch_size

    async def stop_reason(self, job_id: str, attempt: int) -> str | None:
        """Why the job must stop now, or None to keep going."""
        job = await self._store.get(job_id)
        if job is None:
            return "deleted"
        if job.status != JobStatus.PROCESSING:
            return job.status.value
        if job.attempt != attempt:
            return "superseded"
        return None

    async def run(
        self,
        job_id: str,
        attempt: int,
        items: Sequence[ItemT],
        process_batch: Callable[[Sequence[ItemT], ProgressReporter], Awaitable[ResultT]],
        merge: Callable[[AccT, ResultT], AccT],
        initial: AccT,
    ) -> BatchRunOutcome[AccT]:
        """Process ``items`` batch by batch.

        Args:
            job_id: Background job being executed
            attempt: Dispatch attempt of this run
            items: Ordered work items
            process_batch: Handles one batch; gets a callback taking the
                completed fraction (0..1) of that batch
            merge: Folds a batch result into the accumulator
            initial: Starting accumulator

        Returns:
            BatchRunOutcome with the accumulated result; ``stopped_reason`` is
            set when the job was stopped between batches

        Raises:
            Exception: Anything raised by ``process_batch`` propagates
        """
        total = len(items)
        accumulated = initial

        for start in range(0, total, self.batch_size):
            reason = await self.stop_reason(job_id, attempt)
            if reason is not None:
                logger.info(
                    "Job %s stopped after %d/%d items (%s)", job_id, start, total, reason
                )
                return BatchRunOutcome(accumulated, start, total, reason)

            batch = items[start : start + self.batch_size]

            async def report(fraction: float, _start: int = start, _len: int = len(batch)) -> None:
                await self._store.set_progress(
                    job_id, overall_progress(_start, _len, total, fraction)
                )

            batch_result = await process_batch(batch, report)
            accumulated = merge(accumulated, batch_result)
            await report(1.0)

            logger.debug("Job %s processed batch %d-%d of %d", job_id, start, start + len(batch), total)

        return BatchRunOutcome(accumulated, total, total)

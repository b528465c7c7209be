"""Unit tests for the batch processor and its checkpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from codingjobs.jobs.batch import BatchProcessor, overall_progress
from codingjobs.jobs.models import JobKind, JobStatus
from codingjobs.jobs.store import JobStore


@pytest.fixture
def store(session_maker) -> JobStore:
    return JobStore(session_maker)


@pytest_asyncio.fixture()
async def running_job(store):
    job = await store.create(1, JobKind.STATISTICS, {"workspace_id": 1})
    await store.claim(job.id)
    return job


def add(total: int, batch_result: int) -> int:
    return total + batch_result


class TestOverallProgress:
    def test_scales_batch_fraction_into_total(self):
        assert overall_progress(0, 500, 1000, 0.5) == 25
        assert overall_progress(500, 500, 1000, 0.0) == 50

    def test_never_reports_completion(self):
        assert overall_progress(500, 500, 1000, 1.0) == 99

    def test_empty_job(self):
        assert overall_progress(0, 0, 0, 1.0) == 0


class TestBatchProcessor:
    def test_rejects_non_positive_batch_size(self):
        with pytest.raises(ValueError):
            BatchProcessor(MagicMock(), batch_size=0)

    @pytest.mark.asyncio
    async def test_processes_all_batches(self, store, running_job):
        processor = BatchProcessor(store, batch_size=500)
        seen: list[int] = []

        async def process(batch, report):
            seen.append(len(batch))
            await report(0.5)
            return len(batch)

        outcome = await processor.run(running_job.id, 0, list(range(1200)), process, add, 0)

        assert seen == [500, 500, 200]
        assert outcome.finished
        assert outcome.result == 1200
        assert outcome.processed_items == outcome.total_items == 1200
        assert (await store.get(running_job.id)).progress == 99

    @pytest.mark.asyncio
    async def test_pause_stops_at_next_batch(self, store, running_job):
        processor = BatchProcessor(store, batch_size=2)

        async def process(batch, report):
            await store.pause(running_job.id)
            return len(batch)

        outcome = await processor.run(running_job.id, 0, list(range(6)), process, add, 0)

        assert not outcome.finished
        assert outcome.stopped_reason == JobStatus.PAUSED.value
        assert outcome.processed_items == 2
        assert outcome.result == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store, running_job):
        await store.cancel_running(running_job.id)
        processor = BatchProcessor(store)

        async def process(batch, report):
            raise AssertionError("must not run")

        outcome = await processor.run(running_job.id, 0, [1, 2, 3], process, add, 0)

        assert outcome.stopped_reason == "cancelled"
        assert outcome.processed_items == 0

    @pytest.mark.asyncio
    async def test_stale_attempt_is_superseded(self, store, running_job):
        await store.pause(running_job.id)
        await store.resume(running_job.id)

        assert await BatchProcessor(store).stop_reason(running_job.id, 0) == "superseded"
        assert await BatchProcessor(store).stop_reason(running_job.id, 1) is None

    @pytest.mark.asyncio
    async def test_deleted_job(self, store, running_job):
        await store.delete(running_job.id)

        assert await BatchProcessor(store).stop_reason(running_job.id, 0) == "deleted"

    @pytest.mark.asyncio
    async def test_errors_propagate(self, store, running_job):
        async def process(batch, report):
            raise RuntimeError("batch failed")

        with pytest.raises(RuntimeError, match="batch failed"):
            await BatchProcessor(store).run(running_job.id, 0, [1], process, add, 0)

"""Unit tests for the job queue manager control surface."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from codingjobs.jobs.manager import ArqDispatcher, JobQueueManager, validate_job_id
from codingjobs.jobs.models import JobKind, JobQueueUnavailableError, JobStatus
from codingjobs.jobs.store import JobStore
from codingjobs.models import ValidationError


@pytest.fixture
def dispatcher() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def manager(session_maker, dispatcher) -> JobQueueManager:
    return JobQueueManager(JobStore(session_maker), dispatcher)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_persists_and_dispatches(self, manager, dispatcher):
        job = await manager.create(1, JobKind.EXPORT, {"export_type": "by-coder"})

        dispatcher.assert_awaited_once_with(job.id, 0)
        stored = await manager.get_job(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.payload == {"workspace_id": 1, "export_type": "by-coder"}

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, manager, dispatcher):
        with pytest.raises(ValidationError, match="Unknown job kind"):
            await manager.create(1, "reindex", {})

        dispatcher.assert_not_awaited()
        assert await manager.get_all_jobs(1) == []

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected(self, manager):
        with pytest.raises(ValidationError):
            await manager.create(1, JobKind.TEST_PERSON_CODING, {"person_ids": []})

        assert await manager.get_all_jobs(1) == []

    @pytest.mark.asyncio
    async def test_queue_unavailable_marks_job_failed(self, manager, dispatcher):
        dispatcher.side_effect = JobQueueUnavailableError("Job queue unavailable: down")

        with pytest.raises(JobQueueUnavailableError):
            await manager.create(1, JobKind.STATISTICS, {})

        [job] = await manager.get_all_jobs(1)
        assert job["status"] == JobStatus.FAILED.value
        assert "down" in job["error"]


class TestStatus:
    @pytest.mark.asyncio
    async def test_invalid_job_id(self, manager):
        with pytest.raises(ValidationError):
            await manager.get_status("../etc/passwd")

    @pytest.mark.asyncio
    async def test_unknown_job_id(self, manager):
        assert await manager.get_status("f" * 32) is None

    @pytest.mark.asyncio
    async def test_status_view(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})

        view = await manager.get_status(job.id)

        assert view.to_dict() == {"status": "pending", "progress": 0, "result": None, "error": None}

    def test_validate_job_id(self):
        assert validate_job_id("a" * 32) == "a" * 32
        with pytest.raises(ValidationError):
            validate_job_id("A" * 32)


class TestControl:
    @pytest.mark.asyncio
    async def test_pause_and_resume_redispatches_with_new_attempt(self, manager, dispatcher):
        job = await manager.create(1, JobKind.STATISTICS, {})
        await manager.store.claim(job.id)
        await manager.store.set_progress(job.id, 30)

        paused = await manager.pause(job.id)
        resumed = await manager.resume(job.id)

        assert paused.success and resumed.success
        dispatcher.assert_awaited_with(job.id, 1)
        view = await manager.get_status(job.id)
        assert view.status == JobStatus.PROCESSING
        assert view.progress == 30

    @pytest.mark.asyncio
    async def test_pause_pending_job_fails(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})

        result = await manager.pause(job.id)

        assert not result.success
        assert "pending" in result.message

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})

        assert not (await manager.resume(job.id)).success

    @pytest.mark.asyncio
    async def test_resume_queue_failure_marks_failed(self, manager, dispatcher):
        job = await manager.create(1, JobKind.STATISTICS, {})
        await manager.store.claim(job.id)
        await manager.pause(job.id)
        dispatcher.side_effect = JobQueueUnavailableError("Job queue unavailable")

        result = await manager.resume(job.id)

        assert not result.success
        assert (await manager.get_status(job.id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})

        result = await manager.cancel(job.id)

        assert result.success
        assert result.message == "Job cancelled and removed from queue"

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})
        await manager.store.claim(job.id)

        result = await manager.cancel(job.id)

        assert result.success
        assert "next checkpoint" in result.message
        assert (await manager.get_status(job.id)).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})
        await manager.cancel(job.id)

        again = await manager.cancel(job.id)

        assert again.success
        assert again.message == "Job already cancelled"

    @pytest.mark.asyncio
    async def test_cancel_completed_job_fails(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})
        await manager.store.claim(job.id)
        await manager.store.complete(job.id, 0, {})

        result = await manager.cancel(job.id)

        assert not result.success
        assert "completed" in result.message

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, manager):
        result = await manager.cancel("0" * 32)

        assert not result.success
        assert result.message == "Job not found"

    @pytest.mark.asyncio
    async def test_restart_failed_job_creates_new_job(self, manager, dispatcher):
        job = await manager.create(1, JobKind.EXPORT, {"export_type": "detailed"})
        await manager.store.claim(job.id)
        await manager.store.fail(job.id, 0, "disk full")

        result = await manager.restart(job.id)

        assert result.success
        assert result.job_id != job.id
        new_job = await manager.get_job(result.job_id)
        assert new_job.restarted_from == job.id
        assert new_job.payload == job.payload
        assert (await manager.get_status(job.id)).status == JobStatus.FAILED
        dispatcher.assert_awaited_with(result.job_id, 0)

    @pytest.mark.asyncio
    async def test_restart_requires_failed(self, manager):
        job = await manager.create(1, JobKind.STATISTICS, {})

        assert not (await manager.restart(job.id)).success

    @pytest.mark.asyncio
    async def test_delete_runs_cleanup(self, manager, tmp_path):
        export_file = tmp_path / "export.csv"
        export_file.write_text("id\n")
        job = await manager.create(1, JobKind.EXPORT, {})
        await manager.store.claim(job.id)
        await manager.store.complete(job.id, 0, {"file_path": str(export_file)})

        result = await manager.delete(job.id)

        assert result.success
        assert not export_file.exists()
        assert await manager.get_job(job.id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_job(self, manager):
        assert not (await manager.delete("0" * 32)).success

    @pytest.mark.asyncio
    async def test_get_all_jobs_filters_by_kind(self, manager):
        await manager.create(1, JobKind.STATISTICS, {})
        export = await manager.create(1, JobKind.EXPORT, {"export_type": "by-coder"})

        jobs = await manager.get_all_jobs(1, "export")

        assert [job["id"] for job in jobs] == [export.id]
        assert jobs[0]["export_type"] == "by-coder"


class TestArqDispatcher:
    @pytest.mark.asyncio
    async def test_enqueues_with_attempt_scoped_id(self):
        redis = MagicMock()
        redis.enqueue_job = AsyncMock()

        with patch("codingjobs.jobs.manager.get_queue", AsyncMock(return_value=redis)):
            await ArqDispatcher()("a" * 32, 2)

        redis.enqueue_job.assert_awaited_once_with(
            "run_background_job", "a" * 32, 2, _job_id=f"{'a' * 32}:2"
        )

    @pytest.mark.asyncio
    async def test_redis_error_becomes_queue_unavailable(self):
        failing = AsyncMock(side_effect=RedisConnectionError("refused"))

        with patch("codingjobs.jobs.manager.get_queue", failing):
            with pytest.raises(JobQueueUnavailableError, match="refused"):
                await ArqDispatcher()("a" * 32, 0)

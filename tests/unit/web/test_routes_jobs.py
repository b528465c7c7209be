"""Tests for codingjobs.web.routes.jobs - Background job routes."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from codingjobs.jobs.models import (
    ActionResult,
    BackgroundJob,
    JobKind,
    JobQueueUnavailableError,
    JobStatus,
)
from codingjobs.models import ValidationError
from codingjobs.web.dependencies import get_job_manager
from codingjobs.web.routes import jobs

JOB_ID = "a" * 32


def make_job(workspace_id: int = 1, status: JobStatus = JobStatus.PENDING, **overrides) -> BackgroundJob:
    fields = dict(
        id=JOB_ID,
        workspace_id=workspace_id,
        kind=JobKind.EXPORT,
        payload={"workspace_id": workspace_id, "export_type": "detailed"},
        status=status,
        progress=0,
        result=None,
        error=None,
        attempt=0,
        restarted_from=None,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        started_at=None,
        finished_at=None,
    )
    fields.update(overrides)
    return BackgroundJob(**fields)


@pytest.fixture
def manager():
    """Mock job queue manager."""
    mock = MagicMock()
    mock.get_job = AsyncMock(return_value=make_job())
    mock.create = AsyncMock(return_value=make_job())
    mock.get_all_jobs = AsyncMock(return_value=[])
    for action in ("cancel", "pause", "resume", "restart", "delete"):
        setattr(mock, action, AsyncMock(return_value=ActionResult(True, f"{action} ok", JOB_ID)))
    return mock


@pytest.fixture
def client(manager):
    """Create test client with the jobs router and a mocked manager."""
    app = FastAPI()
    app.include_router(jobs.router)
    app.dependency_overrides[get_job_manager] = lambda: manager
    return TestClient(app)


class TestCreateJobs:
    """Tests for POST /api/workspaces/{workspace_id}/jobs/*."""

    def test_start_export(self, client, manager):
        response = client.post("/api/workspaces/1/jobs/export", json={"export_type": "detailed"})

        assert response.status_code == 200
        data = response.json()
        assert data["job_id"] == JOB_ID
        assert data["status"] == "pending"
        manager.create.assert_awaited_once_with(1, JobKind.EXPORT, {"export_type": "detailed"})

    def test_start_test_person_coding(self, client, manager):
        response = client.post(
            "/api/workspaces/1/jobs/test-person-coding", json={"person_ids": [1, 2]}
        )

        assert response.status_code == 200
        kind = manager.create.await_args.args[1]
        assert kind == JobKind.TEST_PERSON_CODING

    def test_empty_person_ids_rejected(self, client, manager):
        response = client.post("/api/workspaces/1/jobs/test-person-coding", json={"person_ids": []})

        assert response.status_code == 422
        manager.create.assert_not_awaited()

    def test_validation_error_is_400(self, client, manager):
        manager.create.side_effect = ValidationError("bad payload")

        response = client.post("/api/workspaces/1/jobs/statistics", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == "bad payload"

    def test_queue_unavailable_is_503(self, client, manager):
        manager.create.side_effect = JobQueueUnavailableError("Job queue unavailable")

        response = client.post("/api/workspaces/1/jobs/statistics", json={})

        assert response.status_code == 503


class TestJobStatus:
    """Tests for GET /api/workspaces/{workspace_id}/jobs/{job_id}."""

    def test_status(self, client, manager):
        manager.get_job.return_value = make_job(status=JobStatus.PROCESSING, progress=42)

        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}")

        assert response.status_code == 200
        assert response.json() == {
            "status": "processing",
            "progress": 42,
            "result": None,
            "error": None,
        }

    def test_unknown_job_is_404(self, client, manager):
        manager.get_job.return_value = None

        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}")

        assert response.status_code == 404

    def test_job_of_other_workspace_is_404(self, client, manager):
        manager.get_job.return_value = make_job(workspace_id=2)

        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}")

        assert response.status_code == 404

    def test_invalid_job_id_is_400(self, client, manager):
        manager.get_job.side_effect = ValidationError("Invalid job id")

        response = client.get("/api/workspaces/1/jobs/not-a-job")

        assert response.status_code == 400

    def test_list_jobs_passes_kind(self, client, manager):
        manager.get_all_jobs.return_value = [{"id": JOB_ID}]

        response = client.get("/api/workspaces/1/jobs", params={"kind": "export"})

        assert response.json() == [{"id": JOB_ID}]
        manager.get_all_jobs.assert_awaited_once_with(1, "export")


class TestJobActions:
    """Tests for GET /api/workspaces/{workspace_id}/jobs/{job_id}/{action}."""

    @pytest.mark.parametrize("action", ["cancel", "pause", "resume", "restart", "delete"])
    def test_action_delegates_to_manager(self, client, manager, action):
        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}/{action}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": f"{action} ok", "job_id": JOB_ID}
        getattr(manager, action).assert_awaited_once_with(JOB_ID)

    def test_failed_action_returns_message(self, client, manager):
        manager.pause.return_value = ActionResult(False, "Only processing jobs can be paused", JOB_ID)

        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}/pause")

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_action_on_other_workspace_is_404(self, client, manager):
        manager.get_job.return_value = make_job(workspace_id=2)

        response = client.get(f"/api/workspaces/1/jobs/{JOB_ID}/cancel")

        assert response.status_code == 404
        manager.cancel.assert_not_awaited()

"""Tests for codingjobs.web.routes.distribution - Case distribution routes."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from codingjobs.distribution.models import AssignmentPlan, DistributionWarning, DoubleCodingInfo
from codingjobs.distribution.service import CreatedJobSummary, DistributionCreationResult
from codingjobs.models import ValidationError
from codingjobs.web.routes import distribution

REQUEST_BODY = {
    "selected_variables": [{"unit_name": "UNIT1", "variable_id": "var1"}],
    "selected_coders": [{"id": 1, "name": "alice"}],
    "double_coding_percentage": 20,
}


@pytest.fixture
def client():
    """Create test client with the distribution router."""
    app = FastAPI()
    app.include_router(distribution.router)
    return TestClient(app)


@pytest.fixture
def mock_db_session():
    """Mock database session with async context manager."""
    session = AsyncMock()
    async_cm = AsyncMock()
    async_cm.__aenter__.return_value = session
    async_cm.__aexit__.return_value = None
    return async_cm


def sample_plan() -> AssignmentPlan:
    return AssignmentPlan(
        distribution={"alice": {"UNIT1::var1": 10}},
        double_coding_info={"UNIT1::var1": DoubleCodingInfo(10, 2, 8, {"alice": 2})},
        warnings=[
            DistributionWarning(
                kind="partially_assigned",
                item="UNIT1::var1",
                message="5 cases already in coding jobs",
                cases_in_jobs=5,
                available_cases=10,
            )
        ],
    )


class TestPreview:
    @patch("codingjobs.web.routes.distribution.preview_distribution")
    @patch("codingjobs.web.routes.distribution.get_session")
    def test_preview_returns_plan(self, mock_get_session, mock_preview, client, mock_db_session):
        mock_get_session.return_value = mock_db_session
        mock_preview.return_value = sample_plan()

        response = client.post("/api/workspaces/3/coding/distribution/preview", json=REQUEST_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["distribution"] == {"alice": {"UNIT1::var1": 10}}
        assert data["double_coding_info"]["UNIT1::var1"]["double_coded_cases"] == 2
        assert data["double_coding_info"]["UNIT1::var1"]["double_coded_cases_per_coder"] == {"alice": 2}
        assert data["warnings"][0] == {
            "kind": "partially_assigned",
            "item": "UNIT1::var1",
            "message": "5 cases already in coding jobs",
            "cases_in_jobs": 5,
            "available_cases": 10,
        }
        workspace_id, request = mock_preview.await_args.args[1:]
        assert workspace_id == 3
        assert request.double_coding_percentage == 20

    @patch("codingjobs.web.routes.distribution.preview_distribution")
    @patch("codingjobs.web.routes.distribution.get_session")
    def test_validation_error_is_400(self, mock_get_session, mock_preview, client, mock_db_session):
        mock_get_session.return_value = mock_db_session
        mock_preview.side_effect = ValidationError("At least one coder must be selected")

        response = client.post("/api/workspaces/3/coding/distribution/preview", json={})

        assert response.status_code == 400
        assert "coder" in response.json()["detail"]

    def test_percentage_above_100_rejected(self, client):
        body = {**REQUEST_BODY, "double_coding_percentage": 150}

        response = client.post("/api/workspaces/3/coding/distribution/preview", json=body)

        assert response.status_code == 422


class TestCreate:
    @patch("codingjobs.web.routes.distribution.create_distributed_coding_jobs")
    @patch("codingjobs.web.routes.distribution.get_session")
    def test_create_returns_jobs(self, mock_get_session, mock_create, client, mock_db_session):
        mock_get_session.return_value = mock_db_session
        mock_create.return_value = DistributionCreationResult(
            plan=sample_plan(),
            jobs=[CreatedJobSummary(7, "alice_UNIT1_var1_10", 1, "alice", "UNIT1::var1", 10)],
        )

        response = client.post("/api/workspaces/3/coding/distribution/create", json=REQUEST_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["jobs_created"] == 1
        assert data["message"] == "Created 1 coding jobs with 1 warnings"
        assert data["jobs"][0]["job_name"] == "alice_UNIT1_var1_10"

"""Tests for Cohen's Kappa statistics over double-coded responses."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import select

from codingjobs.db.models import CodingJobCoderModel, CodingJobUnitModel
from codingjobs.distribution.service import create_distributed_coding_jobs
from codingjobs.models import DistributionRequest, VariableRef
from codingjobs.statistics.service import (
    DoubleCodedRow,
    build_coder_pairs,
    fetch_double_coded_rows,
    get_cohens_kappa_statistics,
)

VAR_A = VariableRef(unit_name="UNIT1", variable_id="var1")
VAR_B = VariableRef(unit_name="UNIT2", variable_id="var1")


async def code_units(session, coder_id: int, codes: dict[int, int | None]) -> None:
    """Set codes (by response id) on the units of the coder's jobs."""
    stmt = (
        select(CodingJobUnitModel)
        .join(CodingJobCoderModel, CodingJobCoderModel.coding_job_id == CodingJobUnitModel.coding_job_id)
        .where(CodingJobCoderModel.user_id == coder_id)
    )
    for unit in (await session.execute(stmt)).scalars().all():
        if unit.response_id in codes:
            unit.code = codes[unit.response_id]
    await session.commit()


@pytest_asyncio.fixture()
async def double_coded(db_session, make_responses, workspace_id, coders):
    responses = await make_responses("UNIT1", "var1", 4)
    request = DistributionRequest(
        selected_variables=[VAR_A], selected_coders=coders, double_coding_absolute=4
    )
    await create_distributed_coding_jobs(db_session, workspace_id, request)
    return [response.id for response in responses]


class TestBuildCoderPairs:
    def test_pairs_ordered_by_coder_id(self):
        rows = [
            DoubleCodedRow(1, "U", "v", 10, 2, "bob", 1),
            DoubleCodedRow(1, "U", "v", 11, 1, "alice", 1),
            DoubleCodedRow(2, "U", "v", 10, 2, "bob", 0),
            DoubleCodedRow(2, "U", "v", 11, 1, "alice", 1),
        ]

        [pair] = build_coder_pairs(rows)[("U", "v")]

        assert (pair.coder1_id, pair.coder2_id) == (1, 2)
        assert pair.codes == [(1, 1), (1, 0)]

    def test_three_coders_give_three_pairs(self):
        rows = [DoubleCodedRow(1, "U", "v", 10 + c, c, f"c{c}", 1) for c in (3, 1, 2)]

        pairs = build_coder_pairs(rows)[("U", "v")]

        assert [(p.coder1_id, p.coder2_id) for p in pairs] == [(1, 2), (1, 3), (2, 3)]


class TestCohensKappaStatistics:
    @pytest.mark.asyncio
    async def test_perfect_agreement(self, db_session, workspace_id, double_coded):
        codes = dict(zip(double_coded, [1, 0, 1, 2]))
        await code_units(db_session, 1, codes)
        await code_units(db_session, 2, codes)

        report = await get_cohens_kappa_statistics(db_session, workspace_id)

        [variable] = report["variables"]
        [pair] = variable["coder_pairs"]
        assert variable["unit_name"] == "UNIT1"
        assert pair["kappa"] == 1.0
        assert pair["agreement"] == 100.0
        assert pair["valid_pairs"] == 4
        assert pair["coder1_name"] == "alice"
        summary = report["workspace_summary"]
        assert summary["total_double_coded_responses"] == 4
        assert summary["total_coder_pairs"] == 1
        assert summary["average_kappa"] == 1.0

    @pytest.mark.asyncio
    async def test_uncoded_units_are_ignored(self, db_session, workspace_id, double_coded):
        await code_units(db_session, 1, dict(zip(double_coded, [1, 1, 0, 0])))
        await code_units(db_session, 2, dict(zip(double_coded[:2], [1, 0])))

        rows = await fetch_double_coded_rows(db_session, workspace_id)

        assert {row.response_id for row in rows} == set(double_coded[:2])

    @pytest.mark.asyncio
    async def test_no_double_coding_gives_empty_report(self, db_session, workspace_id):
        report = await get_cohens_kappa_statistics(db_session, workspace_id)

        assert report["variables"] == []
        assert report["workspace_summary"]["average_kappa"] is None
        assert report["workspace_summary"]["total_coder_pairs"] == 0

    @pytest.mark.asyncio
    async def test_variable_filter(self, db_session, make_responses, workspace_id, coders, double_coded):
        other = await make_responses("UNIT2", "var1", 2, person_offset=50)
        await create_distributed_coding_jobs(
            db_session,
            workspace_id,
            DistributionRequest(selected_variables=[VAR_B], selected_coders=coders, double_coding_absolute=2),
        )
        codes = {**dict(zip(double_coded, [1, 0, 1, 0])), **{r.id: 1 for r in other}}
        await code_units(db_session, 1, codes)
        await code_units(db_session, 2, codes)

        everything = await get_cohens_kappa_statistics(db_session, workspace_id)
        only_unit2 = await get_cohens_kappa_statistics(db_session, workspace_id, unit_name="UNIT2")

        assert [v["unit_name"] for v in everything["variables"]] == ["UNIT1", "UNIT2"]
        assert [v["unit_name"] for v in only_unit2["variables"]] == ["UNIT2"]

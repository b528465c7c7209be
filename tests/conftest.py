"""Pytest configuration and fixtures for coding jobs tests.

Provides common fixtures for testing.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from codingjobs.db.connection import enable_sqlite_foreign_keys
from codingjobs.db.models import Base, ResponseModel
from codingjobs.models import Coder, ResponseStatus

# Modules that read the config at import time (the arq worker) need this
# before the autouse fixture runs.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")


@pytest.fixture
def workspace_id() -> int:
    """Test workspace ID."""
    return 1


@pytest.fixture
def coders() -> list[Coder]:
    """Two coders, deliberately not in name order."""
    return [Coder(id=2, name="bob"), Coder(id=1, name="alice")]


@pytest_asyncio.fixture()
async def session_maker(tmp_path) -> sessionmaker:
    """Session factory over a fresh SQLite file database.

    A file (not :memory:) so that every session sees the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_maker: sessionmaker) -> AsyncSession:
    session = session_maker()
    try:
        yield session
    finally:
        await session.close()


MakeResponses = Callable[..., Awaitable[list[ResponseModel]]]


@pytest.fixture
def make_responses(db_session: AsyncSession, workspace_id: int) -> MakeResponses:
    """Insert ``count`` responses for one variable and return them in insert order."""

    async def _make(
        unit_name: str,
        variable_id: str,
        count: int,
        status: ResponseStatus = ResponseStatus.CODING_INCOMPLETE,
        person_offset: int = 0,
        values: list[str] | None = None,
        workspace: int | None = None,
    ) -> list[ResponseModel]:
        responses = [
            ResponseModel(
                workspace_id=workspace if workspace is not None else workspace_id,
                unit_name=unit_name,
                variable_id=variable_id,
                person_id=person_offset + index + 1,
                person_login=f"person{person_offset + index + 1:04d}",
                value=values[index % len(values)] if values else str(index % 3),
                status=status.value,
            )
            for index in range(count)
        ]
        db_session.add_all(responses)
        await db_session.commit()
        return responses

    return _make

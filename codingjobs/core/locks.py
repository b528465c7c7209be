"""Serialization boundary for concurrent case distribution.

Two distributions touching the same (workspace, variable) must not both see
the same cases as unassigned. Within one process an ``asyncio.Lock`` per key
serializes them; on PostgreSQL a transaction-scoped advisory lock extends the
boundary across processes and is released on commit or rollback.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def advisory_key(key: str) -> int:
    """Stable signed 64-bit lock id for ``pg_advisory_xact_lock``."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class VariableLockRegistry:
    """Per-key asyncio locks, dropped as soon as nobody holds or awaits them."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def _acquire(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LockEntry())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(key, None)

    @asynccontextmanager
    async def hold(
        self,
        session: AsyncSession,
        workspace_id: int,
        variable_keys: Iterable[str],
    ) -> AsyncIterator[None]:
        """Hold every (workspace, variable) lock for the duration of the block.

        Keys are acquired in sorted order so overlapping requests cannot
        deadlock each other.
        """
        keys = sorted({f"{workspace_id}::{variable_key}" for variable_key in variable_keys})

        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self._acquire(key))

            if session.get_bind().dialect.name == "postgresql":
                for key in keys:
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(:lock_id)"),
                        {"lock_id": advisory_key(key)},
                    )

            logger.debug("Holding %d distribution locks for workspace %s", len(keys), workspace_id)
            yield


variable_locks = VariableLockRegistry()

"""Overlap prevention for reconciliation runs.

Two layers:
- In-process: one non-blocking asyncio.Lock per job name. A second trigger
  while a run is in flight is skipped, not queued.
- PostgreSQL: pg_try_advisory_lock on a dedicated connection held for the
  whole run, so a second app instance skips too. Session-level lock, released
  with pg_advisory_unlock (and by the server if the connection drops).

Usage:
    guard = RunGuard(engine)
    async with guard.hold("club_keyword_summary") as acquired:
        if not acquired:
            return  # someone else is running it
        ...
"""

import asyncio
import logging
import zlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class RunGuard:
    def __init__(self, engine: Optional[AsyncEngine] = None, lock_base: int = 771000):
        self.engine = engine
        self.lock_base = lock_base
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_key(self, job_name: str) -> int:
        """Stable advisory lock key for a job (same across processes)."""
        return self.lock_base + zlib.crc32(job_name.encode("utf-8")) % 100000

    def is_running(self, job_name: str) -> bool:
        lock = self._locks.get(job_name)
        return lock is not None and lock.locked()

    @property
    def uses_advisory_lock(self) -> bool:
        return self.engine is not None and self.engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def hold(self, job_name: str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(job_name, asyncio.Lock())
        if lock.locked():
            logger.info(f"[RECONCILE] {job_name} already running in this process, skipping")
            yield False
            return

        async with lock:
            if not self.uses_advisory_lock:
                yield True
                return

            key = self.lock_key(job_name)
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": key},
                )
                acquired = result.scalar()
                # Session-level lock survives the commit; do not sit idle in a transaction
                await conn.commit()
                if not acquired:
                    logger.info(f"[RECONCILE] {job_name} held by another worker (lock {key}), skipping")
                    yield False
                    return

                try:
                    yield True
                finally:
                    try:
                        await conn.execute(
                            text("SELECT pg_advisory_unlock(:lock_id)"),
                            {"lock_id": key},
                        )
                        await conn.commit()
                    except Exception as e:
                        # Lock is dropped with the session anyway
                        logger.warning(f"[RECONCILE] Failed to release advisory lock {key}: {e}")

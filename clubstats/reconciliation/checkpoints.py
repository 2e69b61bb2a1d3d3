"""Persisted keyset cursors for resume-from-checkpoint mode."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.models import ReconcileCheckpoint


async def load_checkpoint(session: AsyncSession, job_name: str) -> int:
    """Last committed cursor for job_name, 0 if none."""
    checkpoint = await session.get(ReconcileCheckpoint, job_name)
    return checkpoint.last_id if checkpoint is not None else 0


async def save_checkpoint(session: AsyncSession, job_name: str, last_id: int) -> None:
    """Upsert the cursor. Call inside the batch transaction so it commits with the repairs."""
    await session.merge(
        ReconcileCheckpoint(job_name=job_name, last_id=last_id, updated_at=datetime.utcnow())
    )


async def reset_checkpoint(session: AsyncSession, job_name: str) -> None:
    await save_checkpoint(session, job_name, 0)

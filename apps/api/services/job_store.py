"""Generation job state transitions.

Every transition is a single conditional UPDATE keyed on the expected prior
status, so a job moves queued -> running -> succeeded|failed at most once
even when several dispatchers poll the same table.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.generation_job import GenerationJob


JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_SUCCEEDED = "succeeded"
JOB_FAILED = "failed"
TERMINAL_STATUSES = (JOB_SUCCEEDED, JOB_FAILED)
MAX_ERROR_LENGTH = 1000


async def _transition(
    db: AsyncSession,
    job_id: str,
    *,
    from_status: str,
    values: Dict[str, Any],
    commit: bool = True,
) -> bool:
    result = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if commit:
        await db.commit()
    return int(result.rowcount or 0) == 1


async def list_queued_jobs(db: AsyncSession, limit: int) -> List[GenerationJob]:
    result = await db.execute(
        select(GenerationJob)
        .where(GenerationJob.status == JOB_QUEUED)
        .order_by(GenerationJob.created_at.asc(), GenerationJob.id.asc())
        .limit(max(int(limit), 0))
    )
    return list(result.scalars().all())


async def claim_job(db: AsyncSession, job_id: str) -> bool:
    """Move a job from queued to running; False when another worker won."""
    return await _transition(
        db,
        job_id,
        from_status=JOB_QUEUED,
        values={"status": JOB_RUNNING, "started_at": datetime.now(timezone.utc)},
    )


async def complete_job(db: AsyncSession, job_id: str, *, original_path: str, thumbnail_path: str) -> bool:
    return await _transition(
        db,
        job_id,
        from_status=JOB_RUNNING,
        values={
            "status": JOB_SUCCEEDED,
            "original_path": original_path,
            "thumbnail_path": thumbnail_path,
            "error": None,
            "completed_at": datetime.now(timezone.utc),
        },
    )


async def fail_job(db: AsyncSession, job_id: str, error: str, *, commit: bool = True) -> bool:
    return await _transition(
        db,
        job_id,
        from_status=JOB_RUNNING,
        values={
            "status": JOB_FAILED,
            "error": (error or "Unknown error")[:MAX_ERROR_LENGTH],
            "completed_at": datetime.now(timezone.utc),
        },
        commit=commit,
    )


async def get_job(db: AsyncSession, job_id: str) -> Optional[GenerationJob]:
    result = await db.execute(select(GenerationJob).where(GenerationJob.id == job_id))
    return result.scalar_one_or_none()


def serialize_job(job: GenerationJob) -> Dict[str, Any]:
    return {
        "job_id": job.id,
        "user_id": job.user_id,
        "prompt": job.prompt,
        "style": {
            "aspect": job.aspect,
            "style_preset": job.style_preset,
            "chromatic": float(job.chromatic if job.chromatic is not None else 1.0),
        },
        "status": job.status,
        "credit_cost": int(job.credit_cost or 0),
        "original_path": job.original_path,
        "thumbnail_path": job.thumbnail_path,
        "error": job.error,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


async def list_stalled_jobs(db: AsyncSession, max_age_minutes: int = 30) -> List[GenerationJob]:
    """Running jobs whose claim is older than the cutoff (worker died mid-job)."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(max_age_minutes, 1))
    result = await db.execute(
        select(GenerationJob)
        .where(
            GenerationJob.status == JOB_RUNNING,
            GenerationJob.started_at < cutoff,
        )
        .order_by(GenerationJob.started_at.asc())
    )
    return list(result.scalars().all())

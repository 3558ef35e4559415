"""Generation job queue backed by the ``ai_generation_jobs`` table.

Job lifecycle:
    queued -> running -> completed | failed
    queued | running -> cancelled
    failed -> queued (retry)

``process_job_queue`` is the cron entry point: it times out stuck jobs,
then claims and runs a small batch of queued jobs one at a time.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from awash.config import get_settings
from awash.database.models import GenerationJob, utcnow
from awash.errors import JobStateError, record_generation_failure
from awash.realtime import get_broadcaster, status_channel
from awash.schemas import JobStatus, JobType, QueueRunSummary


logger = logging.getLogger(__name__)

JobHandler = Callable[[AsyncSession, GenerationJob], Awaitable[dict[str, Any]]]

ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.FAILED: {JobStatus.QUEUED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}


# =============================================================================
# State Machine
# =============================================================================

def transition(job: GenerationJob, new_status: JobStatus) -> GenerationJob:
    """Move ``job`` to ``new_status``, stamping the matching timestamps.

    Raises:
        JobStateError: the move is not in ALLOWED_TRANSITIONS
    """
    current = JobStatus(job.status)
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise JobStateError(
            f"Cannot move job {job.id} from {current.value} to {new_status.value}",
            {"job_id": str(job.id), "from": current.value, "to": new_status.value},
        )

    now = utcnow()
    job.status = new_status.value
    job.updated_at = now

    if new_status == JobStatus.RUNNING:
        job.started_at = now
    elif new_status == JobStatus.QUEUED:
        job.started_at = None
        job.completed_at = None
        job.progress = 0
        job.current_step = None
    else:
        job.completed_at = now
        if new_status == JobStatus.COMPLETED:
            job.progress = 100

    return job


# =============================================================================
# Queue Operations
# =============================================================================

async def enqueue_job(
    session: AsyncSession,
    user_id: UUID,
    job_type: JobType,
    input_data: dict[str, Any],
    project_id: UUID | None = None,
    conversation_id: UUID | None = None,
) -> GenerationJob:
    job = GenerationJob(
        user_id=user_id,
        project_id=project_id,
        conversation_id=conversation_id,
        job_type=JobType(job_type).value,
        status=JobStatus.QUEUED.value,
        input_data=input_data,
        current_step="Queued",
    )
    session.add(job)
    await session.flush()
    logger.info(f"Queued {job.job_type} job {job.id}")
    return job


async def get_job(session: AsyncSession, job_id: UUID, user_id: UUID | None = None) -> GenerationJob | None:
    job = await session.get(GenerationJob, job_id)
    if job is None or (user_id is not None and job.user_id != user_id):
        return None
    return job


async def claim_job(session: AsyncSession, job_id: UUID) -> bool:
    """Atomically move a queued job to running.

    The status condition is part of the UPDATE, so when two processors race
    for the same row exactly one of them sees a row count of 1.
    """
    now = utcnow()
    result = await session.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.QUEUED.value)
        .values(status=JobStatus.RUNNING.value, started_at=now, updated_at=now, current_step="Starting")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def update_progress(
    session: AsyncSession,
    job: GenerationJob,
    progress: int,
    step: str | None = None,
) -> None:
    """Store progress (clamped to 0-100) and publish it to the job's status channel."""
    job.progress = max(0, min(100, progress))
    if step is not None:
        job.current_step = step
    job.updated_at = utcnow()
    await session.flush()

    get_broadcaster().publish(
        status_channel(job.project_id or job.conversation_id or job.id),
        "job_progress",
        {
            "job_id": str(job.id),
            "status": job.status,
            "progress": job.progress,
            "current_step": job.current_step,
        },
    )


async def cancel_job(session: AsyncSession, job: GenerationJob) -> GenerationJob:
    transition(job, JobStatus.CANCELLED)
    job.current_step = "Cancelled"
    await session.flush()
    logger.info(f"Cancelled job {job.id}")
    return job


async def retry_job(session: AsyncSession, job: GenerationJob) -> GenerationJob:
    """Put a failed job back in the queue."""
    transition(job, JobStatus.QUEUED)
    job.retry_count += 1
    job.error_message = None
    job.current_step = "Queued"
    await session.flush()
    logger.info(f"Re-queued job {job.id} (retry {job.retry_count})")
    return job


async def fail_stale_jobs(
    session: AsyncSession,
    timeout_minutes: int | None = None,
    max_retries: int | None = None,
) -> tuple[int, int]:
    """Time out jobs that have been running too long.

    Jobs that still have retries left go back to the queue.

    Returns:
        (timed out, of which re-queued)
    """
    settings = get_settings()
    timeout_minutes = timeout_minutes if timeout_minutes is not None else settings.job_timeout_minutes
    max_retries = max_retries if max_retries is not None else settings.job_max_retries
    cutoff = utcnow() - timedelta(minutes=timeout_minutes)

    result = await session.execute(
        select(GenerationJob).where(
            GenerationJob.status == JobStatus.RUNNING.value,
            GenerationJob.started_at < cutoff,
        )
    )
    stale = result.scalars().all()

    requeued = 0
    for job in stale:
        transition(job, JobStatus.FAILED)
        job.error_message = "Job timed out"
        if job.retry_count < max_retries:
            transition(job, JobStatus.QUEUED)
            job.retry_count += 1
            job.current_step = "Queued"
            requeued += 1
            logger.warning(f"Job {job.id} timed out, re-queued (retry {job.retry_count})")
        else:
            job.current_step = "Timed out"
            logger.error(f"Job {job.id} timed out after {job.retry_count} retries")

    await session.flush()
    return len(stale), requeued


async def process_job_queue(
    session_factory: async_sessionmaker[AsyncSession],
    handler: JobHandler,
    batch_size: int | None = None,
) -> QueueRunSummary:
    """Drain one batch of the queue.

    Each job runs in its own session; a failing job is marked failed and
    recorded in ``generation_failures`` without stopping the batch.
    """
    batch_size = batch_size or get_settings().queue_batch_size
    summary = QueueRunSummary()

    async with session_factory() as session:
        summary.timed_out, summary.requeued = await fail_stale_jobs(session)
        result = await session.execute(
            select(GenerationJob.id)
            .where(GenerationJob.status == JobStatus.QUEUED.value)
            .order_by(GenerationJob.created_at)
            .limit(batch_size)
        )
        job_ids = list(result.scalars().all())
        await session.commit()

    if not job_ids:
        logger.info("No queued jobs")
        return summary

    logger.info(f"Processing {len(job_ids)} queued job(s)")

    for job_id in job_ids:
        async with session_factory() as session:
            if not await claim_job(session, job_id):
                await session.rollback()
                summary.skipped += 1
                logger.info(f"Job {job_id} was claimed elsewhere, skipping")
                continue
            await session.commit()

            job = await session.get(GenerationJob, job_id, populate_existing=True)
            summary.processed += 1

            try:
                output = await handler(session, job)
            except Exception as e:
                logger.error(f"Job {job_id} failed: {e}")
                await session.rollback()
                job = await session.get(GenerationJob, job_id, populate_existing=True)
                if job.status != JobStatus.RUNNING.value:
                    logger.warning(f"Job {job_id} is {job.status} after failing, leaving it as is")
                    await session.commit()
                    summary.skipped += 1
                    continue
                transition(job, JobStatus.FAILED)
                job.error_message = str(e)
                job.current_step = "Failed"
                await record_generation_failure(
                    session,
                    e,
                    user_id=job.user_id,
                    job_id=job.id,
                    user_request=job.input_data.get("prompt") if job.input_data else None,
                    context={"job_type": job.job_type},
                )
                await session.commit()
                summary.failed += 1
                continue

            await session.refresh(job)
            if job.status != JobStatus.RUNNING.value:
                # Cancelled or re-queued while running; the result is discarded
                logger.warning(f"Job {job_id} is {job.status} after finishing, discarding its output")
                await session.commit()
                summary.skipped += 1
                continue

            transition(job, JobStatus.COMPLETED)
            job.output_data = output
            job.current_step = "Completed"
            await session.commit()
            summary.succeeded += 1
            logger.info(f"Job {job_id} completed")

    return summary

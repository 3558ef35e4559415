"""Tests for the generation job queue."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import select

from awash.database.models import GenerationFailure, GenerationJob, utcnow
from awash.errors import JobStateError
from awash.jobs.queue import (
    cancel_job,
    claim_job,
    enqueue_job,
    fail_stale_jobs,
    get_job,
    process_job_queue,
    retry_job,
    transition,
    update_progress,
)
from awash.realtime import get_broadcaster, status_channel
from awash.schemas import JobStatus, JobType


async def _queued(session, user_id, prompt="Build a blog", **kwargs):
    job = await enqueue_job(session, user_id, JobType.CODE_GENERATION, {"prompt": prompt}, **kwargs)
    await session.commit()
    return job


async def _reload(session_factory, job_id):
    async with session_factory() as session:
        return await session.get(GenerationJob, job_id)


class TestTransitions:
    def test_running_stamps_started_at(self, user_id):
        job = GenerationJob(user_id=user_id, job_type="code_generation")
        transition(job, JobStatus.RUNNING)
        assert job.status == "running"
        assert job.started_at is not None

    def test_completed_sets_full_progress(self, user_id):
        job = GenerationJob(user_id=user_id, job_type="code_generation", status="running", progress=60)
        transition(job, JobStatus.COMPLETED)
        assert job.progress == 100
        assert job.completed_at is not None

    def test_requeue_resets_run_state(self, user_id):
        job = GenerationJob(
            user_id=user_id, job_type="code_generation", status="failed",
            progress=60, started_at=utcnow(), completed_at=utcnow(),
        )
        transition(job, JobStatus.QUEUED)
        assert job.progress == 0
        assert job.started_at is None
        assert job.completed_at is None

    @pytest.mark.parametrize("start, target", [
        ("completed", JobStatus.RUNNING),
        ("cancelled", JobStatus.QUEUED),
        ("queued", JobStatus.COMPLETED),
        ("failed", JobStatus.RUNNING),
    ])
    def test_illegal_moves_raise(self, user_id, start, target):
        job = GenerationJob(user_id=user_id, job_type="code_generation", status=start)
        with pytest.raises(JobStateError):
            transition(job, target)
        assert job.status == start


class TestQueueOperations:
    async def test_enqueue(self, session, user_id):
        job = await _queued(session, user_id)
        assert job.status == "queued"
        assert job.current_step == "Queued"
        assert job.input_data == {"prompt": "Build a blog"}

    async def test_get_job_checks_owner(self, session, user_id):
        job = await _queued(session, user_id)
        assert await get_job(session, job.id, user_id=user_id) is job
        assert await get_job(session, job.id, user_id=uuid4()) is None

    async def test_claim_is_exclusive(self, session, user_id):
        job = await _queued(session, user_id)
        assert await claim_job(session, job.id) is True
        assert await claim_job(session, job.id) is False

    async def test_cancel_and_retry(self, session, user_id):
        job = await _queued(session, user_id)
        await cancel_job(session, job)
        assert job.status == "cancelled"
        with pytest.raises(JobStateError):
            await retry_job(session, job)

        failed = await _queued(session, user_id)
        failed.status = "failed"
        failed.error_message = "boom"
        await retry_job(session, failed)
        assert failed.status == "queued"
        assert failed.retry_count == 1
        assert failed.error_message is None

    async def test_progress_is_clamped_and_published(self, session, user_id):
        job = await _queued(session, user_id)
        async with get_broadcaster().subscribe(status_channel(job.id)) as queue:
            await update_progress(session, job, 140, "Almost")
            event = queue.get_nowait()

        assert job.progress == 100
        assert event["event"] == "job_progress"
        assert event["payload"]["progress"] == 100
        assert event["payload"]["current_step"] == "Almost"


class TestStaleJobs:
    async def _running_since(self, session, user_id, minutes, retry_count=0):
        job = await _queued(session, user_id)
        job.status = "running"
        job.started_at = utcnow() - timedelta(minutes=minutes)
        job.retry_count = retry_count
        await session.commit()
        return job

    async def test_stale_job_requeued(self, session, user_id):
        job = await self._running_since(session, user_id, minutes=20)

        assert await fail_stale_jobs(session, timeout_minutes=10, max_retries=3) == (1, 1)
        assert job.status == "queued"
        assert job.retry_count == 1
        assert job.error_message == "Job timed out"

    async def test_stale_job_out_of_retries_fails(self, session, user_id):
        job = await self._running_since(session, user_id, minutes=20, retry_count=3)

        assert await fail_stale_jobs(session, timeout_minutes=10, max_retries=3) == (1, 0)
        assert job.status == "failed"
        assert job.current_step == "Timed out"

    async def test_recent_job_untouched(self, session, user_id):
        job = await self._running_since(session, user_id, minutes=2)
        assert await fail_stale_jobs(session, timeout_minutes=10) == (0, 0)
        assert job.status == "running"


class TestProcessJobQueue:
    async def test_successful_job_completes(self, session, session_factory, user_id):
        job = await _queued(session, user_id)
        seen = []

        async def handler(job_session, running_job):
            seen.append(running_job.status)
            return {"files": 2}

        summary = await process_job_queue(session_factory, handler)

        assert summary.processed == 1
        assert summary.succeeded == 1
        assert seen == ["running"]
        stored = await _reload(session_factory, job.id)
        assert stored.status == "completed"
        assert stored.output_data == {"files": 2}
        assert stored.progress == 100

    async def test_failed_job_recorded(self, session, session_factory, user_id):
        job = await _queued(session, user_id, prompt="Build a shop")

        async def handler(job_session, running_job):
            raise RuntimeError("model exploded")

        summary = await process_job_queue(session_factory, handler)

        assert summary.failed == 1
        stored = await _reload(session_factory, job.id)
        assert stored.status == "failed"
        assert stored.error_message == "model exploded"

        async with session_factory() as check:
            failures = (await check.execute(select(GenerationFailure))).scalars().all()
        assert len(failures) == 1
        assert failures[0].job_id == job.id
        assert failures[0].user_request == "Build a shop"
        assert failures[0].error_type == "RuntimeError"

    async def test_one_failure_does_not_stop_the_batch(self, session, session_factory, user_id):
        await _queued(session, user_id, prompt="first")
        await _queued(session, user_id, prompt="second")

        async def handler(job_session, running_job):
            if running_job.input_data["prompt"] == "first":
                raise RuntimeError("nope")
            return {}

        summary = await process_job_queue(session_factory, handler)
        assert (summary.processed, summary.failed, summary.succeeded) == (2, 1, 1)

    async def test_cancelled_while_running_is_discarded(self, session, session_factory, user_id):
        job = await _queued(session, user_id)

        async def handler(job_session, running_job):
            transition(running_job, JobStatus.CANCELLED)
            await job_session.flush()
            return {"ignored": True}

        summary = await process_job_queue(session_factory, handler)

        assert summary.processed == 1
        assert summary.succeeded == 0
        stored = await _reload(session_factory, job.id)
        assert stored.status == "cancelled"
        assert stored.output_data is None

    async def test_cancelled_elsewhere_then_failing(self, session, session_factory, user_id):
        job = await _queued(session, user_id)
        second = await _queued(session, user_id, prompt="next")

        async def handler(job_session, running_job):
            if running_job.id == job.id:
                async with session_factory() as other:
                    await cancel_job(other, await other.get(GenerationJob, job.id))
                    await other.commit()
                raise RuntimeError("model exploded")
            return {"ok": True}

        summary = await process_job_queue(session_factory, handler)

        assert (summary.processed, summary.skipped, summary.failed, summary.succeeded) == (2, 1, 0, 1)
        assert (await _reload(session_factory, job.id)).status == "cancelled"
        assert (await _reload(session_factory, second.id)).status == "completed"
        async with session_factory() as check:
            assert (await check.execute(select(GenerationFailure))).first() is None

    async def test_requeued_while_running_keeps_queue_state(self, session, session_factory, user_id):
        job = await _queued(session, user_id)

        async def handler(job_session, running_job):
            running_job.status = "queued"
            await job_session.flush()
            return {"ignored": True}

        summary = await process_job_queue(session_factory, handler, batch_size=1)

        assert summary.skipped == 1
        assert summary.succeeded == 0
        stored = await _reload(session_factory, job.id)
        assert stored.status == "queued"
        assert stored.output_data is None

    async def test_batch_size_limits_run(self, session, session_factory, user_id):
        for i in range(3):
            await _queued(session, user_id, prompt=f"job {i}")

        async def handler(job_session, running_job):
            return {}

        summary = await process_job_queue(session_factory, handler, batch_size=2)
        assert summary.processed == 2

    async def test_empty_queue(self, session_factory):
        async def handler(job_session, running_job):
            raise AssertionError("not called")

        summary = await process_job_queue(session_factory, handler)
        assert summary.processed == 0

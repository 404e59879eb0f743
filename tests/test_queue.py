"""
Durable queue behaviour: idempotent enqueue, claiming, settling and recovery.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from jobcore.v1.infra.jobs.models import Job, JobStatus, JobType
from jobcore.v1.infra.jobs.retry import LadderBackoff


async def _count_jobs(session) -> int:
    result = await session.execute(select(func.count(Job.id)))
    return result.scalar()


class TestEnqueue:
    async def test_enqueue_creates_pending_job(self, db_session, queue, now):
        job_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "send_email:m1", {"minutes_id": "m1"}
        )

        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.job_type == "send_email"
        assert job.attempt_count == 0
        assert job.max_retries == 3
        assert job.payload == {"minutes_id": "m1"}
        assert job.scheduled_for >= now

    async def test_duplicate_key_is_a_no_op(self, db_session, queue):
        first = await queue.enqueue(db_session, JobType.SEND_EMAIL, "send_email:m1", {})
        second = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "send_email:m1", {"different": True}
        )

        assert first is not None
        assert second is None
        assert await _count_jobs(db_session) == 1
        job = await queue.get_job_by_key(db_session, "send_email:m1")
        assert job.payload == {}

    async def test_key_stays_taken_after_completion(self, db_session, queue):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "send_email:m1", {})
        await queue.complete(db_session, job_id)

        assert await queue.enqueue(db_session, JobType.SEND_EMAIL, "send_email:m1", {}) is None

    async def test_empty_key_is_rejected(self, db_session, queue):
        with pytest.raises(ValueError, match="idempotency_key is required"):
            await queue.enqueue(db_session, JobType.SEND_EMAIL, "", {})

    async def test_unknown_job_type_is_rejected(self, db_session, queue):
        with pytest.raises(ValueError):
            await queue.enqueue(db_session, "reticulate_splines", "k", {})

    async def test_zero_retries_is_rejected(self, db_session, queue):
        with pytest.raises(ValueError, match="max_retries must be at least 1"):
            await queue.enqueue(db_session, JobType.SEND_EMAIL, "k", {}, max_retries=0)

        assert await _count_jobs(db_session) == 0

    async def test_single_attempt_budget_is_kept(self, db_session, queue):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k", {}, max_retries=1)

        job = await queue.get_job(db_session, job_id)
        assert job.max_retries == 1

    async def test_enqueue_without_commit_joins_caller_transaction(self, db_session, queue):
        await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "send_email:m1", {}, commit=False
        )
        await db_session.rollback()

        assert await _count_jobs(db_session) == 0


class TestDequeue:
    async def test_claim_marks_processing_and_counts_attempt(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})

        job = await queue.dequeue(db_session, now=now + timedelta(seconds=1))

        assert job.id == job_id
        assert job.status == JobStatus.PROCESSING.value
        assert job.attempt_count == 1
        assert job.last_attempt_at == now + timedelta(seconds=1)

    async def test_empty_queue_returns_none(self, db_session, queue):
        assert await queue.dequeue(db_session) is None

    async def test_future_jobs_are_not_claimed(self, db_session, queue, now):
        await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "later", {}, scheduled_for=now + timedelta(hours=1)
        )

        assert await queue.dequeue(db_session, now=now) is None
        assert await queue.dequeue(db_session, now=now + timedelta(hours=2)) is not None

    async def test_oldest_scheduled_job_first(self, db_session, queue, now):
        await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "newer", {}, scheduled_for=now - timedelta(minutes=1)
        )
        await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "older", {}, scheduled_for=now - timedelta(minutes=5)
        )

        job = await queue.dequeue(db_session, now=now)
        assert job.idempotency_key == "older"

    async def test_filter_by_job_type(self, db_session, queue, now):
        await queue.enqueue(db_session, JobType.SEND_EMAIL, "email", {})
        await queue.enqueue(db_session, JobType.UPLOAD_ARCHIVE, "archive", {})

        job = await queue.dequeue(
            db_session, job_types=[JobType.UPLOAD_ARCHIVE], now=now + timedelta(seconds=1)
        )
        assert job.idempotency_key == "archive"

    async def test_processing_job_is_not_claimed_twice(self, db_session, queue, now):
        await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})
        later = now + timedelta(seconds=1)

        assert await queue.dequeue(db_session, now=later) is not None
        assert await queue.dequeue(db_session, now=later) is None


class TestSettle:
    async def test_complete(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})
        await queue.dequeue(db_session, now=now + timedelta(seconds=1))

        await queue.complete(db_session, job_id, now=now + timedelta(seconds=2))

        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.processed_at == now + timedelta(seconds=2)
        assert job.is_terminal()

    async def test_fail_reschedules_with_exponential_backoff(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})
        job = await queue.dequeue(db_session, now=now + timedelta(seconds=1))

        status = await queue.fail(
            db_session, job_id, "SMTP relay down", job.attempt_count, job.max_retries, now=now
        )

        assert status is JobStatus.FAILED
        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.last_error == "SMTP relay down"
        assert job.scheduled_for == now + timedelta(minutes=2)

        # Not due until the backoff elapses, then claimable with attempt 2
        assert await queue.dequeue(db_session, now=now + timedelta(minutes=1)) is None
        retried = await queue.dequeue(db_session, now=now + timedelta(minutes=2))
        assert retried.id == job_id
        assert retried.attempt_count == 2

    async def test_fail_uses_supplied_policy(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.ENRICH_MEETING, "k1", {})

        await queue.fail(
            db_session, job_id, "not ready", 1, 4, policy=LadderBackoff.of([5]), now=now
        )

        job = await queue.get_job(db_session, job_id)
        assert job.scheduled_for == now + timedelta(minutes=5)

    async def test_exhausted_attempts_dead_letter(self, db_session, queue, now):
        job_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "k1", {}, max_retries=2
        )

        status = await queue.fail(db_session, job_id, "still down", 2, 2, now=now)

        assert status is JobStatus.DEAD_LETTER
        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.DEAD_LETTER.value
        assert await queue.dequeue(db_session, now=now + timedelta(days=1)) is None

    async def test_permanent_failure_dead_letters_on_first_attempt(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})

        status = await queue.fail(db_session, job_id, "bad payload", 1, 3, permanent=True, now=now)

        assert status is JobStatus.DEAD_LETTER

    async def test_long_errors_are_truncated(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})

        await queue.fail(db_session, job_id, "x" * 5000, 1, 3, now=now)

        job = await queue.get_job(db_session, job_id)
        assert len(job.last_error) == 2000


class TestMaintenance:
    async def test_recover_stuck_returns_abandoned_jobs(self, db_session, queue, now):
        stuck_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "stuck", {}, scheduled_for=now - timedelta(hours=2)
        )
        fresh_id = await queue.enqueue(db_session, JobType.UPLOAD_ARCHIVE, "fresh", {})
        await queue.dequeue(db_session, job_types=[JobType.SEND_EMAIL], now=now - timedelta(hours=1))
        await queue.dequeue(db_session, job_types=[JobType.UPLOAD_ARCHIVE], now=now)

        recovered = await queue.recover_stuck(
            db_session, stale_threshold=timedelta(minutes=30), now=now + timedelta(seconds=1)
        )

        assert recovered == 1
        stuck = await queue.get_job(db_session, stuck_id)
        assert stuck.status == JobStatus.FAILED.value
        assert stuck.scheduled_for == now + timedelta(seconds=1)
        assert "recovered after worker loss" in stuck.last_error
        fresh = await queue.get_job(db_session, fresh_id)
        assert fresh.status == JobStatus.PROCESSING.value

    async def test_recover_stuck_without_stale_jobs_touches_nothing(self, db_session, queue, now):
        job_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "busy", {}, scheduled_for=now - timedelta(minutes=1)
        )
        await queue.dequeue(db_session, now=now)
        before = await queue.get_job(db_session, job_id)
        updated_at = before.updated_at

        recovered = await queue.recover_stuck(
            db_session, stale_threshold=timedelta(minutes=30), now=now + timedelta(minutes=5)
        )

        assert recovered == 0
        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.PROCESSING.value
        assert job.updated_at == updated_at

    async def test_recover_stuck_twice_recovers_once(self, db_session, queue, now):
        job_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "stuck", {}, scheduled_for=now - timedelta(hours=2)
        )
        await queue.dequeue(db_session, now=now - timedelta(hours=1))

        assert await queue.recover_stuck(db_session, now=now) == 1
        first = await queue.get_job(db_session, job_id)
        scheduled_for = first.scheduled_for

        assert await queue.recover_stuck(db_session, now=now + timedelta(minutes=1)) == 0
        job = await queue.get_job(db_session, job_id)
        assert job.scheduled_for == scheduled_for
        assert job.status == JobStatus.FAILED.value

    async def test_recovered_job_keeps_its_attempt_count(self, db_session, queue, now):
        job_id = await queue.enqueue(
            db_session, JobType.SEND_EMAIL, "stuck", {}, scheduled_for=now - timedelta(hours=2)
        )
        await queue.dequeue(db_session, now=now - timedelta(hours=1))
        await queue.recover_stuck(db_session, now=now)

        job = await queue.dequeue(db_session, now=now)
        assert job.id == job_id
        assert job.attempt_count == 2

    async def test_cleanup_completed_respects_retention(self, db_session, queue, now):
        old_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "old", {})
        new_id = await queue.enqueue(db_session, JobType.UPLOAD_ARCHIVE, "new", {})
        failed_id = await queue.enqueue(db_session, JobType.GENERATE_MINUTES, "failed", {})
        await queue.complete(db_session, old_id, now=now - timedelta(days=40))
        await queue.complete(db_session, new_id, now=now - timedelta(days=1))
        await queue.fail(db_session, failed_id, "x", 3, 3, now=now - timedelta(days=40))

        deleted = await queue.cleanup_completed(db_session, now=now)

        assert deleted == 1
        assert await queue.get_job(db_session, old_id) is None
        assert await queue.get_job(db_session, new_id) is not None
        assert await queue.get_job(db_session, failed_id) is not None

    async def test_get_stats(self, db_session, queue, now):
        done = await queue.enqueue(db_session, JobType.SEND_EMAIL, "done", {})
        dead = await queue.enqueue(db_session, JobType.UPLOAD_ARCHIVE, "dead", {})
        await queue.enqueue(db_session, JobType.GENERATE_MINUTES, "waiting", {})
        await queue.complete(db_session, done)
        await queue.fail(db_session, dead, "x", 3, 3)

        stats = await queue.get_stats(db_session)

        assert stats.pending == 1
        assert stats.completed == 1
        assert stats.dead_letter == 1
        assert stats.queue_depth == 1


class TestRetry:
    async def test_retry_readmits_dead_letter_with_fresh_budget(self, db_session, queue, now):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})
        await queue.dequeue(db_session, now=now + timedelta(seconds=1))
        await queue.fail(db_session, job_id, "bad", 1, 3, permanent=True)

        assert await queue.retry(db_session, job_id, now=now) is True

        job = await queue.get_job(db_session, job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempt_count == 0
        assert job.scheduled_for == now

    async def test_retry_ignores_completed_jobs(self, db_session, queue):
        job_id = await queue.enqueue(db_session, JobType.SEND_EMAIL, "k1", {})
        await queue.complete(db_session, job_id)

        assert await queue.retry(db_session, job_id) is False


class TestListJobs:
    async def test_filters_and_pagination(self, db_session, queue):
        for i in range(3):
            await queue.enqueue(db_session, JobType.SEND_EMAIL, f"email-{i}", {})
        dead = await queue.enqueue(db_session, JobType.UPLOAD_ARCHIVE, "archive", {})
        await queue.fail(db_session, dead, "x", 3, 3)

        jobs, total = await queue.list_jobs(db_session, job_type="send_email", limit=2)
        assert total == 3
        assert len(jobs) == 2

        jobs, total = await queue.list_jobs(db_session, statuses=[JobStatus.DEAD_LETTER])
        assert total == 1
        assert jobs[0].id == dead


@pytest.mark.postgres
async def test_concurrent_claims_never_share_a_job(session_factory, queue, now):
    async with session_factory() as session:
        enqueued = {
            await queue.enqueue(session, JobType.SEND_EMAIL, f"k{i}", {}) for i in range(3)
        }

    async def claim():
        async with session_factory() as session:
            job = await queue.dequeue(session, now=now + timedelta(seconds=1))
            return job.id if job else None

    claimed = await asyncio.gather(*(claim() for _ in range(5)))

    ids = [job_id for job_id in claimed if job_id is not None]
    assert len(ids) == 3
    assert set(ids) == enqueued
    assert claimed.count(None) == 2

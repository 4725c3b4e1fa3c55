import asyncio
from datetime import timedelta

import pytest

from app.services.automation.backoff import RetryPolicy
from app.services.automation.errors import JobNotFound
from app.services.automation.models import (
    Job,
    JobStatus,
    JobType,
    PopularDiscovery,
    Priority,
    UpdatePayload,
)
from app.services.automation.queue import LEASE_EXPIRED_ERROR, MemoryJobQueue


def update_job(ext_id, priority=Priority.MEDIUM, max_retries=None):
    return Job.create(UpdatePayload(extension_id=ext_id), priority=priority, max_retries=max_retries)


async def test_enqueue_assigns_id_and_pending_status(queue, clock):
    job_id = await queue.enqueue(update_job("abc"))
    job = await queue.get_job(job_id)
    assert job_id.startswith("job_")
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 0
    assert job.max_retries == 3
    assert job.created_at == clock.now


async def test_dequeue_returns_highest_priority_first(queue):
    await queue.enqueue(update_job("low", Priority.LOW))
    await queue.enqueue(update_job("medium", Priority.MEDIUM))
    await queue.enqueue(update_job("high", Priority.HIGH))

    order = []
    for _ in range(3):
        job = await queue.dequeue(JobType.UPDATE)
        order.append(job.payload.extension_id)
    assert order == ["high", "medium", "low"]
    assert await queue.dequeue(JobType.UPDATE) is None


async def test_fifo_within_same_priority(queue):
    for ext_id in ["first", "second", "third"]:
        await queue.enqueue(update_job(ext_id, Priority.HIGH))
    got = [(await queue.dequeue(JobType.UPDATE)).payload.extension_id for _ in range(3)]
    assert got == ["first", "second", "third"]


async def test_dequeue_only_returns_requested_type(queue):
    await queue.enqueue(Job.create(PopularDiscovery(), priority=Priority.HIGH))
    assert await queue.dequeue(JobType.UPDATE) is None
    job = await queue.dequeue(JobType.DISCOVERY)
    assert job.status == JobStatus.IN_PROGRESS
    assert job.claimed_at is not None


async def test_concurrent_dequeue_never_hands_out_a_job_twice(queue):
    for i in range(50):
        await queue.enqueue(update_job(f"ext-{i}"))

    claimed = []

    async def consumer():
        while True:
            job = await queue.dequeue(JobType.UPDATE)
            if job is None:
                return
            claimed.append(job.id)
            await asyncio.sleep(0)

    await asyncio.gather(*(consumer() for _ in range(10)))
    assert len(claimed) == 50
    assert len(set(claimed)) == 50


async def test_failed_job_waits_for_backoff_and_is_demoted(queue, clock):
    job_id = await queue.enqueue(update_job("abc", Priority.HIGH))
    await queue.dequeue(JobType.UPDATE)
    await queue.fail_job(job_id, "HTTP 429")

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1
    assert job.error_msg == "HTTP 429"
    assert job.priority == Priority.MEDIUM
    assert job.available_at == clock.now + timedelta(seconds=30)

    assert await queue.dequeue(JobType.UPDATE) is None
    clock.advance(29)
    assert await queue.dequeue(JobType.UPDATE) is None
    clock.advance(1)
    again = await queue.dequeue(JobType.UPDATE)
    assert again.id == job_id


async def test_backoff_grows_and_job_fails_after_max_retries(queue, clock):
    job_id = await queue.enqueue(update_job("abc"))
    waits = []
    for _ in range(2):
        await queue.dequeue(JobType.UPDATE)
        await queue.fail_job(job_id, "timeout")
        job = await queue.get_job(job_id)
        waits.append((job.available_at - clock.now).total_seconds())
        clock.advance(waits[-1])

    assert waits == [30, 60]

    await queue.dequeue(JobType.UPDATE)
    await queue.fail_job(job_id, "timeout")
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == job.max_retries == 3

    # terminal: falhas adicionais são ignoradas
    await queue.fail_job(job_id, "again")
    job = await queue.get_job(job_id)
    assert job.retry_count == 3
    assert job.error_msg == "timeout"

    stats = await queue.get_completed_jobs_stats()
    assert stats["total_failed"] == 1
    assert stats["total_completed"] == 0


async def test_non_retryable_failure_is_terminal(queue):
    job_id = await queue.enqueue(update_job("gone"))
    await queue.dequeue(JobType.UPDATE)
    await queue.fail_job(job_id, "not_found: HTTP 404", retryable=False)
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 1


async def test_complete_job_records_stats(queue):
    job_id = await queue.enqueue(update_job("abc"))
    other = await queue.enqueue(Job.create(PopularDiscovery()))
    await queue.dequeue(JobType.UPDATE)
    await queue.dequeue(JobType.DISCOVERY)
    await queue.complete_job(job_id)
    await queue.complete_job(other)
    await queue.complete_job(other)  # idempotente

    stats = await queue.get_completed_jobs_stats()
    assert stats["total_completed"] == 2
    assert stats["completed_last_24h"] == 2
    assert stats["completed_by_type"] == {"update": 1, "discovery": 1}
    assert [e["id"] for e in stats["recent_completed"]] == [other, job_id]
    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED


async def test_finished_history_is_bounded(clock, policy):
    queue = MemoryJobQueue(policy=policy, completed_keep=2, clock=clock, rng=lambda: 0.0)
    ids = []
    for i in range(3):
        ids.append(await queue.enqueue(update_job(f"ext-{i}")))
        await queue.dequeue(JobType.UPDATE)
        await queue.complete_job(ids[-1])

    stats = await queue.get_completed_jobs_stats()
    assert stats["total_completed"] == 3
    assert len(stats["recent_completed"]) == 2
    with pytest.raises(JobNotFound):
        await queue.get_job(ids[0])


async def test_unknown_job_raises(queue):
    with pytest.raises(JobNotFound):
        await queue.get_job("job_missing")
    with pytest.raises(JobNotFound):
        await queue.complete_job("job_missing")
    with pytest.raises(JobNotFound):
        await queue.fail_job("job_missing", "x")


async def test_queue_stats_by_type_and_priority(queue):
    await queue.enqueue(update_job("a", Priority.HIGH))
    await queue.enqueue(update_job("b", Priority.HIGH))
    await queue.enqueue(update_job("c", Priority.LOW))
    await queue.enqueue(Job.create(PopularDiscovery(), priority=Priority.HIGH))
    await queue.dequeue(JobType.DISCOVERY)

    stats = await queue.get_queue_stats()
    assert stats["update"] == 3
    assert stats["discovery"] == 0
    assert stats["update_priority_10"] == 2
    assert stats["update_priority_1"] == 1
    assert stats["in_progress"] == 1


async def test_stale_in_progress_jobs_are_requeued(queue, clock):
    job_id = await queue.enqueue(update_job("abc", Priority.HIGH))
    await queue.dequeue(JobType.UPDATE)

    clock.advance(60)
    assert await queue.requeue_stale(lease_seconds=900) == 0

    clock.advance(900)
    assert await queue.requeue_stale(lease_seconds=900) == 1
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1
    assert job.error_msg == LEASE_EXPIRED_ERROR


async def test_zero_max_retries_fails_immediately(clock):
    queue = MemoryJobQueue(policy=RetryPolicy(max_retries=0), clock=clock)
    job_id = await queue.enqueue(update_job("abc"))
    await queue.dequeue(JobType.UPDATE)
    await queue.fail_job(job_id, "boom")
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 0

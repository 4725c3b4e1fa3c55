from datetime import timedelta

import pytest

from app.core.constants import CATEGORIES, SEARCH_KEYWORDS
from app.services.automation.errors import QueueUnavailable
from app.services.automation.models import (
    CategoryDiscovery,
    ExtensionUpdateRecord,
    Job,
    JobStatus,
    JobType,
    PopularDiscovery,
    Priority,
    RelatedDiscovery,
    SearchDiscovery,
    UpdateFrequency,
    UpdatePayload,
)
from app.services.automation.scheduler import Scheduler, SchedulerConfig, classify_priority
from tests.fakes import EXT_A, EXT_B, EXT_C


CONFIG = SchedulerConfig(max_jobs_per_run=100, initial_discovery=False)


async def drain(queue, job_type):
    jobs = []
    while True:
        job = await queue.dequeue(job_type)
        if job is None:
            return jobs
        jobs.append(job)


def schedule(ext_id, due, priority=Priority.LOW, frequency=UpdateFrequency.MONTHLY):
    return ExtensionUpdateRecord(extension_id=ext_id, next_update_due=due, priority=priority, frequency=frequency)


@pytest.mark.parametrize("users,trending,expected", [
    (2_000_000, False, (Priority.HIGH, UpdateFrequency.DAILY)),
    (1_000_000, False, (Priority.HIGH, UpdateFrequency.DAILY)),
    (999_999, False, (Priority.MEDIUM, UpdateFrequency.WEEKLY)),
    (500_000, False, (Priority.MEDIUM, UpdateFrequency.WEEKLY)),
    (100_000, False, (Priority.MEDIUM, UpdateFrequency.WEEKLY)),
    (99_999, False, (Priority.LOW, UpdateFrequency.MONTHLY)),
    (5_000, False, (Priority.LOW, UpdateFrequency.MONTHLY)),
    (5_000, True, (Priority.HIGH, UpdateFrequency.DAILY)),
])
def test_classify_priority(users, trending, expected):
    assert classify_priority(users, trending) == expected


async def test_run_once_enqueues_due_updates_and_reserves_next_cycle(queue, store, clock):
    store.schedules[EXT_A] = schedule(EXT_A, clock.now - timedelta(hours=1), Priority.HIGH, UpdateFrequency.DAILY)
    store.schedules[EXT_B] = schedule(EXT_B, clock.now - timedelta(days=2))
    store.schedules[EXT_C] = schedule(EXT_C, clock.now + timedelta(days=3))
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)

    summary = await scheduler.run_once()

    assert summary["updates_scheduled"] == 2
    updates = await drain(queue, JobType.UPDATE)
    assert [(j.payload.extension_id, j.priority) for j in updates] == [
        (EXT_A, Priority.HIGH),
        (EXT_B, Priority.LOW),
    ]
    assert all(j.payload.source == "scheduled_update" for j in updates)

    assert store.schedules[EXT_A].next_update_due == clock.now + timedelta(days=1)
    assert store.schedules[EXT_B].next_update_due == clock.now + timedelta(days=30)

    # próximo tick não duplica
    clock.advance(3600)
    summary = await scheduler.run_once()
    assert summary["updates_scheduled"] == 0


async def test_run_once_respects_max_jobs_per_run(queue, store, clock):
    for i in range(5):
        ext_id = chr(ord("a") + i) * 32
        store.schedules[ext_id] = schedule(ext_id, clock.now - timedelta(minutes=i + 1))
    scheduler = Scheduler(queue, store, SchedulerConfig(max_jobs_per_run=3, initial_discovery=False), clock=clock)

    summary = await scheduler.run_once()

    assert summary["updates_scheduled"] == 3
    assert (await queue.get_queue_stats())["update"] == 3
    summary = await scheduler.run_once()
    assert summary["updates_scheduled"] == 2


async def test_periodic_discovery_rotates_by_hour(queue, store, clock):
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)
    await scheduler.run_once()

    jobs = await drain(queue, JobType.DISCOVERY)
    payloads = {j.payload for j in jobs}
    assert payloads == {
        CategoryDiscovery(category=CATEGORIES[10 % len(CATEGORIES)], page=1),
        SearchDiscovery(keyword=SEARCH_KEYWORDS[10 % len(SEARCH_KEYWORDS)]),
    }

    # intervalo ainda não passou
    clock.advance(3600)
    await scheduler.run_once()
    assert await drain(queue, JobType.DISCOVERY) == []

    clock.advance(5 * 3600)
    await scheduler.run_once()
    jobs = await drain(queue, JobType.DISCOVERY)
    assert CategoryDiscovery(category=CATEGORIES[16 % len(CATEGORIES)], page=1) in {j.payload for j in jobs}


async def test_related_discovery_runs_once_a_day_at_two(queue, store, clock):
    store.popular = [EXT_A, EXT_B]
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)
    scheduler.last_discovery_run = clock.now

    await scheduler.run_once()
    assert await drain(queue, JobType.DISCOVERY) == []

    clock.advance(16 * 3600)  # 02:00 do dia seguinte
    scheduler.last_discovery_run = clock.now
    await scheduler.run_once()
    jobs = await drain(queue, JobType.DISCOVERY)
    assert [j.payload for j in jobs] == [RelatedDiscovery(extension_id=EXT_A), RelatedDiscovery(extension_id=EXT_B)]
    assert all(j.priority == Priority.LOW for j in jobs)

    clock.advance(30 * 60)
    await scheduler.run_once()
    assert await drain(queue, JobType.DISCOVERY) == []


async def test_cleanup_runs_daily(queue, store, clock):
    store.invalid_to_delete = 4
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)

    summary = await scheduler.run_once()
    assert summary["invalid_deleted"] == 4
    clock.advance(3600)
    summary = await scheduler.run_once()
    assert summary["invalid_deleted"] == 0
    assert store.cleanup_calls == 1

    clock.advance(23 * 3600)
    await scheduler.run_once()
    assert store.cleanup_calls == 2


async def test_run_once_requeues_stale_jobs(queue, store, clock):
    job_id = await queue.enqueue(Job.create(UpdatePayload(extension_id=EXT_A), priority=Priority.HIGH))
    await queue.dequeue(JobType.UPDATE)
    clock.advance(901)

    summary = await Scheduler(queue, store, CONFIG, clock=clock).run_once()

    assert summary["requeued"] == 1
    assert (await queue.get_job(job_id)).status == JobStatus.PENDING


async def test_enqueue_failure_does_not_abort_tick(queue, store, clock):
    store.schedules[EXT_A] = schedule(EXT_A, clock.now - timedelta(hours=1))
    store.schedules[EXT_B] = schedule(EXT_B, clock.now - timedelta(hours=2))
    original_enqueue = queue.enqueue
    calls = {"n": 0}

    async def flaky_enqueue(job):
        calls["n"] += 1
        if calls["n"] == 1:
            raise QueueUnavailable("connection lost")
        return await original_enqueue(job)

    queue.enqueue = flaky_enqueue
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)
    scheduler.last_discovery_run = clock.now

    summary = await scheduler.run_once()

    assert summary["updates_scheduled"] == 1
    assert scheduler.enqueue_failures == 1
    # a extensão que falhou continua vencida para o próximo tick
    failed = [s for s in store.schedules.values() if s.next_update_due <= clock.now]
    assert len(failed) == 1
    assert store.schedules[EXT_B].next_update_due == clock.now - timedelta(hours=2)


async def test_update_finished_during_enqueue_is_kept(queue, store, clock):
    store.schedules[EXT_A] = schedule(EXT_A, clock.now - timedelta(hours=1), Priority.MEDIUM, UpdateFrequency.WEEKLY)
    original_enqueue = queue.enqueue

    async def enqueue_and_update(job):
        job_id = await original_enqueue(job)
        # um worker termina o update antes do scheduler seguir adiante
        finished = await store.get_extension_update_record(EXT_A)
        finished.priority = Priority.HIGH
        finished.frequency = UpdateFrequency.DAILY
        finished.users = 1_500_000
        finished.advance(clock.now)
        await store.upsert_extension_update_record(finished)
        return job_id

    queue.enqueue = enqueue_and_update
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)
    scheduler.last_discovery_run = clock.now

    summary = await scheduler.run_once()

    assert summary["updates_scheduled"] == 1
    saved = store.schedules[EXT_A]
    assert saved.priority == Priority.HIGH
    assert saved.users == 1_500_000
    assert saved.last_successful_update == clock.now
    assert saved.next_update_due == clock.now + timedelta(days=7)


async def test_start_seeds_initial_discovery_and_is_idempotent(queue, store, clock):
    scheduler = Scheduler(queue, store, SchedulerConfig(initial_discovery=True), clock=clock)

    assert await scheduler.start() is True
    assert await scheduler.start() is False
    assert scheduler.running

    jobs = await drain(queue, JobType.DISCOVERY)
    assert len(jobs) == 16
    assert jobs[0].payload == PopularDiscovery()
    assert jobs[0].priority == Priority.HIGH
    assert sum(1 for j in jobs if isinstance(j.payload, CategoryDiscovery)) == 5
    assert sum(1 for j in jobs if isinstance(j.payload, SearchDiscovery)) == 10

    assert await scheduler.stop() is True
    assert await scheduler.stop() is False
    assert not scheduler.running


async def test_scheduler_stats(queue, store, clock):
    scheduler = Scheduler(queue, store, CONFIG, clock=clock)
    await scheduler.run_once()
    stats = await scheduler.get_scheduler_stats()

    assert stats["running"] is False
    assert stats["last_checked"] == clock.now.isoformat()
    assert stats["jobs_scheduled"] == 2
    assert stats["queue_stats"]["discovery"] == 2

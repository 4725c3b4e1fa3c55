from app.services.automation.models import JobStatus, JobType, Priority, SearchDiscovery
from tests.fakes import EXT_A, EXT_B


async def test_start_and_stop_are_idempotent(automation):
    assert (await automation.start())["status"] == "started"
    assert (await automation.start())["status"] == "already_running"
    assert automation.running
    assert automation.worker_pool.running
    assert automation.scheduler.running

    assert (await automation.stop())["status"] == "stopped"
    assert (await automation.stop())["status"] == "not_running"
    assert not automation.worker_pool.running
    assert not automation.scheduler.running


async def test_jobs_wait_while_stopped(automation, queue):
    await automation.start()
    await automation.stop()
    job_id = await automation.schedule_update(EXT_A)

    assert (await queue.get_job(job_id)).status == JobStatus.PENDING


async def test_status_aggregates_components(automation):
    status = await automation.status()

    assert status["running"] is False
    assert set(status) == {"running", "worker_stats", "scheduler_stats", "update_stats"}
    assert "queue_stats" in status["worker_stats"]
    assert "last_checked" in status["scheduler_stats"]
    assert status["update_stats"]["total_extensions"] == 0


async def test_schedule_update_defaults_to_high_manual(automation, queue):
    job_id = await automation.schedule_update(EXT_A)
    job = await automation.get_job(job_id)

    assert job.priority == Priority.HIGH
    assert job.payload.source == "manual"


async def test_schedule_discovery(automation):
    job_id = await automation.schedule_discovery(SearchDiscovery(keyword="vpn"), Priority.LOW)
    job = await automation.get_job(job_id)

    assert job.job_type == JobType.DISCOVERY
    assert job.priority == Priority.LOW
    assert (await automation.get_queue_stats())["discovery_priority_1"] == 1


async def test_bulk_schedule_dedupes(automation, queue):
    job_ids = await automation.bulk_schedule_updates([EXT_A, EXT_B, EXT_A])

    assert len(job_ids) == 2
    jobs = [await queue.get_job(job_id) for job_id in job_ids]
    assert [j.payload.extension_id for j in jobs] == [EXT_A, EXT_B]
    assert all(j.priority == Priority.MEDIUM for j in jobs)
    assert all(j.payload.source == "bulk_update" for j in jobs)


async def test_cleanup_and_metrics(automation, store):
    store.invalid_to_delete = 3

    assert await automation.cleanup_invalid_extensions() == 3
    assert automation.get_proxy_stats()["enabled"] is False
    assert automation.get_scraper_metrics()["total_requests"] == 0
    assert (await automation.get_completed_jobs_stats())["total_completed"] == 0

import json

import pytest

from app.services.automation.errors import JobNotFound, QueueUnavailable
from app.services.automation.models import Job, JobStatus, JobType, Priority, UpdatePayload
from app.services.automation.pg_queue import PostgresJobQueue


class FakeConnection:
    def __init__(self, row=None, execute_result="UPDATE 1", exists=None):
        self.row = row
        self.execute_result = execute_result
        self.exists = exists
        self.executed = []

    async def execute(self, sql, *args):
        self.executed.append((sql, args))
        return self.execute_result

    async def fetchrow(self, sql, *args):
        self.executed.append((sql, args))
        return self.row

    async def fetchval(self, sql, *args):
        return self.exists


class FakeAcquire:
    def __init__(self, conn, error=None):
        self._conn = conn
        self._error = error

    async def __aenter__(self):
        if self._error:
            raise self._error
        return self._conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self, conn=None, error=None):
        self.conn = conn or FakeConnection()
        self.error = error

    def acquire(self):
        return FakeAcquire(self.conn, self.error)


async def test_connection_errors_become_queue_unavailable(clock):
    queue = PostgresJobQueue(FakePool(error=ConnectionRefusedError("refused")), clock=clock)
    with pytest.raises(QueueUnavailable):
        await queue.enqueue(Job.create(UpdatePayload(extension_id="abc")))
    with pytest.raises(QueueUnavailable):
        await queue.dequeue(JobType.UPDATE)


async def test_enqueue_serializes_payload(clock):
    pool = FakePool()
    queue = PostgresJobQueue(pool, clock=clock)

    job_id = await queue.enqueue(Job.create(UpdatePayload(extension_id="abc"), priority=Priority.HIGH))

    sql, args = pool.conn.executed[0]
    assert "INSERT INTO automation_jobs" in sql
    assert args[0] == job_id
    assert args[1] == "update"
    assert args[2] == 10
    assert json.loads(args[3]) == {"extension_id": "abc", "source": "manual"}
    assert args[4] == "pending"


async def test_dequeue_maps_claimed_row(clock):
    row = {
        "id": "job_1",
        "job_type": "update",
        "priority": 5,
        "payload": json.dumps({"extension_id": "abc", "source": "scheduled_update"}),
        "status": "in_progress",
        "retry_count": 1,
        "max_retries": 3,
        "error_msg": "timeout",
        "created_at": clock.now,
        "updated_at": clock.now,
        "available_at": clock.now,
        "claimed_at": clock.now,
        "completed_at": None,
    }
    queue = PostgresJobQueue(FakePool(FakeConnection(row=row)), clock=clock)

    job = await queue.dequeue(JobType.UPDATE)

    assert job.id == "job_1"
    assert job.status == JobStatus.IN_PROGRESS
    assert job.priority == Priority.MEDIUM
    assert job.payload == UpdatePayload(extension_id="abc", source="scheduled_update")


async def test_dequeue_empty(clock):
    queue = PostgresJobQueue(FakePool(FakeConnection(row=None)), clock=clock)
    assert await queue.dequeue(JobType.DISCOVERY) is None


async def test_complete_unknown_job_raises(clock):
    conn = FakeConnection(execute_result="UPDATE 0", exists=None)
    queue = PostgresJobQueue(FakePool(conn), clock=clock)
    with pytest.raises(JobNotFound):
        await queue.complete_job("job_missing")

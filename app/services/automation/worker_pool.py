"""
Worker Pool - tasks asyncio que consomem a fila por tipo de job.

Ciclo de cada worker: IDLE -> DEQUEUING -> EXECUTING -> REPORTING -> IDLE.
Falha de um job nunca derruba o worker; o resultado é sempre reportado
à fila (complete_job ou fail_job).

stop() espera os jobs em execução até o grace period; workers que não
terminarem são cancelados e seus jobs ficam IN_PROGRESS até o lease vencer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Protocol

from app.core.config import settings
from app.services.automation.errors import QueueUnavailable, is_retryable
from app.services.automation.models import Job, JobType
from app.services.automation.queue import JobQueue

logger = logging.getLogger(__name__)


class JobHandler(Protocol):
    def handle(self, job: Job) -> Awaitable[None]:
        ...


class WorkerState(str, Enum):
    IDLE = "idle"
    DEQUEUING = "dequeuing"
    EXECUTING = "executing"
    REPORTING = "reporting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class WorkerPoolConfig:
    discovery_workers: int = 4
    update_workers: int = 6
    idle_sleep: float = 0.5
    error_sleep: float = 1.0
    shutdown_grace: float = 30.0
    request_delay: float = 1.0

    @classmethod
    def from_settings(cls) -> "WorkerPoolConfig":
        return cls(
            discovery_workers=settings.DISCOVERY_WORKERS,
            update_workers=settings.UPDATE_WORKERS,
            idle_sleep=settings.WORKER_IDLE_SLEEP_SECONDS,
            error_sleep=settings.WORKER_ERROR_SLEEP_SECONDS,
            shutdown_grace=settings.WORKER_SHUTDOWN_GRACE_SECONDS,
            request_delay=settings.WORKER_REQUEST_DELAY_SECONDS,
        )

    def workers_for(self, job_type: JobType) -> int:
        if job_type == JobType.DISCOVERY:
            return self.discovery_workers
        return self.update_workers


class WorkerPool:
    """Pool fixo de workers por tipo de job."""

    def __init__(self, queue: JobQueue, config: Optional[WorkerPoolConfig] = None):
        self._queue = queue
        self.config = config or WorkerPoolConfig()
        self._tasks: List[asyncio.Task] = []
        self._states: Dict[str, WorkerState] = {}
        self._workers_by_type: Dict[str, int] = {}
        self._stopping = asyncio.Event()
        self._running = False
        self._started_at: Optional[float] = None

        # Métricas
        self.jobs_processed = 0
        self.jobs_failed = 0
        self.report_errors = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, handlers: Dict[JobType, JobHandler]) -> bool:
        """Inicia os workers. Retorna False se já estava rodando."""
        if self._running:
            return False

        self._stopping = asyncio.Event()
        self._tasks = []
        self._states = {}
        self._workers_by_type = {}

        for job_type in JobType:
            handler = handlers.get(job_type)
            count = self.config.workers_for(job_type)
            if handler is None or count <= 0:
                continue
            self._workers_by_type[job_type.value] = count
            for i in range(count):
                worker_id = f"{job_type.value}-{i}"
                self._states[worker_id] = WorkerState.IDLE
                self._tasks.append(asyncio.create_task(
                    self._worker(worker_id, job_type, handler),
                    name=f"worker-{worker_id}",
                ))

        self._running = True
        self._started_at = time.time()
        logger.info(f"[WorkerPool] 🚀 {len(self._tasks)} workers iniciados: {self._workers_by_type}")
        return True

    async def stop(self) -> bool:
        """Para os workers (idempotente). Retorna False se já estava parado."""
        if not self._running:
            return False

        self._stopping.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self.config.shutdown_grace)
            if pending:
                logger.warning(
                    f"[WorkerPool] ⏱️ {len(pending)} workers não terminaram em "
                    f"{self.config.shutdown_grace}s, cancelando"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        for worker_id in self._states:
            self._states[worker_id] = WorkerState.STOPPED
        self._running = False
        logger.info(
            f"[WorkerPool] 🛑 Parado ({self.jobs_processed} jobs processados, {self.jobs_failed} falhas)"
        )
        return True

    async def _sleep(self, seconds: float) -> None:
        """Sleep interrompível pelo stop."""
        if seconds <= 0 or self._stopping.is_set():
            return
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker(self, worker_id: str, job_type: JobType, handler: JobHandler) -> None:
        logger.debug(f"[WorkerPool] Worker {worker_id} iniciado")
        while not self._stopping.is_set():
            self._states[worker_id] = WorkerState.DEQUEUING
            try:
                job = await self._queue.dequeue(job_type)
            except QueueUnavailable as e:
                self._states[worker_id] = WorkerState.IDLE
                logger.error(f"[WorkerPool] ❌ {worker_id}: fila indisponível: {e}")
                await self._sleep(self.config.error_sleep)
                continue
            except Exception as e:
                self._states[worker_id] = WorkerState.IDLE
                logger.error(f"[WorkerPool] ❌ {worker_id}: erro no dequeue: {e}", exc_info=True)
                await self._sleep(self.config.error_sleep)
                continue

            if job is None:
                self._states[worker_id] = WorkerState.IDLE
                await self._sleep(self.config.idle_sleep)
                continue

            await self._execute(worker_id, job, handler)
            self._states[worker_id] = WorkerState.IDLE
            await self._sleep(self.config.request_delay)

        self._states[worker_id] = WorkerState.STOPPED

    async def _execute(self, worker_id: str, job: Job, handler: JobHandler) -> None:
        self._states[worker_id] = WorkerState.EXECUTING
        start = time.perf_counter()
        error: Optional[BaseException] = None
        try:
            await handler.handle(job)
        except Exception as e:
            error = e

        self._states[worker_id] = WorkerState.REPORTING
        elapsed = time.perf_counter() - start
        try:
            if error is None:
                await self._queue.complete_job(job.id)
                self.jobs_processed += 1
                logger.debug(f"[WorkerPool] ✅ {worker_id}: {job.id} concluído em {elapsed:.2f}s")
            else:
                await self._queue.fail_job(job.id, str(error) or type(error).__name__, is_retryable(error))
                self.jobs_failed += 1
                logger.warning(f"[WorkerPool] ⚠️ {worker_id}: {job.id} falhou em {elapsed:.2f}s: {error}")
        except Exception as e:
            # Job fica IN_PROGRESS; o lease reaper devolve à fila depois
            self.report_errors += 1
            logger.error(f"[WorkerPool] ❌ {worker_id}: não foi possível reportar {job.id}: {e}")

    async def get_stats(self) -> dict:
        states: Dict[str, int] = {}
        for state in self._states.values():
            states[state.value] = states.get(state.value, 0) + 1
        return {
            "running": self._running,
            "total_workers": sum(self._workers_by_type.values()),
            "workers_by_type": dict(self._workers_by_type),
            "worker_states": states,
            "jobs_processed": self.jobs_processed,
            "jobs_failed": self.jobs_failed,
            "report_errors": self.report_errors,
            "uptime_seconds": round(time.time() - self._started_at, 1) if self._running and self._started_at else 0,
            "queue_stats": await self._queue.get_queue_stats(),
        }

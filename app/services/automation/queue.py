"""
Job Queue - fila durável de jobs com prioridade.

Contrato comum aos backends:
- enqueue: job entra PENDING, ordenado por prioridade (maior peso primeiro)
  e FIFO dentro do mesmo nível
- dequeue: claim atômico do job elegível de maior prioridade (nunca entrega
  o mesmo job para dois workers)
- fail_job: re-tentativa com backoff exponencial até max_retries, depois FAILED
- requeue_stale: jobs IN_PROGRESS com lease vencido voltam pelo caminho de falha

MemoryJobQueue atende execução single-process e testes; PostgresJobQueue
(pg_queue.py) é o backend de produção.
"""

import asyncio
import heapq
import itertools
import logging
import random
from abc import ABC, abstractmethod
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

from app.services.automation.backoff import RetryPolicy, retry_delay
from app.services.automation.errors import JobNotFound
from app.services.automation.models import (
    CompletedJobEntry,
    Job,
    JobStatus,
    JobType,
    Priority,
    new_job_id,
    utcnow,
)

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "lease expired"
RECENT_COMPLETED_LIMIT = 50


def prepare_for_enqueue(job: Job, now: datetime, policy: RetryPolicy) -> Job:
    """Normaliza um job novo: id, status, timestamps e limite de retries."""
    if not job.id:
        job.id = new_job_id()
    job.status = JobStatus.PENDING
    job.priority = Priority(job.priority)
    if job.max_retries is None:
        job.max_retries = policy.max_retries
    job.created_at = job.created_at or now
    job.updated_at = now
    job.available_at = now
    job.claimed_at = None
    job.completed_at = None
    return job


def apply_failure(
    job: Job,
    error: str,
    retryable: bool,
    now: datetime,
    policy: RetryPolicy,
    rng: Callable[[], float],
) -> bool:
    """
    Registra uma falha no job. Retorna True se o job voltou para a fila.

    retry_count nunca ultrapassa max_retries: ao atingir o limite o job
    vira FAILED (terminal). Cada re-tentativa desce um nível de prioridade.
    """
    job.retry_count = min(job.retry_count + 1, max(job.max_retries, 0))
    job.error_msg = error
    job.updated_at = now
    job.claimed_at = None

    if retryable and job.retry_count < job.max_retries:
        job.status = JobStatus.PENDING
        job.priority = Priority(job.priority).demote()
        job.available_at = now + timedelta(seconds=retry_delay(job.retry_count, policy, rng))
        return True

    job.status = JobStatus.FAILED
    job.completed_at = now
    return False


def summarize_finished(
    entries: List[CompletedJobEntry],
    now: datetime,
    total_completed: int,
    total_failed: int,
    completed_by_type: Dict[str, int],
) -> Dict:
    """Monta o dict de estatísticas de jobs finalizados (mais recentes primeiro em `entries`)."""
    cutoff = now - timedelta(hours=24)
    last_24h = sum(
        1 for e in entries
        if e.status == JobStatus.COMPLETED and e.finished_at >= cutoff
    )
    return {
        "total_completed": total_completed,
        "total_failed": total_failed,
        "completed_last_24h": last_24h,
        "completed_by_type": dict(completed_by_type),
        "recent_completed": [e.to_dict() for e in entries[:RECENT_COMPLETED_LIMIT]],
    }


class JobQueue(ABC):
    """Interface da fila de jobs."""

    @abstractmethod
    async def enqueue(self, job: Job) -> str:
        ...

    @abstractmethod
    async def dequeue(self, job_type: JobType) -> Optional[Job]:
        ...

    @abstractmethod
    async def complete_job(self, job_id: str) -> None:
        ...

    @abstractmethod
    async def fail_job(self, job_id: str, error: str, retryable: bool = True) -> None:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job:
        ...

    @abstractmethod
    async def get_queue_stats(self) -> Dict[str, int]:
        ...

    @abstractmethod
    async def get_completed_jobs_stats(self) -> Dict:
        ...

    @abstractmethod
    async def requeue_stale(self, lease_seconds: float) -> int:
        ...

    async def prune_finished(self) -> int:
        """Remove jobs finalizados além do limite de retenção."""
        return 0

    async def close(self) -> None:
        return None


class MemoryJobQueue(JobQueue):
    """
    Fila em memória baseada em heap.

    Um heap por tipo de job com entradas (-prioridade, seq, job_id).
    Jobs em backoff (available_at no futuro) são pulados no dequeue e
    devolvidos ao heap.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        completed_keep: int = 1000,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[Callable[[], float]] = None,
    ):
        self._policy = policy or RetryPolicy()
        self._clock = clock
        self._rng = rng or random.random
        self._jobs: Dict[str, Job] = {}
        self._heaps: Dict[JobType, List[Tuple[int, int, str]]] = {t: [] for t in JobType}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()

        # Histórico de finalizados (mais antigo à esquerda)
        self._finished: Deque[CompletedJobEntry] = deque()
        self._completed_keep = completed_keep
        self._total_completed = 0
        self._total_failed = 0
        self._completed_by_type: Counter = Counter()

    def _push(self, job: Job) -> None:
        heapq.heappush(self._heaps[job.job_type], (-int(job.priority), next(self._seq), job.id))

    def _record_finished(self, job: Job) -> None:
        if len(self._finished) >= self._completed_keep:
            oldest = self._finished.popleft()
            stale = self._jobs.get(oldest.id)
            if stale is not None and stale.is_terminal:
                del self._jobs[oldest.id]
        self._finished.append(CompletedJobEntry(
            id=job.id,
            job_type=job.job_type,
            status=job.status,
            finished_at=job.completed_at,
            payload=job.payload.to_dict(),
        ))
        if job.status == JobStatus.COMPLETED:
            self._total_completed += 1
            self._completed_by_type[job.job_type.value] += 1
        else:
            self._total_failed += 1

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def enqueue(self, job: Job) -> str:
        async with self._lock:
            prepare_for_enqueue(job, self._clock(), self._policy)
            self._jobs[job.id] = job
            self._push(job)
        logger.debug(f"[JobQueue] ➕ {job.id} ({job.job_type.value}, prioridade {int(job.priority)})")
        return job.id

    async def dequeue(self, job_type: JobType) -> Optional[Job]:
        async with self._lock:
            now = self._clock()
            heap = self._heaps[job_type]
            deferred = []
            claimed = None
            while heap:
                entry = heapq.heappop(heap)
                job = self._jobs.get(entry[2])
                if job is None or job.status != JobStatus.PENDING:
                    continue
                if job.available_at and job.available_at > now:
                    deferred.append(entry)
                    continue
                claimed = job
                break
            for entry in deferred:
                heapq.heappush(heap, entry)

            if claimed is None:
                return None
            claimed.status = JobStatus.IN_PROGRESS
            claimed.claimed_at = now
            claimed.updated_at = now
            return claimed

    async def complete_job(self, job_id: str) -> None:
        async with self._lock:
            job = self._get(job_id)
            if job.is_terminal:
                return
            now = self._clock()
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.updated_at = now
            job.claimed_at = None
            self._record_finished(job)

    async def fail_job(self, job_id: str, error: str, retryable: bool = True) -> None:
        async with self._lock:
            job = self._get(job_id)
            if job.is_terminal:
                return
            self._fail_locked(job, error, retryable)

    def _fail_locked(self, job: Job, error: str, retryable: bool) -> None:
        requeued = apply_failure(job, error, retryable, self._clock(), self._policy, self._rng)
        if requeued:
            self._push(job)
            logger.info(
                f"[JobQueue] 🔁 {job.id} re-tentativa {job.retry_count}/{job.max_retries} "
                f"(prioridade {int(job.priority)}): {error}"
            )
        else:
            self._record_finished(job)
            logger.warning(f"[JobQueue] ❌ {job.id} falhou definitivamente: {error}")

    async def get_job(self, job_id: str) -> Job:
        async with self._lock:
            return self._get(job_id)

    async def get_queue_stats(self) -> Dict[str, int]:
        async with self._lock:
            stats: Dict[str, int] = {t.value: 0 for t in JobType}
            in_progress = 0
            for job in self._jobs.values():
                if job.status == JobStatus.PENDING:
                    stats[job.job_type.value] += 1
                    key = f"{job.job_type.value}_priority_{int(job.priority)}"
                    stats[key] = stats.get(key, 0) + 1
                elif job.status == JobStatus.IN_PROGRESS:
                    in_progress += 1
            stats["in_progress"] = in_progress
            return stats

    async def get_completed_jobs_stats(self) -> Dict:
        async with self._lock:
            entries = list(reversed(self._finished))
            return summarize_finished(
                entries,
                self._clock(),
                self._total_completed,
                self._total_failed,
                self._completed_by_type,
            )

    async def requeue_stale(self, lease_seconds: float) -> int:
        async with self._lock:
            cutoff = self._clock() - timedelta(seconds=lease_seconds)
            stale = [
                job for job in self._jobs.values()
                if job.status == JobStatus.IN_PROGRESS and job.claimed_at and job.claimed_at <= cutoff
            ]
            for job in stale:
                self._fail_locked(job, LEASE_EXPIRED_ERROR, True)
        if stale:
            logger.warning(f"[JobQueue] ⏰ {len(stale)} jobs com lease vencido devolvidos à fila")
        return len(stale)

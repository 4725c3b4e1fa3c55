"""
Scheduler - decide o que entra na fila e com qual prioridade.

A cada tick:
1. devolve à fila jobs com lease vencido
2. discovery periódica (categoria e palavra-chave em rotação pela hora)
3. discovery de relacionadas das extensões mais populares (1x por dia, às 2h)
4. jobs de update para extensões com next_update_due vencido
5. limpeza diária de registros inválidos

Classificação por usuários:
    >= 1M        -> HIGH / diária
    100k .. 1M   -> MEDIUM / semanal
    < 100k       -> LOW / mensal
    trending     -> HIGH / diária
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from app.core.config import settings
from app.core.constants import (
    CATEGORIES,
    HIGH_PRIORITY_MIN_USERS,
    INITIAL_DISCOVERY_CATEGORIES,
    INITIAL_DISCOVERY_KEYWORDS,
    MEDIUM_PRIORITY_MIN_USERS,
    RELATED_DISCOVERY_HOUR,
    RELATED_DISCOVERY_TOP_N,
    SEARCH_KEYWORDS,
)
from app.services.automation.errors import QueueUnavailable
from app.services.automation.models import (
    CategoryDiscovery,
    Job,
    PopularDiscovery,
    Priority,
    RelatedDiscovery,
    SearchDiscovery,
    UpdateFrequency,
    UpdatePayload,
    utcnow,
)
from app.services.automation.queue import JobQueue

logger = logging.getLogger(__name__)

SCHEDULED_UPDATE_SOURCE = "scheduled_update"


def classify_priority(users: int, trending: bool = False) -> Tuple[Priority, UpdateFrequency]:
    if trending or users >= HIGH_PRIORITY_MIN_USERS:
        return Priority.HIGH, UpdateFrequency.DAILY
    if users >= MEDIUM_PRIORITY_MIN_USERS:
        return Priority.MEDIUM, UpdateFrequency.WEEKLY
    return Priority.LOW, UpdateFrequency.MONTHLY


@dataclass(frozen=True)
class SchedulerConfig:
    update_interval: float = 3600.0
    discovery_interval: float = 6 * 3600.0
    cleanup_interval: float = 24 * 3600.0
    max_jobs_per_run: int = 100
    lease_seconds: float = 900.0
    initial_discovery: bool = True

    @classmethod
    def from_settings(cls) -> "SchedulerConfig":
        return cls(
            update_interval=settings.SCHEDULER_UPDATE_INTERVAL_SECONDS,
            discovery_interval=settings.SCHEDULER_DISCOVERY_INTERVAL_SECONDS,
            cleanup_interval=settings.SCHEDULER_CLEANUP_INTERVAL_SECONDS,
            max_jobs_per_run=settings.SCHEDULER_MAX_JOBS_PER_RUN,
            lease_seconds=settings.JOB_LEASE_SECONDS,
        )


class Scheduler:
    """Loop periódico que alimenta a fila de jobs."""

    def __init__(
        self,
        queue: JobQueue,
        store,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._queue = queue
        self._store = store
        self.config = config or SchedulerConfig()
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self.last_checked: Optional[datetime] = None
        self.last_discovery_run: Optional[datetime] = None
        self.last_related_run: Optional[datetime] = None
        self.last_cleanup_run: Optional[datetime] = None
        self.jobs_scheduled = 0
        self.enqueue_failures = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> bool:
        """Inicia o loop. Retorna False se já estava rodando."""
        if self._running:
            return False
        self._running = True
        if self.config.initial_discovery:
            await self._schedule_initial_discovery(self._clock())
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[Scheduler] ▶️ Iniciado (tick a cada {self.config.update_interval}s)")
        return True

    async def stop(self) -> bool:
        """Para o loop. Jobs já enfileirados não são tocados."""
        if not self._running:
            return False
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("[Scheduler] ⏹️ Parado")
        return True

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"[Scheduler] ❌ Erro no tick: {e}", exc_info=True)
            await asyncio.sleep(self.config.update_interval)

    async def _enqueue(self, payload, priority: Priority) -> Optional[str]:
        """Enfileira um job; falha de enqueue é logada e o ciclo continua."""
        try:
            job_id = await self._queue.enqueue(Job.create(payload, priority=priority))
        except QueueUnavailable as e:
            self.enqueue_failures += 1
            logger.error(f"[Scheduler] ❌ Falha ao enfileirar {payload!r}: {e}")
            return None
        self.jobs_scheduled += 1
        return job_id

    async def _schedule_initial_discovery(self, now: datetime) -> None:
        await self._enqueue(PopularDiscovery(), Priority.HIGH)
        for category in CATEGORIES[:INITIAL_DISCOVERY_CATEGORIES]:
            await self._enqueue(CategoryDiscovery(category=category, page=1), Priority.MEDIUM)
        for keyword in SEARCH_KEYWORDS[:INITIAL_DISCOVERY_KEYWORDS]:
            await self._enqueue(SearchDiscovery(keyword=keyword), Priority.LOW)
        self.last_discovery_run = now
        logger.info(
            f"[Scheduler] 🌱 Discovery inicial: populares + {INITIAL_DISCOVERY_CATEGORIES} categorias "
            f"+ {INITIAL_DISCOVERY_KEYWORDS} palavras-chave"
        )

    async def _schedule_periodic_discovery(self, now: datetime) -> None:
        category = CATEGORIES[now.hour % len(CATEGORIES)]
        keyword = SEARCH_KEYWORDS[now.hour % len(SEARCH_KEYWORDS)]
        await self._enqueue(CategoryDiscovery(category=category, page=1), Priority.MEDIUM)
        await self._enqueue(SearchDiscovery(keyword=keyword), Priority.LOW)
        self.last_discovery_run = now
        logger.info(f"[Scheduler] 🔭 Discovery periódica: categoria={category}, busca={keyword!r}")

    async def _schedule_related_discovery(self, now: datetime) -> None:
        popular = await self._store.query_popular_extensions(HIGH_PRIORITY_MIN_USERS, RELATED_DISCOVERY_TOP_N)
        for ext_id in popular:
            await self._enqueue(RelatedDiscovery(extension_id=ext_id), Priority.LOW)
        self.last_related_run = now
        logger.info(f"[Scheduler] 🔗 Discovery de relacionadas para {len(popular)} extensões populares")

    async def _schedule_due_updates(self, now: datetime) -> int:
        due = await self._store.query_due_extensions(now, self.config.max_jobs_per_run)
        scheduled = 0
        for record in due:
            # Reserva o próximo ciclo antes de enfileirar; desfeita se o enqueue falhar
            previous_due = record.next_update_due
            reserved = now + record.frequency.interval
            if reserved > previous_due:
                record.next_update_due = reserved
            await self._store.upsert_extension_update_record(record)

            job_id = await self._enqueue(
                UpdatePayload(extension_id=record.extension_id, source=SCHEDULED_UPDATE_SOURCE),
                record.priority,
            )
            if job_id is None:
                await self._release_reservation(record.extension_id, record.next_update_due, previous_due)
                continue
            scheduled += 1
        if due:
            logger.info(f"[Scheduler] 📅 {scheduled}/{len(due)} updates vencidos enfileirados")
        return scheduled

    async def _release_reservation(self, extension_id: str, reserved: datetime, previous_due: datetime) -> None:
        """Devolve o vencimento original se ninguém mexeu na agenda desde a reserva."""
        current = await self._store.get_extension_update_record(extension_id)
        if current is None or current.next_update_due != reserved:
            return
        current.next_update_due = previous_due
        await self._store.upsert_extension_update_record(current)

    def _elapsed(self, last: Optional[datetime], now: datetime, interval: float) -> bool:
        return last is None or now - last >= timedelta(seconds=interval)

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Executa um ciclo completo do scheduler."""
        now = now or self._clock()
        summary = {"requeued": 0, "updates_scheduled": 0, "invalid_deleted": 0}

        summary["requeued"] = await self._queue.requeue_stale(self.config.lease_seconds)

        if self._elapsed(self.last_discovery_run, now, self.config.discovery_interval):
            await self._schedule_periodic_discovery(now)

        if now.hour == RELATED_DISCOVERY_HOUR and (
            self.last_related_run is None or self.last_related_run.date() != now.date()
        ):
            await self._schedule_related_discovery(now)

        summary["updates_scheduled"] = await self._schedule_due_updates(now)

        if self._elapsed(self.last_cleanup_run, now, self.config.cleanup_interval):
            summary["invalid_deleted"] = await self._store.delete_invalid_extensions()
            await self._queue.prune_finished()
            self.last_cleanup_run = now

        self.last_checked = now
        return summary

    async def get_scheduler_stats(self) -> dict:
        def ts(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "running": self._running,
            "queue_stats": await self._queue.get_queue_stats(),
            "last_checked": ts(self.last_checked),
            "last_discovery_run": ts(self.last_discovery_run),
            "last_related_run": ts(self.last_related_run),
            "last_cleanup_run": ts(self.last_cleanup_run),
            "jobs_scheduled": self.jobs_scheduled,
            "enqueue_failures": self.enqueue_failures,
            "update_interval_seconds": self.config.update_interval,
        }

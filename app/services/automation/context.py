"""
Automation Context - fachada do pipeline.

Liga fila, datastore, proxy pool, executor, handlers, worker pool e
scheduler. Não há singleton de módulo: a aplicação cria um contexto
(from_settings) e o guarda em app.state; testes montam o seu com fakes.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from app.core.config import settings
from app.core.proxy import ProxyConfig, fetch_proxy_list, load_proxy_file
from app.services.automation.backoff import RetryPolicy
from app.services.automation.discovery import DiscoveryHandler
from app.services.automation.models import (
    DiscoveryPayload,
    Job,
    JobType,
    Priority,
    UpdatePayload,
)
from app.services.automation.queue import JobQueue, MemoryJobQueue
from app.services.automation.scheduler import Scheduler, SchedulerConfig
from app.services.automation.updater import UpdateHandler
from app.services.automation.worker_pool import JobHandler, WorkerPool, WorkerPoolConfig
from app.services.database_service import ExtensionStore
from app.services.scraper.executor import ScrapeExecutor
from app.services.scraper_manager.proxy_manager import ProxyPool, ProxyPoolConfig

logger = logging.getLogger(__name__)

MANUAL_UPDATE_SOURCE = "manual"
BULK_UPDATE_SOURCE = "bulk_update"


class AutomationContext:
    """Ponto único de controle do pipeline (start/stop/status/agendamento)."""

    def __init__(
        self,
        queue: JobQueue,
        store: ExtensionStore,
        proxy_pool: ProxyPool,
        executor: ScrapeExecutor,
        worker_config: Optional[WorkerPoolConfig] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        handlers: Optional[Dict[JobType, JobHandler]] = None,
    ):
        self.queue = queue
        self.store = store
        self.proxy_pool = proxy_pool
        self.executor = executor
        self.handlers = handlers or {
            JobType.DISCOVERY: DiscoveryHandler(queue, store, executor),
            JobType.UPDATE: UpdateHandler(queue, store, executor),
        }
        self.worker_pool = WorkerPool(queue, worker_config)
        self.scheduler = Scheduler(queue, store, scheduler_config)
        self._lock = asyncio.Lock()
        self._running = False

    @classmethod
    async def from_settings(cls) -> "AutomationContext":
        """Monta o contexto de produção a partir das variáveis de ambiente."""
        policy = RetryPolicy.from_settings()

        if settings.JOB_QUEUE_BACKEND == "memory":
            queue: JobQueue = MemoryJobQueue(policy=policy, completed_keep=settings.COMPLETED_JOBS_KEEP)
        else:
            from app.core.database import get_pool
            from app.services.automation.pg_queue import PostgresJobQueue

            pg_queue = PostgresJobQueue(
                await get_pool(), policy=policy, completed_keep=settings.COMPLETED_JOBS_KEEP
            )
            await pg_queue.ensure_schema()
            queue = pg_queue

        from app.services.database_service import get_extension_store
        store = get_extension_store()
        await store.ensure_schema()

        proxies: List[ProxyConfig] = load_proxy_file(settings.PROXY_FILE)
        if not proxies and settings.PROXY_LIST_URL:
            proxies = await fetch_proxy_list(settings.PROXY_LIST_URL)
        pool_config = ProxyPoolConfig.from_settings()
        proxy_pool = ProxyPool(proxies, config=pool_config)

        executor = ScrapeExecutor(
            proxy_pool=proxy_pool,
            timeout=settings.SCRAPE_TIMEOUT_SECONDS,
            direct_fallback=pool_config.direct_fallback,
        )
        return cls(
            queue=queue,
            store=store,
            proxy_pool=proxy_pool,
            executor=executor,
            worker_config=WorkerPoolConfig.from_settings(),
            scheduler_config=SchedulerConfig.from_settings(),
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> dict:
        async with self._lock:
            if self._running:
                return {"status": "already_running", "message": "Automation is already running"}
            self.proxy_pool.start_health_monitor()
            await self.worker_pool.start(self.handlers)
            await self.scheduler.start()
            self._running = True
        logger.info("[Automation] 🚀 Pipeline iniciado")
        return {"status": "started", "message": "Automation started"}

    async def stop(self) -> dict:
        async with self._lock:
            if not self._running:
                return {"status": "not_running", "message": "Automation is not running"}
            await self.scheduler.stop()
            await self.worker_pool.stop()
            await self.proxy_pool.stop_health_monitor()
            self._running = False
        logger.info("[Automation] 🛑 Pipeline parado")
        return {"status": "stopped", "message": "Automation stopped"}

    async def status(self) -> dict:
        return {
            "running": self._running,
            "worker_stats": await self.worker_pool.get_stats(),
            "scheduler_stats": await self.scheduler.get_scheduler_stats(),
            "update_stats": await self.store.get_update_stats(),
        }

    async def schedule_discovery(self, payload: DiscoveryPayload, priority: Priority = Priority.MEDIUM) -> str:
        job_id = await self.queue.enqueue(Job.create(payload, priority=priority))
        logger.info(f"[Automation] 📥 Discovery {payload.kind} agendada: {job_id}")
        return job_id

    async def schedule_update(
        self,
        extension_id: str,
        priority: Priority = Priority.HIGH,
        source: str = MANUAL_UPDATE_SOURCE,
    ) -> str:
        job_id = await self.queue.enqueue(Job.create(
            UpdatePayload(extension_id=extension_id, source=source), priority=priority
        ))
        logger.info(f"[Automation] 📥 Update de {extension_id} agendado: {job_id}")
        return job_id

    async def bulk_schedule_updates(self, extension_ids: List[str], priority: Priority = Priority.MEDIUM) -> List[str]:
        job_ids = []
        seen = set()
        for ext_id in extension_ids:
            if ext_id in seen:
                continue
            seen.add(ext_id)
            job_ids.append(await self.queue.enqueue(Job.create(
                UpdatePayload(extension_id=ext_id, source=BULK_UPDATE_SOURCE), priority=priority
            )))
        logger.info(f"[Automation] 📥 {len(job_ids)} updates em lote agendados")
        return job_ids

    async def get_queue_stats(self) -> Dict[str, int]:
        return await self.queue.get_queue_stats()

    async def get_completed_jobs_stats(self) -> dict:
        return await self.queue.get_completed_jobs_stats()

    async def get_job(self, job_id: str) -> Job:
        return await self.queue.get_job(job_id)

    def get_proxy_stats(self) -> dict:
        return self.proxy_pool.get_stats()

    def get_scraper_metrics(self) -> dict:
        return self.executor.get_metrics()

    async def cleanup_invalid_extensions(self) -> int:
        deleted = await self.store.delete_invalid_extensions()
        logger.info(f"[Automation] 🧹 Limpeza manual: {deleted} extensões inválidas removidas")
        return deleted

    async def close(self) -> None:
        await self.stop()
        await self.queue.close()

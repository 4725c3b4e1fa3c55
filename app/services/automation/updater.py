"""
Update Handler - re-scrape de uma extensão, persistência e reagendamento.

Após um update bem sucedido:
- grava a extensão (+ snapshot) e atualiza a agenda (prioridade/frequência)
- extensão nova com muitos usuários dispara discovery de relacionadas
- mudança significativa desde o último scrape marca a extensão como trending
  e gera um update HIGH imediato

Falhas incrementam consecutive_failures; NOT_FOUND repetido marca a extensão
como removida da loja.
"""

import logging
from datetime import datetime
from typing import Callable

from app.core.constants import RELATED_DISCOVERY_MIN_USERS, REMOVED_AFTER_NOT_FOUND
from app.services.automation.errors import InvalidPayload, JobTerminalFailure, ScrapeError, ScrapeErrorKind
from app.services.automation.models import (
    ExtensionUpdateRecord,
    Job,
    Priority,
    RelatedDiscovery,
    UpdatePayload,
    utcnow,
)
from app.services.automation.queue import JobQueue
from app.services.automation.scheduler import classify_priority
from app.services.database_service import ExtensionStore
from app.services.scraper.executor import ScrapeExecutor
from app.services.scraper.models import ExtensionRecord

logger = logging.getLogger(__name__)

PRIORITY_UPDATE_SOURCE = "priority_update"


def is_significant_change(old: ExtensionRecord, new: ExtensionRecord) -> bool:
    """Crescimento relevante de usuários/reviews ou variação de rating."""
    user_growth = new.users - old.users
    if user_growth > 10_000:
        return True
    if old.users > 0 and user_growth / old.users > 0.10:
        return True

    if abs(new.rating - old.rating) > 0.2:
        return True

    review_growth = new.review_count - old.review_count
    if review_growth > 100:
        return True
    if old.review_count > 0 and review_growth / old.review_count > 0.20:
        return True
    return False


class UpdateHandler:
    """Executa jobs de update."""

    def __init__(
        self,
        queue: JobQueue,
        store: ExtensionStore,
        executor: ScrapeExecutor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._queue = queue
        self._store = store
        self._executor = executor
        self._clock = clock

    async def handle(self, job: Job) -> None:
        payload = job.payload
        if not isinstance(payload, UpdatePayload):
            raise InvalidPayload(f"not an update payload: {payload!r}")
        ext_id = payload.extension_id

        try:
            record = await self._executor.fetch_extension(ext_id)
            problems = record.validation_errors()
            if problems:
                raise ScrapeError(ScrapeErrorKind.PARSE_ERROR, "; ".join(problems))
        except ScrapeError as e:
            if await self._record_failure(ext_id, e):
                raise JobTerminalFailure(f"{ext_id} removida da loja") from e
            raise

        now = self._clock()
        previous = await self._store.get_extension(ext_id)
        created = await self._store.save_extension(record)
        trending = previous is not None and is_significant_change(previous, record)

        schedule = await self._store.get_extension_update_record(ext_id)
        if schedule is None:
            schedule = ExtensionUpdateRecord(extension_id=ext_id, next_update_due=now)
        # O follow-up compara com o snapshot que acabou de promover a extensão
        if payload.source == PRIORITY_UPDATE_SOURCE and schedule.trending:
            trending = True
        schedule.priority, schedule.frequency = classify_priority(record.users, trending)
        schedule.users = record.users
        schedule.trending = trending
        schedule.advance(now)
        await self._store.upsert_extension_update_record(schedule)

        logger.info(
            f"[Update] ✅ {ext_id} ({record.name}): {record.users} users, "
            f"rating {record.rating}, prioridade {schedule.priority.name}/{schedule.frequency.value}"
        )

        if created and record.users > RELATED_DISCOVERY_MIN_USERS:
            await self._queue.enqueue(Job.create(RelatedDiscovery(extension_id=ext_id), priority=Priority.LOW))
            logger.info(f"[Update] 🔗 {ext_id} nova e popular: discovery de relacionadas agendada")

        if trending and payload.source != PRIORITY_UPDATE_SOURCE:
            await self._queue.enqueue(Job.create(
                UpdatePayload(extension_id=ext_id, source=PRIORITY_UPDATE_SOURCE, reason="significant_change"),
                priority=Priority.HIGH,
            ))
            logger.info(f"[Update] 📈 {ext_id} trending: update prioritário agendado")

    async def _record_failure(self, ext_id: str, error: ScrapeError) -> bool:
        """Conta a falha na agenda. Retorna True se a extensão foi marcada como removida."""
        schedule = await self._store.get_extension_update_record(ext_id)
        if schedule is None:
            return False

        schedule.consecutive_failures += 1
        await self._store.upsert_extension_update_record(schedule)

        if error.kind == ScrapeErrorKind.NOT_FOUND and schedule.consecutive_failures >= REMOVED_AFTER_NOT_FOUND:
            await self._store.mark_extension_removed(ext_id)
            logger.warning(
                f"[Update] 🗑️ {ext_id} não encontrada {schedule.consecutive_failures}x seguidas: marcada como removida"
            )
            return True
        return False

"""
Discovery Handler - encontra extensões novas e gera jobs de update.

Tipos de discovery:
- category: páginas de busca por categoria (paginação até MAX_CATEGORY_PAGES)
- search: busca por palavra-chave
- related: extensões linkadas na página de detalhe de outra extensão
- popular: listagem principal de extensões

Só extensões que ainda não existem no datastore geram job de update.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import quote

from app.core.constants import (
    DETAIL_URL_TEMPLATE,
    MAX_CATEGORY_PAGES,
    POPULAR_URL,
    SEARCH_URL_TEMPLATE,
)
from app.services.automation.errors import InvalidPayload
from app.services.automation.models import (
    CategoryDiscovery,
    Job,
    PopularDiscovery,
    Priority,
    RelatedDiscovery,
    SearchDiscovery,
    UpdatePayload,
)
from app.services.automation.queue import JobQueue
from app.services.database_service import ExtensionStore
from app.services.scraper.executor import ScrapeExecutor
from app.services.scraper.parser import extract_extension_ids, has_next_page

logger = logging.getLogger(__name__)


def category_url(category: str, page: int = 1) -> str:
    url = SEARCH_URL_TEMPLATE.format(query=quote(category, safe=""))
    if page > 1:
        url += f"?page={page}"
    return url


def search_url(keyword: str) -> str:
    return SEARCH_URL_TEMPLATE.format(query=quote(keyword, safe=""))


class DiscoveryHandler:
    """Executa jobs de discovery."""

    def __init__(self, queue: JobQueue, store: ExtensionStore, executor: ScrapeExecutor):
        self._queue = queue
        self._store = store
        self._executor = executor

    async def handle(self, job: Job) -> None:
        payload = job.payload
        if isinstance(payload, CategoryDiscovery):
            await self._discover_category(payload)
        elif isinstance(payload, SearchDiscovery):
            await self._discover_search(payload)
        elif isinstance(payload, RelatedDiscovery):
            await self._discover_related(payload)
        elif isinstance(payload, PopularDiscovery):
            await self._discover_popular()
        else:
            raise InvalidPayload(f"not a discovery payload: {payload!r}")

    async def _enqueue_new(
        self,
        extension_ids: Iterable[str],
        priority: Priority,
        source: str,
        parent_id: Optional[str] = None,
    ) -> int:
        queued = 0
        for ext_id in extension_ids:
            if await self._store.extension_exists(ext_id):
                continue
            await self._queue.enqueue(Job.create(
                UpdatePayload(extension_id=ext_id, source=source, parent_id=parent_id),
                priority=priority,
            ))
            queued += 1
        return queued

    async def _discover_category(self, payload: CategoryDiscovery) -> None:
        html = await self._executor.fetch_page(category_url(payload.category, payload.page))
        ids = extract_extension_ids(html)
        queued = await self._enqueue_new(ids, Priority.MEDIUM, "category_discovery")

        next_page = None
        if payload.page < MAX_CATEGORY_PAGES and has_next_page(html):
            next_page = payload.page + 1
            await self._queue.enqueue(Job.create(
                CategoryDiscovery(category=payload.category, page=next_page),
                priority=Priority.LOW,
            ))

        logger.info(
            f"[Discovery] 📂 categoria={payload.category} página={payload.page}: "
            f"{len(ids)} encontradas, {queued} novas"
            + (f", próxima página {next_page} agendada" if next_page else "")
        )

    async def _discover_search(self, payload: SearchDiscovery) -> None:
        html = await self._executor.fetch_page(search_url(payload.keyword))
        ids = extract_extension_ids(html)
        queued = await self._enqueue_new(ids, Priority.MEDIUM, "search_discovery")
        logger.info(f"[Discovery] 🔍 busca={payload.keyword!r}: {len(ids)} encontradas, {queued} novas")

    async def _discover_related(self, payload: RelatedDiscovery) -> None:
        html = await self._executor.fetch_page(
            DETAIL_URL_TEMPLATE.format(extension_id=payload.extension_id)
        )
        ids = [i for i in extract_extension_ids(html) if i != payload.extension_id]
        queued = await self._enqueue_new(
            ids, Priority.LOW, "related_discovery", parent_id=payload.extension_id
        )
        logger.info(f"[Discovery] 🔗 relacionadas a {payload.extension_id}: {len(ids)} encontradas, {queued} novas")

    async def _discover_popular(self) -> None:
        html = await self._executor.fetch_page(POPULAR_URL)
        ids = extract_extension_ids(html)
        queued = await self._enqueue_new(ids, Priority.HIGH, "popular_discovery")
        logger.info(f"[Discovery] ⭐ populares: {len(ids)} encontradas, {queued} novas")

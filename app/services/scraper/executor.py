"""
Scrape Executor - busca e parse de páginas da Chrome Web Store.

Cada chamada faz um único GET (curl_cffi com impersonation de navegador),
com timeout rígido, classifica a falha em ScrapeErrorKind, reporta o
resultado de transporte ao ProxyPool e atualiza as métricas.

Resultado de transporte para o proxy:
- resposta recebida (inclusive 404, 5xx e HTML não parseável) = sucesso
- 429/403, timeout e erro de conexão = falha
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from app.core.constants import DETAIL_URL_TEMPLATE
from app.core.proxy import ProxyConfig
from app.services.automation.errors import NoHealthyProxy, ScrapeError, ScrapeErrorKind
from app.services.scraper_manager.proxy_manager import ProxyPool
from .constants import (
    NOT_FOUND_STATUSES,
    RATE_LIMIT_STATUSES,
    REQUEST_TIMEOUT,
    build_headers,
    get_random_impersonate,
)
from .models import ExtensionRecord, ScraperMetrics
from .parser import parse_extension_page

logger = logging.getLogger(__name__)

_TIMEOUT_KEYWORDS = ("timeout", "timed out")


def _default_session_factory():
    from curl_cffi.requests import AsyncSession
    return AsyncSession(impersonate=get_random_impersonate(), verify=False)


class ScrapeExecutor:
    """
    Executa fetches contra a loja.

    Args:
        proxy_pool: pool usado quando nenhum proxy é passado explicitamente
        timeout: timeout total de cada requisição (segundos)
        direct_fallback: sem proxy saudável, faz a requisição direta
            (False = falha com CONNECTION_ERROR)
        session_factory: cria a sessão HTTP (async context manager com .get)
        parser: função (extension_id, html) -> ExtensionRecord
    """

    def __init__(
        self,
        proxy_pool: Optional[ProxyPool] = None,
        timeout: float = REQUEST_TIMEOUT,
        direct_fallback: bool = True,
        session_factory: Callable[[], Any] = _default_session_factory,
        parser: Callable[[str, str], ExtensionRecord] = parse_extension_page,
    ):
        self._proxy_pool = proxy_pool
        self._timeout = timeout
        self._direct_fallback = direct_fallback
        self._session_factory = session_factory
        self._parser = parser
        self._metrics = ScraperMetrics()

    def _resolve_proxy(self, proxy: Optional[ProxyConfig]) -> Optional[ProxyConfig]:
        if proxy is not None or self._proxy_pool is None:
            return proxy
        try:
            return self._proxy_pool.select_proxy()
        except NoHealthyProxy:
            if self._direct_fallback:
                logger.warning("[ScrapeExecutor] ⚠️ Nenhum proxy saudável, usando conexão direta")
                return None
            raise ScrapeError(ScrapeErrorKind.CONNECTION_ERROR, "no healthy proxy available")

    def _report(self, proxy: Optional[ProxyConfig], success: bool) -> None:
        if proxy is not None and self._proxy_pool is not None:
            self._proxy_pool.report_outcome(proxy, success)

    def _count_error(self, kind: ScrapeErrorKind) -> None:
        m = self._metrics
        m.failed_scrapes += 1
        if kind == ScrapeErrorKind.CONNECTION_ERROR:
            m.connection_errors += 1
        elif kind == ScrapeErrorKind.TIMEOUT:
            m.timeout_errors += 1
        elif kind == ScrapeErrorKind.PARSE_ERROR:
            m.parse_errors += 1
        elif kind == ScrapeErrorKind.NOT_FOUND:
            m.not_found += 1
        elif kind == ScrapeErrorKind.RATE_LIMITED:
            m.rate_limited += 1

    async def _request(self, url: str, proxy: Optional[ProxyConfig]) -> str:
        headers, _ = build_headers()
        async with self._session_factory() as session:
            resp = await session.get(
                url,
                headers=headers,
                proxy=proxy.url if proxy else None,
                timeout=self._timeout,
                allow_redirects=True,
            )
        status = resp.status_code
        if status in NOT_FOUND_STATUSES:
            raise ScrapeError(ScrapeErrorKind.NOT_FOUND, f"HTTP {status} for {url}", status)
        if status in RATE_LIMIT_STATUSES:
            raise ScrapeError(ScrapeErrorKind.RATE_LIMITED, f"HTTP {status} for {url}", status)
        if status != 200:
            raise ScrapeError(ScrapeErrorKind.CONNECTION_ERROR, f"HTTP {status} for {url}", status)
        return resp.text

    async def _fetch(self, url: str, proxy: Optional[ProxyConfig]) -> str:
        """GET classificado. Conta request/erros e reporta o proxy; não conta sucesso."""
        self._metrics.total_requests += 1
        try:
            proxy = self._resolve_proxy(proxy)
        except ScrapeError as e:
            self._count_error(e.kind)
            raise
        try:
            html = await asyncio.wait_for(self._request(url, proxy), timeout=self._timeout)
        except ScrapeError as e:
            self._count_error(e.kind)
            # houve resposta HTTP: só 429/403 penalizam o proxy
            self._report(proxy, e.kind != ScrapeErrorKind.RATE_LIMITED)
            raise
        except asyncio.TimeoutError:
            self._count_error(ScrapeErrorKind.TIMEOUT)
            self._report(proxy, False)
            raise ScrapeError(ScrapeErrorKind.TIMEOUT, f"timeout after {self._timeout}s for {url}")
        except Exception as e:
            msg = str(e).lower()
            kind = (
                ScrapeErrorKind.TIMEOUT
                if any(k in msg for k in _TIMEOUT_KEYWORDS)
                else ScrapeErrorKind.CONNECTION_ERROR
            )
            self._count_error(kind)
            self._report(proxy, False)
            raise ScrapeError(kind, f"{type(e).__name__}: {str(e)[:200]}") from e

        self._report(proxy, True)
        return html

    async def fetch_page(self, url: str, proxy: Optional[ProxyConfig] = None) -> str:
        """Busca uma página qualquer da loja (listagens de discovery)."""
        start = time.perf_counter()
        try:
            html = await self._fetch(url, proxy)
            self._metrics.successful_scrapes += 1
            return html
        finally:
            self._metrics.total_duration += time.perf_counter() - start

    async def fetch_extension(self, extension_id: str, proxy: Optional[ProxyConfig] = None) -> ExtensionRecord:
        """
        Busca e parseia a página de detalhe de uma extensão.

        Raises:
            ScrapeError: NOT_FOUND, RATE_LIMITED, CONNECTION_ERROR, TIMEOUT ou PARSE_ERROR
        """
        url = DETAIL_URL_TEMPLATE.format(extension_id=extension_id)
        start = time.perf_counter()
        try:
            html = await self._fetch(url, proxy)
            try:
                record = self._parser(extension_id, html)
            except ScrapeError as e:
                self._count_error(e.kind)
                raise
            except Exception as e:
                self._count_error(ScrapeErrorKind.PARSE_ERROR)
                raise ScrapeError(ScrapeErrorKind.PARSE_ERROR, f"{type(e).__name__}: {e}") from e
            self._metrics.successful_scrapes += 1
            logger.debug(f"[ScrapeExecutor] ✅ {extension_id}: {record.name} ({record.users} users)")
            return record
        finally:
            self._metrics.total_duration += time.perf_counter() - start

    def get_metrics(self) -> dict:
        return self._metrics.to_dict()

"""
Proxy Manager - Pool de proxies com rotação round-robin e health tracking.

- Seleção round-robin, na ordem de carga, apenas entre proxies saudáveis
- Proxy fica unhealthy após N falhas consecutivas
- Recuperação: cool-down expirado ou teste bem sucedido no health check
- Um sucesso isolado zera o streak de falhas, mas não restaura um proxy unhealthy
- Sem proxies configurados = modo direto (select_proxy retorna None)
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from app.core.config import settings
from app.core.proxy import ProxyConfig
from app.services.automation.errors import NoHealthyProxy

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 8
HEALTH_CHECK_CONCURRENCY = 50


@dataclass(frozen=True)
class ProxyPoolConfig:
    failure_threshold: int = 3
    cooldown_seconds: float = 300.0
    health_check_interval: float = 300.0
    health_check_url: str = "http://httpbin.org/ip"
    direct_fallback: bool = True

    @classmethod
    def from_settings(cls) -> "ProxyPoolConfig":
        return cls(
            failure_threshold=settings.PROXY_FAILURE_THRESHOLD,
            cooldown_seconds=settings.PROXY_COOLDOWN_SECONDS,
            health_check_interval=settings.PROXY_HEALTH_CHECK_INTERVAL_SECONDS,
            health_check_url=settings.PROXY_HEALTH_CHECK_URL,
            direct_fallback=settings.PROXY_DIRECT_FALLBACK,
        )


@dataclass
class ProxyState:
    """Estado de runtime de um proxy (somente em memória)."""
    config: ProxyConfig
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_used: float = 0
    healthy: bool = True
    unhealthy_since: Optional[float] = None

    def mark_healthy(self) -> None:
        self.healthy = True
        self.unhealthy_since = None
        self.consecutive_failures = 0

    def mark_unhealthy(self, now: float) -> None:
        self.healthy = False
        self.unhealthy_since = now


async def check_proxy(proxy: ProxyConfig, test_url: str, timeout: float = HEALTH_CHECK_TIMEOUT) -> bool:
    """Faz um GET no test_url através do proxy. True se status 200."""
    from curl_cffi.requests import AsyncSession
    from app.services.scraper.constants import get_random_impersonate

    async with AsyncSession(
        impersonate=get_random_impersonate(),
        proxy=proxy.url,
        timeout=timeout,
        verify=False,
    ) as session:
        resp = await asyncio.wait_for(session.get(test_url), timeout=timeout)
        return resp.status_code == 200


class ProxyPool:
    """
    Pool de proxies com rotação e saúde.

    select_proxy/report_outcome são síncronos e protegidos por um
    threading.Lock (índice de rotação e contadores são compartilhados).
    """

    def __init__(
        self,
        proxies: Optional[List[ProxyConfig]] = None,
        config: Optional[ProxyPoolConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        checker: Optional[Callable[[ProxyConfig], Awaitable[bool]]] = None,
    ):
        self.config = config or ProxyPoolConfig()
        self._clock = clock
        self._checker = checker
        self._lock = threading.Lock()
        self._states: List[ProxyState] = []
        self._by_url: Dict[str, ProxyState] = {}
        self._index: int = 0
        self._total_requests = 0
        self._monitor_task: Optional[asyncio.Task] = None
        if proxies:
            self.load(proxies)

    def load(self, proxies: List[ProxyConfig]) -> int:
        """Substitui o conjunto de proxies (ordem de carga preservada)."""
        states: List[ProxyState] = []
        by_url: Dict[str, ProxyState] = {}
        for proxy in proxies:
            if proxy.url in by_url:
                logger.warning(f"[ProxyPool] ⚠️ Proxy duplicado ignorado: {proxy.label}")
                continue
            by_url[proxy.url] = ProxyState(config=proxy)
            states.append(by_url[proxy.url])
        with self._lock:
            self._states = states
            self._by_url = by_url
            self._index = 0
        logger.info(f"[ProxyPool] ✅ {len(self._states)} proxies carregados")
        return len(self._states)

    @property
    def enabled(self) -> bool:
        return bool(self._states)

    def _recover_expired(self, now: float) -> None:
        for state in self._states:
            if (
                not state.healthy
                and state.unhealthy_since is not None
                and state.unhealthy_since + self.config.cooldown_seconds <= now
            ):
                state.mark_healthy()
                logger.info(f"[ProxyPool] ♻️ {state.config.label} recuperado após cool-down")

    def select_proxy(self) -> Optional[ProxyConfig]:
        """
        Próximo proxy saudável em round-robin.

        Returns:
            ProxyConfig, ou None quando não há proxies configurados (modo direto)

        Raises:
            NoHealthyProxy: proxies configurados mas todos unhealthy
        """
        with self._lock:
            if not self._states:
                return None

            now = self._clock()
            self._recover_expired(now)

            total = len(self._states)
            for offset in range(total):
                idx = (self._index + offset) % total
                state = self._states[idx]
                if state.healthy:
                    self._index = (idx + 1) % total
                    state.last_used = now
                    self._total_requests += 1
                    return state.config

        logger.error(f"[ProxyPool] ❌ Nenhum proxy saudável ({total} configurados)")
        raise NoHealthyProxy(f"all {total} proxies unhealthy")

    def report_outcome(self, proxy: ProxyConfig, success: bool) -> None:
        """Registra o resultado de transporte de uma requisição feita pelo proxy."""
        with self._lock:
            state = self._by_url.get(proxy.url)
            if state is None:
                return
            if success:
                state.successes += 1
                state.consecutive_failures = 0
                return

            state.failures += 1
            state.consecutive_failures += 1
            if state.healthy and state.consecutive_failures >= self.config.failure_threshold:
                state.mark_unhealthy(self._clock())
                logger.warning(
                    f"[ProxyPool] 🚫 {state.config.label} unhealthy "
                    f"({state.consecutive_failures} falhas consecutivas)"
                )

    async def health_check(self, concurrency: int = HEALTH_CHECK_CONCURRENCY) -> dict:
        """Testa todos os proxies contra o health_check_url; teste ok = saudável."""
        if not self._states:
            return {"total_tested": 0, "healthy": 0, "dead": 0}

        checker = self._checker or (lambda p: check_proxy(p, self.config.health_check_url))
        sem = asyncio.Semaphore(concurrency)
        start = time.perf_counter()

        async def test_one(state: ProxyState) -> bool:
            async with sem:
                try:
                    return await checker(state.config)
                except Exception as e:
                    logger.debug(f"[ProxyPool] teste de {state.config.label} falhou: {type(e).__name__}")
                    return False

        states = list(self._states)
        results = await asyncio.gather(*(test_one(s) for s in states))

        now = self._clock()
        with self._lock:
            for state, ok in zip(states, results):
                if ok:
                    state.mark_healthy()
                elif state.healthy:
                    state.mark_unhealthy(now)

        healthy = sum(1 for ok in results if ok)
        stats = {
            "total_tested": len(results),
            "healthy": healthy,
            "dead": len(results) - healthy,
            "check_time_ms": round((time.perf_counter() - start) * 1000),
        }
        logger.info(
            f"[ProxyPool] 🏥 Health check: {healthy}/{len(results)} saudáveis "
            f"({stats['check_time_ms']}ms)"
        )
        return stats

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_interval)
            try:
                await self.health_check()
            except Exception as e:
                logger.error(f"[ProxyPool] ❌ Erro no health check periódico: {e}")

    def start_health_monitor(self) -> None:
        if not self._states or (self._monitor_task and not self._monitor_task.done()):
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info(f"[ProxyPool] 🏥 Monitor de saúde iniciado (a cada {self.config.health_check_interval}s)")

    async def stop_health_monitor(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def get_stats(self) -> dict:
        with self._lock:
            total = len(self._states)
            healthy = sum(1 for s in self._states if s.healthy)
            return {
                "enabled": total > 0,
                "total_proxies": total,
                "healthy_proxies": healthy,
                "unhealthy_proxies": total - healthy,
                "health_rate": round(healthy / total * 100, 1) if total else 0.0,
                "total_requests": self._total_requests,
                "per_proxy": [
                    {
                        "proxy": s.config.label,
                        "healthy": s.healthy,
                        "successes": s.successes,
                        "failures": s.failures,
                        "consecutive_failures": s.consecutive_failures,
                        "last_used": s.last_used,
                    }
                    for s in self._states
                ],
            }

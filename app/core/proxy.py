"""
Carregamento da lista de proxies.

Formato de cada linha: HOST:PORT:USERNAME:PASSWORD
Linhas vazias e comentários (#) são ignorados; linhas malformadas ou
duplicadas geram warning e são puladas.
"""
import httpx
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyConfig:
    """Credenciais de um proxy HTTP."""
    host: str
    port: int
    username: str
    password: str

    @property
    def url(self) -> str:
        # Target: http://USERNAME:PASSWORD@IP:PORT
        return f"http://{self.username}:{self.password}@{self.host}:{self.port}"

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"


def parse_proxy_lines(lines: Iterable[str]) -> List[ProxyConfig]:
    """Converte linhas HOST:PORT:USER:PASS em ProxyConfig, preservando a ordem."""
    proxies: List[ProxyConfig] = []
    seen = set()
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(":")
        if len(parts) != 4:
            logger.warning(f"[ProxyLoader] ⚠️ Linha {lineno} inválida (esperado host:port:user:pass): {line!r}")
            continue

        host, port, user, pw = parts
        try:
            port_num = int(port)
        except ValueError:
            logger.warning(f"[ProxyLoader] ⚠️ Linha {lineno} com porta inválida: {port!r}")
            continue

        if not host or not (0 < port_num < 65536):
            logger.warning(f"[ProxyLoader] ⚠️ Linha {lineno} com host/porta inválidos: {line!r}")
            continue

        proxy = ProxyConfig(host=host, port=port_num, username=user, password=pw)
        if proxy.url in seen:
            logger.warning(f"[ProxyLoader] ⚠️ Linha {lineno} duplicada, ignorada: {proxy.label}")
            continue
        seen.add(proxy.url)
        proxies.append(proxy)
    return proxies


def load_proxy_file(path: str) -> List[ProxyConfig]:
    """Lê o arquivo de proxies. Arquivo inexistente = nenhum proxy (modo direto)."""
    file_path = Path(path)
    if not file_path.exists():
        logger.info(f"[ProxyLoader] Arquivo {path} não encontrado, rodando sem proxies")
        return []

    proxies = parse_proxy_lines(file_path.read_text(encoding="utf-8").splitlines())
    logger.info(f"[ProxyLoader] ✅ {len(proxies)} proxies carregados de {path}")
    return proxies


async def fetch_proxy_list(list_url: str, timeout: float = 10) -> List[ProxyConfig]:
    """Baixa a lista de proxies de uma URL remota."""
    async with httpx.AsyncClient() as client:
        resp = await client.get(list_url, timeout=timeout)

        # 429 do provedor: mantém o pool atual
        if resp.status_code == 429:
            logger.warning("[ProxyLoader] Rate limit (429) ao baixar lista de proxies.")
            return []

        resp.raise_for_status()

    proxies = parse_proxy_lines(resp.text.strip().splitlines())
    logger.info(f"[ProxyLoader] ✅ {len(proxies)} proxies baixados da lista remota")
    return proxies

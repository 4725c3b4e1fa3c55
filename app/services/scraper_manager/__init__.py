"""
Scraper Manager - Controle de Infraestrutura de Scraping.

Pool de proxies com rotação round-robin, health tracking e cool-down.
A lógica de fetch/parse permanece em app/services/scraper/
"""

from .proxy_manager import (
    ProxyPool,
    ProxyPoolConfig,
    ProxyState,
    check_proxy,
)

__all__ = [
    "ProxyPool",
    "ProxyPoolConfig",
    "ProxyState",
    "check_proxy",
]

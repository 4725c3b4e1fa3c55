"""
Constantes e configurações do módulo de scraping.
"""

import random
from typing import Dict, Tuple

# Timeout padrão de uma requisição à loja (segundos)
REQUEST_TIMEOUT = 30

# Perfis de fingerprint TLS suportados pelo curl_cffi
BROWSER_PROFILES = ["chrome131", "chrome124", "chrome120", "safari17_0", "edge101"]

# Headers que imitam um navegador real para evitar bloqueios
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
}

_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# Status HTTP → classificação de erro
NOT_FOUND_STATUSES = (404, 410)
RATE_LIMIT_STATUSES = (403, 429)


def get_random_impersonate() -> str:
    """Perfil de impersonation aleatório (rotação de fingerprint)."""
    return random.choice(BROWSER_PROFILES)


def build_headers() -> Tuple[Dict[str, str], str]:
    """Headers de navegador com User-Agent rotacionado. Retorna (headers, user_agent)."""
    user_agent = random.choice(_USER_AGENTS)
    headers = dict(DEFAULT_HEADERS)
    headers["User-Agent"] = user_agent
    return headers, user_agent

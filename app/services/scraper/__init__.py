"""
Módulo de Scraping da Chrome Web Store.

Fetch de páginas (curl_cffi), classificação de erros e parse de
extensões. Infraestrutura de proxies fica em scraper_manager.
"""

from .executor import ScrapeExecutor
from .models import ExtensionRecord, ScraperMetrics
from .parser import extract_extension_ids, has_next_page, parse_extension_page

__all__ = [
    "ScrapeExecutor",
    "ExtensionRecord",
    "ScraperMetrics",
    "extract_extension_ids",
    "has_next_page",
    "parse_extension_page",
]

"""
Parser de páginas da Chrome Web Store.

Extração best-effort: JSON embutido na página primeiro, texto visível como
fallback. O único campo obrigatório é o nome; sem ele a página é considerada
não parseável.
"""

import logging
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from app.services.automation.errors import ScrapeError, ScrapeErrorKind
from app.services.automation.models import utcnow
from .models import ExtensionRecord

logger = logging.getLogger(__name__)

_TITLE_SUFFIX = re.compile(r"\s*[-|]\s*Chrome Web Store\s*$", re.IGNORECASE)

_DEVELOPER_PATTERNS = [
    re.compile(r'"author"\s*:\s*"([^"]+)"'),
    re.compile(r'"developer"\s*:\s*"([^"]+)"'),
    re.compile(r'[Oo]ffered by[:\s]*(?:<[^>]+>\s*)*([^<\n]+)'),
]
_USERS_PATTERNS = [
    re.compile(r'"userCount"\s*:\s*"?(\d[\d,]*)'),
    re.compile(r'(\d[\d,]*)\+?\s*users?\b', re.IGNORECASE),
]
_RATING_PATTERNS = [
    re.compile(r'"ratingValue"\s*:\s*"?(\d+(?:\.\d+)?)'),
    re.compile(r'"averageRating"\s*:\s*"?(\d+(?:\.\d+)?)'),
    re.compile(r'(\d+(?:\.\d+)?)\s*(?:stars?|out of 5)', re.IGNORECASE),
]
_REVIEWS_PATTERNS = [
    re.compile(r'"reviewCount"\s*:\s*"?(\d[\d,]*)'),
    re.compile(r'"ratingCount"\s*:\s*"?(\d[\d,]*)'),
    re.compile(r'(\d[\d,]*)\s*(?:reviews?|ratings?)\b', re.IGNORECASE),
]
_CATEGORY_PATTERN = re.compile(r'"applicationCategory"\s*:\s*"([^"]+)"')

_DETAIL_ID_PATTERNS = [
    re.compile(r"/detail/[^/?#]+/([a-z]{32})"),
    re.compile(r"/detail/([a-z]{32})"),
]

_NEXT_PAGE_SELECTOR = "a[aria-label*='next'], a[aria-label*='Next'], .next"


def _first_match(patterns, text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def _to_int(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(value.replace(",", ""))
    except ValueError:
        return 0


def _to_float(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def _meta_content(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip()
    return ""


def _extract_name(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        name = _TITLE_SUFFIX.sub("", soup.title.string.strip())
        if name and name.lower() != "chrome web store":
            return name
    og_title = _meta_content(soup, property="og:title")
    if og_title:
        return _TITLE_SUFFIX.sub("", og_title)
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def parse_extension_page(extension_id: str, html: str) -> ExtensionRecord:
    """
    Extrai um ExtensionRecord do HTML da página de detalhe.

    Raises:
        ScrapeError(PARSE_ERROR): nome não encontrado
    """
    soup = BeautifulSoup(html, "html.parser")
    name = _extract_name(soup)
    if not name:
        raise ScrapeError(ScrapeErrorKind.PARSE_ERROR, f"could not extract name for {extension_id}")

    description = (
        _meta_content(soup, name="description")
        or _meta_content(soup, property="og:description")
    )

    return ExtensionRecord(
        extension_id=extension_id,
        name=name,
        description=description,
        developer=_first_match(_DEVELOPER_PATTERNS, html) or "",
        category=_first_match([_CATEGORY_PATTERN], html) or "",
        users=_to_int(_first_match(_USERS_PATTERNS, html)),
        rating=_to_float(_first_match(_RATING_PATTERNS, html)),
        review_count=_to_int(_first_match(_REVIEWS_PATTERNS, html)),
        scraped_at=utcnow(),
    )


def extract_extension_ids(html: str) -> List[str]:
    """IDs de extensão (32 letras) dos links /detail/ da página, sem repetição e em ordem."""
    soup = BeautifulSoup(html, "html.parser")
    ids: List[str] = []
    seen = set()
    for link in soup.select("a[href*='/detail/']"):
        href = link.get("href", "")
        for pattern in _DETAIL_ID_PATTERNS:
            match = pattern.search(href)
            if match:
                ext_id = match.group(1)
                if ext_id not in seen:
                    seen.add(ext_id)
                    ids.append(ext_id)
                break
    return ids


def has_next_page(html: str) -> bool:
    soup = BeautifulSoup(html, "html.parser")
    return soup.select_one(_NEXT_PAGE_SELECTOR) is not None

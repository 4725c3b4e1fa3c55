"""
Modelos de dados para o módulo de scraping.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class ExtensionRecord:
    """Dados extraídos da página de detalhe de uma extensão."""
    extension_id: str
    name: str
    description: str = ""
    developer: str = ""
    category: str = ""
    users: int = 0
    rating: float = 0.0
    review_count: int = 0
    keywords: List[str] = field(default_factory=list)
    scraped_at: Optional[datetime] = None

    def validation_errors(self) -> List[str]:
        """Lista de problemas de qualidade (vazia = registro válido)."""
        errors = []
        if not self.extension_id:
            errors.append("missing extension id")
        if len(self.name.strip()) < 2:
            errors.append("name too short")
        if self.users < 0:
            errors.append("negative user count")
        if not (0 <= self.rating <= 5):
            errors.append(f"rating out of range: {self.rating}")
        if self.review_count < 0:
            errors.append("negative review count")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extension_id": self.extension_id,
            "name": self.name,
            "description": self.description,
            "developer": self.developer,
            "category": self.category,
            "users": self.users,
            "rating": self.rating,
            "review_count": self.review_count,
            "keywords": list(self.keywords),
            "scraped_at": self.scraped_at.isoformat() if self.scraped_at else None,
        }


@dataclass
class ScraperMetrics:
    """Contadores acumulados do executor (monotônicos, nunca zerados)."""
    total_requests: int = 0
    successful_scrapes: int = 0
    failed_scrapes: int = 0
    connection_errors: int = 0
    timeout_errors: int = 0
    parse_errors: int = 0
    not_found: int = 0
    rate_limited: int = 0
    total_duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        finished = self.successful_scrapes + self.failed_scrapes
        return {
            "total_requests": self.total_requests,
            "successful_scrapes": self.successful_scrapes,
            "failed_scrapes": self.failed_scrapes,
            "connection_errors": self.connection_errors,
            "timeout_errors": self.timeout_errors,
            "parse_errors": self.parse_errors,
            "not_found": self.not_found,
            "rate_limited": self.rate_limited,
            "total_duration": round(self.total_duration, 3),
            "average_duration": round(self.total_duration / finished, 3) if finished else 0.0,
            "success_rate": round(self.successful_scrapes / finished * 100, 1) if finished else 0.0,
        }

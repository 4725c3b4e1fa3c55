"""
Schemas Pydantic para os endpoints de automação v2.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.constants import MAX_CATEGORY_PAGES
from app.services.automation.models import DiscoveryPayload, Priority, discovery_payload_from_dict

PriorityName = Literal["high", "medium", "low"]

_REQUIRED_FIELD = {
    "category": "category",
    "search": "keyword",
    "related": "extension_id",
}


class ControlResponse(BaseModel):
    """Resposta de start/stop."""
    status: str
    message: str


class StatusResponse(BaseModel):
    """Status completo do pipeline."""
    running: bool
    worker_stats: Dict[str, Any]
    scheduler_stats: Dict[str, Any]
    update_stats: Dict[str, Any]


class DiscoveryRequest(BaseModel):
    """Request para agendar um job de discovery."""
    type: Literal["category", "search", "related", "popular"] = Field(..., description="Tipo de discovery")
    category: Optional[str] = Field(None, description="Categoria (obrigatório para type=category)")
    keyword: Optional[str] = Field(None, description="Palavra-chave (obrigatório para type=search)")
    extension_id: Optional[str] = Field(None, description="Extensão base (obrigatório para type=related)")
    page: int = Field(1, ge=1, le=MAX_CATEGORY_PAGES, description="Página inicial (type=category)")
    priority: PriorityName = Field("medium", description="Prioridade do job")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "category",
                "category": "productivity",
                "priority": "medium",
            }
        }
    )

    @model_validator(mode="after")
    def check_required_field(self) -> "DiscoveryRequest":
        field_name = _REQUIRED_FIELD.get(self.type)
        if field_name and not (getattr(self, field_name) or "").strip():
            raise ValueError(f"{field_name} is required for {self.type} discovery")
        return self

    def to_payload(self) -> DiscoveryPayload:
        return discovery_payload_from_dict(self.model_dump(exclude={"priority"}, exclude_none=True))

    def job_priority(self) -> Priority:
        return Priority.parse(self.priority)


class UpdateRequest(BaseModel):
    """Request para agendar o update de uma extensão."""
    extension_id: str = Field(..., min_length=1, description="ID da extensão na Chrome Web Store")
    priority: PriorityName = Field("high", description="Prioridade do job")

    def job_priority(self) -> Priority:
        return Priority.parse(self.priority)


class BulkUpdateRequest(BaseModel):
    """Request para agendar updates em lote (1 a 100 extensões)."""
    extension_ids: List[str] = Field(..., min_length=1, max_length=100, description="IDs das extensões")
    priority: PriorityName = Field("medium", description="Prioridade dos jobs")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "extension_ids": ["cjpalhdlnbpafiamejdnhcphjbkeiagm"],
                "priority": "medium",
            }
        }
    )

    def job_priority(self) -> Priority:
        return Priority.parse(self.priority)


class JobScheduledResponse(BaseModel):
    success: bool = True
    job_id: str
    message: str


class BulkUpdateResponse(BaseModel):
    success: bool = True
    job_ids: List[str]
    count: int
    message: str


class JobResponse(BaseModel):
    """Detalhes de um job."""
    id: str
    type: str
    priority: int
    payload: Dict[str, Any]
    status: str
    retry_count: int
    max_retries: Optional[int] = None
    error_msg: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int
    message: str

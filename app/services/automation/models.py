"""
Modelos de dados do pipeline de automação: jobs, payloads e agenda de updates.

O payload de cada job é uma união tipada; a conversão para dict acontece
apenas na fronteira de armazenamento (fila Postgres, API).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union

from app.services.automation.errors import InvalidPayload


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:20]}"


class JobType(str, Enum):
    DISCOVERY = "discovery"
    UPDATE = "update"


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Priority(IntEnum):
    """Peso numérico da prioridade (maior = atendido antes)."""
    LOW = 1
    MEDIUM = 5
    HIGH = 10

    def demote(self) -> "Priority":
        """Um nível abaixo (LOW permanece LOW)."""
        if self is Priority.HIGH:
            return Priority.MEDIUM
        return Priority.LOW

    @classmethod
    def parse(cls, value: Union[str, int, "Priority"]) -> "Priority":
        if isinstance(value, Priority):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise InvalidPayload(f"invalid priority: {value!r}")
        try:
            return cls(int(value))
        except ValueError:
            raise InvalidPayload(f"invalid priority: {value!r}")


class UpdateFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def interval(self) -> timedelta:
        return _FREQUENCY_INTERVALS[self]


_FREQUENCY_INTERVALS = {
    UpdateFrequency.DAILY: timedelta(days=1),
    UpdateFrequency.WEEKLY: timedelta(days=7),
    UpdateFrequency.MONTHLY: timedelta(days=30),
}


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryDiscovery:
    category: str
    page: int = 1
    kind = "category"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "category": self.category, "page": self.page}


@dataclass(frozen=True)
class SearchDiscovery:
    keyword: str
    kind = "search"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "keyword": self.keyword}


@dataclass(frozen=True)
class RelatedDiscovery:
    extension_id: str
    kind = "related"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "extension_id": self.extension_id}


@dataclass(frozen=True)
class PopularDiscovery:
    kind = "popular"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind}


DiscoveryPayload = Union[CategoryDiscovery, SearchDiscovery, RelatedDiscovery, PopularDiscovery]


@dataclass(frozen=True)
class UpdatePayload:
    extension_id: str
    source: str = "manual"
    parent_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"extension_id": self.extension_id, "source": self.source}
        if self.parent_id:
            data["parent_id"] = self.parent_id
        if self.reason:
            data["reason"] = self.reason
        return data


Payload = Union[DiscoveryPayload, UpdatePayload]


def _require(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidPayload(f"missing required field {key!r}")
    return value.strip()


def discovery_payload_from_dict(data: Dict[str, Any]) -> DiscoveryPayload:
    kind = data.get("type")
    if kind == "category":
        page = data.get("page", 1)
        try:
            page = int(page)
        except (TypeError, ValueError):
            raise InvalidPayload(f"invalid page: {page!r}")
        if page < 1:
            raise InvalidPayload("page must be >= 1")
        return CategoryDiscovery(category=_require(data, "category"), page=page)
    if kind == "search":
        return SearchDiscovery(keyword=_require(data, "keyword"))
    if kind == "related":
        return RelatedDiscovery(extension_id=_require(data, "extension_id"))
    if kind == "popular":
        return PopularDiscovery()
    raise InvalidPayload(f"unknown discovery type: {kind!r}")


def payload_from_dict(job_type: JobType, data: Dict[str, Any]) -> Payload:
    if not isinstance(data, dict):
        raise InvalidPayload("payload must be an object")
    if job_type == JobType.DISCOVERY:
        return discovery_payload_from_dict(data)
    return UpdatePayload(
        extension_id=_require(data, "extension_id"),
        source=data.get("source") or "manual",
        parent_id=data.get("parent_id"),
        reason=data.get("reason"),
    )


def job_type_for(payload: Payload) -> JobType:
    if isinstance(payload, UpdatePayload):
        return JobType.UPDATE
    return JobType.DISCOVERY


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

@dataclass
class Job:
    """Unidade de trabalho persistida na fila."""
    job_type: JobType
    payload: Payload
    priority: Priority = Priority.MEDIUM
    id: str = ""
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: Optional[int] = None
    error_msg: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def create(cls, payload: Payload, priority: Priority = Priority.MEDIUM, max_retries: Optional[int] = None) -> "Job":
        return cls(job_type=job_type_for(payload), payload=payload, priority=priority, max_retries=max_retries)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        def ts(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "type": self.job_type.value,
            "priority": int(self.priority),
            "payload": self.payload.to_dict(),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "error_msg": self.error_msg,
            "created_at": ts(self.created_at),
            "updated_at": ts(self.updated_at),
            "available_at": ts(self.available_at),
            "claimed_at": ts(self.claimed_at),
            "completed_at": ts(self.completed_at),
        }


@dataclass
class ExtensionUpdateRecord:
    """Agenda de atualização de uma extensão."""
    extension_id: str
    next_update_due: datetime
    frequency: UpdateFrequency = UpdateFrequency.MONTHLY
    priority: Priority = Priority.LOW
    consecutive_failures: int = 0
    last_successful_update: Optional[datetime] = None
    users: int = 0
    trending: bool = False

    def advance(self, now: datetime) -> None:
        """Registra um update bem sucedido e agenda o próximo (nunca retrocede)."""
        candidate = now + self.frequency.interval
        if candidate > self.next_update_due:
            self.next_update_due = candidate
        self.last_successful_update = now
        self.consecutive_failures = 0


@dataclass
class CompletedJobEntry:
    """Registro resumido de job finalizado (estatísticas)."""
    id: str
    job_type: JobType
    status: JobStatus
    finished_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.job_type.value,
            "status": self.status.value,
            "finished_at": self.finished_at.isoformat(),
            "payload": self.payload,
        }

"""
Automation - pipeline de coleta da Chrome Web Store.

Fila de jobs com prioridade, worker pool e scheduler.
A fachada AutomationContext é importada de .context.
"""

from .errors import (
    AutomationError,
    InvalidPayload,
    JobNotFound,
    JobTerminalFailure,
    NoHealthyProxy,
    QueueUnavailable,
    ScrapeError,
    ScrapeErrorKind,
)
from .models import (
    CategoryDiscovery,
    ExtensionUpdateRecord,
    Job,
    JobStatus,
    JobType,
    PopularDiscovery,
    Priority,
    RelatedDiscovery,
    SearchDiscovery,
    UpdateFrequency,
    UpdatePayload,
)
from .queue import JobQueue, MemoryJobQueue
from .scheduler import Scheduler, SchedulerConfig, classify_priority
from .worker_pool import WorkerPool, WorkerPoolConfig

__all__ = [
    # Errors
    "AutomationError",
    "InvalidPayload",
    "JobNotFound",
    "JobTerminalFailure",
    "NoHealthyProxy",
    "QueueUnavailable",
    "ScrapeError",
    "ScrapeErrorKind",
    # Models
    "CategoryDiscovery",
    "ExtensionUpdateRecord",
    "Job",
    "JobStatus",
    "JobType",
    "PopularDiscovery",
    "Priority",
    "RelatedDiscovery",
    "SearchDiscovery",
    "UpdateFrequency",
    "UpdatePayload",
    # Components
    "JobQueue",
    "MemoryJobQueue",
    "Scheduler",
    "SchedulerConfig",
    "classify_priority",
    "WorkerPool",
    "WorkerPoolConfig",
]

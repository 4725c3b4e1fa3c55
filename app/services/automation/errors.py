"""
Exceções do pipeline de automação.
"""
from enum import Enum


class AutomationError(Exception):
    """Base de todos os erros do pipeline."""


class QueueUnavailable(AutomationError):
    """Backing store da fila inacessível. Sempre propagado ao chamador."""


class JobNotFound(AutomationError):
    def __init__(self, job_id: str):
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class InvalidPayload(AutomationError):
    """Payload de job malformado ou incompatível com o tipo."""


class NoHealthyProxy(AutomationError):
    """Há proxies configurados, mas nenhum saudável no momento."""


class JobTerminalFailure(AutomationError):
    """Falha que não deve ser re-tentada (o job vai direto para FAILED)."""


class ScrapeErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    CONNECTION_ERROR = "connection_error"
    PARSE_ERROR = "parse_error"
    TIMEOUT = "timeout"


# Página inexistente ou HTML sem os campos esperados: repetir não ajuda
_NON_RETRYABLE = {ScrapeErrorKind.NOT_FOUND, ScrapeErrorKind.PARSE_ERROR}


class ScrapeError(AutomationError):
    """Falha classificada de um fetch/parse."""

    def __init__(self, kind: ScrapeErrorKind, message: str = "", status_code: int = None):
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code
        super().__init__(f"{kind.value}: {self.message}")

    @property
    def retryable(self) -> bool:
        return self.kind not in _NON_RETRYABLE


def is_retryable(exc: BaseException) -> bool:
    """Decide se a falha de um job deve voltar para a fila."""
    if isinstance(exc, ScrapeError):
        return exc.retryable
    if isinstance(exc, (InvalidPayload, JobTerminalFailure)):
        return False
    return True

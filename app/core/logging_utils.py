"""
Configuração de logging estruturado (JSON) para a aplicação.

Os módulos continuam usando logging.getLogger(__name__); o structlog só
renderiza os registros do stdlib como uma linha JSON por evento.
"""
import logging
import sys

import structlog

from app.core.config import settings

_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def build_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False, default=str),
        ],
    )


def setup_logging(level: str = None) -> None:
    """
    Instala o formatter JSON no root logger.
    Pode ser chamado mais de uma vez (substitui os handlers existentes).
    """
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter())
    root.addHandler(handler)

    # Bibliotecas HTTP são muito verbosas em INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("curl_cffi").setLevel(logging.WARNING)

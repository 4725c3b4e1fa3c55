"""
Backoff exponencial com jitter para re-tentativas de jobs.
"""

import random
from dataclasses import dataclass
from typing import Callable

from app.core.config import settings


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_seconds: float = 30.0
    max_seconds: float = 3600.0
    jitter: float = 0.1  # fração máxima adicionada ao delay

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.JOB_MAX_RETRIES,
            base_seconds=settings.JOB_BACKOFF_BASE_SECONDS,
            max_seconds=settings.JOB_BACKOFF_MAX_SECONDS,
            jitter=settings.JOB_BACKOFF_JITTER,
        )


def retry_delay(
    retry_count: int,
    policy: RetryPolicy = RetryPolicy(),
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay (segundos) antes do job voltar a ser elegível.

    retry_count é o número de falhas já registradas (>= 1).
    delay = min(base * 2^(k-1), max) * (1 + jitter * U[0,1))
    O jitter só aumenta o delay, então o mínimo exponencial é sempre respeitado.
    """
    k = max(1, retry_count)
    delay = min(policy.base_seconds * (2 ** (k - 1)), policy.max_seconds)
    return delay * (1 + policy.jitter * rng())

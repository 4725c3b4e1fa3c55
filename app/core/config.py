import os
from dotenv import load_dotenv

# Carregar variáveis do arquivo .env
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Security
    API_ACCESS_TOKEN: str = os.getenv("API_ACCESS_TOKEN", "my-secret-token-dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATABASE_POOL_MIN_SIZE: int = int(os.getenv("DATABASE_POOL_MIN_SIZE", "2"))
    DATABASE_POOL_MAX_SIZE: int = int(os.getenv("DATABASE_POOL_MAX_SIZE", "20"))

    # Job Queue
    JOB_QUEUE_BACKEND: str = os.getenv("JOB_QUEUE_BACKEND", "postgres")  # postgres | memory
    JOB_MAX_RETRIES: int = int(os.getenv("JOB_MAX_RETRIES", "3"))
    JOB_BACKOFF_BASE_SECONDS: float = float(os.getenv("JOB_BACKOFF_BASE_SECONDS", "30"))
    JOB_BACKOFF_MAX_SECONDS: float = float(os.getenv("JOB_BACKOFF_MAX_SECONDS", "3600"))
    JOB_BACKOFF_JITTER: float = float(os.getenv("JOB_BACKOFF_JITTER", "0.1"))
    JOB_LEASE_SECONDS: float = float(os.getenv("JOB_LEASE_SECONDS", "900"))
    COMPLETED_JOBS_KEEP: int = int(os.getenv("COMPLETED_JOBS_KEEP", "1000"))

    # Worker Pool
    DISCOVERY_WORKERS: int = int(os.getenv("DISCOVERY_WORKERS", "4"))
    UPDATE_WORKERS: int = int(os.getenv("UPDATE_WORKERS", "6"))
    WORKER_IDLE_SLEEP_SECONDS: float = float(os.getenv("WORKER_IDLE_SLEEP_SECONDS", "0.5"))
    WORKER_ERROR_SLEEP_SECONDS: float = float(os.getenv("WORKER_ERROR_SLEEP_SECONDS", "1.0"))
    WORKER_SHUTDOWN_GRACE_SECONDS: float = float(os.getenv("WORKER_SHUTDOWN_GRACE_SECONDS", "30"))
    WORKER_REQUEST_DELAY_SECONDS: float = float(os.getenv("WORKER_REQUEST_DELAY_SECONDS", "1.0"))

    # Scheduler
    SCHEDULER_UPDATE_INTERVAL_SECONDS: float = float(os.getenv("SCHEDULER_UPDATE_INTERVAL_SECONDS", "3600"))
    SCHEDULER_DISCOVERY_INTERVAL_SECONDS: float = float(os.getenv("SCHEDULER_DISCOVERY_INTERVAL_SECONDS", "21600"))
    SCHEDULER_CLEANUP_INTERVAL_SECONDS: float = float(os.getenv("SCHEDULER_CLEANUP_INTERVAL_SECONDS", "86400"))
    SCHEDULER_MAX_JOBS_PER_RUN: int = int(os.getenv("SCHEDULER_MAX_JOBS_PER_RUN", "100"))

    # Proxies
    PROXY_FILE: str = os.getenv("PROXY_FILE", "proxies.txt")
    PROXY_LIST_URL: str = os.getenv("PROXY_LIST_URL", "")
    PROXY_FAILURE_THRESHOLD: int = int(os.getenv("PROXY_FAILURE_THRESHOLD", "3"))
    PROXY_COOLDOWN_SECONDS: float = float(os.getenv("PROXY_COOLDOWN_SECONDS", "300"))
    PROXY_HEALTH_CHECK_INTERVAL_SECONDS: float = float(os.getenv("PROXY_HEALTH_CHECK_INTERVAL_SECONDS", "300"))
    PROXY_HEALTH_CHECK_URL: str = os.getenv("PROXY_HEALTH_CHECK_URL", "http://httpbin.org/ip")
    PROXY_DIRECT_FALLBACK: bool = _env_bool("PROXY_DIRECT_FALLBACK", True)

    # Scraper
    SCRAPE_TIMEOUT_SECONDS: float = float(os.getenv("SCRAPE_TIMEOUT_SECONDS", "30"))


settings = Settings()

import pytest

from app.core.proxy import ProxyConfig
from app.services.automation.backoff import RetryPolicy
from app.services.automation.context import AutomationContext
from app.services.automation.queue import MemoryJobQueue
from app.services.automation.scheduler import SchedulerConfig
from app.services.automation.worker_pool import WorkerPoolConfig
from app.services.scraper.executor import ScrapeExecutor
from app.services.scraper_manager.proxy_manager import ProxyPool
from tests.fakes import FakeClock, FakeExtensionStore, FakeHttp


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return RetryPolicy(max_retries=3, base_seconds=30, max_seconds=3600, jitter=0.1)


@pytest.fixture
def queue(clock, policy):
    return MemoryJobQueue(policy=policy, clock=clock, rng=lambda: 0.0)


@pytest.fixture
def store():
    return FakeExtensionStore()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def executor(http):
    return ScrapeExecutor(proxy_pool=None, timeout=1.0, session_factory=http.session_factory)


@pytest.fixture
def proxies():
    return [
        ProxyConfig(host=f"10.0.0.{i}", port=8000 + i, username="user", password="pw")
        for i in range(1, 4)
    ]


@pytest.fixture
def automation(queue, store, executor):
    return AutomationContext(
        queue=queue,
        store=store,
        proxy_pool=ProxyPool([]),
        executor=executor,
        worker_config=WorkerPoolConfig(
            discovery_workers=1,
            update_workers=1,
            idle_sleep=0.01,
            error_sleep=0.01,
            shutdown_grace=1.0,
            request_delay=0,
        ),
        scheduler_config=SchedulerConfig(initial_discovery=False),
    )

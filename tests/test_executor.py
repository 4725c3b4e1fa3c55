import asyncio

import pytest

from app.core.constants import DETAIL_URL_TEMPLATE
from app.services.automation.errors import ScrapeError, ScrapeErrorKind
from app.services.scraper.executor import ScrapeExecutor
from app.services.scraper_manager.proxy_manager import ProxyPool, ProxyPoolConfig
from tests.fakes import EXT_A, FakeResponse, MonotonicClock, detail_html


URL_A = DETAIL_URL_TEMPLATE.format(extension_id=EXT_A)


def make_executor(http, pool=None, **kwargs):
    return ScrapeExecutor(proxy_pool=pool, session_factory=http.session_factory, **kwargs)


def proxy_entry(pool, proxy):
    return next(p for p in pool.get_stats()["per_proxy"] if p["proxy"] == proxy.label)


async def test_fetch_extension_success(http, executor):
    http.add(URL_A, FakeResponse(200, detail_html()))
    record = await executor.fetch_extension(EXT_A)

    assert record.extension_id == EXT_A
    assert record.name == "Super Notes"
    assert record.users == 1234567
    metrics = executor.get_metrics()
    assert metrics["total_requests"] == 1
    assert metrics["successful_scrapes"] == 1
    assert metrics["failed_scrapes"] == 0


@pytest.mark.parametrize("status,kind", [
    (404, ScrapeErrorKind.NOT_FOUND),
    (410, ScrapeErrorKind.NOT_FOUND),
    (429, ScrapeErrorKind.RATE_LIMITED),
    (403, ScrapeErrorKind.RATE_LIMITED),
    (500, ScrapeErrorKind.CONNECTION_ERROR),
])
async def test_status_codes_are_classified(http, executor, status, kind):
    http.add(URL_A, FakeResponse(status, "error"))
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == kind
    assert exc_info.value.status_code == status
    assert executor.get_metrics()["failed_scrapes"] == 1


async def test_timeout_is_classified_and_counted(http):
    async def slow():
        await asyncio.sleep(5)
        return FakeResponse(200, detail_html())

    http.add(URL_A, slow)
    executor = make_executor(http, timeout=0.05)
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == ScrapeErrorKind.TIMEOUT
    assert exc_info.value.retryable
    assert executor.get_metrics()["timeout_errors"] == 1


async def test_transport_exception_is_connection_error(http, executor):
    http.add(URL_A, ConnectionRefusedError("Connection refused"))
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == ScrapeErrorKind.CONNECTION_ERROR
    assert executor.get_metrics()["connection_errors"] == 1


async def test_library_timeout_message_is_timeout(http, executor):
    http.add(URL_A, RuntimeError("Operation timed out after 30000 milliseconds"))
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == ScrapeErrorKind.TIMEOUT


async def test_unparseable_page_is_parse_error(http, executor):
    http.add(URL_A, FakeResponse(200, "<html><body><p>nothing here</p></body></html>"))
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == ScrapeErrorKind.PARSE_ERROR
    assert not exc_info.value.retryable
    metrics = executor.get_metrics()
    assert metrics["parse_errors"] == 1
    assert metrics["successful_scrapes"] == 0


async def test_metrics_accumulate(http, executor):
    http.add(URL_A, FakeResponse(200, detail_html()))
    await executor.fetch_extension(EXT_A)
    await executor.fetch_page(URL_A)
    with pytest.raises(ScrapeError):
        await executor.fetch_page("https://chromewebstore.google.com/missing")

    metrics = executor.get_metrics()
    assert metrics["total_requests"] == 3
    assert metrics["successful_scrapes"] == 2
    assert metrics["failed_scrapes"] == 1
    assert metrics["not_found"] == 1
    assert metrics["total_duration"] >= 0


async def test_uses_pool_proxy_and_reports_outcomes(http, proxies):
    pool = ProxyPool(proxies, config=ProxyPoolConfig(failure_threshold=3))
    executor = make_executor(http, pool)
    http.add(URL_A, FakeResponse(200, detail_html()))

    await executor.fetch_extension(EXT_A)
    assert http.calls[-1] == (URL_A, proxies[0].url)
    assert proxy_entry(pool, proxies[0])["successes"] == 1

    http.add(URL_A, FakeResponse(429, ""))
    with pytest.raises(ScrapeError):
        await executor.fetch_extension(EXT_A)
    assert http.calls[-1] == (URL_A, proxies[1].url)
    assert proxy_entry(pool, proxies[1])["failures"] == 1


async def test_not_found_and_parse_error_count_as_proxy_success(http, proxies):
    pool = ProxyPool(proxies[:1], config=ProxyPoolConfig(failure_threshold=1))
    executor = make_executor(http, pool)

    http.add(URL_A, FakeResponse(404, ""))
    with pytest.raises(ScrapeError):
        await executor.fetch_extension(EXT_A)

    http.add(URL_A, FakeResponse(200, "<html></html>"))
    with pytest.raises(ScrapeError):
        await executor.fetch_extension(EXT_A)

    entry = proxy_entry(pool, proxies[0])
    assert entry["successes"] == 2
    assert entry["failures"] == 0
    assert entry["healthy"] is True


async def test_explicit_proxy_bypasses_selection(http, proxies):
    pool = ProxyPool(proxies, config=ProxyPoolConfig())
    executor = make_executor(http, pool)
    http.add(URL_A, FakeResponse(200, detail_html()))

    await executor.fetch_extension(EXT_A, proxy=proxies[2])
    assert http.calls[-1] == (URL_A, proxies[2].url)
    assert pool.get_stats()["total_requests"] == 0


async def test_no_healthy_proxy_falls_back_to_direct(http, proxies):
    pool = ProxyPool(proxies[:1], config=ProxyPoolConfig(failure_threshold=1), clock=MonotonicClock())
    pool.report_outcome(proxies[0], False)
    http.add(URL_A, FakeResponse(200, detail_html()))

    executor = make_executor(http, pool, direct_fallback=True)
    await executor.fetch_extension(EXT_A)
    assert http.calls[-1] == (URL_A, None)


async def test_no_healthy_proxy_without_fallback_is_connection_error(http, proxies):
    pool = ProxyPool(proxies[:1], config=ProxyPoolConfig(failure_threshold=1), clock=MonotonicClock())
    pool.report_outcome(proxies[0], False)

    executor = make_executor(http, pool, direct_fallback=False)
    with pytest.raises(ScrapeError) as exc_info:
        await executor.fetch_extension(EXT_A)
    assert exc_info.value.kind == ScrapeErrorKind.CONNECTION_ERROR
    assert http.calls == []
    assert executor.get_metrics()["connection_errors"] == 1

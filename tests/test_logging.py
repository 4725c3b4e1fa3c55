import json
import logging

import pytest
import structlog

from app.core.logging_utils import build_formatter, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_installs_structlog_json_formatter(root_logger):
    setup_logging("debug")
    setup_logging("debug")

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_stdlib_record_is_rendered_as_json():
    record = logging.LogRecord(
        "app.services.automation.worker_pool", logging.WARNING, __file__, 10,
        "[WorkerPool] ⚠️ job %s falhou", ("job_1",), None,
    )
    record.job_id = "job_1"

    line = json.loads(build_formatter().format(record))

    assert line["event"] == "[WorkerPool] ⚠️ job job_1 falhou"
    assert line["level"] == "warning"
    assert line["logger"] == "app.services.automation.worker_pool"
    assert line["job_id"] == "job_1"
    assert "timestamp" in line

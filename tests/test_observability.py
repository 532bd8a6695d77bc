"""Tests for structured logging and Prometheus metrics."""

import json
import logging
import sys

import pytest
from prometheus_client import REGISTRY

from conftest import fail_times, is_part
from r2drop import metrics
from r2drop.errors import PartUploadError
from r2drop.logging_config import JSONFormatter, configure_logging


def _sample(name: str, labels: dict | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_fields_and_extras(self):
        record = logging.LogRecord(
            "r2drop.handlers.multipart", logging.INFO, __file__, 1, "Uploaded part %d", (2,), None
        )
        record.upload_id = "upload-1"
        record.part_number = 2
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "r2drop.handlers.multipart"
        assert entry["message"] == "Uploaded part 2"
        assert entry["upload_id"] == "upload-1"
        assert entry["part_number"] == 2
        assert "key" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("r2drop", logging.ERROR, __file__, 1, "failed", (),
                                       sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_json_handler_installed(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("DEBUG", "json")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[-1].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("httpx").setLevel(logging.NOTSET)

    def test_unknown_level_falls_back_to_info(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("LOUD", "text")
            assert root.level == logging.INFO
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("httpx").setLevel(logging.NOTSET)


class TestMetrics:
    """Tests for the client counters."""

    @pytest.fixture(autouse=True)
    def _metrics(self):
        metrics.init_metrics()

    def test_init_is_idempotent(self):
        metrics.init_metrics()
        assert metrics.requests_total is not None

    async def test_requests_and_bytes_counted(self, client):
        ok = {"operation": "put_object", "status": "200"}
        before_requests = _sample("r2drop_requests_total", ok)
        before_bytes = _sample("r2drop_bytes_uploaded_total")
        await client.upload_file(b"12345", name="m.txt")
        assert _sample("r2drop_requests_total", ok) == before_requests + 1
        assert _sample("r2drop_bytes_uploaded_total") == before_bytes + 5

    async def test_retries_and_aborts_counted(self, client, store):
        labels = {"operation": "upload_part"}
        before_retries = _sample("r2drop_retries_total", labels)
        before_aborts = _sample("r2drop_multipart_aborts_total")
        store.faults.append(fail_times(100, match=is_part(1)))
        with pytest.raises(PartUploadError):
            await client.upload_file(b"m" * (25 * 1024), name="m.bin")
        assert _sample("r2drop_retries_total", labels) == before_retries + 2
        assert _sample("r2drop_multipart_aborts_total") == before_aborts + 1

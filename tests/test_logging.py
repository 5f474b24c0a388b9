"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import pytest

from teamcal.core.logging import LOG_FILE_NAME, configure_logging, set_org_context

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)
    set_org_context(None)


def _last_line(path) -> dict:
    return json.loads(path.read_text().splitlines()[-1])


class TestConfigureLogging:
    def test_file_output_is_json_with_organization(self, tmp_path):
        configure_logging(level="INFO", fmt="json", log_root=tmp_path)
        set_org_context("org-7")

        logging.getLogger("teamcal.orchestrator").info("Synced %d users", 3)

        record = _last_line(tmp_path / LOG_FILE_NAME)
        assert record["event"] == "Synced 3 users"
        assert record["level"] == "info"
        assert record["logger"] == "teamcal.orchestrator"
        assert record["organization_id"] == "org-7"
        assert "timestamp" in record

    def test_level_filters_records(self, tmp_path):
        configure_logging(level="WARNING", fmt="text", log_root=tmp_path)

        logging.getLogger("teamcal.reconciler").info("hidden")
        logging.getLogger("teamcal.reconciler").warning("shown")

        lines = (tmp_path / LOG_FILE_NAME).read_text().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["shown"]

    def test_http_client_chatter_is_quieted(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_reconfiguring_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

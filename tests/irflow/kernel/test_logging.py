"""Tests for loguru configuration and correlation ids."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

import irflow.kernel.logging as logging_module
from irflow.kernel.logging import (
    configure_logging,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)


class TestGetLogger:
    def test_caches_bound_loggers(self) -> None:
        assert get_logger("irflow.test") is get_logger("irflow.test")


class TestCorrelationId:
    def test_set_and_reset(self) -> None:
        assert get_correlation_id() == "-"

        token = set_correlation_id("run-42")
        assert get_correlation_id() == "run-42"

        reset_correlation_id(token)
        assert get_correlation_id() == "-"

    def test_records_carry_the_id(self) -> None:
        records: list[dict] = []
        configure_logging(level="INFO", format="console", force_reconfigure=True)
        sink_id = logger.add(lambda message: records.append(message.record), level="INFO")
        token = set_correlation_id("run-7")
        try:
            get_logger("irflow.test").info("step finished")
        finally:
            reset_correlation_id(token)
            logger.remove(sink_id)

        assert records[-1]["extra"]["cid"] == "run-7"
        assert records[-1]["extra"]["module"] == "irflow.test"


class TestConfigureLogging:
    def setup_method(self) -> None:
        logging_module._CURRENT_CONFIG = None

    def teardown_method(self) -> None:
        configure_logging(level="INFO", format="structured", force_reconfigure=True)

    def test_idempotent(self) -> None:
        configure_logging(level="DEBUG", format="console")
        handlers = list(logging_module._HANDLER_IDS)

        configure_logging(level="DEBUG", format="console")

        assert logging_module._HANDLER_IDS == handlers

    def test_reconfigure_replaces_own_handlers_only(self) -> None:
        external: list[str] = []
        external_id = logger.add(external.append, format="{message}")
        try:
            configure_logging(level="INFO", format="console")
            configure_logging(level="DEBUG", format="json", force_reconfigure=True)

            assert len(logging_module._HANDLER_IDS) == 1
            get_logger("irflow.test").info("still delivered")
            assert any("still delivered" in m for m in external)
        finally:
            logger.remove(external_id)

    def test_every_format_installs_a_handler(self) -> None:
        for format_name in ("json", "structured", "console", "rich"):
            configure_logging(level="INFO", format=format_name, force_reconfigure=True)
            assert len(logging_module._HANDLER_IDS) == 1

    def test_file_output_is_json(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "irflow.log"
        configure_logging(level="INFO", format="console", output_file=log_file)

        get_logger("irflow.test").info("written to file")
        logger.complete()

        lines = log_file.read_text().splitlines()
        assert json.loads(lines[-1])["record"]["message"] == "written to file"

from __future__ import annotations

import json
import logging

from aml_monitor.utils.logging import JsonFormatter, _json_formatter, configure_logging, logging_config

EXPECTED_RECORDS = 50
EXPECTED_DELTA = 50


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="aml_monitor.monitor",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="[MONITOR] New data detected!",
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.records = EXPECTED_RECORDS
    record.process_name = "aml_processing"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "aml_monitor.monitor"
    assert payload["message"] == "[MONITOR] New data detected!"
    assert payload["records"] == EXPECTED_RECORDS
    assert payload["process_name"] == "aml_processing"
    assert "pathname" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"delta": EXPECTED_DELTA}

    payload = json.loads(_json_formatter(record))

    assert payload["delta"] == EXPECTED_DELTA
    assert "extra" not in payload


def test_json_formatter_serialises_non_json_values() -> None:
    record = _record()
    record.watermark = object()

    payload = json.loads(JsonFormatter().format(record))

    assert payload["watermark"].startswith("<object")


def test_configure_logging_keeps_existing_loggers_enabled() -> None:
    existing = logging.getLogger("psycopg.pool")

    configure_logging(level="DEBUG", json_logs=True)

    assert existing.disabled is False
    assert logging.getLogger("aml_monitor").level == logging.DEBUG
    handler = logging.getLogger().handlers[0]
    assert isinstance(handler.formatter, JsonFormatter)


def test_logging_config_quiets_pool_reconnect_noise() -> None:
    config = logging_config(level="INFO", json_logs=False)

    assert config["loggers"]["psycopg.pool"]["level"] == "WARNING"
    assert config["handlers"]["default"]["formatter"] == "console"

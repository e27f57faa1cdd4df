"""Unit tests for structlog configuration."""

from __future__ import annotations

import json

import pytest
import structlog

from audit_shipper.observability.logging import configure_logging


def test_json_format_emits_one_object_per_line(capsys: pytest.CaptureFixture[str]):
    configure_logging("info", "json")
    structlog.get_logger().info("shipper.event_sent", id="e1", index=3)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "shipper.event_sent"
    assert record["id"] == "e1"
    assert record["level"] == "info"
    assert "timestamp" in record


def test_level_filters_debug(capsys: pytest.CaptureFixture[str]):
    configure_logging("info", "json")
    structlog.get_logger().debug("checkpoint.set", key="k")

    assert "checkpoint.set" not in capsys.readouterr().err


def test_console_format(capsys: pytest.CaptureFixture[str]):
    configure_logging("debug", "console")
    structlog.get_logger().debug("shipper.idle", timeout=5.0)

    assert "shipper.idle" in capsys.readouterr().err

"""Tests for structured logging"""
import json
import logging

from automation.utils.logger import (
    JsonFormatter, get_context_logger, get_correlation_id, set_correlation_id
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("automation.test", logging.INFO, __file__, 1, "Rule %s ran", ("WFR-1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """One JSON object per record"""

    def test_known_extras_are_emitted(self) -> None:
        line = JsonFormatter().format(make_record(rule_id="WFR-1", escalation_level=2, unrelated="x"))
        data = json.loads(line)

        assert data["message"] == "Rule WFR-1 ran"
        assert data["level"] == "INFO"
        assert data["logger"] == "automation.test"
        assert data["rule_id"] == "WFR-1"
        assert data["escalation_level"] == 2
        assert "unrelated" not in data

    def test_correlation_id_from_context(self) -> None:
        set_correlation_id("COR-123")
        try:
            data = json.loads(JsonFormatter().format(make_record()))
        finally:
            set_correlation_id(None)
        assert data["correlation_id"] == "COR-123"


class TestContextLogger:
    """Bound context flows into records"""

    def test_adapter_merges_context(self, caplog) -> None:
        logger = get_context_logger("automation.test.ctx", tenant_id="tenant-1")
        with caplog.at_level(logging.INFO, logger="automation.test.ctx"):
            logger.info("hello", extra={"rule_id": "WFR-2"})

        record = caplog.records[-1]
        assert record.tenant_id == "tenant-1"
        assert record.rule_id == "WFR-2"

    def test_correlation_round_trip(self) -> None:
        set_correlation_id("COR-abc")
        try:
            assert get_correlation_id() == "COR-abc"
        finally:
            set_correlation_id(None)

"""Tests for log formatting and masking."""

import json
import logging

from ops_kernel.logging import DevelopmentFormatter, StructuredFormatter, mask_email


def _make_record(msg: str = "Poll failed", **extra) -> logging.LogRecord:
    record = logging.makeLogRecord({
        "name": "ops_kernel.reconciler.loop",
        "levelname": "WARNING",
        "levelno": logging.WARNING,
        "msg": msg,
    })
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_json_with_extra_fields(self):
        line = StructuredFormatter().format(_make_record(tenant_id="frituur-jan", failures=2))
        data = json.loads(line)
        assert data["level"] == "WARNING"
        assert data["message"] == "Poll failed"
        assert data["data"] == {"tenant_id": "frituur-jan", "failures": 2}
        assert "source" not in data

    def test_without_extra(self):
        data = json.loads(StructuredFormatter().format(_make_record()))
        assert "data" not in data

    def test_include_source(self):
        data = json.loads(StructuredFormatter(include_source=True).format(_make_record()))
        assert set(data["source"]) == {"file", "line", "function"}


class TestDevelopmentFormatter:
    def test_renders_fields(self):
        line = DevelopmentFormatter().format(_make_record(tenant_id="frituur-jan"))
        assert "ops_kernel.reconciler.loop: Poll failed" in line
        assert "tenant_id=frituur-jan" in line


class TestMaskEmail:
    def test_mask(self):
        assert mask_email("user@example.com") == "us***@example.com"
        assert mask_email("a@example.com") == "a***@example.com"

    def test_missing_or_invalid(self):
        assert mask_email(None) == "<no-email>"
        assert mask_email("not-an-email") == "***@invalid"

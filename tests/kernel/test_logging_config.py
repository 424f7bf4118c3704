"""Tests for structured JSON logging and the request-scoped LogContext."""

import ast
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from care_kernel.exceptions import DuplicateEntityError, ValidationError
from care_kernel.logging_config import REDACTED, LogContext, StructuredFormatter, get_logger


def _format(message="resident_admitted", exc_info=None, **extra):
    record = logging.LogRecord("care_kernel.test", logging.INFO, __file__, 1, message, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:
    def test_extra_fields_at_top_level(self):
        payload = _format(resident_id=UUID(int=7), weekly_fee=Decimal("1050.00"),
                          admitted_on=date(2025, 6, 2))
        assert payload["message"] == "resident_admitted"
        assert payload["level"] == "INFO"
        assert payload["resident_id"] == str(UUID(int=7))
        assert payload["weekly_fee"] == "1050.00"
        assert payload["admitted_on"] == "2025-06-02"

    def test_context_fields_included(self):
        with LogContext.bind(request_id="req-1", tenant_id="t-1"):
            payload = _format()
        assert payload["request_id"] == "req-1"
        assert payload["tenant_id"] == "t-1"
        assert "request_id" not in _format()

    def test_kernel_error_fields(self):
        try:
            raise DuplicateEntityError("Resident", "nhs_number", "9434765919")
        except DuplicateEntityError:
            payload = _format("duplicate", exc_info=sys.exc_info())
        assert payload["exc_type"] == "DuplicateEntityError"
        assert payload["exc_code"] == DuplicateEntityError.code
        assert "traceback" in payload
        assert payload["exc_value"] == REDACTED
        assert "9434765919" not in json.dumps(payload)


class TestRedaction:
    def test_identifier_extras_redacted(self):
        payload = _format(nhs_number="943 476 5919", email="sarah@example.com", care_level="nursing")
        assert payload["nhs_number"] == REDACTED
        assert payload["email"] == REDACTED
        assert payload["care_level"] == "nursing"

    def test_empty_identifier_left_alone(self):
        assert _format(phone=None)["phone"] is None

    def test_traceback_hides_sensitive_message(self):
        try:
            raise ValidationError("Invalid email address: 'sarah@example'", "email")
        except ValidationError:
            payload = _format("rejected", exc_info=sys.exc_info())
        assert payload["exc_message"] == "ValidationError on email"
        assert "sarah@example" not in payload["traceback"]
        assert payload["traceback"].rstrip().endswith("ValidationError: ValidationError on email")

    def test_non_sensitive_error_value_kept(self):
        try:
            raise DuplicateEntityError("CareHome", "name", "Oak Lodge")
        except DuplicateEntityError:
            payload = _format("duplicate", exc_info=sys.exc_info())
        assert payload["exc_value"] == "Oak Lodge"
        assert "Oak Lodge" in payload["exc_message"]


class TestLogContext:
    def test_set_ignores_none(self):
        LogContext.set(actor_id="a-1")
        LogContext.set(actor_id=None, correlation_id="c-1")
        assert LogContext.get_all() == {"actor_id": "a-1", "correlation_id": "c-1"}

    def test_bind_restores(self):
        LogContext.set(request_id="outer")
        with LogContext.bind(request_id="inner"):
            assert LogContext.get("request_id") == "inner"
        assert LogContext.get("request_id") == "outer"

    def test_clear(self):
        LogContext.set(tenant_id="t-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestGetLogger:
    def test_namespaced(self):
        assert get_logger("modules.residents").name == "care_kernel.modules.residents"

    def test_captured(self, captured_logs):
        get_logger("tests").info("heartbeat", extra={"n": 1})
        record = captured_logs()[-1]
        assert record["message"] == "heartbeat"
        assert record["n"] == 1


class TestServiceExtras:
    """Every ``extra=`` dict in the codebase must be accepted by ``Logger.makeRecord``."""

    RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

    @staticmethod
    def _extra_keys():
        root = Path(__file__).resolve().parents[2]
        for package in ("care_kernel", "care_config", "care_modules", "care_ingestion", "care_api"):
            for path in sorted((root / package).rglob("*.py")):
                tree = ast.parse(path.read_text(encoding="utf-8"))
                for node in ast.walk(tree):
                    if not isinstance(node, ast.Call):
                        continue
                    for kw in node.keywords:
                        if kw.arg == "extra" and isinstance(kw.value, ast.Dict):
                            for key in kw.value.keys:
                                if isinstance(key, ast.Constant) and isinstance(key.value, str):
                                    yield f"{path.relative_to(root)}:{key.lineno}", key.value

    def test_no_reserved_keys(self):
        keys = list(self._extra_keys())
        assert keys
        clashes = [(where, key) for where, key in keys if key in self.RESERVED]
        assert clashes == []

    def test_every_extra_formats(self):
        logger = logging.getLogger("care_kernel.extras")
        for where, key in self._extra_keys():
            record = logger.makeRecord(logger.name, logging.INFO, where, 1, "event", (), None,
                                       extra={key: "x"})
            assert json.loads(StructuredFormatter().format(record))["message"] == "event"

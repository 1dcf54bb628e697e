"""Tests for structured logging setup."""

from __future__ import annotations

import logging

from circle.common.logging import (
    StructuredFormatter,
    _redact_secrets,
    get_logger,
    request_id_var,
)


class TestGetLogger:
    """Test logger creation and configuration."""

    def test_same_tag_returns_same_logger(self):
        assert get_logger("RELAY") is get_logger("RELAY")

    def test_different_tags_return_different_loggers(self):
        assert get_logger("RELAY") is not get_logger("CLIENT")

    def test_log_output_contains_tag_level_and_message(self, capfd):
        get_logger("NOTIFY").warning("Poll failed")
        out = capfd.readouterr().out
        assert "NOTIFY" in out
        assert "WARNING" in out
        assert "Poll failed" in out

    def test_structured_data_in_output(self, capfd):
        get_logger("RELAY").info("Chat relayed", extra={"data": {"circle_id": "c1", "recipients": 3}})
        out = capfd.readouterr().out
        assert '"circle_id": "c1"' in out
        assert '"recipients": 3' in out


class TestStructuredFormatter:
    def _record(self, msg: str, data: dict | None = None) -> logging.LogRecord:
        record = logging.LogRecord("circle.test", logging.INFO, __file__, 1, msg, None, None)
        record.module_tag = "TEST"
        if data is not None:
            record.data = data
        return record

    def test_pipe_separated_fields(self):
        line = StructuredFormatter().format(self._record("hello", {"a": 1}))
        parts = line.split(" | ")
        assert parts[1] == "INFO"
        assert parts[2] == "TEST"
        assert parts[3] == "hello"
        assert parts[4] == '{"a": 1}'

    def test_includes_request_id_when_set(self):
        token = request_id_var.set("abcdef1234567890")
        try:
            line = StructuredFormatter().format(self._record("hello"))
        finally:
            request_id_var.reset(token)
        assert "rid=abcdef12" in line


class TestSecretRedaction:
    """Test that secrets are redacted from log output."""

    def test_redact_password(self):
        redacted = _redact_secrets('{"password": "hunter2"}')
        assert "hunter2" not in redacted
        assert "[REDACTED]" in redacted

    def test_redact_session_token(self):
        redacted = _redact_secrets('{"session_token": "gAAAAABk..."}')
        assert "gAAAAABk" not in redacted

    def test_redact_push_auth_secret(self):
        redacted = _redact_secrets('{"auth": "push-auth-secret"}')
        assert "push-auth-secret" not in redacted

    def test_non_secret_fields_preserved(self):
        redacted = _redact_secrets('{"circle_id": "c1", "content": "hi"}')
        assert "c1" in redacted
        assert "hi" in redacted

    def test_secret_redaction_in_log_output(self, capfd):
        get_logger("AUTH").info(
            "Login",
            extra={"data": {"password": "real-password-value", "user_id": "u1"}},
        )
        out = capfd.readouterr().out
        assert "real-password-value" not in out
        assert "u1" in out

"""Log setup shared by the API, the relay, Celery workers, and the client SDK.

Lines are pipe-separated so they stay greppable in a terminal and easy
to split in a log shipper:

    2026-10-18T10:30:00Z | INFO | rid=3f2a9c1e | RELAY | Chat relayed | {"circle_id": "c1"}

The request id segment appears only inside an HTTP request. Values under
secret-looking keys (passwords, session tokens, push auth) are masked
before the line is written.

Usage:
    from circle.common.logging import get_logger

    logger = get_logger("RELAY")
    logger.info("Chat relayed", extra={"data": {"circle_id": circle_id}})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Tags in use; get_logger() accepts others
MODULE_TAGS = {"API", "AUTH", "RELAY", "CLIENT", "NOTIFY", "SYSTEM", "TEST"}

# Set per request by RequestIdMiddleware
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_SECRET_KEY_PATTERN = re.compile(
    r'"([^"]*(?:key|secret|password|token|private|auth|credential)[^"]*)":\s*"([^"]*)"',
    re.IGNORECASE,
)


def _redact_secrets(text: str) -> str:
    return _SECRET_KEY_PATTERN.sub(r'"\1": "[REDACTED]"', text)


def _render_data(data: object) -> str:
    if data is None:
        return ""
    try:
        return _redact_secrets(json.dumps(data, default=str))
    except (TypeError, ValueError):
        return str(data)


class StructuredFormatter(logging.Formatter):
    """``timestamp | level | [rid=..] | TAG | message | {data}``"""

    def format(self, record: logging.LogRecord) -> str:
        fields = [datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"), record.levelname]

        rid = request_id_var.get()
        if rid:
            fields.append(f"rid={rid[:8]}")

        fields.append(getattr(record, "module_tag", "SYSTEM"))
        fields.append(_redact_secrets(record.getMessage()))

        data = _render_data(getattr(record, "data", None))
        if data:
            fields.append(data)
        return " | ".join(fields)


class ModuleTagLogger(logging.LoggerAdapter):
    """Stamps every record with the adapter's tag, keeping caller ``extra``."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.setdefault("extra", {})
        extra["module_tag"] = self.extra["module_tag"]
        return msg, kwargs


_loggers: dict[str, ModuleTagLogger] = {}


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Return the shared logger for ``module_tag``, creating it on first use.

    Each tag maps to the stdlib logger ``circle.<tag>``, which writes to
    stdout and does not propagate to the root logger.
    """
    adapter = _loggers.get(module_tag)
    if adapter is not None:
        return adapter

    base = logging.getLogger(f"circle.{module_tag.lower()}")
    if not base.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        base.addHandler(handler)
        base.setLevel(logging.DEBUG)
        base.propagate = False

    adapter = _loggers[module_tag] = ModuleTagLogger(base, {"module_tag": module_tag})
    return adapter

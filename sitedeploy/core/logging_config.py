"""Logging setup shared by the API process and the deployment worker.

Every record about a job should be traceable to the HTTP request, the job
and the CI run involved. Callers pass ``job_id`` and ``run_id`` through
``extra``; the request id comes from a contextvar set by the request
context middleware. The JSON formatter writes them as top-level keys, the
text formatter appends them in brackets so local output stays greppable.

Both formats go through ``_SecretFilter`` first: GitHub tokens and the
shared bearer secrets appear in headers and error bodies and must never
be written out.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Optional, TextIO


# Set by request_context middleware, read by formatters.
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

# Identifiers that tie a record to a request, a job and its CI run.
_CORRELATION_KEYS = ("job_id", "run_id")

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "urllib3")

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {"message", "asctime"}


def _correlation(record: logging.LogRecord) -> Dict[str, str]:
    ids = {}
    rid = request_id_var.get("")
    if rid:
        ids["request_id"] = rid
    for key in _CORRELATION_KEYS:
        value = getattr(record, key, None)
        if value:
            ids[key] = str(value)
    return ids


class _JsonFormatter(logging.Formatter):
    """One JSON object per line.

    ``extra`` fields become top-level keys, so
    ``logger.info("Claimed job", extra={"job_id": "abc"})`` yields
    ``{"message": "Claimed job", "job_id": "abc", ...}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_correlation(record))

        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class _TextFormatter(logging.Formatter):
    """Plain text for development, with correlation ids appended."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ids = _correlation(record)
        if not ids:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in ids.items())
        # Keep the ids on the first line when a traceback follows.
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

_SECRET_PATTERNS = [
    re.compile(r'\bgh[pousr]_[A-Za-z0-9]{20,}\b'),        # GitHub classic tokens
    re.compile(r'\bgithub_pat_[A-Za-z0-9_]{20,}\b'),      # GitHub fine-grained tokens
    re.compile(r'(?i)(bearer\s+)[a-zA-Z0-9._\-]{16,}'),   # CRON_SECRET / CI_CALLBACK_SECRET headers
    re.compile(
        r'(?i)((?:secret|password|token|authorization|signature)[=:]\s*)[^\s,\'"]{8,}'
    ),
]

_REDACTED = "***REDACTED***"


def redact(text: str) -> str:
    """Replace anything that looks like a credential with a marker."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(
            lambda m: m.group(1) + _REDACTED if m.lastindex else _REDACTED,
            text,
        )
    return text


class _SecretFilter(logging.Filter):
    """Scrub the message, its arguments, string extras and exception text.

    GitHub error bodies reach the logs through ``error_message`` extras, so
    extras are scrubbed as well as the message itself.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        for key, value in list(record.__dict__.items()):
            if key not in _RESERVED and isinstance(value, str):
                setattr(record, key, redact(value))
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return True


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Install a single root handler for the API or the worker.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Defaults to INFO.
        log_format: ``"json"`` (default) or ``"text"``.
        stream: Where to write. Defaults to stdout.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(_SecretFilter())
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _TextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging configured", extra={"level": level, "format": fmt})

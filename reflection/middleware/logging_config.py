"""
Logging setup for the engine.

Every service logs with ``extra={...}`` carrying the ids of what it touched
(user, session, affirmation, wave) or, for background work, the job name.
Both formatters surface those ids:

    readable (dev/test)  09:00:01 INFO     reflection.services.wave_scheduler: Wave created  session=3f2c9a1e wave=88a0b7c2
    json     (prod)      {"ts": ..., "level": "INFO", "event": "Wave created", "session_id": "...", ...}

Failures raised as ReflectionError subclasses are tagged with their error
type, and DependencyError also with the failing collaborator, so degraded
provider calls can be counted from the log stream.

LOG_LEVEL sets the level; LOG_FORMAT ("json" / "readable") overrides the
per-environment default.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from reflection.core.exceptions import DependencyError, ReflectionError

# (record attribute, short label used by the readable formatter)
CONTEXT_FIELDS = (
    ("user_id", "user"),
    ("session_id", "session"),
    ("affirmation_id", "affirmation"),
    ("wave_id", "wave"),
    ("job_name", "job"),
)


def _context(record):
    return [(key, label, getattr(record, key)) for key, label in CONTEXT_FIELDS
            if getattr(record, key, None) is not None]


def _error_tags(record):
    if not record.exc_info or record.exc_info[1] is None:
        return {}
    exc = record.exc_info[1]
    tags = {"error_type": type(exc).__name__}
    if isinstance(exc, ReflectionError):
        tags["engine_error"] = True
    if isinstance(exc, DependencyError):
        tags["dependency"] = exc.service
    return tags


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update({key: value for key, _, value in _context(record)})
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            entry["duration_ms"] = duration
        entry.update(_error_tags(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output; UUIDs shortened to 8 chars."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: "
                 f"{record.getMessage()}"]
        context = " ".join(f"{label}={str(value)[:8]}" for _, label, value in _context(record))
        if context:
            parts.append(f"  {context}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f" [{duration:.0f}ms]")
        dependency = _error_tags(record).get("dependency")
        if dependency:
            parts.append(f" (dependency: {dependency})")
        line = "".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Provider SDKs log every HTTP call at INFO
    for noisy in ("httpx", "openai", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)

# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Deployment-scoped log context
# PURPOSE: Attach job/task/host/step fields to every record; JSON or console output
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Structured Logging

Modules keep using plain ``logging.getLogger(__name__)``. What this module
adds is a deployment scope: fields bound with ``log_context`` are copied
onto every record emitted inside the block, by a filter installed on the
root handler.

    with log_context(job_id=7, task_id=42, target_host="web-01"):
        with log_context(step="installing"):
            logger.info("Running installer")

The scope lives in a ContextVar, so each asyncio task running a
deployment pipeline sees its own fields and nested blocks merge with the
enclosing one.

Output is chosen by LOG_FORMAT: "json" for aggregators, anything else for
a single-line console format. LOG_LEVEL sets the root level.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

# Fields shown inline by the console formatter, in this order
SCOPE_FIELDS = ("job_id", "task_id", "target_host", "step", "operation")

_EMPTY: Mapping[str, Any] = MappingProxyType({})

_scope: ContextVar[Mapping[str, Any]] = ContextVar("deploy_log_scope", default=_EMPTY)


def current_scope() -> Dict[str, Any]:
    """Fields bound by the enclosing log_context blocks."""
    return dict(_scope.get())


@contextmanager
def log_context(**fields):
    """
    Bind fields for every record logged inside the block.

    None values are ignored, so callers can pass optional ids directly.
    """
    merged = {**_scope.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _scope.set(MappingProxyType(merged))
    try:
        yield merged
    finally:
        _scope.reset(token)


class ScopeFilter(logging.Filter):
    """Copies the active scope onto the record as ``record.scope``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "scope"):
            record.scope = current_scope()
        return True


def _timestamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, include_source: bool = True):
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        scope = getattr(record, "scope", None)
        if scope:
            payload["context"] = scope
        checkpoint = getattr(record, "checkpoint", None)
        if checkpoint:
            payload["checkpoint"] = checkpoint
            payload["data"] = getattr(record, "checkpoint_data", None) or {}
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if self.include_source:
            payload["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``time LEVEL logger [job=7 task=42 host=web-01]: message``"""

    def format(self, record: logging.LogRecord) -> str:
        scope = getattr(record, "scope", None) or {}
        tags = " ".join(
            f"{name.replace('target_', '').replace('_id', '')}={scope[name]}"
            for name in SCOPE_FIELDS
            if name in scope
        )
        line = (
            f"{_timestamp(record)} {record.levelname:<8} {record.name}"
            f"{f' [{tags}]' if tags else ''}: {record.getMessage()}"
        )
        data = getattr(record, "checkpoint_data", None)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(name: str) -> logging.Logger:
    """Shorthand for logging.getLogger; the scope is applied by the handler."""
    return logging.getLogger(name)


def configure_logging(
    level: Union[str, int, None] = None,
    json_output: Optional[bool] = None,
    include_source: bool = True,
) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Root level; LOG_LEVEL when omitted
        json_output: JSON lines; LOG_FORMAT=json when omitted
        include_source: Add file:line to JSON records
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ScopeFilter())
    handler.setFormatter(
        JsonFormatter(include_source=include_source) if json_output else ConsoleFormatter()
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named lifecycle marker (job_created, task_completed, job_finished).

    The name and data travel as record attributes so the JSON formatter can
    emit them as top-level keys.
    """
    (logger or logging.getLogger("checkpoint")).info(
        f"CHECKPOINT: {name}",
        extra={"checkpoint": name, "checkpoint_data": dict(data or {})},
    )


__all__ = [
    "SCOPE_FIELDS",
    "ScopeFilter",
    "JsonFormatter",
    "ConsoleFormatter",
    "current_scope",
    "log_context",
    "get_logger",
    "configure_logging",
    "log_checkpoint",
]

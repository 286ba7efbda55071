"""
Logging for caseshelf.

Log calls take keyword fields::

    logger.info("Cached document", identity=identity, size=len(payload))

Fields travel on the record as ``record.fields``. The account and operation
in scope (set with ``log_context``) travel as ``record.scope``. The console
handler prints both after the message; the optional log file receives one
JSON object per line.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, MutableMapping

import orjson
from rich.console import Console, ConsoleRenderable
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER = "caseshelf"

# Third-party loggers kept at WARNING
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")

# Keyword arguments that belong to logging itself, not to the record fields
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

_scope: ContextVar[dict[str, str] | None] = ContextVar("caseshelf_log_scope", default=None)


def current_scope() -> dict[str, str]:
    """Get the subject and operation the current task is logging for."""
    return dict(_scope.get() or {})


@contextmanager
def log_context(
    subject_id: str | None = None,
    operation: str | None = None,
) -> Iterator[None]:
    """Tag every record logged inside the block with a subject and operation.

    Nested blocks inherit the outer values they do not override.
    """
    scope = current_scope()
    if subject_id is not None:
        scope["subject_id"] = subject_id
    if operation is not None:
        scope["operation"] = operation

    token = _scope.set(scope)
    try:
        yield
    finally:
        _scope.reset(token)


class ScopeFilter(logging.Filter):
    """Stamp records with the current scope and an empty field set if missing."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.scope = current_scope()
        if not hasattr(record, "fields"):
            record.fields = {}
        return True


class JSONLinesFormatter(logging.Formatter):
    """One JSON object per record, scope keys at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "scope", None) or {})

        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(entry, default=str).decode("utf-8")


class ScopedRichHandler(RichHandler):
    """Rich console handler that prints scope and fields after the message."""

    def render_message(self, record: logging.LogRecord, message: str) -> ConsoleRenderable:
        rendered = super().render_message(record, message)
        pairs = {**(getattr(record, "scope", None) or {}), **(getattr(record, "fields", None) or {})}
        if pairs and isinstance(rendered, Text):
            rendered.append("  " + " ".join(f"{k}={v}" for k, v in pairs.items()), style="dim")
        return rendered


class ContextLogger(logging.LoggerAdapter):
    """Adapter that turns extra keyword arguments into record fields."""

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _LOGGING_KWARGS}
        extra = dict(kwargs.pop("extra", None) or {})
        extra["fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


_console: Console | None = None
_configured = False


def get_console() -> Console:
    """Get the stderr console used for log output."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Configure the caseshelf logger tree.

    Args:
        log_level: Level for the logger and the console handler.
        log_file: Optional JSON-lines file; it receives every record.
        console_output: Whether to log to the rich stderr console.
    """
    global _configured

    level = getattr(logging, log_level.upper())
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
    root.propagate = False

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONLinesFormatter())
        file_handler.addFilter(ScopeFilter())
        root.addHandler(file_handler)

    if console_output:
        console_handler = ScopedRichHandler(
            console=get_console(),
            level=level,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.addFilter(ScopeFilter())
        root.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> ContextLogger:
    """Get a field-aware logger under the caseshelf tree (usually ``__name__``)."""
    if not _configured:
        setup_logging()

    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))

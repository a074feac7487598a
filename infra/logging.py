"""
Echo Centralized Logging
------------------------
Structured logging with turn_id and thread_id propagation.

Design:
- Every user turn gets a unique turn_id
- turn_id and thread_id propagate through: Session -> Planner -> Executor -> Providers
- Console output through Rich, file output as JSON lines
- Severity discipline: INFO=state, WARNING=recoverable, ERROR=abort

Usage:
    from infra.logging import get_logger, TurnContext, log_turn_end

    logger = get_logger("core.session")

    with TurnContext(thread_id="cli") as turn_id:
        logger.info("Processing user input")
        log_turn_end(turn_id, success=True, tools_executed=2)
"""

import contextvars
import copy
import json
import logging
import logging.handlers
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_turn_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "turn_id", default=None
)
_thread_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "thread_id", default=None
)


def generate_turn_id() -> str:
    """Generate a unique turn ID."""
    return f"turn_{uuid.uuid4().hex[:12]}"


def get_turn_id() -> Optional[str]:
    """Get the current turn ID from context."""
    return _turn_id_var.get()


def get_thread_id() -> Optional[str]:
    """Get the current conversation thread ID from context."""
    return _thread_id_var.get()


class TurnContext:
    """
    Context manager for turn scoping.

    Safe across asyncio tasks: each task runs in a copy of the context,
    so concurrent sessions never see each other's turn_id.
    """

    def __init__(self, turn_id: Optional[str] = None, thread_id: Optional[str] = None):
        self._turn_id = turn_id or generate_turn_id()
        self._thread_id = thread_id
        self._tokens = []

    def __enter__(self) -> str:
        self._tokens.append((_turn_id_var, _turn_id_var.set(self._turn_id)))
        if self._thread_id is not None:
            self._tokens.append((_thread_id_var, _thread_id_var.set(self._thread_id)))
        return self._turn_id

    def __exit__(self, *args) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


class TurnIdFilter(logging.Filter):
    """Logging filter that adds turn_id and thread_id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "turn_id", None) is None:
            record.turn_id = get_turn_id() or "-"
        if getattr(record, "thread_id", None) is None:
            record.thread_id = get_thread_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured file logging."""

    EXTRA_FIELDS = (
        "provider_id", "tool_name", "execution_time_ms",
        "success", "tools_executed", "cycles",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "turn_id": getattr(record, "turn_id", "-"),
            "thread_id": getattr(record, "thread_id", "-"),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class TurnAwareRichHandler(RichHandler):
    """Rich console handler that prefixes the turn id when one is active."""

    def emit(self, record: logging.LogRecord) -> None:
        turn_id = getattr(record, "turn_id", "-")
        if turn_id != "-":
            # Other handlers share this record
            record = copy.copy(record)
            record.msg = f"[{turn_id}] {record.msg}"
        super().emit(record)


_logging_initialized = False
_log_file_path: Optional[Path] = None


def configure_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    console: bool = True,
    file: bool = True,
    rich_console: Optional[Console] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """
    Configure the Echo logging system.

    Args:
        level: Logging level (default INFO)
        log_dir: Directory for log files (default: ./logs)
        console: Enable console output
        file: Enable JSON file output
        rich_console: Console shared with the CLI so log lines and prompts interleave cleanly
    """
    global _logging_initialized, _log_file_path

    if _logging_initialized:
        return

    root_logger = logging.getLogger("echo")
    root_logger.setLevel(logging.DEBUG if file else level)
    root_logger.handlers.clear()

    turn_filter = TurnIdFilter()

    if console:
        console_handler = TurnAwareRichHandler(
            console=rich_console or Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        console_handler.setLevel(level)
        console_handler.addFilter(turn_filter)
        root_logger.addHandler(console_handler)

    if file:
        log_path = Path(log_dir) if log_dir else Path("logs")
        log_path.mkdir(parents=True, exist_ok=True)

        _log_file_path = log_path / "echo.log"

        file_handler = logging.handlers.RotatingFileHandler(
            str(_log_file_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(turn_filter)
        root_logger.addHandler(file_handler)

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the Echo namespace.

    Args:
        name: Logger name (prefixed with 'echo.' if not already)
    """
    if not name.startswith("echo"):
        name = f"echo.{name}"

    return logging.getLogger(name)


def log_turn_end(
    turn_id: str,
    success: bool,
    tools_executed: int = 0,
    cycles: int = 0,
    error: Optional[str] = None,
) -> None:
    """
    Log the end of a user turn with summary information.

    This is the TURN_END boundary event for post-mortems.
    """
    logger = get_logger("core.turn")

    extra = {
        "turn_id": turn_id,
        "success": success,
        "tools_executed": tools_executed,
        "cycles": cycles,
    }

    if success:
        logger.info(
            f"TURN_END: success=True, cycles={cycles}, tools_executed={tools_executed}",
            extra=extra,
        )
    else:
        logger.error(
            f"TURN_END: success=False, cycles={cycles}, error={error or 'Unknown'}",
            extra=extra,
        )

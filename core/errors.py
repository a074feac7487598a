"""
Error Handling Module
---------------------
Typed errors with classification and user-facing messages.

Recoverable errors (unknown tool, bad arguments, policy refusals, provider
failures) never leave the turn: they become tool-role failures the planner
can see. Only startup failures and aborted turns reach the user.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Sequence
import logging
import traceback


class ErrorKind(str, Enum):
    """Failure kinds carried by a tool result."""
    UNKNOWN_TOOL = "unknown_tool"
    SCHEMA_VALIDATION = "schema_validation"
    POLICY_VIOLATION = "policy_violation"
    PROVIDER_ERROR = "provider_error"


class EchoError(Exception):
    """Base class for all orchestrator errors."""
    pass


# ==============================================================================
# Startup
# ==============================================================================

class StartupError(EchoError):
    """Fatal error before the orchestrator is ready."""
    pass


class ConfigError(StartupError):
    """Configuration file is unreadable or invalid."""
    pass


class ProviderStartupError(StartupError):
    """A provider process or connection failed to come up."""

    def __init__(self, provider_id: str, cause: BaseException):
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"Provider '{provider_id}' failed to start: {cause}")


class DuplicateToolError(StartupError):
    """Two catalogs declare the same tool name."""

    def __init__(self, name: str, providers: Sequence[str]):
        self.name = name
        self.providers = tuple(providers)
        super().__init__(
            f"Tool '{name}' is declared by more than one provider: "
            f"{', '.join(self.providers)}"
        )


class TransportError(EchoError):
    """The channel to a provider is not usable."""
    pass


# ==============================================================================
# Tool call rejections (recovered locally)
# ==============================================================================

class ToolCallError(EchoError):
    """A planned call that was refused or failed. Fed back to the planner."""
    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(message)


class UnknownToolError(ToolCallError):
    kind = ErrorKind.UNKNOWN_TOOL

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class SchemaValidationError(ToolCallError):
    kind = ErrorKind.SCHEMA_VALIDATION


class PolicyViolationError(ToolCallError):
    kind = ErrorKind.POLICY_VIOLATION


class ProviderError(ToolCallError):
    kind = ErrorKind.PROVIDER_ERROR


# ==============================================================================
# Turn aborts
# ==============================================================================

class PlanningError(EchoError):
    """The planner backend call failed."""
    pass


class CycleLimitExceeded(EchoError):
    """The plan-execute loop hit its cycle bound without a final answer."""

    def __init__(self, thread_id: str, max_cycles: int):
        self.thread_id = thread_id
        self.max_cycles = max_cycles
        super().__init__(
            f"Turn on thread '{thread_id}' exceeded {max_cycles} planning cycles"
        )


class TurnCancelled(EchoError):
    """The turn was cancelled between cycles."""
    pass


class TeardownError(EchoError):
    """Closing a connection or process failed. Logged, never raised to callers."""

    def __init__(self, provider_id: str, cause: BaseException):
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"Teardown of '{provider_id}' failed: {cause}")


# ==============================================================================
# Classification and user messages
# ==============================================================================

class ErrorCategory(Enum):
    """Categories of errors for handling decisions."""
    STARTUP_ERROR = auto()
    PLANNING_ERROR = auto()
    CYCLE_LIMIT = auto()
    CANCELLED = auto()
    TOOL_REJECTED = auto()
    PROVIDER_ERROR = auto()
    TEARDOWN_ERROR = auto()
    SYSTEM_ERROR = auto()


_CATEGORY_BY_TYPE = [
    (StartupError, ErrorCategory.STARTUP_ERROR),
    (PlanningError, ErrorCategory.PLANNING_ERROR),
    (CycleLimitExceeded, ErrorCategory.CYCLE_LIMIT),
    (TurnCancelled, ErrorCategory.CANCELLED),
    (ProviderError, ErrorCategory.PROVIDER_ERROR),
    (ToolCallError, ErrorCategory.TOOL_REJECTED),
    (TeardownError, ErrorCategory.TEARDOWN_ERROR),
]


def categorize(exception: BaseException) -> ErrorCategory:
    """Map an exception to its error category."""
    for exc_type, category in _CATEGORY_BY_TYPE:
        if isinstance(exception, exc_type):
            return category
    return ErrorCategory.SYSTEM_ERROR


@dataclass
class ErrorRecord:
    """Structured error with metadata."""
    category: ErrorCategory
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)
    stack_trace: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        exception: BaseException,
        details: Optional[Dict] = None
    ) -> "ErrorRecord":
        category = categorize(exception)
        stack = None
        if category == ErrorCategory.SYSTEM_ERROR:
            stack = "".join(traceback.format_exception(
                type(exception), exception, exception.__traceback__
            ))
        return cls(
            category=category,
            message=str(exception),
            details=details,
            stack_trace=stack,
        )

    def __repr__(self) -> str:
        return f"ErrorRecord({self.category.name}: {self.message})"


class ErrorHandler:
    """
    Central error handler with logging and user messages.
    """

    def __init__(self, max_history: int = 100):
        self._logger = logging.getLogger("echo.errors")
        self._error_history: List[ErrorRecord] = []
        self._max_history = max_history

    def handle(self, exception: BaseException, details: Optional[Dict] = None) -> str:
        """
        Handle an error and return a user-friendly message.
        """
        record = ErrorRecord.from_exception(exception, details)
        self._log_error(record)

        self._error_history.append(record)
        if len(self._error_history) > self._max_history:
            self._error_history.pop(0)

        return self._get_user_message(record)

    def _log_error(self, record: ErrorRecord) -> None:
        """Log error with appropriate level."""
        level_map = {
            ErrorCategory.CANCELLED: logging.INFO,
            ErrorCategory.TOOL_REJECTED: logging.WARNING,
            ErrorCategory.PROVIDER_ERROR: logging.WARNING,
            ErrorCategory.TEARDOWN_ERROR: logging.WARNING,
            ErrorCategory.CYCLE_LIMIT: logging.ERROR,
            ErrorCategory.PLANNING_ERROR: logging.ERROR,
            ErrorCategory.STARTUP_ERROR: logging.CRITICAL,
            ErrorCategory.SYSTEM_ERROR: logging.CRITICAL,
        }

        level = level_map.get(record.category, logging.ERROR)
        self._logger.log(level, f"{record.category.name}: {record.message}")

        if record.stack_trace:
            self._logger.debug(f"Stack trace:\n{record.stack_trace}")

    def _get_user_message(self, record: ErrorRecord) -> str:
        """Generate user-friendly error message."""
        messages = {
            ErrorCategory.STARTUP_ERROR: f"Could not start: {record.message}",
            ErrorCategory.PLANNING_ERROR: (
                "I couldn't reach the planner for that request. "
                "Your conversation is intact, please try again."
            ),
            ErrorCategory.CYCLE_LIMIT: (
                "I stopped after too many steps without reaching an answer. "
                "The results so far are kept in this conversation."
            ),
            ErrorCategory.CANCELLED: "The request was cancelled.",
            ErrorCategory.TOOL_REJECTED: record.message,
            ErrorCategory.PROVIDER_ERROR: f"A service failed: {record.message}",
            ErrorCategory.TEARDOWN_ERROR: record.message,
            ErrorCategory.SYSTEM_ERROR: "Something went wrong internally. Please try again later.",
        }

        return messages.get(record.category, "An error occurred.")

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        stats: Dict[str, int] = {}
        for record in self._error_history:
            key = record.category.name
            stats[key] = stats.get(key, 0) + 1
        return stats

    def clear_history(self) -> None:
        self._error_history.clear()

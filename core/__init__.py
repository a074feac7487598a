# Core module - Errors, turn state machine and the session manager
# The session manager is the ONLY coordinator of planner and executor
#
# Import the session manager from core.session; it depends on tools/ and planner/,
# which themselves import core.errors.

from .state_machine import StateMachine, State, StateTransition, InvalidTransitionError
from .errors import (
    EchoError, ErrorKind, ErrorCategory, ErrorHandler,
    StartupError, ConfigError, ProviderStartupError, DuplicateToolError,
    ToolCallError, UnknownToolError, SchemaValidationError, PolicyViolationError,
    ProviderError, PlanningError, CycleLimitExceeded, TurnCancelled, TeardownError,
)

__all__ = [
    "StateMachine", "State", "StateTransition", "InvalidTransitionError",
    "EchoError", "ErrorKind", "ErrorCategory", "ErrorHandler",
    "StartupError", "ConfigError", "ProviderStartupError", "DuplicateToolError",
    "ToolCallError", "UnknownToolError", "SchemaValidationError", "PolicyViolationError",
    "ProviderError", "PlanningError", "CycleLimitExceeded", "TurnCancelled", "TeardownError",
]

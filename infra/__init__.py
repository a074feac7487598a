# Infrastructure module - Logging and configuration

from .logging import (
    get_logger, configure_logging, TurnContext,
    log_turn_end, get_turn_id, get_thread_id, generate_turn_id
)
from .config import (
    AppConfig, PlannerSettings, SessionSettings, ExecutorSettings,
    SupervisorSettings, LoggingSettings, ProviderSpec,
    load_config, require_credential
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "TurnContext",
    "log_turn_end",
    "get_turn_id",
    "get_thread_id",
    "generate_turn_id",
    # Configuration
    "AppConfig",
    "PlannerSettings",
    "SessionSettings",
    "ExecutorSettings",
    "SupervisorSettings",
    "LoggingSettings",
    "ProviderSpec",
    "load_config",
    "require_credential",
]

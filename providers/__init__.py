# Providers module - Connections to external tool providers
# Each provider is a child process speaking MCP over stdio
# The supervisor owns their lifecycle: start together, stop together

from .connection import Connection, ContentPart, StdioConnection, ToolResponse, ToolSpec
from .handle import ProviderHandle
from .supervisor import ProcessSupervisor, connect_stdio

__all__ = [
    "Connection",
    "ContentPart",
    "StdioConnection",
    "ToolResponse",
    "ToolSpec",
    "ProviderHandle",
    "ProcessSupervisor",
    "connect_stdio",
]

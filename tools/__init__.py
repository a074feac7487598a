# Tools module - Tool registry, workflow policy and execution
# Each tool: name, JSON schema, owning provider, policy class
# This registry is the firewall between the planner and the providers

from .registry import ToolClass, ToolDescriptor, ToolRegistry
from .plan import ExecutionPlan, Failure, Success, ToolInvocation, ToolResult
from .policy import PolicyConfig, PolicyDecision, PolicyEngine, PolicyStatus, TurnState
from .executor import ToolExecutor

__all__ = [
    "ToolClass",
    "ToolDescriptor",
    "ToolRegistry",
    "ExecutionPlan",
    "Failure",
    "Success",
    "ToolInvocation",
    "ToolResult",
    "PolicyConfig",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyStatus",
    "TurnState",
    "ToolExecutor",
]

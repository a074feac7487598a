"""
Plans and results exchanged between the session, policy engine and executor.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple, Union
import uuid

from core.errors import ErrorKind, ToolCallError


@dataclass(frozen=True)
class ToolInvocation:
    """One planned call. `arguments` is untrusted planner output."""
    name: str
    arguments: Any
    index: int
    call_id: str


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered invocations for one cycle. Superseded, never mutated."""
    invocations: Tuple[ToolInvocation, ...]
    message: Optional[str] = None

    @classmethod
    def from_calls(cls, calls: Iterable[Any], message: Optional[str] = None) -> "ExecutionPlan":
        """Number proposed calls in plan order and give each a call id."""
        invocations = []
        for index, call in enumerate(calls):
            invocations.append(ToolInvocation(
                name=call.name,
                arguments=call.arguments,
                index=index,
                call_id=call.call_id or f"call_{uuid.uuid4().hex[:12]}",
            ))
        return cls(invocations=tuple(invocations), message=message)

    def __len__(self) -> int:
        return len(self.invocations)

    def __iter__(self):
        return iter(self.invocations)


@dataclass(frozen=True)
class Success:
    content: str


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @classmethod
    def from_error(cls, error: ToolCallError) -> "Failure":
        return cls(kind=error.kind, message=error.message)


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one invocation, appended to history as a tool entry."""
    index: int
    tool_name: str
    call_id: str
    outcome: Outcome
    execution_time_ms: float = 0.0
    dispatched: bool = True  # False when refused before reaching a provider

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.outcome.kind if isinstance(self.outcome, Failure) else None

    @property
    def content(self) -> str:
        """Text the planner sees for this result."""
        if isinstance(self.outcome, Success):
            return self.outcome.content
        return f"Error ({self.outcome.kind.value}): {self.outcome.message}"

    @classmethod
    def rejected(cls, invocation: ToolInvocation, error: ToolCallError) -> "ToolResult":
        """Synthetic failure for a call that was never dispatched."""
        return cls(
            index=invocation.index,
            tool_name=invocation.name,
            call_id=invocation.call_id,
            outcome=Failure.from_error(error),
            dispatched=False,
        )

    def __repr__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"ToolResult({status} #{self.index} {self.tool_name}: {self.content[:80]})"

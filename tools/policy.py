"""
Workflow Policy Engine
----------------------
Mechanical enforcement of cross-tool ordering.

Rules:
- Unknown tools are refused, never dispatched
- Arguments must satisfy the tool's schema before dispatch
- A gated tool runs only after a validating tool passed earlier in the same turn
- Fail closed: a refused gated call never reaches its provider
- Every refusal becomes a tool-role failure the planner can see
- All decisions logged with turn_id
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Set
import logging
import re

import yaml

from core.errors import (
    ConfigError, PolicyViolationError, SchemaValidationError,
    ToolCallError, UnknownToolError,
)
from infra.logging import get_turn_id
from .plan import ExecutionPlan, ToolInvocation, ToolResult
from .registry import ToolClass, ToolDescriptor, ToolRegistry

DEFAULT_PASS_PATTERN = r"^\s*OK\b"


@dataclass
class PolicyConfig:
    """Tool classification and gate settings."""
    validating: Set[str] = field(default_factory=set)
    gated: Set[str] = field(default_factory=set)
    pass_pattern: str = DEFAULT_PASS_PATTERN
    consume_pass: bool = False  # One pass opens the gate for exactly one gated call

    def __post_init__(self):
        overlap = self.validating & self.gated
        if overlap:
            raise ConfigError(f"Tools cannot be both validating and gated: {sorted(overlap)}")
        try:
            self._compiled: Pattern = re.compile(self.pass_pattern, re.IGNORECASE)
        except re.error as e:
            raise ConfigError(f"Invalid pass_pattern {self.pass_pattern!r}: {e}") from e

    @property
    def classes(self) -> Dict[str, ToolClass]:
        """tool name -> ToolClass, for registry build."""
        mapping = {name: ToolClass.VALIDATING for name in self.validating}
        mapping.update({name: ToolClass.GATED for name in self.gated})
        return mapping

    def passes(self, content: str) -> bool:
        """Pass predicate applied to a validating tool's successful content."""
        return bool(self._compiled.search(content or ""))

    @classmethod
    def load(cls, path: str) -> "PolicyConfig":
        """Load policy from YAML. Missing file -> empty policy (everything plain)."""
        logger = logging.getLogger("echo.tools.policy")
        config_path = Path(path)

        if not config_path.exists():
            logger.warning(f"Policy config not found: {config_path}; all tools are plain")
            return cls()

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Policy root must be a mapping: {config_path}")

        policy = cls(
            validating=set(data.get("validating") or []),
            gated=set(data.get("gated") or []),
            pass_pattern=data.get("pass_pattern", DEFAULT_PASS_PATTERN),
            consume_pass=bool(data.get("consume_pass", False)),
        )
        logger.info(
            f"Loaded policy: {len(policy.validating)} validating, "
            f"{len(policy.gated)} gated tools"
        )
        return policy


@dataclass
class ValidationRecord:
    """Outcome of one validating call within a turn."""
    tool_name: str
    index: int
    passed: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TurnState:
    """Transient per-turn record used for gate checks. Discarded at turn end."""
    records: List[ValidationRecord] = field(default_factory=list)
    available_passes: int = 0

    def record(self, tool_name: str, index: int, passed: bool) -> None:
        self.records.append(ValidationRecord(tool_name=tool_name, index=index, passed=passed))
        if passed:
            self.available_passes += 1

    @property
    def has_pass(self) -> bool:
        return self.available_passes > 0

    def consume(self) -> None:
        if self.available_passes > 0:
            self.available_passes -= 1

    @property
    def passed_tools(self) -> List[str]:
        return [r.tool_name for r in self.records if r.passed]


class PolicyStatus(Enum):
    """Result of a policy check."""
    ACCEPTED = auto()
    UNKNOWN_TOOL = auto()
    SCHEMA_INVALID = auto()
    GATE_CLOSED = auto()


@dataclass
class PolicyDecision:
    """Decision for one invocation. Rejections carry the error fed back to the planner."""
    status: PolicyStatus
    invocation: ToolInvocation
    descriptor: Optional[ToolDescriptor] = None
    error: Optional[ToolCallError] = None
    turn_id: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.status == PolicyStatus.ACCEPTED

    @property
    def reason(self) -> str:
        return self.error.message if self.error else "Authorized"

    def to_result(self) -> ToolResult:
        """Synthetic failure for a rejected invocation."""
        return ToolResult.rejected(self.invocation, self.error)


class PolicyEngine:
    """
    Single choke point between a plan and the providers.

    screen() performs the static checks for a whole plan; authorize() is
    called right before each dispatch so a validating call earlier in the
    same plan can open the gate for a later gated call.
    """

    def __init__(self, registry: ToolRegistry, config: Optional[PolicyConfig] = None):
        self.registry = registry
        self.config = config or PolicyConfig()
        self._logger = logging.getLogger("echo.tools.policy")

    def screen(self, plan: ExecutionPlan) -> List[PolicyDecision]:
        """Unknown-tool and schema checks, in plan order."""
        return [self._screen_one(invocation) for invocation in plan]

    def _screen_one(self, invocation: ToolInvocation) -> PolicyDecision:
        turn_id = get_turn_id()
        try:
            descriptor, _ = self.registry.lookup(invocation.name)
        except UnknownToolError as e:
            return self._log_decision(PolicyDecision(
                status=PolicyStatus.UNKNOWN_TOOL,
                invocation=invocation,
                error=e,
                turn_id=turn_id,
            ))

        try:
            self.registry.validate_args(invocation.name, invocation.arguments)
        except SchemaValidationError as e:
            return self._log_decision(PolicyDecision(
                status=PolicyStatus.SCHEMA_INVALID,
                invocation=invocation,
                descriptor=descriptor,
                error=e,
                turn_id=turn_id,
            ))

        return PolicyDecision(
            status=PolicyStatus.ACCEPTED,
            invocation=invocation,
            descriptor=descriptor,
            turn_id=turn_id,
        )

    def authorize(self, decision: PolicyDecision, turn_state: TurnState) -> PolicyDecision:
        """Gate check against the current turn state, immediately before dispatch."""
        if not decision.allowed:
            return decision

        descriptor = decision.descriptor
        if descriptor.tool_class != ToolClass.GATED:
            return decision

        if not turn_state.has_pass:
            failed = [r.tool_name for r in turn_state.records if not r.passed]
            if failed:
                detail = f"validation did not pass ({', '.join(failed)})"
            else:
                detail = "no validating tool has passed in this turn"
            required = ", ".join(sorted(self.config.validating)) or "a validating tool"
            return self._log_decision(PolicyDecision(
                status=PolicyStatus.GATE_CLOSED,
                invocation=decision.invocation,
                descriptor=descriptor,
                error=PolicyViolationError(
                    descriptor.name,
                    f"Refused {descriptor.name}: {detail}. "
                    f"Run {required} and get a passing result first."
                ),
                turn_id=decision.turn_id,
            ))

        if self.config.consume_pass:
            turn_state.consume()

        self._log_decision(decision)
        return decision

    def record_outcome(
        self,
        descriptor: ToolDescriptor,
        result: ToolResult,
        turn_state: TurnState
    ) -> None:
        """Record a validating tool's pass/fail for later gate checks."""
        if descriptor.tool_class != ToolClass.VALIDATING:
            return

        passed = result.success and self.config.passes(result.content)
        turn_state.record(descriptor.name, result.index, passed)
        self._logger.info(
            f"Validation {'passed' if passed else 'failed'}: {descriptor.name} (#{result.index})"
        )

    def _log_decision(self, decision: PolicyDecision) -> PolicyDecision:
        """Log a policy decision for audit."""
        level = logging.INFO if decision.allowed else logging.WARNING

        self._logger.log(
            level,
            f"Policy decision: {decision.status.name} | "
            f"tool={decision.invocation.name} | "
            f"index={decision.invocation.index} | "
            f"reason={decision.reason} | "
            f"turn_id={decision.turn_id or 'N/A'}"
        )
        return decision

"""
Offline planners.

MockPlanner backs `--mock-llm`: it needs no credential and lets a user
drive tools by hand. ScriptedPlanner replays canned outputs in tests.
"""

from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
import copy
import json
import logging

from core.errors import PlanningError
from tools.registry import ToolDescriptor
from .adapter import Final, PlannerAdapter, PlannerOutput, Proposed, ProposedCall

CALL_PREFIX = "/call"


class MockPlanner(PlannerAdapter):
    """
    `/call <tool> <json>` proposes exactly that call.
    Anything else is answered directly; tool results are echoed back as the final answer.
    """

    name = "mock"

    def __init__(self):
        self._logger = logging.getLogger("echo.planner.mock")

    async def plan(
        self,
        history: List[Dict[str, Any]],
        catalog: Sequence[ToolDescriptor]
    ) -> PlannerOutput:
        if not history:
            return Final(text="Nothing to do.")

        last = history[-1]

        if last.get("role") == "tool":
            results = []
            for message in reversed(history):
                if message.get("role") != "tool":
                    break
                results.append(message.get("content") or "")
            return Final(text="\n".join(reversed(results)))

        text = (last.get("content") or "").strip()
        if last.get("role") == "user" and text.startswith(CALL_PREFIX):
            return self._parse_call(text[len(CALL_PREFIX):].strip())

        names = ", ".join(tool.name for tool in catalog) or "none"
        return Final(
            text=f"(mock planner) You said: {text}\n"
                 f"Use '/call <tool> <json>' to run a tool. Available: {names}"
        )

    def _parse_call(self, rest: str) -> PlannerOutput:
        if not rest:
            return Final(text="Usage: /call <tool> <json arguments>")

        name, _, raw_args = rest.partition(" ")
        raw_args = raw_args.strip()
        if not raw_args:
            arguments: Any = {}
        else:
            try:
                arguments = json.loads(raw_args)
            except json.JSONDecodeError:
                arguments = raw_args

        self._logger.debug(f"Mock call: {name} {arguments!r}")
        return Proposed(tool_calls=(ProposedCall(name=name, arguments=arguments),))


ScriptStep = Union[PlannerOutput, BaseException]


class ScriptedPlanner(PlannerAdapter):
    """
    Replays queued outputs in order, or delegates to a callable.

    An exception in the script is raised from plan(). Every call's history
    is recorded for later inspection.
    """

    name = "scripted"

    def __init__(
        self,
        outputs: Optional[Iterable[ScriptStep]] = None,
        fn: Optional[Callable[[List[Dict[str, Any]], Sequence[ToolDescriptor]], ScriptStep]] = None,
        default: Optional[ScriptStep] = None
    ):
        self._queue = deque(outputs or [])
        self._fn = fn
        self._default = default
        self.calls: List[List[Dict[str, Any]]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def plan(
        self,
        history: List[Dict[str, Any]],
        catalog: Sequence[ToolDescriptor]
    ) -> PlannerOutput:
        self.calls.append(copy.deepcopy(history))

        if self._fn is not None:
            step = self._fn(history, catalog)
        elif self._queue:
            step = self._queue.popleft()
        elif self._default is not None:
            step = self._default
        else:
            raise PlanningError("Scripted planner has no more outputs")

        if isinstance(step, BaseException):
            raise step
        return step


def propose(*calls: Any, message: Optional[str] = None) -> Proposed:
    """Shorthand: propose(("name", {...}), ...)."""
    return Proposed(
        tool_calls=tuple(ProposedCall(name=name, arguments=args) for name, args in calls),
        message=message,
    )

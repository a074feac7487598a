"""
Session Manager
---------------
Runs the plan -> screen -> execute -> replan loop for each conversation thread.

Rules:
- One active turn per thread; independent threads run concurrently
- History is preserved on every abort (planning failure, cycle limit, cancel)
- At most max_cycles plans are executed per turn; the planner then gets
  one more call, and a further proposal aborts with CycleLimitExceeded
- Cancellation is honoured between cycles, before the next planning call
- Nothing here touches a provider directly: the executor does
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
import asyncio
import logging

from infra.logging import TurnContext, log_turn_end
from memory.conversation import ConversationHistory, ToolCallRecord
from planner.adapter import Final, PlannerAdapter, PlannerOutput
from tools.executor import ToolExecutor
from tools.plan import ExecutionPlan, ToolResult
from tools.policy import PolicyConfig, PolicyEngine, TurnState
from tools.registry import ToolRegistry

from .errors import CycleLimitExceeded, PlanningError, TurnCancelled
from .state_machine import State, StateMachine


@dataclass
class OrchestratorContext:
    """Everything a session needs, passed explicitly."""
    registry: ToolRegistry
    handles: Mapping[str, Any]
    policy: PolicyEngine
    executor: ToolExecutor
    planner: PlannerAdapter

    @classmethod
    def assemble(
        cls,
        handles: Mapping[str, Any],
        planner: PlannerAdapter,
        policy_config: Optional[PolicyConfig] = None,
        executor_timeout: float = 30.0
    ) -> "OrchestratorContext":
        """Build registry, policy engine and executor over connected providers."""
        policy_config = policy_config or PolicyConfig()
        registry = ToolRegistry.build(handles.values(), policy_config.classes)
        policy = PolicyEngine(registry, policy_config)
        executor = ToolExecutor(handles, policy, timeout_seconds=executor_timeout)
        return cls(
            registry=registry,
            handles=dict(handles),
            policy=policy,
            executor=executor,
            planner=planner,
        )


@dataclass
class TurnOutcome:
    """Result of a completed turn."""
    thread_id: str
    turn_id: str
    text: str
    cycles: int
    tools_executed: int

    def __repr__(self) -> str:
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"TurnOutcome({self.thread_id}, cycles={self.cycles}, text={preview!r})"


@dataclass
class Session:
    """Conversation context for one thread id. Lives for the process lifetime."""
    thread_id: str
    history: ConversationHistory
    state_machine: StateMachine
    created_at: datetime = field(default_factory=datetime.now)
    turns: int = 0

    # Current turn counters
    cycles: int = 0
    tools_executed: int = 0
    cancel_requested: bool = False

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def busy(self) -> bool:
        return self.state_machine.is_busy()


class SessionManager:
    """
    Owns all sessions and drives their turns.

    The only component that sequences planner and executor calls.
    """

    def __init__(
        self,
        context: OrchestratorContext,
        max_cycles: int = 6,
        max_history_turns: int = 20,
        planning_timeout: float = 60.0
    ):
        if max_cycles < 1:
            raise ValueError("max_cycles must be at least 1")
        self.context = context
        self.max_cycles = max_cycles
        self.max_history_turns = max_history_turns
        self.planning_timeout = planning_timeout
        self._sessions: Dict[str, Session] = {}
        self._logger = logging.getLogger("echo.core.session")

    def get_session(self, thread_id: str) -> Session:
        """Get or create the session for a thread."""
        session = self._sessions.get(thread_id)
        if session is None:
            session = Session(
                thread_id=thread_id,
                history=ConversationHistory(max_turns=self.max_history_turns),
                state_machine=StateMachine(name=thread_id),
            )
            self._sessions[thread_id] = session
            self._logger.info(f"Created session for thread '{thread_id}'")
        return session

    @property
    def thread_ids(self) -> List[str]:
        return list(self._sessions)

    async def handle_message(self, thread_id: str, text: str) -> TurnOutcome:
        """
        Process one user message through the loop until a final answer.

        Raises:
            PlanningError: planner failed or timed out
            CycleLimitExceeded: still proposing tools after max_cycles executed cycles
            TurnCancelled: cancel() was requested
        """
        session = self.get_session(thread_id)

        async with session.lock:
            session.cancel_requested = False
            session.cycles = 0
            session.tools_executed = 0
            session.turns += 1

            with TurnContext(thread_id=thread_id) as turn_id:
                self._logger.info(f"Turn started on thread '{thread_id}'")
                try:
                    outcome = await self._run_turn(session, turn_id, text)
                except BaseException as e:
                    if session.state_machine.is_busy():
                        session.state_machine.abort(f"Turn aborted: {type(e).__name__}")
                    log_turn_end(
                        turn_id,
                        success=False,
                        tools_executed=session.tools_executed,
                        cycles=session.cycles,
                        error=str(e) or type(e).__name__,
                    )
                    raise

                log_turn_end(
                    turn_id,
                    success=True,
                    tools_executed=outcome.tools_executed,
                    cycles=outcome.cycles,
                )
                return outcome

    async def _run_turn(self, session: Session, turn_id: str, text: str) -> TurnOutcome:
        sm = session.state_machine
        turn_state = TurnState()

        session.history.begin_turn(text, metadata={"turn_id": turn_id})
        sm.transition(State.PLANNING, "User turn")

        while True:
            if session.cancel_requested:
                sm.abort("Cancelled")
                raise TurnCancelled(f"Turn on thread '{session.thread_id}' was cancelled")

            output = await self._plan(session)
            sm.transition(State.DECIDING, "Planner responded")

            if isinstance(output, Final) or not output.tool_calls:
                final_text = output.text if isinstance(output, Final) else (output.message or "")
                sm.transition(State.SUMMARIZING, "Final answer")
                session.history.add_assistant_turn(final_text)
                sm.transition(State.IDLE, "Turn complete")
                return TurnOutcome(
                    thread_id=session.thread_id,
                    turn_id=turn_id,
                    text=final_text,
                    cycles=session.cycles,
                    tools_executed=session.tools_executed,
                )

            if session.cycles >= self.max_cycles:
                # The bound is exceeded: this proposal is dropped, not executed
                sm.transition(
                    State.CYCLE_LIMIT_EXCEEDED,
                    f"Proposal after {session.cycles} cycles without final answer",
                    metadata={"tools": [call.name for call in output.tool_calls]},
                )
                sm.transition(State.IDLE, "Turn aborted")
                raise CycleLimitExceeded(session.thread_id, self.max_cycles)

            plan = ExecutionPlan.from_calls(output.tool_calls, output.message)
            screened = self.context.policy.screen(plan)
            sm.transition(
                State.EXECUTING,
                f"Executing {len(plan)} tool calls",
                metadata={"tools": [inv.name for inv in plan]},
            )

            results = await self.context.executor.run_plan(screened, turn_state)
            self._record_cycle(session, plan, results)
            session.cycles += 1

            sm.transition(State.PLANNING, "Replanning with results")

    async def _plan(self, session: Session) -> PlannerOutput:
        """Call the planner with the current history under the planning timeout."""
        try:
            return await asyncio.wait_for(
                self.context.planner.plan(
                    session.history.to_llm_messages(),
                    self.context.registry.list_tools(),
                ),
                timeout=self.planning_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PlanningError(f"Planner timed out after {self.planning_timeout}s") from e
        except PlanningError:
            raise
        except Exception as e:
            raise PlanningError(f"Planner failed: {e}") from e

    def _record_cycle(
        self,
        session: Session,
        plan: ExecutionPlan,
        results: List[ToolResult]
    ) -> None:
        """Append the proposal and every result, rejections included."""
        session.history.add_assistant_turn(
            plan.message,
            tool_calls=[
                ToolCallRecord(call_id=inv.call_id, name=inv.name, arguments=inv.arguments)
                for inv in plan
            ],
        )
        for result in results:
            session.history.add_tool_result(
                call_id=result.call_id,
                tool_name=result.tool_name,
                content=result.content,
                success=result.success,
            )
            if result.dispatched:
                session.tools_executed += 1

        failed = [r for r in results if not r.success]
        if failed:
            self._logger.warning(
                f"Cycle {session.cycles + 1}: {len(failed)}/{len(results)} calls failed "
                f"({', '.join(f'{r.tool_name}={r.error_kind.value}' for r in failed)})"
            )

    def cancel(self, thread_id: str) -> bool:
        """Request cancellation of the active turn. Honoured before the next planning call."""
        session = self._sessions.get(thread_id)
        if session is None or not session.busy:
            return False
        session.cancel_requested = True
        self._logger.info(f"Cancellation requested for thread '{thread_id}'")
        return True

    def reset(self, thread_id: str) -> int:
        """Clear a thread's history. Returns number of entries removed."""
        session = self._sessions.get(thread_id)
        if session is None:
            return 0
        return session.history.clear()

    def summary(self, thread_id: str) -> str:
        session = self._sessions.get(thread_id)
        if session is None:
            return "No conversation history."
        return (
            f"Thread '{thread_id}': {session.turns} turns this run | "
            f"{session.history.summarize()}"
        )

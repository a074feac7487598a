"""
Tool Executor
-------------
Dispatches screened invocations to their providers.

Rules:
- Invocations of one plan run strictly in plan order, one at a time
- The gate is checked right before each dispatch, never ahead of time
- Every failure (timeout, transport, provider error flag) is raised as
  ProviderError and becomes a Failure(provider_error) result; nothing
  escapes to the session
- The timeout covers the request in flight, not the wait for a busy provider
- All executions logged with turn_id
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
import asyncio
import logging

from core.errors import ProviderError
from infra.logging import get_turn_id
from providers.connection import ToolResponse
from .plan import Failure, Success, ToolInvocation, ToolResult
from .policy import PolicyDecision, PolicyEngine, TurnState
from .registry import ToolDescriptor


class ToolExecutor:
    """
    Routes each call to the provider that owns the tool.

    This is the ONLY place where provider tool calls are issued.
    """

    def __init__(
        self,
        handles: Mapping[str, Any],
        policy: PolicyEngine,
        timeout_seconds: float = 30.0
    ):
        self.handles = dict(handles)
        self.policy = policy
        self.timeout_seconds = timeout_seconds
        self._logger = logging.getLogger("echo.tools.executor")

    async def run_plan(
        self,
        screened: Sequence[PolicyDecision],
        turn_state: TurnState
    ) -> List[ToolResult]:
        """
        Execute screened decisions. Returns one result per invocation, in order.

        Rejected invocations yield synthetic failures and are never dispatched.
        """
        results: List[ToolResult] = []

        for decision in screened:
            decision = self.policy.authorize(decision, turn_state)
            if not decision.allowed:
                results.append(decision.to_result())
                continue

            result = await self.execute(decision.invocation, decision.descriptor)
            self.policy.record_outcome(decision.descriptor, result, turn_state)
            results.append(result)

        return results

    async def execute(
        self,
        invocation: ToolInvocation,
        descriptor: ToolDescriptor,
        handle: Optional[Any] = None
    ) -> ToolResult:
        """Dispatch one authorized invocation and capture its outcome."""
        start_time = datetime.now(timezone.utc)
        if handle is None:
            handle = self.handles.get(descriptor.provider_id)

        try:
            response = await self._dispatch(invocation, descriptor, handle)
        except ProviderError as e:
            outcome = Failure.from_error(e)
        else:
            outcome = Success(content=response.text)

        return self._finish(invocation, outcome, start_time, descriptor.provider_id)

    async def _dispatch(
        self,
        invocation: ToolInvocation,
        descriptor: ToolDescriptor,
        handle: Optional[Any]
    ) -> ToolResponse:
        """One provider round trip. Any failure is raised as ProviderError."""
        if handle is None:
            raise ProviderError(
                invocation.name,
                f"Provider '{descriptor.provider_id}' is not connected",
            )

        try:
            response = await handle.call_tool(
                invocation.name,
                invocation.arguments,
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                invocation.name,
                f"Execution timed out after {self.timeout_seconds}s",
            ) from e
        except Exception as e:
            raise ProviderError(invocation.name, str(e) or type(e).__name__) from e

        if response.is_error:
            raise ProviderError(invocation.name, response.text or "Provider reported an error")
        return response

    def _finish(
        self,
        invocation: ToolInvocation,
        outcome: Any,
        start_time: datetime,
        provider_id: Optional[str] = None
    ) -> ToolResult:
        execution_time = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        result = ToolResult(
            index=invocation.index,
            tool_name=invocation.name,
            call_id=invocation.call_id,
            outcome=outcome,
            execution_time_ms=execution_time,
        )

        extra: Dict[str, Any] = {
            "tool_name": invocation.name,
            "provider_id": provider_id,
            "execution_time_ms": round(execution_time, 1),
        }
        if result.success:
            self._logger.info(
                f"Executed {invocation.name} on {provider_id} in {execution_time:.0f}ms "
                f"(turn_id={get_turn_id() or 'N/A'})",
                extra=extra,
            )
        else:
            self._logger.error(
                f"Execution error in {invocation.name}: {outcome.message} "
                f"(turn_id={get_turn_id() or 'N/A'})",
                extra=extra,
            )
        return result

"""
Planner Adapter
---------------
The planner proposes, it never acts.

Rules:
- Output is untrusted: names and arguments are not assumed valid
- No retries and no validation here; the policy engine decides
- Stateless per call: history comes in, one PlannerOutput goes out
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from tools.registry import ToolDescriptor


@dataclass(frozen=True)
class ProposedCall:
    """One tool call as the planner proposed it."""
    name: str
    arguments: Any  # dict when parseable, raw string otherwise
    call_id: Optional[str] = None


@dataclass(frozen=True)
class Final:
    """No tool calls: the turn is answered."""
    text: str


@dataclass(frozen=True)
class Proposed:
    """An ordered list of calls for one cycle."""
    tool_calls: Tuple[ProposedCall, ...]
    message: Optional[str] = None


PlannerOutput = Union[Final, Proposed]


class PlannerAdapter:
    """Base planner interface."""

    name: str = "planner"

    async def plan(
        self,
        history: List[Dict[str, Any]],
        catalog: Sequence[ToolDescriptor]
    ) -> PlannerOutput:
        """
        Propose the next step.

        Args:
            history: Conversation in chat-completions message format
            catalog: Every registered tool

        Raises:
            PlanningError: backend unreachable, failed or malformed
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release backend resources."""
        return None


def build_system_prompt(catalog: Sequence[ToolDescriptor]) -> str:
    """System prompt listing the registered tools."""
    tool_list = "\n".join(f"- {tool.name}: {tool.description}" for tool in catalog)

    return f"""You are "Echo," an executive assistant. You help users by executing tasks across different services: local files, email and web search.

EXECUTION PROCESS:
1. Think step by step to create a plan
2. Identify the correct tool(s) from the available list
3. Chain tools together when tasks require multiple steps
4. Call the necessary tools in sequence

EMAIL DRAFTING:
1. Use 'list_emails' with a search query to find the thread
2. Use 'read_email' with the message id to get the full content
3. Formulate the draft content
4. Call 'quality_check' with the draft content
5. If the result starts with 'OK', call 'create_draft'; otherwise tell the user what was rejected

Drafts and sends are refused unless a quality check passed earlier in the same request.

AVAILABLE TOOLS:
{tool_list or '- (none)'}

Always summarize what you have accomplished after completing tasks."""

# Planner module - LLM-based task planning
# The planner proposes tool calls, it never executes them
# Its output is untrusted and screened by the policy engine

from .adapter import Final, PlannerAdapter, PlannerOutput, Proposed, ProposedCall
from .mock import MockPlanner, ScriptedPlanner
from .openai_planner import OpenAIChatPlanner

__all__ = [
    "Final",
    "PlannerAdapter",
    "PlannerOutput",
    "Proposed",
    "ProposedCall",
    "MockPlanner",
    "ScriptedPlanner",
    "OpenAIChatPlanner",
]

"""
Conversation Memory
-------------------
Per-thread conversation history fed to the planner.

Rules:
- Bounded by user turns, not by entries
- Eviction removes whole user turns (the message and everything after it)
- Eviction only happens when a new turn begins, never mid-turn
- Tool results always follow the assistant entry that requested them
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional
import json
import logging


class TurnRole(Enum):
    """Role of a history entry."""
    USER = auto()
    ASSISTANT = auto()
    TOOL = auto()
    SYSTEM = auto()


@dataclass(frozen=True)
class ToolCallRecord:
    """A tool call requested by an assistant entry."""
    call_id: str
    name: str
    arguments: Any

    def encoded_arguments(self) -> str:
        """Arguments as the JSON string chat APIs expect. Raw strings pass through."""
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments, default=str)


@dataclass
class ConversationTurn:
    """A single entry in the conversation."""
    role: TurnRole
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Assistant entries proposing calls
    tool_calls: List[ToolCallRecord] = field(default_factory=list)

    # Tool entries
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    success: Optional[bool] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "role": self.role.name.lower(),
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "tool_calls": [
                {"id": c.call_id, "name": c.name, "arguments": c.arguments}
                for c in self.tool_calls
            ],
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "success": self.success,
        }

    def to_llm_message(self) -> Dict:
        """Convert to chat-completions message format."""
        if self.role == TurnRole.TOOL:
            return {
                "role": "tool",
                "tool_call_id": self.tool_call_id,
                "content": self.content,
            }

        if self.role == TurnRole.ASSISTANT and self.tool_calls:
            return {
                "role": "assistant",
                "content": self.content or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": call.encoded_arguments(),
                        },
                    }
                    for call in self.tool_calls
                ],
            }

        role_map = {
            TurnRole.USER: "user",
            TurnRole.ASSISTANT: "assistant",
            TurnRole.SYSTEM: "system",
        }
        return {"role": role_map[self.role], "content": self.content}

    def __repr__(self) -> str:
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Turn({self.role.name}: {preview})"


class ConversationHistory:
    """
    Ordered conversation history for one thread.

    - max_turns caps the number of user turns kept
    - Explicit eviction (oldest user turn first)
    """

    def __init__(self, max_turns: int = 20):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns
        self._turns: List[ConversationTurn] = []
        self._logger = logging.getLogger("echo.memory.conversation")

    def begin_turn(self, content: str, metadata: Optional[Dict] = None) -> ConversationTurn:
        """Start a user turn, evicting the oldest turns if the cap would be exceeded."""
        self._evict(keep=self.max_turns - 1)
        turn = ConversationTurn(role=TurnRole.USER, content=content, metadata=metadata or {})
        self._append(turn)
        return turn

    def add_assistant_turn(
        self,
        content: Optional[str],
        tool_calls: Optional[List[ToolCallRecord]] = None,
        metadata: Optional[Dict] = None
    ) -> ConversationTurn:
        """Add an assistant message, optionally carrying proposed tool calls."""
        turn = ConversationTurn(
            role=TurnRole.ASSISTANT,
            content=content or "",
            tool_calls=list(tool_calls or []),
            metadata=metadata or {},
        )
        self._append(turn)
        return turn

    def add_tool_result(
        self,
        call_id: str,
        tool_name: str,
        content: str,
        success: bool = True
    ) -> ConversationTurn:
        """Add the result of one tool call."""
        turn = ConversationTurn(
            role=TurnRole.TOOL,
            content=content,
            tool_call_id=call_id,
            tool_name=tool_name,
            success=success,
        )
        self._append(turn)
        return turn

    def add_system_turn(self, content: str) -> ConversationTurn:
        turn = ConversationTurn(role=TurnRole.SYSTEM, content=content)
        self._append(turn)
        return turn

    def _append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)
        self._logger.debug(f"Added turn: {turn.role.name}, total: {len(self._turns)}")

    def _evict(self, keep: int) -> None:
        """Drop whole user turns from the front until at most `keep` remain."""
        user_indexes = [i for i, t in enumerate(self._turns) if t.role == TurnRole.USER]
        excess = len(user_indexes) - keep
        if excess <= 0:
            return

        # Cut at the first user message that survives
        cut = user_indexes[excess] if excess < len(user_indexes) else len(self._turns)
        removed = self._turns[:cut]
        self._turns = self._turns[cut:]
        self._logger.debug(
            f"Evicted {excess} user turns ({len(removed)} entries, count limit)"
        )

    @property
    def turns(self) -> List[ConversationTurn]:
        """Get all entries (read-only copy)."""
        return self._turns.copy()

    @property
    def user_turn_count(self) -> int:
        return sum(1 for t in self._turns if t.role == TurnRole.USER)

    def get_recent_turns(self, n: int = 5) -> List[ConversationTurn]:
        """Get the N most recent entries."""
        return self._turns[-n:] if n < len(self._turns) else self._turns.copy()

    def get_user_turns(self) -> List[ConversationTurn]:
        return [t for t in self._turns if t.role == TurnRole.USER]

    def get_tool_turns(self) -> List[ConversationTurn]:
        return [t for t in self._turns if t.role == TurnRole.TOOL]

    def to_llm_messages(self) -> List[Dict]:
        """Convert history to chat-completions message format."""
        return [turn.to_llm_message() for turn in self._turns]

    def summarize(self) -> str:
        """
        Create a short summary of the conversation.
        Used by the CLI `history` command.
        """
        if not self._turns:
            return "No conversation history."

        user_turns = self.get_user_turns()
        tool_turns = self.get_tool_turns()

        summary_parts = [f"{len(user_turns)} turns, {len(self._turns)} entries"]

        if user_turns:
            recent_requests = [t.content for t in user_turns[-3:]]
            summary_parts.append(f"Recent requests: {'; '.join(recent_requests)}")

        if tool_turns:
            tools_used = sorted({t.tool_name for t in tool_turns if t.tool_name})
            failed = sum(1 for t in tool_turns if t.success is False)
            summary_parts.append(f"Tools used: {', '.join(tools_used)}")
            if failed:
                summary_parts.append(f"Failed calls: {failed}")

        return " | ".join(summary_parts)

    def clear(self) -> int:
        """Clear all history. Returns number of entries cleared."""
        count = len(self._turns)
        self._turns = []
        self._logger.info(f"Cleared {count} entries from history")
        return count

    def __len__(self) -> int:
        return len(self._turns)

    def is_empty(self) -> bool:
        return len(self._turns) == 0

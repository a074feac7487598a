# Memory module - Per-thread conversation history
# Bounded by user turns, explicit eviction, no auto-learning

from .conversation import ConversationHistory, ConversationTurn, ToolCallRecord, TurnRole

__all__ = [
    "ConversationHistory",
    "ConversationTurn",
    "ToolCallRecord",
    "TurnRole",
]

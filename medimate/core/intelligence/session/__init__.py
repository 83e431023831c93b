"""
Conversation context module.

One ConversationContext per sender, kept in Redis (or memory) with a TTL
and a per-sender lock.
"""

from .state import FlowState, ActiveFlow, can_transition, is_collecting_state
from .models import ConversationContext
from .manager import ContextStore, KeyedLocks, get_context_store

__all__ = [
    # State
    "FlowState",
    "ActiveFlow",
    "can_transition",
    "is_collecting_state",
    # Models
    "ConversationContext",
    # Store
    "ContextStore",
    "KeyedLocks",
    "get_context_store",
]

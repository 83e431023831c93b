"""
Intelligence Layer Module

Provides intent recognition, typed entity parsing and per-sender
conversation context for the assistant.

Usage:
    from medimate.core.intelligence import (
        get_intent_recognizer,
        parse_entities,
        get_context_store,
        SenderRole,
    )

    recognizer = await get_intent_recognizer()
    result = await recognizer.recognize("Book me tomorrow at 2pm", SenderRole.PATIENT)
    entities = parse_entities(result.intent, result.entities)

    store = get_context_store()
    async with store.lock("15551234567"):
        context = await store.get("15551234567")
"""

# Intent Recognition
from medimate.core.intelligence.intent.types import (
    Intent,
    RecognitionResult,
    SenderRole,
    DOCTOR_ONLY_INTENTS,
)
from medimate.core.intelligence.intent.recognizer import (
    IntentRecognizer,
    get_intent_recognizer,
)

# Entities
from medimate.core.intelligence.slots.types import (
    BookingEntities,
    RescheduleEntities,
    CancelEntities,
    PauseEntities,
    FreeformEntities,
    Entities,
    parse_entities,
)

# Conversation Context
from medimate.core.intelligence.session.state import FlowState, ActiveFlow
from medimate.core.intelligence.session.models import ConversationContext
from medimate.core.intelligence.session.manager import ContextStore, get_context_store

__all__ = [
    # Intent
    "Intent",
    "RecognitionResult",
    "SenderRole",
    "DOCTOR_ONLY_INTENTS",
    "IntentRecognizer",
    "get_intent_recognizer",
    # Entities
    "BookingEntities",
    "RescheduleEntities",
    "CancelEntities",
    "PauseEntities",
    "FreeformEntities",
    "Entities",
    "parse_entities",
    # Context
    "FlowState",
    "ActiveFlow",
    "ConversationContext",
    "ContextStore",
    "get_context_store",
]

"""Intent recognition module."""

from .types import Intent, RecognitionResult, SenderRole, DOCTOR_ONLY_INTENTS
from .recognizer import (
    IntentRecognizer,
    get_intent_recognizer,
)

__all__ = [
    # Types
    "Intent",
    "RecognitionResult",
    "SenderRole",
    "DOCTOR_ONLY_INTENTS",
    # Recognizer
    "IntentRecognizer",
    "get_intent_recognizer",
]

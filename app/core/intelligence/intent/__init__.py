"""Intent classification module."""

from .types import Intent, IntentResult, WORKFLOW_INTENTS
from .classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

__all__ = [
    # Types
    "Intent",
    "IntentResult",
    "WORKFLOW_INTENTS",
    # Classifier
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
]

"""
Intelligence Layer Module

Provides intent classification and slot extraction for the scheduling
agent. Both are Claude-backed and degrade to UNKNOWN / empty slots when
the model is unavailable.

Usage:
    from app.core.intelligence import classify_intent, extract_slots

    # Classify intent
    result = await classify_intent("Can I move my cleaning to next week?")
    print(result.intent)  # Intent.RESCHEDULE

    # Extract slots
    slots = await extract_slots("Tuesday at 2pm with Dr. Smith")
    print(slots.provider_name)  # "Smith"
    print(slots.date_raw)  # "Tuesday"
"""

# Intent Classification
from app.core.intelligence.intent.types import Intent, IntentResult, WORKFLOW_INTENTS
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

# Slot Extraction
from app.core.intelligence.slots.types import ArrivalEvent, AsapAction, ExtractedSlots
from app.core.intelligence.slots.extractor import (
    SlotExtractor,
    get_slot_extractor,
    extract_slots,
)

__all__ = [
    # Intent
    "Intent",
    "IntentResult",
    "WORKFLOW_INTENTS",
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
    # Slots
    "ArrivalEvent",
    "AsapAction",
    "ExtractedSlots",
    "SlotExtractor",
    "get_slot_extractor",
    "extract_slots",
]

"""Slot extraction module."""

from .types import ArrivalEvent, AsapAction, ExtractedSlots
from .extractor import (
    SlotExtractor,
    get_slot_extractor,
    extract_slots,
)

__all__ = [
    # Types
    "ArrivalEvent",
    "AsapAction",
    "ExtractedSlots",
    # Extractor
    "SlotExtractor",
    "get_slot_extractor",
    "extract_slots",
]

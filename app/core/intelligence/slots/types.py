"""Slot types for entity extraction."""

from dataclasses import dataclass, fields
from datetime import date, time
from enum import Enum
from typing import Optional


class ArrivalEvent(str, Enum):
    """Front-desk events recorded on an appointment."""

    ARRIVED = "arrived"
    SEATED = "seated"
    DISMISSED = "dismissed"


class AsapAction(str, Enum):
    """What the caller wants done with the ASAP list."""

    ADD = "add"
    REMOVE = "remove"
    LIST = "list"


@dataclass
class ExtractedSlots:
    """Slots extracted from the conversation by LLM."""

    # Patient
    patient_first_name: Optional[str] = None
    patient_last_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_birthdate: Optional[date] = None

    # Provider
    provider_name: Optional[str] = None

    # Date/time
    date: Optional[date] = None              # Absolute date, if the caller gave one
    time: Optional[time] = None              # Exact time
    date_raw: Optional[str] = None           # "next week", "Tuesday" (resolved in code)
    time_raw: Optional[str] = None           # "2pm", "morning"
    date_end: Optional[date] = None          # End of a requested range
    time_preference: Optional[str] = None    # morning / afternoon / evening

    # Appointment
    note: Optional[str] = None               # "cleaning", "crown prep"
    current_appointment_date: Optional[date] = None  # Which existing appointment
    return_to_unscheduled: Optional[bool] = None
    arrival_event: Optional[ArrivalEvent] = None
    asap_action: Optional[AsapAction] = None

    # Metadata
    raw_response: str = ""
    processing_time_ms: float = 0.0

    _METADATA = ("raw_response", "processing_time_ms")

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        result = {}
        for f in fields(self):
            if f.name in self._METADATA:
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (date, time)):
                value = value.isoformat()
            result[f.name] = value
        return result

"""
LLM-based entity extraction using Claude Haiku.

Extracts: patient identity, provider, dates, times, and the choices the
scheduling workflows need (which appointment, unscheduled-list choice,
arrival event, ASAP action). Relative date phrases are returned raw and
resolved in code, never by the model.
"""

import json
import logging
import time
from datetime import date, time as time_type
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client, ClaudeClientError, strip_code_fence
from app.core.intelligence.intent.classifier import format_history
from .types import ArrivalEvent, AsapAction, ExtractedSlots

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract appointment information from a dental office phone conversation.

Use the whole conversation; when the latest message changes something said
earlier, the latest message wins. Today is {today} ({weekday}).

## What to Extract

- patient_first_name / patient_last_name: Caller's name (the patient)
- patient_phone: Phone number, digits only
- patient_birthdate: Date of birth (YYYY-MM-DD)
- provider_name: Dentist or hygienist name if mentioned ("Dr. Smith" -> "Smith")
- date: ONLY an explicit calendar date ("November 10" -> YYYY-MM-DD). Leave null for relative phrases.
- time: Exact time if mentioned (24-hour HH:MM, "2pm" -> "14:00")
- date_raw: Relative date phrase exactly as said ("next week", "Tuesday", "in 2 weeks", "tomorrow", "same day")
- time_raw: Time phrase as said ("2pm", "morning", "same time")
- date_end: End of a requested range if the caller gave one (YYYY-MM-DD)
- time_preference: morning, afternoon or evening if the caller expressed one
- note: What the visit is for ("cleaning", "toothache", "crown")
- current_appointment_date: Date of the EXISTING appointment the caller is talking about (YYYY-MM-DD), when rescheduling/cancelling/confirming
- return_to_unscheduled: true if the caller wants to be kept on the list to reschedule later, false if they just want it cancelled, null if not said
- arrival_event: arrived, seated or dismissed if the caller is checking in / being seated / leaving
- asap_action: add, remove or list for ASAP-list requests

## Conversation

{context}

## Latest Message

"{message}"

## Response

Respond with ONLY valid JSON (use null for fields not mentioned):
{{
    "patient_first_name": "<name or null>",
    "patient_last_name": "<name or null>",
    "patient_phone": "<digits or null>",
    "patient_birthdate": "<YYYY-MM-DD or null>",
    "provider_name": "<name or null>",
    "date": "<YYYY-MM-DD or null>",
    "time": "<HH:MM or null>",
    "date_raw": "<text or null>",
    "time_raw": "<text or null>",
    "date_end": "<YYYY-MM-DD or null>",
    "time_preference": "<morning/afternoon/evening or null>",
    "note": "<text or null>",
    "current_appointment_date": "<YYYY-MM-DD or null>",
    "return_to_unscheduled": <true/false/null>,
    "arrival_event": "<arrived/seated/dismissed or null>",
    "asap_action": "<add/remove/list or null>"
}}"""


def _parse_date(value, field_name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Invalid {field_name} format: {value}")
        return None


def _parse_enum(enum_cls, value):
    if not value:
        return None
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return None


def _parse_bool(value) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes"):
        return True
    if text in ("false", "no"):
        return False
    return None


class SlotExtractor:
    """LLM-based slot extraction using Claude Haiku."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize extractor.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def extract(
        self,
        message: str,
        conversation_history: Optional[list[dict]] = None,
        today: Optional[date] = None,
    ) -> ExtractedSlots:
        """
        Extract slots from the caller's message and the conversation so far.

        Args:
            message: Caller's latest message
            conversation_history: Prior turns as {"role", "content"} dicts
            today: Office-local date the model should treat as today

        Returns:
            ExtractedSlots with any found entities
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return ExtractedSlots()

        prompt = self._build_prompt(message, today or date.today(), conversation_history)
        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=400,
                temperature=0,
                use_fallback_on_error=True,
            )

            result = self._parse_response(response.content)
            result.processing_time_ms = (time.time() - start_time) * 1000
            result.raw_response = response.content

            logger.debug(f"Extracted slots: {result.to_dict()}")

            return result

        except ClaudeClientError as e:
            logger.error(f"Claude API error: {e}")
            return ExtractedSlots()
        except Exception as e:
            logger.error(f"Extraction failed: {e}")
            return ExtractedSlots()

    def _build_prompt(
        self,
        message: str,
        today: date,
        conversation_history: Optional[list[dict]] = None,
    ) -> str:
        """Build extraction prompt."""
        return EXTRACTION_PROMPT.format(
            today=today.isoformat(),
            weekday=today.strftime("%A"),
            context=format_history(conversation_history) or "No prior conversation.",
            message=message,
        )

    def _parse_response(self, response: str) -> ExtractedSlots:
        """Parse LLM JSON response."""
        response = strip_code_fence(response)

        try:
            data = json.loads(response)

            parsed_time = None
            if data.get("time"):
                try:
                    parsed_time = time_type.fromisoformat(data["time"])
                except ValueError:
                    logger.warning(f"Invalid time format: {data['time']}")

            preference = data.get("time_preference")
            if preference and preference.lower() not in ("morning", "afternoon", "evening"):
                preference = None

            return ExtractedSlots(
                patient_first_name=data.get("patient_first_name"),
                patient_last_name=data.get("patient_last_name"),
                patient_phone=data.get("patient_phone"),
                patient_birthdate=_parse_date(data.get("patient_birthdate"), "birthdate"),
                provider_name=data.get("provider_name"),
                date=_parse_date(data.get("date"), "date"),
                time=parsed_time,
                date_raw=data.get("date_raw"),
                time_raw=data.get("time_raw"),
                date_end=_parse_date(data.get("date_end"), "date_end"),
                time_preference=preference.lower() if preference else None,
                note=data.get("note"),
                current_appointment_date=_parse_date(
                    data.get("current_appointment_date"), "current_appointment_date"
                ),
                return_to_unscheduled=_parse_bool(data.get("return_to_unscheduled")),
                arrival_event=_parse_enum(ArrivalEvent, data.get("arrival_event")),
                asap_action=_parse_enum(AsapAction, data.get("asap_action")),
            )

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return ExtractedSlots()


# Singleton
_extractor: Optional[SlotExtractor] = None


async def get_slot_extractor() -> SlotExtractor:
    """Get singleton SlotExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = SlotExtractor()
    return _extractor


async def extract_slots(
    message: str,
    conversation_history: Optional[list[dict]] = None,
    today: Optional[date] = None,
) -> ExtractedSlots:
    """Convenience function to extract slots."""
    extractor = await get_slot_extractor()
    return await extractor.extract(message, conversation_history, today)

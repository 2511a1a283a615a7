"""Intent types for caller utterance classification."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """Caller intent categories, one per scheduling workflow."""

    # Workflows
    BOOK = "book"                                # New appointment
    RESCHEDULE = "reschedule"                    # Move an existing appointment
    CANCEL = "cancel"                            # Cancel / break an appointment
    CONFIRM = "confirm"                          # Confirm, or report arrival
    CHECK_AVAILABILITY = "check_availability"    # "What do you have Tuesday?"
    RECALL = "recall"                            # Cleaning / periodic recall
    PLANNED = "planned"                          # Treatment-plan appointment
    ASAP = "asap"                                # ASAP list add/remove/list

    # Conversation
    GREETING = "greeting"
    GOODBYE = "goodbye"

    # Fallback
    UNKNOWN = "unknown"


WORKFLOW_INTENTS = frozenset({
    Intent.BOOK,
    Intent.RESCHEDULE,
    Intent.CANCEL,
    Intent.CONFIRM,
    Intent.CHECK_AVAILABILITY,
    Intent.RECALL,
    Intent.PLANNED,
    Intent.ASAP,
})


@dataclass
class IntentResult:
    """Result of intent classification."""

    intent: Intent
    confidence: float  # 0.0 - 1.0

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    # Whether fallback model was used
    fallback_used: bool = False

    processing_time_ms: float = 0.0

    @property
    def is_high_confidence(self) -> bool:
        """Check if classification is high confidence."""
        return self.confidence >= 0.7

    @property
    def is_workflow(self) -> bool:
        """Check if intent maps to a scheduling workflow."""
        return self.intent in WORKFLOW_INTENTS

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "fallback_used": self.fallback_used,
            "processing_time_ms": self.processing_time_ms,
        }

"""
Workflow Orchestrator - Main Entry Point.

Processes one caller utterance per turn:

    classify intent -> extract slots -> office context -> workflow -> render

Every turn ends in exactly one reply string. Scheduling errors and any
unexpected failure are converted to text here and never reach the
transport.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.config import Settings, get_settings
from app.core.intelligence import (
    ExtractedSlots,
    Intent,
    IntentClassifier,
    SlotExtractor,
    get_intent_classifier,
    get_slot_extractor,
)
from app.core.scheduling.errors import (
    GatewayUnavailable,
    PatientNotFound,
    SlotUnavailable,
    ValidationError,
    WorkflowExhausted,
)
from app.core.scheduling.gateway import get_gateway
from app.core.scheduling.office_context import OfficeContext, OfficeContextHolder
from app.core.scheduling.response import ResponseRenderer, get_response_renderer
from app.core.scheduling.state import TurnState, TurnTrace
from app.core.scheduling.workflows import Outcome, WorkflowResult, WorkflowRunner

logger = logging.getLogger(__name__)


def office_clock(settings: Optional[Settings] = None) -> Callable[[], datetime]:
    """Clock returning naive office-local wall time."""
    settings = settings or get_settings()
    tz_name = settings.office_timezone

    def now() -> datetime:
        if tz_name:
            return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)
        return datetime.now()

    return now


@dataclass
class OrchestratorResult:
    """Result of processing one utterance."""

    text: str
    intent: Intent
    trace: TurnTrace
    outcome: Optional[Outcome] = None
    error: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "response": self.text,
            "intent": self.intent.value,
            "state_path": self.trace.to_list(),
        }
        if self.outcome:
            result["outcome"] = self.outcome.value
        if self.error:
            result["error"] = self.error
        if self.metadata:
            result["metadata"] = self.metadata
        return result


class Orchestrator:
    """
    Routes caller turns to scheduling workflows.

    One orchestrator serves one session: it owns that session's office
    context holder, so cached office data is never shared between
    callers.
    """

    def __init__(
        self,
        gateway=None,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[SlotExtractor] = None,
        renderer: Optional[ResponseRenderer] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        context_holder: Optional[OfficeContextHolder] = None,
    ):
        """Initialize orchestrator with optional dependencies.

        Args:
            gateway: Appointment data gateway
            classifier: Intent classifier
            extractor: Slot extractor
            renderer: Response renderer
            settings: Settings override
            clock: Returns the current office-local time
            context_holder: Session-scoped office context holder
        """
        self.settings = settings or get_settings()
        self.gateway = gateway or get_gateway()
        self._classifier = classifier
        self._extractor = extractor
        self.renderer = renderer or get_response_renderer()
        self.clock = clock or office_clock(self.settings)
        self.context_holder = context_holder or OfficeContextHolder(
            gateway=self.gateway, settings=self.settings
        )

    async def _get_classifier(self) -> IntentClassifier:
        if self._classifier is None:
            self._classifier = await get_intent_classifier()
        return self._classifier

    async def _get_extractor(self) -> SlotExtractor:
        if self._extractor is None:
            self._extractor = await get_slot_extractor()
        return self._extractor

    async def handle_utterance(
        self,
        text: str,
        conversation_history: Optional[list[dict]] = None,
    ) -> str:
        """Process one utterance and return the reply text."""
        result = await self.process(text, conversation_history)
        return result.text

    async def process(
        self,
        text: str,
        conversation_history: Optional[list[dict]] = None,
    ) -> OrchestratorResult:
        """Process one utterance.

        Args:
            text: Caller's utterance
            conversation_history: Prior turns as {"role", "content"} dicts

        Returns:
            OrchestratorResult; always carries reply text
        """
        trace = TurnTrace()
        now = self.clock()
        intent = Intent.UNKNOWN
        context: Optional[OfficeContext] = None
        outcome: Optional[Outcome] = None
        error: Optional[str] = None
        metadata: dict = {}

        try:
            classifier = await self._get_classifier()
            intent_result = await classifier.classify(text, conversation_history)
            intent = intent_result.intent
            trace.advance(TurnState.INTENT_CLASSIFIED)
            logger.info(f"Turn intent: {intent.value} ({intent_result.confidence:.2f})")

            if not intent_result.is_workflow:
                reply = self._conversational_reply(intent)
            else:
                extractor = await self._get_extractor()
                slots = await extractor.extract(text, conversation_history, today=now.date())
                context = await self.context_holder.get(now)
                result = await self._run_workflow(intent, slots, context, now, trace)
                outcome = result.outcome
                metadata = result.metadata
                reply = self.renderer.render(result, context)

        except SlotUnavailable as e:
            logger.info(f"Slot unavailable: {e} ({len(e.alternatives)} alternatives)")
            error = "slot_unavailable"
            metadata = {"alternatives": [s.to_dict() for s in e.alternatives]}
            reply = self.renderer.slot_unavailable(e, context)

        except ValidationError as e:
            logger.info(f"Follow-up needed for {e.field}: {e}")
            error = "validation"
            metadata = {"field": e.field}
            reply = self.renderer.follow_up(e)

        except PatientNotFound as e:
            logger.info(f"Patient not found ({intent.value})")
            error = "patient_not_found"
            reply = self.renderer.patient_not_found(e)

        except GatewayUnavailable as e:
            logger.error(f"Gateway failure during {intent.value}: {e}")
            error = "gateway_unavailable"
            reply = self.renderer.gateway_unavailable(e)

        except WorkflowExhausted as e:
            logger.error(f"ANOMALY: {e} (path: {' -> '.join(trace.to_list())})")
            error = "workflow_exhausted"
            reply = self.renderer.apology()

        except Exception as e:
            logger.error(f"Error processing utterance: {e}", exc_info=True)
            error = "internal"
            reply = self.renderer.apology()

        trace.finish()
        return OrchestratorResult(
            text=reply,
            intent=intent,
            trace=trace,
            outcome=outcome,
            error=error,
            metadata=metadata,
        )

    async def _run_workflow(
        self,
        intent: Intent,
        slots: ExtractedSlots,
        context: OfficeContext,
        now: datetime,
        trace: TurnTrace,
    ) -> WorkflowResult:
        """Run the workflow for an intent; invalidate cached context after a write."""
        runner = WorkflowRunner(self.gateway, context, now, trace=trace, settings=self.settings)
        result = await runner.run(intent, slots)
        if result.mutated:
            # Occupancy hints are stale once the schedule has changed
            self.context_holder.invalidate()
        return result

    def _conversational_reply(self, intent: Intent) -> str:
        if intent == Intent.GREETING:
            return self.renderer.greeting()
        if intent == Intent.GOODBYE:
            return self.renderer.goodbye()
        return self.renderer.clarification()


async def handle_utterance(
    text: str,
    conversation_history: Optional[list[dict]] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> str:
    """Convenience function to process one utterance with a fresh session."""
    orchestrator = orchestrator or Orchestrator()
    return await orchestrator.handle_utterance(text, conversation_history)

"""
Scheduling Module

Appointment availability and conflict detection against the OpenDental
practice-management API, and the caller-facing workflows built on them.

Usage:
    from app.core.scheduling import Orchestrator, get_gateway

    orchestrator = Orchestrator(gateway=get_gateway())
    reply = await orchestrator.handle_utterance(
        "Can I move my appointment to next week?",
        conversation_history=[],
    )
"""

# Errors
from app.core.scheduling.errors import (
    SchedulingError,
    GatewayUnavailable,
    PatientNotFound,
    SlotUnavailable,
    ValidationError,
    WorkflowExhausted,
)

# Data model
from app.core.scheduling.models import (
    Appointment,
    AppointmentPatch,
    AppointmentStatus,
    BookingRequest,
    CandidateSlot,
    OccupiedInterval,
    OfficeHours,
    Operatory,
    Patient,
    PenaltyMarker,
    Provider,
    ProviderSchedule,
    Recall,
)

# Core components
from app.core.scheduling.conflicts import (
    ConflictDetector,
    ConflictReport,
    FreshIntervals,
    find_conflicts,
)
from app.core.scheduling.office_context import (
    OfficeContext,
    OfficeContextHolder,
    ScheduleBook,
    build_context,
    is_expired,
)
from app.core.scheduling.slots import SlotResolver
from app.core.scheduling.state import TurnState, TurnTrace

# Gateway client
from app.core.scheduling.gateway import OpenDentalGateway, get_gateway

# Workflows, rendering, orchestration
from app.core.scheduling.workflows import Outcome, WorkflowResult, WorkflowRunner
from app.core.scheduling.response import ResponseRenderer, get_response_renderer
from app.core.scheduling.orchestrator import (
    Orchestrator,
    OrchestratorResult,
    handle_utterance,
)

__all__ = [
    # Errors
    "SchedulingError",
    "GatewayUnavailable",
    "PatientNotFound",
    "SlotUnavailable",
    "ValidationError",
    "WorkflowExhausted",
    # Data model
    "Appointment",
    "AppointmentPatch",
    "AppointmentStatus",
    "BookingRequest",
    "CandidateSlot",
    "OccupiedInterval",
    "OfficeHours",
    "Operatory",
    "Patient",
    "PenaltyMarker",
    "Provider",
    "ProviderSchedule",
    "Recall",
    # Core components
    "ConflictDetector",
    "ConflictReport",
    "FreshIntervals",
    "find_conflicts",
    "OfficeContext",
    "OfficeContextHolder",
    "ScheduleBook",
    "build_context",
    "is_expired",
    "SlotResolver",
    "TurnState",
    "TurnTrace",
    # Gateway
    "OpenDentalGateway",
    "get_gateway",
    # Workflows
    "Outcome",
    "WorkflowResult",
    "WorkflowRunner",
    "ResponseRenderer",
    "get_response_renderer",
    "Orchestrator",
    "OrchestratorResult",
    "handle_utterance",
]

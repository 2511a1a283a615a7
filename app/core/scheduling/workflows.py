"""
Scheduling workflows.

One method per caller intent, each a fixed sequence of gateway reads
ending in at most one write. Every write is preceded by a conflict
check on freshly fetched intervals for the exact target date; nothing
is written before that check passes.

Workflows never render text. They return a WorkflowResult (or raise a
SchedulingError) and the orchestrator turns that into a reply.
"""

import functools
import inspect
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

from app.config import Settings, get_settings
from app.core.intelligence.intent.types import Intent
from app.core.intelligence.slots.types import ArrivalEvent, AsapAction, ExtractedSlots
from app.core.scheduling.conflicts import ConflictDetector, ConflictReport
from app.core.scheduling.dates import format_date, resolve_requested_date
from app.core.scheduling.errors import (
    GatewayUnavailable,
    SlotUnavailable,
    ValidationError,
    WorkflowExhausted,
)
from app.core.scheduling.models import (
    Appointment,
    AppointmentPatch,
    AppointmentStatus,
    BookingRequest,
    CandidateSlot,
    Patient,
    PenaltyMarker,
    Priority,
    Recall,
)
from app.core.scheduling.office_context import OfficeContext
from app.core.scheduling.slots import SlotResolver
from app.core.scheduling.state import TurnState, TurnTrace

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """What a workflow ended with."""

    BOOKED = "booked"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    ARRIVAL_RECORDED = "arrival_recorded"
    OPTIONS = "options"
    NO_AVAILABILITY = "no_availability"
    NO_APPOINTMENT = "no_appointment"
    RECALL_BOOKED = "recall_booked"
    NO_RECALL = "no_recall"
    PLANNED_BOOKED = "planned_booked"
    NO_PLANNED = "no_planned"
    ASAP_UPDATED = "asap_updated"
    ASAP_LIST = "asap_list"


MUTATING_OUTCOMES = frozenset({
    Outcome.BOOKED,
    Outcome.RESCHEDULED,
    Outcome.CANCELLED,
    Outcome.CONFIRMED,
    Outcome.ARRIVAL_RECORDED,
    Outcome.RECALL_BOOKED,
    Outcome.PLANNED_BOOKED,
    Outcome.ASAP_UPDATED,
})


@dataclass
class WorkflowResult:
    """Structured result of one workflow run."""

    outcome: Outcome
    intent: Intent
    patient: Optional[Patient] = None
    appointment: Optional[Appointment] = None
    provider_name: Optional[str] = None
    slots: list[CandidateSlot] = field(default_factory=list)
    appointments: list[Appointment] = field(default_factory=list)
    penalty: Optional[PenaltyMarker] = None
    previous_start: Optional[datetime] = None
    recall: Optional[Recall] = None
    metadata: dict = field(default_factory=dict)

    @property
    def mutated(self) -> bool:
        """Whether the gateway was written to."""
        return self.outcome in MUTATING_OUTCOMES


class StepBudget:
    """
    Gateway proxy that counts calls made during one turn.

    Each awaited gateway method consumes one step. Going over the limit
    raises WorkflowExhausted before the call is made.
    """

    def __init__(self, gateway, limit: int, workflow: str = ""):
        self._gateway = gateway
        self.limit = limit
        self.workflow = workflow
        self.used = 0

    def spend(self, operation: str) -> None:
        self.used += 1
        if self.used > self.limit:
            raise WorkflowExhausted(self.limit, self.workflow)
        logger.debug(f"Step {self.used}/{self.limit}: {operation}")

    def __getattr__(self, name: str):
        target = getattr(self._gateway, name)
        if not inspect.iscoroutinefunction(target):
            return target

        @functools.wraps(target)
        async def counted(*args, **kwargs):
            self.spend(name)
            return await target(*args, **kwargs)

        return counted


class WorkflowRunner:
    """Executes one caller turn's workflow against the gateway."""

    def __init__(
        self,
        gateway,
        context: OfficeContext,
        now: datetime,
        trace: Optional[TurnTrace] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize runner for a single turn.

        Args:
            gateway: Appointment data gateway
            context: Office context for defaults and names
            now: Current local time for this turn
            trace: Turn state trace to advance
            settings: Settings override
        """
        self.settings = settings or get_settings()
        self.steps = StepBudget(gateway, self.settings.max_workflow_steps)
        self.gateway = self.steps
        self.context = context
        self.now = now
        self.today = now.date()
        if trace is None:
            # Workflows only run once the intent is known
            trace = TurnTrace()
            trace.advance(TurnState.INTENT_CLASSIFIED)
        self.trace = trace
        self.resolver = SlotResolver(
            self.steps,
            context.office_hours,
            self.settings,
            schedules=context.schedules,
            operatory_ids=context.booking_operatory_ids(),
        )
        self.detector = ConflictDetector(self.steps)

    async def run(self, intent: Intent, slots: ExtractedSlots) -> WorkflowResult:
        """Dispatch to the workflow for an intent."""
        handlers = {
            Intent.BOOK: self.book,
            Intent.RESCHEDULE: self.reschedule,
            Intent.CANCEL: self.cancel,
            Intent.CONFIRM: self.confirm,
            Intent.CHECK_AVAILABILITY: self.check_availability,
            Intent.RECALL: self.recall,
            Intent.PLANNED: self.planned,
            Intent.ASAP: self.asap,
        }
        handler = handlers.get(intent)
        if handler is None:
            raise ValueError(f"No workflow for intent {intent.value}")

        self.steps.workflow = intent.value
        logger.info(f"Running {intent.value} workflow")
        result = await handler(slots)
        logger.info(
            f"{intent.value} workflow finished: {result.outcome.value} "
            f"({self.steps.used} gateway steps)"
        )
        return result

    # === Shared steps ===

    async def _resolve_patient(self, slots: ExtractedSlots, allow_create: bool) -> Patient:
        patient = await self.gateway.find_or_create_patient(
            first_name=slots.patient_first_name,
            last_name=slots.patient_last_name,
            phone=slots.patient_phone,
            birthdate=slots.patient_birthdate,
            allow_create=allow_create,
        )
        self.trace.advance(TurnState.PATIENT_RESOLVED)
        logger.debug(f"Resolved patient {patient.id}")
        return patient

    def _provider_id(self, slots: ExtractedSlots, fallback: Optional[int] = None) -> int:
        """Provider the caller asked for, else fallback, else the office default."""
        if slots.provider_name:
            provider = self.context.find_provider(slots.provider_name)
            if provider:
                return provider.id
            if self.context.active_providers() and not self.context.degraded:
                names = ", ".join(p.display_name for p in self.context.active_providers())
                raise ValidationError(
                    field="provider_name",
                    question=f"I couldn't find a provider named {slots.provider_name}. "
                    f"We have {names}. Who would you like to see?",
                )
        return fallback or self.context.defaults.provider_id

    def _exact_start(self, target: Optional[date], slots: ExtractedSlots) -> Optional[datetime]:
        """Combine a resolved date with an exact time, if both are known."""
        if target is None or slots.time is None:
            return None
        return datetime.combine(target, slots.time)

    def _check_bookable(
        self, start: datetime, duration: int, provider_id: Optional[int] = None
    ) -> None:
        """Reject past times, times outside office hours, and times the provider is off."""
        if start <= self.now:
            raise ValidationError(
                field="date",
                question="That time has already passed. What date and time would you like?",
            )
        window = self.context.office_hours.window(start.date())
        if window is None:
            raise ValidationError(
                field="date",
                question=f"We're closed on {start.strftime('%A')}s. Which other day works for you?",
            )
        open_at, close_at = window
        if start < open_at or start + timedelta(minutes=duration) > close_at:
            raise ValidationError(
                field="time",
                question=f"We're open {open_at.strftime('%I:%M %p').lstrip('0')} to "
                f"{close_at.strftime('%I:%M %p').lstrip('0')} that day. What time works for you?",
            )
        if provider_id is not None:
            self._check_provider_working(start, duration, provider_id)

    def _check_provider_working(self, start: datetime, duration: int, provider_id: int) -> None:
        """Reject times outside a scheduled provider's blocks.

        Providers with no block in the cached schedule window, and dates
        beyond it, are bounded by office hours alone.
        """
        book = self.context.schedules
        day = start.date()
        if not book.covers(day) or not book.has_provider(provider_id, book.date_start, book.date_end):
            return
        end = start + timedelta(minutes=duration)
        blocks = book.on(day, provider_id)
        if any(b.window[0] <= start and end <= b.window[1] for b in blocks):
            return

        name = self.context.provider_name(provider_id)
        if not blocks:
            raise ValidationError(
                field="date",
                question=f"{name} isn't in on {start.strftime('%A, %B %d')}. "
                "Which other day works for you?",
            )
        hours = ", ".join(
            f"{b.window[0].strftime('%I:%M %p').lstrip('0')} to "
            f"{b.window[1].strftime('%I:%M %p').lstrip('0')}"
            for b in blocks
        )
        raise ValidationError(
            field="time",
            question=f"{name} is in from {hours} that day. What time works for you?",
        )

    def _check_not_past(self, target: Optional[date]) -> None:
        if target is not None and target < self.today:
            raise ValidationError(
                field="date",
                question="That date has already passed. What date would you like?",
            )

    async def _gate(
        self,
        booking: BookingRequest,
        exclude_appointment_id: Optional[int] = None,
        room_flexible: bool = False,
    ) -> ConflictReport:
        """Fresh conflict check; raises SlotUnavailable with alternatives on conflict.

        A room-flexible booking whose room alone is taken moves to another
        empty room from the office's booking rooms.
        """
        self.trace.advance(TurnState.CONFLICT_CHECK)
        rooms = self.context.booking_operatory_ids() if room_flexible else ()
        report = await self.detector.detect_conflicts(
            booking, exclude_appointment_id, now=self.now, operatory_ids=rooms
        )
        if report.moved_to_operatory_id is not None:
            booking.operatory_id = report.moved_to_operatory_id
        if not report.has_conflict:
            return report

        self.trace.advance(TurnState.SLOT_RESOLUTION)
        target = booking.target_date
        alternatives = await self.resolver.find_available_slots(
            target,
            target + timedelta(days=self.settings.alternative_window_days),
            provider_id=booking.provider_id,
            operatory_id=None if room_flexible else booking.operatory_id,
            length_minutes=booking.duration_minutes,
            exclude_appointment_id=exclude_appointment_id,
            now=self.now,
        )
        raise SlotUnavailable(report, alternatives)

    async def _patient_appointments(
        self,
        patient: Patient,
        statuses: frozenset,
        lookback_days: int = 0,
    ) -> list[Appointment]:
        """A patient's appointments in the search window with the given statuses."""
        appointments = await self.gateway.list_appointments(
            self.today - timedelta(days=lookback_days),
            self.today + timedelta(days=self.settings.appointment_search_days),
            patient_id=patient.id,
        )
        matching = [a for a in appointments if a.status in statuses and a.patient_id == patient.id]
        return sorted(matching, key=lambda a: a.start)

    def _pick_appointment(
        self,
        appointments: list[Appointment],
        slots: ExtractedSlots,
        allow_past: bool = False,
    ) -> Optional[Appointment]:
        """The appointment the caller means.

        An explicit date picks the appointment on that date. Otherwise the
        next upcoming one, or (when allowed) the most recent past one.
        """
        if slots.current_appointment_date:
            for appointment in appointments:
                if appointment.start.date() == slots.current_appointment_date:
                    return appointment
            return None

        upcoming = [a for a in appointments if a.start > self.now]
        if upcoming:
            return upcoming[0]
        if allow_past and appointments:
            return appointments[-1]
        return None

    def _result(self, outcome: Outcome, intent: Intent, **kwargs) -> WorkflowResult:
        return WorkflowResult(outcome=outcome, intent=intent, **kwargs)

    # === Workflows ===

    async def book(self, slots: ExtractedSlots) -> WorkflowResult:
        """New booking: offer options, or book an exact time after a conflict check."""
        patient = await self._resolve_patient(slots, allow_create=True)

        existing = await self._patient_appointments(
            patient, frozenset({AppointmentStatus.SCHEDULED})
        )
        upcoming = [a for a in existing if a.start > self.now]

        target = resolve_requested_date(slots.date, slots.date_raw, self.today)
        self._check_not_past(target)
        provider_id = self._provider_id(slots, fallback=patient.primary_provider_id)
        length = self.context.defaults.appointment_length
        metadata = {"existing_appointments": [a.id for a in upcoming]}

        start = self._exact_start(target, slots)
        if start is None:
            return await self._offer(
                Intent.BOOK, patient, target, slots, provider_id, None, length, metadata
            )

        self._check_bookable(start, length, provider_id)
        booking = BookingRequest(
            patient_id=patient.id,
            start=start,
            provider_id=provider_id,
            operatory_id=self.context.defaults.operatory_id,
            duration_minutes=length,
            note=slots.note or "",
        )
        await self._gate(booking, room_flexible=True)

        self.trace.advance(TurnState.GATEWAY_MUTATION)
        appointment = await self.gateway.create_appointment(booking)
        return self._result(
            Outcome.BOOKED,
            Intent.BOOK,
            patient=patient,
            appointment=appointment,
            provider_name=self.context.provider_name(booking.provider_id),
            metadata=metadata,
        )

    async def _offer(
        self,
        intent: Intent,
        patient: Optional[Patient],
        target: Optional[date],
        slots: ExtractedSlots,
        provider_id: Optional[int],
        operatory_id: Optional[int],
        length: int,
        metadata: Optional[dict] = None,
        earliest: Optional[date] = None,
    ) -> WorkflowResult:
        """Resolve candidate slots for a date (or the lookahead window)."""
        self.trace.advance(TurnState.SLOT_RESOLUTION)
        metadata = dict(metadata or {})

        if target is not None:
            date_start = max(target, earliest) if earliest else target
            date_end = slots.date_end or date_start
        else:
            date_start = max(self.today, earliest) if earliest else self.today
            date_end = slots.date_end or date_start + timedelta(days=self.settings.lookahead_days)

        kwargs = dict(
            provider_id=provider_id,
            operatory_id=operatory_id,
            time_preference=slots.time_preference,
            length_minutes=length,
            now=self.now,
        )
        candidates = await self.resolver.find_available_slots(date_start, date_end, **kwargs)

        if not candidates and date_start == date_end:
            # Requested day is full: look at the next few days
            candidates = await self.resolver.find_available_slots(
                date_start + timedelta(days=1),
                date_start + timedelta(days=self.settings.alternative_window_days),
                **kwargs,
            )
            metadata["extended_from"] = format_date(date_start)

        outcome = Outcome.OPTIONS if candidates else Outcome.NO_AVAILABILITY
        return self._result(
            outcome,
            intent,
            patient=patient,
            slots=candidates,
            provider_name=self.context.provider_name(provider_id) if provider_id else None,
            metadata=metadata,
        )

    async def reschedule(self, slots: ExtractedSlots) -> WorkflowResult:
        """Move an existing appointment, anchoring relative dates on its current date."""
        patient = await self._resolve_patient(slots, allow_create=False)

        appointments = await self._patient_appointments(
            patient,
            frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.BROKEN}),
            lookback_days=self.settings.missed_lookback_days,
        )
        current = self._pick_appointment(appointments, slots, allow_past=True)
        if current is None:
            return self._result(Outcome.NO_APPOINTMENT, Intent.RESCHEDULE, patient=patient)

        anchor = current.start.date()
        new_date = resolve_requested_date(slots.date, slots.date_raw, anchor, today=self.today)
        if new_date is None:
            if slots.time is None or slots.time == current.start.time():
                raise ValidationError(
                    field="date",
                    question="What date would you like to move it to?",
                )
            new_date = anchor

        new_time: time = slots.time or current.start.time()
        new_start = datetime.combine(new_date, new_time)
        if new_start == current.start:
            raise ValidationError(
                field="date",
                question=f"Your appointment is already on {new_start.strftime('%A, %B %d')} at "
                f"{new_start.strftime('%I:%M %p').lstrip('0')}. What new date or time would you like?",
            )
        provider_id = self._provider_id(slots, fallback=current.provider_id)
        self._check_bookable(new_start, current.duration_minutes, provider_id)

        booking = BookingRequest(
            patient_id=patient.id,
            start=new_start,
            provider_id=provider_id,
            operatory_id=current.operatory_id or self.context.defaults.operatory_id,
            duration_minutes=current.duration_minutes,
            note=current.note,
            is_hygiene=current.is_hygiene,
        )
        await self._gate(booking, exclude_appointment_id=current.id)

        patch = AppointmentPatch(start=new_start)
        if provider_id != current.provider_id:
            patch.provider_id = provider_id
        if current.status == AppointmentStatus.BROKEN:
            # Reinstated in the same call as the move
            patch.status = AppointmentStatus.SCHEDULED

        self.trace.advance(TurnState.GATEWAY_MUTATION)
        updated = await self.gateway.update_appointment(current.id, patch)
        return self._result(
            Outcome.RESCHEDULED,
            Intent.RESCHEDULE,
            patient=patient,
            appointment=updated,
            provider_name=self.context.provider_name(provider_id),
            previous_start=current.start,
        )

    def penalty_for(self, appointment: Appointment) -> Optional[PenaltyMarker]:
        """Penalty marker from the notice given.

        Past appointment: Missed. Under the late-cancel threshold:
        Cancelled. Otherwise none.
        """
        notice = appointment.start - self.now
        if notice <= timedelta(0):
            return PenaltyMarker.MISSED
        if notice < timedelta(hours=self.settings.late_cancel_hours):
            return PenaltyMarker.CANCELLED
        return None

    async def cancel(self, slots: ExtractedSlots) -> WorkflowResult:
        """Break an appointment with the penalty its notice period calls for."""
        patient = await self._resolve_patient(slots, allow_create=False)

        appointments = await self._patient_appointments(
            patient,
            frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.ASAP}),
            lookback_days=self.settings.missed_lookback_days,
        )
        current = self._pick_appointment(appointments, slots, allow_past=True)
        if current is None:
            return self._result(Outcome.NO_APPOINTMENT, Intent.CANCEL, patient=patient)

        if slots.return_to_unscheduled is None:
            raise ValidationError(
                field="return_to_unscheduled",
                question=f"I found your appointment on {current.start.strftime('%A, %B %d')}. "
                "Would you like us to keep you on our list to reschedule later, "
                "or should I just cancel it?",
            )

        penalty = self.penalty_for(current)
        self.trace.advance(TurnState.GATEWAY_MUTATION)
        await self.gateway.break_appointment(current.id, penalty, slots.return_to_unscheduled)

        metadata = {"asap_candidates": await self._asap_candidates(current)}
        return self._result(
            Outcome.CANCELLED,
            Intent.CANCEL,
            patient=patient,
            appointment=current,
            provider_name=self.context.provider_name(current.provider_id),
            penalty=penalty,
            metadata=metadata,
        )

    async def _asap_candidates(self, freed: Appointment) -> list[int]:
        """ASAP-flagged appointments that could take a freed slot.

        The break has already happened; a failed lookup here only costs
        the suggestion list.
        """
        if freed.start <= self.now:
            return []
        day = freed.start.date()
        try:
            candidates = await self.gateway.list_asap_appointments(day, day)
        except GatewayUnavailable as e:
            logger.warning(f"ASAP lookup after cancelling {freed.id} failed: {e}")
            return []
        ids = [a.id for a in candidates if a.id != freed.id and a.patient_id != freed.patient_id]
        if ids:
            logger.info(f"Opening on {day}: {len(ids)} ASAP candidates")
        return ids

    async def confirm(self, slots: ExtractedSlots) -> WorkflowResult:
        """Confirm an appointment, or record an arrival/seating/dismissal time."""
        patient = await self._resolve_patient(slots, allow_create=False)

        appointments = await self._patient_appointments(
            patient, frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.ASAP})
        )
        if slots.arrival_event and slots.current_appointment_date is None:
            todays = [a for a in appointments if a.start.date() == self.today]
            current = todays[0] if todays else None
        else:
            current = self._pick_appointment(appointments, slots)
        if current is None:
            return self._result(Outcome.NO_APPOINTMENT, Intent.CONFIRM, patient=patient)

        self.trace.advance(TurnState.GATEWAY_MUTATION)
        if slots.arrival_event:
            patch = AppointmentPatch()
            if slots.arrival_event == ArrivalEvent.ARRIVED:
                patch.arrived_at = self.now
            elif slots.arrival_event == ArrivalEvent.SEATED:
                patch.seated_at = self.now
            else:
                patch.dismissed_at = self.now
            updated = await self.gateway.update_appointment(current.id, patch)
            return self._result(
                Outcome.ARRIVAL_RECORDED,
                Intent.CONFIRM,
                patient=patient,
                appointment=updated,
                provider_name=self.context.provider_name(current.provider_id),
                metadata={"event": slots.arrival_event.value},
            )

        await self.gateway.confirm_appointment(current.id)
        return self._result(
            Outcome.CONFIRMED,
            Intent.CONFIRM,
            patient=patient,
            appointment=current,
            provider_name=self.context.provider_name(current.provider_id),
        )

    async def check_availability(self, slots: ExtractedSlots) -> WorkflowResult:
        """Offer open times. No patient is needed."""
        target = resolve_requested_date(slots.date, slots.date_raw, self.today)
        self._check_not_past(target)
        provider_id = None
        if slots.provider_name:
            provider_id = self._provider_id(slots)
        return await self._offer(
            Intent.CHECK_AVAILABILITY,
            None,
            target,
            slots,
            provider_id,
            None,
            self.context.defaults.appointment_length,
        )

    async def recall(self, slots: ExtractedSlots) -> WorkflowResult:
        """Book (or offer) a hygiene visit on/after the recall due date."""
        patient = await self._resolve_patient(slots, allow_create=False)

        recalls = [r for r in await self.gateway.get_recalls(patient.id) if not r.is_disabled]
        due = sorted((r for r in recalls if r.date_due), key=lambda r: r.date_due)
        if not due:
            return self._result(Outcome.NO_RECALL, Intent.RECALL, patient=patient)
        recall = due[0]
        earliest = max(recall.date_due, self.today)

        hygienist_id = patient.hygienist_id
        if hygienist_id is None:
            hygienists = self.context.hygienists()
            hygienist_id = hygienists[0].id if hygienists else self.context.defaults.provider_id
        hygiene_op = self.context.hygiene_operatory()
        operatory_id = hygiene_op.id if hygiene_op else self.context.defaults.operatory_id
        length = self.context.defaults.appointment_length * 2
        metadata = {"recall_due": format_date(recall.date_due)}

        target = resolve_requested_date(slots.date, slots.date_raw, self.today)
        self._check_not_past(target)
        start = self._exact_start(target, slots)
        if start is None or start.date() < earliest:
            result = await self._offer(
                Intent.RECALL, patient, target, slots, hygienist_id, operatory_id, length,
                metadata, earliest=earliest,
            )
            result.recall = recall
            return result

        self._check_bookable(start, length, hygienist_id)
        booking = BookingRequest(
            patient_id=patient.id,
            start=start,
            provider_id=hygienist_id,
            operatory_id=operatory_id,
            duration_minutes=length,
            note=slots.note or f"Recall: {recall.recall_type or 'cleaning'}",
            is_hygiene=True,
        )
        await self._gate(booking)

        self.trace.advance(TurnState.GATEWAY_MUTATION)
        appointment = await self.gateway.create_appointment(booking)
        return self._result(
            Outcome.RECALL_BOOKED,
            Intent.RECALL,
            patient=patient,
            appointment=appointment,
            provider_name=self.context.provider_name(hygienist_id),
            recall=recall,
            metadata=metadata,
        )

    async def planned(self, slots: ExtractedSlots) -> WorkflowResult:
        """Schedule a treatment-plan appointment, keeping its plan link."""
        patient = await self._resolve_patient(slots, allow_create=False)

        planned = await self.gateway.list_planned_appointments(patient.id)
        if not planned:
            return self._result(Outcome.NO_PLANNED, Intent.PLANNED, patient=patient)
        plan = planned[0]

        provider_id = self._provider_id(slots, fallback=plan.provider_id or patient.primary_provider_id)
        operatory_id = plan.operatory_id or self.context.defaults.operatory_id
        length = plan.duration_minutes
        metadata = {"planned_appointment_id": plan.id, "planned_note": plan.note}

        target = resolve_requested_date(slots.date, slots.date_raw, self.today)
        self._check_not_past(target)
        start = self._exact_start(target, slots)
        if start is None:
            return await self._offer(
                Intent.PLANNED, patient, target, slots, provider_id, operatory_id, length, metadata
            )

        self._check_bookable(start, length, provider_id)
        booking = BookingRequest(
            patient_id=patient.id,
            start=start,
            provider_id=provider_id,
            operatory_id=operatory_id,
            duration_minutes=length,
            note=plan.note,
        )
        await self._gate(booking)

        self.trace.advance(TurnState.GATEWAY_MUTATION)
        appointment = await self.gateway.schedule_planned_appointment(plan.id, booking)
        return self._result(
            Outcome.PLANNED_BOOKED,
            Intent.PLANNED,
            patient=patient,
            appointment=appointment,
            provider_name=self.context.provider_name(provider_id),
            metadata=metadata,
        )

    async def asap(self, slots: ExtractedSlots) -> WorkflowResult:
        """Flag/unflag an appointment as ASAP, or list the ASAP appointments."""
        action = slots.asap_action or AsapAction.ADD

        if action == AsapAction.LIST:
            listed = await self.gateway.list_asap_appointments(
                self.today, self.today + timedelta(days=self.settings.lookahead_days)
            )
            return self._result(Outcome.ASAP_LIST, Intent.ASAP, appointments=listed)

        patient = await self._resolve_patient(slots, allow_create=False)
        appointments = await self._patient_appointments(
            patient, frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.ASAP})
        )
        current = self._pick_appointment(appointments, slots)
        if current is None:
            return self._result(Outcome.NO_APPOINTMENT, Intent.ASAP, patient=patient)

        priority = Priority.ASAP if action == AsapAction.ADD else Priority.NORMAL
        self.trace.advance(TurnState.GATEWAY_MUTATION)
        updated = await self.gateway.update_appointment(current.id, AppointmentPatch(priority=priority))
        return self._result(
            Outcome.ASAP_UPDATED,
            Intent.ASAP,
            patient=patient,
            appointment=updated,
            provider_name=self.context.provider_name(current.provider_id),
            metadata={"action": action.value},
        )

"""
Response renderer for the scheduling agent.

Turns workflow results and scheduling errors into the single spoken
reply for a turn. Replies are template-based so that facts such as the
provider's name, date and time always come from the gateway records and
never from free-form generation.
"""

import logging
from datetime import date, datetime
from typing import Optional

from app.core.scheduling.errors import (
    GatewayUnavailable,
    PatientNotFound,
    SlotUnavailable,
    ValidationError,
)
from app.core.scheduling.models import CandidateSlot, PenaltyMarker
from app.core.scheduling.office_context import OfficeContext
from app.core.scheduling.workflows import Outcome, WorkflowResult

logger = logging.getLogger(__name__)


def format_time(value: datetime) -> str:
    """9:00 AM style clock time."""
    return value.strftime("%I:%M %p").lstrip("0")


def format_day(value: date) -> str:
    """Monday, November 10 style date."""
    return f"{value.strftime('%A, %B')} {value.day}"


def format_when(value: datetime) -> str:
    """Monday, November 10 at 9:00 AM."""
    return f"{format_day(value)} at {format_time(value)}"


class ResponseRenderer:
    """Template renderer for workflow outcomes and errors."""

    def __init__(self, office_name: Optional[str] = None):
        """Initialize renderer.

        Args:
            office_name: Practice name used in the greeting
        """
        self.office_name = office_name

    def render(self, result: WorkflowResult, context: Optional[OfficeContext] = None) -> str:
        """Render a workflow result.

        Args:
            result: Workflow result
            context: Office context for provider names in slot lists

        Returns:
            Reply text
        """
        handlers = {
            Outcome.BOOKED: self.booking_confirmed,
            Outcome.RESCHEDULED: self.reschedule_confirmed,
            Outcome.CANCELLED: self.cancel_confirmed,
            Outcome.CONFIRMED: self.appointment_confirmed,
            Outcome.ARRIVAL_RECORDED: self.arrival_recorded,
            Outcome.RECALL_BOOKED: self.recall_booked,
            Outcome.PLANNED_BOOKED: self.planned_booked,
            Outcome.ASAP_UPDATED: self.asap_updated,
            Outcome.ASAP_LIST: self.asap_list,
            Outcome.NO_APPOINTMENT: self.no_appointment,
            Outcome.NO_RECALL: self.no_recall,
            Outcome.NO_PLANNED: self.no_planned,
            Outcome.NO_AVAILABILITY: self.no_availability,
        }
        if result.outcome == Outcome.OPTIONS:
            return self.options(result, context)
        return handlers[result.outcome](result)

    # === Successful mutations ===

    def booking_confirmed(self, result: WorkflowResult) -> str:
        appointment = result.appointment
        first_name = result.patient.first_name if result.patient else ""
        name_part = f", {first_name}" if first_name else ""
        return (
            f"You're all set{name_part}! I've booked your appointment with "
            f"{result.provider_name} on {format_when(appointment.start)}. "
            "Is there anything else I can help you with?"
        )

    def reschedule_confirmed(self, result: WorkflowResult) -> str:
        appointment = result.appointment
        previous = ""
        if result.previous_start:
            previous = f" from {format_when(result.previous_start)}"
        return (
            f"Done! I've moved your appointment{previous} to "
            f"{format_when(appointment.start)} with {result.provider_name}. "
            "Is there anything else I can help you with?"
        )

    def cancel_confirmed(self, result: WorkflowResult) -> str:
        appointment = result.appointment
        text = (
            f"Your appointment with {result.provider_name} on "
            f"{format_when(appointment.start)} has been cancelled."
        )
        if result.penalty == PenaltyMarker.MISSED:
            text += " I've noted it as a missed appointment."
        elif result.penalty == PenaltyMarker.CANCELLED:
            text += " Since it's less than 24 hours away, it's recorded as a late cancellation."
        return text + " Would you like to book a new time?"

    def appointment_confirmed(self, result: WorkflowResult) -> str:
        return (
            f"Thank you! Your appointment with {result.provider_name} on "
            f"{format_when(result.appointment.start)} is confirmed. We'll see you then!"
        )

    def arrival_recorded(self, result: WorkflowResult) -> str:
        event = result.metadata.get("event", "arrived")
        if event == "arrived":
            return f"Thanks for checking in! {result.provider_name} will be with you shortly."
        if event == "seated":
            return "Got it, I've noted that you've been seated."
        return "Thanks for coming in today! You're all checked out."

    def recall_booked(self, result: WorkflowResult) -> str:
        return (
            f"Great! Your cleaning is booked with {result.provider_name} on "
            f"{format_when(result.appointment.start)}. Is there anything else I can help you with?"
        )

    def planned_booked(self, result: WorkflowResult) -> str:
        note = result.metadata.get("planned_note")
        what = f"your {note} appointment" if note else "your planned treatment"
        return (
            f"I've scheduled {what} with {result.provider_name} on "
            f"{format_when(result.appointment.start)}. Is there anything else I can help you with?"
        )

    def asap_updated(self, result: WorkflowResult) -> str:
        when = format_when(result.appointment.start)
        if result.metadata.get("action") == "remove":
            return f"I've taken your {when} appointment off the ASAP list."
        return (
            f"I've added you to our ASAP list. You're currently booked with "
            f"{result.provider_name} on {when}, and we'll call you if an earlier time opens up."
        )

    def asap_list(self, result: WorkflowResult) -> str:
        if not result.appointments:
            return "There's no one on the ASAP list right now."
        count = len(result.appointments)
        return f"There {'is' if count == 1 else 'are'} {count} appointment{'s' if count != 1 else ''} on the ASAP list."

    # === Nothing to act on ===

    def no_appointment(self, result: WorkflowResult) -> str:
        name = result.patient.first_name if result.patient else ""
        prefix = f"{name}, " if name else ""
        return (
            f"{prefix}I couldn't find an upcoming appointment for you. "
            "Would you like to book one?"
        )

    def no_recall(self, result: WorkflowResult) -> str:
        return (
            "I don't see a cleaning due for you right now. "
            "Would you like to book a regular appointment instead?"
        )

    def no_planned(self, result: WorkflowResult) -> str:
        return (
            "I don't see any planned treatment waiting to be scheduled. "
            "Would you like to book a regular appointment instead?"
        )

    def no_availability(self, result: WorkflowResult) -> str:
        return (
            "I'm sorry, I don't see any openings in that range. "
            "Would you like me to check a different week?"
        )

    # === Options ===

    def options(self, result: WorkflowResult, context: Optional[OfficeContext] = None) -> str:
        if result.recall and result.recall.date_due:
            intro = f"Your cleaning is due {format_day(result.recall.date_due)}."
        elif result.metadata.get("extended_from"):
            intro = "That day is fully booked, but I do have"
        else:
            intro = "I have"
        return self.format_slots(result.slots, context, intro)

    def format_slots(
        self,
        slots: list[CandidateSlot],
        context: Optional[OfficeContext] = None,
        intro: str = "I have",
    ) -> str:
        """Speak 2-3 concrete options.

        Args:
            slots: Candidate slots
            context: Office context for provider names
            intro: Leading phrase

        Returns:
            Options text
        """
        if not slots:
            return (
                "I'm sorry, there are no openings around that time. "
                "Would you like to try a different date?"
            )

        options = []
        for slot in slots:
            option = format_when(slot.start)
            if context:
                option += f" with {context.provider_name(slot.provider_id)}"
            options.append(option)

        if len(options) == 1:
            spoken = options[0]
        else:
            spoken = ", ".join(options[:-1]) + f", or {options[-1]}"

        if intro.endswith("."):
            return f"{intro} I have {spoken}. Which works best for you?"
        return f"{intro} {spoken}. Which works best for you?"

    # === Errors ===

    def slot_unavailable(self, error: SlotUnavailable, context: Optional[OfficeContext] = None) -> str:
        lead = "I'm sorry, that time is already taken."
        if error.report.patient_conflict and not error.report.provider_conflict:
            lead = "It looks like you already have an appointment at that time."
        if not error.alternatives:
            return f"{lead} Would you like to try a different day?"
        return f"{lead} {self.format_slots(error.alternatives, context, 'I do have')}"

    def follow_up(self, error: ValidationError) -> str:
        return error.question

    def patient_not_found(self, error: PatientNotFound) -> str:
        return (
            "I couldn't find a patient record with that information. "
            "Could you spell your last name for me, or give me the phone number on file?"
        )

    def gateway_unavailable(self, error: Optional[GatewayUnavailable] = None) -> str:
        return (
            "I'm having trouble looking that up right now. "
            "Could you try again in a moment?"
        )

    def apology(self) -> str:
        return (
            "I'm sorry, I wasn't able to finish that. "
            "Could you tell me again what you'd like to do?"
        )

    # === Conversation ===

    def greeting(self) -> str:
        if self.office_name:
            return f"Hello! Thank you for calling {self.office_name}. How can I help you today?"
        return "Hello! I can help you book, reschedule, or cancel an appointment. How can I help you today?"

    def goodbye(self, patient_name: Optional[str] = None) -> str:
        if patient_name:
            return f"Thank you, {patient_name}! Have a great day. Goodbye!"
        return "Thank you for calling! Have a great day. Goodbye!"

    def clarification(self) -> str:
        return (
            "I can help you book, reschedule, cancel, or confirm an appointment, "
            "or check our availability. What would you like to do?"
        )


# Singleton
_renderer: Optional[ResponseRenderer] = None


def get_response_renderer() -> ResponseRenderer:
    """Get singleton ResponseRenderer."""
    global _renderer
    if _renderer is None:
        _renderer = ResponseRenderer()
    return _renderer

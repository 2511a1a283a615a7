"""Tests for the scheduling workflows."""

import pytest
from datetime import date, datetime, time, timedelta
from itertools import combinations

from app.config import Settings
from app.core.intelligence.intent.types import Intent
from app.core.intelligence.slots.types import ArrivalEvent, AsapAction, ExtractedSlots
from app.core.scheduling.errors import SlotUnavailable, ValidationError, WorkflowExhausted
from app.core.scheduling.models import (
    Appointment,
    AppointmentStatus,
    Operatory,
    Patient,
    PenaltyMarker,
    Priority,
    Recall,
)
from app.core.scheduling.office_context import build_context
from app.core.scheduling.response import ResponseRenderer
from app.core.scheduling.state import TurnState
from app.core.scheduling.workflows import Outcome, StepBudget, WorkflowRunner


def jane(**kwargs) -> ExtractedSlots:
    """Slots identifying the known patient, plus any extras."""
    return ExtractedSlots(patient_first_name="Jane", patient_last_name="Doe", **kwargs)


@pytest.fixture
def runner(gateway, office_context, now, settings):
    return WorkflowRunner(gateway, office_context, now, settings=settings)


class TestBook:
    """Test the booking workflow."""

    @pytest.mark.asyncio
    async def test_books_exact_time(self, runner, gateway):
        result = await runner.book(jane(date=date(2025, 11, 10), time=time(14, 0)))

        assert result.outcome == Outcome.BOOKED
        assert result.appointment.start == datetime(2025, 11, 10, 14, 0)
        assert result.appointment.provider_id == 1
        assert result.provider_name == "Sarah Smith"
        assert len(gateway.calls_to("create_appointment")) == 1

    @pytest.mark.asyncio
    async def test_conflict_check_precedes_write(self, runner, gateway):
        await runner.book(jane(date=date(2025, 11, 10), time=time(14, 0)))

        names = [name for name, _ in gateway.calls]
        check = max(i for i, (name, args) in enumerate(gateway.calls)
                    if name == "list_appointments" and args[:2] == (date(2025, 11, 10), date(2025, 11, 10)))
        assert check < names.index("create_appointment")
        assert runner.trace.to_list()[-2:] == ["conflict_check", "gateway_mutation"]

    @pytest.mark.asyncio
    async def test_conflict_offers_alternatives(self, runner, gateway):
        gateway.add_appointment(patient_id=9, provider_id=1, start=datetime(2025, 11, 10, 14, 0))

        with pytest.raises(SlotUnavailable) as exc_info:
            await runner.book(jane(date=date(2025, 11, 10), time=time(14, 0)))

        error = exc_info.value
        assert error.report.provider_conflict is True
        assert error.alternatives
        assert all(s.start != datetime(2025, 11, 10, 14, 0) for s in error.alternatives)
        assert gateway.calls_to("create_appointment") == []

    @pytest.mark.asyncio
    async def test_offers_options_without_time(self, runner, gateway):
        result = await runner.book(jane(date_raw="Monday"))

        assert result.outcome == Outcome.OPTIONS
        assert result.slots
        assert all(s.start.date() == date(2025, 11, 3) for s in result.slots)
        assert gateway.calls_to("create_appointment") == []

    @pytest.mark.asyncio
    async def test_relative_date_anchored_on_today(self, runner):
        result = await runner.book(jane(date_raw="next week", time=time(10, 0)))

        assert result.appointment.start == datetime(2025, 11, 8, 10, 0)

    @pytest.mark.asyncio
    async def test_named_provider(self, runner):
        result = await runner.book(
            jane(provider_name="Dr. Lee", date=date(2025, 11, 10), time=time(9, 0))
        )

        assert result.appointment.provider_id == 2
        assert result.provider_name == "Hannah Lee"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, runner):
        with pytest.raises(ValidationError) as exc_info:
            await runner.book(jane(provider_name="Jones", date=date(2025, 11, 10), time=time(9, 0)))

        assert exc_info.value.field == "provider_name"
        assert "Sarah Smith" in exc_info.value.question

    @pytest.mark.asyncio
    async def test_closed_day(self, runner, gateway):
        with pytest.raises(ValidationError) as exc_info:
            await runner.book(jane(date=date(2025, 11, 9), time=time(10, 0)))

        assert "closed" in exc_info.value.question
        assert gateway.calls_to("create_appointment") == []

    @pytest.mark.asyncio
    async def test_outside_hours(self, runner):
        with pytest.raises(ValidationError) as exc_info:
            await runner.book(jane(date=date(2025, 11, 10), time=time(18, 0)))

        assert exc_info.value.field == "time"

    @pytest.mark.asyncio
    async def test_past_date(self, runner):
        with pytest.raises(ValidationError):
            await runner.book(jane(date=date(2025, 10, 30), time=time(10, 0)))

    @pytest.mark.asyncio
    async def test_new_patient_needs_birthdate(self, runner):
        with pytest.raises(ValidationError) as exc_info:
            await runner.book(
                ExtractedSlots(
                    patient_first_name="Sam",
                    patient_last_name="New",
                    patient_phone="5551112222",
                )
            )

        assert exc_info.value.field == "birthdate"

    @pytest.mark.asyncio
    async def test_new_patient_created(self, runner, gateway):
        result = await runner.book(
            ExtractedSlots(
                patient_first_name="Sam",
                patient_last_name="New",
                patient_phone="5551112222",
                patient_birthdate=date(1985, 2, 3),
                date=date(2025, 11, 10),
                time=time(11, 0),
            )
        )

        assert result.outcome == Outcome.BOOKED
        assert result.patient.display_name == "Sam New"


class TestNoOverlap:
    """Gated bookings never overlap on a shared provider, room or patient."""

    @pytest.mark.asyncio
    async def test_successful_bookings_never_overlap(self, gateway, office_context, now, settings):
        gateway.patients.append(Patient(id=8, first_name="Bob", last_name="Roe", phone="5550001111"))
        requests = [
            ("Doe", time(10, 0)),
            ("Roe", time(10, 15)),
            ("Roe", time(10, 30)),
            ("Doe", time(10, 0)),
            ("Doe", time(10, 45)),
            ("Roe", time(11, 0)),
        ]

        for last_name, start in requests:
            runner = WorkflowRunner(gateway, office_context, now, settings=settings)
            try:
                await runner.book(
                    ExtractedSlots(patient_last_name=last_name, date=date(2025, 11, 10), time=start)
                )
            except SlotUnavailable:
                pass

        booked = list(gateway.appointments.values())
        assert len(booked) == 3
        for first, second in combinations(booked, 2):
            shares = (
                first.provider_id == second.provider_id
                or first.operatory_id == second.operatory_id
                or first.patient_id == second.patient_id
            )
            if shares:
                assert first.end <= second.start or second.end <= first.start


class TestReschedule:
    """Test the reschedule workflow."""

    @pytest.fixture
    def appointment(self, gateway) -> Appointment:
        return gateway.add_appointment(
            id=53,
            patient_id=7,
            provider_id=1,
            operatory_id=1,
            start=datetime(2025, 11, 3, 10, 0),
        )

    @pytest.mark.asyncio
    async def test_next_week_is_relative_to_appointment(self, runner, gateway, appointment):
        """"next week same time" from a 2025-11-03 10:00 appointment is 2025-11-10 10:00."""
        result = await runner.reschedule(
            jane(date=date(2025, 11, 8), date_raw="next week", time_raw="same time")
        )

        assert result.outcome == Outcome.RESCHEDULED
        assert result.appointment.start == datetime(2025, 11, 10, 10, 0)
        assert result.previous_start == datetime(2025, 11, 3, 10, 0)
        assert [appointment_id for appointment_id, _ in gateway.patches] == [53]
        assert gateway.patches[0][1].start == datetime(2025, 11, 10, 10, 0)
        assert (date(2025, 11, 10), date(2025, 11, 10), None) in gateway.calls_to("list_appointments")

    @pytest.mark.asyncio
    async def test_tomorrow_is_relative_to_today(self, runner, gateway):
        """"The day after tomorrow" on 2025-11-01 is 2025-11-03, whatever the appointment date."""
        gateway.add_appointment(id=54, patient_id=7, start=datetime(2025, 11, 6, 10, 0))

        result = await runner.reschedule(
            jane(date=date(2025, 11, 8), date_raw="the day after tomorrow", time=time(10, 0))
        )

        assert result.outcome == Outcome.RESCHEDULED
        assert result.appointment.start == datetime(2025, 11, 3, 10, 0)
        assert gateway.patches[0][1].start == datetime(2025, 11, 3, 10, 0)

    @pytest.mark.asyncio
    async def test_own_interval_excluded(self, runner, gateway, appointment):
        """Moving 15 minutes later overlaps only the appointment itself."""
        result = await runner.reschedule(jane(time=time(10, 15)))

        assert result.outcome == Outcome.RESCHEDULED
        assert result.appointment.start == datetime(2025, 11, 3, 10, 15)

    @pytest.mark.asyncio
    async def test_conflict_blocks_update(self, runner, gateway, appointment):
        gateway.add_appointment(patient_id=9, provider_id=1, start=datetime(2025, 11, 10, 10, 0))

        with pytest.raises(SlotUnavailable) as exc_info:
            await runner.reschedule(jane(date_raw="next week"))

        assert gateway.patches == []
        assert all(s.start.date() >= date(2025, 11, 10) for s in exc_info.value.alternatives)
        assert "slot_resolution" in runner.trace.to_list()

    @pytest.mark.asyncio
    async def test_broken_appointment_reinstated_in_same_update(self, runner, gateway):
        gateway.add_appointment(
            id=60,
            patient_id=7,
            start=datetime(2025, 11, 3, 10, 0),
            status=AppointmentStatus.BROKEN,
        )

        result = await runner.reschedule(jane(date_raw="next week"))

        assert result.appointment.start == datetime(2025, 11, 10, 10, 0)
        assert len(gateway.patches) == 1
        appointment_id, patch = gateway.patches[0]
        assert appointment_id == 60
        assert patch.status == AppointmentStatus.SCHEDULED
        assert patch.start == datetime(2025, 11, 10, 10, 0)
        assert result.appointment.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_asks_for_date(self, runner, appointment):
        with pytest.raises(ValidationError) as exc_info:
            await runner.reschedule(jane())

        assert exc_info.value.question == "What date would you like to move it to?"

    @pytest.mark.asyncio
    async def test_same_slot(self, runner, appointment):
        with pytest.raises(ValidationError):
            await runner.reschedule(jane(date=date(2025, 11, 3), time=time(10, 0)))

    @pytest.mark.asyncio
    async def test_no_appointment(self, runner):
        result = await runner.reschedule(jane(date_raw="next week"))

        assert result.outcome == Outcome.NO_APPOINTMENT


class TestCancel:
    """Test the cancel workflow and its penalty markers."""

    @pytest.mark.asyncio
    async def test_two_hours_notice_is_late_cancel(self, runner, gateway, now):
        appointment = gateway.add_appointment(patient_id=7, start=now + timedelta(hours=2))

        result = await runner.cancel(jane(return_to_unscheduled=False))

        assert result.outcome == Outcome.CANCELLED
        assert result.penalty == PenaltyMarker.CANCELLED
        assert gateway.breaks == [(appointment.id, PenaltyMarker.CANCELLED, False)]

    @pytest.mark.asyncio
    async def test_past_appointment_is_missed(self, runner, gateway):
        appointment = gateway.add_appointment(patient_id=7, start=datetime(2025, 10, 31, 10, 0))

        result = await runner.cancel(jane(return_to_unscheduled=True))

        assert result.penalty == PenaltyMarker.MISSED
        assert gateway.breaks == [(appointment.id, PenaltyMarker.MISSED, True)]

    @pytest.mark.asyncio
    async def test_plenty_of_notice(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))

        result = await runner.cancel(jane(return_to_unscheduled=False))

        assert result.penalty is None
        assert gateway.breaks[0][1] is None

    @pytest.mark.asyncio
    async def test_exactly_threshold_has_no_penalty(self, runner, gateway, now):
        gateway.add_appointment(patient_id=7, start=now + timedelta(hours=24))

        result = await runner.cancel(jane(return_to_unscheduled=False))

        assert result.penalty is None

    @pytest.mark.asyncio
    async def test_asks_about_unscheduled_list(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))

        with pytest.raises(ValidationError) as exc_info:
            await runner.cancel(jane())

        assert exc_info.value.field == "return_to_unscheduled"
        assert gateway.breaks == []

    @pytest.mark.asyncio
    async def test_lists_asap_candidates(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))
        waiting = gateway.add_appointment(
            patient_id=9, provider_id=2, operatory_id=2,
            start=datetime(2025, 11, 3, 15, 0), priority=Priority.ASAP,
        )

        result = await runner.cancel(jane(return_to_unscheduled=False))

        assert result.metadata["asap_candidates"] == [waiting.id]

    @pytest.mark.asyncio
    async def test_asap_lookup_failure_keeps_cancellation(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))
        gateway.failing = {"list_asap_appointments"}

        result = await runner.cancel(jane(return_to_unscheduled=False))

        assert result.outcome == Outcome.CANCELLED
        assert result.metadata["asap_candidates"] == []

    @pytest.mark.asyncio
    async def test_picks_appointment_by_date(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))
        later = gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 12, 10, 0))

        result = await runner.cancel(
            jane(current_appointment_date=date(2025, 11, 12), return_to_unscheduled=False)
        )

        assert result.appointment.id == later.id


class TestConfirm:
    """Test confirmation and arrival events."""

    @pytest.mark.asyncio
    async def test_confirm(self, runner, gateway):
        appointment = gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))

        result = await runner.confirm(jane())

        assert result.outcome == Outcome.CONFIRMED
        assert gateway.confirmations == [appointment.id]

    @pytest.mark.asyncio
    async def test_arrival_recorded(self, runner, gateway, now):
        appointment = gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 1, 10, 0))

        result = await runner.confirm(jane(arrival_event=ArrivalEvent.ARRIVED))

        assert result.outcome == Outcome.ARRIVAL_RECORDED
        appointment_id, patch = gateway.patches[0]
        assert appointment_id == appointment.id
        assert patch.arrived_at == now
        assert gateway.confirmations == []

    @pytest.mark.asyncio
    async def test_arrival_without_appointment_today(self, runner, gateway):
        gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 3, 10, 0))

        result = await runner.confirm(jane(arrival_event=ArrivalEvent.SEATED))

        assert result.outcome == Outcome.NO_APPOINTMENT


class TestCheckAvailability:
    """Test availability checks."""

    @pytest.mark.asyncio
    async def test_no_patient_needed(self, runner, gateway):
        result = await runner.check_availability(ExtractedSlots(date=date(2025, 11, 10)))

        assert result.outcome == Outcome.OPTIONS
        assert result.patient is None
        assert gateway.calls_to("find_or_create_patient") == []
        assert runner.trace.to_list() == ["idle", "intent_classified", "slot_resolution"]

    @pytest.mark.asyncio
    async def test_full_day_extends_search(self, runner, gateway):
        gateway.add_appointment(patient_id=9, start=datetime(2025, 11, 10, 8, 0), duration_minutes=540)

        result = await runner.check_availability(ExtractedSlots(date=date(2025, 11, 10)))

        assert result.outcome == Outcome.OPTIONS
        assert result.metadata["extended_from"] == "2025-11-10"
        assert all(s.start.date() in (date(2025, 11, 11), date(2025, 11, 12)) for s in result.slots)


class TestRoomsAndSchedules:
    """Offers and exact bookings respect rooms and provider schedules."""

    @pytest.mark.asyncio
    async def test_offered_slot_for_other_provider_is_bookable(
        self, gateway, office_context, now, settings
    ):
        """Sarah holds the only treatment room all Monday, so Hannah is offered Tuesday."""
        gateway.add_appointment(
            patient_id=9, provider_id=1, operatory_id=1,
            start=datetime(2025, 11, 10, 8, 0), duration_minutes=540,
        )
        offers = await WorkflowRunner(gateway, office_context, now, settings=settings).check_availability(
            ExtractedSlots(provider_name="Hannah Lee", date=date(2025, 11, 10))
        )

        assert offers.outcome == Outcome.OPTIONS
        assert all(s.start.date() != date(2025, 11, 10) for s in offers.slots)
        first = offers.slots[0]
        result = await WorkflowRunner(gateway, office_context, now, settings=settings).book(
            jane(provider_name="Hannah Lee", date=first.start.date(), time=first.start.time())
        )

        assert result.outcome == Outcome.BOOKED
        assert result.appointment.start == first.start
        assert result.appointment.provider_id == 2

    @pytest.mark.asyncio
    async def test_taken_room_moves_to_free_room(self, gateway, now, settings):
        gateway.operatories.append(Operatory(id=3, display_name="Op 3"))
        gateway.add_appointment(
            patient_id=9, provider_id=2, operatory_id=1, start=datetime(2025, 11, 10, 14, 0)
        )
        context = await build_context(gateway, now, settings)

        result = await WorkflowRunner(gateway, context, now, settings=settings).book(
            jane(date=date(2025, 11, 10), time=time(14, 0))
        )

        assert result.outcome == Outcome.BOOKED
        assert result.appointment.provider_id == 1
        assert result.appointment.operatory_id == 3

    @pytest.mark.asyncio
    async def test_only_room_taken_is_unavailable(self, runner, gateway):
        gateway.add_appointment(
            patient_id=9, provider_id=2, operatory_id=1, start=datetime(2025, 11, 10, 14, 0)
        )

        with pytest.raises(SlotUnavailable) as exc_info:
            await runner.book(jane(date=date(2025, 11, 10), time=time(14, 0)))

        assert exc_info.value.report.dimensions() == ["operatory"]
        assert gateway.calls_to("create_appointment") == []

    @pytest.mark.asyncio
    async def test_provider_not_in_that_day(self, gateway, now, settings):
        gateway.add_schedule(2, date(2025, 11, 11), "08:00", "17:00")
        context = await build_context(gateway, now, settings)

        with pytest.raises(ValidationError) as exc_info:
            await WorkflowRunner(gateway, context, now, settings=settings).book(
                jane(provider_name="Hannah Lee", date=date(2025, 11, 10), time=time(9, 0))
            )

        assert exc_info.value.field == "date"
        assert "Hannah Lee isn't in on Monday, November 10" in exc_info.value.question
        assert gateway.calls_to("create_appointment") == []

    @pytest.mark.asyncio
    async def test_time_outside_provider_block(self, gateway, now, settings):
        gateway.add_schedule(2, date(2025, 11, 11), "13:00", "15:00")
        context = await build_context(gateway, now, settings)

        with pytest.raises(ValidationError) as exc_info:
            await WorkflowRunner(gateway, context, now, settings=settings).book(
                jane(provider_name="Hannah Lee", date=date(2025, 11, 11), time=time(9, 0))
            )

        assert exc_info.value.field == "time"
        assert "1:00 PM to 3:00 PM" in exc_info.value.question

    @pytest.mark.asyncio
    async def test_time_inside_provider_block(self, gateway, now, settings):
        gateway.add_schedule(2, date(2025, 11, 11), "13:00", "15:00")
        context = await build_context(gateway, now, settings)

        result = await WorkflowRunner(gateway, context, now, settings=settings).book(
            jane(provider_name="Hannah Lee", date=date(2025, 11, 11), time=time(13, 30))
        )

        assert result.outcome == Outcome.BOOKED
        assert result.appointment.start == datetime(2025, 11, 11, 13, 30)

    @pytest.mark.asyncio
    async def test_availability_follows_schedule(self, gateway, now, settings):
        gateway.add_schedule(2, date(2025, 11, 4), "08:00", "10:00")
        gateway.add_schedule(2, date(2025, 11, 6), "14:00", "16:00")
        context = await build_context(gateway, now, settings)

        result = await WorkflowRunner(gateway, context, now, settings=settings).check_availability(
            ExtractedSlots(provider_name="Hannah Lee", date=date(2025, 11, 3), date_end=date(2025, 11, 7))
        )

        assert result.outcome == Outcome.OPTIONS
        assert {s.start.date() for s in result.slots} <= {date(2025, 11, 4), date(2025, 11, 6)}
        assert all(s.provider_id == 2 for s in result.slots)


class TestRecall:
    """Test recall booking."""

    @pytest.fixture(autouse=True)
    def recall_due(self, gateway):
        gateway.recalls = [Recall(id=3, patient_id=7, date_due=date(2025, 11, 10), recall_type="Prophy")]

    @pytest.mark.asyncio
    async def test_offers_from_due_date(self, runner):
        result = await runner.recall(jane())

        assert result.outcome == Outcome.OPTIONS
        assert result.recall.id == 3
        assert all(s.start.date() >= date(2025, 11, 10) for s in result.slots)
        assert all(s.provider_id == 2 and s.operatory_id == 2 for s in result.slots)
        assert all(s.duration_minutes == 60 for s in result.slots)

    @pytest.mark.asyncio
    async def test_books_with_hygienist(self, runner, gateway):
        result = await runner.recall(jane(date=date(2025, 11, 10), time=time(9, 0)))

        assert result.outcome == Outcome.RECALL_BOOKED
        assert result.provider_name == "Hannah Lee"
        request = gateway.calls_to("create_appointment")[0][0]
        assert request.is_hygiene is True
        assert request.operatory_id == 2
        assert request.duration_minutes == 60

    @pytest.mark.asyncio
    async def test_no_recall(self, runner, gateway):
        gateway.recalls = []

        result = await runner.recall(jane())

        assert result.outcome == Outcome.NO_RECALL


class TestPlanned:
    """Test planned-treatment scheduling."""

    @pytest.mark.asyncio
    async def test_schedules_planned(self, runner, gateway):
        gateway.planned[55] = Appointment(
            id=55,
            patient_id=7,
            provider_id=1,
            operatory_id=1,
            start=datetime(1, 1, 1),
            duration_minutes=60,
            status=AppointmentStatus.PLANNED,
            note="Crown",
        )

        result = await runner.planned(jane(date=date(2025, 11, 10), time=time(13, 0)))

        assert result.outcome == Outcome.PLANNED_BOOKED
        assert gateway.calls_to("schedule_planned_appointment")[0][0] == 55
        assert result.appointment.start == datetime(2025, 11, 10, 13, 0)
        assert result.metadata["planned_note"] == "Crown"

    @pytest.mark.asyncio
    async def test_nothing_planned(self, runner):
        result = await runner.planned(jane())

        assert result.outcome == Outcome.NO_PLANNED


class TestAsap:
    """Test the ASAP list."""

    @pytest.mark.asyncio
    async def test_add(self, runner, gateway):
        appointment = gateway.add_appointment(patient_id=7, start=datetime(2025, 11, 12, 10, 0))

        result = await runner.asap(jane(asap_action=AsapAction.ADD))

        assert result.outcome == Outcome.ASAP_UPDATED
        assert gateway.appointments[appointment.id].priority == Priority.ASAP

    @pytest.mark.asyncio
    async def test_list(self, runner, gateway):
        gateway.add_appointment(patient_id=9, start=datetime(2025, 11, 3, 9, 0), priority=Priority.ASAP)

        result = await runner.asap(ExtractedSlots(asap_action=AsapAction.LIST))

        assert result.outcome == Outcome.ASAP_LIST
        assert len(result.appointments) == 1


class TestStepBudget:
    """Test the per-turn gateway step budget."""

    @pytest.mark.asyncio
    async def test_counts_gateway_calls(self, gateway):
        budget = StepBudget(gateway, limit=5)

        await budget.list_providers()
        await budget.list_operatories()

        assert budget.used == 2

    @pytest.mark.asyncio
    async def test_exhaustion(self, gateway):
        budget = StepBudget(gateway, limit=1, workflow="book")
        await budget.list_providers()

        with pytest.raises(WorkflowExhausted) as exc_info:
            await budget.list_providers()

        assert exc_info.value.budget == 1
        assert len(gateway.calls_to("list_providers")) == 1

    @pytest.mark.asyncio
    async def test_workflow_stops_before_write(self, gateway, office_context, now):
        runner = WorkflowRunner(gateway, office_context, now, settings=Settings(max_workflow_steps=2))

        with pytest.raises(WorkflowExhausted):
            await runner.run(Intent.BOOK, jane(date=date(2025, 11, 10), time=time(14, 0)))

        assert gateway.calls_to("create_appointment") == []


class TestConfirmationText:
    """Rendered confirmations always name the provider."""

    @pytest.mark.asyncio
    async def test_provider_in_every_confirmation(self, gateway, office_context, now, settings):
        renderer = ResponseRenderer()
        gateway.recalls = [Recall(id=3, patient_id=7, date_due=date(2025, 11, 10))]
        gateway.add_appointment(id=53, patient_id=7, start=datetime(2025, 11, 3, 10, 0))

        turns = [
            (Intent.BOOK, jane(date=date(2025, 11, 11), time=time(9, 0))),
            (Intent.RESCHEDULE, jane(current_appointment_date=date(2025, 11, 3), date_raw="next week")),
            (Intent.RECALL, jane(date=date(2025, 11, 12), time=time(9, 0))),
        ]
        for intent, slots in turns:
            runner = WorkflowRunner(gateway, office_context, now, settings=settings)
            result = await runner.run(intent, slots)
            text = renderer.render(result, office_context)
            assert result.provider_name in text
            assert result.mutated


class TestRun:
    """Test dispatch."""

    @pytest.mark.asyncio
    async def test_non_workflow_intent(self, runner):
        with pytest.raises(ValueError):
            await runner.run(Intent.GREETING, ExtractedSlots())

    def test_default_trace_starts_classified(self, runner):
        assert runner.trace.state == TurnState.INTENT_CLASSIFIED

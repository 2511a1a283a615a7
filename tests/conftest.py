"""Shared fixtures: an in-memory practice API and a fixed office clock."""

from dataclasses import replace
from datetime import date, datetime, time
from typing import Optional

import pytest
import pytest_asyncio

from app.config import Settings
from app.core.scheduling.dates import as_calendar_date
from app.core.scheduling.errors import GatewayUnavailable, PatientNotFound, ValidationError
from app.core.scheduling.models import (
    Appointment,
    AppointmentPatch,
    AppointmentStatus,
    BookingRequest,
    OfficeHours,
    Operatory,
    Patient,
    PenaltyMarker,
    Priority,
    Provider,
    ProviderSchedule,
    Recall,
)
from app.core.scheduling.office_context import build_context

# Saturday morning; the office is open 09:00-13:00 on Saturdays
NOW = datetime(2025, 11, 1, 9, 0)


class InMemoryGateway:
    """
    Fake OpenDental gateway with the same async surface as OpenDentalGateway.

    Every call is recorded in ``calls`` as (operation, args). Operations
    listed in ``failing`` raise GatewayUnavailable.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.providers: list[Provider] = []
        self.operatories: list[Operatory] = []
        self.patients: list[Patient] = []
        self.appointments: dict[int, Appointment] = {}
        self.planned: dict[int, Appointment] = {}
        self.recalls: list[Recall] = []
        self.schedules: list[ProviderSchedule] = []
        self.calls: list[tuple[str, tuple]] = []
        self.breaks: list[tuple[int, Optional[PenaltyMarker], bool]] = []
        self.patches: list[tuple[int, AppointmentPatch]] = []
        self.confirmations: list[int] = []
        self.failing: set[str] = set()
        self._next_id = 100

    # === Test helpers ===

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        if operation in self.failing:
            raise GatewayUnavailable(operation, "simulated outage", status_code=503)

    def calls_to(self, operation: str) -> list[tuple]:
        return [args for name, args in self.calls if name == operation]

    def add_appointment(self, **kwargs) -> Appointment:
        kwargs.setdefault("id", self._allocate())
        kwargs.setdefault("provider_id", 1)
        kwargs.setdefault("operatory_id", 1)
        kwargs.setdefault("duration_minutes", 30)
        appointment = Appointment(**kwargs)
        self.appointments[appointment.id] = appointment
        return appointment

    def add_schedule(
        self, provider_id: int, day: date, start: str, stop: str, operatory_ids=()
    ) -> ProviderSchedule:
        schedule = ProviderSchedule(
            id=self._allocate(),
            provider_id=provider_id,
            day=day,
            start_time=time.fromisoformat(start),
            stop_time=time.fromisoformat(stop),
            operatory_ids=tuple(operatory_ids),
        )
        self.schedules.append(schedule)
        return schedule

    def _allocate(self) -> int:
        self._next_id += 1
        return self._next_id

    # === Appointments ===

    async def list_appointments(self, date_start, date_end, patient_id=None) -> list[Appointment]:
        start = as_calendar_date(date_start)
        end = as_calendar_date(date_end)
        self._record("list_appointments", start, end, patient_id)
        return [
            a for a in sorted(self.appointments.values(), key=lambda a: a.start)
            if start <= a.start.date() <= end
            and (patient_id is None or a.patient_id == patient_id)
        ]

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        self._record("create_appointment", request)
        return self.add_appointment(
            patient_id=request.patient_id,
            provider_id=request.provider_id,
            operatory_id=request.operatory_id,
            start=request.start,
            duration_minutes=request.duration_minutes,
            note=request.note,
            is_hygiene=request.is_hygiene,
        )

    async def update_appointment(self, appointment_id: int, patch: AppointmentPatch) -> Appointment:
        self._record("update_appointment", appointment_id, patch)
        if patch.is_empty():
            raise ValidationError(field="appointment_change", question="What would you like to change?")
        self.patches.append((appointment_id, patch))
        current = self.appointments[appointment_id]
        changes = {}
        if patch.start is not None:
            changes["start"] = patch.start
        if patch.provider_id is not None:
            changes["provider_id"] = patch.provider_id
        if patch.operatory_id is not None:
            changes["operatory_id"] = patch.operatory_id
        if patch.status is not None:
            changes["status"] = patch.status
        if patch.priority is not None:
            changes["priority"] = patch.priority
        updated = replace(current, **changes)
        self.appointments[appointment_id] = updated
        return updated

    async def break_appointment(self, appointment_id, penalty, return_to_unscheduled_list) -> None:
        self._record("break_appointment", appointment_id, penalty, return_to_unscheduled_list)
        self.breaks.append((appointment_id, penalty, return_to_unscheduled_list))
        status = (
            AppointmentStatus.UNSCHED_LIST if return_to_unscheduled_list
            else AppointmentStatus.BROKEN
        )
        self.appointments[appointment_id] = replace(self.appointments[appointment_id], status=status)

    async def confirm_appointment(self, appointment_id, confirm_val="Appointment Confirmed") -> None:
        self._record("confirm_appointment", appointment_id, confirm_val)
        self.confirmations.append(appointment_id)

    async def list_planned_appointments(self, patient_id) -> list[Appointment]:
        self._record("list_planned_appointments", patient_id)
        return [a for a in self.planned.values() if a.patient_id == patient_id]

    async def schedule_planned_appointment(self, planned_appointment_id, request) -> Appointment:
        self._record("schedule_planned_appointment", planned_appointment_id, request)
        plan = self.planned.pop(planned_appointment_id)
        scheduled = replace(
            plan,
            start=request.start,
            provider_id=request.provider_id,
            operatory_id=request.operatory_id,
            status=AppointmentStatus.SCHEDULED,
        )
        self.appointments[scheduled.id] = scheduled
        return scheduled

    async def list_asap_appointments(self, date_start, date_end) -> list[Appointment]:
        start = as_calendar_date(date_start)
        end = as_calendar_date(date_end)
        self._record("list_asap_appointments", start, end)
        return [
            a for a in self.appointments.values()
            if a.priority == Priority.ASAP and start <= a.start.date() <= end
        ]

    # === Catalogs ===

    async def list_providers(self) -> list[Provider]:
        self._record("list_providers")
        return list(self.providers)

    async def list_operatories(self) -> list[Operatory]:
        self._record("list_operatories")
        return list(self.operatories)

    async def get_office_hours(self) -> OfficeHours:
        self._record("get_office_hours")
        return OfficeHours(days=dict(self.settings.office_hours))

    async def list_schedules(self, date_start, date_end, provider_id=None) -> list[ProviderSchedule]:
        start = as_calendar_date(date_start)
        end = as_calendar_date(date_end)
        self._record("list_schedules", start, end, provider_id)
        return [
            s for s in self.schedules
            if start <= s.day <= end and (provider_id is None or s.provider_id == provider_id)
        ]

    # === Patients ===

    async def find_patients(self, last_name=None, first_name=None, phone=None) -> list[Patient]:
        self._record("find_patients", last_name, first_name, phone)
        matches = []
        for patient in self.patients:
            if last_name and patient.last_name.lower() != last_name.lower():
                continue
            if first_name and not patient.first_name.lower().startswith(first_name.lower()):
                continue
            if phone and patient.phone != phone:
                continue
            matches.append(patient)
        return matches

    async def create_patient(self, first_name, last_name, birthdate, phone) -> Patient:
        self._record("create_patient", first_name, last_name, birthdate, phone)
        patient = Patient(
            id=self._allocate(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            birthdate=birthdate,
        )
        self.patients.append(patient)
        return patient

    async def find_or_create_patient(
        self,
        first_name=None,
        last_name=None,
        phone=None,
        birthdate=None,
        allow_create=True,
    ) -> Patient:
        self._record("find_or_create_patient", first_name, last_name, phone)
        if not (first_name or last_name or phone):
            raise ValidationError(field="patient_name", question="May I have your name?")
        for patient in self.patients:
            if last_name and patient.last_name.lower() == last_name.lower():
                return patient
            if phone and patient.phone == phone:
                return patient
        if not allow_create:
            raise PatientNotFound(" ".join(filter(None, [first_name, last_name])))
        for field_name, value in (
            ("first_name", first_name),
            ("last_name", last_name),
            ("birthdate", birthdate),
            ("phone", phone),
        ):
            if not value:
                raise ValidationError(field=field_name, question=f"What is your {field_name}?")
        patient = Patient(
            id=self._allocate(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            birthdate=birthdate,
        )
        self.patients.append(patient)
        return patient

    # === Recalls ===

    async def get_recalls(self, patient_id) -> list[Recall]:
        self._record("get_recalls", patient_id)
        return [r for r in self.recalls if r.patient_id == patient_id]


@pytest.fixture
def now() -> datetime:
    """Fixed office-local time for the test run."""
    return NOW


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment."""
    return Settings(
        opendental_api_key="test-key",
        anthropic_api_key="",
        office_timezone=None,
    )


@pytest.fixture
def gateway(settings) -> InMemoryGateway:
    """Office with a dentist, a hygienist, two rooms and one known patient."""
    fake = InMemoryGateway(settings)
    fake.providers = [
        Provider(id=1, display_name="Sarah Smith"),
        Provider(id=2, display_name="Hannah Lee", specialty_tags=("Hygiene",), is_hygienist=True),
    ]
    fake.operatories = [
        Operatory(id=1, display_name="Op 1"),
        Operatory(id=2, display_name="Hyg 1", is_hygiene_room=True),
    ]
    fake.patients = [
        Patient(
            id=7,
            first_name="Jane",
            last_name="Doe",
            phone="5551234567",
            birthdate=date(1990, 4, 12),
            primary_provider_id=1,
        ),
    ]
    return fake


@pytest_asyncio.fixture
async def office_context(gateway, now, settings):
    """Office context built from the fake gateway."""
    context = await build_context(gateway, now, settings)
    gateway.calls.clear()
    return context

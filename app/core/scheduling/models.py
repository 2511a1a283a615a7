"""
Scheduling data model.

Dataclasses for the records exchanged with the practice-management API
(providers, operatories, patients, appointments) and the ephemeral
values the core computes (occupied intervals, candidate slots, booking
requests). ``from_api`` constructors accept OpenDental's PascalCase
payloads.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

from app.core.scheduling.dates import (
    format_datetime,
    parse_clock,
    parse_datetime,
    weekday_name,
)

PATTERN_BLOCK_MINUTES = 5


class AppointmentStatus(str, Enum):
    """OpenDental AptStatus values."""

    SCHEDULED = "Scheduled"
    COMPLETE = "Complete"
    UNSCHED_LIST = "UnschedList"
    ASAP = "ASAP"
    BROKEN = "Broken"
    PLANNED = "Planned"
    PT_NOTE = "PtNote"
    PT_NOTE_COMPLETED = "PtNoteCompleted"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AppointmentStatus":
        """Parse a status string, defaulting to Scheduled."""
        if not value:
            return cls.SCHEDULED
        for status in cls:
            if status.value.lower() == str(value).lower():
                return status
        return cls.SCHEDULED


# Statuses that hold a place on the schedule for conflict purposes.
# Broken, Complete and UnschedList entries never block a booking.
OCCUPYING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.ASAP,
    AppointmentStatus.PLANNED,
})


class PenaltyMarker(str, Enum):
    """Break type recorded when an appointment is broken."""

    CANCELLED = "Cancelled"
    MISSED = "Missed"


class Priority(str, Enum):
    """Appointment priority flag."""

    NORMAL = "Normal"
    ASAP = "ASAP"


def duration_from_pattern(pattern: Optional[str], default: int) -> int:
    """Appointment length from an OpenDental time pattern.

    Each character ("X" provider time, "/" assistant time) is one
    5-minute block.
    """
    if not pattern:
        return default
    return len(pattern) * PATTERN_BLOCK_MINUTES


def pattern_for_duration(minutes: int) -> str:
    """Build a time pattern for a duration, e.g. 30 -> "/XXXX/"."""
    blocks = max(1, minutes // PATTERN_BLOCK_MINUTES)
    if blocks < 3:
        return "X" * blocks
    return "/" + "X" * (blocks - 2) + "/"


def _truthy(value) -> bool:
    """OpenDental booleans arrive as "true", 1, True, or "1"."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _opt_int(value) -> Optional[int]:
    """Convert an id field, treating 0/empty as missing."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number or None


@dataclass(frozen=True)
class Provider:
    """Dentist or hygienist."""

    id: int
    display_name: str
    specialty_tags: tuple[str, ...] = ()
    is_hygienist: bool = False
    is_active: bool = True

    @classmethod
    def from_api(cls, data: dict) -> "Provider":
        """Create from an OpenDental provider record."""
        specialty = data.get("Specialty") or data.get("specialty") or "General"
        return cls(
            id=int(data.get("ProvNum", 0)),
            display_name=format_provider_name(data),
            specialty_tags=(str(specialty),),
            is_hygienist=_truthy(data.get("IsSecondary")) or "hyg" in str(specialty).lower(),
            is_active=not _truthy(data.get("IsHidden")),
        )


def format_provider_name(data: dict) -> str:
    """Display name: "First Last", else last name, else abbreviation."""
    first = (data.get("FName") or "").strip()
    last = (data.get("LName") or "").strip()
    if first and last:
        return f"{first} {last}"
    if last:
        return last
    if data.get("Abbr"):
        return str(data["Abbr"])
    return f"Provider {data.get('ProvNum', '?')}"


@dataclass(frozen=True)
class Operatory:
    """Treatment room."""

    id: int
    display_name: str
    is_hygiene_room: bool = False
    is_active: bool = True

    @classmethod
    def from_api(cls, data: dict) -> "Operatory":
        """Create from an OpenDental operatory record."""
        op_num = int(data.get("OperatoryNum", 0))
        return cls(
            id=op_num,
            display_name=data.get("OpName") or f"Op {op_num}",
            is_hygiene_room=_truthy(data.get("IsHygiene")),
            is_active=not _truthy(data.get("IsHidden")),
        )


@dataclass(frozen=True)
class Patient:
    """Patient record (the subset the scheduling core uses)."""

    id: int
    first_name: str
    last_name: str
    phone: Optional[str] = None
    birthdate: Optional[date] = None
    primary_provider_id: Optional[int] = None
    hygienist_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        """First and last name."""
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api(cls, data: dict) -> "Patient":
        """Create from an OpenDental patient record."""
        birthdate = None
        raw_birthdate = data.get("Birthdate")
        if raw_birthdate and not str(raw_birthdate).startswith("0001"):
            try:
                birthdate = date.fromisoformat(str(raw_birthdate)[:10])
            except ValueError:
                birthdate = None
        phone = data.get("WirelessPhone") or data.get("HmPhone") or data.get("WkPhone")
        return cls(
            id=int(data.get("PatNum", 0)),
            first_name=data.get("FName", "") or "",
            last_name=data.get("LName", "") or "",
            phone=phone or None,
            birthdate=birthdate,
            primary_provider_id=_opt_int(data.get("PriProv")),
            hygienist_id=_opt_int(data.get("SecProv")),
        )


@dataclass(frozen=True)
class Appointment:
    """Appointment record as returned by the gateway."""

    id: int
    patient_id: int
    provider_id: int
    operatory_id: int
    start: datetime
    duration_minutes: int
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    priority: Priority = Priority.NORMAL
    note: str = ""
    is_hygiene: bool = False
    confirmed: Optional[str] = None
    next_apt_id: Optional[int] = None

    @property
    def end(self) -> datetime:
        """End of the appointment (exclusive)."""
        return self.start + timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_api(cls, data: dict, default_length: int = 30) -> "Appointment":
        """Create from an OpenDental appointment record."""
        priority = Priority.ASAP if str(data.get("Priority", "")).upper() == "ASAP" else Priority.NORMAL
        return cls(
            id=int(data.get("AptNum", 0)),
            patient_id=int(data.get("PatNum", 0)),
            provider_id=int(data.get("ProvNum", 0) or 0),
            operatory_id=int(data.get("Op", 0) or 0),
            start=parse_datetime(str(data.get("AptDateTime", ""))),
            duration_minutes=duration_from_pattern(data.get("Pattern"), default_length),
            status=AppointmentStatus.parse(data.get("AptStatus")),
            priority=priority,
            note=data.get("Note", "") or "",
            is_hygiene=_truthy(data.get("IsHygiene")),
            confirmed=data.get("Confirmed"),
            next_apt_id=_opt_int(data.get("NextAptNum")),
        )

    def to_interval(self) -> "OccupiedInterval":
        """Project onto the occupied-interval view."""
        return OccupiedInterval(
            appointment_id=self.id,
            patient_id=self.patient_id,
            provider_id=self.provider_id,
            operatory_id=self.operatory_id,
            start=self.start,
            duration_minutes=self.duration_minutes,
            status=self.status,
        )


@dataclass(frozen=True)
class Recall:
    """Recall (periodic hygiene) record."""

    id: int
    patient_id: int
    date_due: Optional[date]
    recall_type: str = ""
    is_disabled: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "Recall":
        """Create from an OpenDental recall record."""
        due = None
        raw = data.get("DateDue")
        if raw and not str(raw).startswith("0001"):
            try:
                due = date.fromisoformat(str(raw)[:10])
            except ValueError:
                due = None
        return cls(
            id=int(data.get("RecallNum", 0)),
            patient_id=int(data.get("PatNum", 0)),
            date_due=due,
            recall_type=data.get("RecallType", "") or data.get("Description", "") or "",
            is_disabled=_truthy(data.get("IsDisabled")),
        )


@dataclass(frozen=True)
class OccupiedInterval:
    """A span during which a patient, provider and operatory are committed."""

    appointment_id: int
    patient_id: int
    provider_id: int
    operatory_id: int
    start: datetime
    duration_minutes: int
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    @property
    def end(self) -> datetime:
        """End of the interval (exclusive)."""
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def is_occupying(self) -> bool:
        """Whether this interval blocks the schedule."""
        return self.status in OCCUPYING_STATUSES

    def overlaps(self, start: datetime, duration_minutes: int) -> bool:
        """Half-open overlap: back-to-back intervals do not overlap."""
        end = start + timedelta(minutes=duration_minutes)
        return start < self.end and end > self.start


@dataclass(frozen=True)
class CandidateSlot:
    """A free time offered to the caller. Never persisted."""

    start: datetime
    provider_id: int
    operatory_id: int
    duration_minutes: int = 30

    @property
    def date(self) -> date:
        """Calendar date of the slot."""
        return self.start.date()

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "start": format_datetime(self.start),
            "provider_id": self.provider_id,
            "operatory_id": self.operatory_id,
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class BookingRequest:
    """A proposed booking, input to the conflict detector and the write."""

    patient_id: int
    start: datetime
    provider_id: int
    operatory_id: int
    duration_minutes: int = 30
    note: str = ""
    is_hygiene: bool = False

    @property
    def target_date(self) -> date:
        """Calendar date the booking falls on."""
        return self.start.date()


@dataclass
class AppointmentPatch:
    """Fields to change on an existing appointment. Unset fields are not sent."""

    start: Optional[datetime] = None
    provider_id: Optional[int] = None
    operatory_id: Optional[int] = None
    status: Optional[AppointmentStatus] = None
    priority: Optional[Priority] = None
    arrived_at: Optional[datetime] = None
    seated_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    def to_api(self) -> dict:
        """Convert to an OpenDental request body."""
        body: dict = {}
        if self.start is not None:
            body["AptDateTime"] = format_datetime(self.start)
        if self.provider_id is not None:
            body["ProvNum"] = self.provider_id
        if self.operatory_id is not None:
            body["Op"] = self.operatory_id
        if self.status is not None:
            body["AptStatus"] = self.status.value
        if self.priority is not None:
            body["Priority"] = self.priority.value
        if self.arrived_at is not None:
            body["DateTimeArrived"] = format_datetime(self.arrived_at)
        if self.seated_at is not None:
            body["DateTimeSeated"] = format_datetime(self.seated_at)
        if self.dismissed_at is not None:
            body["DateTimeDismissed"] = format_datetime(self.dismissed_at)
        return body

    def is_empty(self) -> bool:
        """Whether nothing would be changed."""
        return not self.to_api()


@dataclass
class OfficeHours:
    """Weekday -> open/close window, or closed."""

    days: dict[str, dict] = field(default_factory=dict)

    def window(self, day: date) -> Optional[tuple[datetime, datetime]]:
        """Open/close datetimes for a calendar date, or None if closed."""
        hours = self.days.get(weekday_name(day))
        if not hours or hours.get("closed"):
            return None
        open_at = datetime.combine(day, parse_clock(hours["open"]))
        close_at = datetime.combine(day, parse_clock(hours["close"]))
        if close_at <= open_at:
            return None
        return open_at, close_at

    def is_open(self, day: date) -> bool:
        """Whether the office opens at all on this date."""
        return self.window(day) is not None


@dataclass(frozen=True)
class ProviderSchedule:
    """A provider's working block on one date (OpenDental SchedType "Provider")."""

    id: int
    provider_id: int
    day: date
    start_time: time
    stop_time: time
    operatory_ids: tuple[int, ...] = ()

    @property
    def window(self) -> tuple[datetime, datetime]:
        """Start/stop datetimes of the block."""
        return (
            datetime.combine(self.day, self.start_time),
            datetime.combine(self.day, self.stop_time),
        )

    @classmethod
    def from_api(cls, data: dict) -> "ProviderSchedule":
        """Create from an OpenDental schedule record.

        ``operatories`` arrives as a comma-separated string of OperatoryNums.
        """
        raw_ops = str(data.get("operatories") or "")
        operatory_ids = tuple(int(op) for op in raw_ops.split(",") if op.strip().isdigit())
        return cls(
            id=int(data.get("ScheduleNum", 0)),
            provider_id=int(data.get("ProvNum", 0) or 0),
            day=date.fromisoformat(str(data.get("SchedDate", ""))[:10]),
            start_time=parse_clock(str(data.get("StartTime", "00:00"))),
            stop_time=parse_clock(str(data.get("StopTime", "00:00"))),
            operatory_ids=operatory_ids,
        )

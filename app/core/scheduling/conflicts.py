"""
Conflict Detector.

Gates every create/reschedule against occupancy fetched from the
gateway for exactly the target calendar date. Overlap is half-open:
a booking ending at 10:00 does not conflict with one starting at 10:00.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional, Sequence

from app.core.scheduling.models import BookingRequest, OccupiedInterval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreshIntervals:
    """Occupied intervals fetched from the gateway for a write decision.

    Only produced by fetch_fresh_intervals(); cached office-context hints
    are a different type and are rejected by find_conflicts().
    """

    intervals: tuple[OccupiedInterval, ...]
    date_start: date
    date_end: date
    fetched_at: datetime

    def __len__(self) -> int:
        return len(self.intervals)

    def __iter__(self):
        return iter(self.intervals)

    def occupying(self, exclude_appointment_id: Optional[int] = None) -> list[OccupiedInterval]:
        """Intervals that block the schedule, minus an excluded appointment."""
        return [
            interval
            for interval in self.intervals
            if interval.is_occupying
            and (exclude_appointment_id is None or interval.appointment_id != exclude_appointment_id)
        ]


async def fetch_fresh_intervals(
    gateway,
    date_start: date,
    date_end: date,
    now: datetime,
) -> FreshIntervals:
    """Query the gateway for every appointment in [date_start, date_end]."""
    appointments = await gateway.list_appointments(date_start, date_end)
    return FreshIntervals(
        intervals=tuple(a.to_interval() for a in appointments),
        date_start=date_start,
        date_end=date_end,
        fetched_at=now,
    )


@dataclass
class ConflictReport:
    """Which dimensions a proposed booking conflicts on."""

    patient_conflict: bool = False
    provider_conflict: bool = False
    operatory_conflict: bool = False
    conflicting_intervals: list[OccupiedInterval] = field(default_factory=list)
    moved_to_operatory_id: Optional[int] = None
    """Room the booking fits in instead, when only its own room was taken."""

    @property
    def has_conflict(self) -> bool:
        return self.patient_conflict or self.provider_conflict or self.operatory_conflict

    def dimensions(self) -> list[str]:
        """Names of the conflicting dimensions."""
        names = []
        if self.patient_conflict:
            names.append("patient")
        if self.provider_conflict:
            names.append("provider")
        if self.operatory_conflict:
            names.append("operatory")
        return names

    @property
    def summary(self) -> str:
        if not self.has_conflict:
            return "no conflicts"
        return f"conflicts on {', '.join(self.dimensions())} ({len(self.conflicting_intervals)} intervals)"


def find_conflicts(
    booking: BookingRequest,
    fresh: FreshIntervals,
    exclude_appointment_id: Optional[int] = None,
) -> ConflictReport:
    """Pure overlap check of a booking against freshly fetched intervals.

    Args:
        booking: Proposed booking
        fresh: Intervals fetched for the booking's date
        exclude_appointment_id: Appointment being moved (never conflicts with itself)

    Raises:
        TypeError: if given anything other than FreshIntervals
    """
    if not isinstance(fresh, FreshIntervals):
        raise TypeError(
            f"Conflict checks require FreshIntervals, got {type(fresh).__name__}"
        )

    report = ConflictReport()
    for interval in fresh.occupying(exclude_appointment_id):
        if not interval.overlaps(booking.start, booking.duration_minutes):
            continue

        hit = False
        if interval.patient_id == booking.patient_id:
            report.patient_conflict = True
            hit = True
        if interval.provider_id == booking.provider_id:
            report.provider_conflict = True
            hit = True
        if interval.operatory_id == booking.operatory_id:
            report.operatory_conflict = True
            hit = True
        if hit:
            report.conflicting_intervals.append(interval)

    return report


class ConflictDetector:
    """Fetches the target date fresh and checks a booking against it."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def detect_conflicts(
        self,
        booking: BookingRequest,
        exclude_appointment_id: Optional[int] = None,
        now: Optional[datetime] = None,
        operatory_ids: Sequence[int] = (),
    ) -> ConflictReport:
        """Check a booking against the gateway's current schedule.

        Only the booking's own calendar date is queried. When the booking
        collides on its room alone, the other ``operatory_ids`` are tried
        against the same fetch; the first empty one is reported in
        ``moved_to_operatory_id`` with a clean report.

        Raises:
            GatewayUnavailable: the fresh fetch failed
        """
        target = booking.target_date
        fresh = await fetch_fresh_intervals(self.gateway, target, target, now or datetime.now())
        report = find_conflicts(booking, fresh, exclude_appointment_id)

        if report.dimensions() == ["operatory"]:
            for operatory_id in operatory_ids:
                if operatory_id == booking.operatory_id:
                    continue
                moved = find_conflicts(
                    replace(booking, operatory_id=operatory_id), fresh, exclude_appointment_id
                )
                if not moved.has_conflict:
                    logger.info(
                        f"Booking at {booking.start}: op {booking.operatory_id} taken, "
                        f"op {operatory_id} free"
                    )
                    moved.moved_to_operatory_id = operatory_id
                    return moved

        if report.has_conflict:
            logger.info(
                f"Booking at {booking.start} for provider {booking.provider_id} / "
                f"op {booking.operatory_id}: {report.summary}"
            )
        else:
            logger.debug(f"Booking at {booking.start}: no conflicts in {len(fresh)} intervals")
        return report

"""
Slot Resolver.

Computes free appointment times for a date range. Each day is split into
lanes: a provider's working window (office hours, narrowed by the
provider's schedule blocks when the office keeps schedules) and the rooms
that provider may use. Occupied intervals, always fetched fresh from the
gateway, are subtracted per lane: a start is free when the lane's provider
is idle and at least one of its rooms is empty.

An empty appointment list for the range means every slot in business
hours is free. It never means "nothing is available".
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Sequence, Union

from app.config import Settings, get_settings
from app.core.scheduling.conflicts import fetch_fresh_intervals
from app.core.scheduling.dates import as_calendar_date, daterange
from app.core.scheduling.models import CandidateSlot, OccupiedInterval, OfficeHours
from app.core.scheduling.office_context import ScheduleBook

logger = logging.getLogger(__name__)

TIME_PREFERENCES = ("morning", "afternoon", "evening")


def matches_time_preference(start: datetime, preference: Optional[str]) -> bool:
    """Morning is before 12:00, afternoon 12:00-17:00, evening after."""
    if not preference:
        return True
    if preference == "morning":
        return start.hour < 12
    if preference == "afternoon":
        return 12 <= start.hour < 17
    if preference == "evening":
        return start.hour >= 17
    return True


@dataclass(frozen=True)
class Lane:
    """One provider's bookable window on one day, with the rooms to try in order."""

    provider_id: int
    open_at: datetime
    close_at: datetime
    operatory_ids: tuple[int, ...]


def _hour_spread(slots: list[CandidateSlot]) -> list[CandidateSlot]:
    """First free slot in each clock hour."""
    seen: set[int] = set()
    picks = []
    for slot in slots:
        if slot.start.hour not in seen:
            seen.add(slot.start.hour)
            picks.append(slot)
    return picks


class SlotResolver:
    """Finds candidate free slots within office hours and provider schedules."""

    def __init__(
        self,
        gateway,
        office_hours: Optional[OfficeHours] = None,
        settings: Optional[Settings] = None,
        schedules: Optional[ScheduleBook] = None,
        operatory_ids: Sequence[int] = (),
    ):
        """Initialize resolver.

        Args:
            gateway: Appointment data gateway
            office_hours: Office hours (defaults to configured hours)
            settings: Settings override
            schedules: Provider schedule blocks (none: office hours only)
            operatory_ids: Rooms to try when no room is requested,
                in preference order (defaults to the configured room)
        """
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.office_hours = office_hours or OfficeHours(days=dict(self.settings.office_hours))
        self.schedules = schedules or ScheduleBook()
        self.operatory_ids = tuple(operatory_ids) or (self.settings.default_operatory_id,)

    def lanes(
        self,
        day: date,
        provider_id: Optional[int] = None,
        operatory_id: Optional[int] = None,
        any_provider: bool = False,
    ) -> list[Lane]:
        """Bookable windows on one day.

        Without schedules for the day, a single lane spans office hours
        for the requested (or default) provider. With schedules, each
        block of the requested provider (or of every provider, when none
        is requested or ``any_provider`` is set) becomes a lane clipped
        to office hours. A requested room overrides the block's rooms.
        """
        window = self.office_hours.window(day)
        if window is None:
            return []
        open_at, close_at = window
        rooms = (operatory_id,) if operatory_id else self.operatory_ids

        if not self.schedules.covers(day):
            return [Lane(provider_id or self.settings.default_provider_id, open_at, close_at, rooms)]

        wanted = None if any_provider else provider_id
        lanes = []
        for block in self.schedules.on(day, wanted):
            block_open, block_close = block.window
            lane_open = max(open_at, block_open)
            lane_close = min(close_at, block_close)
            if lane_open >= lane_close:
                continue
            block_rooms = (operatory_id,) if operatory_id else (block.operatory_ids or rooms)
            lanes.append(Lane(block.provider_id, lane_open, lane_close, block_rooms))
        return lanes

    def lane_slots(
        self,
        lane: Lane,
        occupying: list[OccupiedInterval],
        length_minutes: int,
        now: datetime,
        time_preference: Optional[str] = None,
    ) -> list[CandidateSlot]:
        """Every free start in a lane, stepping by the appointment length.

        Each slot is stamped with the lane's provider and the first of the
        lane's rooms that is empty for the whole appointment.
        """
        step = timedelta(minutes=length_minutes)
        day = lane.open_at.date()
        day_intervals = [i for i in occupying if i.start.date() == day]

        slots = []
        current = lane.open_at
        while current + step <= lane.close_at:
            if current > now and matches_time_preference(current, time_preference):
                busy = [i for i in day_intervals if i.overlaps(current, length_minutes)]
                if not any(i.provider_id == lane.provider_id for i in busy):
                    taken = {i.operatory_id for i in busy}
                    room = next((op for op in lane.operatory_ids if op not in taken), None)
                    if room is not None:
                        slots.append(
                            CandidateSlot(
                                start=current,
                                provider_id=lane.provider_id,
                                operatory_id=room,
                                duration_minutes=length_minutes,
                            )
                        )
            current += step
        return slots

    async def find_available_slots(
        self,
        date_start: Union[date, str],
        date_end: Union[date, str],
        provider_id: Optional[int] = None,
        operatory_id: Optional[int] = None,
        time_preference: Optional[str] = None,
        length_minutes: Optional[int] = None,
        exclude_appointment_id: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[CandidateSlot]:
        """Find candidate slots in [date_start, date_end].

        When the office keeps schedules but the requested provider has no
        block anywhere in the range, every scheduled provider is searched
        instead; the slots carry whichever provider is free.

        Args:
            date_start: First calendar date (clamped to today)
            date_end: Last calendar date (inclusive)
            provider_id: Provider to book with
            operatory_id: Room to book in
            time_preference: morning / afternoon / evening
            length_minutes: Appointment length (default from settings)
            exclude_appointment_id: Appointment being rescheduled
            limit: Maximum candidates (default suggest_slot_count)
            now: Current local time

        Returns:
            Candidates sorted by start; empty only if no day has capacity

        Raises:
            ValidationError: a boundary is a timestamp or not YYYY-MM-DD
            GatewayUnavailable: the fresh fetch failed
        """
        now = now or datetime.now()
        start = as_calendar_date(date_start)
        end = as_calendar_date(date_end)
        today = now.date()
        if start < today:
            logger.debug(f"Clamping slot search start {start} to today {today}")
            start = today
        if end < start:
            end = start

        length = length_minutes or self.settings.default_appointment_length
        limit = limit or self.settings.suggest_slot_count

        any_provider = (
            provider_id is not None
            and any(self.schedules.covers(day) for day in daterange(start, end))
            and not self.schedules.has_provider(provider_id, start, end)
        )
        if any_provider:
            logger.info(
                f"Provider {provider_id} has no schedule {start}..{end}; "
                f"searching every scheduled provider"
            )

        fresh = await fetch_fresh_intervals(self.gateway, start, end, now)
        occupying = fresh.occupying(exclude_appointment_id)

        free_by_day: dict[date, list[CandidateSlot]] = {}
        for day in daterange(start, end):
            by_start: dict[datetime, CandidateSlot] = {}
            for lane in self.lanes(day, provider_id, operatory_id, any_provider):
                for slot in self.lane_slots(lane, occupying, length, now, time_preference):
                    by_start.setdefault(slot.start, slot)
            if by_start:
                free_by_day[day] = [by_start[s] for s in sorted(by_start)]

        slots = sorted(self._pick(free_by_day, limit), key=lambda s: s.start)

        logger.info(
            f"Slot search {start}..{end} provider={provider_id} op={operatory_id} "
            f"pref={time_preference}: {len(fresh)} booked, {len(slots)} offered"
        )
        return slots

    def _pick(self, free_by_day: dict[date, list[CandidateSlot]], limit: int) -> list[CandidateSlot]:
        """Spread picks across days and hours, then top up to the limit."""
        picked: list[CandidateSlot] = []
        spread = {day: _hour_spread(slots) for day, slots in free_by_day.items()}

        # First pass: a few distinct hours per day, earliest days first
        for day in sorted(spread):
            for slot in spread[day][: self.settings.slots_per_day]:
                if len(picked) >= limit:
                    return picked
                picked.append(slot)

        # Top up with remaining distinct hours, then any free start
        for pool in (spread, free_by_day):
            for day in sorted(pool):
                for slot in pool[day]:
                    if len(picked) >= limit:
                        return picked
                    if slot not in picked:
                        picked.append(slot)

        return picked

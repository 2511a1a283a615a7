"""Tests for the slot resolver."""

import pytest
from datetime import date, datetime

from app.core.scheduling.conflicts import ConflictDetector
from app.core.scheduling.errors import GatewayUnavailable, ValidationError
from app.core.scheduling.models import AppointmentStatus, BookingRequest
from app.core.scheduling.office_context import ScheduleBook
from app.core.scheduling.slots import SlotResolver, matches_time_preference


@pytest.fixture
def resolver(gateway, settings):
    return SlotResolver(gateway, settings=settings)


class TestEmptySchedule:
    """An empty appointment list means everything is free."""

    @pytest.mark.asyncio
    async def test_single_empty_day(self, resolver, gateway, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), now=now
        )

        assert len(slots) == 3
        assert all(s.start >= datetime(2025, 11, 10, 8, 0) for s in slots)
        assert all(s.start.date() == date(2025, 11, 10) for s in slots)
        assert slots[0].start == datetime(2025, 11, 10, 8, 0)
        assert gateway.calls_to("list_appointments") == [
            (date(2025, 11, 10), date(2025, 11, 10), None)
        ]

    @pytest.mark.asyncio
    async def test_distinct_hours(self, resolver, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), now=now
        )

        assert len({s.start.hour for s in slots}) == len(slots)

    @pytest.mark.asyncio
    async def test_range_spreads_across_days(self, resolver, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 14), limit=4, now=now
        )

        days = {s.start.date() for s in slots}
        assert len(slots) == 4
        assert len(days) == 2
        assert slots == sorted(slots, key=lambda s: s.start)

    @pytest.mark.asyncio
    async def test_defaults_fill_provider_and_operatory(self, resolver, now):
        slots = await resolver.find_available_slots("2025-11-10", "2025-11-10", now=now)

        assert all(s.provider_id == 1 and s.operatory_id == 1 for s in slots)
        assert all(s.duration_minutes == 30 for s in slots)


class TestOccupancy:
    """Occupied intervals are subtracted from office hours."""

    @pytest.mark.asyncio
    async def test_skips_booked_time(self, resolver, gateway, now):
        gateway.add_appointment(
            patient_id=7, provider_id=1, start=datetime(2025, 11, 10, 8, 0), duration_minutes=60
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=1, now=now
        )

        assert slots[0].start == datetime(2025, 11, 10, 9, 0)
        assert all(not (datetime(2025, 11, 10, 8, 0) <= s.start < datetime(2025, 11, 10, 9, 0)) for s in slots)

    @pytest.mark.asyncio
    async def test_other_provider_does_not_block(self, resolver, gateway, now):
        gateway.add_appointment(
            patient_id=7, provider_id=2, operatory_id=2, start=datetime(2025, 11, 10, 8, 0)
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=1, operatory_id=1, now=now
        )

        assert slots[0].start == datetime(2025, 11, 10, 8, 0)

    @pytest.mark.asyncio
    async def test_stamped_room_busy_blocks(self, resolver, gateway, now):
        """Provider 1 holds room 1 all day: provider 2 has no room there."""
        gateway.add_appointment(
            patient_id=9, provider_id=1, operatory_id=1,
            start=datetime(2025, 11, 10, 8, 0), duration_minutes=540,
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=2, now=now
        )

        assert slots == []

    @pytest.mark.asyncio
    async def test_free_room_is_stamped(self, gateway, settings, now):
        gateway.add_appointment(
            patient_id=9, provider_id=1, operatory_id=1,
            start=datetime(2025, 11, 10, 8, 0), duration_minutes=540,
        )
        resolver = SlotResolver(gateway, settings=settings, operatory_ids=(1, 3))

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=2, now=now
        )

        assert slots[0].start == datetime(2025, 11, 10, 8, 0)
        assert all(s.provider_id == 2 and s.operatory_id == 3 for s in slots)

    @pytest.mark.asyncio
    async def test_offered_slots_pass_conflict_check(self, gateway, settings, now):
        gateway.add_appointment(
            patient_id=9, provider_id=1, operatory_id=1, start=datetime(2025, 11, 10, 8, 0)
        )
        gateway.add_appointment(
            patient_id=8, provider_id=2, operatory_id=3, start=datetime(2025, 11, 10, 9, 0)
        )
        resolver = SlotResolver(gateway, settings=settings, operatory_ids=(1, 3))
        detector = ConflictDetector(gateway)

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=2, limit=10, now=now
        )

        assert slots
        for slot in slots:
            report = await detector.detect_conflicts(
                BookingRequest(
                    patient_id=7,
                    start=slot.start,
                    provider_id=slot.provider_id,
                    operatory_id=slot.operatory_id,
                ),
                now=now,
            )
            assert not report.has_conflict

    @pytest.mark.asyncio
    async def test_broken_appointment_does_not_block(self, resolver, gateway, now):
        gateway.add_appointment(
            patient_id=7,
            start=datetime(2025, 11, 10, 8, 0),
            status=AppointmentStatus.BROKEN,
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=1, now=now
        )

        assert slots[0].start == datetime(2025, 11, 10, 8, 0)

    @pytest.mark.asyncio
    async def test_excluded_appointment_frees_its_time(self, resolver, gateway, now):
        moving = gateway.add_appointment(
            patient_id=7, provider_id=1, start=datetime(2025, 11, 10, 8, 0)
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10),
            date(2025, 11, 10),
            provider_id=1,
            exclude_appointment_id=moving.id,
            now=now,
        )

        assert slots[0].start == datetime(2025, 11, 10, 8, 0)

    @pytest.mark.asyncio
    async def test_fully_booked_day(self, resolver, gateway, now):
        gateway.add_appointment(
            patient_id=7, provider_id=1, start=datetime(2025, 11, 10, 8, 0), duration_minutes=540
        )

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), provider_id=1, now=now
        )

        assert slots == []


class TestBoundaries:
    """Past, closed and malformed inputs."""

    @pytest.mark.asyncio
    async def test_past_start_clamped_to_today(self, resolver, gateway, now):
        slots = await resolver.find_available_slots(
            date(2025, 10, 20), date(2025, 11, 1), now=now
        )

        assert gateway.calls_to("list_appointments")[0][0] == date(2025, 11, 1)
        assert all(s.start > now for s in slots)

    @pytest.mark.asyncio
    async def test_today_skips_past_times(self, resolver, now):
        """Saturday 09:00 now: the 09:00 slot has started, 09:30 is the first."""
        slots = await resolver.find_available_slots(now.date(), now.date(), now=now)

        assert slots[0].start == datetime(2025, 11, 1, 9, 30)

    @pytest.mark.asyncio
    async def test_closed_day(self, resolver, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 2), date(2025, 11, 2), now=now
        )

        assert slots == []

    @pytest.mark.asyncio
    async def test_timestamp_boundary_rejected(self, resolver, gateway, now):
        with pytest.raises(ValidationError):
            await resolver.find_available_slots(
                datetime(2025, 11, 10, 9, 0), date(2025, 11, 10), now=now
            )
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_end_before_start(self, resolver, gateway, now):
        await resolver.find_available_slots(date(2025, 11, 10), date(2025, 11, 5), now=now)

        assert gateway.calls_to("list_appointments") == [
            (date(2025, 11, 10), date(2025, 11, 10), None)
        ]

    @pytest.mark.asyncio
    async def test_gateway_failure_is_not_empty(self, resolver, gateway, now):
        gateway.failing = {"list_appointments"}

        with pytest.raises(GatewayUnavailable):
            await resolver.find_available_slots(date(2025, 11, 10), date(2025, 11, 10), now=now)


class TestProviderSchedules:
    """Provider schedule blocks bound who can be offered when."""

    @staticmethod
    def scheduled(gateway, settings, **kwargs) -> SlotResolver:
        book = ScheduleBook(
            schedules=tuple(gateway.schedules),
            date_start=date(2025, 11, 1),
            date_end=date(2025, 11, 15),
        )
        return SlotResolver(gateway, settings=settings, schedules=book, **kwargs)

    @pytest.mark.asyncio
    async def test_only_scheduled_days(self, gateway, settings, now):
        """A hygienist in on Tuesday and Thursday is not offered Monday, Wednesday or Friday."""
        for day in range(10, 15):
            gateway.add_schedule(1, date(2025, 11, day), "08:00", "17:00")
        gateway.add_schedule(2, date(2025, 11, 11), "08:00", "17:00")
        gateway.add_schedule(2, date(2025, 11, 13), "08:00", "17:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 14), provider_id=2, limit=10, now=now
        )

        assert slots
        assert {s.start.date() for s in slots} <= {date(2025, 11, 11), date(2025, 11, 13)}
        assert all(s.provider_id == 2 for s in slots)

    @pytest.mark.asyncio
    async def test_block_narrows_office_hours(self, gateway, settings, now):
        gateway.add_schedule(2, date(2025, 11, 11), "13:00", "15:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 11), date(2025, 11, 11), provider_id=2, limit=10, now=now
        )

        assert [s.start.strftime("%H:%M") for s in slots] == ["13:00", "13:30", "14:00", "14:30"]

    @pytest.mark.asyncio
    async def test_block_clipped_to_office_hours(self, gateway, settings, now):
        """Saturday hours are 09:00-13:00 whatever the block says."""
        gateway.add_schedule(2, date(2025, 11, 15), "07:00", "18:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 15), date(2025, 11, 15), provider_id=2, limit=20, now=now
        )

        assert len(slots) == 8
        assert slots[0].start == datetime(2025, 11, 15, 9, 0)
        assert slots[-1].start == datetime(2025, 11, 15, 12, 30)

    @pytest.mark.asyncio
    async def test_unscheduled_provider_falls_back_to_scheduled_ones(self, gateway, settings, now):
        gateway.add_schedule(1, date(2025, 11, 11), "08:00", "17:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 12), provider_id=2, now=now
        )

        assert slots
        assert all(s.provider_id == 1 and s.start.date() == date(2025, 11, 11) for s in slots)

    @pytest.mark.asyncio
    async def test_no_provider_searches_every_block(self, gateway, settings, now):
        gateway.add_schedule(1, date(2025, 11, 11), "10:00", "12:00")
        gateway.add_schedule(2, date(2025, 11, 11), "08:00", "12:00", operatory_ids=(2,))
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 11), date(2025, 11, 11), now=now
        )

        assert slots[0].start == datetime(2025, 11, 11, 8, 0)
        assert slots[0].provider_id == 2
        assert slots[0].operatory_id == 2

    @pytest.mark.asyncio
    async def test_busy_provider_yields_to_another_block(self, gateway, settings, now):
        gateway.add_schedule(1, date(2025, 11, 11), "08:00", "12:00")
        gateway.add_schedule(2, date(2025, 11, 11), "08:00", "12:00", operatory_ids=(2,))
        gateway.add_appointment(
            patient_id=9, provider_id=1, operatory_id=1,
            start=datetime(2025, 11, 11, 8, 0), duration_minutes=240,
        )
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 11), date(2025, 11, 11), now=now
        )

        assert slots
        assert all(s.provider_id == 2 and s.operatory_id == 2 for s in slots)

    @pytest.mark.asyncio
    async def test_day_without_blocks_is_closed(self, gateway, settings, now):
        gateway.add_schedule(1, date(2025, 11, 11), "08:00", "17:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), now=now
        )

        assert slots == []

    @pytest.mark.asyncio
    async def test_dates_beyond_schedules_use_office_hours(self, gateway, settings, now):
        gateway.add_schedule(1, date(2025, 11, 11), "08:00", "17:00")
        resolver = self.scheduled(gateway, settings)

        slots = await resolver.find_available_slots(
            date(2025, 11, 17), date(2025, 11, 17), provider_id=2, now=now
        )

        assert slots[0].start == datetime(2025, 11, 17, 8, 0)
        assert slots[0].provider_id == 2


class TestTimePreference:
    """Morning / afternoon / evening filtering."""

    def test_matches(self):
        assert matches_time_preference(datetime(2025, 11, 10, 11, 30), "morning")
        assert not matches_time_preference(datetime(2025, 11, 10, 12, 0), "morning")
        assert matches_time_preference(datetime(2025, 11, 10, 12, 0), "afternoon")
        assert not matches_time_preference(datetime(2025, 11, 10, 17, 0), "afternoon")
        assert matches_time_preference(datetime(2025, 11, 10, 17, 0), "evening")
        assert matches_time_preference(datetime(2025, 11, 10, 7, 0), None)

    @pytest.mark.asyncio
    async def test_afternoon_only(self, resolver, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), time_preference="afternoon", now=now
        )

        assert slots
        assert all(12 <= s.start.hour < 17 for s in slots)

    @pytest.mark.asyncio
    async def test_longer_appointment(self, resolver, now):
        slots = await resolver.find_available_slots(
            date(2025, 11, 10), date(2025, 11, 10), length_minutes=60, limit=20, now=now
        )

        # 08:00-17:00 in one-hour steps
        assert len(slots) == 9
        assert slots[-1].start == datetime(2025, 11, 10, 16, 0)

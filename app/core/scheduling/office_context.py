"""
Office Context Cache.

A short-lived snapshot of low-churn office data (providers, operatories,
provider schedules, office hours) plus a best-effort hint of occupied
intervals for the next few days. Built once per session on first need
and rebuilt wholesale when it expires.

The occupied intervals held here are hints only. They are wrapped in
OccupiedHints, which the conflict detector refuses; anything that leads
to a write re-fetches fresh intervals from the gateway.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from app.config import Settings, get_settings
from app.core.scheduling.errors import GatewayUnavailable
from app.core.scheduling.models import (
    OccupiedInterval,
    OfficeHours,
    Operatory,
    Provider,
    ProviderSchedule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccupiedHints:
    """Cached occupied intervals. Advisory only, never used to gate a write."""

    intervals: tuple[OccupiedInterval, ...] = ()
    date_start: Optional[date] = None
    date_end: Optional[date] = None

    def __len__(self) -> int:
        return len(self.intervals)

    def __iter__(self):
        return iter(self.intervals)

    def on(self, day: date) -> list[OccupiedInterval]:
        """Hint intervals starting on a given date."""
        return [i for i in self.intervals if i.start.date() == day]


@dataclass(frozen=True)
class ScheduleBook:
    """Provider working blocks for the lookahead window.

    An empty book means the office does not use schedules; callers then
    bound bookings by office hours alone.
    """

    schedules: tuple[ProviderSchedule, ...] = ()
    date_start: Optional[date] = None
    date_end: Optional[date] = None

    def __len__(self) -> int:
        return len(self.schedules)

    def covers(self, day: date) -> bool:
        """Whether schedules are known for this date."""
        if not self.schedules or self.date_start is None or self.date_end is None:
            return False
        return self.date_start <= day <= self.date_end

    def on(self, day: date, provider_id: Optional[int] = None) -> list[ProviderSchedule]:
        """Blocks on a date, optionally for one provider, earliest first."""
        blocks = [
            s for s in self.schedules
            if s.day == day and (provider_id is None or s.provider_id == provider_id)
        ]
        return sorted(blocks, key=lambda s: (s.start_time, s.provider_id))

    def has_provider(self, provider_id: int, date_start: date, date_end: date) -> bool:
        """Whether a provider works at all in [date_start, date_end]."""
        return any(
            s.provider_id == provider_id and date_start <= s.day <= date_end
            for s in self.schedules
        )


@dataclass(frozen=True)
class ContextDefaults:
    """Fallback scheduling choices when the caller expresses none."""

    provider_id: int
    operatory_id: int
    appointment_length: int


@dataclass(frozen=True)
class OfficeContext:
    """Immutable snapshot of office data for one session."""

    providers: tuple[Provider, ...]
    operatories: tuple[Operatory, ...]
    office_hours: OfficeHours
    occupied_hints: OccupiedHints
    defaults: ContextDefaults
    fetched_at: datetime
    expires_at: datetime
    degraded: bool = False
    schedules: ScheduleBook = field(default_factory=ScheduleBook)

    def provider(self, provider_id: int) -> Optional[Provider]:
        """Look up a provider by id."""
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def provider_name(self, provider_id: int) -> str:
        """Display name for a provider id, never empty."""
        provider = self.provider(provider_id)
        if provider:
            return provider.display_name
        return f"Provider {provider_id}"

    def operatory(self, operatory_id: int) -> Optional[Operatory]:
        """Look up an operatory by id."""
        for operatory in self.operatories:
            if operatory.id == operatory_id:
                return operatory
        return None

    def active_providers(self) -> list[Provider]:
        return [p for p in self.providers if p.is_active]

    def active_operatories(self) -> list[Operatory]:
        return [o for o in self.operatories if o.is_active]

    def hygienists(self) -> list[Provider]:
        """Active providers flagged as hygienists."""
        return [p for p in self.active_providers() if p.is_hygienist]

    def hygiene_operatory(self) -> Optional[Operatory]:
        """First active hygiene room, if any."""
        for operatory in self.active_operatories():
            if operatory.is_hygiene_room:
                return operatory
        return None

    def booking_operatory_ids(self) -> list[int]:
        """Rooms for a regular visit: the default, then other active non-hygiene rooms."""
        ids = [self.defaults.operatory_id]
        for operatory in self.active_operatories():
            if not operatory.is_hygiene_room and operatory.id not in ids:
                ids.append(operatory.id)
        return ids

    def find_provider(self, name: Optional[str]) -> Optional[Provider]:
        """Find a provider by (partial) name, case-insensitively.

        "Dr. Smith", "smith" and "Sarah" all match "Sarah Smith".
        """
        if not name:
            return None

        query = name.lower().replace("dr.", "").replace("dr ", "").strip()
        if not query:
            return None

        candidates = self.active_providers() or list(self.providers)
        for provider in candidates:
            if provider.display_name.lower() == query:
                return provider
        for provider in candidates:
            full = provider.display_name.lower()
            if query in full or any(part == query for part in full.split()):
                return provider
        return None


def is_expired(context: OfficeContext, now: datetime) -> bool:
    """Whether the context has outlived its TTL."""
    return now > context.expires_at


def _fallback_context(settings: Settings, now: datetime, office_hours: OfficeHours) -> OfficeContext:
    """Minimal context used when every gateway call failed."""
    provider_id = settings.default_provider_id
    operatory_id = settings.default_operatory_id
    return OfficeContext(
        providers=(Provider(id=provider_id, display_name="Default Provider"),),
        operatories=(Operatory(id=operatory_id, display_name=f"Operatory {operatory_id}"),),
        office_hours=office_hours,
        occupied_hints=OccupiedHints(),
        defaults=ContextDefaults(
            provider_id=provider_id,
            operatory_id=operatory_id,
            appointment_length=settings.default_appointment_length,
        ),
        fetched_at=now,
        expires_at=now + timedelta(seconds=settings.office_context_fallback_ttl_seconds),
        degraded=True,
    )


async def build_context(
    gateway,
    now: datetime,
    settings: Optional[Settings] = None,
) -> OfficeContext:
    """Fetch a fresh office context from the gateway.

    Fails soft: a failed catalog call leaves that catalog empty, a failed
    appointment call leaves the hints empty and a failed schedule call
    leaves office hours as the only bound. Only when catalogs and hints
    all fail is a fallback context with a shortened lifetime returned.

    Args:
        gateway: Appointment data gateway
        now: Current local time
        settings: Settings override

    Returns:
        OfficeContext stamped with fetched_at / expires_at
    """
    settings = settings or get_settings()
    today = now.date()
    lookahead_end = today + timedelta(days=settings.lookahead_days)
    failures = 0

    office_hours = await gateway.get_office_hours()

    try:
        providers = tuple(await gateway.list_providers())
    except GatewayUnavailable as e:
        logger.warning(f"Office context: provider catalog unavailable ({e})")
        providers = ()
        failures += 1

    try:
        operatories = tuple(await gateway.list_operatories())
    except GatewayUnavailable as e:
        logger.warning(f"Office context: operatory catalog unavailable ({e})")
        operatories = ()
        failures += 1

    try:
        appointments = await gateway.list_appointments(today, lookahead_end)
        intervals = (a.to_interval() for a in appointments)
        hints = OccupiedHints(
            intervals=tuple(i for i in intervals if i.is_occupying),
            date_start=today,
            date_end=lookahead_end,
        )
    except GatewayUnavailable as e:
        logger.warning(f"Office context: occupied-interval hints unavailable ({e})")
        hints = OccupiedHints()
        failures += 1

    if failures == 3:
        logger.warning("Office context: gateway unreachable, using fallback defaults")
        return _fallback_context(settings, now, office_hours)

    schedule_end = today + timedelta(days=settings.schedule_lookahead_days)
    try:
        schedules = ScheduleBook(
            schedules=tuple(await gateway.list_schedules(today, schedule_end)),
            date_start=today,
            date_end=schedule_end,
        )
    except GatewayUnavailable as e:
        # Office hours alone bound the search until the next rebuild
        logger.warning(f"Office context: provider schedules unavailable ({e})")
        schedules = ScheduleBook()
        failures += 1

    context = OfficeContext(
        providers=providers,
        operatories=operatories,
        office_hours=office_hours,
        occupied_hints=hints,
        defaults=ContextDefaults(
            provider_id=settings.default_provider_id,
            operatory_id=settings.default_operatory_id,
            appointment_length=settings.default_appointment_length,
        ),
        fetched_at=now,
        expires_at=now + timedelta(seconds=settings.office_context_ttl_seconds),
        degraded=failures > 0,
        schedules=schedules,
    )
    logger.info(
        f"Office context built: {len(providers)} providers, {len(operatories)} operatories, "
        f"{len(schedules)} schedule blocks, {len(hints)} occupied hints ({today}..{lookahead_end})"
    )
    return context


@dataclass
class OfficeContextHolder:
    """
    Session-scoped owner of an OfficeContext.

    Builds lazily, rebuilds wholesale once expired, and drops the context
    on invalidate(). Replacing the reference is the only mutation.
    """

    gateway: object
    settings: Settings = field(default_factory=get_settings)
    _context: Optional[OfficeContext] = None
    builds: int = 0

    async def get(self, now: datetime) -> OfficeContext:
        """Return a live context, building one if missing or expired."""
        if self._context is None or is_expired(self._context, now):
            self._context = await build_context(self.gateway, now, self.settings)
            self.builds += 1
        return self._context

    def peek(self) -> Optional[OfficeContext]:
        """Current context without building."""
        return self._context

    def invalidate(self) -> None:
        """Drop the context so the next get() rebuilds it."""
        self._context = None

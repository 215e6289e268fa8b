"""
Studio availability: conflict detection and alternative slot suggestions.

A slot is free when no confirmed booking and no calendar busy interval
overlaps ``[start, start + duration)``. Durations come from the package's
free-text duration field. Calendar failures are reported to the caller
as a degraded result rather than treated as "free".
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional, TypedDict
from zoneinfo import ZoneInfo

from studio_agent.config import settings
from studio_agent.outcome import Outcome
from studio_agent.tools.calendar import CalendarError, CalendarService
from studio_agent.tools.catalog import PackageCatalog, parse_duration_minutes

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]


class AvailabilityResult(TypedDict):
    """Result from AvailabilityChecker.check."""

    available: bool
    requested_start: datetime
    duration_minutes: int
    suggestions: list[datetime]
    message: str


def studio_tz() -> ZoneInfo:
    return ZoneInfo(settings.business.timezone)


def local_datetime(day: str, at: str) -> datetime:
    """Combine ``YYYY-MM-DD`` and ``HH:MM`` into an aware studio-local datetime."""
    return datetime.combine(
        date.fromisoformat(day), time.fromisoformat(at), tzinfo=studio_tz()
    )


def format_slot(slot: datetime) -> str:
    """Render a slot like ``9:30 AM, May 4``."""
    return f"{slot.strftime('%I').lstrip('0')}:{slot:%M} {slot:%p}, {slot:%b} {slot.day}"


def _overlaps(start: datetime, end: datetime, busy: list[Interval]) -> bool:
    return any(b_start < end and start < b_end for b_start, b_end in busy)


class AvailabilityChecker:
    """Checks a requested slot against confirmed bookings and the calendar."""

    def __init__(
        self,
        store,
        catalog: PackageCatalog,
        calendar: Optional[CalendarService] = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._calendar = calendar

    async def duration_for(self, service: Optional[str]) -> int:
        package = await self._catalog.get_by_name(service) if service else None
        return parse_duration_minutes(package.duration if package else None)

    def _business_window(self, day: date) -> Interval:
        biz = settings.business
        tz = studio_tz()
        opens = datetime.combine(day, time(hour=biz.day_start_hour), tzinfo=tz)
        closes = datetime.combine(day, time(hour=0), tzinfo=tz) + timedelta(hours=biz.day_end_hour)
        return opens, closes

    async def _busy_intervals(self, window_start: datetime, window_end: datetime) -> list[Interval]:
        """Confirmed bookings plus calendar busy time. Raises CalendarError."""
        bookings = await self._store.list_confirmed_between(window_start, window_end)
        busy: list[Interval] = [(b.start, b.end) for b in bookings]
        if self._calendar is not None:
            busy.extend((b.start, b.end) for b in await self._calendar.free_busy(window_start, window_end))
        return sorted(busy)

    def _free_slots(
        self,
        day: date,
        duration: int,
        busy: list[Interval],
        not_before: Optional[datetime] = None,
    ) -> list[datetime]:
        opens, closes = self._business_window(day)
        step = timedelta(minutes=settings.booking.slot_granularity_minutes)
        length = timedelta(minutes=duration)
        slots: list[datetime] = []
        candidate = opens
        while candidate + length <= closes:
            if (not_before is None or candidate >= not_before) and not _overlaps(
                candidate, candidate + length, busy
            ):
                slots.append(candidate)
            candidate += step
        return slots

    async def check(
        self, start: datetime, service: Optional[str], now: Optional[datetime] = None
    ) -> Outcome[AvailabilityResult]:
        """Check whether ``start`` is free for ``service``.

        On conflict, up to ``max_suggestions`` free slots on the same day are
        offered in chronological order.
        """
        duration = await self.duration_for(service)
        end = start + timedelta(minutes=duration)
        local_day = start.astimezone(studio_tz()).date()
        opens, closes = self._business_window(local_day)

        try:
            busy = await self._busy_intervals(min(opens, start), max(closes, end))
        except CalendarError as exc:
            logger.error("Calendar lookup failed for %s: %s", start.isoformat(), exc)
            return Outcome.fallback(
                AvailabilityResult(
                    available=False,
                    requested_start=start,
                    duration_minutes=duration,
                    suggestions=[],
                    message="calendar_unavailable",
                ),
                exc,
            )

        within_hours = opens <= start and end <= closes
        in_past = now is not None and start < now
        if within_hours and not in_past and not _overlaps(start, end, busy):
            return Outcome.ok(AvailabilityResult(
                available=True,
                requested_start=start,
                duration_minutes=duration,
                suggestions=[],
                message="available",
            ))

        if in_past:
            reason = "in_past"
        elif within_hours:
            reason = "conflict"
        else:
            reason = "outside_business_hours"
        suggestions = self._free_slots(local_day, duration, busy, not_before=now)
        logger.info("Slot %s unavailable (%s); %d alternatives", start.isoformat(), reason, len(suggestions))
        return Outcome.ok(AvailabilityResult(
            available=False,
            requested_start=start,
            duration_minutes=duration,
            suggestions=suggestions[: settings.booking.max_suggestions],
            message=reason,
        ))

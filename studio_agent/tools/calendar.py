"""
Studio calendar collaborator.

In production this would wrap a hosted calendar's free/busy API. The
conversational core treats the calendar as authoritative: lookup errors
are raised as ``CalendarError`` and never read as "the studio is free".
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class CalendarError(Exception):
    """Raised for network, auth or quota failures talking to the calendar."""


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    summary: str = ""


class CalendarService(Protocol):
    async def free_busy(self, start: datetime, end: datetime) -> list[BusyInterval]:
        ...

    async def create_event(self, start: datetime, end: datetime, summary: str) -> str:
        ...

    async def delete_event(self, event_id: str) -> None:
        ...


class InMemoryCalendar:
    """Calendar double holding events in memory.

    ``fail_with`` makes every call raise, to exercise the failure path.
    """

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self._events: dict[str, BusyInterval] = {}
        self.fail_with = fail_with

    def _check(self) -> None:
        if self.fail_with is not None:
            raise CalendarError(str(self.fail_with)) from self.fail_with

    async def free_busy(self, start: datetime, end: datetime) -> list[BusyInterval]:
        self._check()
        return sorted(
            (e for e in self._events.values() if e.start < end and start < e.end),
            key=lambda e: e.start,
        )

    async def create_event(self, start: datetime, end: datetime, summary: str) -> str:
        self._check()
        event_id = f"EVT-{uuid.uuid4().hex[:8]}"
        self._events[event_id] = BusyInterval(start=start, end=end, summary=summary)
        logger.info("Calendar event %s created: %s", event_id, summary)
        return event_id

    async def delete_event(self, event_id: str) -> None:
        self._check()
        self._events.pop(event_id, None)

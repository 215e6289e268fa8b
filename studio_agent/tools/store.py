"""
In-memory persistence for customers, drafts, bookings and learning data.

In production this would sit on a relational database; every method is a
coroutine so a database-backed store can replace it without touching the
callers. Writes are upserts keyed by natural identifiers (customer id,
package name, customer id for drafts).

The only invariant enforced here is the booking one: no two confirmed
bookings may overlap. It is checked at write time and violations raise
``BookingConflictError`` for the caller to turn into alternatives.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from studio_agent.schemas.booking_schema import (
    Booking,
    BookingDraft,
    BookingStatus,
    Package,
)
from studio_agent.schemas.conversation_schema import (
    ConversationLearningRecord,
    Escalation,
    EscalationStatus,
    HistoryMessage,
    KnowledgeEntry,
    SessionNote,
)
from studio_agent.schemas.customer_schema import Customer, CustomerMemory

logger = logging.getLogger(__name__)


class BookingConflictError(Exception):
    """Raised when a confirmed booking would overlap another confirmed booking."""

    def __init__(self, booking: Booking, conflicting: Booking) -> None:
        super().__init__(
            f"Booking {booking.id} at {booking.start.isoformat()} overlaps "
            f"confirmed booking {conflicting.id}"
        )
        self.booking = booking
        self.conflicting = conflicting


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


class InMemoryStore:
    """Dictionary-backed store with the persistence contract the core expects."""

    def __init__(self) -> None:
        self._customers: dict[str, Customer] = {}
        self._channel_index: dict[tuple[str, str], str] = {}
        self._memories: dict[str, CustomerMemory] = {}
        self._packages: dict[str, Package] = {}
        self._drafts: dict[str, BookingDraft] = {}
        self._bookings: dict[str, Booking] = {}
        self._escalations: dict[str, Escalation] = {}
        self._learning: list[ConversationLearningRecord] = []
        self._notes: list[SessionNote] = []
        self._knowledge: dict[str, KnowledgeEntry] = {}
        self._history: dict[str, list[HistoryMessage]] = {}
        self._sessions: dict[str, tuple[datetime, datetime, int]] = {}

    # --- Customers ---

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        customer = self._customers.get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    async def find_customer_by_channel(self, channel: str, external_id: str) -> Optional[Customer]:
        customer_id = self._channel_index.get((channel, external_id))
        return await self.get_customer(customer_id) if customer_id else None

    async def save_customer(self, customer: Customer) -> Customer:
        self._customers[customer.id] = customer.model_copy(deep=True)
        for channel, external_id in customer.channel_ids.items():
            self._channel_index[(channel, external_id)] = customer.id
        return customer

    async def list_customers(self) -> list[Customer]:
        return [c.model_copy(deep=True) for c in self._customers.values()]

    # --- Memory ---

    async def get_memory(self, customer_id: str) -> Optional[CustomerMemory]:
        memory = self._memories.get(customer_id)
        return memory.model_copy(deep=True) if memory else None

    async def save_memory(self, memory: CustomerMemory) -> CustomerMemory:
        memory.updated_at = datetime.now(timezone.utc)
        self._memories[memory.customer_id] = memory.model_copy(deep=True)
        return memory

    # --- Packages ---

    async def list_packages(self) -> list[Package]:
        return sorted(self._packages.values(), key=lambda p: p.price)

    async def upsert_package(self, package: Package) -> Package:
        self._packages[package.name] = package
        return package

    def seed_packages(self, packages: list[Package]) -> None:
        """Synchronous seeding for demos and test fixtures."""
        for package in packages:
            self._packages[package.name] = package

    # --- Drafts ---

    async def get_draft(self, customer_id: str) -> Optional[BookingDraft]:
        draft = self._drafts.get(customer_id)
        return draft.model_copy(deep=True) if draft else None

    async def save_draft(self, draft: BookingDraft) -> BookingDraft:
        draft.updated_at = datetime.now(timezone.utc)
        self._drafts[draft.customer_id] = draft.model_copy(deep=True)
        return draft

    async def delete_draft(self, customer_id: str) -> None:
        self._drafts.pop(customer_id, None)

    # --- Bookings ---

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    async def find_confirmed_overlapping(
        self, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> list[Booking]:
        return sorted(
            (
                b.model_copy(deep=True)
                for b in self._bookings.values()
                if b.status == BookingStatus.CONFIRMED
                and b.id != exclude_id
                and b.overlaps(start, end)
            ),
            key=lambda b: b.start,
        )

    async def list_confirmed_between(self, start: datetime, end: datetime) -> list[Booking]:
        return await self.find_confirmed_overlapping(start, end)

    async def list_bookings_for_customer(self, customer_id: str) -> list[Booking]:
        return [b.model_copy(deep=True) for b in self._bookings.values() if b.customer_id == customer_id]

    async def save_booking(self, booking: Booking) -> Booking:
        """Insert or update a booking, enforcing the no-overlap invariant."""
        if booking.status == BookingStatus.CONFIRMED:
            clashes = await self.find_confirmed_overlapping(
                booking.start, booking.end, exclude_id=booking.id
            )
            if clashes:
                raise BookingConflictError(booking, clashes[0])
        self._bookings[booking.id] = booking.model_copy(deep=True)
        logger.info(
            "Booking saved: %s %s at %s (%s)",
            booking.id, booking.service, booking.start.isoformat(), booking.status.value,
        )
        return booking

    # --- Escalations ---

    async def save_escalation(self, escalation: Escalation) -> Escalation:
        self._escalations[escalation.id] = escalation.model_copy(deep=True)
        return escalation

    async def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        escalation = self._escalations.get(escalation_id)
        return escalation.model_copy(deep=True) if escalation else None

    async def list_escalations(
        self, customer_id: Optional[str] = None, status: Optional[EscalationStatus] = None
    ) -> list[Escalation]:
        return [
            e.model_copy(deep=True)
            for e in self._escalations.values()
            if (customer_id is None or e.customer_id == customer_id)
            and (status is None or e.status == status)
        ]

    # --- Learning records ---

    async def add_learning_record(self, record: ConversationLearningRecord) -> None:
        self._learning.append(record.model_copy(deep=True))

    async def update_learning_record(self, record: ConversationLearningRecord) -> None:
        for i, existing in enumerate(self._learning):
            if existing.id == record.id:
                self._learning[i] = record.model_copy(deep=True)
                return
        raise KeyError(f"Learning record {record.id} not found")

    async def list_learning_records(
        self,
        intent: Optional[str] = None,
        since: Optional[datetime] = None,
        customer_id: Optional[str] = None,
    ) -> list[ConversationLearningRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._learning
            if (intent is None or r.extracted_intent == intent)
            and (since is None or r.created_at >= since)
            and (customer_id is None or r.customer_id == customer_id)
        ]

    # --- Session notes ---

    async def add_session_note(self, note: SessionNote) -> SessionNote:
        self._notes.append(note.model_copy(deep=True))
        return note

    async def list_session_notes(self, customer_id: str) -> list[SessionNote]:
        return [n.model_copy(deep=True) for n in self._notes if n.customer_id == customer_id]

    # --- Knowledge base ---

    async def get_knowledge(self, question: str) -> Optional[KnowledgeEntry]:
        return self._knowledge.get(question.lower().strip())

    async def save_knowledge(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        self._knowledge[entry.question.lower().strip()] = entry
        return entry

    async def list_knowledge(self) -> list[KnowledgeEntry]:
        return list(self._knowledge.values())

    # --- Conversation history ---

    async def get_history(self, customer_id: str) -> list[HistoryMessage]:
        return [dict(m) for m in self._history.get(customer_id, [])]  # type: ignore[misc]

    async def save_history(
        self, customer_id: str, history: list[HistoryMessage], limit: int
    ) -> list[HistoryMessage]:
        trimmed = list(history)[-limit:]
        self._history[customer_id] = trimmed
        return trimmed

    async def count_turn(self, customer_id: str, now: datetime, session_gap: timedelta) -> int:
        """Count a user turn and return the length of the current session.

        A session restarts when the previous turn is older than ``session_gap``.
        """
        started, last_seen, count = self._sessions.get(customer_id, (now, now, 0))
        if now - last_seen > session_gap:
            started, count = now, 0
        count += 1
        self._sessions[customer_id] = (started, now, count)
        return count

    async def session_elapsed(self, customer_id: str, now: datetime) -> float:
        """Seconds since the first turn of the customer's current session."""
        session = self._sessions.get(customer_id)
        if session is None:
            return 0.0
        return max((now - session[0]).total_seconds(), 0.0)

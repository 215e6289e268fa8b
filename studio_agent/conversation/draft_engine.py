"""
Booking draft engine: Extract -> Normalize -> Merge -> Check -> Promote.

Owns the per-customer in-progress booking. Extracted fields are
validated one by one and only valid values are merged, so a bad phone
number never wipes out a good date. A draft is promoted to a Booking
only when every field is present and the slot passed availability
checking at creation time; the store enforces the no-overlap invariant
again when the booking is confirmed.

Usage:
    engine = BookingDraftEngine(store, catalog, availability, payments, llm)
    draft = await engine.get_or_create(customer_id)
    merge = await engine.merge(draft, Extraction(service="Gold Package"))
    result = await engine.check_and_complete(draft, confirmed=False)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Callable, Optional

from dateutil import parser as date_parser

from studio_agent.config import settings
from studio_agent.conversation.state_machine import BookingStepper, DraftTrigger
from studio_agent.outcome import Outcome
from studio_agent.prompts.prompt_templates import build_extraction_prompt
from studio_agent.schemas.booking_schema import (
    Booking,
    BookingDraft,
    BookingStatus,
    DraftStep,
)
from studio_agent.tools.availability import AvailabilityChecker, local_datetime, studio_tz
from studio_agent.tools.calendar import CalendarError, CalendarService
from studio_agent.tools.catalog import PackageCatalog, package_deposit, resolve_package_name
from studio_agent.tools.llm import LanguageModel, LanguageModelError
from studio_agent.tools.payments import PaymentError, PaymentGateway
from studio_agent.tools.store import BookingConflictError, new_id
from studio_agent.utils import is_valid_phone, normalize_phone

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
SUB_INTENTS = ("start", "provide", "confirm", "cancel", "reschedule", "unknown")

TIME_OF_DAY_DEFAULTS: dict[str, str] = {
    "morning": "10:00",
    "afternoon": "14:00",
    "evening": "17:00",
}

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK_RE = re.compile(r"^\d{1,2}:\d{2}$")


class CompletionAction(str, Enum):
    INCOMPLETE = "incomplete"
    UNAVAILABLE = "unavailable"
    CONFLICT = "conflict"
    READY_FOR_DEPOSIT = "ready_for_deposit"
    PAYMENT_INITIATED = "payment_initiated"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Extraction:
    """Booking fields the model found in one message."""
    service: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    name: Optional[str] = None
    recipient_phone: Optional[str] = None
    sub_intent: str = "unknown"

    @classmethod
    def from_model_output(cls, data: dict[str, Any]) -> "Extraction":
        def text(key: str) -> Optional[str]:
            value = data.get(key)
            return value.strip() or None if isinstance(value, str) else None

        sub_intent = data.get("subIntent", data.get("sub_intent"))
        return cls(
            service=text("service"),
            date=text("date"),
            time=text("time"),
            name=text("name"),
            recipient_phone=text("recipientPhone") or text("recipient_phone"),
            sub_intent=sub_intent if sub_intent in SUB_INTENTS else "unknown",
        )

    def has_fields(self) -> bool:
        return any((self.service, self.date, self.time, self.name, self.recipient_phone))


@dataclass
class MergeResult:
    """Which extracted values were merged and which were refused (with why)."""
    applied: dict[str, str] = field(default_factory=dict)
    rejected: dict[str, str] = field(default_factory=dict)


@dataclass
class CompletionResult:
    action: CompletionAction
    draft: Optional[BookingDraft] = None
    booking: Optional[Booking] = None
    alternatives: list[datetime] = field(default_factory=list)
    deposit: float = 0.0
    message: str = ""


def normalize_date(value: str, today: date) -> Optional[str]:
    """Normalize a date to ``YYYY-MM-DD``. Returns None when unparseable."""
    value = value.strip()
    if _ISO_DATE_RE.match(value):
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            return None
    try:
        parsed = date_parser.parse(
            value, fuzzy=True, default=datetime.combine(today, time())
        )
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def normalize_time(value: str) -> Optional[str]:
    """Normalize a time to 24h ``HH:MM``; part-of-day words map to defaults."""
    lowered = value.strip().lower()
    for word, default in TIME_OF_DAY_DEFAULTS.items():
        if word in lowered and not re.search(r"\d", lowered):
            return default
    if _CLOCK_RE.match(lowered):
        hours, minutes = (int(p) for p in lowered.split(":"))
        if hours < 24 and minutes < 60:
            return f"{hours:02d}:{minutes:02d}"
        return None
    try:
        parsed = date_parser.parse(lowered, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    return parsed.strftime("%H:%M")


class BookingDraftEngine:
    """Owns draft state transitions and the promotion to a Booking."""

    def __init__(
        self,
        store,
        catalog: PackageCatalog,
        availability: AvailabilityChecker,
        payments: PaymentGateway,
        llm: LanguageModel,
        calendar: Optional[CalendarService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._availability = availability
        self._payments = payments
        self._llm = llm
        self._calendar = calendar
        self._clock = clock or (lambda: datetime.now(studio_tz()))

    def now(self) -> datetime:
        return self._clock()

    # --- Draft lifecycle ---

    async def get(self, customer_id: str) -> Optional[BookingDraft]:
        return await self._store.get_draft(customer_id)

    async def get_or_create(self, customer_id: str) -> BookingDraft:
        draft = await self._store.get_draft(customer_id)
        if draft is None:
            draft = BookingDraft(customer_id=customer_id)
            await self._store.save_draft(draft)
            logger.info("New booking draft for %s", customer_id)
        return draft

    async def discard(self, customer_id: str) -> None:
        await self._store.delete_draft(customer_id)

    async def save(self, draft: BookingDraft) -> BookingDraft:
        return await self._store.save_draft(draft)

    async def cancel(self, draft: BookingDraft) -> CompletionResult:
        stepper = BookingStepper(draft)
        if not stepper.is_terminal():
            stepper.cancel()
        if draft.booking_id:
            booking = await self._store.get_booking(draft.booking_id)
            if booking is not None and booking.status == BookingStatus.PROVISIONAL:
                booking.status = BookingStatus.CANCELLED
                await self._store.save_booking(booking)
        await self.discard(draft.customer_id)
        logger.info("Draft cancelled for %s", draft.customer_id)
        return CompletionResult(action=CompletionAction.CANCELLED, draft=None)

    # --- Extraction ---

    async def extract(
        self, message: str, history: Optional[list[dict[str, str]]] = None
    ) -> Outcome[Extraction]:
        """Ask the model for booking fields; degrades to ``sub_intent='unknown'``."""
        now = self.now()
        system = build_extraction_prompt(now.date(), settings.business.timezone)
        messages = [*(history or [])[-settings.booking.history_limit:], {"role": "user", "content": message}]
        try:
            data = await self._llm.complete_json(
                system, messages, temperature=0, model=settings.model.extraction_model
            )
        except LanguageModelError as exc:
            logger.warning("Booking extraction degraded: %s", exc)
            return Outcome.fallback(Extraction(), exc)
        extraction = Extraction.from_model_output(data)
        if extraction.has_fields():
            logger.debug("Extracted from %r: %s", message, extraction)
        return Outcome.ok(extraction)

    # --- Merge ---

    async def merge(self, draft: BookingDraft, extraction: Extraction) -> MergeResult:
        """Validate extracted values and merge the valid ones into ``draft``.

        Fields absent from the extraction keep their current values.
        """
        result = MergeResult()
        today = self.now().date()

        if extraction.service:
            packages = await self._catalog.get_packages()
            name = resolve_package_name(extraction.service, packages)
            if name:
                result.applied["service"] = name
            else:
                result.rejected["service"] = f"'{extraction.service}' isn't one of our packages."

        if extraction.date:
            normalized = normalize_date(extraction.date, today)
            if normalized is None:
                result.rejected["date"] = f"I couldn't understand the date '{extraction.date}'."
            elif date.fromisoformat(normalized) < today:
                result.rejected["date"] = "That date has already passed."
            else:
                result.applied["date"] = normalized

        if extraction.time:
            normalized = normalize_time(extraction.time)
            if normalized is None:
                result.rejected["time"] = f"I couldn't understand the time '{extraction.time}'."
            else:
                result.applied["time"] = normalized

        if extraction.name:
            if len(extraction.name.strip()) >= MIN_NAME_LENGTH:
                result.applied["name"] = extraction.name.strip().title()
            else:
                result.rejected["name"] = "That name looks too short."

        if extraction.recipient_phone:
            if is_valid_phone(extraction.recipient_phone):
                result.applied["recipient_phone"] = normalize_phone(extraction.recipient_phone)
            else:
                result.rejected["recipient_phone"] = (
                    f"The number '{extraction.recipient_phone}' doesn't look like a valid "
                    "phone number (e.g. 0712345678)."
                )

        for name, value in result.applied.items():
            setattr(draft, name, value)
        if result.rejected:
            logger.debug("Rejected draft fields: %s", result.rejected)
        return result

    def sync_step(self, draft: BookingDraft) -> DraftStep:
        return BookingStepper(draft).sync()

    # --- Completion ---

    async def check_slot(self, draft: BookingDraft) -> Optional[CompletionResult]:
        """Availability check for a draft holding service, date and time.

        Returns None when the slot is free.
        """
        start = local_datetime(draft.date, draft.time)
        outcome = await self._availability.check(start, draft.service, now=self.now())
        if outcome.degraded:
            return CompletionResult(
                action=CompletionAction.FAILED,
                draft=draft,
                message="calendar_unavailable",
            )
        availability = outcome.value
        if availability["available"]:
            return None
        return CompletionResult(
            action=CompletionAction.UNAVAILABLE,
            draft=draft,
            alternatives=availability["suggestions"],
            message=availability["message"],
        )

    async def check_and_complete(self, draft: BookingDraft, confirmed: bool) -> CompletionResult:
        """Drive a draft toward a provisional booking and a deposit request."""
        stepper = BookingStepper(draft)
        stepper.sync()
        package = await self._catalog.get_by_name(draft.service) if draft.service else None
        deposit = package_deposit(package)

        if not draft.is_complete():
            return CompletionResult(action=CompletionAction.INCOMPLETE, draft=draft, deposit=deposit)

        if draft.step == DraftStep.CONFIRM_DEPOSIT and draft.booking_id:
            return CompletionResult(
                action=CompletionAction.PAYMENT_INITIATED, draft=draft, deposit=deposit,
                booking=await self._store.get_booking(draft.booking_id),
            )

        slot = await self.check_slot(draft)
        if slot is not None and slot.action == CompletionAction.FAILED:
            return slot
        if slot is not None:
            # A slot that was free at review and is gone at CONFIRM was taken in between.
            action = CompletionAction.CONFLICT if confirmed else CompletionAction.UNAVAILABLE
            return CompletionResult(
                action=action, draft=draft, alternatives=slot.alternatives, deposit=deposit
            )

        if not confirmed:
            return CompletionResult(action=CompletionAction.READY_FOR_DEPOSIT, draft=draft, deposit=deposit)

        stepper.transition(DraftTrigger.CUSTOMER_CONFIRMED)
        start = local_datetime(draft.date, draft.time)
        booking = Booking(
            id=new_id("BK"),
            customer_id=draft.customer_id,
            service=draft.service,
            start=start,
            duration_minutes=await self._availability.duration_for(draft.service),
            status=BookingStatus.PROVISIONAL,
            name=draft.name,
            phone=draft.recipient_phone,
            deposit=deposit,
        )
        await self._store.save_booking(booking)

        try:
            request = await self._payments.initiate_deposit(booking.id, booking.phone, deposit)
        except PaymentError as exc:
            logger.error("Deposit request failed for %s: %s", booking.id, exc)
            booking.status = BookingStatus.CANCELLED
            await self._store.save_booking(booking)
            stepper.transition(DraftTrigger.PAYMENT_FAILED)
            return CompletionResult(action=CompletionAction.FAILED, draft=draft, deposit=deposit, message=str(exc))

        booking.payment_reference = request.reference
        await self._store.save_booking(booking)
        draft.booking_id = booking.id
        logger.info("Deposit requested for booking %s (%s)", booking.id, request.reference)
        return CompletionResult(
            action=CompletionAction.PAYMENT_INITIATED, draft=draft, booking=booking, deposit=deposit
        )

    async def confirm_payment(self, booking_id: str) -> CompletionResult:
        """Promote a provisional booking after the deposit clears.

        Re-checks the no-overlap invariant at write time; a booking that
        lost its slot in the meantime is cancelled and alternatives offered.
        """
        booking = await self._store.get_booking(booking_id)
        if booking is None:
            raise KeyError(f"Booking {booking_id} not found")
        draft = await self._store.get_draft(booking.customer_id)

        if booking.status == BookingStatus.CONFIRMED:
            return CompletionResult(
                action=CompletionAction.CONFIRMED, booking=booking, message="already_confirmed"
            )
        if booking.status != BookingStatus.PROVISIONAL:
            logger.warning(
                "Payment received for %s booking %s; not confirming", booking.status.value, booking_id
            )
            return CompletionResult(
                action=CompletionAction.FAILED,
                booking=booking,
                deposit=booking.deposit,
                message=f"Booking {booking_id} is {booking.status.value}",
            )
        owns_draft = draft is not None and draft.booking_id == booking.id

        booking.status = BookingStatus.CONFIRMED
        try:
            await self._store.save_booking(booking)
        except BookingConflictError:
            logger.warning("Booking %s lost its slot before payment cleared", booking_id)
            booking.status = BookingStatus.CANCELLED
            await self._store.save_booking(booking)
            outcome = await self._availability.check(booking.start, booking.service, now=self.now())
            if owns_draft:
                BookingStepper(draft).transition(DraftTrigger.SLOT_TAKEN)
                draft.time = None
                draft.booking_id = None
                draft.offered_slots = [s.isoformat() for s in outcome.value["suggestions"]]
                await self._store.save_draft(draft)
            return CompletionResult(
                action=CompletionAction.CONFLICT,
                draft=draft if owns_draft else None,
                booking=booking,
                alternatives=outcome.value["suggestions"],
                deposit=booking.deposit,
            )

        if self._calendar is not None:
            try:
                booking.calendar_event_id = await self._calendar.create_event(
                    booking.start, booking.end, f"{booking.service} - {booking.name}"
                )
                await self._store.save_booking(booking)
            except CalendarError:
                logger.exception("Calendar event creation failed for %s", booking.id)

        if owns_draft:
            BookingStepper(draft).transition(DraftTrigger.PAYMENT_CONFIRMED)
            await self.discard(booking.customer_id)
        logger.info("Booking %s confirmed", booking.id)
        return CompletionResult(action=CompletionAction.CONFIRMED, booking=booking, deposit=booking.deposit)


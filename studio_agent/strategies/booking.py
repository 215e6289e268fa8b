"""
Booking strategy: drives the customer's draft toward a confirmed booking.

Catch-all for active drafts and explicit booking intent, so it runs last.
Per turn:
  1. decline bare acknowledgments that follow an informational reply
  2. cancel / numbered slot choice / edit requests on the active draft
  3. a new booking request discards the previous draft
  4. extract fields and merge the valid ones
  5. service + date + time present: check availability before anything else
  6. ask for the next missing detail, or hand over to completion
     (review -> CONFIRM -> deposit request)

The existing draft is discarded only when the message starts a new
booking (``start`` sub-intent or phrasing like "new booking"). Any
other booking turn keeps and extends the draft, so a message that adds
no usable field leaves the draft unchanged.
"""

import re
from datetime import datetime
from typing import Optional

from studio_agent.conversation.draft_engine import CompletionAction, CompletionResult, Extraction
from studio_agent.conversation.state_machine import BookingStepper, InvalidTransitionError
from studio_agent.logging_context import get_turn_logger
from studio_agent.prompts.prompt_templates import (
    build_calendar_failed_reply,
    build_collect_reply,
    build_conflict_reply,
    build_edit_reply,
    build_payment_failed_reply,
    build_payment_initiated_reply,
    build_ready_for_deposit_reply,
    build_unavailable_reply,
    format_for_platform,
)
from studio_agent.schemas.booking_schema import BookingDraft, DraftStep
from studio_agent.schemas.conversation_schema import Intent
from studio_agent.strategies.base import (
    WANTS_TO_START_BOOKING_RE,
    ResponseStrategy,
    StrategyContext,
    StrategyResult,
)
from studio_agent.utils import is_valid_phone, normalize_phone

logger = get_turn_logger(__name__)

ACKNOWLEDGMENT_RE = re.compile(
    r"^\s*(?:ok(?:ay)?|sure|alright|noted|cool|great|perfect|thanks?(?: you)?|thank you"
    r"|i'?ll (?:come|be there|bring)[^?]*|i will (?:come|be there|bring)[^?]*)[\s.!]*$",
    re.IGNORECASE,
)
# An assistant turn that was steering the booking (not an informational answer).
BOOKING_PROMPT_RE = re.compile(
    r"\b(?:package|date|time|name|phone|confirm|deposit|book(?:ing)?)\b", re.IGNORECASE
)
CANCEL_RE = re.compile(
    r"\b(?:cancel(?: (?:it|that|the booking|my booking))?|forget it|never ?mind)\b", re.IGNORECASE
)
EDIT_RE = re.compile(
    r"\b(?:edit|change|update|modify)\s+(?:the\s+|my\s+)?(service|package|date|time|name|phone)\b",
    re.IGNORECASE,
)
SLOT_CHOICE_RE = re.compile(r"^\s*(?:option\s*|number\s*|#)?(\d{1,2})\s*[.)]?\s*$", re.IGNORECASE)
CONFIRM_RE = re.compile(r"^\s*\*?confirm(?:ed)?\*?\b", re.IGNORECASE)
NEW_BOOKING_RE = re.compile(
    r"\b(?:i want|i'd like|i would like|i need|can i|let me|let's)\s+(?:to\s+)?(?:make\s+a\s+|start\s+a\s+)?"
    r"(?:new\s+)?book(?:ing)?\b|\bstart (?:a )?(?:new )?booking\b|\bnew booking\b",
    re.IGNORECASE,
)

# Draft fields cleared by an edit request, so the collection step asks again.
EDIT_FIELDS: dict[str, tuple[str, ...]] = {
    "service": ("service",),
    "package": ("service",),
    "date": ("date",),
    "time": ("time",),
    "name": ("name",),
    "phone": ("recipient_phone",),
}
EXTRACTION_FIELDS: dict[str, str] = {
    "service": "service",
    "package": "service",
    "date": "date",
    "time": "time",
    "name": "name",
    "phone": "recipient_phone",
}


class BookingStrategy(ResponseStrategy):
    """Collects booking details and promotes the draft."""

    name = "booking"
    priority = 10

    def can_handle(self, ctx: StrategyContext) -> bool:
        return (
            ctx.has_draft
            or ctx.intent == Intent.BOOKING
            or bool(WANTS_TO_START_BOOKING_RE.search(ctx.message))
        )

    async def generate_response(self, ctx: StrategyContext) -> Optional[StrategyResult]:
        if self._is_acknowledgment(ctx):
            logger.info("Acknowledgment after an informational reply; declining")
            return None

        engine = self.deps.drafts
        draft = ctx.draft

        if draft is not None and CANCEL_RE.search(ctx.message):
            return await self._cancel(ctx, draft)

        if draft is not None and draft.offered_slots:
            chosen = self._chosen_slot(ctx.message, draft)
            if chosen is not None:
                draft.date = chosen.strftime("%Y-%m-%d")
                draft.time = chosen.strftime("%H:%M")
                draft.offered_slots = []
                logger.info("Customer picked offered slot %s", chosen.isoformat())
                return await self._advance(ctx, draft, Extraction(sub_intent="provide"), {})

        extraction = (await engine.extract(ctx.message, ctx.history)).value

        if draft is not None and extraction.sub_intent == "cancel":
            return await self._cancel(ctx, draft)

        if draft is not None and (
            extraction.sub_intent == "start" or NEW_BOOKING_RE.search(ctx.message)
        ):
            logger.info("New booking request; discarding previous draft")
            if draft.booking_id:
                await engine.cancel(draft)
            else:
                await engine.discard(ctx.customer_id)
            draft = None

        draft = draft or await engine.get_or_create(ctx.customer_id)

        edit = EDIT_RE.search(ctx.message)
        if edit and not getattr(extraction, EXTRACTION_FIELDS[edit.group(1).lower()]):
            return await self._edit(ctx, draft, edit.group(1).lower())

        merge = await engine.merge(draft, extraction)
        if (
            extraction.sub_intent == "confirm"
            and not draft.recipient_phone
            and draft.name
            and ctx.customer is not None
            and ctx.customer.phone
            and is_valid_phone(ctx.customer.phone)
        ):
            draft.recipient_phone = normalize_phone(ctx.customer.phone)
            logger.info("Using the customer's known phone number for the booking")

        return await self._advance(ctx, draft, extraction, merge.rejected)

    async def _advance(
        self,
        ctx: StrategyContext,
        draft: BookingDraft,
        extraction: Extraction,
        rejected: dict[str, str],
    ) -> StrategyResult:
        engine = self.deps.drafts
        engine.sync_step(draft)

        # Complete drafts are checked inside check_and_complete.
        if draft.service and draft.date and draft.time and not draft.is_complete():
            slot = await engine.check_slot(draft)
            if slot is not None:
                await engine.save(draft)
                return self._completion_reply(ctx, slot)

        if not draft.is_complete():
            await engine.save(draft)
            reply = build_collect_reply(draft, rejected)
            return self._reply(ctx, reply, draft, CompletionAction.INCOMPLETE.value)

        confirmed = extraction.sub_intent == "confirm" or bool(CONFIRM_RE.search(ctx.message))
        completion = await engine.check_and_complete(draft, confirmed=confirmed)
        if completion.action == CompletionAction.CONFLICT:
            draft.offered_slots = [slot.isoformat() for slot in completion.alternatives]
        await engine.save(draft)
        return self._completion_reply(ctx, completion)

    def _completion_reply(self, ctx: StrategyContext, completion: CompletionResult) -> StrategyResult:
        draft = completion.draft
        action = completion.action
        if action == CompletionAction.UNAVAILABLE:
            reply = build_unavailable_reply(completion.alternatives)
        elif action == CompletionAction.CONFLICT:
            reply = build_conflict_reply(completion.alternatives)
        elif action == CompletionAction.READY_FOR_DEPOSIT:
            reply = build_ready_for_deposit_reply(draft, completion.deposit)
        elif action == CompletionAction.PAYMENT_INITIATED:
            reply = build_payment_initiated_reply(completion.deposit, draft.recipient_phone)
        elif action == CompletionAction.FAILED and completion.message == "calendar_unavailable":
            reply = build_calendar_failed_reply()
        elif action == CompletionAction.FAILED:
            reply = build_payment_failed_reply()
        else:
            reply = build_collect_reply(draft, {})
        return self._reply(ctx, reply, draft, action.value)

    async def _cancel(self, ctx: StrategyContext, draft: BookingDraft) -> StrategyResult:
        await self.deps.drafts.cancel(draft)
        reply = (
            "No problem, I've cancelled your booking request. Whenever you're ready to "
            "book, just let me know! 💖"
        )
        return self._reply(ctx, reply, None, CompletionAction.CANCELLED.value)

    async def _edit(self, ctx: StrategyContext, draft: BookingDraft, field_name: str) -> StrategyResult:
        engine = self.deps.drafts
        if draft.booking_id:
            reply = (
                "Your deposit request has already been sent. If you'd like to change your "
                "booking, reply 'cancel' and we'll start again."
            )
            return self._reply(ctx, reply, draft, "edit_refused")
        if draft.step == DraftStep.REVIEW:
            try:
                BookingStepper(draft).request_edit(field_name)
            except InvalidTransitionError:
                logger.warning("Edit of %s refused at step %s", field_name, draft.step.value)
        for attr in EDIT_FIELDS[field_name]:
            setattr(draft, attr, None)
        draft.offered_slots = []
        engine.sync_step(draft)
        await engine.save(draft)
        return self._reply(ctx, build_edit_reply(field_name), draft, "edit")

    @staticmethod
    def _chosen_slot(message: str, draft: BookingDraft) -> Optional[datetime]:
        match = SLOT_CHOICE_RE.match(message)
        if not match:
            return None
        index = int(match.group(1)) - 1
        if not 0 <= index < len(draft.offered_slots):
            return None
        return datetime.fromisoformat(draft.offered_slots[index])

    @staticmethod
    def _is_acknowledgment(ctx: StrategyContext) -> bool:
        if not ACKNOWLEDGMENT_RE.match(ctx.message):
            return False
        last_assistant = ctx.recent_assistant_turns(2)
        if not last_assistant:
            return False
        return not BOOKING_PROMPT_RE.search(last_assistant[-1])

    def _reply(self, ctx: StrategyContext, reply: str, draft, action: str) -> StrategyResult:
        return self.result(ctx, format_for_platform(reply, ctx.platform), draft, action)

"""
Conversation engine: one inbound message in, one validated reply out.

Turn pipeline (operations for one customer are serialized):
  1. resolve the customer and skip when AI is disabled or paused
  2. enforce the daily token budget
  3. classify, and hand off to a human when a trigger fires
  4. route to a strategy, personalize, run the quality gate
  5. persist history, record learning and memory, deliver
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from studio_agent.config import settings
from studio_agent.conversation.classifier import IntentClassifier
from studio_agent.conversation.draft_engine import BookingDraftEngine, CompletionAction, CompletionResult
from studio_agent.conversation.escalation import EscalationManager
from studio_agent.conversation.guardrails import GuardrailPipeline
from studio_agent.conversation.quality_gate import QualityContext, ResponseQualityGate, ValidationResult
from studio_agent.learning.memory import CustomerMemoryStore, describe_context, detect_communication_style
from studio_agent.learning.personalization import adapt_response, extract_preferences, match_emotional_tone
from studio_agent.learning.recorder import ConversationRecorder
from studio_agent.logging_context import get_turn_logger, set_customer_id
from studio_agent.prompts.prompt_templates import (
    CLARIFICATION_REPLY,
    TOKEN_LIMIT_REPLY,
    build_booking_confirmed_reply,
    build_conflict_reply,
    build_handoff_reply,
    format_for_platform,
)
from studio_agent.schemas.booking_schema import BookingDraft
from studio_agent.schemas.conversation_schema import (
    Escalation,
    EscalationType,
    HistoryMessage,
    Intent,
    IntentAnalysis,
)
from studio_agent.schemas.customer_schema import Customer, CommunicationStyle, RelationshipStage
from studio_agent.strategies.base import StrategyContext, StrategyDeps, updated_history
from studio_agent.strategies.registry import StrategyRouter
from studio_agent.tools.availability import AvailabilityChecker
from studio_agent.tools.calendar import CalendarService
from studio_agent.tools.catalog import PackageCatalog
from studio_agent.tools.llm import LanguageModel, estimate_tokens
from studio_agent.tools.messaging import DeliveryError, MessagingAdapter, NotificationSink
from studio_agent.tools.payments import PaymentGateway
from studio_agent.tools.store import new_id

logger = get_turn_logger(__name__)

INTERESTED_INTENTS = {Intent.BOOKING, Intent.PACKAGE_INQUIRY, Intent.PRICE_INQUIRY, Intent.AVAILABILITY}
STYLE_MIN_USER_TURNS = 3


@dataclass
class TurnResult:
    """What happened to one inbound message."""
    customer_id: str
    reply: Optional[str] = None
    action: str = "reply"
    strategy: str = ""
    analysis: Optional[IntentAnalysis] = None
    quality: Optional[ValidationResult] = None
    escalation: Optional[Escalation] = None
    draft: Optional[BookingDraft] = None
    delivered: bool = False
    delivery_error: Optional[str] = None
    skipped: Optional[str] = None


class ConversationEngine:
    """Wires collaborators together and runs the per-turn pipeline."""

    def __init__(
        self,
        store,
        llm: LanguageModel,
        payments: PaymentGateway,
        messaging: Optional[MessagingAdapter] = None,
        calendar: Optional[CalendarService] = None,
        sink: Optional[NotificationSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
        strategy_names: Optional[list[str]] = None,
    ) -> None:
        self.store = store
        self.messaging = messaging
        self.catalog = PackageCatalog(store)
        self.availability = AvailabilityChecker(store, self.catalog, calendar)
        self.drafts = BookingDraftEngine(
            store, self.catalog, self.availability, payments, llm, calendar=calendar, clock=clock
        )
        guardrails = GuardrailPipeline()
        self.escalations = EscalationManager(store, sink)
        self.classifier = IntentClassifier(llm, guardrails.handoff)
        self.quality = ResponseQualityGate(llm, guardrails)
        self.memory = CustomerMemoryStore(store)
        self.recorder = ConversationRecorder(store)
        deps = StrategyDeps(
            store=store, catalog=self.catalog, drafts=self.drafts,
            escalations=self.escalations, llm=llm,
        )
        self.router = StrategyRouter.from_registry(deps, strategy_names)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _serialized(self, key: str):
        """Hold the lock for ``key``; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # --- Inbound ---

    async def handle_message(self, channel: str, sender_id: str, text: str) -> TurnResult:
        """Process one inbound message; operations for one customer never interleave."""
        async with self._serialized(f"{channel}:{sender_id}"):
            customer = await self._ensure_customer(channel, sender_id)
        async with self._serialized(customer.id):
            # Re-read: an escalation or payment may have landed while waiting.
            customer = await self.store.get_customer(customer.id) or customer
            set_customer_id(customer.id)
            return await self._handle(customer, channel, text)

    async def _ensure_customer(self, channel: str, sender_id: str) -> Customer:
        customer = await self.store.find_customer_by_channel(channel, sender_id)
        if customer is None:
            customer = Customer(id=new_id("CUS"), channel_ids={channel: sender_id})
            await self.store.save_customer(customer)
            logger.info("New customer %s on %s", customer.id, channel)
        return customer

    async def _handle(self, customer: Customer, channel: str, text: str) -> TurnResult:
        if not customer.ai_enabled or customer.ai_paused:
            reason = "ai_disabled" if not customer.ai_enabled else "ai_paused"
            logger.info("Skipping AI reply: %s", reason)
            return TurnResult(customer_id=customer.id, action="skipped", skipped=reason)

        if self._over_token_budget(customer):
            logger.warning("Daily token budget exhausted")
            result = TurnResult(customer_id=customer.id, reply=TOKEN_LIMIT_REPLY, action="token_limit")
            await self._deliver(channel, customer, result)
            return result

        analysis: Optional[IntentAnalysis] = None
        draft: Optional[BookingDraft] = None
        try:
            now = self.drafts.now()
            conversation_length = await self.store.count_turn(
                customer.id, now, timedelta(minutes=settings.guardrails.session_gap_minutes)
            )
            history = await self.store.get_history(customer.id)
            profile = await self.memory.personalization_context(customer.id)
            profile_text = describe_context(profile)

            analysis = (
                await self.classifier.analyze(text, profile_text, conversation_length)
            ).value
            draft = await self.drafts.get(customer.id)

            if analysis.requires_human_handoff:
                result = await self._handoff(customer, text, analysis, history)
                result.draft = draft
            else:
                result = await self._respond(
                    customer, channel, text, analysis, draft, history, profile, profile_text
                )
            draft = result.draft

            await self._record_learning(customer.id, text, result, analysis, conversation_length)
            await self._update_memory(customer.id, text, analysis, draft, history)
        except Exception:
            logger.exception("Turn failed")
            await self._record_error(customer.id, text, analysis, draft)
            raise

        await self._charge_tokens(customer.id, estimate_tokens(text, result.reply or ""))
        await self._deliver(channel, customer, result)
        return result

    async def _escalate(self, customer_id: str, **kwargs) -> Optional[Escalation]:
        """Open an escalation; a failure is logged and never blocks the reply."""
        try:
            return await self.escalations.create_escalation(customer_id, **kwargs)
        except Exception:
            logger.exception("Escalation creation failed")
            return None

    async def _handoff(
        self,
        customer: Customer,
        text: str,
        analysis: IntentAnalysis,
        history: list[HistoryMessage],
    ) -> TurnResult:
        escalation = await self._escalate(
            customer.id,
            reason="Handoff triggered: " + ", ".join(analysis.handoff_reasons),
            type=EscalationType.AUTO_DETECTED,
            metadata={"message": text, "reasons": analysis.handoff_reasons},
        )
        reply = build_handoff_reply()
        await self.store.save_history(
            customer.id, updated_history(history, text, reply), settings.booking.history_limit
        )
        return TurnResult(
            customer_id=customer.id, reply=reply, action="handoff",
            analysis=analysis, escalation=escalation,
        )

    async def _respond(
        self,
        customer: Customer,
        channel: str,
        text: str,
        analysis: IntentAnalysis,
        draft: Optional[BookingDraft],
        history: list[HistoryMessage],
        profile: dict,
        profile_text: str,
    ) -> TurnResult:
        ctx = StrategyContext(
            customer_id=customer.id,
            message=text,
            analysis=analysis,
            draft=draft,
            history=history,
            platform=channel,
            personalization=profile_text,
            customer=customer,
        )
        routed = await self.router.route(ctx)

        reply = adapt_response(routed.reply, CommunicationStyle(profile["communication_style"]))
        reply = match_emotional_tone(reply, analysis.emotional_tone)

        validation = await self.quality.validate(reply, QualityContext(
            user_message=text,
            customer_id=customer.id,
            intent=analysis.primary_intent.value,
            emotional_tone=analysis.emotional_tone.value,
            history=list(history),
        ))

        escalation = None
        action = routed.action
        if validation.should_escalate:
            escalation = await self._escalate(
                customer.id,
                reason=f"Low quality response: {validation.reason}",
                type=EscalationType.AI_ESCALATION,
                metadata={"message": text, "overall": validation.score.overall},
            )
            reply = build_handoff_reply()
            action = "handoff"
        elif validation.rejected_early:
            reply = CLARIFICATION_REPLY
            action = "clarify"
        else:
            reply = validation.final_text(reply)
        reply = format_for_platform(reply, channel)

        await self.store.save_history(
            customer.id, updated_history(history, text, reply), settings.booking.history_limit
        )
        return TurnResult(
            customer_id=customer.id,
            reply=reply,
            action=action,
            strategy=routed.strategy,
            analysis=analysis,
            quality=validation,
            escalation=escalation,
            draft=routed.draft,
        )

    # --- Payments ---

    async def handle_payment_confirmation(self, booking_id: str) -> CompletionResult:
        """Promote a paid booking and tell the customer the outcome.

        Runs under the customer's lock so it never races an in-flight turn.
        """
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise KeyError(f"Booking {booking_id} not found")
        async with self._serialized(booking.customer_id):
            set_customer_id(booking.customer_id)
            return await self._confirm_payment(booking_id)

    async def _confirm_payment(self, booking_id: str) -> CompletionResult:
        completion = await self.drafts.confirm_payment(booking_id)
        booking = completion.booking
        if completion.message == "already_confirmed":
            return completion
        if completion.action == CompletionAction.CONFIRMED:
            await self.memory.add_lifetime_value(booking.customer_id, booking.deposit)
            await self.memory.update_relationship_stage(booking.customer_id, RelationshipStage.BOOKED)
            await self.memory.add_insight(booking.customer_id, f"Booked {booking.service}")
            reply = build_booking_confirmed_reply(booking)
        elif completion.action == CompletionAction.CONFLICT:
            reply = build_conflict_reply(completion.alternatives)
        else:
            return completion

        customer = await self.store.get_customer(booking.customer_id)
        channel = next(iter(customer.channel_ids), None) if customer else None
        if channel is not None:
            await self._deliver(channel, customer, TurnResult(customer_id=customer.id, reply=reply))
        return completion

    # --- Budget ---

    def _over_token_budget(self, customer: Customer) -> bool:
        today = self.drafts.now().date()
        if customer.token_day != today:
            return False
        return customer.tokens_used_today >= settings.booking.max_tokens_per_day

    async def _charge_tokens(self, customer_id: str, tokens: int) -> None:
        # Re-read: escalation may have paused the customer during this turn.
        customer = await self.store.get_customer(customer_id)
        if customer is None:
            return
        today = self.drafts.now().date()
        if customer.token_day != today:
            customer.token_day = today
            customer.tokens_used_today = 0
        customer.tokens_used_today += tokens
        customer.tokens_used_total += tokens
        await self.store.save_customer(customer)

    # --- Side effects ---

    async def _deliver(self, channel: str, customer: Customer, result: TurnResult) -> None:
        if self.messaging is None or not result.reply:
            return
        recipient = customer.channel_ids.get(channel, customer.id)
        try:
            await self.messaging.send(recipient, result.reply)
            result.delivered = True
        except DeliveryError as exc:
            logger.error("Delivery to %s on %s failed: %s", recipient, channel, exc)
            result.delivery_error = str(exc)

    async def _record_learning(
        self,
        customer_id: str,
        text: str,
        result: TurnResult,
        analysis: IntentAnalysis,
        conversation_length: int,
    ) -> None:
        try:
            elapsed = await self.store.session_elapsed(customer_id, self.drafts.now())
            await self.recorder.record_turn(
                customer_id,
                text,
                result.reply or "",
                intent=analysis.primary_intent,
                tone=analysis.emotional_tone,
                draft=result.draft,
                conversation_length=conversation_length,
                time_to_resolution_sec=elapsed,
            )
        except Exception:
            logger.exception("Learning record failed")

    async def _record_error(
        self,
        customer_id: str,
        text: str,
        analysis: Optional[IntentAnalysis],
        draft: Optional[BookingDraft],
    ) -> None:
        analysis = analysis or IntentAnalysis()
        try:
            await self.recorder.record_turn(
                customer_id, text, "", intent=analysis.primary_intent,
                tone=analysis.emotional_tone, draft=draft, error=True,
            )
        except Exception:
            logger.exception("Error record failed")

    async def _update_memory(
        self,
        customer_id: str,
        text: str,
        analysis: IntentAnalysis,
        draft: Optional[BookingDraft],
        history: list[HistoryMessage],
    ) -> None:
        try:
            packages = await self.catalog.get_packages()
            prefs = extract_preferences(text, packages)
            user_turns = [m["content"] for m in history if m["role"] == "user"] + [text]
            style = (
                detect_communication_style(user_turns)
                if len(user_turns) >= STYLE_MIN_USER_TURNS
                else None
            )
            if draft is not None and draft.service:
                prefs.packages.add(draft.service)
            if not prefs.is_empty() or style is not None:
                await self.memory.update_preferences(
                    customer_id,
                    packages=prefs.packages,
                    times=prefs.times,
                    budget_max=prefs.budget_max,
                    style=style,
                )
            if analysis.primary_intent in INTERESTED_INTENTS or draft is not None:
                await self.memory.update_relationship_stage(customer_id, RelationshipStage.INTERESTED)
            await self.memory.add_conversation_summary(customer_id, text[:100])
        except Exception:
            logger.exception("Memory update failed")

"""Shared test fixtures and helpers."""

import asyncio
from datetime import datetime
from typing import Any, Optional

import pytest

from studio_agent.conversation.guardrails import GuardrailPipeline
from studio_agent.engine import ConversationEngine
from studio_agent.prompts.system_prompts import (
    INTENT_CLASSIFIER_PROMPT,
    QUALITY_IMPROVEMENT_PROMPT,
    QUALITY_SCORING_PROMPT,
)
from studio_agent.schemas.booking_schema import Booking, BookingDraft, BookingStatus, DraftStep
from studio_agent.schemas.conversation_schema import HistoryMessage, IntentAnalysis
from studio_agent.schemas.customer_schema import Customer
from studio_agent.strategies.base import StrategyContext
from studio_agent.tools.availability import local_datetime, studio_tz
from studio_agent.tools.calendar import InMemoryCalendar
from studio_agent.tools.catalog import SEED_PACKAGES
from studio_agent.tools.llm import LanguageModelError
from studio_agent.tools.messaging import LoggingNotificationSink, OutboxAdapter
from studio_agent.tools.payments import InMemoryPaymentGateway
from studio_agent.tools.store import InMemoryStore

# Monday; the booking day used across tests is the day after.
NOW = datetime(2030, 3, 4, 8, 0, tzinfo=studio_tz())
BOOKING_DAY = "2030-03-05"

GOOD_SCORE = {"helpfulness": 9, "accuracy": 9, "empathy": 9, "clarity": 9}

CUSTOMER_ID = "CUS-TEST"
CHANNEL = "whatsapp"
SENDER_ID = "254700000001"


def fixed_clock() -> datetime:
    return NOW


class FakeLanguageModel:
    """Scripted stand-in for the language model.

    Calls are routed by system prompt to one of: ``classify``, ``extract``,
    ``score``, ``improve``, ``answer``. Each kind holds a queue of responses;
    the last one repeats. A kind with no scripted response raises
    ``LanguageModelError``, which exercises the degraded paths.
    """

    def __init__(self, fail: bool = False, delay: float = 0.0, **responses: Any) -> None:
        self.fail = fail
        self.delay = delay
        self.responses: dict[str, list[Any]] = {}
        for kind, value in responses.items():
            self.script(kind, value)
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    def script(self, kind: str, value: Any) -> None:
        self.responses[kind] = list(value) if isinstance(value, list) else [value]

    @staticmethod
    def _kind(system: str) -> str:
        if system == INTENT_CLASSIFIER_PROMPT:
            return "classify"
        if system == QUALITY_SCORING_PROMPT:
            return "score"
        if system == QUALITY_IMPROVEMENT_PROMPT:
            return "improve"
        if system.startswith("You are a precise JSON extractor"):
            return "extract"
        return "answer"

    async def _respond(self, system: str) -> Any:
        kind = self._kind(system)
        self.calls.append(kind)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise LanguageModelError("model unavailable")
            queue = self.responses.get(kind)
            if not queue:
                raise LanguageModelError(f"no scripted {kind} response")
            return queue.pop(0) if len(queue) > 1 else queue[0]
        finally:
            self.active -= 1

    async def complete_json(self, system, messages, *, temperature=None, model=None) -> dict:
        return dict(await self._respond(system))

    async def complete_text(self, system, messages, *, temperature=None, model=None) -> str:
        return str(await self._respond(system))


def classification(intent: str = "unknown", tone: str = "neutral", handoff: bool = False,
                   confidence: float = 0.9) -> dict:
    return {
        "primaryIntent": intent,
        "secondaryIntents": [],
        "confidence": confidence,
        "emotionalTone": tone,
        "urgencyLevel": "medium",
        "complexity": "simple",
        "requiresHumanHandoff": handoff,
    }


def extraction(sub_intent: str = "provide", **fields: Optional[str]) -> dict:
    data: dict[str, Any] = {
        "service": None, "date": None, "time": None, "name": None,
        "recipientPhone": None, "subIntent": sub_intent,
    }
    data.update(fields)
    return data


def make_draft(**fields: Any) -> BookingDraft:
    values = {"customer_id": CUSTOMER_ID}
    values.update(fields)
    return BookingDraft(**values)


def complete_draft(**fields: Any) -> BookingDraft:
    values = {
        "service": "Gold Package",
        "date": BOOKING_DAY,
        "time": "10:00",
        "name": "Jane Wanjiku",
        "recipient_phone": "0712345678",
        "step": DraftStep.REVIEW,
    }
    values.update(fields)
    return make_draft(**values)


def confirmed_booking(at: str = "10:00", day: str = BOOKING_DAY, minutes: int = 150,
                      booking_id: str = "BK-TAKEN") -> Booking:
    return Booking(
        id=booking_id,
        customer_id="CUS-OTHER",
        service="Gold Package",
        start=local_datetime(day, at),
        duration_minutes=minutes,
        status=BookingStatus.CONFIRMED,
        name="Other Customer",
        phone="0798765432",
        deposit=2000,
    )


def make_context(message: str, draft: Optional[BookingDraft] = None,
                 history: Optional[list[HistoryMessage]] = None,
                 analysis: Optional[IntentAnalysis] = None, **kwargs: Any) -> StrategyContext:
    return StrategyContext(
        customer_id=CUSTOMER_ID,
        message=message,
        analysis=analysis or IntentAnalysis(),
        draft=draft,
        history=history or [],
        **kwargs,
    )


@pytest.fixture
def store():
    s = InMemoryStore()
    s.seed_packages(SEED_PACKAGES)
    return s


@pytest.fixture
def llm():
    return FakeLanguageModel(score=GOOD_SCORE)


@pytest.fixture
def calendar():
    return InMemoryCalendar()


@pytest.fixture
def payments():
    return InMemoryPaymentGateway()


@pytest.fixture
def outbox():
    return OutboxAdapter()


@pytest.fixture
def sink():
    return LoggingNotificationSink()


@pytest.fixture
def engine(store, llm, payments, outbox, calendar, sink):
    store._customers[CUSTOMER_ID] = Customer(id=CUSTOMER_ID, channel_ids={CHANNEL: SENDER_ID})
    store._channel_index[(CHANNEL, SENDER_ID)] = CUSTOMER_ID
    return ConversationEngine(
        store, llm, payments,
        messaging=outbox, calendar=calendar, sink=sink, clock=fixed_clock,
    )


@pytest.fixture
def deps(engine):
    return engine.router.strategies[0].deps


@pytest.fixture
def guardrail_pipeline():
    return GuardrailPipeline()

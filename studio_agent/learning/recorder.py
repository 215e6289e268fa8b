"""Per-turn learning records with outcome classification."""

import logging
from typing import Optional

from studio_agent.schemas.booking_schema import BookingDraft, DraftStep
from studio_agent.schemas.conversation_schema import (
    ConversationLearningRecord,
    EmotionalTone,
    Intent,
    OutcomeCategory,
)
from studio_agent.tools.store import new_id

logger = logging.getLogger(__name__)

BOOKING_INITIATED_STEPS = {DraftStep.CONFIRM_DEPOSIT, DraftStep.CONFIRMED}
FAILURE_MARKERS = ("trouble", "error")


def classify_outcome(
    intent: Intent, draft: Optional[BookingDraft], error: bool = False
) -> OutcomeCategory:
    """Precedence: error, booking initiated, booking in progress, information, resolved."""
    if error:
        return OutcomeCategory.ERROR
    if draft is not None and draft.step in BOOKING_INITIATED_STEPS:
        return OutcomeCategory.BOOKING_INITIATED
    if intent == Intent.BOOKING:
        return OutcomeCategory.BOOKING_IN_PROGRESS
    if intent == Intent.PACKAGE_INQUIRY:
        return OutcomeCategory.INFORMATION_PROVIDED
    return OutcomeCategory.RESOLVED


def was_successful(reply: str) -> bool:
    lower = reply.lower()
    return not any(marker in lower for marker in FAILURE_MARKERS)


class ConversationRecorder:
    """Appends one ``ConversationLearningRecord`` per handled turn."""

    def __init__(self, store) -> None:
        self._store = store

    async def record_turn(
        self,
        customer_id: str,
        user_message: str,
        reply: str,
        intent: Intent = Intent.UNKNOWN,
        tone: EmotionalTone = EmotionalTone.NEUTRAL,
        draft: Optional[BookingDraft] = None,
        conversation_length: int = 0,
        time_to_resolution_sec: Optional[float] = None,
        error: bool = False,
    ) -> ConversationLearningRecord:
        outcome = classify_outcome(intent, draft, error=error)
        record = ConversationLearningRecord(
            id=new_id("LRN"),
            customer_id=customer_id,
            user_message=user_message,
            ai_response=reply,
            extracted_intent=intent.value,
            emotional_tone=tone.value,
            was_successful=not error and was_successful(reply),
            outcome=outcome,
            conversation_length=conversation_length,
            time_to_resolution_sec=time_to_resolution_sec,
        )
        await self._store.add_learning_record(record)
        logger.debug("Recorded %s turn for %s (%s)", intent.value, customer_id, outcome.value)
        return record

    async def flag_for_kb(self, record: ConversationLearningRecord, category: str) -> ConversationLearningRecord:
        record.flagged_for_kb = True
        record.kb_category = category
        await self._store.update_learning_record(record)
        return record

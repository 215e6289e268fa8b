"""
FAQ strategy: policy, logistics and business-information questions.

Runs first so questions are answered even in the middle of a booking;
the active draft is carried through untouched. Before answering, the
message is scanned for people, items or pets the customer plans to
bring, which become a session note and an operator alert. Both side
effects are isolated so their failure never blocks the answer.
"""

import re
from typing import Optional

from studio_agent.config import settings
from studio_agent.logging_context import get_turn_logger
from studio_agent.outcome import Outcome
from studio_agent.prompts.prompt_templates import build_faq_context
from studio_agent.prompts.system_prompts import FAQ_SYSTEM_PROMPT
from studio_agent.schemas.conversation_schema import EscalationType, KnowledgeEntry, SessionNote
from studio_agent.strategies.base import (
    WANTS_TO_START_BOOKING_RE,
    ResponseStrategy,
    StrategyContext,
    StrategyResult,
)
from studio_agent.tools.llm import LanguageModelError
from studio_agent.tools.store import new_id
from studio_agent.utils import normalize_question

logger = get_turn_logger(__name__)

PACKAGE_QUERY_RE = re.compile(
    r"package|service|charges?\b|price|pricing|cost|how much|offer|photoshoot|shoot\b"
    r"|what (?:packages|services) do you (?:have|offer)|what do you (?:have|offer)"
    r"|deposit",
    re.IGNORECASE,
)

# Patterns specific enough to win over a booking continuation.
STRONG_FAQ_PATTERNS = [
    re.compile(r"can i (?:bring|have|include|add|wear|do)", re.IGNORECASE),
    re.compile(r"is it (?:okay|ok|allowed|fine|permitted)", re.IGNORECASE),
    re.compile(r"are.*allowed", re.IGNORECASE),
    re.compile(r"what (?:can|should|may) i (?:bring|wear|do|expect)", re.IGNORECASE),
    re.compile(r"(?:can|bring|include).*\b(?:family|partner|husband|spouse|children|kids|baby|guests)\b", re.IGNORECASE),
    re.compile(r"backdrop|background|studio set|flower wall|portfolio", re.IGNORECASE),
    re.compile(r"(?:show|see).*\b(?:images?|photos?|pictures?|portfolio|examples?)\b", re.IGNORECASE),
    re.compile(r"\b(?:hours|location|address|phone|contact|email|website|open|closed|opening)\b", re.IGNORECASE),
]

GENERAL_FAQ_PATTERNS = [
    re.compile(r"what (?:is|are|do|does|should|can|will|was|were)\b", re.IGNORECASE),
    re.compile(r"how (?:long|much|many|do|does|can|will|should)\b", re.IGNORECASE),
    re.compile(r"when (?:do|does|can|will|should|is|are)\b", re.IGNORECASE),
    re.compile(r"where (?:do|does|can|will|is|are)\b", re.IGNORECASE),
    re.compile(r"why (?:do|does|can|will|should|is|are)\b", re.IGNORECASE),
    re.compile(r"tell me (?:about|more|how)|explain|describe", re.IGNORECASE),
    re.compile(r"\?"),
]

HOURS_QUESTION_RE = re.compile(
    r"\b(?:opening hours|working hours|business hours|your hours|what time do you (?:open|close)"
    r"|when (?:are|is|do) (?:you|the studio) (?:open|close|closed))",
    re.IGNORECASE,
)
CONTACT_QUESTION_RE = re.compile(
    r"\b(?:contact details|contact information|contact info|how (?:can|do) i (?:reach|contact)"
    r"|your (?:phone|number|email|website|location|address)|where are you (?:located|based)"
    r"|where is the studio)",
    re.IGNORECASE,
)

_BRINGING = (
    r"(?:can i|i will|i'm|i am|i'll|will i|come|coming|bring|bringing|brings|have|having|"
    r"include|including)\b.*\b(?:with|a|an|my|own|personal)\b.*?\b"
)
EXTERNAL_PEOPLE_TERMS = [
    "makeup artist", "make-up artist", "mua", "photographer", "videographer", "stylist",
    "hairstylist", "hair stylist", "assistant", "helper", "friends?", "family", "partner",
    "husband", "spouse",
]
EXTERNAL_ITEM_TERMS = [
    "camera", "equipment", "gear", "lighting", "lights", "props", "backdrop",
]
PET_TERMS = ["pets?", "dogs?", "cats?", "puppy", "puppies", "kittens?", "animals?"]


def _bringing_pattern(terms: list[str]) -> re.Pattern[str]:
    return re.compile(_BRINGING + r"(" + "|".join(terms) + r")\b", re.IGNORECASE)


EXTERNAL_PEOPLE_RE = _bringing_pattern(EXTERNAL_PEOPLE_TERMS)
EXTERNAL_ITEMS_RE = _bringing_pattern(EXTERNAL_ITEM_TERMS)
PETS_RE = _bringing_pattern(PET_TERMS)


def detect_external_mentions(message: str) -> tuple[Optional[str], list[str]]:
    """Return ``(note_type, items)`` for people/items/pets the customer will bring.

    Pets are recorded as ``external_items``.
    """
    people = EXTERNAL_PEOPLE_RE.search(message)
    items = EXTERNAL_ITEMS_RE.search(message)
    pets = PETS_RE.search(message)
    found = [m.group(1) for m in (people, items, pets) if m]
    if not found:
        return None, []
    note_type = "external_items" if pets else ("external_people" if people else "external_items")
    unique: list[str] = []
    for item in found:
        label = item.strip().capitalize()
        if label not in unique:
            unique.append(label)
    return note_type, unique


def relevant_knowledge(message: str, entries: list[KnowledgeEntry], limit: int = 5) -> list[KnowledgeEntry]:
    """Knowledge entries sharing meaningful words with the question."""
    words = {w for w in normalize_question(message).split() if len(w) > 3}
    if not words:
        return []
    scored = []
    for entry in entries:
        overlap = len(words & set(normalize_question(entry.question).split()))
        if overlap:
            scored.append((overlap, entry))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [entry for _, entry in scored[:limit]]


class FaqStrategy(ResponseStrategy):
    """Answers informational and policy questions."""

    name = "faq"
    priority = 100

    def can_handle(self, ctx: StrategyContext) -> bool:
        message = ctx.message
        if PACKAGE_QUERY_RE.search(message):
            return False
        if WANTS_TO_START_BOOKING_RE.search(message):
            return False
        strong = any(p.search(message) for p in STRONG_FAQ_PATTERNS)
        if strong:
            return True
        if ctx.is_booking_continuation():
            return False
        return any(p.search(message) for p in GENERAL_FAQ_PATTERNS)

    async def generate_response(self, ctx: StrategyContext) -> Optional[StrategyResult]:
        logger.info("Answering FAQ: %r", ctx.message)
        await self._record_external_mentions(ctx)

        if HOURS_QUESTION_RE.search(ctx.message):
            biz = settings.business
            reply = f"We're open {biz.hours}. We're located at {biz.location}. 😊"
            return self.result(ctx, reply, ctx.draft, action="faq_hours")
        if CONTACT_QUESTION_RE.search(ctx.message):
            return self.result(ctx, self.contact_reply(), ctx.draft, action="faq_contact")

        answer = await self.answer(ctx)
        return self.result(
            ctx, answer.value, ctx.draft, action="faq_degraded" if answer.degraded else "faq"
        )

    @staticmethod
    def contact_reply() -> str:
        biz = settings.business
        return (
            f"Here's how to reach {biz.name}:\n"
            f"📍 Location: {biz.location}\n"
            f"📞 Phone: {biz.phone}\n"
            f"📧 Email: {biz.email}\n"
            f"🌐 Website: {biz.website}\n"
            f"🕐 Hours: {biz.hours}"
        )

    async def answer(self, ctx: StrategyContext) -> Outcome[str]:
        """Model answer grounded on the knowledge base; degrades to the studio phone."""
        knowledge = relevant_knowledge(ctx.message, await self.deps.store.list_knowledge())
        context = build_faq_context(knowledge, ctx.personalization)
        system = f"{FAQ_SYSTEM_PROMPT}\n\n{context}" if context else FAQ_SYSTEM_PROMPT
        messages = [
            *ctx.history[-settings.booking.history_limit:],
            {"role": "user", "content": ctx.message},
        ]
        try:
            text = await self.deps.llm.complete_text(system, messages)
        except LanguageModelError as exc:
            logger.warning("FAQ answer degraded: %s", exc)
            fallback = (
                "That's a great question! I want to make sure you get the right answer, "
                f"so please call us on {settings.business.phone} and the team will help. 💖"
            )
            return Outcome.fallback(fallback, exc)
        return Outcome.ok(text.strip())

    async def _record_external_mentions(self, ctx: StrategyContext) -> None:
        note_type, items = detect_external_mentions(ctx.message)
        if note_type is None:
            return
        items_list = ", ".join(items)

        try:
            await self.deps.store.add_session_note(SessionNote(
                id=new_id("NOTE"),
                customer_id=ctx.customer_id,
                type=note_type,
                items=items,
                description=f"Customer mentioned bringing: {items_list}",
            ))
            logger.info("Session note saved: %s", items_list)
        except Exception:
            logger.exception("Failed to save session note")

        try:
            await self.deps.escalations.create_alert(
                ctx.customer_id,
                title="Customer Bringing External People/Items",
                description=(
                    f"Customer mentioned bringing {items_list} to their session. "
                    "This may require coordination or policy review."
                ),
                type=EscalationType.AI_ESCALATION,
                metadata={"items": items, "original_message": ctx.message},
            )
        except Exception:
            logger.exception("Failed to create external people/items alert")

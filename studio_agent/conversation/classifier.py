"""
Intent and emotion classifier.

The model verdict is the primary path. Keyword tables give a rule-based
reading of tone, urgency and complexity that is used on its own in
``rules`` mode and as a cross-check otherwise. The handoff safety
triggers from ``HandoffGuardrail`` are OR-combined on top of whatever
the model says and cannot be overridden by it.
"""

import logging
import re
from typing import Any, Optional

from studio_agent.config import settings
from studio_agent.conversation.guardrails import HandoffGuardrail
from studio_agent.outcome import Outcome
from studio_agent.prompts.system_prompts import INTENT_CLASSIFIER_PROMPT
from studio_agent.schemas.conversation_schema import (
    Complexity,
    EmotionalTone,
    Intent,
    IntentAnalysis,
    Urgency,
)
from studio_agent.tools.llm import LanguageModel, LanguageModelError

logger = logging.getLogger(__name__)

# Ordered: the first matching row wins.
TONE_KEYWORDS: list[tuple[EmotionalTone, list[str]]] = [
    (EmotionalTone.FRUSTRATED, [
        "ridiculous", "terrible", "awful", "useless", "waste", "annoying",
        "frustrated", "angry",
    ]),
    (EmotionalTone.EXCITED, ["excited", "can't wait", "amazing", "love", "perfect", "wonderful"]),
    (EmotionalTone.ANXIOUS, ["worried", "nervous", "concerned", "not sure", "unsure", "anxious", "scared"]),
    (EmotionalTone.CONFUSED, ["confused", "don't understand", "what do you mean", "huh", "unclear"]),
    (EmotionalTone.HAPPY, ["thank", "great", "good", "nice", "happy", "pleased"]),
]

HIGH_URGENCY_KEYWORDS = ["urgent", "asap", "immediately", "right now", "emergency", "today", "tomorrow"]
NEAR_TERM_RE = re.compile(r"\b(?:today|tomorrow|this week)\b", re.IGNORECASE)
MEDIUM_URGENCY_RE = re.compile(r"\b(?:next week|this month|soon)\b", re.IGNORECASE)
LOW_URGENCY_RE = re.compile(r"\b(?:just wondering|curious|thinking about|maybe|might)\b", re.IGNORECASE)

CONJUNCTION_RE = re.compile(r"\b(?:and|but|also|or|plus|additionally)\b", re.IGNORECASE)
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

# (label, pattern); FAQ is only added when no package vocabulary matched.
INTENT_RULES: list[tuple[Intent, re.Pattern[str]]] = [
    (Intent.BOOKING, re.compile(r"\b(?:book|schedule|reserve|appointment)", re.IGNORECASE)),
    (Intent.PACKAGE_INQUIRY, re.compile(r"\b(?:package|price|cost|how much|offer)", re.IGNORECASE)),
    (Intent.FAQ, re.compile(r"\b(?:what|how|when|where|why|tell me|explain)\b", re.IGNORECASE)),
    (Intent.AVAILABILITY, re.compile(r"\b(?:available|free|open|slot)", re.IGNORECASE)),
    (Intent.RESCHEDULE, re.compile(r"\b(?:reschedule|change|move)\b.*\b(?:date|time|appointment)", re.IGNORECASE)),
    (Intent.CANCEL, re.compile(r"\b(?:cancel|delete|remove)", re.IGNORECASE)),
]


def detect_emotional_tone(message: str) -> EmotionalTone:
    lower = message.lower()
    exclamations = message.count("!")
    questions = message.count("?")
    for tone, keywords in TONE_KEYWORDS:
        if any(kw in lower for kw in keywords):
            return tone
        if tone == EmotionalTone.EXCITED and exclamations >= 2:
            return tone
        if tone == EmotionalTone.CONFUSED and questions >= 2:
            return tone
    return EmotionalTone.NEUTRAL


def assess_urgency(message: str) -> Urgency:
    lower = message.lower()
    if any(kw in lower for kw in HIGH_URGENCY_KEYWORDS) or NEAR_TERM_RE.search(message):
        return Urgency.HIGH
    if MEDIUM_URGENCY_RE.search(message):
        return Urgency.MEDIUM
    if LOW_URGENCY_RE.search(message):
        return Urgency.LOW
    return Urgency.MEDIUM


def assess_complexity(message: str) -> Complexity:
    questions = message.count("?")
    sentences = len([s for s in SENTENCE_SPLIT_RE.split(message) if s.strip()])
    conjunctions = len(CONJUNCTION_RE.findall(message))
    if questions >= 3 or sentences >= 5 or conjunctions >= 3:
        return Complexity.COMPLEX
    if questions >= 2 or sentences >= 3 or conjunctions >= 2:
        return Complexity.MODERATE
    return Complexity.SIMPLE


def extract_multiple_intents(message: str) -> list[Intent]:
    intents: list[Intent] = []
    for intent, pattern in INTENT_RULES:
        if intent == Intent.FAQ and Intent.PACKAGE_INQUIRY in intents:
            continue
        if pattern.search(message):
            intents.append(intent)
    return intents or [Intent.UNKNOWN]


def rule_based_analysis(message: str) -> IntentAnalysis:
    """Keyword-only verdict; no external call."""
    intents = extract_multiple_intents(message)
    tone = detect_emotional_tone(message)
    primary = intents[0]
    if tone == EmotionalTone.FRUSTRATED and HandoffGuardrail.COMPLAINT_RE.search(message):
        primary = Intent.COMPLAINT
    return IntentAnalysis(
        primary_intent=primary,
        secondary_intents=[i for i in intents if i != primary and i != Intent.UNKNOWN],
        confidence=0.3 if primary == Intent.UNKNOWN else 0.6,
        emotional_tone=tone,
        urgency=assess_urgency(message),
        complexity=assess_complexity(message),
    )


def _enum_value(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _analysis_from_model(data: dict[str, Any]) -> IntentAnalysis:
    secondary = data.get("secondaryIntents") or []
    if not isinstance(secondary, list):
        secondary = []
    confidence = data.get("confidence", 0.5)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.5
    return IntentAnalysis(
        primary_intent=_enum_value(Intent, data.get("primaryIntent"), Intent.UNKNOWN),
        secondary_intents=[
            i for i in (_enum_value(Intent, s, None) for s in secondary) if i is not None
        ],
        confidence=max(0.0, min(1.0, float(confidence))),
        emotional_tone=_enum_value(EmotionalTone, data.get("emotionalTone"), EmotionalTone.NEUTRAL),
        urgency=_enum_value(Urgency, data.get("urgencyLevel"), Urgency.MEDIUM),
        complexity=_enum_value(Complexity, data.get("complexity"), Complexity.SIMPLE),
        requires_human_handoff=bool(data.get("requiresHumanHandoff", False)),
    )


class IntentClassifier:
    """Structured assessment of one inbound message. Never raises on model failure."""

    def __init__(self, llm: LanguageModel, handoff: Optional[HandoffGuardrail] = None) -> None:
        self._llm = llm
        self._handoff = handoff or HandoffGuardrail()

    async def analyze(
        self,
        message: str,
        context: Optional[str] = None,
        conversation_length: int = 0,
    ) -> Outcome[IntentAnalysis]:
        if settings.guardrails.classifier_mode == "rules":
            outcome = Outcome.ok(rule_based_analysis(message))
        else:
            outcome = await self._model_analysis(message, context)

        analysis = outcome.value
        heuristic_tone = detect_emotional_tone(message)
        tone = (
            EmotionalTone.FRUSTRATED
            if EmotionalTone.FRUSTRATED in (analysis.emotional_tone, heuristic_tone)
            else analysis.emotional_tone
        )
        triggers = self._handoff.check(message, tone, conversation_length)
        if triggers:
            analysis.requires_human_handoff = True
            analysis.handoff_reasons = [t.violation_type for t in triggers]
        elif analysis.requires_human_handoff:
            analysis.handoff_reasons = ["model_verdict"]

        logger.debug(
            "Intent for %r: %s (%.2f) tone=%s handoff=%s",
            message, analysis.primary_intent.value, analysis.confidence,
            analysis.emotional_tone.value, analysis.requires_human_handoff,
        )
        return outcome

    async def _model_analysis(self, message: str, context: Optional[str]) -> Outcome[IntentAnalysis]:
        content = message if not context else f"{message}\n\nCUSTOMER CONTEXT:\n{context}"
        try:
            data = await self._llm.complete_json(
                INTENT_CLASSIFIER_PROMPT,
                [{"role": "user", "content": content}],
                temperature=settings.model.llm_temperature,
            )
        except LanguageModelError as exc:
            logger.warning("Intent analysis degraded: %s", exc)
            return Outcome.fallback(IntentAnalysis(), exc)
        return Outcome.ok(_analysis_from_model(data))

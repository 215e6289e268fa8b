"""
Rule-based guardrails applied around every turn.

Reply-side checks run before the scored quality review and need no
external call:
1. LengthGuardrail: blocks too-short replies, flags overly long ones
2. TemplateLeakGuardrail: flags literal ``undefined`` / ``null`` tokens
3. GenericReplyGuardrail: blocks short placeholder replies ("error", "failed")
4. HallucinationGuardrail: flags unverifiable marketing claims
5. PersonaGuardrail: flags assistant self-references

Message-side checks decide when a conversation must go to a human:
6. HandoffGuardrail: explicit human request, complaints, sustained
   frustration, very long conversations

These are composed into a GuardrailPipeline.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from studio_agent.config import settings
from studio_agent.schemas.conversation_schema import EmotionalTone

logger = logging.getLogger(__name__)


def _compile_patterns(phrases: list[str]) -> re.Pattern[str]:
    """Compile a list of phrases into a single word-boundary regex."""
    escaped = [re.escape(p) for p in phrases]
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", re.IGNORECASE)


@dataclass
class GuardrailResult:
    """Outcome of a single guardrail check."""
    passed: bool
    violation_type: Optional[str] = None
    message: Optional[str] = None
    severity: str = "warning"  # "warning" | "block" | "escalate"


class LengthGuardrail:
    """Bounds reply length."""

    def check(self, text: str) -> GuardrailResult:
        length = len(text.strip())
        if length < settings.quality.min_length:
            return GuardrailResult(
                passed=False,
                violation_type="too_short",
                message="Response too short",
                severity="block",
            )
        if length > settings.quality.max_length:
            return GuardrailResult(
                passed=False,
                violation_type="too_long",
                message="Response too long",
                severity="warning",
            )
        return GuardrailResult(passed=True)


class TemplateLeakGuardrail:
    """Detects unfilled template values leaking into replies."""

    LEAK_RE = re.compile(r"\b(?:undefined|null)\b")

    def check(self, text: str) -> GuardrailResult:
        if self.LEAK_RE.search(text):
            return GuardrailResult(
                passed=False,
                violation_type="template_leak",
                message="Contains undefined/null values",
                severity="warning",
            )
        return GuardrailResult(passed=True)


class GenericReplyGuardrail:
    """Blocks short placeholder replies that carry no content."""

    PLACEHOLDER_PATTERNS = [
        re.compile(r"^sorry.*couldn.*process", re.IGNORECASE),
        re.compile(r"^i.*don.*understand", re.IGNORECASE),
        re.compile(r"^error", re.IGNORECASE),
        re.compile(r"^failed", re.IGNORECASE),
    ]

    def check(self, text: str) -> GuardrailResult:
        stripped = text.strip()
        if len(stripped) >= settings.quality.generic_max_length:
            return GuardrailResult(passed=True)
        for pattern in self.PLACEHOLDER_PATTERNS:
            if pattern.search(stripped):
                return GuardrailResult(
                    passed=False,
                    violation_type="generic_reply",
                    message="Generic error response",
                    severity="block",
                )
        return GuardrailResult(passed=True)


class HallucinationGuardrail:
    """Flags claims the studio has not verified."""

    FORBIDDEN_CLAIMS = [
        "guarantee", "we guarantee", "award-winning",
        "best in nairobi", "best in kenya", "cheapest", "lowest price",
        "free of charge", "100% refund",
    ]
    _CLAIMS_RE = _compile_patterns(FORBIDDEN_CLAIMS)

    def check(self, text: str) -> GuardrailResult:
        match = self._CLAIMS_RE.search(text)
        if match:
            logger.warning("Unverified claim in reply: '%s'", match.group(0))
            return GuardrailResult(
                passed=False,
                violation_type="potential_hallucination",
                message=f"Response contains unverified claim: '{match.group(0).lower()}'",
                severity="warning",
            )
        return GuardrailResult(passed=True)


class PersonaGuardrail:
    """Flags replies that break the studio assistant persona."""

    FORBIDDEN_PATTERNS = [
        "as an ai", "as a language model", "i'm just a bot",
        "i don't have feelings", "openai",
    ]
    _PERSONA_RE = _compile_patterns(FORBIDDEN_PATTERNS)

    def check(self, text: str) -> GuardrailResult:
        match = self._PERSONA_RE.search(text)
        if match:
            return GuardrailResult(
                passed=False,
                violation_type="persona_break",
                message=f"Response breaks persona with: '{match.group(0).lower()}'",
                severity="warning",
            )
        return GuardrailResult(passed=True)


class HandoffGuardrail:
    """Safety triggers that force a human handoff regardless of the model's verdict."""

    HUMAN_REQUEST_RE = re.compile(
        r"(talk|speak|chat).*(human|person|agent|representative|someone real|staff)"
        r"|real person|human agent",
        re.IGNORECASE,
    )
    COMPLAINT_RE = re.compile(r"\b(complaint|complain|report|manager|supervisor)\b", re.IGNORECASE)

    def check(
        self,
        message: str,
        tone: EmotionalTone = EmotionalTone.NEUTRAL,
        conversation_length: int = 0,
    ) -> list[GuardrailResult]:
        cfg = settings.guardrails
        results: list[GuardrailResult] = []
        if self.HUMAN_REQUEST_RE.search(message):
            results.append(GuardrailResult(
                passed=False, violation_type="human_requested",
                message="Customer asked for a human", severity="escalate",
            ))
        if tone == EmotionalTone.FRUSTRATED and conversation_length > cfg.frustrated_turn_threshold:
            results.append(GuardrailResult(
                passed=False, violation_type="sustained_frustration",
                message=f"Frustrated after {conversation_length} turns", severity="escalate",
            ))
        if self.COMPLAINT_RE.search(message):
            results.append(GuardrailResult(
                passed=False, violation_type="complaint",
                message="Complaint or manager mentioned", severity="escalate",
            ))
        if conversation_length > cfg.max_conversation_length:
            results.append(GuardrailResult(
                passed=False, violation_type="long_conversation",
                message=f"Conversation length {conversation_length} exceeds "
                        f"{cfg.max_conversation_length}",
                severity="escalate",
            ))
        for r in results:
            logger.info("Handoff trigger: %s", r.violation_type)
        return results


class GuardrailPipeline:
    """Composes reply-side and message-side guardrails."""

    def __init__(self) -> None:
        self.length = LengthGuardrail()
        self.template_leak = TemplateLeakGuardrail()
        self.generic = GenericReplyGuardrail()
        self.hallucination = HallucinationGuardrail()
        self.persona = PersonaGuardrail()
        self.handoff = HandoffGuardrail()

    def check_reply(self, text: str) -> list[GuardrailResult]:
        """Quick validation of a candidate reply; returns the failed checks in order."""
        results = [
            self.length.check(text),
            self.template_leak.check(text),
            self.generic.check(text),
            self.hallucination.check(text),
            self.persona.check(text),
        ]
        return [r for r in results if not r.passed]

    def check_handoff(
        self, message: str, tone: EmotionalTone, conversation_length: int
    ) -> list[GuardrailResult]:
        return self.handoff.check(message, tone, conversation_length)

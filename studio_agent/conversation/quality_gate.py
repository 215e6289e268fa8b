"""
Response quality gate: quick rules, scored review, one improvement attempt.

Stage 1 runs the reply-side guardrails (no external call). Stage 2 asks
the model to score helpfulness, accuracy, empathy and clarity. A reply
that misses a threshold but is not bad enough to escalate gets exactly
one rewrite, which is only used when its own score is strictly higher.

When the scoring call fails the gate passes the reply with neutral 5/5/5/5
scores: an unavailable reviewer must not block the conversation.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from studio_agent.config import settings
from studio_agent.conversation.guardrails import GuardrailPipeline
from studio_agent.outcome import Outcome
from studio_agent.prompts.prompt_templates import (
    build_improvement_message,
    build_scoring_message,
)
from studio_agent.prompts.system_prompts import (
    QUALITY_IMPROVEMENT_PROMPT,
    QUALITY_SCORING_PROMPT,
)
from studio_agent.tools.llm import LanguageModel, LanguageModelError

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 5.0

_IMPROVEMENT_PREFIX_RE = re.compile(
    r"^\s*(?:improved response:|improved:|here's the improved response:|"
    r"improved version:|better response:)\s*",
    re.IGNORECASE,
)


@dataclass
class QualityScore:
    """Scores on a 0-10 scale; ``overall`` is the mean of the four dimensions."""
    helpfulness: float
    accuracy: float
    empathy: float
    clarity: float
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def overall(self) -> float:
        return (self.helpfulness + self.accuracy + self.empathy + self.clarity) / 4

    def dimensions(self) -> dict[str, float]:
        return {
            "helpfulness": self.helpfulness,
            "accuracy": self.accuracy,
            "empathy": self.empathy,
            "clarity": self.clarity,
        }

    @classmethod
    def zero(cls, issues: list[str]) -> "QualityScore":
        return cls(0.0, 0.0, 0.0, 0.0, issues=list(issues))

    @classmethod
    def neutral(cls, issue: str) -> "QualityScore":
        return cls(NEUTRAL_SCORE, NEUTRAL_SCORE, NEUTRAL_SCORE, NEUTRAL_SCORE, issues=[issue])


@dataclass
class QualityContext:
    """What the reviewer needs to judge a reply."""
    user_message: str
    customer_id: str
    intent: Optional[str] = None
    emotional_tone: Optional[str] = None
    history: list[dict[str, str]] = field(default_factory=list)


@dataclass
class ValidationResult:
    passed: bool
    score: QualityScore
    reason: Optional[str] = None
    should_escalate: bool = False
    improved_response: Optional[str] = None
    improved_score: Optional[QualityScore] = None
    degraded: bool = False
    rejected_early: bool = False

    def final_text(self, original: str) -> str:
        return self.improved_response or original


def _dimension(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return NEUTRAL_SCORE
    return max(0.0, min(10.0, float(value)))


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def strip_improvement_prefix(text: str) -> str:
    cleaned = _IMPROVEMENT_PREFIX_RE.sub("", text.strip())
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1]
    return cleaned.strip()


class ResponseQualityGate:
    """Pass / improve / escalate decision for a candidate reply."""

    def __init__(self, llm: LanguageModel, guardrails: Optional[GuardrailPipeline] = None) -> None:
        self._llm = llm
        self._guardrails = guardrails or GuardrailPipeline()
        self._stats = {"checked": 0, "passed": 0, "escalated": 0, "improved": 0, "overall_total": 0.0}

    # --- Stage 1 ---

    def quick_validate(self, text: str) -> ValidationResult:
        """Rule checks only. Blocking violations fail the reply without escalation."""
        failures = self._guardrails.check_reply(text)
        issues = [f.message for f in failures if f.message]
        blocking = [f for f in failures if f.severity == "block"]
        if blocking:
            return ValidationResult(
                passed=False,
                score=QualityScore.zero(issues),
                reason=blocking[0].message,
                should_escalate=False,
                rejected_early=True,
            )
        return ValidationResult(passed=True, score=QualityScore.zero(issues))

    # --- Stage 2 ---

    async def score(self, text: str, context: QualityContext) -> Outcome[QualityScore]:
        message = build_scoring_message(
            text, context.user_message, context.intent, context.emotional_tone, context.history
        )
        try:
            data = await self._llm.complete_json(
                QUALITY_SCORING_PROMPT,
                [{"role": "user", "content": message}],
                temperature=settings.model.llm_temperature,
            )
        except LanguageModelError as exc:
            logger.warning("Quality scoring degraded: %s", exc)
            return Outcome.fallback(QualityScore.neutral("Scoring failed"), exc)
        return Outcome.ok(QualityScore(
            helpfulness=_dimension(data, "helpfulness"),
            accuracy=_dimension(data, "accuracy"),
            empathy=_dimension(data, "empathy"),
            clarity=_dimension(data, "clarity"),
            issues=_string_list(data.get("issues")),
            recommendations=_string_list(data.get("recommendations")),
        ))

    def meets_thresholds(self, score: QualityScore) -> bool:
        q = settings.quality
        return (
            score.helpfulness >= q.min_helpfulness
            and score.accuracy >= q.min_accuracy
            and score.empathy >= q.min_empathy
            and score.clarity >= q.min_clarity
            and score.overall >= q.min_overall
        )

    def failure_reason(self, score: QualityScore) -> str:
        q = settings.quality
        shortfalls = []
        if score.helpfulness < q.min_helpfulness:
            shortfalls.append("not helpful enough")
        if score.accuracy < q.min_accuracy:
            shortfalls.append("accuracy concerns")
        if score.empathy < q.min_empathy:
            shortfalls.append("lacks empathy")
        if score.clarity < q.min_clarity:
            shortfalls.append("unclear")
        if not shortfalls:
            shortfalls.append(f"overall score {score.overall:.1f} below {q.min_overall:g}")
        return "Quality check failed: " + ", ".join(shortfalls)

    async def improve(
        self, text: str, score: QualityScore, context: QualityContext
    ) -> Optional[tuple[str, QualityScore]]:
        """One rewrite attempt. Returns the rewrite only if it scores strictly higher."""
        message = build_improvement_message(
            text, context.user_message, score.dimensions(), score.issues, score.recommendations
        )
        try:
            raw = await self._llm.complete_text(
                QUALITY_IMPROVEMENT_PROMPT,
                [{"role": "user", "content": message}],
                temperature=settings.model.improvement_temperature,
            )
        except LanguageModelError as exc:
            logger.warning("Reply improvement failed: %s", exc)
            return None

        improved = strip_improvement_prefix(raw)
        if not improved or improved == text.strip():
            return None
        if not self.quick_validate(improved).passed:
            return None

        rescored = await self.score(improved, context)
        if rescored.degraded or rescored.value.overall <= score.overall:
            logger.info(
                "Improvement rejected (%.2f -> %s)",
                score.overall, "n/a" if rescored.degraded else f"{rescored.value.overall:.2f}",
            )
            return None
        return improved, rescored.value

    async def validate(self, text: str, context: QualityContext) -> ValidationResult:
        """Run both stages and at most one improvement attempt."""
        quick = self.quick_validate(text)
        if not quick.passed:
            self._record(quick)
            logger.info("Quality quick-check rejected reply: %s", quick.reason)
            return quick

        scored = await self.score(text, context)
        if scored.degraded:
            result = ValidationResult(passed=True, score=scored.value, degraded=True)
            self._record(result)
            return result

        score = scored.value
        score.issues = quick.score.issues + score.issues
        passed = self.meets_thresholds(score)
        should_escalate = score.overall < settings.quality.escalation_threshold
        result = ValidationResult(
            passed=passed,
            score=score,
            reason=None if passed else self.failure_reason(score),
            should_escalate=should_escalate,
        )

        if not passed and not should_escalate:
            improvement = await self.improve(text, score, context)
            if improvement is not None:
                result.improved_response, result.improved_score = improvement

        self._record(result)
        logger.info(
            "Quality check for %s: overall=%.2f passed=%s escalate=%s improved=%s",
            context.customer_id, score.overall, result.passed,
            result.should_escalate, result.improved_response is not None,
        )
        return result

    def _record(self, result: ValidationResult) -> None:
        self._stats["checked"] += 1
        self._stats["overall_total"] += result.score.overall
        if result.passed:
            self._stats["passed"] += 1
        if result.should_escalate:
            self._stats["escalated"] += 1
        if result.improved_response is not None:
            self._stats["improved"] += 1

    def quality_stats(self) -> dict[str, float]:
        """Aggregate of verdicts produced by this gate instance."""
        checked = self._stats["checked"]
        return {
            "checked": checked,
            "pass_rate": self._stats["passed"] / checked if checked else 0.0,
            "average_overall": self._stats["overall_total"] / checked if checked else 0.0,
            "escalations": self._stats["escalated"],
            "improvements": self._stats["improved"],
        }

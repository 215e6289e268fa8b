"""
Batch learning over recorded conversations.

Runs offline (see ``run_learning``), never on the reply path:
  - per-intent pattern analysis with failure reasons inferred from
    conversation-length buckets
  - FAQ mining: identical normalized questions that recur often enough
    and are answered successfully become knowledge-base candidates
  - relationship-stage promotion from booking history
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from studio_agent.config import settings
from studio_agent.learning.memory import CustomerMemoryStore
from studio_agent.schemas.booking_schema import BookingStatus
from studio_agent.schemas.conversation_schema import ConversationLearningRecord, KnowledgeEntry
from studio_agent.schemas.customer_schema import RelationshipStage
from studio_agent.utils import normalize_question

logger = logging.getLogger(__name__)

SHORT_FAILURE_REASON = "Many failures in short conversations - may need better initial responses"
LONG_FAILURE_REASON = "Many failures in long conversations - may indicate confusion or stuck loops"


@dataclass
class PatternAnalysis:
    intent: Optional[str]
    total_successful: int = 0
    total_failed: int = 0
    success_rate: float = 0.0
    avg_time_to_resolution: float = 0.0
    avg_conversation_length: float = 0.0
    common_emotional_tones: list[str] = field(default_factory=list)
    common_failure_reasons: list[str] = field(default_factory=list)


@dataclass
class PotentialFaq:
    question: str
    answer: str
    occurrences: int
    category: str
    success_rate: float
    records: list[ConversationLearningRecord] = field(default_factory=list, repr=False)


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _most_common(values: list[str], limit: int) -> list[str]:
    return [value for value, _ in Counter(values).most_common(limit)]


def failure_reasons(failed: list[ConversationLearningRecord]) -> list[str]:
    """Flag length buckets holding more than the configured share of failures."""
    cfg = settings.learning
    if not failed:
        return []
    threshold = len(failed) * cfg.failure_reason_share
    reasons = []
    short = sum(1 for r in failed if r.conversation_length < cfg.short_conversation_turns)
    if short > threshold:
        reasons.append(SHORT_FAILURE_REASON)
    long = sum(1 for r in failed if r.conversation_length > cfg.long_conversation_turns)
    if long > threshold:
        reasons.append(LONG_FAILURE_REASON)
    return reasons


class LearningAnalyzer:
    """Mines learning records for patterns, FAQs and stage promotions."""

    def __init__(self, store, memory: Optional[CustomerMemoryStore] = None) -> None:
        self._store = store
        self._memory = memory or CustomerMemoryStore(store)

    async def analyze_patterns(self, intent: Optional[str] = None) -> PatternAnalysis:
        records = await self._store.list_learning_records(intent=intent)
        successful = [r for r in records if r.was_successful]
        failed = [r for r in records if not r.was_successful]
        total = len(records)
        analysis = PatternAnalysis(
            intent=intent,
            total_successful=len(successful),
            total_failed=len(failed),
            success_rate=len(successful) / total if total else 0.0,
            avg_time_to_resolution=_average(
                [r.time_to_resolution_sec for r in successful if r.time_to_resolution_sec]
            ),
            avg_conversation_length=_average([r.conversation_length for r in successful]),
            common_emotional_tones=_most_common([r.emotional_tone for r in successful], 5),
            common_failure_reasons=failure_reasons(failed),
        )
        logger.info(
            "Pattern analysis for intent %r: %.0f%% success rate",
            intent, analysis.success_rate * 100,
        )
        return analysis

    async def extract_potential_faqs(self, min_occurrences: Optional[int] = None) -> list[PotentialFaq]:
        """Group unflagged records by normalized question.

        The success rate is computed over every record in the group, so a
        question that is often answered badly does not qualify.
        """
        min_occurrences = min_occurrences or settings.learning.faq_min_occurrences
        records = [r for r in await self._store.list_learning_records() if not r.flagged_for_kb]
        groups: dict[str, list[ConversationLearningRecord]] = defaultdict(list)
        for record in records:
            question = normalize_question(record.user_message)
            if question:
                groups[question].append(record)

        faqs = []
        for question, group in groups.items():
            if len(group) < min_occurrences:
                continue
            successful = [r for r in group if r.was_successful]
            answers = [r.ai_response for r in successful] or [r.ai_response for r in group]
            faqs.append(PotentialFaq(
                question=question,
                answer=_most_common(answers, 1)[0],
                occurrences=len(group),
                category=group[0].kb_category or group[0].extracted_intent or "general",
                success_rate=len(successful) / len(group),
                records=group,
            ))
        logger.info("Extracted %d potential FAQ entries", len(faqs))
        return sorted(faqs, key=lambda f: f.occurrences, reverse=True)

    async def auto_improve_knowledge_base(self) -> dict[str, int]:
        faqs = await self.extract_potential_faqs()
        existing = [normalize_question(e.question) for e in await self._store.list_knowledge()]
        added = 0
        for faq in faqs:
            prefix = faq.question[:50]
            if any(prefix in question for question in existing):
                continue
            if faq.success_rate <= settings.learning.kb_success_rate:
                continue
            await self._store.save_knowledge(KnowledgeEntry(
                question=faq.question, answer=faq.answer, category=faq.category, source="learned",
            ))
            existing.append(faq.question)
            for record in faq.records:
                record.flagged_for_kb = True
                record.kb_category = faq.category
                await self._store.update_learning_record(record)
            added += 1
            logger.info("Auto-added FAQ: %r", prefix)
        logger.info("Knowledge base improvement complete: added %d of %d candidates", added, len(faqs))
        return {"added": added, "total": len(faqs)}

    async def learning_insights(self, days: int = 30) -> dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        records = await self._store.list_learning_records(since=since)
        by_intent: dict[str, dict[str, int]] = defaultdict(lambda: {"successful": 0, "failed": 0})
        for record in records:
            by_intent[record.extracted_intent]["successful" if record.was_successful else "failed"] += 1
        total = len(records)
        return {
            "total_conversations": total,
            "overall_success_rate": sum(r.was_successful for r in records) / total if total else 0.0,
            "intent_breakdown": dict(by_intent),
            "emotional_tone_breakdown": dict(Counter(r.emotional_tone for r in records)),
            "outcome_breakdown": dict(Counter(r.outcome.value for r in records)),
            "avg_time_to_resolution": _average(
                [r.time_to_resolution_sec for r in records if r.time_to_resolution_sec]
            ),
            "avg_conversation_length": _average([r.conversation_length for r in records]),
        }

    async def promote_relationship_stages(self) -> dict[str, int]:
        """Promote NEW customers: confirmed booking -> booked, any conversation -> interested."""
        promoted = {RelationshipStage.BOOKED.value: 0, RelationshipStage.INTERESTED.value: 0}
        for customer in await self._store.list_customers():
            memory = await self._memory.get_or_create(customer.id)
            if memory.relationship_stage != RelationshipStage.NEW:
                continue
            bookings = await self._store.list_bookings_for_customer(customer.id)
            if any(b.status == BookingStatus.CONFIRMED for b in bookings):
                stage = RelationshipStage.BOOKED
            elif await self._store.list_learning_records(customer_id=customer.id):
                stage = RelationshipStage.INTERESTED
            else:
                continue
            await self._memory.update_relationship_stage(customer.id, stage)
            promoted[stage.value] += 1
        logger.info("Stage promotion: %s", promoted)
        return promoted

    @staticmethod
    def format_report(analysis: PatternAnalysis, insights: dict[str, Any], kb: dict[str, int]) -> str:
        lines = [
            "=" * 60,
            "LEARNING REPORT",
            "=" * 60,
            f"Conversations (window): {insights['total_conversations']}",
            f"Overall success rate:   {insights['overall_success_rate']:.1%}",
            f"Avg conversation length: {insights['avg_conversation_length']:.1f}",
            "",
            f"Pattern analysis ({analysis.intent or 'all intents'}):",
            f"  Successful: {analysis.total_successful}  Failed: {analysis.total_failed}"
            f"  Success rate: {analysis.success_rate:.1%}",
        ]
        if analysis.common_emotional_tones:
            lines.append("  Common tones: " + ", ".join(analysis.common_emotional_tones))
        for reason in analysis.common_failure_reasons:
            lines.append(f"  ! {reason}")
        lines.append("")
        lines.append("Intent breakdown:")
        for intent, stats in sorted(insights["intent_breakdown"].items()):
            lines.append(f"  {intent:<18} ok={stats['successful']:<4} failed={stats['failed']}")
        lines.append("")
        lines.append(f"Knowledge base: added {kb['added']} of {kb['total']} FAQ candidates")
        return "\n".join(lines)

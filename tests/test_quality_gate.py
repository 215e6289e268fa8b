"""Tests for the response quality gate."""

import pytest

from studio_agent.conversation.quality_gate import (
    QualityContext,
    QualityScore,
    ResponseQualityGate,
    strip_improvement_prefix,
)
from tests.conftest import GOOD_SCORE, FakeLanguageModel

REPLY = "Our Gold Package is KES 30,000 and includes a photobook."
CONTEXT = QualityContext(user_message="How much is Gold?", customer_id="CUS-TEST", intent="package_inquiry")

WEAK_SCORE = {"helpfulness": 6, "accuracy": 7, "empathy": 6, "clarity": 6,
              "issues": ["vague"], "recommendations": ["mention the deposit"]}
TERRIBLE_SCORE = {"helpfulness": 3, "accuracy": 4, "empathy": 4, "clarity": 4}


class TestQuickValidation:
    @pytest.mark.asyncio
    async def test_short_reply_rejected_without_escalation(self):
        llm = FakeLanguageModel(score=GOOD_SCORE)
        result = await ResponseQualityGate(llm).validate("Yes!", CONTEXT)
        assert result.passed is False
        assert result.should_escalate is False
        assert result.rejected_early is True
        assert result.reason == "Response too short"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_quick_rejection_is_deterministic(self):
        gate = ResponseQualityGate(FakeLanguageModel())
        first = await gate.validate("Yes!", CONTEXT)
        second = await gate.validate("Yes!", CONTEXT)
        assert (first.passed, first.reason) == (second.passed, second.reason)

    def test_warnings_do_not_block(self):
        gate = ResponseQualityGate(FakeLanguageModel())
        result = gate.quick_validate("We guarantee the Gold Package includes a photobook.")
        assert result.passed is True
        assert result.score.issues


class TestScoredReview:
    @pytest.mark.asyncio
    async def test_good_reply_passes(self):
        result = await ResponseQualityGate(FakeLanguageModel(score=GOOD_SCORE)).validate(REPLY, CONTEXT)
        assert result.passed is True
        assert result.reason is None
        assert result.score.overall == 9

    @pytest.mark.asyncio
    async def test_scoring_failure_passes_with_neutral_scores(self):
        result = await ResponseQualityGate(FakeLanguageModel(fail=True)).validate(REPLY, CONTEXT)
        assert result.passed is True
        assert result.degraded is True
        assert result.score.overall == 5
        assert result.score.issues == ["Scoring failed"]

    @pytest.mark.asyncio
    async def test_out_of_range_scores_clamped(self):
        llm = FakeLanguageModel(score={"helpfulness": 14, "accuracy": -2, "empathy": "high", "clarity": 8})
        score = (await ResponseQualityGate(llm).score(REPLY, CONTEXT)).value
        assert score.dimensions() == {"helpfulness": 10, "accuracy": 0, "empathy": 5, "clarity": 8}

    @pytest.mark.asyncio
    async def test_very_low_score_escalates_without_rewrite(self):
        llm = FakeLanguageModel(score=TERRIBLE_SCORE, improve="Improved: something better entirely")
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)
        assert result.passed is False
        assert result.should_escalate is True
        assert "improve" not in llm.calls

    @pytest.mark.asyncio
    async def test_exactly_at_escalation_threshold_does_not_escalate(self):
        llm = FakeLanguageModel(score={"helpfulness": 5, "accuracy": 5, "empathy": 5, "clarity": 5})
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)
        assert result.should_escalate is False
        assert result.passed is False


class TestImprovement:
    @pytest.mark.asyncio
    async def test_better_rewrite_is_used(self):
        improved = "Our Gold Package is KES 30,000 with a KES 2,000 deposit, and it includes a photobook."
        llm = FakeLanguageModel(score=[WEAK_SCORE, GOOD_SCORE], improve=f"Improved response: {improved}")
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)

        assert result.passed is False
        assert result.improved_response == improved
        assert result.improved_score.overall == 9
        assert result.final_text(REPLY) == improved
        assert llm.calls == ["score", "improve", "score"]

    @pytest.mark.asyncio
    async def test_worse_rewrite_is_discarded(self):
        worse = {"helpfulness": 5, "accuracy": 5, "empathy": 5, "clarity": 5}
        llm = FakeLanguageModel(score=[WEAK_SCORE, worse], improve="A rather different reply about packages.")
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)
        assert result.improved_response is None
        assert result.final_text(REPLY) == REPLY

    @pytest.mark.asyncio
    async def test_rewrite_failing_quick_rules_discarded(self):
        llm = FakeLanguageModel(score=WEAK_SCORE, improve="Error")
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)
        assert result.improved_response is None
        assert llm.calls == ["score", "improve"]

    @pytest.mark.asyncio
    async def test_failure_reason_names_shortfalls(self):
        llm = FakeLanguageModel(score=WEAK_SCORE)
        result = await ResponseQualityGate(llm).validate(REPLY, CONTEXT)
        assert result.reason == "Quality check failed: not helpful enough, accuracy concerns, unclear"


class TestStripImprovementPrefix:
    def test_prefix(self):
        assert strip_improvement_prefix("Improved response: Hello there") == "Hello there"

    def test_quotes(self):
        assert strip_improvement_prefix('"Hello there"') == "Hello there"

    def test_plain(self):
        assert strip_improvement_prefix("  Hello there ") == "Hello there"


class TestQualityStats:
    @pytest.mark.asyncio
    async def test_counts(self):
        gate = ResponseQualityGate(FakeLanguageModel(score=GOOD_SCORE))
        await gate.validate(REPLY, CONTEXT)
        await gate.validate("Yes!", CONTEXT)
        stats = gate.quality_stats()
        assert stats["checked"] == 2
        assert stats["pass_rate"] == 0.5
        assert stats["escalations"] == 0

    def test_empty(self):
        stats = ResponseQualityGate(FakeLanguageModel()).quality_stats()
        assert stats["checked"] == 0
        assert stats["pass_rate"] == 0.0

    def test_overall_is_mean(self):
        assert QualityScore(8, 6, 10, 4).overall == 7

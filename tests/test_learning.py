"""Tests for customer memory, personalization and the batch learning pass."""

import asyncio
import json

import pytest

from studio_agent.learning import (
    ConversationRecorder,
    CustomerMemoryStore,
    LearningAnalyzer,
    adapt_response,
    classify_outcome,
    describe_context,
    detect_communication_style,
    extract_preferences,
    match_emotional_tone,
)
from studio_agent.learning.patterns import LONG_FAILURE_REASON, SHORT_FAILURE_REASON
from studio_agent.learning.run_learning import load_records, run
from studio_agent.schemas.booking_schema import DraftStep
from studio_agent.schemas.conversation_schema import (
    ConversationLearningRecord,
    EmotionalTone,
    Intent,
    KnowledgeEntry,
    OutcomeCategory,
)
from studio_agent.schemas.customer_schema import CommunicationStyle, Customer, RelationshipStage
from studio_agent.tools.catalog import SEED_PACKAGES
from studio_agent.tools.store import InMemoryStore
from tests.conftest import confirmed_booking, make_draft


def _record(i, message="What time do you open?", intent="faq", ok=True, length=5, **kw):
    return ConversationLearningRecord(
        id=f"LR-{i}", customer_id=kw.pop("customer_id", "C1"), user_message=message,
        ai_response=kw.pop("reply", "We open at 9 AM."), extracted_intent=intent,
        was_successful=ok, conversation_length=length, **kw,
    )


class TestCommunicationStyle:
    def test_no_messages(self):
        assert detect_communication_style([]) == CommunicationStyle.FRIENDLY

    def test_short_plain(self):
        assert detect_communication_style(["ok", "gold", "tuesday 10am"]) == CommunicationStyle.BRIEF

    def test_long_with_exclamation(self):
        message = "I'm so excited about the shoot and would love to hear about the Gold Package!"
        assert detect_communication_style([message]) == CommunicationStyle.FRIENDLY

    def test_long_plain(self):
        message = "Could you explain what is included in the Gold Package and how long it takes"
        assert detect_communication_style([message]) == CommunicationStyle.DETAILED


class TestAdaptResponse:
    def test_brief_keeps_two_sentences(self):
        text = "Lovely choice! The Gold Package is popular. It includes a photobook. 💖"
        assert adapt_response(text, CommunicationStyle.BRIEF) == "Lovely choice! The Gold Package is popular."

    def test_brief_keeps_structured_reply_whole(self):
        text = "Here are your options:\n1. 12:30 PM\n2. 1:00 PM 😊"
        assert adapt_response(text, CommunicationStyle.BRIEF) == "Here are your options:\n1. 12:30 PM\n2. 1:00 PM"

    def test_friendly_untouched(self):
        text = "Lovely choice! 💖"
        assert adapt_response(text, CommunicationStyle.FRIENDLY) == text


class TestMatchEmotionalTone:
    def test_frustrated_apology_first(self):
        assert match_emotional_tone("Here you go.", EmotionalTone.FRUSTRATED).startswith("I'm so sorry")

    def test_anxious_reassurance_last(self):
        assert "stress-free" in match_emotional_tone("Here you go.", EmotionalTone.ANXIOUS)

    def test_excited_exclamations(self):
        assert match_emotional_tone("We open at 9. See you.", EmotionalTone.EXCITED) == "We open at 9! See you!"

    def test_structured_not_rewritten_when_excited(self):
        text = "📦 *Gold Package* - KES 30,000."
        assert match_emotional_tone(text, EmotionalTone.EXCITED) == text


class TestExtractPreferences:
    def test_budget_time_and_makeup(self):
        prefs = extract_preferences("A morning slot under 30,000 kes with makeup please")
        assert prefs.budget_max == 30000
        assert prefs.times == {"morning"}
        assert prefs.wants_makeup is True

    def test_packages(self):
        prefs = extract_preferences("Is the Gold package available?", SEED_PACKAGES)
        assert prefs.packages == {"Gold Package"}

    def test_empty(self):
        assert extract_preferences("hello").is_empty() is True


class TestCustomerMemoryStore:
    def setup_method(self):
        self.store = InMemoryStore()
        self.memory = CustomerMemoryStore(self.store)

    @pytest.mark.asyncio
    async def test_preferences_union(self):
        await self.memory.update_preferences("C1", packages={"Gold Package"}, times={"morning"})
        memory = await self.memory.update_preferences("C1", packages={"VIP Package"})
        assert memory.preferred_packages == {"Gold Package", "VIP Package"}
        assert memory.preferred_times == {"morning"}

    @pytest.mark.asyncio
    async def test_stage_never_downgrades(self):
        await self.memory.update_relationship_stage("C1", RelationshipStage.BOOKED)
        memory = await self.memory.update_relationship_stage("C1", RelationshipStage.INTERESTED)
        assert memory.relationship_stage == RelationshipStage.BOOKED

    @pytest.mark.asyncio
    async def test_operator_override_downgrades(self):
        await self.memory.update_relationship_stage("C1", RelationshipStage.VIP)
        memory = await self.memory.update_relationship_stage("C1", RelationshipStage.NEW, override=True)
        assert memory.relationship_stage == RelationshipStage.NEW

    @pytest.mark.asyncio
    async def test_lifetime_value_promotes_to_vip(self):
        await self.memory.add_lifetime_value("C1", 30000)
        memory = await self.memory.add_lifetime_value("C1", 30000)
        assert memory.total_bookings == 2
        assert memory.relationship_stage == RelationshipStage.VIP

    @pytest.mark.asyncio
    async def test_summaries_roll_over(self):
        for i in range(25):
            await self.memory.add_conversation_summary("C1", f"turn {i}")
        memory = await self.memory.get_or_create("C1")
        assert len(memory.conversation_summaries) == 20
        assert memory.conversation_summaries[0] == "turn 5"

    @pytest.mark.asyncio
    async def test_satisfaction_is_running_mean(self):
        await self.memory.update_satisfaction("C1", 4)
        memory = await self.memory.update_satisfaction("C1", 2)
        assert memory.satisfaction_score == 3

    @pytest.mark.asyncio
    async def test_personalization_context(self):
        await self.memory.update_preferences("C1", packages={"Gold Package"}, budget_max=40000)
        await self.memory.add_conversation_summary("C1", "Asked about Gold")
        context = await self.memory.personalization_context("C1")
        assert context["budget_range"] == {"min": None, "max": 40000}
        assert context["is_returning"] is False

        text = describe_context(context)
        assert "Interested in: Gold Package" in text
        assert "Budget up to 40000 KES" in text
        assert text.endswith("Last message: Asked about Gold")


class TestRecorder:
    def test_outcome_precedence(self):
        deposit_draft = make_draft(step=DraftStep.CONFIRM_DEPOSIT)
        assert classify_outcome(Intent.BOOKING, deposit_draft, error=True) == OutcomeCategory.ERROR
        assert classify_outcome(Intent.FAQ, deposit_draft) == OutcomeCategory.BOOKING_INITIATED
        assert classify_outcome(Intent.BOOKING, make_draft()) == OutcomeCategory.BOOKING_IN_PROGRESS
        assert classify_outcome(Intent.PACKAGE_INQUIRY, None) == OutcomeCategory.INFORMATION_PROVIDED
        assert classify_outcome(Intent.FAQ, None) == OutcomeCategory.RESOLVED

    @pytest.mark.asyncio
    async def test_trouble_reply_marked_unsuccessful(self):
        store = InMemoryStore()
        record = await ConversationRecorder(store).record_turn(
            "C1", "hi", "Sorry, I'm having trouble right now.", intent=Intent.FAQ,
        )
        assert record.was_successful is False
        assert record.outcome == OutcomeCategory.RESOLVED
        assert len(await store.list_learning_records()) == 1

    @pytest.mark.asyncio
    async def test_flag_for_kb(self):
        store = InMemoryStore()
        recorder = ConversationRecorder(store)
        record = await recorder.record_turn("C1", "Where are you?", "Westlands, Nairobi.")
        await recorder.flag_for_kb(record, "location")
        stored = (await store.list_learning_records())[0]
        assert (stored.flagged_for_kb, stored.kb_category) == (True, "location")


class TestPatternAnalysis:
    def setup_method(self):
        self.store = InMemoryStore()
        self.analyzer = LearningAnalyzer(self.store)

    async def _add(self, *records):
        for record in records:
            await self.store.add_learning_record(record)

    @pytest.mark.asyncio
    async def test_short_failures_flagged(self):
        await self._add(
            _record(1), _record(2), _record(3),
            _record(4, ok=False, length=1), _record(5, ok=False, length=2),
            _record(6, intent="booking", ok=False, length=12),
        )
        analysis = await self.analyzer.analyze_patterns("faq")
        assert analysis.total_successful == 3
        assert analysis.success_rate == pytest.approx(0.6)
        assert analysis.common_failure_reasons == [SHORT_FAILURE_REASON]

    @pytest.mark.asyncio
    async def test_long_failures_flagged(self):
        await self._add(_record(1, ok=False, length=12), _record(2, ok=False, length=15))
        analysis = await self.analyzer.analyze_patterns()
        assert analysis.common_failure_reasons == [LONG_FAILURE_REASON]

    @pytest.mark.asyncio
    async def test_no_records(self):
        analysis = await self.analyzer.analyze_patterns("faq")
        assert analysis.success_rate == 0.0
        assert analysis.common_failure_reasons == []


class TestKnowledgeBaseMining:
    def setup_method(self):
        self.store = InMemoryStore()
        self.analyzer = LearningAnalyzer(self.store)

    async def _add(self, *records):
        for record in records:
            await self.store.add_learning_record(record)

    @pytest.mark.asyncio
    async def test_recurring_question_grouped_after_normalization(self):
        await self._add(
            _record(1, "What time do you open?"),
            _record(2, "what time do you open"),
            _record(3, "What time do you OPEN!"),
        )
        faqs = await self.analyzer.extract_potential_faqs()
        assert [(f.question, f.occurrences) for f in faqs] == [("what time do you open", 3)]

    @pytest.mark.asyncio
    async def test_successful_faq_added_once(self):
        await self._add(*[_record(i) for i in range(3)])
        assert await self.analyzer.auto_improve_knowledge_base() == {"added": 1, "total": 1}
        entry = (await self.store.list_knowledge())[0]
        assert (entry.answer, entry.source) == ("We open at 9 AM.", "learned")
        assert all(r.flagged_for_kb for r in await self.store.list_learning_records())

        assert await self.analyzer.auto_improve_knowledge_base() == {"added": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_poorly_answered_question_skipped(self):
        await self._add(
            _record(1, "Do you do twins?"),
            _record(2, "Do you do twins?", ok=False),
            _record(3, "Do you do twins?", ok=False),
        )
        assert await self.analyzer.auto_improve_knowledge_base() == {"added": 0, "total": 1}

    @pytest.mark.asyncio
    async def test_existing_knowledge_not_duplicated(self):
        await self.store.save_knowledge(KnowledgeEntry(question="What time do you open", answer="9 AM"))
        await self._add(*[_record(i) for i in range(3)])
        assert (await self.analyzer.auto_improve_knowledge_base())["added"] == 0


class TestStagePromotion:
    @pytest.mark.asyncio
    async def test_promotions(self):
        store = InMemoryStore()
        for customer_id in ("C1", "C2", "C3", "C4"):
            await store.save_customer(Customer(id=customer_id))
        booking = confirmed_booking()
        booking.customer_id = "C1"
        await store.save_booking(booking)
        await store.add_learning_record(_record(1, customer_id="C2"))
        memory = CustomerMemoryStore(store)
        await memory.update_relationship_stage("C4", RelationshipStage.VIP)

        promoted = await LearningAnalyzer(store, memory).promote_relationship_stages()

        assert promoted == {"booked": 1, "interested": 1}
        stages = [(await memory.get_or_create(c)).relationship_stage for c in ("C1", "C2", "C3", "C4")]
        assert stages == [
            RelationshipStage.BOOKED, RelationshipStage.INTERESTED,
            RelationshipStage.NEW, RelationshipStage.VIP,
        ]


class TestRunLearning:
    def test_invalid_entries_skipped(self, tmp_path):
        path = tmp_path / "records.json"
        valid = _record(1).model_dump(mode="json")
        path.write_text(json.dumps([valid, {"id": "broken"}]), encoding="utf-8")
        records = load_records(path)
        assert [r.id for r in records] == ["LR-1"]

    def test_report(self):
        records = [_record(i) for i in range(3)] + [_record(9, "hmm", ok=False, length=1)]
        report = asyncio.run(run(records, intent=None, days=30))
        assert "LEARNING REPORT" in report
        assert "Knowledge base: added 1 of 1 FAQ candidates" in report
        assert "  + what time do you open" in report

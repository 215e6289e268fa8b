"""Tests for the in-memory store contract."""

from datetime import timedelta

import pytest

from studio_agent.schemas.booking_schema import BookingStatus
from studio_agent.schemas.conversation_schema import ConversationLearningRecord
from studio_agent.tools.store import BookingConflictError, InMemoryStore
from tests.conftest import NOW, confirmed_booking, make_draft


class TestBookings:
    def setup_method(self):
        self.store = InMemoryStore()

    @pytest.mark.asyncio
    async def test_overlapping_confirmed_booking_rejected(self):
        await self.store.save_booking(confirmed_booking(at="10:00", booking_id="BK-1"))
        with pytest.raises(BookingConflictError) as exc_info:
            await self.store.save_booking(confirmed_booking(at="11:00", booking_id="BK-2"))
        assert exc_info.value.conflicting.id == "BK-1"

    @pytest.mark.asyncio
    async def test_provisional_overlap_allowed(self):
        await self.store.save_booking(confirmed_booking(at="10:00", booking_id="BK-1"))
        pending = confirmed_booking(at="11:00", booking_id="BK-2")
        pending.status = BookingStatus.PROVISIONAL
        await self.store.save_booking(pending)
        assert (await self.store.get_booking("BK-2")).status == BookingStatus.PROVISIONAL

    @pytest.mark.asyncio
    async def test_resaving_same_booking_is_not_a_conflict(self):
        booking = confirmed_booking(at="10:00", booking_id="BK-1")
        await self.store.save_booking(booking)
        booking.deposit = 3000
        await self.store.save_booking(booking)
        assert (await self.store.get_booking("BK-1")).deposit == 3000


class TestCopies:
    def setup_method(self):
        self.store = InMemoryStore()

    @pytest.mark.asyncio
    async def test_draft_reads_are_detached(self):
        await self.store.save_draft(make_draft(service="Gold Package"))
        copy = await self.store.get_draft("CUS-TEST")
        copy.service = "VIP Package"
        assert (await self.store.get_draft("CUS-TEST")).service == "Gold Package"


class TestSessions:
    def setup_method(self):
        self.store = InMemoryStore()
        self.gap = timedelta(minutes=240)

    @pytest.mark.asyncio
    async def test_turns_accumulate_within_session(self):
        assert await self.store.count_turn("C1", NOW, self.gap) == 1
        assert await self.store.count_turn("C1", NOW + timedelta(minutes=5), self.gap) == 2

    @pytest.mark.asyncio
    async def test_gap_restarts_session(self):
        await self.store.count_turn("C1", NOW, self.gap)
        await self.store.count_turn("C1", NOW + timedelta(minutes=5), self.gap)
        assert await self.store.count_turn("C1", NOW + timedelta(hours=6), self.gap) == 1

    @pytest.mark.asyncio
    async def test_elapsed_measured_from_session_start(self):
        await self.store.count_turn("C1", NOW, self.gap)
        await self.store.count_turn("C1", NOW + timedelta(minutes=5), self.gap)
        assert await self.store.session_elapsed("C1", NOW + timedelta(minutes=5)) == 300.0

    @pytest.mark.asyncio
    async def test_elapsed_resets_with_new_session(self):
        await self.store.count_turn("C1", NOW, self.gap)
        later = NOW + timedelta(hours=6)
        await self.store.count_turn("C1", later, self.gap)
        assert await self.store.session_elapsed("C1", later + timedelta(seconds=30)) == 30.0

    @pytest.mark.asyncio
    async def test_elapsed_without_session(self):
        assert await self.store.session_elapsed("C1", NOW) == 0.0

    @pytest.mark.asyncio
    async def test_history_trimmed_to_limit(self):
        history = [{"role": "user", "content": str(i)} for i in range(10)]
        await self.store.save_history("C1", history, limit=6)
        stored = await self.store.get_history("C1")
        assert [m["content"] for m in stored] == ["4", "5", "6", "7", "8", "9"]


class TestLearningRecords:
    def setup_method(self):
        self.store = InMemoryStore()

    @pytest.mark.asyncio
    async def test_update_missing_record(self):
        record = ConversationLearningRecord(id="LR-1", customer_id="C1", user_message="hi", ai_response="hello")
        with pytest.raises(KeyError):
            await self.store.update_learning_record(record)

    @pytest.mark.asyncio
    async def test_filter_by_intent(self):
        for i, intent in enumerate(["faq", "booking", "faq"]):
            await self.store.add_learning_record(ConversationLearningRecord(
                id=f"LR-{i}", customer_id="C1", user_message="q", ai_response="a",
                extracted_intent=intent,
            ))
        assert len(await self.store.list_learning_records(intent="faq")) == 2

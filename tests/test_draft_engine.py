"""Tests for draft extraction, merging and promotion to a booking."""

import pytest

from studio_agent.conversation.draft_engine import (
    CompletionAction,
    Extraction,
    normalize_date,
    normalize_time,
)
from studio_agent.schemas.booking_schema import BookingStatus, DraftStep
from studio_agent.tools.availability import local_datetime
from tests.conftest import (
    CUSTOMER_ID,
    NOW,
    complete_draft,
    confirmed_booking,
    extraction,
    make_draft,
)

TODAY = NOW.date()


@pytest.fixture
def drafts(engine):
    return engine.drafts


class TestNormalizeDate:
    def test_iso_passthrough(self):
        assert normalize_date("2030-03-05", TODAY) == "2030-03-05"

    def test_impossible_iso_date(self):
        assert normalize_date("2030-02-30", TODAY) is None

    def test_month_and_day(self):
        assert normalize_date("March 6", TODAY) == "2030-03-06"

    def test_unparseable(self):
        assert normalize_date("whenever", TODAY) is None


class TestNormalizeTime:
    def test_clock_time(self):
        assert normalize_time("9:30") == "09:30"

    def test_am_pm(self):
        assert normalize_time("2:30 pm") == "14:30"

    def test_bare_hour_with_suffix(self):
        assert normalize_time("10am") == "10:00"

    def test_part_of_day(self):
        assert normalize_time("morning") == "10:00"
        assert normalize_time("in the afternoon") == "14:00"

    def test_out_of_range(self):
        assert normalize_time("25:00") is None


class TestExtraction:
    def test_reads_camel_case_keys(self):
        result = Extraction.from_model_output(extraction(
            "provide", service="Gold", recipientPhone="0712345678",
        ))
        assert result.service == "Gold"
        assert result.recipient_phone == "0712345678"
        assert result.sub_intent == "provide"

    def test_blank_strings_and_unknown_sub_intent(self):
        result = Extraction.from_model_output({"service": "  ", "subIntent": "dance"})
        assert result.service is None
        assert result.sub_intent == "unknown"
        assert result.has_fields() is False

    @pytest.mark.asyncio
    async def test_extract_uses_model(self, drafts, llm):
        llm.script("extract", extraction("provide", date="2030-03-05", time="10:00"))
        outcome = await drafts.extract("Tuesday at 10am")
        assert outcome.degraded is False
        assert outcome.value.date == "2030-03-05"
        assert outcome.value.time == "10:00"

    @pytest.mark.asyncio
    async def test_extract_degrades_on_model_failure(self, drafts, llm):
        llm.fail = True
        outcome = await drafts.extract("Tuesday at 10am")
        assert outcome.degraded is True
        assert outcome.value.sub_intent == "unknown"
        assert outcome.value.has_fields() is False


class TestMerge:
    @pytest.mark.asyncio
    async def test_alias_resolves_to_catalog_name(self, drafts):
        draft = make_draft()
        result = await drafts.merge(draft, Extraction(service="the gold one"))
        assert result.applied == {"service": "Gold Package"}
        assert draft.service == "Gold Package"

    @pytest.mark.asyncio
    async def test_unknown_package_rejected(self, drafts):
        draft = make_draft()
        result = await drafts.merge(draft, Extraction(service="Diamond Package"))
        assert "service" in result.rejected
        assert draft.service is None

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, drafts):
        draft = make_draft()
        result = await drafts.merge(draft, Extraction(date="2030-03-01"))
        assert result.rejected["date"] == "That date has already passed."
        assert draft.date is None

    @pytest.mark.asyncio
    async def test_bad_phone_does_not_wipe_good_date(self, drafts):
        draft = make_draft(date="2030-03-05")
        result = await drafts.merge(draft, Extraction(date="2030-03-06", recipient_phone="12345"))
        assert result.applied == {"date": "2030-03-06"}
        assert "recipient_phone" in result.rejected
        assert draft.date == "2030-03-06"
        assert draft.recipient_phone is None

    @pytest.mark.asyncio
    async def test_absent_fields_keep_values(self, drafts):
        draft = make_draft(service="Gold Package")
        await drafts.merge(draft, Extraction(time="10am"))
        assert draft.service == "Gold Package"
        assert draft.time == "10:00"

    @pytest.mark.asyncio
    async def test_name_title_cased_and_phone_normalized(self, drafts):
        draft = make_draft()
        await drafts.merge(draft, Extraction(name="jane wanjiku", recipient_phone="0712 345 678"))
        assert draft.name == "Jane Wanjiku"
        assert draft.recipient_phone == "0712345678"

    @pytest.mark.asyncio
    async def test_single_letter_name_rejected(self, drafts):
        draft = make_draft()
        result = await drafts.merge(draft, Extraction(name="J"))
        assert "name" in result.rejected


class TestCheckAndComplete:
    @pytest.mark.asyncio
    async def test_incomplete_draft(self, drafts):
        result = await drafts.check_and_complete(make_draft(service="Gold Package"), confirmed=False)
        assert result.action == CompletionAction.INCOMPLETE
        assert result.deposit == 2000

    @pytest.mark.asyncio
    async def test_free_slot_ready_for_deposit(self, drafts):
        draft = complete_draft()
        result = await drafts.check_and_complete(draft, confirmed=False)
        assert result.action == CompletionAction.READY_FOR_DEPOSIT
        assert draft.step == DraftStep.REVIEW

    @pytest.mark.asyncio
    async def test_taken_slot_unavailable_with_alternatives(self, drafts, store):
        await store.save_booking(confirmed_booking(at="10:00"))
        result = await drafts.check_and_complete(complete_draft(), confirmed=False)
        assert result.action == CompletionAction.UNAVAILABLE
        assert [s.strftime("%H:%M") for s in result.alternatives] == [
            "12:30", "13:00", "13:30", "14:00", "14:30",
        ]

    @pytest.mark.asyncio
    async def test_slot_taken_at_confirm_is_conflict(self, drafts, store, payments):
        await store.save_booking(confirmed_booking(at="10:00"))
        result = await drafts.check_and_complete(complete_draft(), confirmed=True)
        assert result.action == CompletionAction.CONFLICT
        assert payments.requests == []

    @pytest.mark.asyncio
    async def test_calendar_failure_never_reads_as_free(self, drafts, calendar):
        calendar.fail_with = RuntimeError("quota exceeded")
        result = await drafts.check_and_complete(complete_draft(), confirmed=True)
        assert result.action == CompletionAction.FAILED
        assert result.message == "calendar_unavailable"

    @pytest.mark.asyncio
    async def test_confirm_creates_provisional_booking_and_requests_deposit(
        self, drafts, store, payments
    ):
        draft = complete_draft()
        result = await drafts.check_and_complete(draft, confirmed=True)

        assert result.action == CompletionAction.PAYMENT_INITIATED
        assert draft.step == DraftStep.CONFIRM_DEPOSIT
        assert draft.booking_id == result.booking.id
        stored = await store.get_booking(result.booking.id)
        assert stored.status == BookingStatus.PROVISIONAL
        assert stored.duration_minutes == 150
        assert stored.payment_reference.startswith("PAY-")
        assert len(payments.requests) == 1
        assert payments.requests[0].amount == 2000
        assert payments.requests[0].phone == "0712345678"

    @pytest.mark.asyncio
    async def test_repeat_confirm_does_not_charge_twice(self, drafts, payments):
        draft = complete_draft()
        await drafts.check_and_complete(draft, confirmed=True)
        again = await drafts.check_and_complete(draft, confirmed=True)
        assert again.action == CompletionAction.PAYMENT_INITIATED
        assert len(payments.requests) == 1

    @pytest.mark.asyncio
    async def test_payment_failure_cancels_booking(self, drafts, store, payments):
        payments.fail_with = RuntimeError("gateway down")
        draft = complete_draft()
        result = await drafts.check_and_complete(draft, confirmed=True)

        assert result.action == CompletionAction.FAILED
        assert draft.step == DraftStep.REVIEW
        bookings = await store.list_bookings_for_customer(CUSTOMER_ID)
        assert [b.status for b in bookings] == [BookingStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_time_already_passed_today(self, drafts):
        drafts._clock = lambda: local_datetime(TODAY.isoformat(), "15:00")
        draft = complete_draft(service="Standard Package", date=TODAY.isoformat(), time="09:00")

        result = await drafts.check_and_complete(draft, confirmed=False)

        assert result.action == CompletionAction.UNAVAILABLE
        assert result.message == "in_past"
        assert all(slot >= local_datetime(TODAY.isoformat(), "15:00") for slot in result.alternatives)


class TestConfirmPayment:
    async def _initiate(self, drafts):
        draft = complete_draft()
        result = await drafts.check_and_complete(draft, confirmed=True)
        await drafts.save(draft)
        return result.booking

    @pytest.mark.asyncio
    async def test_confirms_booking_and_discards_draft(self, drafts, store):
        booking = await self._initiate(drafts)
        result = await drafts.confirm_payment(booking.id)

        assert result.action == CompletionAction.CONFIRMED
        stored = await store.get_booking(booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert stored.calendar_event_id is not None
        assert await store.get_draft(CUSTOMER_ID) is None

    @pytest.mark.asyncio
    async def test_second_confirmation_is_idempotent(self, drafts):
        booking = await self._initiate(drafts)
        await drafts.confirm_payment(booking.id)
        result = await drafts.confirm_payment(booking.id)
        assert result.action == CompletionAction.CONFIRMED

    @pytest.mark.asyncio
    async def test_slot_lost_before_payment(self, drafts, store):
        booking = await self._initiate(drafts)
        await store.save_booking(confirmed_booking(at="10:00"))

        result = await drafts.confirm_payment(booking.id)

        assert result.action == CompletionAction.CONFLICT
        assert result.alternatives
        assert (await store.get_booking(booking.id)).status == BookingStatus.CANCELLED
        draft = await store.get_draft(CUSTOMER_ID)
        assert draft.step == DraftStep.COLLECT_TIME
        assert draft.time is None
        assert draft.booking_id is None
        assert draft.offered_slots == [s.isoformat() for s in result.alternatives]

    @pytest.mark.asyncio
    async def test_cancelled_booking_is_not_revived(self, drafts, store):
        booking = await self._initiate(drafts)
        await drafts.cancel(await store.get_draft(CUSTOMER_ID))

        result = await drafts.confirm_payment(booking.id)

        assert result.action == CompletionAction.FAILED
        assert result.message == f"Booking {booking.id} is cancelled"
        assert (await store.get_booking(booking.id)).status == BookingStatus.CANCELLED
        assert await store.list_confirmed_between(booking.start, booking.end) == []

    @pytest.mark.asyncio
    async def test_slot_lost_leaves_unrelated_draft_alone(self, drafts, store):
        booking = await self._initiate(drafts)
        await drafts.discard(CUSTOMER_ID)
        await store.save_draft(make_draft())
        await store.save_booking(confirmed_booking(at="10:00"))

        result = await drafts.confirm_payment(booking.id)

        assert result.action == CompletionAction.CONFLICT
        assert result.draft is None
        assert (await store.get_booking(booking.id)).status == BookingStatus.CANCELLED
        draft = await store.get_draft(CUSTOMER_ID)
        assert draft.step == DraftStep.COLLECT_SERVICE
        assert draft.offered_slots == []

    @pytest.mark.asyncio
    async def test_unknown_booking(self, drafts):
        with pytest.raises(KeyError):
            await drafts.confirm_payment("BK-MISSING")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_releases_provisional_booking(self, drafts, store):
        draft = complete_draft()
        result = await drafts.check_and_complete(draft, confirmed=True)
        await drafts.save(draft)

        cancelled = await drafts.cancel(draft)

        assert cancelled.action == CompletionAction.CANCELLED
        assert (await store.get_booking(result.booking.id)).status == BookingStatus.CANCELLED
        assert await store.get_draft(CUSTOMER_ID) is None

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable(self, drafts):
        first = await drafts.get_or_create(CUSTOMER_ID)
        first.service = "Gold Package"
        await drafts.save(first)
        second = await drafts.get_or_create(CUSTOMER_ID)
        assert second.service == "Gold Package"
        assert second.step == DraftStep.COLLECT_SERVICE

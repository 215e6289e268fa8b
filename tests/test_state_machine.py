"""Tests for the booking draft stepper."""

import pytest

from studio_agent.conversation.state_machine import (
    BookingStepper,
    DraftTrigger,
    InvalidTransitionError,
    step_for,
)
from studio_agent.schemas.booking_schema import DraftStep
from tests.conftest import complete_draft, make_draft


class TestInitialStep:
    def test_new_draft_collects_service(self):
        stepper = BookingStepper(make_draft())
        assert stepper.current_step == DraftStep.COLLECT_SERVICE

    def test_not_terminal(self):
        assert BookingStepper(make_draft()).is_terminal() is False


class TestStepFor:
    def test_missing_service(self):
        assert step_for(make_draft(date="2030-03-05")) == DraftStep.COLLECT_SERVICE

    def test_name_without_phone_still_collects_name(self):
        draft = make_draft(service="Gold Package", date="2030-03-05", time="10:00", name="Jane")
        assert step_for(draft) == DraftStep.COLLECT_NAME

    def test_all_fields_means_review(self):
        assert step_for(complete_draft(step=DraftStep.COLLECT_SERVICE)) == DraftStep.REVIEW


class TestSync:
    def test_single_field_moves_one_step(self):
        draft = make_draft(service="Gold Package")
        assert BookingStepper(draft).sync() == DraftStep.COLLECT_DATE
        assert draft.step == DraftStep.COLLECT_DATE

    def test_date_and_time_together_move_two_steps(self):
        draft = make_draft(service="Gold Package", step=DraftStep.COLLECT_DATE)
        draft.date = "2030-03-05"
        draft.time = "10:00"
        assert BookingStepper(draft).sync() == DraftStep.COLLECT_NAME

    def test_out_of_order_fields_wait_for_service(self):
        draft = make_draft(date="2030-03-05", time="10:00")
        assert BookingStepper(draft).sync() == DraftStep.COLLECT_SERVICE

    def test_pulls_back_when_field_missing(self):
        draft = make_draft(service="Gold Package", step=DraftStep.COLLECT_NAME)
        assert BookingStepper(draft).sync() == DraftStep.COLLECT_DATE

    def test_complete_draft_reaches_review(self):
        draft = complete_draft(step=DraftStep.COLLECT_SERVICE)
        assert BookingStepper(draft).sync() == DraftStep.REVIEW

    def test_sync_does_not_leave_review(self):
        draft = complete_draft()
        assert BookingStepper(draft).sync() == DraftStep.REVIEW


class TestReviewGate:
    def test_confirm_moves_to_deposit(self):
        stepper = BookingStepper(complete_draft())
        assert stepper.transition(DraftTrigger.CUSTOMER_CONFIRMED) == DraftStep.CONFIRM_DEPOSIT

    def test_edit_date_loops_back(self):
        draft = complete_draft()
        stepper = BookingStepper(draft)
        assert stepper.request_edit("date") == DraftStep.COLLECT_DATE
        assert draft.date == "2030-03-05"

    def test_edit_phone_maps_to_name_step(self):
        stepper = BookingStepper(complete_draft())
        assert stepper.request_edit("phone") == DraftStep.COLLECT_NAME

    def test_edit_unknown_field(self):
        with pytest.raises(InvalidTransitionError, match="Unknown field"):
            BookingStepper(complete_draft()).request_edit("colour")

    def test_edit_then_sync_returns_to_review(self):
        draft = complete_draft()
        stepper = BookingStepper(draft)
        stepper.request_edit("time")
        draft.time = "14:00"
        assert stepper.sync() == DraftStep.REVIEW

    def test_slot_taken_returns_to_time(self):
        stepper = BookingStepper(complete_draft())
        assert stepper.transition(DraftTrigger.SLOT_TAKEN) == DraftStep.COLLECT_TIME


class TestDeposit:
    def setup_method(self):
        self.draft = complete_draft(step=DraftStep.CONFIRM_DEPOSIT)
        self.stepper = BookingStepper(self.draft)

    def test_payment_confirmed_is_terminal(self):
        self.stepper.transition(DraftTrigger.PAYMENT_CONFIRMED)
        assert self.stepper.is_terminal() is True

    def test_payment_failed_returns_to_review(self):
        assert self.stepper.transition(DraftTrigger.PAYMENT_FAILED) == DraftStep.REVIEW


class TestInvalidTransitions:
    def test_confirm_before_review_rejected(self):
        stepper = BookingStepper(make_draft())
        with pytest.raises(InvalidTransitionError, match="Valid triggers"):
            stepper.transition(DraftTrigger.CUSTOMER_CONFIRMED)

    def test_edit_outside_review_rejected(self):
        with pytest.raises(InvalidTransitionError):
            BookingStepper(make_draft()).request_edit("date")

    def test_nothing_leaves_confirmed(self):
        stepper = BookingStepper(complete_draft(step=DraftStep.CONFIRMED))
        assert stepper.get_valid_triggers() == []
        with pytest.raises(InvalidTransitionError):
            stepper.cancel()


class TestCancel:
    @pytest.mark.parametrize("step", [
        DraftStep.COLLECT_SERVICE,
        DraftStep.COLLECT_TIME,
        DraftStep.REVIEW,
        DraftStep.CONFIRM_DEPOSIT,
    ])
    def test_cancel_from_open_step(self, step):
        stepper = BookingStepper(complete_draft(step=step))
        assert stepper.cancel() == DraftStep.CANCELLED
        assert stepper.is_terminal() is True

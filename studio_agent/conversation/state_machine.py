"""
Explicit stepper for the booking draft lifecycle.

Draft fields may arrive in any order, but the customer-facing progress
always follows one path through the step graph:

    collect_service -> collect_date -> collect_time -> collect_name
        -> review -> confirm_deposit -> confirmed | cancelled

``sync`` walks the forward edges for as long as the draft already holds
the field each step collects, so a message carrying date and time at once
moves two steps. Edits from ``review`` jump back to a collection step
without clearing any other field.

Usage:
    stepper = BookingStepper(draft)
    stepper.sync()
    assert draft.step == DraftStep.COLLECT_DATE
"""

import logging
from dataclasses import dataclass
from enum import Enum

from studio_agent.schemas.booking_schema import BookingDraft, DraftStep

logger = logging.getLogger(__name__)


class DraftTrigger(str, Enum):
    """Events that move a draft between steps."""
    SERVICE_PROVIDED = "service_provided"
    DATE_PROVIDED = "date_provided"
    TIME_PROVIDED = "time_provided"
    DETAILS_COMPLETE = "details_complete"
    CUSTOMER_CONFIRMED = "customer_confirmed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    SLOT_TAKEN = "slot_taken"
    EDIT_SERVICE = "edit_service"
    EDIT_DATE = "edit_date"
    EDIT_TIME = "edit_time"
    EDIT_NAME = "edit_name"
    CANCEL = "cancel"


@dataclass
class Transition:
    """A single valid step transition."""
    from_step: DraftStep
    to_step: DraftStep
    trigger: DraftTrigger


class InvalidTransitionError(Exception):
    """Raised when a trigger is not valid from the draft's current step."""


TERMINAL_STEPS = frozenset({DraftStep.CONFIRMED, DraftStep.CANCELLED})

# Draft fields each collection step is waiting for.
STEP_FIELDS: dict[DraftStep, tuple[str, ...]] = {
    DraftStep.COLLECT_SERVICE: ("service",),
    DraftStep.COLLECT_DATE: ("date",),
    DraftStep.COLLECT_TIME: ("time",),
    DraftStep.COLLECT_NAME: ("name", "recipient_phone"),
}

FORWARD_TRIGGERS: dict[DraftStep, DraftTrigger] = {
    DraftStep.COLLECT_SERVICE: DraftTrigger.SERVICE_PROVIDED,
    DraftStep.COLLECT_DATE: DraftTrigger.DATE_PROVIDED,
    DraftStep.COLLECT_TIME: DraftTrigger.TIME_PROVIDED,
    DraftStep.COLLECT_NAME: DraftTrigger.DETAILS_COMPLETE,
}

EDIT_TRIGGERS: dict[str, DraftTrigger] = {
    "service": DraftTrigger.EDIT_SERVICE,
    "package": DraftTrigger.EDIT_SERVICE,
    "date": DraftTrigger.EDIT_DATE,
    "time": DraftTrigger.EDIT_TIME,
    "name": DraftTrigger.EDIT_NAME,
    "phone": DraftTrigger.EDIT_NAME,
}


def step_for(draft: BookingDraft) -> DraftStep:
    """Collection step implied by field completeness alone."""
    for step, fields in STEP_FIELDS.items():
        if not all(getattr(draft, f) for f in fields):
            return step
    return DraftStep.REVIEW


class BookingStepper:
    """
    Deterministic step machine over a ``BookingDraft``.

    Every transition must appear in ``TRANSITIONS``; anything else is
    rejected with the list of triggers valid from the current step.
    """

    TRANSITIONS: list[Transition] = [
        # --- Collection ---
        Transition(DraftStep.COLLECT_SERVICE, DraftStep.COLLECT_DATE, DraftTrigger.SERVICE_PROVIDED),
        Transition(DraftStep.COLLECT_DATE, DraftStep.COLLECT_TIME, DraftTrigger.DATE_PROVIDED),
        Transition(DraftStep.COLLECT_TIME, DraftStep.COLLECT_NAME, DraftTrigger.TIME_PROVIDED),
        Transition(DraftStep.COLLECT_NAME, DraftStep.REVIEW, DraftTrigger.DETAILS_COMPLETE),

        # --- Review gate ---
        Transition(DraftStep.REVIEW, DraftStep.CONFIRM_DEPOSIT, DraftTrigger.CUSTOMER_CONFIRMED),
        Transition(DraftStep.REVIEW, DraftStep.COLLECT_SERVICE, DraftTrigger.EDIT_SERVICE),
        Transition(DraftStep.REVIEW, DraftStep.COLLECT_DATE, DraftTrigger.EDIT_DATE),
        Transition(DraftStep.REVIEW, DraftStep.COLLECT_TIME, DraftTrigger.EDIT_TIME),
        Transition(DraftStep.REVIEW, DraftStep.COLLECT_NAME, DraftTrigger.EDIT_NAME),
        Transition(DraftStep.REVIEW, DraftStep.COLLECT_TIME, DraftTrigger.SLOT_TAKEN),

        # --- Deposit ---
        Transition(DraftStep.CONFIRM_DEPOSIT, DraftStep.CONFIRMED, DraftTrigger.PAYMENT_CONFIRMED),
        Transition(DraftStep.CONFIRM_DEPOSIT, DraftStep.REVIEW, DraftTrigger.PAYMENT_FAILED),
        Transition(DraftStep.CONFIRM_DEPOSIT, DraftStep.COLLECT_TIME, DraftTrigger.SLOT_TAKEN),

        # --- Cancellation from any open step ---
        *[
            Transition(step, DraftStep.CANCELLED, DraftTrigger.CANCEL)
            for step in DraftStep
            if step not in TERMINAL_STEPS
        ],
    ]

    def __init__(self, draft: BookingDraft) -> None:
        self._draft = draft

    @property
    def current_step(self) -> DraftStep:
        return self._draft.step

    def transition(self, trigger: DraftTrigger) -> DraftStep:
        """
        Execute a step transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_step == self._draft.step and t.trigger == trigger:
                old_step = self._draft.step
                self._draft.step = t.to_step
                logger.debug(
                    "Draft step: %s -> %s (trigger: %s)",
                    old_step.value, t.to_step.value, trigger.value,
                )
                return t.to_step

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._draft.step.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def sync(self) -> DraftStep:
        """Advance through collection steps whose fields are already filled.

        Also pulls the step back when a collection step it passed is
        missing its field (e.g. a fresh draft restored with gaps).
        """
        implied = step_for(self._draft)
        if self._draft.step in STEP_FIELDS and _order(implied) < _order(self._draft.step):
            self._draft.step = implied
        while self._draft.step in STEP_FIELDS:
            fields = STEP_FIELDS[self._draft.step]
            if not all(getattr(self._draft, f) for f in fields):
                break
            self.transition(FORWARD_TRIGGERS[self._draft.step])
        return self._draft.step

    def request_edit(self, field_name: str) -> DraftStep:
        """Loop back from review to the step collecting ``field_name``."""
        trigger = EDIT_TRIGGERS.get(field_name.lower())
        if trigger is None:
            raise InvalidTransitionError(
                f"Unknown field '{field_name}'. Editable fields: {sorted(EDIT_TRIGGERS)}"
            )
        return self.transition(trigger)

    def cancel(self) -> DraftStep:
        return self.transition(DraftTrigger.CANCEL)

    def get_valid_triggers(self) -> list[DraftTrigger]:
        """Return all triggers valid from the current step."""
        return [t.trigger for t in self.TRANSITIONS if t.from_step == self._draft.step]

    def is_terminal(self) -> bool:
        return self._draft.step in TERMINAL_STEPS


_STEP_ORDER = list(DraftStep)


def _order(step: DraftStep) -> int:
    return _STEP_ORDER.index(step)

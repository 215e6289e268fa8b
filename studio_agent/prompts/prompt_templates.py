"""Dynamic prompt construction and canned customer-facing booking messages."""

from datetime import date, datetime, timedelta
from typing import Optional

from studio_agent.config import settings
from studio_agent.schemas.booking_schema import Booking, BookingDraft, DraftStep
from studio_agent.schemas.conversation_schema import KnowledgeEntry
from studio_agent.tools.availability import format_slot
from studio_agent.utils import format_money


def build_extraction_prompt(today: date, tz_name: str) -> str:
    """Instruction for pulling booking fields out of the current message."""
    tomorrow = today + timedelta(days=1)
    day_after = today + timedelta(days=2)
    return f"""You are a precise JSON extractor for maternity photoshoot bookings.
Return ONLY valid JSON with this schema:

{{
  "service": string | null,
  "date": string | null,
  "time": string | null,
  "name": string | null,
  "recipientPhone": string | null,
  "subIntent": "start" | "provide" | "confirm" | "cancel" | "reschedule" | "unknown"
}}

CONTEXT:
Current date: {today.isoformat()} ({today.strftime('%A')})
Timezone: {tz_name}

RULES:
1. Extract ONLY what is explicitly present in the CURRENT message.
2. If the customer corrects an earlier value, extract the NEW value.
3. Use null for anything not mentioned or unclear. Never invent values.

DATES (always YYYY-MM-DD):
- "tomorrow" -> {tomorrow.isoformat()}
- "day after tomorrow" -> {day_after.isoformat()}
- Day names resolve to their NEXT occurrence; "next Friday" is the Friday of next week.
- "the 5th" resolves to the next 5th that is not in the past.

TIMES (always 24-hour HH:MM):
- "2pm" -> "14:00"; "morning" -> "10:00"; "afternoon" -> "14:00"; "evening" -> "17:00".

PHONE: copy any phone number (07XX..., 01XX..., +254...) as written.

SUB-INTENT:
- start: starting a new booking ("I want to book", "can I schedule")
- provide: giving or changing details ("my name is...", "change the time to...")
- confirm: short confirmations ("yes", "confirm", "sounds good")
- cancel: abandoning the booking ("cancel", "forget it", "never mind")
- reschedule: moving an existing booking
- unknown: none of the above

EXAMPLE:
User: "My name is Jane, number is 0712345678"
-> {{"service": null, "date": null, "time": null, "name": "Jane", "recipientPhone": "0712345678", "subIntent": "provide"}}"""


def build_faq_context(
    knowledge: list[KnowledgeEntry],
    personalization: Optional[str] = None,
) -> str:
    """Extra grounding appended to the FAQ system prompt."""
    parts: list[str] = []
    if knowledge:
        parts.append("KNOWN ANSWERS:")
        for entry in knowledge:
            parts.append(f"Q: {entry.question}\nA: {entry.answer}")
    if personalization:
        parts.append(f"CUSTOMER CONTEXT:\n{personalization}")
    return "\n\n".join(parts)


def build_scoring_message(
    response: str,
    user_message: str,
    intent: Optional[str],
    emotional_tone: Optional[str],
    history: list[dict[str, str]],
) -> str:
    """User turn for the scoring call: the reply in its conversation context."""
    lines = []
    if history:
        lines.append("RECENT CONVERSATION:")
        for turn in history[-4:]:
            lines.append(f"{turn['role']}: {turn['content']}")
    lines.append(f"CUSTOMER MESSAGE: {user_message}")
    if intent:
        lines.append(f"DETECTED INTENT: {intent}")
    if emotional_tone:
        lines.append(f"CUSTOMER TONE: {emotional_tone}")
    lines.append(f"ASSISTANT REPLY TO SCORE:\n{response}")
    return "\n".join(lines)


def build_improvement_message(
    response: str,
    user_message: str,
    scores: dict[str, float],
    issues: list[str],
    recommendations: list[str],
) -> str:
    """User turn for the improvement call."""
    score_line = ", ".join(f"{k}={v:.1f}" for k, v in scores.items())
    lines = [
        f"CUSTOMER MESSAGE: {user_message}",
        f"ORIGINAL REPLY:\n{response}",
        f"SCORES: {score_line}",
    ]
    if issues:
        lines.append("ISSUES:\n" + "\n".join(f"- {i}" for i in issues))
    if recommendations:
        lines.append("RECOMMENDATIONS:\n" + "\n".join(f"- {r}" for r in recommendations))
    return "\n".join(lines)


# --- Canned booking messages ---

STEP_MESSAGES: dict[DraftStep, str] = {
    DraftStep.COLLECT_SERVICE: "Which package would you like to book?",
    DraftStep.COLLECT_DATE: "What date would you prefer for your session?",
    DraftStep.COLLECT_TIME: "What time works best for you?",
    DraftStep.COLLECT_NAME: "May I have your name and a phone number for the booking?",
    DraftStep.REVIEW: (
        "Please review your booking details:\nPackage: {service}\nDate: {date}\n"
        "Time: {time}\nName: {name}\nPhone: {phone}\n"
        "Reply 'edit [field]' to change any detail, or 'confirm' to proceed."
    ),
    DraftStep.CONFIRM_DEPOSIT: (
        "To confirm your booking, a deposit of {deposit} is required. "
        "Reply 'confirm' to accept and receive the payment prompt."
    ),
    DraftStep.CONFIRMED: "Your booking is confirmed! 🎉",
    DraftStep.CANCELLED: "Your booking has been cancelled.",
}

PLATFORMS = ("whatsapp", "instagram", "messenger")


def format_for_platform(message: str, platform: str) -> str:
    """Messenger renders no markdown, so bold markers are dropped there."""
    if platform == "messenger":
        return message.replace("*", "")
    return message


def booking_step_message(
    step: DraftStep,
    draft: Optional[BookingDraft] = None,
    deposit: Optional[float] = None,
    platform: str = "whatsapp",
) -> str:
    """Platform-agnostic message for a stepper step."""
    template = STEP_MESSAGES.get(step, "How can I help you with your booking?")
    amount = settings.booking.default_deposit if deposit is None else deposit
    message = template.format(
        service=draft.service if draft else "",
        date=draft.date if draft else "",
        time=draft.time if draft else "",
        name=draft.name if draft else "",
        phone=draft.recipient_phone if draft else "",
        deposit=format_money(amount, settings.business.currency),
    )
    return format_for_platform(message, platform)


def build_collect_reply(draft: BookingDraft, rejected: dict[str, str]) -> str:
    """Ask for the next missing detail, prefixed with why any value was refused."""
    problems = " ".join(rejected.values())
    question = booking_step_message(draft.step, draft)
    if draft.step == DraftStep.COLLECT_DATE and draft.service:
        question = (
            f"Great choice, the *{draft.service}*! When would you like to come in "
            'for the shoot? (e.g., "next Tuesday at 10am")'
        )
    elif draft.step == DraftStep.COLLECT_NAME and draft.name and not draft.recipient_phone:
        question = f"Thanks {draft.name}! What phone number should we use for the booking?"
    return f"{problems} {question}".strip()


def build_unavailable_reply(alternatives: list[datetime]) -> str:
    if not alternatives:
        return (
            "I'm sorry, that slot is already taken and there are no other free times "
            "that day. Would another date work for you?"
        )
    options = ", ".join(format_slot(slot) for slot in alternatives)
    return (
        "I'm sorry, that slot is already taken or outside our working hours. "
        f"Here are some other times that day: {options}. Which one works for you?"
    )


def build_conflict_reply(alternatives: list[datetime]) -> str:
    if not alternatives:
        return (
            "I'm sorry, that time was just booked by someone else and the rest of the "
            "day is full. Would another date work for you?"
        )
    lines = ["I'm sorry, that time was just booked by someone else. Here are the closest free slots:"]
    lines.extend(f"{i}. {format_slot(slot)}" for i, slot in enumerate(alternatives, start=1))
    lines.append(f"Which one would you prefer? (1-{len(alternatives)})")
    return "\n".join(lines)


def build_ready_for_deposit_reply(draft: BookingDraft, deposit: float) -> str:
    amount = format_money(deposit, settings.business.currency)
    return (
        "Here are your booking details:\n"
        f"📦 Package: {draft.service}\n"
        f"📅 Date: {draft.date}\n"
        f"🕐 Time: {draft.time}\n"
        f"👤 Name: {draft.name}\n"
        f"📱 Phone: {draft.recipient_phone}\n\n"
        f"A deposit of {amount} secures your slot. Reply with *CONFIRM* to receive "
        "the payment prompt, or 'edit [field]' to change anything."
    )


def build_payment_initiated_reply(deposit: float, phone: str) -> str:
    amount = format_money(deposit, settings.business.currency)
    return (
        f"I've sent a payment request of {amount} to {phone}. Please complete it on "
        "your phone and your booking will be confirmed automatically."
    )


def build_payment_failed_reply() -> str:
    return (
        "I couldn't start the deposit payment just now. Your details are saved, so "
        "please reply *CONFIRM* again in a moment, or call us on "
        f"{settings.business.phone}."
    )


def build_calendar_failed_reply() -> str:
    return (
        "I couldn't check the studio calendar just now. Your details are saved; please "
        f"try again shortly or call us on {settings.business.phone}."
    )


def build_booking_confirmed_reply(booking: Booking) -> str:
    local = booking.start.strftime("%A, %B %d at %I:%M %p")
    return (
        f"Your booking is confirmed! 🎉\n{booking.service} on {local}. "
        "The remaining balance is due after your photoshoot. See you soon!"
    )


def build_edit_reply(field_name: str) -> str:
    prompts = {
        "service": "Sure, which package would you like instead?",
        "package": "Sure, which package would you like instead?",
        "date": "No problem, what date would you prefer?",
        "time": "No problem, what time works better?",
        "name": "Sure, what name and phone number should we use?",
        "phone": "Sure, what phone number should we use?",
    }
    return prompts.get(field_name, booking_step_message(DraftStep.REVIEW))


def build_handoff_reply() -> str:
    return (
        "I've passed your conversation to a member of our team and they'll get back "
        f"to you shortly. If it's urgent, you can call us on {settings.business.phone}."
    )


CLARIFICATION_REPLY = (
    "I'd love to help! Are you looking to learn about our packages, ask a question "
    "about your shoot, or make a booking?"
)

TOKEN_LIMIT_REPLY = (
    "Thanks for your messages today! Our team will pick up the conversation from "
    f"here. You can also reach us on {settings.business.phone}."
)

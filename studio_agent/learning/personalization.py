"""Reply adaptation to a customer's style and mood, and preference extraction."""

import re
from dataclasses import dataclass, field
from typing import Optional

from studio_agent.schemas.booking_schema import Package
from studio_agent.schemas.conversation_schema import EmotionalTone
from studio_agent.schemas.customer_schema import CommunicationStyle
from studio_agent.tools.catalog import find_mentioned_packages

DECORATIVE_EMOJI_RE = re.compile("💕|💖|🌸|✨|🎈|💐|🌟|😊|💁‍♀️|👑|🗓️|🎉")
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

# Replies that must reach the customer whole: listings, contact cards,
# slot suggestions and booking instructions.
STRUCTURED_REPLY_RE = re.compile(
    r"📦|📍|📞|📧|🌐|🕐|KES|CONFIRM|\n\s*(?:\d+\.|•|-)\s"
    r"|here are|which one|do any of these",
    re.IGNORECASE,
)

BUDGET_RE = re.compile(r"(\d[\d,]*)\s*(?:ksh|kes|shillings?|bob)\b", re.IGNORECASE)
TIME_OF_DAY_WORDS = ("morning", "afternoon", "evening")


def is_structured(text: str) -> bool:
    return bool(STRUCTURED_REPLY_RE.search(text))


def adapt_response(text: str, style: CommunicationStyle) -> str:
    """Brief customers get the first two sentences without decoration."""
    if style != CommunicationStyle.BRIEF:
        return text
    stripped = DECORATIVE_EMOJI_RE.sub("", text)
    stripped = re.sub(r"[ \t]+\n", "\n", stripped).strip()
    if is_structured(text):
        return stripped
    first_paragraph = stripped.split("\n\n")[0]
    sentences = SENTENCE_RE.split(first_paragraph)
    return " ".join(sentences[:2]).strip()


def match_emotional_tone(text: str, tone: EmotionalTone) -> str:
    if tone == EmotionalTone.ANXIOUS:
        return f"{text}\n\nDon't worry, I'm here to make this as easy and stress-free as possible! 💕"
    if tone == EmotionalTone.FRUSTRATED:
        return f"I'm so sorry for any confusion! Let me help make this right. {text}"
    if tone == EmotionalTone.CONFUSED and not is_structured(text):
        return f"Let me break this down simply:\n\n{text}\n\nFeel free to ask if anything is unclear! 😊"
    if tone == EmotionalTone.EXCITED and not is_structured(text):
        return re.sub(r"\.(\s|$)", r"!\1", text)
    return text


@dataclass
class Preferences:
    packages: set[str] = field(default_factory=set)
    times: set[str] = field(default_factory=set)
    budget_max: Optional[float] = None
    wants_makeup: bool = False
    wants_outdoor: bool = False

    def is_empty(self) -> bool:
        return not (self.packages or self.times or self.budget_max or self.wants_makeup or self.wants_outdoor)


def extract_preferences(message: str, packages: Optional[list[Package]] = None) -> Preferences:
    lower = message.lower()
    prefs = Preferences()
    budget = BUDGET_RE.search(message)
    if budget:
        prefs.budget_max = float(budget.group(1).replace(",", ""))
    prefs.times = {word for word in TIME_OF_DAY_WORDS if word in lower}
    prefs.wants_makeup = "makeup" in lower or "make-up" in lower
    prefs.wants_outdoor = "outdoor" in lower or "beach" in lower
    if packages:
        prefs.packages = {p.name for p in find_mentioned_packages(message, packages)}
    return prefs

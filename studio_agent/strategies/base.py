"""
Response strategy interface.

A strategy declares a ``priority`` (higher runs first), a cheap
``can_handle`` predicate and an async ``generate_response`` that may
still decline by returning None, in which case the router falls through
to the next eligible strategy.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from studio_agent.config import settings
from studio_agent.schemas.booking_schema import BookingDraft
from studio_agent.schemas.conversation_schema import HistoryMessage, Intent, IntentAnalysis
from studio_agent.schemas.customer_schema import Customer

# Date/time vocabulary that continues an active booking rather than asking a question.
BOOKING_CONTINUATION_RE = re.compile(
    r"\b(?:date|time|when|schedule|book|appointment|tomorrow|next|monday|tuesday|"
    r"wednesday|thursday|friday|saturday|sunday)\b|\d\s*(?:am|pm)\b|\b\d{1,2}[:\-]\d{2}\b",
    re.IGNORECASE,
)

WANTS_TO_START_BOOKING_RE = re.compile(
    r"how.*(?:do|can).*(?:make|book|start|get|schedule).*(?:booking|appointment)"
    r"|(?:i want|i'd like|i need|can i|please).*(?:to book|booking|appointment|make.*booking|schedule)"
    r"|let.*book|start.*booking",
    re.IGNORECASE,
)


@dataclass
class StrategyDeps:
    """Collaborators shared by all strategies."""
    store: object
    catalog: object
    drafts: object
    escalations: object
    llm: object


@dataclass
class StrategyContext:
    """Everything a strategy may read for one turn."""
    customer_id: str
    message: str
    analysis: IntentAnalysis = field(default_factory=IntentAnalysis)
    draft: Optional[BookingDraft] = None
    history: list[HistoryMessage] = field(default_factory=list)
    platform: str = "whatsapp"
    personalization: Optional[str] = None
    customer: Optional[Customer] = None

    @property
    def intent(self) -> Intent:
        return self.analysis.primary_intent

    @property
    def has_draft(self) -> bool:
        return self.draft is not None

    def recent_assistant_turns(self, window: int = 3) -> list[str]:
        """Assistant messages among the last ``window`` history entries."""
        return [m["content"] for m in self.history[-window:] if m["role"] == "assistant"]

    def is_booking_continuation(self) -> bool:
        return self.has_draft and bool(BOOKING_CONTINUATION_RE.search(self.message))


@dataclass
class StrategyResult:
    """A reply plus the draft and running history after the turn."""
    reply: str
    draft: Optional[BookingDraft]
    history: list[HistoryMessage]
    action: str = "reply"
    strategy: str = ""


def updated_history(history: list[HistoryMessage], message: str, reply: str) -> list[HistoryMessage]:
    """Trim to the configured window, then append this turn."""
    limit = settings.booking.history_limit
    return [
        *history[-limit:],
        {"role": "user", "content": message},
        {"role": "assistant", "content": reply},
    ]


class ResponseStrategy(ABC):
    """Base class for the closed set of response strategies."""

    name: str = "base"
    priority: int = 0

    def __init__(self, deps: StrategyDeps) -> None:
        self.deps = deps

    @abstractmethod
    def can_handle(self, ctx: StrategyContext) -> bool:
        ...

    @abstractmethod
    async def generate_response(self, ctx: StrategyContext) -> Optional[StrategyResult]:
        ...

    def result(
        self,
        ctx: StrategyContext,
        reply: str,
        draft: Optional[BookingDraft],
        action: str = "reply",
    ) -> StrategyResult:
        return StrategyResult(
            reply=reply,
            draft=draft,
            history=updated_history(ctx.history, ctx.message, reply),
            action=action,
            strategy=self.name,
        )

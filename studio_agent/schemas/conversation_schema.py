"""Conversation, classification, escalation and learning records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TypedDict

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryMessage(TypedDict):
    """One chat turn in the shape language-model APIs expect."""

    role: str  # "user" | "assistant"
    content: str


class Intent(str, Enum):
    BOOKING = "booking"
    PACKAGE_INQUIRY = "package_inquiry"
    FAQ = "faq"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    COMPLAINT = "complaint"
    PRICE_INQUIRY = "price_inquiry"
    AVAILABILITY = "availability"
    OBJECTION = "objection"
    UNKNOWN = "unknown"


class EmotionalTone(str, Enum):
    HAPPY = "happy"
    EXCITED = "excited"
    NEUTRAL = "neutral"
    ANXIOUS = "anxious"
    FRUSTRATED = "frustrated"
    CONFUSED = "confused"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class IntentAnalysis(BaseModel):
    """Structured assessment of one inbound message."""
    primary_intent: Intent = Intent.UNKNOWN
    secondary_intents: list[Intent] = Field(default_factory=list)
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    urgency: Urgency = Urgency.MEDIUM
    complexity: Complexity = Complexity.SIMPLE
    requires_human_handoff: bool = False
    handoff_reasons: list[str] = Field(default_factory=list)


class EscalationType(str, Enum):
    AUTO_DETECTED = "auto_detected"
    MANUAL = "manual"
    AI_ESCALATION = "ai_escalation"
    BOOKING_CANCELLATION = "booking_cancellation"


class EscalationStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class Escalation(BaseModel):
    """A conversation flagged for a human operator."""
    id: str
    customer_id: str
    reason: str
    type: EscalationType = EscalationType.AUTO_DETECTED
    status: EscalationStatus = EscalationStatus.OPEN
    sentiment_score: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None


class OutcomeCategory(str, Enum):
    BOOKING_INITIATED = "booking_initiated"
    BOOKING_IN_PROGRESS = "booking_in_progress"
    INFORMATION_PROVIDED = "information_provided"
    RESOLVED = "resolved"
    ERROR = "error"


class ConversationLearningRecord(BaseModel):
    """Append-only record of one conversational turn."""
    id: str
    customer_id: str
    user_message: str
    ai_response: str
    extracted_intent: str = Intent.UNKNOWN.value
    emotional_tone: str = EmotionalTone.NEUTRAL.value
    was_successful: bool = True
    outcome: OutcomeCategory = OutcomeCategory.RESOLVED
    conversation_length: int = 0
    time_to_resolution_sec: Optional[float] = None
    flagged_for_kb: bool = False
    kb_category: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class SessionNote(BaseModel):
    """Operator-facing note attached to a customer's upcoming session."""
    id: str
    customer_id: str
    type: str  # "external_people" | "external_items"
    items: list[str] = Field(default_factory=list)
    description: str = ""
    status: str = "pending"
    created_at: datetime = Field(default_factory=_utcnow)


class KnowledgeEntry(BaseModel):
    """Question/answer pair used to ground FAQ answers."""
    question: str
    answer: str
    category: str = "general"
    source: str = "manual"
    created_at: datetime = Field(default_factory=_utcnow)

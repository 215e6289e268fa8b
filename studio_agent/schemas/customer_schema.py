"""Customer identity and long-lived memory models."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    MESSENGER = "messenger"
    CONSOLE = "console"


class RelationshipStage(str, Enum):
    NEW = "new"
    INTERESTED = "interested"
    BOOKED = "booked"
    RETURNING = "returning"
    VIP = "vip"


# Stages only move forward unless an operator overrides.
STAGE_RANK: dict[RelationshipStage, int] = {
    RelationshipStage.NEW: 0,
    RelationshipStage.INTERESTED: 1,
    RelationshipStage.BOOKED: 2,
    RelationshipStage.RETURNING: 3,
    RelationshipStage.VIP: 4,
}


class CommunicationStyle(str, Enum):
    BRIEF = "brief"
    FRIENDLY = "friendly"
    DETAILED = "detailed"


class Customer(BaseModel):
    """A customer known on one or more messaging channels."""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    channel_ids: dict[str, str] = Field(default_factory=dict)
    ai_enabled: bool = True
    ai_paused: bool = False
    active: bool = True
    tokens_used_today: int = 0
    tokens_used_total: int = 0
    token_day: Optional[date] = None
    created_at: datetime = Field(default_factory=_utcnow)


class CustomerMemory(BaseModel):
    """Per-customer profile mutated by the learning loop."""
    customer_id: str
    relationship_stage: RelationshipStage = RelationshipStage.NEW
    preferred_packages: set[str] = Field(default_factory=set)
    preferred_times: set[str] = Field(default_factory=set)
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    communication_style: CommunicationStyle = CommunicationStyle.FRIENDLY
    lifetime_value: float = 0.0
    satisfaction_score: Optional[float] = None
    total_bookings: int = 0
    conversation_summaries: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_utcnow)

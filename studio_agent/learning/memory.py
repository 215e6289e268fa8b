"""
Customer memory store.

Long-lived per-customer profile mutated by the learning loop:
preferences accumulate as set unions, conversation summaries roll over a
fixed window, and the relationship stage only moves forward unless an
operator overrides it.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from studio_agent.config import settings
from studio_agent.schemas.customer_schema import (
    STAGE_RANK,
    CommunicationStyle,
    CustomerMemory,
    RelationshipStage,
)

logger = logging.getLogger(__name__)

EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF]")


def detect_communication_style(messages: list[str]) -> CommunicationStyle:
    """Brief: short and plain. Friendly: emojis or exclamations. Otherwise detailed."""
    if not messages:
        return CommunicationStyle.FRIENDLY
    avg_length = sum(len(m) for m in messages) / len(messages)
    has_emojis = any(EMOJI_RE.search(m) for m in messages)
    has_exclamations = any("!" in m for m in messages)
    if avg_length < 50 and not has_emojis:
        return CommunicationStyle.BRIEF
    if has_emojis or has_exclamations:
        return CommunicationStyle.FRIENDLY
    return CommunicationStyle.DETAILED


class CustomerMemoryStore:
    """Read-modify-write operations over ``CustomerMemory`` records."""

    def __init__(self, store) -> None:
        self._store = store

    async def get_or_create(self, customer_id: str) -> CustomerMemory:
        memory = await self._store.get_memory(customer_id)
        if memory is None:
            memory = CustomerMemory(customer_id=customer_id)
            await self._store.save_memory(memory)
            logger.info("Created memory profile for %s", customer_id)
        return memory

    async def _save(self, memory: CustomerMemory) -> CustomerMemory:
        memory.updated_at = datetime.now(timezone.utc)
        return await self._store.save_memory(memory)

    async def update_preferences(
        self,
        customer_id: str,
        packages: Optional[set[str]] = None,
        times: Optional[set[str]] = None,
        budget_min: Optional[float] = None,
        budget_max: Optional[float] = None,
        style: Optional[CommunicationStyle] = None,
    ) -> CustomerMemory:
        memory = await self.get_or_create(customer_id)
        changed = False
        if packages and not packages <= memory.preferred_packages:
            memory.preferred_packages |= packages
            changed = True
        if times and not times <= memory.preferred_times:
            memory.preferred_times |= times
            changed = True
        if budget_min is not None and budget_min != memory.budget_min:
            memory.budget_min = budget_min
            changed = True
        if budget_max is not None and budget_max != memory.budget_max:
            memory.budget_max = budget_max
            changed = True
        if style is not None and style != memory.communication_style:
            memory.communication_style = style
            changed = True
        if changed:
            await self._save(memory)
            logger.debug("Updated preferences for %s", customer_id)
        return memory

    async def add_conversation_summary(self, customer_id: str, summary: str) -> CustomerMemory:
        memory = await self.get_or_create(customer_id)
        memory.conversation_summaries.append(summary)
        memory.conversation_summaries = memory.conversation_summaries[-settings.learning.summary_window:]
        return await self._save(memory)

    async def add_insight(self, customer_id: str, insight: str) -> CustomerMemory:
        memory = await self.get_or_create(customer_id)
        if insight not in memory.insights:
            memory.insights.append(insight)
            await self._save(memory)
        return memory

    async def update_relationship_stage(
        self, customer_id: str, stage: RelationshipStage, override: bool = False
    ) -> CustomerMemory:
        """Move the stage forward; a lower stage is ignored unless ``override``."""
        memory = await self.get_or_create(customer_id)
        current = memory.relationship_stage
        if stage == current:
            return memory
        if not override and STAGE_RANK[stage] < STAGE_RANK[current]:
            logger.debug("Ignoring stage downgrade %s -> %s for %s", current.value, stage.value, customer_id)
            return memory
        memory.relationship_stage = stage
        logger.info("Relationship stage for %s: %s -> %s", customer_id, current.value, stage.value)
        return await self._save(memory)

    async def add_lifetime_value(self, customer_id: str, amount: float) -> CustomerMemory:
        """Record a paid booking; crossing the VIP threshold promotes the customer."""
        memory = await self.get_or_create(customer_id)
        memory.lifetime_value += amount
        memory.total_bookings += 1
        await self._save(memory)
        logger.info("Lifetime value for %s: %.0f", customer_id, memory.lifetime_value)
        if memory.lifetime_value > settings.learning.vip_lifetime_value:
            memory = await self.update_relationship_stage(customer_id, RelationshipStage.VIP)
        return memory

    async def update_satisfaction(self, customer_id: str, rating: float) -> CustomerMemory:
        memory = await self.get_or_create(customer_id)
        current = memory.satisfaction_score if memory.satisfaction_score is not None else rating
        memory.satisfaction_score = (current + rating) / 2
        return await self._save(memory)

    async def personalization_context(self, customer_id: str) -> dict[str, Any]:
        memory = await self.get_or_create(customer_id)
        budget = None
        if memory.budget_min is not None or memory.budget_max is not None:
            budget = {"min": memory.budget_min, "max": memory.budget_max}
        return {
            "relationship_stage": memory.relationship_stage.value,
            "preferred_packages": sorted(memory.preferred_packages),
            "preferred_times": sorted(memory.preferred_times),
            "budget_range": budget,
            "communication_style": memory.communication_style.value,
            "lifetime_value": memory.lifetime_value,
            "total_bookings": memory.total_bookings,
            "satisfaction_score": memory.satisfaction_score,
            "insights": list(memory.insights),
            "last_interaction": memory.conversation_summaries[-1] if memory.conversation_summaries else None,
            "is_vip": memory.relationship_stage == RelationshipStage.VIP,
            "is_returning": memory.total_bookings > 0,
        }


def describe_context(context: dict[str, Any]) -> str:
    """Short plain-text profile for model prompts."""
    lines = [f"Relationship stage: {context['relationship_stage']}"]
    if context["preferred_packages"]:
        lines.append("Interested in: " + ", ".join(context["preferred_packages"]))
    if context["preferred_times"]:
        lines.append("Prefers: " + ", ".join(context["preferred_times"]))
    budget = context["budget_range"]
    if budget and budget.get("max"):
        lines.append(f"Budget up to {budget['max']:.0f} {settings.business.currency}")
    if context["is_returning"]:
        lines.append(f"Returning customer with {context['total_bookings']} booking(s)")
    if context["last_interaction"]:
        lines.append(f"Last message: {context['last_interaction']}")
    return "\n".join(lines)

"""
Escalation manager: hands conversations to a human operator.

Creating an escalation persists an open record and pauses the AI for the
customer so the operator can take over (cancellation notices never
pause). The notification sink is best-effort: its failures are logged,
never raised into the reply path.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from studio_agent.logging_context import get_turn_logger
from studio_agent.schemas.conversation_schema import (
    Escalation,
    EscalationStatus,
    EscalationType,
)
from studio_agent.tools.messaging import Alert, NotificationSink
from studio_agent.tools.store import new_id

logger = get_turn_logger(__name__)

NON_PAUSING_TYPES = {EscalationType.BOOKING_CANCELLATION}


class EscalationManager:
    """Creates, lists and resolves escalations."""

    def __init__(self, store, sink: Optional[NotificationSink] = None) -> None:
        self._store = store
        self._sink = sink

    async def create_escalation(
        self,
        customer_id: str,
        reason: str,
        type: EscalationType = EscalationType.AUTO_DETECTED,
        metadata: Optional[dict[str, Any]] = None,
        sentiment_score: Optional[float] = None,
    ) -> Escalation:
        escalation = Escalation(
            id=new_id("ESC"),
            customer_id=customer_id,
            reason=reason,
            type=type,
            sentiment_score=sentiment_score,
            metadata=metadata or {},
        )
        await self._store.save_escalation(escalation)

        if type not in NON_PAUSING_TYPES:
            await self._set_paused(customer_id, True)

        logger.warning("Escalation %s (%s) for %s: %s", escalation.id, type.value, customer_id, reason)
        await self._notify(Alert(
            customer_id=customer_id,
            type=type.value,
            title="Customer needs attention",
            description=reason,
            metadata={"escalation_id": escalation.id, **escalation.metadata},
        ))
        return escalation

    async def create_alert(
        self,
        customer_id: str,
        title: str,
        description: str,
        type: EscalationType = EscalationType.AI_ESCALATION,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Operator alert that does not open an escalation or pause the AI."""
        await self._notify(Alert(
            customer_id=customer_id,
            type=type.value,
            title=title,
            description=description,
            metadata=metadata or {},
        ))

    async def resolve(self, escalation_id: str) -> Escalation:
        escalation = await self._store.get_escalation(escalation_id)
        if escalation is None:
            raise KeyError(f"Escalation {escalation_id} not found")
        if escalation.status == EscalationStatus.RESOLVED:
            return escalation
        escalation.status = EscalationStatus.RESOLVED
        escalation.resolved_at = datetime.now(timezone.utc)
        await self._store.save_escalation(escalation)

        still_open = await self._store.list_escalations(
            customer_id=escalation.customer_id, status=EscalationStatus.OPEN
        )
        if not still_open:
            await self._set_paused(escalation.customer_id, False)
        logger.info("Escalation %s resolved", escalation_id)
        return escalation

    async def list_open(self, customer_id: Optional[str] = None) -> list[Escalation]:
        return await self._store.list_escalations(customer_id=customer_id, status=EscalationStatus.OPEN)

    async def _set_paused(self, customer_id: str, paused: bool) -> None:
        customer = await self._store.get_customer(customer_id)
        if customer is None or customer.ai_paused == paused:
            return
        customer.ai_paused = paused
        await self._store.save_customer(customer)
        logger.info("AI %s for %s", "paused" if paused else "resumed", customer_id)

    async def _notify(self, alert: Alert) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.notify(alert)
        except Exception:
            logger.exception("Escalation notification failed for %s", alert.customer_id)

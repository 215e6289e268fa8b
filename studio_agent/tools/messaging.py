"""Outbound delivery and operator notification contracts."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Raised by a messaging adapter when a send fails."""


@dataclass(frozen=True)
class DeliveryReceipt:
    recipient_id: str
    message_id: str
    sent_at: datetime


@dataclass
class Alert:
    """Structured alert for the operator dashboard."""
    customer_id: str
    type: str
    title: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


class MessagingAdapter(Protocol):
    async def send(self, recipient_id: str, text: str) -> DeliveryReceipt:
        ...


class NotificationSink(Protocol):
    async def notify(self, alert: Alert) -> None:
        ...


class OutboxAdapter:
    """Adapter that keeps sent messages in memory (console demo and tests)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient_id: str, text: str) -> DeliveryReceipt:
        self.sent.append((recipient_id, text))
        return DeliveryReceipt(
            recipient_id=recipient_id,
            message_id=f"MSG-{len(self.sent)}",
            sent_at=datetime.now(timezone.utc),
        )


class LoggingNotificationSink:
    """Sink that writes alerts to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    async def notify(self, alert: Alert) -> None:
        self.alerts.append(alert)
        logger.warning(
            "ALERT [%s] %s for %s: %s", alert.type, alert.title, alert.customer_id, alert.description
        )

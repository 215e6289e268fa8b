"""
Deposit payment collaborator.

In production this would trigger a mobile-money push prompt on the
customer's phone; confirmation arrives later through a callback that
calls ``BookingDraftEngine.confirm_payment``.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Raised when a deposit request cannot be initiated."""


@dataclass(frozen=True)
class PaymentRequest:
    reference: str
    booking_id: str
    phone: str
    amount: float


class PaymentGateway(Protocol):
    async def initiate_deposit(self, booking_id: str, phone: str, amount: float) -> PaymentRequest:
        ...


class InMemoryPaymentGateway:
    """Records deposit requests; ``fail_with`` forces initiation to fail."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.requests: list[PaymentRequest] = []
        self.fail_with = fail_with

    async def initiate_deposit(self, booking_id: str, phone: str, amount: float) -> PaymentRequest:
        if self.fail_with is not None:
            raise PaymentError(str(self.fail_with)) from self.fail_with
        request = PaymentRequest(
            reference=f"PAY-{uuid.uuid4().hex[:8].upper()}",
            booking_id=booking_id,
            phone=phone,
            amount=amount,
        )
        self.requests.append(request)
        logger.info("Deposit of %.0f requested from %s for %s", amount, phone, booking_id)
        return request

"""Package catalog, booking draft and booking data models."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PackageType(str, Enum):
    STUDIO = "studio"
    OUTDOOR = "outdoor"


class Package(BaseModel):
    """Bookable photoshoot package."""
    name: str
    type: PackageType = PackageType.STUDIO
    price: float
    deposit: Optional[float] = None
    duration: Optional[str] = None
    description: Optional[str] = None
    images: Optional[int] = None
    makeup: bool = False
    outfits: int = 0
    styling: bool = False
    photobook: bool = False
    photobook_size: Optional[str] = None
    mount: bool = False
    balloon_backdrop: bool = False
    wig: bool = False
    notes: Optional[str] = None


class DraftStep(str, Enum):
    """Progress marker of an in-progress booking."""
    COLLECT_SERVICE = "collect_service"
    COLLECT_DATE = "collect_date"
    COLLECT_TIME = "collect_time"
    COLLECT_NAME = "collect_name"
    REVIEW = "review"
    CONFIRM_DEPOSIT = "confirm_deposit"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


DRAFT_FIELDS = ("service", "date", "time", "name", "recipient_phone")


class BookingDraft(BaseModel):
    """In-progress booking state, at most one per customer."""
    customer_id: str
    service: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD, studio local
    time: Optional[str] = None  # HH:MM, 24h
    name: Optional[str] = None
    recipient_phone: Optional[str] = None
    step: DraftStep = DraftStep.COLLECT_SERVICE
    booking_id: Optional[str] = None
    offered_slots: list[str] = Field(default_factory=list)  # ISO datetimes, in offer order
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def missing_fields(self) -> list[str]:
        return [f for f in DRAFT_FIELDS if not getattr(self, f)]

    def is_complete(self) -> bool:
        return not self.missing_fields()


class BookingStatus(str, Enum):
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(BaseModel):
    """A reservation of the studio for one package."""
    id: str
    customer_id: str
    service: str
    start: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.PROVISIONAL
    name: str
    phone: str
    deposit: float = 0.0
    payment_reference: Optional[str] = None
    calendar_event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

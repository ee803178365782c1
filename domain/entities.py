"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional, List, Any, Dict
from decimal import Decimal

from domain.enums import (
    BookingStatus, PaymentStatus, PaymentChannel, ChannelMode,
    TERMINAL_BOOKING_STATUSES, TERMINAL_PAYMENT_STATUSES
)
from domain.exceptions import (
    InvalidTransition, PaymentAlreadyCompleted, PaymentInProgress, StudioPaymentNotConfigured
)
from domain.value_objects import TimeSlot, Money, PaymentRoute


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Studio(BaseModel):
    """Studio Aggregate Root Entity"""

    studio_id: UUID = Field(default_factory=uuid4)
    owner_id: UUID

    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    price_per_hour: Decimal = Field(gt=0)
    amenities: List[str] = []

    # Payment routing
    payment_type: PaymentChannel = PaymentChannel.TILL
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True

    def payment_route(self) -> PaymentRoute:
        """Resolve the number and mode this studio is paid through"""
        if self.payment_type == PaymentChannel.PAYBILL:
            number, mode = self.paybill_number, ChannelMode.BILL
        else:
            number, mode = self.till_number, ChannelMode.GOODS
        if not number:
            raise StudioPaymentNotConfigured(
                f"Studio has no {self.payment_type.value} number configured"
            )
        return PaymentRoute(channel_number=number, channel_mode=mode)

    def apply_changes(self, changes: Dict[str, Any]) -> None:
        """Update the given fields; an explicit None clears an optional field"""
        for field, value in changes.items():
            if field in type(self).model_fields and field not in ("studio_id", "created_at"):
                setattr(self, field, value)
        self.modified_at = _utcnow()


class BookingSlot(BaseModel):
    """Child Entity for a booked interval"""
    slot_id: UUID = Field(default_factory=uuid4)
    start_time: datetime
    end_time: datetime

    def as_time_slot(self) -> TimeSlot:
        return TimeSlot(start_time=self.start_time, end_time=self.end_time)

    class Config:
        from_attributes = True


class Booking(BaseModel):
    """Booking Aggregate Root Entity"""

    # Identity
    booking_id: UUID = Field(default_factory=uuid4)

    # References to other aggregates
    artist_id: UUID
    studio_id: UUID
    payment_id: Optional[UUID] = None

    # Aggregate interval
    start_time: datetime
    end_time: datetime
    duration_minutes: int = Field(ge=0)

    amount: Decimal = Field(ge=0)
    currency: str = "KES"

    status: BookingStatus = BookingStatus.PENDING

    # Collections (child entities)
    slots: List[BookingSlot] = []

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        artist_id: UUID,
        studio_id: UUID,
        slots: List[TimeSlot],
        total_amount: Money
    ) -> "Booking":
        """Create a pending booking spanning the given slots"""
        if not slots:
            raise ValueError("A booking needs at least one slot")

        return Booking(
            artist_id=artist_id,
            studio_id=studio_id,
            start_time=min(s.start_time for s in slots),
            end_time=max(s.end_time for s in slots),
            duration_minutes=sum(s.duration_minutes for s in slots),
            amount=total_amount.amount,
            currency=total_amount.currency,
            status=BookingStatus.PENDING,
            slots=[BookingSlot(start_time=s.start_time, end_time=s.end_time) for s in slots]
        )

    # ==================== STATE TRANSITION METHODS ====================
    def change_status(self, new_status: BookingStatus) -> bool:
        """Set a new status. Returns False when nothing changed."""
        if new_status == self.status:
            return False
        if self.is_terminal():
            raise InvalidTransition(
                f"Cannot change booking from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self._touch()
        return True

    def confirm_from_payment(self) -> bool:
        """Confirm after a completed payment; only pending bookings move"""
        if self.status != BookingStatus.PENDING:
            return False
        self.status = BookingStatus.CONFIRMED
        self._touch()
        return True

    # ==================== QUERY METHODS ====================
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    @property
    def total_amount(self) -> Money:
        return Money(amount=self.amount, currency=self.currency)

    def _touch(self) -> None:
        self.modified_at = _utcnow()
        self.version += 1


class Payment(BaseModel):
    """Payment Aggregate Root Entity"""

    payment_id: UUID = Field(default_factory=uuid4)
    booking_id: Optional[UUID] = None

    provider: str = "MPESA"
    amount: Decimal = Field(ge=0)
    currency: str = "KES"
    status: PaymentStatus = PaymentStatus.PENDING

    # Gateway correlation
    provider_reference: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None
    phone_number: Optional[str] = None
    channel_number: Optional[str] = None
    channel_mode: Optional[ChannelMode] = None
    receipt_number: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create_pending(booking_id: UUID, total_amount: Money) -> "Payment":
        return Payment(
            booking_id=booking_id,
            amount=total_amount.amount,
            currency=total_amount.currency,
            status=PaymentStatus.PENDING
        )

    # ==================== STATE TRANSITION METHODS ====================
    def mark_processing(
        self,
        provider_reference: str,
        raw_response: Dict[str, Any],
        phone_number: str,
        route: PaymentRoute
    ) -> None:
        """Record an accepted push request"""
        if self.status == PaymentStatus.COMPLETED:
            raise PaymentAlreadyCompleted()
        if self.status == PaymentStatus.PROCESSING:
            raise PaymentInProgress()

        self.provider_reference = provider_reference
        self.raw_response = raw_response
        self.phone_number = phone_number
        self.channel_number = route.channel_number
        self.channel_mode = route.channel_mode
        self.status = PaymentStatus.PROCESSING
        self.modified_at = _utcnow()

    def apply_callback(
        self,
        result_code: int,
        payload: Dict[str, Any],
        receipt_number: Optional[str] = None
    ) -> bool:
        """Settle from the gateway callback. Returns False for a repeat."""
        if self.is_terminal():
            return False

        self.status = PaymentStatus.COMPLETED if result_code == 0 else PaymentStatus.FAILED
        self.raw_response = payload
        if receipt_number:
            self.receipt_number = receipt_number
        self.modified_at = _utcnow()
        return True

    # ==================== QUERY METHODS ====================
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    @property
    def total_amount(self) -> Money:
        return Money(amount=self.amount, currency=self.currency)

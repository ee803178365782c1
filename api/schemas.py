"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field, validator
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID
from typing import List, Optional

from domain.enums import BookingStatus, ChannelMode, PaymentChannel, PaymentStatus, Role


def display_amount(amount: Decimal) -> Decimal:
    """Two-decimal amount for responses"""
    return Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class SignupRequest(BaseModel):
    """Signup request DTO"""
    email: str
    password: str = Field(min_length=1)
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: Role = Role.ARTIST

    @validator("email")
    def email_must_look_valid(cls, v):
        v = v.strip()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class LoginRequest(BaseModel):
    """Login request DTO"""
    email: str
    password: str


class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str


class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: Role
    disabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


class LoginResponse(Token):
    """Login response DTO"""
    user: UserResponse


# ============================================================================
# STUDIO SCHEMAS
# ============================================================================

class CreateStudioRequest(BaseModel):
    """Create studio request DTO"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    price_per_hour: Decimal = Field(gt=0)
    amenities: List[str] = []
    payment_type: PaymentChannel = PaymentChannel.TILL
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None
    owner_id: Optional[UUID] = Field(None, description="Admins only; defaults to the caller")


class UpdateStudioRequest(BaseModel):
    """Update studio request DTO"""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    price_per_hour: Optional[Decimal] = Field(None, gt=0)
    amenities: Optional[List[str]] = None
    payment_type: Optional[PaymentChannel] = None
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None
    owner_id: Optional[UUID] = None


class StudioResponse(BaseModel):
    """Studio response DTO"""
    studio_id: UUID
    owner_id: UUID
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None
    price_per_hour: Decimal
    amenities: List[str]
    payment_type: PaymentChannel
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None
    created_at: datetime
    modified_at: datetime


class CreateStudioManagerRequest(BaseModel):
    """Create studio manager request DTO"""
    email: str
    password: str
    full_name: str
    phone: Optional[str] = None
    studio_id: Optional[UUID] = None


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class SlotRequest(BaseModel):
    """Proposed slot, ISO-8601 timestamps (naive values are read as UTC)"""
    start_time: str
    end_time: str


class CreateBookingRequest(BaseModel):
    """Create booking request DTO"""
    studio_id: UUID
    slots: List[SlotRequest]
    currency: Optional[str] = None


class UpdateBookingStatusRequest(BaseModel):
    """Update booking status request DTO"""
    status: str


class BookingSlotResponse(BaseModel):
    """Booking slot response DTO"""
    slot_id: UUID
    start_time: datetime
    end_time: datetime


class BookingResponse(BaseModel):
    """Booking response DTO"""
    booking_id: UUID
    artist_id: UUID
    studio_id: UUID
    payment_id: Optional[UUID] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    amount: Decimal
    currency: str
    status: BookingStatus
    slots: List[BookingSlotResponse]
    created_at: datetime
    modified_at: datetime
    version: int


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================

class InitiatePaymentRequest(BaseModel):
    """Initiate STK push request DTO"""
    booking_id: UUID
    phone_number: str = Field(min_length=1)


class PaymentResponse(BaseModel):
    """Payment response DTO"""
    payment_id: UUID
    booking_id: Optional[UUID] = None
    provider: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    provider_reference: Optional[str] = None
    phone_number: Optional[str] = None
    channel_number: Optional[str] = None
    channel_mode: Optional[ChannelMode] = None
    receipt_number: Optional[str] = None
    created_at: datetime
    modified_at: datetime


class BookingCreatedResponse(BaseModel):
    """Create booking response DTO"""
    booking: BookingResponse
    payment: PaymentResponse


class BookingDetailResponse(BaseModel):
    """Booking with its studio and payment"""
    booking: BookingResponse
    studio: Optional[StudioResponse] = None
    payment: Optional[PaymentResponse] = None


class InitiatePaymentResponse(BaseModel):
    """Initiate STK push response DTO"""
    message: str
    checkout_request_id: str
    payment: PaymentResponse


class PaymentStatusResponse(BaseModel):
    """Payment status response DTO"""
    payment_id: UUID
    booking_id: Optional[UUID] = None
    status: PaymentStatus
    amount: Decimal
    currency: str
    provider_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    channel_number: Optional[str] = None
    channel_mode: Optional[ChannelMode] = None
    payment_type: Optional[PaymentChannel] = None
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None


class CallbackAcknowledgement(BaseModel):
    """What the gateway receives back from the callback endpoint"""
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
    code: str


class ReconcileResponse(BaseModel):
    """Reconciliation sweep response DTO"""
    confirmed: int
    booking_ids: List[UUID]

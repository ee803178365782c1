"""Domain Value Objects"""
import re
from pydantic import BaseModel, Field, validator
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from domain.enums import ChannelMode
from domain.exceptions import InvalidPhoneNumber

_CENTS = Decimal("0.01")
_UNITS = Decimal("1")


class TimeSlot(BaseModel):
    """Value Object for a half-open [start, end) interval"""
    start_time: datetime
    end_time: datetime

    @validator('end_time')
    def end_after_start(cls, v, values):
        if 'start_time' in values and v <= values['start_time']:
            raise ValueError('Slot end must be after start')
        return v

    @property
    def duration_minutes(self) -> int:
        """Whole minutes, rounded half-up"""
        seconds = Decimal(str((self.end_time - self.start_time).total_seconds()))
        return int((seconds / 60).quantize(_UNITS, rounding=ROUND_HALF_UP))

    def overlaps(self, other: "TimeSlot") -> bool:
        """Touching endpoints do not overlap"""
        return self.start_time < other.end_time and self.end_time > other.start_time

    class Config:
        frozen = True


class Money(BaseModel):
    """Value Object for monetary amounts"""
    amount: Decimal = Field(ge=0)
    currency: str = "KES"

    def display_amount(self) -> Decimal:
        return self.amount.quantize(_CENTS, rounding=ROUND_HALF_UP)

    def gateway_amount(self) -> int:
        """Whole currency units, as mobile-money gateways only accept integers"""
        return int(self.amount.quantize(_UNITS, rounding=ROUND_HALF_UP))

    class Config:
        frozen = True


class PaymentRoute(BaseModel):
    """Channel number and mode a payment is charged to"""
    channel_number: str
    channel_mode: ChannelMode

    class Config:
        frozen = True


class GatewayPushResult(BaseModel):
    """Outcome of an accepted push request"""
    checkout_request_id: Optional[str] = None
    response_code: Optional[str] = None
    raw_response: dict = {}


def normalize_phone_number(phone_number: str) -> str:
    """Normalize a Kenyan MSISDN to the 2547XXXXXXXX form the gateway expects"""
    digits = re.sub(r"[\s\-()]", "", phone_number or "")
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits
    if not re.fullmatch(r"254[17]\d{8}", digits):
        raise InvalidPhoneNumber(f"Invalid phone number: {phone_number}")
    return digits

"""Domain Exceptions

Every error a use case can raise derives from DomainError. The API layer maps
each family to an HTTP status; nothing below the API knows about HTTP.
"""
from datetime import datetime
from typing import Optional


class DomainError(Exception):
    """Base class for domain errors"""
    code = "domain_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self.args[0])


# ==================== INPUT ====================
class InvalidInput(DomainError, ValueError):
    """Invalid input"""
    code = "invalid_input"


class InvalidSlot(InvalidInput):
    """Invalid slot"""
    code = "invalid_slot"


class InvalidStatus(InvalidInput):
    """Invalid status"""
    code = "invalid_status"


class InvalidPhoneNumber(InvalidInput):
    """Invalid phone number"""
    code = "invalid_phone_number"


class StudioPaymentNotConfigured(InvalidInput):
    """Studio payment details are not configured"""
    code = "studio_payment_not_configured"


# ==================== AUTH ====================
class Unauthorized(DomainError):
    """Could not validate credentials"""
    code = "unauthorized"


class Forbidden(DomainError):
    """Forbidden: Access denied"""
    code = "forbidden"


# ==================== LOOKUP ====================
class NotFound(DomainError):
    """Resource not found"""
    code = "not_found"


class StudioNotFound(NotFound):
    """Studio not found"""
    code = "studio_not_found"


class BookingNotFound(NotFound):
    """Booking not found"""
    code = "booking_not_found"


class PaymentNotFound(NotFound):
    """Payment record not found"""
    code = "payment_not_found"


# ==================== STATE ====================
class Conflict(DomainError):
    """Conflict with current state"""
    code = "conflict"


class SlotConflict(Conflict):
    """Studio already booked for one or more selected slots"""
    code = "slot_conflict"

    def __init__(self, start_time: datetime, end_time: datetime):
        super().__init__()
        self.start_time = start_time
        self.end_time = end_time


class DuplicateEmail(Conflict):
    """Email already exists"""
    code = "duplicate_email"


class InvalidTransition(Conflict):
    """Status transition not allowed"""
    code = "invalid_transition"


class PaymentAlreadyCompleted(Conflict):
    """Payment already completed"""
    code = "payment_already_completed"


class PaymentInProgress(Conflict):
    """Payment request already in progress"""
    code = "payment_in_progress"


class StudioHasBookings(Conflict):
    """Studio has bookings and cannot be deleted"""
    code = "studio_has_bookings"


# ==================== GATEWAY ====================
class GatewayError(DomainError):
    """Payment gateway request failed"""
    code = "gateway_error"
    retryable = False


class GatewayTimeout(GatewayError):
    """Payment gateway timed out"""
    code = "gateway_timeout"
    retryable = True

"""Domain Enums"""
from enum import Enum


class Role(str, Enum):
    ARTIST = "artist"
    STUDIO_MANAGER = "studio_manager"
    ADMIN = "admin"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentChannel(str, Enum):
    PAYBILL = "paybill"
    TILL = "till"


class ChannelMode(str, Enum):
    """How the gateway charges a channel number"""
    BILL = "bill"
    GOODS = "goods"


class Action(str, Enum):
    CREATE_BOOKING = "create_booking"
    LIST_BOOKINGS = "list_bookings"
    VIEW_BOOKING = "view_booking"
    UPDATE_BOOKING_STATUS = "update_booking_status"
    DELETE_BOOKING = "delete_booking"
    INITIATE_PAYMENT = "initiate_payment"
    VIEW_PAYMENT = "view_payment"
    RECONCILE_PAYMENTS = "reconcile_payments"
    MANAGE_STUDIO = "manage_studio"
    CREATE_STUDIO_MANAGER = "create_studio_manager"


TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})

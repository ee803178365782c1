"""In-Memory Repository Implementations"""
import asyncio
from typing import Optional, List, Dict, Iterable
from uuid import UUID
from datetime import datetime

from domain.repositories import (
    UserRepository, StudioRepository, BookingRepository, PaymentRepository, UnitOfWork
)
from domain.auth import UserInDB
from domain.entities import Studio, Booking, BookingSlot, Payment
from domain.enums import PaymentStatus
from domain.exceptions import Conflict, DuplicateEmail

_TABLES = ("users", "studios", "bookings", "payments")


class InMemoryStore:
    """Process-local tables shared by every unit of work.

    Entities are stored as private copies and handed out as copies, so a
    snapshot of the dicts is enough to roll a transaction back.
    """

    def __init__(self):
        self.users: Dict[UUID, UserInDB] = {}
        self.studios: Dict[UUID, Studio] = {}
        self.bookings: Dict[UUID, Booking] = {}
        self.payments: Dict[UUID, Payment] = {}
        self.lock = asyncio.Lock()

    def snapshot(self) -> Dict[str, dict]:
        return {name: dict(getattr(self, name)) for name in _TABLES}

    def restore(self, snapshot: Dict[str, dict]) -> None:
        for name, rows in snapshot.items():
            setattr(self, name, rows)


def _copy(entity):
    return entity.model_copy(deep=True) if entity is not None else None


class InMemoryUserRepository(UserRepository):
    """In-memory implementation of UserRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, user: UserInDB) -> UserInDB:
        """Save user to memory"""
        email = user.email.lower()
        for existing in self._store.users.values():
            if existing.email.lower() == email and existing.user_id != user.user_id:
                raise DuplicateEmail()
        self._store.users[user.user_id] = _copy(user)
        return user

    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        """Find user by ID"""
        return _copy(self._store.users.get(user_id))

    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        """Find user by email"""
        email = email.lower()
        for user in self._store.users.values():
            if user.email.lower() == email:
                return _copy(user)
        return None


class InMemoryStudioRepository(StudioRepository):
    """In-memory implementation of StudioRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, studio: Studio) -> Studio:
        """Save studio to memory"""
        self._store.studios[studio.studio_id] = _copy(studio)
        return studio

    async def find_by_id(self, studio_id: UUID) -> Optional[Studio]:
        """Find studio by ID"""
        return _copy(self._store.studios.get(studio_id))

    async def find_by_id_for_update(self, studio_id: UUID) -> Optional[Studio]:
        # The unit of work already holds the store lock
        return await self.find_by_id(studio_id)

    async def find_by_owner(self, owner_id: UUID) -> List[Studio]:
        """Find studios owned by a user"""
        return [_copy(s) for s in self._store.studios.values() if s.owner_id == owner_id]

    async def find_all(self) -> List[Studio]:
        """Find all studios"""
        return [_copy(s) for s in self._store.studios.values()]

    async def update(self, studio: Studio) -> Studio:
        """Update studio"""
        if studio.studio_id in self._store.studios:
            self._store.studios[studio.studio_id] = _copy(studio)
            return studio
        raise ValueError("Studio not found")

    async def delete(self, studio_id: UUID) -> bool:
        """Delete studio"""
        if studio_id in self._store.studios:
            del self._store.studios[studio_id]
            return True
        return False


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of BookingRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, booking: Booking) -> Booking:
        """Save booking to memory"""
        self._store.bookings[booking.booking_id] = _copy(booking)
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        return _copy(self._store.bookings.get(booking_id))

    async def find_all(
        self,
        artist_id: Optional[UUID] = None,
        studio_ids: Optional[Iterable[UUID]] = None
    ) -> List[Booking]:
        """Find bookings, most recent start first"""
        studio_filter = set(studio_ids) if studio_ids is not None else None
        results = [
            b for b in self._store.bookings.values()
            if (artist_id is None or b.artist_id == artist_id)
            and (studio_filter is None or b.studio_id in studio_filter)
        ]
        results.sort(key=lambda b: b.start_time, reverse=True)
        return [_copy(b) for b in results]

    async def find_slots_in_window(self, studio_id: UUID, start: datetime, end: datetime) -> List[BookingSlot]:
        """Find persisted slots on a studio overlapping [start, end)"""
        return [
            _copy(slot)
            for booking in self._store.bookings.values() if booking.studio_id == studio_id
            for slot in booking.slots
            if slot.start_time < end and slot.end_time > start
        ]

    async def update(self, booking: Booking) -> Booking:
        """Update booking"""
        if booking.booking_id in self._store.bookings:
            self._store.bookings[booking.booking_id] = _copy(booking)
            return booking
        raise ValueError("Booking not found")

    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking (slots live inside the aggregate)"""
        if booking_id in self._store.bookings:
            del self._store.bookings[booking_id]
            return True
        return False


class InMemoryPaymentRepository(PaymentRepository):
    """In-memory implementation of PaymentRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    def _check_reference(self, payment: Payment) -> None:
        if not payment.provider_reference:
            return
        for existing in self._store.payments.values():
            if (existing.provider_reference == payment.provider_reference
                    and existing.payment_id != payment.payment_id):
                raise Conflict("Duplicate provider reference")

    async def save(self, payment: Payment) -> Payment:
        """Save payment to memory"""
        self._check_reference(payment)
        self._store.payments[payment.payment_id] = _copy(payment)
        return payment

    async def find_by_id(self, payment_id: UUID) -> Optional[Payment]:
        """Find payment by ID"""
        return _copy(self._store.payments.get(payment_id))

    async def find_by_booking_id(self, booking_id: UUID) -> Optional[Payment]:
        """Find the payment of a booking"""
        for payment in self._store.payments.values():
            if payment.booking_id == booking_id:
                return _copy(payment)
        return None

    async def find_by_provider_reference(self, reference: str) -> Optional[Payment]:
        """Find payment by checkout reference"""
        for payment in self._store.payments.values():
            if payment.provider_reference == reference:
                return _copy(payment)
        return None

    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        """Find payments in a given status"""
        return [_copy(p) for p in self._store.payments.values() if p.status == status]

    async def update(self, payment: Payment) -> Payment:
        """Update payment"""
        if payment.payment_id in self._store.payments:
            self._check_reference(payment)
            self._store.payments[payment.payment_id] = _copy(payment)
            return payment
        raise ValueError("Payment not found")

    async def delete(self, payment_id: UUID) -> bool:
        """Delete payment"""
        if payment_id in self._store.payments:
            del self._store.payments[payment_id]
            return True
        return False


class InMemoryUnitOfWork(UnitOfWork):
    """Serializes units of work on the store lock and restores a snapshot on rollback"""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._snapshot: Optional[Dict[str, dict]] = None
        self.users = InMemoryUserRepository(store)
        self.studios = InMemoryStudioRepository(store)
        self.bookings = InMemoryBookingRepository(store)
        self.payments = InMemoryPaymentRepository(store)

    async def begin(self) -> None:
        await self._store.lock.acquire()
        self._snapshot = self._store.snapshot()

    async def commit(self) -> None:
        self._snapshot = None
        self._store.lock.release()

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self._store.restore(self._snapshot)
        self._snapshot = None
        self._store.lock.release()

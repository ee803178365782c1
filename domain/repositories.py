"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Optional, List, Iterable
from uuid import UUID
from datetime import datetime

from domain.auth import UserInDB
from domain.entities import Studio, Booking, BookingSlot, Payment
from domain.enums import PaymentStatus


class UserRepository(ABC):
    """Repository interface for User"""

    @abstractmethod
    async def save(self, user: UserInDB) -> UserInDB:
        """Save user"""
        pass

    @abstractmethod
    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        """Find user by ID"""
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        """Find user by email"""
        pass


class StudioRepository(ABC):
    """Repository interface for Studio Aggregate"""

    @abstractmethod
    async def save(self, studio: Studio) -> Studio:
        """Save studio"""
        pass

    @abstractmethod
    async def find_by_id(self, studio_id: UUID) -> Optional[Studio]:
        """Find studio by ID"""
        pass

    @abstractmethod
    async def find_by_id_for_update(self, studio_id: UUID) -> Optional[Studio]:
        """Find studio by ID and lock it until the unit of work ends"""
        pass

    @abstractmethod
    async def find_by_owner(self, owner_id: UUID) -> List[Studio]:
        """Find studios owned by a user"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Studio]:
        """Find all studios"""
        pass

    @abstractmethod
    async def update(self, studio: Studio) -> Studio:
        """Update studio"""
        pass

    @abstractmethod
    async def delete(self, studio_id: UUID) -> bool:
        """Delete studio"""
        pass


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate"""

    @abstractmethod
    async def save(self, booking: Booking) -> Booking:
        """Save booking together with its slots"""
        pass

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        pass

    @abstractmethod
    async def find_all(
        self,
        artist_id: Optional[UUID] = None,
        studio_ids: Optional[Iterable[UUID]] = None
    ) -> List[Booking]:
        """Find bookings, most recent start first, optionally filtered"""
        pass

    @abstractmethod
    async def find_slots_in_window(self, studio_id: UUID, start: datetime, end: datetime) -> List[BookingSlot]:
        """Find persisted slots on a studio overlapping [start, end)"""
        pass

    @abstractmethod
    async def update(self, booking: Booking) -> Booking:
        """Update booking"""
        pass

    @abstractmethod
    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking and its slots"""
        pass


class PaymentRepository(ABC):
    """Repository interface for Payment Aggregate"""

    @abstractmethod
    async def save(self, payment: Payment) -> Payment:
        """Save payment"""
        pass

    @abstractmethod
    async def find_by_id(self, payment_id: UUID) -> Optional[Payment]:
        """Find payment by ID"""
        pass

    @abstractmethod
    async def find_by_booking_id(self, booking_id: UUID) -> Optional[Payment]:
        """Find the payment of a booking"""
        pass

    @abstractmethod
    async def find_by_provider_reference(self, reference: str) -> Optional[Payment]:
        """Find payment by gateway checkout reference"""
        pass

    @abstractmethod
    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        """Find payments in a given status"""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """Update payment"""
        pass

    @abstractmethod
    async def delete(self, payment_id: UUID) -> bool:
        """Delete payment"""
        pass


class UnitOfWork(ABC):
    """Transaction boundary over all repositories.

    Used as ``async with uow:``. Leaving the block normally commits, leaving
    it with an exception rolls every write back.
    """
    users: UserRepository
    studios: StudioRepository
    bookings: BookingRepository
    payments: PaymentRepository

    async def __aenter__(self) -> "UnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @abstractmethod
    async def begin(self) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

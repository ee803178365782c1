"""SQLAlchemy Repository Implementations"""
import logging
from typing import Optional, List, Iterable
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.repositories import (
    UserRepository, StudioRepository, BookingRepository, PaymentRepository, UnitOfWork
)
from domain.auth import UserInDB
from domain.entities import Studio, Booking, BookingSlot, Payment
from domain.enums import PaymentStatus
from domain.exceptions import Conflict, DuplicateEmail
from infrastructure.database import Database, UserRow, StudioRow, BookingRow, BookingSlotRow, PaymentRow

logger = logging.getLogger(__name__)


def _value(v):
    return getattr(v, "value", v)


async def _flush(session: AsyncSession, error: Conflict) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        logger.info("Integrity error on flush: %s", e.orig)
        raise error from e


class SqlAlchemyUserRepository(UserRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, user: UserInDB) -> UserInDB:
        existing = await self.find_by_email(user.email)
        if existing and existing.user_id != user.user_id:
            raise DuplicateEmail()
        row = await self.session.get(UserRow, user.user_id) or UserRow(user_id=user.user_id)
        row.email = user.email.lower()
        row.full_name = user.full_name
        row.phone = user.phone
        row.hashed_password = user.hashed_password
        row.role = _value(user.role)
        row.disabled = user.disabled
        row.created_at = user.created_at
        self.session.add(row)
        await _flush(self.session, DuplicateEmail())
        return user

    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        row = await self.session.get(UserRow, user_id)
        return UserInDB.model_validate(row) if row else None

    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        row = (await self.session.scalars(
            select(UserRow).where(func.lower(UserRow.email) == email.lower())
        )).first()
        return UserInDB.model_validate(row) if row else None


class SqlAlchemyStudioRepository(StudioRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _write(self, row: StudioRow, studio: Studio) -> None:
        row.owner_id = studio.owner_id
        row.name = studio.name
        row.description = studio.description
        row.location = studio.location
        row.capacity = studio.capacity
        row.price_per_hour = studio.price_per_hour
        row.amenities = list(studio.amenities)
        row.payment_type = _value(studio.payment_type)
        row.paybill_number = studio.paybill_number
        row.till_number = studio.till_number
        row.created_at = studio.created_at
        row.modified_at = studio.modified_at

    async def save(self, studio: Studio) -> Studio:
        row = StudioRow(studio_id=studio.studio_id)
        self._write(row, studio)
        self.session.add(row)
        await _flush(self.session, Conflict("Studio already exists"))
        return studio

    async def find_by_id(self, studio_id: UUID) -> Optional[Studio]:
        row = await self.session.get(StudioRow, studio_id)
        return Studio.model_validate(row) if row else None

    async def find_by_id_for_update(self, studio_id: UUID) -> Optional[Studio]:
        # Row lock serializes bookings on the same studio until commit
        row = (await self.session.scalars(
            select(StudioRow).where(StudioRow.studio_id == studio_id).with_for_update()
        )).first()
        return Studio.model_validate(row) if row else None

    async def find_by_owner(self, owner_id: UUID) -> List[Studio]:
        rows = await self.session.scalars(select(StudioRow).where(StudioRow.owner_id == owner_id))
        return [Studio.model_validate(r) for r in rows]

    async def find_all(self) -> List[Studio]:
        rows = await self.session.scalars(select(StudioRow).order_by(StudioRow.created_at))
        return [Studio.model_validate(r) for r in rows]

    async def update(self, studio: Studio) -> Studio:
        row = await self.session.get(StudioRow, studio.studio_id)
        if row is None:
            raise ValueError("Studio not found")
        self._write(row, studio)
        await self.session.flush()
        return studio

    async def delete(self, studio_id: UUID) -> bool:
        row = await self.session.get(StudioRow, studio_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True


class SqlAlchemyBookingRepository(BookingRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, booking: Booking) -> Booking:
        row = BookingRow(
            booking_id=booking.booking_id,
            artist_id=booking.artist_id,
            studio_id=booking.studio_id,
            payment_id=booking.payment_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            duration_minutes=booking.duration_minutes,
            amount=booking.amount,
            currency=booking.currency,
            status=_value(booking.status),
            created_at=booking.created_at,
            modified_at=booking.modified_at,
            version=booking.version,
            slots=[
                BookingSlotRow(slot_id=s.slot_id, start_time=s.start_time, end_time=s.end_time)
                for s in booking.slots
            ],
        )
        self.session.add(row)
        await _flush(self.session, Conflict("Booking already exists"))
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        row = await self.session.get(BookingRow, booking_id)
        return Booking.model_validate(row) if row else None

    async def find_all(
        self,
        artist_id: Optional[UUID] = None,
        studio_ids: Optional[Iterable[UUID]] = None
    ) -> List[Booking]:
        query = select(BookingRow)
        if artist_id is not None:
            query = query.where(BookingRow.artist_id == artist_id)
        if studio_ids is not None:
            query = query.where(BookingRow.studio_id.in_(list(studio_ids)))
        rows = await self.session.scalars(query.order_by(BookingRow.start_time.desc()))
        return [Booking.model_validate(r) for r in rows]

    async def find_slots_in_window(self, studio_id: UUID, start: datetime, end: datetime) -> List[BookingSlot]:
        rows = await self.session.scalars(
            select(BookingSlotRow)
            .join(BookingRow, BookingSlotRow.booking_id == BookingRow.booking_id)
            .where(
                BookingRow.studio_id == studio_id,
                BookingSlotRow.start_time < end,
                BookingSlotRow.end_time > start,
            )
            .order_by(BookingSlotRow.start_time)
        )
        return [BookingSlot.model_validate(r) for r in rows]

    async def update(self, booking: Booking) -> Booking:
        row = await self.session.get(BookingRow, booking.booking_id)
        if row is None:
            raise ValueError("Booking not found")
        row.payment_id = booking.payment_id
        row.status = _value(booking.status)
        row.amount = booking.amount
        row.currency = booking.currency
        row.modified_at = booking.modified_at
        row.version = booking.version
        await self.session.flush()
        return booking

    async def delete(self, booking_id: UUID) -> bool:
        row = await self.session.get(BookingRow, booking_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True


class SqlAlchemyPaymentRepository(PaymentRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _write(self, row: PaymentRow, payment: Payment) -> None:
        row.booking_id = payment.booking_id
        row.provider = payment.provider
        row.amount = payment.amount
        row.currency = payment.currency
        row.status = _value(payment.status)
        row.provider_reference = payment.provider_reference
        row.raw_response = payment.raw_response
        row.phone_number = payment.phone_number
        row.channel_number = payment.channel_number
        row.channel_mode = _value(payment.channel_mode)
        row.receipt_number = payment.receipt_number
        row.created_at = payment.created_at
        row.modified_at = payment.modified_at

    async def save(self, payment: Payment) -> Payment:
        row = PaymentRow(payment_id=payment.payment_id)
        self._write(row, payment)
        self.session.add(row)
        await _flush(self.session, Conflict("Duplicate payment"))
        return payment

    async def find_by_id(self, payment_id: UUID) -> Optional[Payment]:
        row = await self.session.get(PaymentRow, payment_id)
        return Payment.model_validate(row) if row else None

    async def find_by_booking_id(self, booking_id: UUID) -> Optional[Payment]:
        row = (await self.session.scalars(select(PaymentRow).where(PaymentRow.booking_id == booking_id))).first()
        return Payment.model_validate(row) if row else None

    async def find_by_provider_reference(self, reference: str) -> Optional[Payment]:
        row = (await self.session.scalars(
            select(PaymentRow).where(PaymentRow.provider_reference == reference)
        )).first()
        return Payment.model_validate(row) if row else None

    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        rows = await self.session.scalars(select(PaymentRow).where(PaymentRow.status == _value(status)))
        return [Payment.model_validate(r) for r in rows]

    async def update(self, payment: Payment) -> Payment:
        row = await self.session.get(PaymentRow, payment.payment_id)
        if row is None:
            raise ValueError("Payment not found")
        self._write(row, payment)
        await _flush(self.session, Conflict("Duplicate provider reference"))
        return payment

    async def delete(self, payment_id: UUID) -> bool:
        row = await self.session.get(PaymentRow, payment_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True


class SqlAlchemyUnitOfWork(UnitOfWork):
    """One async session, one transaction"""

    def __init__(self, database: Database):
        self._database = database
        self.session: Optional[AsyncSession] = None

    async def begin(self) -> None:
        await self._database.create_schema()
        if self._database.write_lock is not None:
            await self._database.write_lock.acquire()
        self.session = self._database.session_factory()
        self.users = SqlAlchemyUserRepository(self.session)
        self.studios = SqlAlchemyStudioRepository(self.session)
        self.bookings = SqlAlchemyBookingRepository(self.session)
        self.payments = SqlAlchemyPaymentRepository(self.session)

    async def commit(self) -> None:
        try:
            await self.session.commit()
        finally:
            await self._close()

    async def rollback(self) -> None:
        try:
            await self.session.rollback()
        finally:
            await self._close()

    async def _close(self) -> None:
        try:
            await self.session.close()
        finally:
            if self._database.write_lock is not None:
                self._database.write_lock.release()

"""Relational schema and async engine (SQLAlchemy asyncio)"""
import asyncio
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text,
    TypeDecorator, Uuid
)
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.pool import StaticPool


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC on every backend"""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()


# ==========================
# USER
# ==========================
class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="artist")
    disabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=_utcnow)

    studios = relationship("StudioRow", back_populates="owner")


# ==========================
# STUDIO
# ==========================
class StudioRow(Base):
    __tablename__ = "studios"

    studio_id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(Uuid, ForeignKey("users.user_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    capacity = Column(Integer, nullable=True)
    price_per_hour = Column(Numeric(14, 4), nullable=False)
    amenities = Column(JSON, nullable=False, default=list)
    payment_type = Column(String(16), nullable=False, default="till")
    paybill_number = Column(String(32), nullable=True)
    till_number = Column(String(32), nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow)
    modified_at = Column(UTCDateTime, default=_utcnow)

    owner = relationship("UserRow", back_populates="studios")
    bookings = relationship("BookingRow", back_populates="studio")


# ==========================
# BOOKING + SLOTS
# ==========================
class BookingRow(Base):
    __tablename__ = "bookings"

    booking_id = Column(Uuid, primary_key=True, default=uuid4)
    artist_id = Column(Uuid, ForeignKey("users.user_id"), nullable=False, index=True)
    studio_id = Column(Uuid, ForeignKey("studios.studio_id"), nullable=False, index=True)
    payment_id = Column(Uuid, nullable=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    amount = Column(Numeric(18, 6), nullable=False)
    currency = Column(String(10), nullable=False, default="KES")
    status = Column(String(32), nullable=False, default="pending")
    created_at = Column(UTCDateTime, default=_utcnow)
    modified_at = Column(UTCDateTime, default=_utcnow)
    version = Column(Integer, nullable=False, default=1)

    studio = relationship("StudioRow", back_populates="bookings")
    slots = relationship(
        "BookingSlotRow",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSlotRow.start_time",
        lazy="selectin",
    )


class BookingSlotRow(Base):
    __tablename__ = "booking_slots"

    slot_id = Column(Uuid, primary_key=True, default=uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.booking_id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)

    booking = relationship("BookingRow", back_populates="slots")


# ==========================
# PAYMENT
# ==========================
class PaymentRow(Base):
    __tablename__ = "payments"

    payment_id = Column(Uuid, primary_key=True, default=uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.booking_id", ondelete="CASCADE"), nullable=True, unique=True)
    provider = Column(String(32), nullable=False, default="MPESA")
    amount = Column(Numeric(18, 6), nullable=False)
    currency = Column(String(10), nullable=False, default="KES")
    status = Column(String(32), nullable=False, default="pending", index=True)
    provider_reference = Column(String(100), unique=True, nullable=True, index=True)
    raw_response = Column(JSON, nullable=True)
    phone_number = Column(String(20), nullable=True)
    channel_number = Column(String(32), nullable=True)
    channel_mode = Column(String(16), nullable=True)
    receipt_number = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow)
    modified_at = Column(UTCDateTime, default=_utcnow)


# Blocking drivers and the asyncio driver that replaces each
_ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
}
_BLOCKING_DRIVERS = {"pysqlite", "psycopg2", "pg8000"}


def async_database_url(database_url: str) -> str:
    """Point a configured URL at an asyncio driver"""
    scheme, sep, rest = database_url.partition("://")
    if not sep:
        return database_url
    dialect, _, driver = scheme.partition("+")
    if driver and driver not in _BLOCKING_DRIVERS:
        return database_url
    if dialect not in _ASYNC_DRIVERS:
        return database_url
    return f"{_ASYNC_DRIVERS[dialect]}://{rest}"


class Database:
    """Async engine and session factory for one database"""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = async_database_url(database_url)
        kwargs = {"echo": echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url.endswith("://"):
                kwargs["poolclass"] = StaticPool

        self.engine: AsyncEngine = create_async_engine(self.url, **kwargs)
        self.session_factory = async_sessionmaker(self.engine, autoflush=False, expire_on_commit=False)
        # SQLite has a single writer and ignores FOR UPDATE; in memory every session shares one connection
        self.write_lock: Optional[asyncio.Lock] = asyncio.Lock() if self.url.startswith("sqlite") else None
        self._schema_ready = False

    async def create_schema(self) -> None:
        """Create missing tables once per engine"""
        if self._schema_ready:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._schema_ready = True

    async def dispose(self) -> None:
        await self.engine.dispose()

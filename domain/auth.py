"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional

from domain.enums import Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """User Entity"""
    user_id: UUID = Field(default_factory=uuid4)
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: Role = Role.ARTIST
    disabled: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str


class Principal(BaseModel):
    """Authenticated caller, as carried by token claims"""
    user_id: UUID
    email: Optional[str] = None
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    class Config:
        frozen = True

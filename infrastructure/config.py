"""
Application configuration and settings
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

MPESA_SANDBOX_URL = "https://sandbox.safaricom.co.ke"


class Settings(BaseModel):
    """Explicit configuration handed to the components that need it"""
    PROJECT_NAME: str = "Studio Booking API"
    VERSION: str = "1.0.0"

    # Auth
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Storage (empty means in-memory)
    DATABASE_URL: str = ""

    # Bookings
    DEFAULT_CURRENCY: str = "KES"
    TRANSACTION_DESC: str = "Studio Booking"

    # M-PESA Daraja
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = "174379"
    MPESA_PASSKEY: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_BASE_URL: str = MPESA_SANDBOX_URL
    MPESA_TIMEOUT_SECONDS: float = 30.0

    # Bootstrap admin
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    @property
    def mpesa_configured(self) -> bool:
        return bool(self.MPESA_CONSUMER_KEY and self.MPESA_CONSUMER_SECRET)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Read settings from the environment (and a .env file when present)"""
        load_dotenv(env_file)
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name)
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

"""Wiring of stores, gateway and services for one application instance"""
import logging
from typing import TYPE_CHECKING, Optional

from application.services import (
    AuthService, BookingService, PaymentService, StudioService, UnitOfWorkFactory
)
from domain.gateways import PaymentGateway
from infrastructure.config import Settings
from infrastructure.mpesa import build_gateway
from infrastructure.security import CredentialService

if TYPE_CHECKING:
    from infrastructure.database import Database

logger = logging.getLogger(__name__)


class Container:
    """Holds the service instances the API layer depends on"""

    def __init__(
        self,
        settings: Settings,
        uow_factory: UnitOfWorkFactory,
        credentials: CredentialService,
        gateway: PaymentGateway,
        database: Optional["Database"] = None
    ):
        self.settings = settings
        self.uow_factory = uow_factory
        self.credentials = credentials
        self.gateway = gateway
        self.database = database

        self.auth_service = AuthService(uow_factory, credentials)
        self.studio_service = StudioService(uow_factory, credentials)
        self.booking_service = BookingService(uow_factory, settings.DEFAULT_CURRENCY)
        self.payment_service = PaymentService(uow_factory, gateway, settings.TRANSACTION_DESC)

    async def bootstrap(self) -> None:
        """Create the configured admin account, if any"""
        if self.settings.ADMIN_EMAIL and self.settings.ADMIN_PASSWORD:
            await self.auth_service.ensure_admin(self.settings.ADMIN_EMAIL, self.settings.ADMIN_PASSWORD)

    async def close(self) -> None:
        if self.database is not None:
            await self.database.dispose()


def build_database(settings: Settings) -> Optional["Database"]:
    if not settings.DATABASE_URL:
        return None
    from infrastructure.database import Database

    database = Database(settings.DATABASE_URL)
    logger.info("Using SQL store (%s)", database.engine.dialect.name)
    return database


def build_uow_factory(database: Optional["Database"]) -> UnitOfWorkFactory:
    if database is not None:
        from infrastructure.repositories.sqlalchemy_repositories import SqlAlchemyUnitOfWork

        return lambda: SqlAlchemyUnitOfWork(database)

    from infrastructure.repositories.in_memory_repositories import InMemoryStore, InMemoryUnitOfWork

    store = InMemoryStore()
    logger.info("Using in-memory store")
    return lambda: InMemoryUnitOfWork(store)


def build_container(
    settings: Settings,
    gateway: Optional[PaymentGateway] = None,
    uow_factory: Optional[UnitOfWorkFactory] = None
) -> Container:
    database = None
    if uow_factory is None:
        database = build_database(settings)
        uow_factory = build_uow_factory(database)
    return Container(
        settings=settings,
        uow_factory=uow_factory,
        credentials=CredentialService(settings),
        gateway=gateway or build_gateway(settings),
        database=database,
    )

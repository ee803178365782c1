"""API Dependencies - Authentication and service lookup"""
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from application.services import AuthService, BookingService, PaymentService, StudioService
from domain.auth import Principal
from domain.enums import Action
from domain.policies import ensure_can_perform
from infrastructure.container import Container

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_auth_service(container: Container = Depends(get_container)) -> AuthService:
    return container.auth_service


def get_studio_service(container: Container = Depends(get_container)) -> StudioService:
    return container.studio_service


def get_booking_service(container: Container = Depends(get_container)) -> BookingService:
    return container.booking_service


def get_payment_service(container: Container = Depends(get_container)) -> PaymentService:
    return container.payment_service


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service)
) -> Principal:
    # Unauthorized/Forbidden propagate to the registered exception handlers
    return await auth_service.resolve_principal(token)


def require_permission(action: Action):
    """Dependency that rejects callers whose role cannot perform ``action``"""

    async def checker(current_user: Principal = Depends(get_current_user)) -> Principal:
        ensure_can_perform(current_user.role, action)
        return current_user

    return checker

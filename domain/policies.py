"""Authorization matrix.

Role-level capabilities live here. Ownership checks (this artist's booking,
this manager's studio) are made by the services on top of it.
"""
from typing import Dict, FrozenSet

from domain.enums import Action, Role
from domain.exceptions import Forbidden

_ALL_ROLES = frozenset(Role)

PERMISSIONS: Dict[Action, FrozenSet[Role]] = {
    Action.CREATE_BOOKING: frozenset({Role.ARTIST}),
    Action.LIST_BOOKINGS: _ALL_ROLES,
    Action.VIEW_BOOKING: _ALL_ROLES,
    Action.UPDATE_BOOKING_STATUS: frozenset({Role.STUDIO_MANAGER, Role.ADMIN}),
    Action.DELETE_BOOKING: frozenset({Role.ADMIN}),
    Action.INITIATE_PAYMENT: frozenset({Role.ARTIST, Role.ADMIN}),
    Action.VIEW_PAYMENT: _ALL_ROLES,
    Action.RECONCILE_PAYMENTS: frozenset({Role.ADMIN}),
    Action.MANAGE_STUDIO: frozenset({Role.STUDIO_MANAGER, Role.ADMIN}),
    Action.CREATE_STUDIO_MANAGER: frozenset({Role.ADMIN}),
}


def can_perform(role: Role, action: Action) -> bool:
    """Check whether a role may perform an action at all"""
    return role in PERMISSIONS.get(action, frozenset())


def ensure_can_perform(role: Role, action: Action) -> None:
    if not can_perform(role, action):
        raise Forbidden()

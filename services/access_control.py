"""
Access Control Gate

Closed role enumeration mapped to capabilities. Services never compare role
strings; they ask whether a caller holds a capability or is a trip's assigned
driver.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet
import logging
from models import UserRole
from errors import PermissionDeniedError

logger = logging.getLogger(__name__)

class Capability(Enum):
    VIEW_ALL_TRIPS = 'view_all_trips'
    MANAGE_TRIPS = 'manage_trips'
    OPERATE_TRIPS = 'operate_trips'
    MANAGE_VEHICLES = 'manage_vehicles'
    MANAGE_ROUTES = 'manage_routes'

ROLE_CAPABILITIES = {
    UserRole.COMPANY_ADMIN: frozenset({
        Capability.VIEW_ALL_TRIPS,
        Capability.MANAGE_VEHICLES,
    }),
    UserRole.TRAVEL_ADMIN: frozenset({
        Capability.VIEW_ALL_TRIPS,
        Capability.MANAGE_TRIPS,
        Capability.MANAGE_ROUTES,
    }),
    UserRole.DRIVER: frozenset({
        Capability.OPERATE_TRIPS,
    }),
    UserRole.EMPLOYEE: frozenset(),
}

@dataclass(frozen=True)
class Caller:
    """Resolved identity of whoever issued the current request"""
    user_id: int
    role: UserRole

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return ROLE_CAPABILITIES.get(self.role, frozenset())

class AccessControl:
    """Capability predicates consulted by the services"""

    @staticmethod
    def can(caller: Caller, capability: Capability) -> bool:
        return capability in caller.capabilities

    @staticmethod
    def require(caller: Caller, capability: Capability) -> None:
        if not AccessControl.can(caller, capability):
            logger.warning(f"Capability {capability.value} denied for user {caller.user_id} ({caller.role.value})")
            raise PermissionDeniedError('Access denied')

    @staticmethod
    def is_assigned_driver(caller: Caller, trip) -> bool:
        return caller.user_id == trip.driver_id

"""
Service Layer Architecture

Business logic for the commute fleet backend, kept out of the route handlers.
Services provide:

1. **Transaction Management**: one transaction per operation with rollback
2. **Access Control**: capability checks against the resolved caller
3. **Event Publishing**: committed transitions are fanned out by the relay
4. **Audit Logging**: who changed which trip, vehicle or route

Services Architecture:
- **TripService**: trip state machine and employee pickup/drop legs
- **LocationService**: driver position samples, distance and history retention
- **VehicleService**: vehicle records and driver assignment
- **RouteService**: routes, stops and schedules (soft delete)
- **BroadcastRelay**: realtime fan-out and periodic location prompts
- **AuditService**: audit trail entries
"""

from .trip_service import TripService
from .location_service import LocationService
from .vehicle_service import VehicleService
from .route_service import RouteService
from .broadcast_relay import BroadcastRelay
from .audit_service import AuditService
from .access_control import AccessControl, Caller, Capability
from .transaction_helper import TransactionHelper, TripLockRegistry

__all__ = [
    'TripService',
    'LocationService',
    'VehicleService',
    'RouteService',
    'BroadcastRelay',
    'AuditService',
    'AccessControl',
    'Caller',
    'Capability',
    'TransactionHelper',
    'TripLockRegistry',
]

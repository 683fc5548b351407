"""
Route Service

Commute routes: ordered pickup and drop stops, assigned drivers and vehicles,
and the weekly schedule. Deleting a route only deactivates it.
"""

from typing import Dict, Any, List
import logging
from models import db, Route, RoutePoint, RoutePointKind, User, UserRole, Vehicle, route_drivers
from errors import ValidationError, NotFoundError
from utils.validators import (require_fields, validate_id, validate_number, validate_coordinates,
                              validate_time_string, validate_weekdays)
from .access_control import AccessControl, Capability, Caller
from .transaction_helper import TransactionHelper
from .audit_service import AuditService

logger = logging.getLogger(__name__)


class RouteService:
    """Service class for route management operations"""

    def __init__(self):
        self.audit_service = AuditService()

    def list_routes(self) -> List[Route]:
        return TransactionHelper.execute_with_rollback(
            lambda: Route.query.filter_by(is_active=True)
            .order_by(Route.created_at.desc(), Route.id.desc()).all()
        )

    def routes_for_driver(self, driver_id: int) -> List[Route]:
        return TransactionHelper.execute_with_rollback(
            lambda: Route.query
            .join(route_drivers, route_drivers.c.route_id == Route.id)
            .filter(route_drivers.c.driver_id == driver_id, Route.is_active == True)
            .order_by(Route.id).all()
        )

    def get_route(self, route_id: int) -> Route:
        route = TransactionHelper.execute_with_rollback(db.session.get, Route, route_id)
        if route is None:
            raise NotFoundError('Route not found')
        return route

    @TransactionHelper.with_transaction
    def create_route(self, data: Dict[str, Any], caller: Caller) -> Route:
        AccessControl.require(caller, Capability.MANAGE_ROUTES)
        if not isinstance(data, dict):
            raise ValidationError('Route data must be an object')
        require_fields(data, ('name', 'pickup_points', 'drop_points'))

        route = Route()
        self._apply_fields(route, data)
        db.session.add(route)
        db.session.flush()

        self.audit_service.log_action(
            action='create_route',
            entity_type='route',
            entity_id=route.id,
            details={'name': route.name, 'stops': len(route.points)},
            user_id=caller.user_id
        )
        logger.info(f"Route created: {route.name} (ID {route.id})")
        return route

    @TransactionHelper.with_transaction
    def update_route(self, route_id: int, data: Dict[str, Any], caller: Caller) -> Route:
        AccessControl.require(caller, Capability.MANAGE_ROUTES)
        if not isinstance(data, dict) or not data:
            raise ValidationError('No fields to update')
        route = db.session.get(Route, route_id)
        if route is None:
            raise NotFoundError('Route not found')

        self._apply_fields(route, data)
        db.session.flush()

        self.audit_service.log_action(
            action='update_route',
            entity_type='route',
            entity_id=route.id,
            details={'fields': sorted(data.keys())},
            user_id=caller.user_id
        )
        logger.info(f"Route updated: {route.name}")
        return route

    @TransactionHelper.with_transaction
    def deactivate_route(self, route_id: int, caller: Caller) -> Route:
        """Soft delete: the route stays referenced by past trips"""
        AccessControl.require(caller, Capability.MANAGE_ROUTES)
        route = db.session.get(Route, route_id)
        if route is None:
            raise NotFoundError('Route not found')

        route.is_active = False
        self.audit_service.log_action(
            action='delete_route', entity_type='route', entity_id=route.id, user_id=caller.user_id
        )
        logger.info(f"Route deactivated: {route.name}")
        return route

    def _apply_fields(self, route: Route, data: Dict[str, Any]) -> None:
        if 'name' in data:
            name = data['name']
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('name is required')
            route.name = name.strip()
        if 'description' in data:
            route.description = data['description']
        if 'is_active' in data:
            if not isinstance(data['is_active'], bool):
                raise ValidationError('is_active must be true or false')
            route.is_active = data['is_active']

        if 'pickup_points' in data or 'drop_points' in data:
            pickup = self._validate_points(data.get('pickup_points', None), 'pickup_points',
                                           RoutePointKind.PICKUP, route)
            drop = self._validate_points(data.get('drop_points', None), 'drop_points',
                                         RoutePointKind.DROP, route)
            route.points = pickup + drop

        if 'assigned_drivers' in data:
            route.assigned_drivers = self._load_members(data['assigned_drivers'], 'assigned_drivers', User)
            for driver in route.assigned_drivers:
                if driver.role != UserRole.DRIVER:
                    raise ValidationError(f"User {driver.id} is not a driver")
        if 'assigned_vehicles' in data:
            route.assigned_vehicles = self._load_members(data['assigned_vehicles'], 'assigned_vehicles', Vehicle)

        if 'schedule' in data:
            schedule = data['schedule'] or {}
            if not isinstance(schedule, dict):
                raise ValidationError('schedule must be an object')
            if 'days' in schedule:
                route.schedule_days = validate_weekdays(schedule['days'] or [], 'schedule.days')
            for key, column in (('start_time', 'schedule_start_time'), ('end_time', 'schedule_end_time')):
                if schedule.get(key):
                    setattr(route, column, validate_time_string(schedule[key], f"schedule.{key}"))

        if data.get('estimated_duration') is not None:
            route.estimated_duration = int(validate_number(data['estimated_duration'], 'estimated_duration', 0))
        if data.get('estimated_distance') is not None:
            route.estimated_distance = validate_number(data['estimated_distance'], 'estimated_distance', 0)

    def _validate_points(self, points, field: str, kind: RoutePointKind, route: Route) -> List[RoutePoint]:
        if points is None:
            # Keep the stops of the other kind when only one list is replaced
            return [p for p in route.points if p.kind == kind]
        if not isinstance(points, list) or not points:
            raise ValidationError(f"{field} must be a non-empty list")

        validated = []
        orders = set()
        for index, point in enumerate(points):
            label = f"{field}[{index}]"
            if not isinstance(point, dict):
                raise ValidationError(f"{label} must be an object")
            if point.get('order') is None:
                raise ValidationError(f"{label}.order is required")
            order = validate_number(point['order'], f"{label}.order", 0)
            if order != int(order) or int(order) in orders:
                raise ValidationError(f"{label}.order must be a unique whole number")
            orders.add(int(order))
            lat, lng = None, None
            if point.get('lat') is not None or point.get('lng') is not None:
                lat, lng = validate_coordinates(point.get('lat'), point.get('lng'))
            if not point.get('name') and not point.get('address') and lat is None:
                raise ValidationError(f"{label} must carry a name, address or coordinates")
            validated.append(RoutePoint(kind=kind, name=point.get('name'), address=point.get('address'),
                                        lat=lat, lng=lng, stop_order=int(order)))
        return sorted(validated, key=lambda p: p.stop_order)

    def _load_members(self, ids, field: str, model) -> list:
        if not isinstance(ids, list):
            raise ValidationError(f"{field} must be a list of ids")
        members = []
        for member_id in dict.fromkeys(validate_id(raw_id, field) for raw_id in ids):
            member = db.session.get(model, member_id)
            if member is None:
                raise ValidationError(f"{field} references unknown id {member_id}")
            members.append(member)
        return members

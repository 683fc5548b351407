"""
Vehicle Service

Fleet vehicle records: specification, maintenance block and driver assignment.
"""

from typing import Optional, Dict, Any, List
import logging
from sqlalchemy import delete
from models import (db, Vehicle, VehicleStatus, FuelType, Trip, TripStatus, User, UserRole,
                    route_vehicles)
from errors import ValidationError, NotFoundError, ConflictError
from utils.validators import require_fields, validate_id, validate_number, validate_date, validate_enum
from .access_control import AccessControl, Capability, Caller
from .transaction_helper import TransactionHelper
from .audit_service import AuditService

logger = logging.getLogger(__name__)

MIN_CAPACITY = 1
MAX_CAPACITY = 50


class VehicleService:
    """Service class for vehicle management operations"""

    def __init__(self):
        self.audit_service = AuditService()

    def list_vehicles(self) -> List[Vehicle]:
        return TransactionHelper.execute_with_rollback(
            lambda: Vehicle.query.order_by(Vehicle.created_at.desc(), Vehicle.id.desc()).all()
        )

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        vehicle = TransactionHelper.execute_with_rollback(db.session.get, Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError('Vehicle not found')
        return vehicle

    def vehicle_for_driver(self, driver_id: int) -> Vehicle:
        vehicle = TransactionHelper.execute_with_rollback(
            lambda: Vehicle.query.filter_by(driver_id=driver_id).order_by(Vehicle.id).first()
        )
        if vehicle is None:
            raise NotFoundError('Vehicle not found')
        return vehicle

    @TransactionHelper.with_transaction
    def create_vehicle(self, data: Dict[str, Any], caller: Caller) -> Vehicle:
        """
        Register a vehicle.

        Args:
            data: name, number_plate, capacity and optionally driver_id, status,
                  specifications {make, model, year, fuel_type, mileage} and
                  maintenance {last_service_date, next_service_date, total_distance}
            caller: Must hold MANAGE_VEHICLES

        Returns:
            Vehicle: the new vehicle
        """
        AccessControl.require(caller, Capability.MANAGE_VEHICLES)
        if not isinstance(data, dict):
            raise ValidationError('Vehicle data must be an object')
        require_fields(data, ('name', 'number_plate', 'capacity'))

        vehicle = Vehicle()
        self._apply_fields(vehicle, data)
        db.session.add(vehicle)
        db.session.flush()

        self.audit_service.log_action(
            action='create_vehicle',
            entity_type='vehicle',
            entity_id=vehicle.id,
            details={'number_plate': vehicle.number_plate},
            user_id=caller.user_id
        )
        logger.info(f"Vehicle created: {vehicle.number_plate} (ID {vehicle.id})")
        return vehicle

    @TransactionHelper.with_transaction
    def update_vehicle(self, vehicle_id: int, data: Dict[str, Any], caller: Caller) -> Vehicle:
        AccessControl.require(caller, Capability.MANAGE_VEHICLES)
        if not isinstance(data, dict) or not data:
            raise ValidationError('No fields to update')
        vehicle = db.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError('Vehicle not found')

        self._apply_fields(vehicle, data)
        db.session.flush()

        self.audit_service.log_action(
            action='update_vehicle',
            entity_type='vehicle',
            entity_id=vehicle.id,
            details={'fields': sorted(data.keys())},
            user_id=caller.user_id
        )
        logger.info(f"Vehicle updated: {vehicle.number_plate}")
        return vehicle

    @TransactionHelper.with_transaction
    def delete_vehicle(self, vehicle_id: int, caller: Caller) -> None:
        AccessControl.require(caller, Capability.MANAGE_VEHICLES)
        vehicle = db.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError('Vehicle not found')

        open_trips = Trip.query.filter(
            Trip.vehicle_id == vehicle_id,
            Trip.status.in_((TripStatus.SCHEDULED, TripStatus.STARTED, TripStatus.IN_PROGRESS))
        ).count()
        if open_trips:
            raise ConflictError(f"Vehicle is assigned to {open_trips} open trip(s)")

        # Finished trips still reference the vehicle
        if Trip.query.filter(Trip.vehicle_id == vehicle_id).count():
            raise ConflictError('Vehicle has trip history and cannot be deleted; set it inactive instead')

        db.session.execute(delete(route_vehicles).where(route_vehicles.c.vehicle_id == vehicle_id))
        db.session.delete(vehicle)
        self.audit_service.log_action(
            action='delete_vehicle',
            entity_type='vehicle',
            entity_id=vehicle_id,
            details={'number_plate': vehicle.number_plate},
            user_id=caller.user_id
        )
        logger.info(f"Vehicle deleted: {vehicle.number_plate}")

    def _apply_fields(self, vehicle: Vehicle, data: Dict[str, Any]) -> None:
        if 'name' in data:
            name = data['name']
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('name is required')
            vehicle.name = name.strip()

        if 'number_plate' in data:
            plate = data['number_plate']
            if not isinstance(plate, str) or not plate.strip():
                raise ValidationError('number_plate is required')
            plate = plate.strip().upper()
            duplicate = Vehicle.query.filter(Vehicle.number_plate == plate).first()
            if duplicate is not None and duplicate is not vehicle:
                raise ConflictError(f"Vehicle with number plate {plate} already exists")
            vehicle.number_plate = plate

        if 'capacity' in data:
            capacity = validate_number(data['capacity'], 'capacity', MIN_CAPACITY, MAX_CAPACITY)
            if capacity != int(capacity):
                raise ValidationError('capacity must be a whole number')
            vehicle.capacity = int(capacity)

        if 'driver_id' in data:
            vehicle.driver_id = self._validate_driver(data['driver_id'])

        if 'status' in data:
            vehicle.status = validate_enum(data['status'], VehicleStatus, 'status')

        specifications = data.get('specifications') or {}
        if not isinstance(specifications, dict):
            raise ValidationError('specifications must be an object')
        for key in ('make', 'model'):
            if key in specifications:
                value = specifications[key]
                setattr(vehicle, key, str(value).strip() if value else None)
        if specifications.get('year') is not None:
            vehicle.year = int(validate_number(specifications['year'], 'year', 1900, 2100))
        if specifications.get('fuel_type') is not None:
            vehicle.fuel_type = validate_enum(specifications['fuel_type'], FuelType, 'fuel_type')
        if specifications.get('mileage') is not None:
            vehicle.mileage = validate_number(specifications['mileage'], 'mileage', 0)

        maintenance = data.get('maintenance') or {}
        if not isinstance(maintenance, dict):
            raise ValidationError('maintenance must be an object')
        for key in ('last_service_date', 'next_service_date'):
            if key in maintenance:
                setattr(vehicle, key, validate_date(maintenance[key], key) if maintenance[key] else None)
        if maintenance.get('total_distance') is not None:
            vehicle.total_distance = validate_number(maintenance['total_distance'], 'total_distance', 0)

    def _validate_driver(self, driver_id: Any) -> Optional[int]:
        if driver_id in (None, ''):
            return None
        driver_id = validate_id(driver_id, 'driver_id')
        driver = db.session.get(User, driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            raise ValidationError('driver_id must reference a driver')
        return driver_id

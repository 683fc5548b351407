"""
Trip Service

Owns the trip state machine:

    Scheduled -> Started -> In Progress -> Completed
    (any non-terminal) -> Cancelled

and each employee leg's Pending -> Picked -> Dropped progression. Every
transition is one transaction guarded by a conditional update on the expected
current state, so a retried or raced transition fails with ConflictError
instead of applying twice. Drop and the completion check run under the trip's
mutex and a row lock.

Successful transitions are published to the broadcast relay after commit.
"""

from typing import Optional, Dict, Any, List
import logging
from sqlalchemy import select, update, func
from models import (db, Trip, TripEmployee, User, Vehicle, Route,
                   TripStatus, LegStatus, UserRole)
from errors import ValidationError, NotFoundError, PermissionDeniedError, ConflictError
from timezone_utils import get_local_time_naive
from utils.validators import (require_fields, validate_id, validate_date, validate_time_string,
                              validate_number, validate_location, validate_weekdays, validate_enum)
from utils.serializers import serialize_trip_status
from .access_control import AccessControl, Capability, Caller
from .audit_service import AuditService
from .broadcast_relay import BroadcastRelay, TRIP_ASSIGNED, TRIP_STATUS_UPDATE
from .transaction_helper import TransactionHelper, TripLockRegistry

logger = logging.getLogger(__name__)

REQUIRED_TRIP_FIELDS = ('trip_name', 'driver_id', 'vehicle_id', 'scheduled_date',
                        'scheduled_start_time', 'scheduled_end_time', 'employees')

NON_TERMINAL_STATUSES = (TripStatus.SCHEDULED, TripStatus.STARTED, TripStatus.IN_PROGRESS)
LIVE_STATUSES = (TripStatus.STARTED, TripStatus.IN_PROGRESS)


class TripService:
    """Service class for trip lifecycle operations"""

    def __init__(self, relay: Optional[BroadcastRelay] = None,
                 locks: Optional[TripLockRegistry] = None):
        self.relay = relay
        self.locks = locks if locks is not None else TripLockRegistry()
        self.audit_service = AuditService()

    # Reads --------------------------------------------------------------

    def get_trip(self, trip_id: int) -> Trip:
        trip = TransactionHelper.execute_with_rollback(db.session.get, Trip, trip_id)
        if trip is None:
            raise NotFoundError('Trip not found')
        return trip

    def list_trips(self, status: Optional[str] = None, scheduled_date: Optional[str] = None,
                   driver_id: Optional[int] = None) -> List[Trip]:
        """
        Filtered trip listing for admins.

        Args:
            status: Trip status value, e.g. 'In Progress'
            scheduled_date: Day in YYYY-MM-DD format
            driver_id: Assigned driver

        Returns:
            Trips ordered by scheduled date (newest first) then start time
        """
        query = select(Trip)
        if status:
            query = query.where(Trip.status == validate_enum(status, TripStatus, 'status'))
        if scheduled_date:
            query = query.where(Trip.scheduled_date == validate_date(scheduled_date, 'date'))
        if driver_id:
            query = query.where(Trip.driver_id == validate_id(driver_id, 'driver_id'))
        return self._fetch(query.order_by(Trip.scheduled_date.desc(), Trip.scheduled_start_time.asc()))

    def trips_for_driver(self, driver_id: int, status: Optional[str] = None) -> List[Trip]:
        query = select(Trip).where(Trip.driver_id == driver_id)
        if status:
            query = query.where(Trip.status == validate_enum(status, TripStatus, 'status'))
        return self._fetch(query.order_by(Trip.scheduled_date.desc(), Trip.scheduled_start_time.asc()))

    def trips_for_employee(self, employee_id: int) -> List[Trip]:
        query = (select(Trip)
                 .join(TripEmployee, TripEmployee.trip_id == Trip.id)
                 .where(TripEmployee.employee_id == employee_id)
                 .order_by(Trip.scheduled_date.desc(), Trip.scheduled_start_time.asc()))
        return self._fetch(query)

    def live_trips(self) -> List[Trip]:
        query = (select(Trip)
                 .where(Trip.status.in_(LIVE_STATUSES))
                 .order_by(Trip.actual_start_time.desc()))
        return self._fetch(query)

    def _fetch(self, query) -> List[Trip]:
        return TransactionHelper.execute_with_rollback(
            lambda: list(db.session.execute(query).scalars().unique())
        )

    # Create / admin -----------------------------------------------------

    def create_trip(self, data: Dict[str, Any], caller: Caller) -> Trip:
        trip = self._create_trip(data, caller)
        self._publish(TRIP_ASSIGNED, self._assignment_payload(trip))
        return trip

    @TransactionHelper.with_transaction
    def _create_trip(self, data: Dict[str, Any], caller: Caller) -> Trip:
        AccessControl.require(caller, Capability.MANAGE_TRIPS)
        if not isinstance(data, dict):
            raise ValidationError('Trip data must be an object')
        require_fields(data, REQUIRED_TRIP_FIELDS)

        fields = self._validate_trip_fields(data)
        legs = self._validate_legs(data['employees'])

        trip = Trip(status=TripStatus.SCHEDULED, **fields)
        for sequence, leg in enumerate(legs):
            trip.employees.append(TripEmployee(sequence=sequence, status=LegStatus.PENDING, **leg))

        db.session.add(trip)
        db.session.flush()

        self.audit_service.log_action(
            action='create_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'driver_id': trip.driver_id, 'vehicle_id': trip.vehicle_id,
                     'employees': len(legs)},
            user_id=caller.user_id
        )
        logger.info(f"Trip created: ID {trip.id}, driver {trip.driver_id}, {len(legs)} employees")
        return trip

    def update_trip(self, trip_id: int, data: Dict[str, Any], caller: Caller) -> Trip:
        with self.locks.hold(trip_id):
            trip, status_changed, driver_changed = self._update_trip(trip_id, data, caller)
        if status_changed:
            self._publish(TRIP_STATUS_UPDATE, serialize_trip_status(trip))
        if driver_changed:
            self._publish(TRIP_ASSIGNED, self._assignment_payload(trip))
        return trip

    @TransactionHelper.with_transaction
    def _update_trip(self, trip_id: int, data: Dict[str, Any], caller: Caller):
        AccessControl.require(caller, Capability.MANAGE_TRIPS)
        if not isinstance(data, dict) or not data:
            raise ValidationError('No fields to update')
        trip = self._load_locked(trip_id)

        status_changed = False
        if 'status' in data:
            new_status = validate_enum(data['status'], TripStatus, 'status')
            if new_status != TripStatus.CANCELLED:
                raise ValidationError('Only Cancelled can be set directly; other statuses follow the driver workflow')
            self._apply_cancel(trip)
            status_changed = True

        fields = self._validate_trip_fields(data, partial=True)
        driver_changed = 'driver_id' in fields and fields['driver_id'] != trip.driver_id
        for name, value in fields.items():
            setattr(trip, name, value)

        if 'employees' in data:
            if trip.status != TripStatus.SCHEDULED:
                raise ConflictError('Employees can only be changed before the trip starts')
            legs = self._validate_legs(data['employees'])
            # Old legs must be gone before the replacements hit the unique constraint
            trip.employees.clear()
            db.session.flush()
            for sequence, leg in enumerate(legs):
                trip.employees.append(TripEmployee(sequence=sequence, status=LegStatus.PENDING, **leg))

        db.session.flush()
        self.audit_service.log_action(
            action='update_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'fields': sorted(data.keys())},
            user_id=caller.user_id
        )
        logger.info(f"Trip updated: ID {trip.id}, fields {sorted(data.keys())}")
        return trip, status_changed, driver_changed

    def cancel_trip(self, trip_id: int, caller: Caller) -> Trip:
        with self.locks.hold(trip_id):
            trip = self._cancel_trip(trip_id, caller)
        self._publish(TRIP_STATUS_UPDATE, serialize_trip_status(trip))
        return trip

    @TransactionHelper.with_transaction
    def _cancel_trip(self, trip_id: int, caller: Caller) -> Trip:
        AccessControl.require(caller, Capability.MANAGE_TRIPS)
        trip = self._load_locked(trip_id)
        self._apply_cancel(trip)
        self.audit_service.log_action(
            action='cancel_trip', entity_type='trip', entity_id=trip.id, user_id=caller.user_id
        )
        return trip

    def delete_trip(self, trip_id: int, caller: Caller) -> None:
        with self.locks.hold(trip_id):
            self._delete_trip(trip_id, caller)

    @TransactionHelper.with_transaction
    def _delete_trip(self, trip_id: int, caller: Caller) -> None:
        AccessControl.require(caller, Capability.MANAGE_TRIPS)
        trip = self._load_locked(trip_id)
        db.session.delete(trip)
        self.audit_service.log_action(
            action='delete_trip', entity_type='trip', entity_id=trip_id, user_id=caller.user_id
        )
        logger.info(f"Trip deleted: ID {trip_id}")

    # Driver transitions -------------------------------------------------

    def start_trip(self, trip_id: int, caller: Caller) -> Trip:
        with self.locks.hold(trip_id):
            trip = self._start_trip(trip_id, caller)
        self._publish(TRIP_STATUS_UPDATE, serialize_trip_status(trip))
        return trip

    @TransactionHelper.with_transaction
    def _start_trip(self, trip_id: int, caller: Caller) -> Trip:
        trip = self._load_for_driver(trip_id, caller)
        if trip.status != TripStatus.SCHEDULED:
            self._reject(trip, f"Trip is already {trip.status.value}")

        now = get_local_time_naive()
        result = db.session.execute(
            update(Trip)
            .where(Trip.id == trip.id,
                   Trip.driver_id == caller.user_id,
                   Trip.status == TripStatus.SCHEDULED)
            .values(status=TripStatus.STARTED, actual_start_time=now)
        )
        if result.rowcount != 1:
            self._reject(trip, 'Trip was started concurrently')
        db.session.refresh(trip)

        self.audit_service.log_action(
            action='start_trip', entity_type='trip', entity_id=trip.id, user_id=caller.user_id
        )
        logger.info(f"Trip started: ID {trip.id}, driver {caller.user_id}")
        return trip

    def mark_pickup(self, trip_id: int, employee_id: int, caller: Caller) -> Trip:
        with self.locks.hold(trip_id):
            trip = self._mark_pickup(trip_id, employee_id, caller)
        self._publish(TRIP_STATUS_UPDATE, serialize_trip_status(trip))
        return trip

    @TransactionHelper.with_transaction
    def _mark_pickup(self, trip_id: int, employee_id: int, caller: Caller) -> Trip:
        trip = self._load_for_driver(trip_id, caller)
        self._ensure_not_terminal(trip)
        leg = self._leg_or_404(trip, employee_id)
        if leg.status != LegStatus.PENDING:
            self._reject(trip, f"Employee already {leg.status.value}")

        now = get_local_time_naive()
        self._advance_leg(leg, LegStatus.PENDING, status=LegStatus.PICKED, pickup_time=now)
        trip.status = TripStatus.IN_PROGRESS
        db.session.flush()

        self.audit_service.log_action(
            action='pickup_employee', entity_type='trip', entity_id=trip.id,
            details={'employee_id': employee_id}, user_id=caller.user_id
        )
        logger.info(f"Employee {employee_id} picked up on trip {trip.id}")
        return trip

    def mark_drop(self, trip_id: int, employee_id: int, caller: Caller) -> Trip:
        with self.locks.hold(trip_id):
            trip = self._mark_drop(trip_id, employee_id, caller)
        self._publish(TRIP_STATUS_UPDATE, serialize_trip_status(trip))
        return trip

    @TransactionHelper.with_transaction
    def _mark_drop(self, trip_id: int, employee_id: int, caller: Caller) -> Trip:
        trip = self._load_for_driver(trip_id, caller)
        self._ensure_not_terminal(trip)
        leg = self._leg_or_404(trip, employee_id)
        if leg.status == LegStatus.PENDING:
            self._reject(trip, 'Employee has not been picked up yet')
        if leg.status == LegStatus.DROPPED:
            self._reject(trip, 'Employee already Dropped')

        now = get_local_time_naive()
        self._advance_leg(leg, LegStatus.PICKED, status=LegStatus.DROPPED, drop_time=now)

        # Recomputed from stored leg state after every drop, whatever the drop order
        remaining = db.session.execute(
            select(func.count(TripEmployee.id))
            .where(TripEmployee.trip_id == trip.id, TripEmployee.status != LegStatus.DROPPED)
        ).scalar_one()
        if remaining == 0:
            trip.status = TripStatus.COMPLETED
            trip.actual_end_time = now
            if trip.actual_start_time:
                trip.actual_duration = int((now - trip.actual_start_time).total_seconds() // 60)
            logger.info(f"Trip completed: ID {trip.id}")
        db.session.flush()

        self.audit_service.log_action(
            action='drop_employee', entity_type='trip', entity_id=trip.id,
            details={'employee_id': employee_id, 'completed': remaining == 0},
            user_id=caller.user_id
        )
        return trip

    # Helpers ------------------------------------------------------------

    def _load_locked(self, trip_id: int) -> Trip:
        trip = db.session.execute(
            select(Trip).where(Trip.id == trip_id).with_for_update()
        ).scalar_one_or_none()
        if trip is None:
            raise NotFoundError('Trip not found')
        return trip

    def _load_for_driver(self, trip_id: int, caller: Caller) -> Trip:
        AccessControl.require(caller, Capability.OPERATE_TRIPS)
        trip = self._load_locked(trip_id)
        if not AccessControl.is_assigned_driver(caller, trip):
            logger.warning(f"User {caller.user_id} tried to operate trip {trip_id} assigned to {trip.driver_id}")
            raise PermissionDeniedError('Trip not assigned to you')
        return trip

    def _ensure_not_terminal(self, trip: Trip) -> None:
        if trip.status.is_terminal:
            self._reject(trip, f"Trip is already {trip.status.value}")

    def _leg_or_404(self, trip: Trip, employee_id: int) -> TripEmployee:
        leg = trip.leg_for(employee_id)
        if leg is None:
            raise NotFoundError('Employee not found on this trip')
        return leg

    def _advance_leg(self, leg: TripEmployee, expected: LegStatus, **values) -> None:
        result = db.session.execute(
            update(TripEmployee)
            .where(TripEmployee.id == leg.id, TripEmployee.status == expected)
            .values(**values)
        )
        if result.rowcount != 1:
            raise ConflictError('Employee status changed concurrently')
        db.session.refresh(leg)

    def _apply_cancel(self, trip: Trip) -> None:
        result = db.session.execute(
            update(Trip)
            .where(Trip.id == trip.id, Trip.status.in_(NON_TERMINAL_STATUSES))
            .values(status=TripStatus.CANCELLED)
        )
        if result.rowcount != 1:
            self._reject(trip, f"Trip is already {trip.status.value}")
        db.session.refresh(trip)
        logger.info(f"Trip cancelled: ID {trip.id}")

    def _reject(self, trip: Trip, message: str) -> None:
        logger.warning(f"Rejected transition on trip {trip.id}: {message}")
        raise ConflictError(message)

    def _validate_trip_fields(self, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """Validate scalar trip fields; with partial=True only fields present are checked"""
        fields: Dict[str, Any] = {}

        if 'trip_name' in data or not partial:
            name = data.get('trip_name')
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('trip_name is required')
            fields['trip_name'] = name.strip()

        if 'driver_id' in data or not partial:
            driver_id = validate_id(data.get('driver_id'), 'driver_id')
            driver = db.session.get(User, driver_id)
            if driver is None or driver.role != UserRole.DRIVER or not driver.is_active:
                raise ValidationError('driver_id must reference an active driver')
            fields['driver_id'] = driver_id

        if 'vehicle_id' in data or not partial:
            vehicle_id = validate_id(data.get('vehicle_id'), 'vehicle_id')
            if db.session.get(Vehicle, vehicle_id) is None:
                raise ValidationError('vehicle_id must reference an existing vehicle')
            fields['vehicle_id'] = vehicle_id

        if data.get('route_id') is not None:
            route_id = validate_id(data['route_id'], 'route_id')
            if db.session.get(Route, route_id) is None:
                raise ValidationError('route_id must reference an existing route')
            fields['route_id'] = route_id
        elif 'route_id' in data:
            fields['route_id'] = None

        if 'scheduled_date' in data or not partial:
            fields['scheduled_date'] = validate_date(data.get('scheduled_date'), 'scheduled_date')
        for key in ('scheduled_start_time', 'scheduled_end_time'):
            if key in data or not partial:
                fields[key] = validate_time_string(data.get(key), key)

        for key in ('start_location', 'end_location'):
            if data.get(key) is not None:
                fields[key] = validate_location(data[key], key)

        if data.get('estimated_duration') is not None:
            fields['estimated_duration'] = int(validate_number(data['estimated_duration'], 'estimated_duration', 0))
        if 'notes' in data:
            fields['notes'] = str(data['notes']) if data['notes'] is not None else None
        if 'is_recurring' in data:
            if not isinstance(data['is_recurring'], bool):
                raise ValidationError('is_recurring must be true or false')
            fields['is_recurring'] = data['is_recurring']
        if 'recurring_days' in data:
            fields['recurring_days'] = validate_weekdays(data['recurring_days'] or [], 'recurring_days')

        return fields

    def _validate_legs(self, employees: Any) -> List[Dict[str, Any]]:
        if not isinstance(employees, list) or not employees:
            raise ValidationError('employees must be a non-empty list')

        legs = []
        seen = set()
        for index, entry in enumerate(employees):
            label = f"employees[{index}]"
            if not isinstance(entry, dict):
                raise ValidationError(f"{label} must be an object")
            require_fields(entry, ('employee_id', 'pickup_location', 'drop_location'))
            employee_id = validate_id(entry['employee_id'], f"{label}.employee_id")
            if employee_id in seen:
                raise ValidationError(f"{label}.employee_id appears more than once")
            employee = db.session.get(User, employee_id)
            if employee is None or not employee.is_active:
                raise ValidationError(f"{label}.employee_id must reference an active user")
            seen.add(employee_id)
            legs.append({
                'employee_id': employee_id,
                'pickup_location': validate_location(entry['pickup_location'], f"{label}.pickup_location"),
                'drop_location': validate_location(entry['drop_location'], f"{label}.drop_location"),
            })
        return legs

    def _assignment_payload(self, trip: Trip) -> Dict[str, Any]:
        return {
            'trip_id': trip.id,
            'trip_name': trip.trip_name,
            'driver_id': trip.driver_id,
            'vehicle_id': trip.vehicle_id,
            'scheduled_date': trip.scheduled_date.isoformat(),
            'scheduled_start_time': trip.scheduled_start_time,
        }

    def _publish(self, event: str, payload: Dict[str, Any]) -> None:
        if self.relay is None:
            return
        try:
            self.relay.publish(event, payload)
        except Exception as e:
            # The transition is already committed; the relay has no delivery guarantee
            logger.error(f"Failed to publish {event}: {str(e)}")

"""
Location Service

Driver-reported positions for a running trip: overwrite the trip's current
location snapshot, append to its history and fan the sample out as
driverLocationUpdate. Also the distance overwrite and history retention.
"""

from datetime import timedelta
from typing import Optional, Dict, Any, List
import logging
from sqlalchemy import select, delete, func
from models import db, Trip, TripLocation, TripStatus
from errors import ValidationError, NotFoundError, PermissionDeniedError, ConflictError
from timezone_utils import get_local_time_naive
from utils.validators import validate_coordinates, validate_number
from .access_control import AccessControl, Capability, Caller
from .broadcast_relay import BroadcastRelay, DRIVER_LOCATION_UPDATE
from .transaction_helper import TransactionHelper, TripLockRegistry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 5000
DEFAULT_RETENTION_DAYS = 30


class LocationService:
    """Service class for trip location ingestion"""

    def __init__(self, relay: Optional[BroadcastRelay] = None,
                 locks: Optional[TripLockRegistry] = None,
                 history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.relay = relay
        self.locks = locks if locks is not None else TripLockRegistry()
        self.history_limit = history_limit

    def report_location(self, trip_id: int, caller: Caller, lat: Any, lng: Any,
                        speed: Any = None) -> Dict[str, Any]:
        """
        Record a position sample from the trip's driver.

        Args:
            trip_id: Trip being driven
            caller: Must be the trip's assigned driver
            lat: Latitude in [-90, 90]
            lng: Longitude in [-180, 180]
            speed: Non-negative speed, 0 when omitted

        Returns:
            The driverLocationUpdate payload that was broadcast
        """
        with self.locks.hold(trip_id):
            payload = self._report_location(trip_id, caller, lat, lng, speed)
        if self.relay is not None:
            try:
                self.relay.publish(DRIVER_LOCATION_UPDATE, payload)
            except Exception as e:
                logger.error(f"Failed to publish {DRIVER_LOCATION_UPDATE}: {str(e)}")
        return payload

    @TransactionHelper.with_transaction
    def _report_location(self, trip_id: int, caller: Caller, lat: Any, lng: Any,
                         speed: Any) -> Dict[str, Any]:
        lat, lng = validate_coordinates(lat, lng)
        speed = validate_number(speed, 'speed', 0) if speed is not None else 0.0

        trip = self._load_for_driver(trip_id, caller)
        if trip.status.is_terminal:
            raise ConflictError(f"Trip is already {trip.status.value}")

        now = get_local_time_naive()
        trip.current_lat = lat
        trip.current_lng = lng
        trip.current_location_at = now
        db.session.add(TripLocation(trip_id=trip.id, lat=lat, lng=lng, speed=speed, recorded_at=now))
        db.session.flush()
        self._evict_overflow(trip.id)

        return {
            'trip_id': trip.id,
            'driver_id': trip.driver_id,
            'lat': lat,
            'lng': lng,
            'speed': speed,
            'timestamp': now.isoformat(),
        }

    def update_distance(self, trip_id: int, caller: Caller, total: Any, completed: Any) -> Trip:
        with self.locks.hold(trip_id):
            return self._update_distance(trip_id, caller, total, completed)

    @TransactionHelper.with_transaction
    def _update_distance(self, trip_id: int, caller: Caller, total: Any, completed: Any) -> Trip:
        total = validate_number(total, 'total_distance', 0)
        completed = validate_number(completed, 'completed_distance', 0)
        if completed > total:
            raise ValidationError('completed_distance cannot exceed total_distance')

        trip = self._load_for_driver(trip_id, caller)
        trip.total_distance = total
        trip.completed_distance = completed
        db.session.flush()
        logger.debug(f"Trip {trip.id} distance {completed}/{total} km")
        return trip

    def location_history(self, trip_id: int) -> List[TripLocation]:
        def _query():
            if db.session.get(Trip, trip_id) is None:
                raise NotFoundError('Trip not found')
            return list(db.session.execute(
                select(TripLocation)
                .where(TripLocation.trip_id == trip_id)
                .order_by(TripLocation.recorded_at.asc(), TripLocation.id.asc())
            ).scalars())
        return TransactionHelper.execute_with_rollback(_query)

    @TransactionHelper.with_transaction
    def purge_expired_history(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Drop history of finished trips whose end is older than the retention window"""
        cutoff = get_local_time_naive() - timedelta(days=retention_days)
        expired_trips = (
            select(Trip.id)
            .where(Trip.status.in_((TripStatus.COMPLETED, TripStatus.CANCELLED)),
                   func.coalesce(Trip.actual_end_time, Trip.updated_at) < cutoff)
        )
        result = db.session.execute(
            delete(TripLocation)
            .where(TripLocation.trip_id.in_(expired_trips))
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Purged {result.rowcount} location samples older than {retention_days} days")
        return result.rowcount

    def _evict_overflow(self, trip_id: int) -> None:
        count = db.session.execute(
            select(func.count(TripLocation.id)).where(TripLocation.trip_id == trip_id)
        ).scalar_one()
        overflow = count - self.history_limit
        if overflow <= 0:
            return
        oldest = (
            select(TripLocation.id)
            .where(TripLocation.trip_id == trip_id)
            .order_by(TripLocation.recorded_at.asc(), TripLocation.id.asc())
            .limit(overflow)
        )
        oldest_ids = list(db.session.execute(oldest).scalars())
        db.session.execute(
            delete(TripLocation)
            .where(TripLocation.id.in_(oldest_ids))
            .execution_options(synchronize_session=False)
        )
        logger.debug(f"Evicted {len(oldest_ids)} location samples from trip {trip_id}")

    def _load_for_driver(self, trip_id: int, caller: Caller) -> Trip:
        AccessControl.require(caller, Capability.OPERATE_TRIPS)
        trip = db.session.execute(
            select(Trip).where(Trip.id == trip_id).with_for_update()
        ).scalar_one_or_none()
        if trip is None:
            raise NotFoundError('Trip not found')
        if not AccessControl.is_assigned_driver(caller, trip):
            raise PermissionDeniedError('Trip not assigned to you')
        return trip

from datetime import date
from app import db
from sqlalchemy import Index, CheckConstraint, UniqueConstraint
from enum import Enum
from timezone_utils import get_local_time_naive

# Enums for better data integrity
class UserRole(Enum):
    COMPANY_ADMIN = 'company-admin'
    TRAVEL_ADMIN = 'travel-admin'
    DRIVER = 'driver'
    EMPLOYEE = 'employee'

class VehicleStatus(Enum):
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    INACTIVE = 'inactive'

class FuelType(Enum):
    PETROL = 'petrol'
    DIESEL = 'diesel'
    ELECTRIC = 'electric'
    HYBRID = 'hybrid'

class TripStatus(Enum):
    SCHEDULED = 'Scheduled'
    STARTED = 'Started'
    IN_PROGRESS = 'In Progress'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'

    @property
    def is_terminal(self):
        return self in (TripStatus.COMPLETED, TripStatus.CANCELLED)

class LegStatus(Enum):
    PENDING = 'Pending'
    PICKED = 'Picked'
    DROPPED = 'Dropped'

class RoutePointKind(Enum):
    PICKUP = 'pickup'
    DROP = 'drop'

WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

# Progress order; Cancelled sits outside it and is reachable from any non-terminal status
TRIP_STATUS_ORDER = {
    TripStatus.SCHEDULED: 0,
    TripStatus.STARTED: 1,
    TripStatus.IN_PROGRESS: 2,
    TripStatus.COMPLETED: 3,
}

LEG_STATUS_ORDER = {
    LegStatus.PENDING: 0,
    LegStatus.PICKED: 1,
    LegStatus.DROPPED: 2,
}

# Association tables
route_drivers = db.Table('route_drivers',
    db.Column('route_id', db.Integer, db.ForeignKey('routes.id', ondelete='CASCADE'), primary_key=True),
    db.Column('driver_id', db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
)

route_vehicles = db.Table('route_vehicles',
    db.Column('route_id', db.Integer, db.ForeignKey('routes.id', ondelete='CASCADE'), primary_key=True),
    db.Column('vehicle_id', db.Integer, db.ForeignKey('vehicles.id', ondelete='CASCADE'), primary_key=True),
)

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.EMPLOYEE, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=get_local_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    def __repr__(self):
        return f'<User {self.email}>'

class Vehicle(db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    number_plate = db.Column(db.String(20), unique=True, nullable=False, index=True)
    capacity = db.Column(db.Integer, nullable=False)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    status = db.Column(db.Enum(VehicleStatus), nullable=False, default=VehicleStatus.ACTIVE, index=True)

    # Specifications
    make = db.Column(db.String(50))
    model = db.Column(db.String(100))
    year = db.Column(db.Integer)
    fuel_type = db.Column(db.Enum(FuelType), nullable=False, default=FuelType.PETROL)
    mileage = db.Column(db.Float)  # km per liter

    # Maintenance schedule
    last_service_date = db.Column(db.Date)
    next_service_date = db.Column(db.Date)
    total_distance = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    driver = db.relationship('User', foreign_keys=[driver_id])

    __table_args__ = (
        Index('idx_vehicle_status_driver', 'status', 'driver_id'),
        CheckConstraint('capacity >= 1 AND capacity <= 50', name='check_vehicle_capacity'),
        CheckConstraint('total_distance >= 0', name='check_vehicle_total_distance'),
    )

    @property
    def is_service_due(self):
        return bool(self.next_service_date and self.next_service_date <= date.today())

    def __repr__(self):
        return f'<Vehicle {self.number_plate}>'

class Route(db.Model):
    __tablename__ = 'routes'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)

    # Weekly schedule
    schedule_days = db.Column(db.JSON, nullable=False, default=list)
    schedule_start_time = db.Column(db.String(5))
    schedule_end_time = db.Column(db.String(5))

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    estimated_duration = db.Column(db.Integer)  # minutes
    estimated_distance = db.Column(db.Float)  # kilometers

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    points = db.relationship('RoutePoint', backref='route', cascade='all, delete-orphan',
                             order_by='RoutePoint.stop_order')
    assigned_drivers = db.relationship('User', secondary=route_drivers, lazy='selectin')
    assigned_vehicles = db.relationship('Vehicle', secondary=route_vehicles, lazy='selectin')

    @property
    def pickup_points(self):
        return [p for p in self.points if p.kind == RoutePointKind.PICKUP]

    @property
    def drop_points(self):
        return [p for p in self.points if p.kind == RoutePointKind.DROP]

    def __repr__(self):
        return f'<Route {self.name}>'

class RoutePoint(db.Model):
    __tablename__ = 'route_points'

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(db.Integer, db.ForeignKey('routes.id', ondelete='CASCADE'), nullable=False, index=True)
    kind = db.Column(db.Enum(RoutePointKind), nullable=False)
    name = db.Column(db.String(150))
    address = db.Column(db.String(500))
    lat = db.Column(db.Float)
    lng = db.Column(db.Float)
    # Stop sequence comes from this field, never from list position
    stop_order = db.Column(db.Integer, nullable=False)

    def __repr__(self):
        return f'<RoutePoint {self.kind.value}#{self.stop_order} route:{self.route_id}>'

class Trip(db.Model):
    __tablename__ = 'trips'

    id = db.Column(db.Integer, primary_key=True)
    trip_name = db.Column(db.String(150), nullable=False)
    route_id = db.Column(db.Integer, db.ForeignKey('routes.id'), nullable=True, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)

    start_location = db.Column(db.JSON)
    end_location = db.Column(db.JSON)

    # Schedule
    scheduled_date = db.Column(db.Date, nullable=False)
    scheduled_start_time = db.Column(db.String(5), nullable=False)
    scheduled_end_time = db.Column(db.String(5), nullable=False)
    actual_start_time = db.Column(db.DateTime)
    actual_end_time = db.Column(db.DateTime)

    status = db.Column(db.Enum(TripStatus), nullable=False, default=TripStatus.SCHEDULED, index=True)

    # Current location snapshot
    current_lat = db.Column(db.Float)
    current_lng = db.Column(db.Float)
    current_location_at = db.Column(db.DateTime)

    # Distance as reported by the driver app
    total_distance = db.Column(db.Float, nullable=False, default=0.0)
    completed_distance = db.Column(db.Float, nullable=False, default=0.0)
    estimated_duration = db.Column(db.Integer)  # minutes
    actual_duration = db.Column(db.Integer)  # minutes

    notes = db.Column(db.Text)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurring_days = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=get_local_time_naive)
    updated_at = db.Column(db.DateTime, default=get_local_time_naive, onupdate=get_local_time_naive)

    # Relationships
    driver = db.relationship('User', foreign_keys=[driver_id])
    vehicle = db.relationship('Vehicle', foreign_keys=[vehicle_id])
    route = db.relationship('Route', foreign_keys=[route_id])
    employees = db.relationship('TripEmployee', backref='trip', cascade='all, delete-orphan',
                                order_by='TripEmployee.sequence')
    location_history = db.relationship('TripLocation', backref='trip', cascade='all, delete-orphan',
                                       order_by='TripLocation.id', lazy='dynamic')

    __table_args__ = (
        Index('idx_trip_driver_date', 'driver_id', 'scheduled_date'),
        Index('idx_trip_status_date', 'status', 'scheduled_date'),
        CheckConstraint('total_distance >= 0', name='check_trip_total_distance'),
        CheckConstraint('completed_distance >= 0', name='check_trip_completed_distance'),
    )

    @property
    def current_location(self):
        if self.current_lat is None or self.current_lng is None:
            return None
        return {
            'lat': self.current_lat,
            'lng': self.current_lng,
            'timestamp': self.current_location_at.isoformat() if self.current_location_at else None,
        }

    @property
    def all_dropped(self):
        return bool(self.employees) and all(leg.status == LegStatus.DROPPED for leg in self.employees)

    def leg_for(self, employee_id):
        for leg in self.employees:
            if leg.employee_id == employee_id:
                return leg
        return None

    def __repr__(self):
        return f'<Trip {self.id} {self.status.value}>'

class TripEmployee(db.Model):
    """One employee's pickup-to-drop leg within a trip"""
    __tablename__ = 'trip_employees'

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(db.Integer, db.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False, default=0)

    pickup_location = db.Column(db.JSON, nullable=False)
    drop_location = db.Column(db.JSON, nullable=False)
    pickup_time = db.Column(db.DateTime)
    drop_time = db.Column(db.DateTime)
    status = db.Column(db.Enum(LegStatus), nullable=False, default=LegStatus.PENDING)

    employee = db.relationship('User', foreign_keys=[employee_id])

    __table_args__ = (
        UniqueConstraint('trip_id', 'employee_id', name='uq_trip_employee'),
    )

    def __repr__(self):
        return f'<TripEmployee trip:{self.trip_id} employee:{self.employee_id} {self.status.value}>'

class TripLocation(db.Model):
    """Append-only position sample reported by the trip's driver"""
    __tablename__ = 'trip_location_history'

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(db.Integer, db.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False, index=True)
    lat = db.Column(db.Float, nullable=False)
    lng = db.Column(db.Float, nullable=False)
    speed = db.Column(db.Float, nullable=False, default=0.0)
    recorded_at = db.Column(db.DateTime, nullable=False, default=get_local_time_naive, index=True)

    __table_args__ = (
        Index('idx_trip_location_trip_recorded', 'trip_id', 'recorded_at'),
        CheckConstraint('lat >= -90 AND lat <= 90', name='check_trip_location_lat'),
        CheckConstraint('lng >= -180 AND lng <= 180', name='check_trip_location_lng'),
        CheckConstraint('speed >= 0', name='check_trip_location_speed'),
    )

    def __repr__(self):
        return f'<TripLocation trip:{self.trip_id} at {self.lat},{self.lng}>'

class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    # Action details
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)
    new_values = db.Column(db.Text)  # JSON

    # Request context
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=get_local_time_naive, index=True)

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )

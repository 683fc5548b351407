"""
Pytest configuration and fixtures for the commute fleet backend
"""

import os
from datetime import date

import pytest

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'SESSION_SECRET': 'test_secret_key_for_testing_only_0123456789',
    'JWT_SECRET_KEY': 'test_jwt_secret_for_testing_only_0123456789',
    'DATABASE_URL': 'sqlite://',
    'ERROR_LOG_FILE': '',
    'LOG_LEVEL': 'WARNING',
    'RELAY_TIMERS_ENABLED': 'false',
    'RETENTION_SCHEDULER_ENABLED': 'false',
    'DEMO_SEED': 'false',
})

from app import create_app, db
from models import (User, UserRole, Vehicle, VehicleStatus, FuelType, Route, Trip, TripEmployee,
                    TripStatus, LegStatus)
from auth import issue_access_token
from services.access_control import Caller
from services.broadcast_relay import BroadcastRelay
from services.transaction_helper import TripLockRegistry
import factory
from factory import Faker
from werkzeug.security import generate_password_hash

PASSWORD_HASH = generate_password_hash('testpass123')


@pytest.fixture(scope='function')
def app():
    """Create application for testing"""
    app = create_app({'TESTING': True})

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create test CLI runner"""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session for testing"""
    yield db.session
    db.session.rollback()


# Factory classes for test data generation
class UserFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = User
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    name = Faker('name')
    email = factory.Sequence(lambda n: f"user{n}@test.com")
    password_hash = PASSWORD_HASH
    role = UserRole.EMPLOYEE
    is_active = True


class EmployeeFactory(UserFactory):
    email = factory.Sequence(lambda n: f"employee{n}@test.com")


class DriverFactory(UserFactory):
    role = UserRole.DRIVER
    email = factory.Sequence(lambda n: f"driver{n}@test.com")


class TravelAdminFactory(UserFactory):
    role = UserRole.TRAVEL_ADMIN
    email = factory.Sequence(lambda n: f"travel{n}@test.com")


class CompanyAdminFactory(UserFactory):
    role = UserRole.COMPANY_ADMIN
    email = factory.Sequence(lambda n: f"admin{n}@test.com")


class VehicleFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Vehicle
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    name = "Toyota Innova"
    number_plate = factory.Sequence(lambda n: f"KA01AA{n:04d}")
    capacity = 7
    status = VehicleStatus.ACTIVE
    make = "Toyota"
    model = "Innova"
    year = 2022
    fuel_type = FuelType.DIESEL
    mileage = 15.0


class RouteFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Route
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    name = factory.Sequence(lambda n: f"Route {n}")
    description = Faker('sentence')
    schedule_days = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday']
    schedule_start_time = "09:00"
    schedule_end_time = "18:00"
    is_active = True


class TripFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Trip
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    trip_name = factory.Sequence(lambda n: f"Morning pickup {n}")
    driver = factory.SubFactory(DriverFactory)
    vehicle = factory.SubFactory(VehicleFactory)
    scheduled_date = factory.LazyFunction(date.today)
    scheduled_start_time = "09:00"
    scheduled_end_time = "10:00"
    status = TripStatus.SCHEDULED


class TripEmployeeFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = TripEmployee
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    trip = factory.SubFactory(TripFactory)
    employee = factory.SubFactory(EmployeeFactory)
    sequence = factory.Sequence(lambda n: n)
    pickup_location = factory.LazyFunction(lambda: {'address': 'Koramangala, Bangalore', 'lat': 12.9352,
                                                    'lng': 77.6245, 'name': 'Home'})
    drop_location = factory.LazyFunction(lambda: {'address': 'Tech Park, Bangalore', 'lat': 12.9716,
                                                  'lng': 77.5946, 'name': 'Office'})
    status = LegStatus.PENDING


def caller_for(user):
    return Caller(user_id=user.id, role=user.role)


def location_payload(name='Stop'):
    return {'address': f"{name}, Bangalore", 'lat': 12.9716, 'lng': 77.5946, 'name': name}


# Fixtures for test data
@pytest.fixture
def travel_admin(db_session):
    return TravelAdminFactory()


@pytest.fixture
def company_admin(db_session):
    return CompanyAdminFactory()


@pytest.fixture
def driver(db_session):
    return DriverFactory()


@pytest.fixture
def other_driver(db_session):
    return DriverFactory()


@pytest.fixture
def employees(db_session):
    return EmployeeFactory.create_batch(2)


@pytest.fixture
def vehicle(db_session):
    return VehicleFactory()


@pytest.fixture
def trip(db_session, driver, vehicle, employees):
    """Scheduled trip for `driver` with one Pending leg per employee"""
    trip = TripFactory(driver=driver, vehicle=vehicle)
    for index, employee in enumerate(employees):
        TripEmployeeFactory(trip=trip, employee=employee, sequence=index)
    db_session.refresh(trip)
    return trip


@pytest.fixture
def emitter():
    """Stand-in for SocketIO.emit recording every broadcast"""
    from unittest.mock import Mock
    return Mock()


@pytest.fixture
def relay(emitter):
    return BroadcastRelay(emitter)


@pytest.fixture
def locks():
    return TripLockRegistry()


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers for a user"""
    def _headers(user):
        return {'Authorization': f"Bearer {issue_access_token(user)}"}
    return _headers


@pytest.fixture
def app_emitter(app, monkeypatch):
    """Record what the app's relay broadcasts without a socket server"""
    from unittest.mock import Mock
    recorder = Mock()
    monkeypatch.setattr(app.extensions['broadcast_relay'], '_emit', recorder)
    return recorder

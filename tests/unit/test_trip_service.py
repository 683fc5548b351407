"""
Unit tests for the trip state machine
"""

import threading

import pytest

from errors import ValidationError, NotFoundError, PermissionDeniedError, ConflictError
from models import Trip, TripEmployee, TripStatus, LegStatus, TRIP_STATUS_ORDER, LEG_STATUS_ORDER, AuditLog
from services.broadcast_relay import TRIP_ASSIGNED, TRIP_STATUS_UPDATE
from app import create_app, db
from services.trip_service import TripService
from tests.conftest import (caller_for, location_payload, DriverFactory, EmployeeFactory, RouteFactory,
                            TripFactory, TripEmployeeFactory)


@pytest.fixture
def service(app, relay, locks):
    return TripService(relay, locks)


def snapshot(db_session, trip_id):
    """Persisted state of a trip and its legs"""
    db_session.expire_all()
    trip = db_session.get(Trip, trip_id)
    return (
        trip.status, trip.actual_start_time, trip.actual_end_time,
        tuple((leg.employee_id, leg.status, leg.pickup_time, leg.drop_time) for leg in trip.employees)
    )


def trip_payload(driver, vehicle, employees, **overrides):
    payload = {
        'trip_name': 'Morning shift',
        'driver_id': driver.id,
        'vehicle_id': vehicle.id,
        'scheduled_date': '2026-10-20',
        'scheduled_start_time': '08:30',
        'scheduled_end_time': '09:30',
        'employees': [
            {'employee_id': e.id, 'pickup_location': location_payload('Home'),
             'drop_location': location_payload('Office')}
            for e in employees
        ],
    }
    payload.update(overrides)
    return payload


class TestCreateTrip:
    """Trip creation and input validation"""

    def test_create_trip_success(self, service, emitter, travel_admin, driver, vehicle, employees):
        trip = service.create_trip(trip_payload(driver, vehicle, employees), caller_for(travel_admin))

        assert trip.id is not None
        assert trip.status == TripStatus.SCHEDULED
        assert [leg.employee_id for leg in trip.employees] == [e.id for e in employees]
        assert all(leg.status == LegStatus.PENDING for leg in trip.employees)
        assert trip.actual_start_time is None

        emitter.assert_called_once()
        event, payload = emitter.call_args.args
        assert event == TRIP_ASSIGNED
        assert payload['trip_id'] == trip.id
        assert payload['driver_id'] == driver.id

    def test_create_trip_records_audit_entry(self, service, db_session, travel_admin, driver, vehicle, employees):
        trip = service.create_trip(trip_payload(driver, vehicle, employees), caller_for(travel_admin))

        audit = db_session.query(AuditLog).filter_by(action='create_trip').one()
        assert audit.entity_id == trip.id
        assert audit.user_id == travel_admin.id

    def test_create_trip_with_route(self, service, travel_admin, driver, vehicle, employees):
        route = RouteFactory()
        trip = service.create_trip(trip_payload(driver, vehicle, employees, route_id=route.id),
                                   caller_for(travel_admin))
        assert trip.route_id == route.id

    def test_create_trip_missing_fields(self, service, db_session, travel_admin):
        with pytest.raises(ValidationError) as exc_info:
            service.create_trip({'trip_name': 'Incomplete'}, caller_for(travel_admin))

        assert 'driver_id' in exc_info.value.message
        assert db_session.query(Trip).count() == 0

    def test_create_trip_empty_employees(self, service, db_session, travel_admin, driver, vehicle):
        with pytest.raises(ValidationError):
            service.create_trip(trip_payload(driver, vehicle, []), caller_for(travel_admin))
        assert db_session.query(Trip).count() == 0

    def test_create_trip_rejects_non_driver(self, service, db_session, travel_admin, vehicle, employees):
        with pytest.raises(ValidationError) as exc_info:
            service.create_trip(trip_payload(employees[0], vehicle, employees), caller_for(travel_admin))

        assert 'driver' in exc_info.value.message
        assert db_session.query(Trip).count() == 0

    def test_create_trip_unknown_vehicle(self, service, travel_admin, driver, vehicle, employees):
        payload = trip_payload(driver, vehicle, employees, vehicle_id=vehicle.id + 100)
        with pytest.raises(ValidationError):
            service.create_trip(payload, caller_for(travel_admin))

    def test_create_trip_unknown_employee(self, service, travel_admin, driver, vehicle, employees):
        payload = trip_payload(driver, vehicle, employees)
        payload['employees'][1]['employee_id'] = 9999
        with pytest.raises(ValidationError) as exc_info:
            service.create_trip(payload, caller_for(travel_admin))
        assert 'employees[1]' in exc_info.value.message

    def test_create_trip_duplicate_employee(self, service, travel_admin, driver, vehicle, employees):
        with pytest.raises(ValidationError):
            service.create_trip(trip_payload(driver, vehicle, [employees[0], employees[0]]),
                                caller_for(travel_admin))

    def test_create_trip_bad_time_format(self, service, travel_admin, driver, vehicle, employees):
        payload = trip_payload(driver, vehicle, employees, scheduled_start_time='8.30am')
        with pytest.raises(ValidationError) as exc_info:
            service.create_trip(payload, caller_for(travel_admin))
        assert 'scheduled_start_time' in exc_info.value.message

    def test_create_trip_requires_manage_capability(self, service, db_session, emitter, company_admin,
                                                    driver, vehicle, employees):
        with pytest.raises(PermissionDeniedError):
            service.create_trip(trip_payload(driver, vehicle, employees), caller_for(company_admin))

        assert db_session.query(Trip).count() == 0
        emitter.assert_not_called()


class TestTripLifecycle:
    """Driver transitions through the state machine"""

    def test_end_to_end_two_employees(self, service, db_session, trip, driver, employees):
        caller = caller_for(driver)
        e1, e2 = employees

        trip = service.start_trip(trip.id, caller)
        assert trip.status == TripStatus.STARTED
        assert trip.actual_start_time is not None

        trip = service.mark_pickup(trip.id, e1.id, caller)
        assert trip.leg_for(e1.id).status == LegStatus.PICKED
        assert trip.status == TripStatus.IN_PROGRESS

        trip = service.mark_pickup(trip.id, e2.id, caller)
        assert trip.leg_for(e2.id).status == LegStatus.PICKED

        trip = service.mark_drop(trip.id, e1.id, caller)
        assert trip.leg_for(e1.id).status == LegStatus.DROPPED
        assert trip.status == TripStatus.IN_PROGRESS
        assert trip.actual_end_time is None

        trip = service.mark_drop(trip.id, e2.id, caller)
        assert trip.leg_for(e2.id).status == LegStatus.DROPPED
        assert trip.status == TripStatus.COMPLETED
        assert trip.actual_end_time is not None
        assert trip.actual_duration is not None and trip.actual_duration >= 0

    def test_status_never_regresses(self, service, trip, driver, employees):
        caller = caller_for(driver)
        observed = [trip.status]
        leg_statuses = {e.id: [LegStatus.PENDING] for e in employees}

        steps = [
            lambda: service.start_trip(trip.id, caller),
            lambda: service.mark_pickup(trip.id, employees[1].id, caller),
            lambda: service.mark_pickup(trip.id, employees[0].id, caller),
            lambda: service.mark_drop(trip.id, employees[0].id, caller),
            lambda: service.mark_drop(trip.id, employees[1].id, caller),
        ]
        for step in steps:
            current = step()
            observed.append(current.status)
            for leg in current.employees:
                leg_statuses[leg.employee_id].append(leg.status)

        ranks = [TRIP_STATUS_ORDER[status] for status in observed]
        assert ranks == sorted(ranks)
        for history in leg_statuses.values():
            leg_ranks = [LEG_STATUS_ORDER[status] for status in history]
            assert leg_ranks == sorted(leg_ranks)

    def test_start_publishes_status_update(self, service, emitter, trip, driver):
        service.start_trip(trip.id, caller_for(driver))

        event, payload = emitter.call_args.args
        assert event == TRIP_STATUS_UPDATE
        assert payload['trip_id'] == trip.id
        assert payload['status'] == 'Started'

    def test_start_twice_conflicts_without_mutation(self, service, db_session, trip, driver):
        caller = caller_for(driver)
        service.start_trip(trip.id, caller)
        before = snapshot(db_session, trip.id)

        with pytest.raises(ConflictError):
            service.start_trip(trip.id, caller)

        assert snapshot(db_session, trip.id) == before

    def test_pickup_without_start_moves_to_in_progress(self, service, trip, driver, employees):
        trip = service.mark_pickup(trip.id, employees[0].id, caller_for(driver))

        assert trip.status == TripStatus.IN_PROGRESS
        assert trip.actual_start_time is None
        assert trip.leg_for(employees[0].id).pickup_time is not None

    @pytest.mark.parametrize('advance_to', ['picked', 'dropped'])
    def test_repeated_pickup_conflicts_without_mutation(self, service, db_session, trip, driver,
                                                        employees, advance_to):
        caller = caller_for(driver)
        service.start_trip(trip.id, caller)
        service.mark_pickup(trip.id, employees[0].id, caller)
        if advance_to == 'dropped':
            service.mark_drop(trip.id, employees[0].id, caller)
        before = snapshot(db_session, trip.id)

        with pytest.raises(ConflictError):
            service.mark_pickup(trip.id, employees[0].id, caller)

        assert snapshot(db_session, trip.id) == before

    def test_drop_before_pickup_conflicts(self, service, db_session, trip, driver, employees):
        caller = caller_for(driver)
        service.start_trip(trip.id, caller)
        before = snapshot(db_session, trip.id)

        with pytest.raises(ConflictError):
            service.mark_drop(trip.id, employees[0].id, caller)

        assert snapshot(db_session, trip.id) == before

    def test_completion_regardless_of_drop_order(self, service, db_session, driver, vehicle):
        caller = caller_for(driver)
        trip = TripFactory(driver=driver, vehicle=vehicle)
        riders = EmployeeFactory.create_batch(3)
        for index, rider in enumerate(riders):
            TripEmployeeFactory(trip=trip, employee=rider, sequence=index)

        service.start_trip(trip.id, caller)
        for rider in riders:
            service.mark_pickup(trip.id, rider.id, caller)

        drop_order = [riders[2], riders[0], riders[1]]
        for position, rider in enumerate(drop_order):
            current = service.mark_drop(trip.id, rider.id, caller)
            all_dropped = all(leg.status == LegStatus.DROPPED for leg in current.employees)
            assert (current.status == TripStatus.COMPLETED) == all_dropped
            assert all_dropped == (position == len(drop_order) - 1)

    def test_unknown_employee_is_not_found(self, service, trip, driver):
        with pytest.raises(NotFoundError):
            service.mark_pickup(trip.id, 9999, caller_for(driver))

    def test_unknown_trip_is_not_found(self, service, driver):
        with pytest.raises(NotFoundError):
            service.start_trip(9999, caller_for(driver))

    def test_completed_trip_rejects_transitions(self, service, trip, driver, employees):
        caller = caller_for(driver)
        for employee in employees:
            service.mark_pickup(trip.id, employee.id, caller)
        for employee in employees:
            service.mark_drop(trip.id, employee.id, caller)

        with pytest.raises(ConflictError):
            service.start_trip(trip.id, caller)
        with pytest.raises(ConflictError):
            service.mark_drop(trip.id, employees[0].id, caller)


class TestDriverPermissions:
    """Only the assigned driver moves a trip"""

    @pytest.mark.parametrize('operation', ['start', 'pickup', 'drop'])
    def test_other_driver_is_denied_without_mutation(self, service, db_session, emitter, trip, driver,
                                                     other_driver, employees, operation):
        service.mark_pickup(trip.id, employees[0].id, caller_for(driver))
        emitter.reset_mock()
        before = snapshot(db_session, trip.id)
        intruder = caller_for(other_driver)

        with pytest.raises(PermissionDeniedError):
            if operation == 'start':
                service.start_trip(trip.id, intruder)
            elif operation == 'pickup':
                service.mark_pickup(trip.id, employees[1].id, intruder)
            else:
                service.mark_drop(trip.id, employees[0].id, intruder)

        assert snapshot(db_session, trip.id) == before
        emitter.assert_not_called()

    def test_admin_cannot_operate_trip(self, service, trip, travel_admin):
        with pytest.raises(PermissionDeniedError):
            service.start_trip(trip.id, caller_for(travel_admin))


class TestAdminOperations:
    """Cancel, update and delete by a travel admin"""

    def test_cancel_scheduled_trip(self, service, emitter, trip, travel_admin):
        trip = service.cancel_trip(trip.id, caller_for(travel_admin))

        assert trip.status == TripStatus.CANCELLED
        event, payload = emitter.call_args.args
        assert event == TRIP_STATUS_UPDATE
        assert payload['status'] == 'Cancelled'

    def test_cancelled_is_absorbing(self, service, trip, travel_admin, driver, employees):
        service.cancel_trip(trip.id, caller_for(travel_admin))

        with pytest.raises(ConflictError):
            service.cancel_trip(trip.id, caller_for(travel_admin))
        with pytest.raises(ConflictError):
            service.start_trip(trip.id, caller_for(driver))
        with pytest.raises(ConflictError):
            service.mark_pickup(trip.id, employees[0].id, caller_for(driver))

    def test_update_status_only_allows_cancel(self, service, db_session, trip, travel_admin):
        with pytest.raises(ValidationError):
            service.update_trip(trip.id, {'status': 'Completed'}, caller_for(travel_admin))
        assert db_session.get(Trip, trip.id).status == TripStatus.SCHEDULED

        updated = service.update_trip(trip.id, {'status': 'Cancelled'}, caller_for(travel_admin))
        assert updated.status == TripStatus.CANCELLED

    def test_update_fields(self, service, trip, travel_admin, other_driver, emitter):
        updated = service.update_trip(trip.id, {'notes': 'Gate 3', 'driver_id': other_driver.id,
                                                'recurring_days': ['Friday', 'Monday']},
                                      caller_for(travel_admin))

        assert updated.notes == 'Gate 3'
        assert updated.driver_id == other_driver.id
        assert updated.recurring_days == ['Monday', 'Friday']
        assert emitter.call_args.args[0] == TRIP_ASSIGNED

    def test_replace_employees_while_scheduled(self, service, db_session, trip, travel_admin, employees):
        newcomer = EmployeeFactory()
        legs = [
            {'employee_id': employees[0].id, 'pickup_location': location_payload('Home'),
             'drop_location': location_payload('Office')},
            {'employee_id': newcomer.id, 'pickup_location': location_payload('Hostel'),
             'drop_location': location_payload('Office')},
        ]
        updated = service.update_trip(trip.id, {'employees': legs}, caller_for(travel_admin))

        assert [leg.employee_id for leg in updated.employees] == [employees[0].id, newcomer.id]
        assert db_session.query(TripEmployee).filter_by(trip_id=trip.id).count() == 2

    def test_replace_employees_after_start_conflicts(self, service, db_session, trip, travel_admin,
                                                     driver, employees):
        service.start_trip(trip.id, caller_for(driver))
        legs = [{'employee_id': employees[0].id, 'pickup_location': location_payload('Home'),
                 'drop_location': location_payload('Office')}]

        with pytest.raises(ConflictError):
            service.update_trip(trip.id, {'employees': legs}, caller_for(travel_admin))
        assert db_session.query(TripEmployee).filter_by(trip_id=trip.id).count() == 2

    def test_delete_trip_cascades(self, service, db_session, trip, travel_admin, locks):
        trip_id = trip.id
        service.delete_trip(trip_id, caller_for(travel_admin))

        assert db_session.get(Trip, trip_id) is None
        assert db_session.query(TripEmployee).count() == 0
        assert len(locks) == 0

    def test_driver_cannot_delete(self, service, db_session, trip, driver):
        with pytest.raises(PermissionDeniedError):
            service.delete_trip(trip.id, caller_for(driver))
        assert db_session.get(Trip, trip.id) is not None


class TestTripQueries:
    """Filtered reads"""

    def test_list_trips_filters(self, service, trip, driver, vehicle):
        other = TripFactory(vehicle=vehicle, status=TripStatus.CANCELLED)

        assert {t.id for t in service.list_trips()} == {trip.id, other.id}
        assert [t.id for t in service.list_trips(status='Cancelled')] == [other.id]
        assert [t.id for t in service.list_trips(driver_id=driver.id)] == [trip.id]

    def test_list_trips_rejects_unknown_status(self, service):
        with pytest.raises(ValidationError):
            service.list_trips(status='Teleported')

    def test_trips_for_employee(self, service, trip, employees):
        assert [t.id for t in service.trips_for_employee(employees[1].id)] == [trip.id]
        assert service.trips_for_employee(9999) == []

    def test_live_trips(self, service, trip, driver, vehicle):
        TripFactory(vehicle=vehicle)
        assert service.live_trips() == []

        service.start_trip(trip.id, caller_for(driver))
        assert [t.id for t in service.live_trips()] == [trip.id]

    def test_trips_for_driver_with_status(self, service, trip, driver):
        assert [t.id for t in service.trips_for_driver(driver.id, status='Scheduled')] == [trip.id]
        assert service.trips_for_driver(driver.id, status='Completed') == []

    def test_get_trip_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.get_trip(424242)


@pytest.fixture
def file_app(tmp_path):
    """App on an SQLite file so sessions in worker threads see each other's commits"""
    app = create_app({'TESTING': True, 'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'fleet.db'}"})
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


class TestConcurrentDrops:

    def test_parallel_drops_complete_trip_once(self, file_app, relay, locks):
        service = TripService(relay, locks)
        driver = DriverFactory()
        riders = EmployeeFactory.create_batch(2)
        trip = TripFactory(driver=driver)
        for index, rider in enumerate(riders):
            TripEmployeeFactory(trip=trip, employee=rider, sequence=index)

        caller = caller_for(driver)
        trip_id = trip.id
        rider_ids = [rider.id for rider in riders]
        service.start_trip(trip_id, caller)
        for rider_id in rider_ids:
            service.mark_pickup(trip_id, rider_id, caller)
        db.session.remove()

        barrier = threading.Barrier(len(rider_ids))
        outcomes, errors = [], []

        def drop(employee_id):
            try:
                barrier.wait(timeout=5)
                with file_app.app_context():
                    outcomes.append(service.mark_drop(trip_id, employee_id, caller).status)
            except Exception as e:
                errors.append(e)

        workers = [threading.Thread(target=drop, args=(rider_id,)) for rider_id in rider_ids]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        assert errors == []
        assert sorted(status.value for status in outcomes) == ['Completed', 'In Progress']

        stored = db.session.get(Trip, trip_id)
        assert stored.status == TripStatus.COMPLETED
        assert stored.actual_end_time is not None
        assert {leg.status for leg in stored.employees} == {LegStatus.DROPPED}
        assert len(locks) == 0

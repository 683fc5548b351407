from functools import wraps
import logging
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from auth import capability_required, current_caller
from errors import NotFoundError, PermissionDeniedError, ValidationError
from services.access_control import Capability
from services.location_service import LocationService
from services.trip_service import TripService
from utils.serializers import serialize_trip, serialize_location_sample

logger = logging.getLogger(__name__)

trips_bp = Blueprint('trips', __name__)

NOT_ASSIGNED_MESSAGE = 'Trip not found or not assigned to you'
LEG_NOT_FOUND_MESSAGE = 'Trip or employee not found'


def get_trip_service():
    return TripService(current_app.extensions['broadcast_relay'], current_app.extensions['trip_locks'])


def get_location_service():
    return LocationService(current_app.extensions['broadcast_relay'],
                           current_app.extensions['trip_locks'],
                           history_limit=current_app.config['LOCATION_HISTORY_LIMIT'])


def conceal_foreign_trips(message):
    """Answer a missing trip and another driver's trip the same way"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except (NotFoundError, PermissionDeniedError) as e:
                logger.info(f"Driver operation {f.__name__} rejected: {e.message}")
                raise NotFoundError(message)
        return decorated_function
    return decorator


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('JSON object body required')
    return data


@trips_bp.route('', methods=['GET'])
@capability_required(Capability.VIEW_ALL_TRIPS)
def list_trips():
    trips = get_trip_service().list_trips(
        status=request.args.get('status'),
        scheduled_date=request.args.get('date'),
        driver_id=request.args.get('driver_id')
    )
    return jsonify([serialize_trip(trip) for trip in trips])


@trips_bp.route('/live', methods=['GET'])
@capability_required(Capability.VIEW_ALL_TRIPS)
def live_trips():
    return jsonify([serialize_trip(trip) for trip in get_trip_service().live_trips()])


@trips_bp.route('/driver/<int:driver_id>', methods=['GET'])
@jwt_required()
def driver_trips(driver_id):
    trips = get_trip_service().trips_for_driver(driver_id, status=request.args.get('status'))
    return jsonify([serialize_trip(trip) for trip in trips])


@trips_bp.route('/employee/<int:employee_id>', methods=['GET'])
@jwt_required()
def employee_trips(employee_id):
    trips = get_trip_service().trips_for_employee(employee_id)
    return jsonify([serialize_trip(trip) for trip in trips])


@trips_bp.route('/<int:trip_id>', methods=['GET'])
@jwt_required()
def get_trip(trip_id):
    return jsonify(serialize_trip(get_trip_service().get_trip(trip_id)))


@trips_bp.route('/<int:trip_id>/location-history', methods=['GET'])
@jwt_required()
def location_history(trip_id):
    samples = get_location_service().location_history(trip_id)
    return jsonify([serialize_location_sample(sample) for sample in samples])


@trips_bp.route('', methods=['POST'])
@capability_required(Capability.MANAGE_TRIPS)
def create_trip():
    trip = get_trip_service().create_trip(json_body(), current_caller())
    return jsonify(serialize_trip(trip)), 201


@trips_bp.route('/<int:trip_id>', methods=['PUT'])
@capability_required(Capability.MANAGE_TRIPS)
def update_trip(trip_id):
    trip = get_trip_service().update_trip(trip_id, json_body(), current_caller())
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>/cancel', methods=['PUT'])
@capability_required(Capability.MANAGE_TRIPS)
def cancel_trip(trip_id):
    trip = get_trip_service().cancel_trip(trip_id, current_caller())
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>', methods=['DELETE'])
@capability_required(Capability.MANAGE_TRIPS)
def delete_trip(trip_id):
    get_trip_service().delete_trip(trip_id, current_caller())
    return jsonify({'message': 'Trip deleted successfully'})


# Driver operations

@trips_bp.route('/<int:trip_id>/start', methods=['PUT'])
@capability_required(Capability.OPERATE_TRIPS)
@conceal_foreign_trips(NOT_ASSIGNED_MESSAGE)
def start_trip(trip_id):
    trip = get_trip_service().start_trip(trip_id, current_caller())
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>/pickup/<int:employee_id>', methods=['PUT'])
@capability_required(Capability.OPERATE_TRIPS)
@conceal_foreign_trips(LEG_NOT_FOUND_MESSAGE)
def pickup_employee(trip_id, employee_id):
    trip = get_trip_service().mark_pickup(trip_id, employee_id, current_caller())
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>/drop/<int:employee_id>', methods=['PUT'])
@capability_required(Capability.OPERATE_TRIPS)
@conceal_foreign_trips(LEG_NOT_FOUND_MESSAGE)
def drop_employee(trip_id, employee_id):
    trip = get_trip_service().mark_drop(trip_id, employee_id, current_caller())
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>/location', methods=['PUT'])
@capability_required(Capability.OPERATE_TRIPS)
@conceal_foreign_trips(NOT_ASSIGNED_MESSAGE)
def update_location(trip_id):
    data = json_body()
    if data.get('lat') is None or data.get('lng') is None:
        raise ValidationError('lat and lng are required')
    get_location_service().report_location(
        trip_id, current_caller(), data['lat'], data['lng'], data.get('speed')
    )
    trip = get_trip_service().get_trip(trip_id)
    return jsonify(serialize_trip(trip))


@trips_bp.route('/<int:trip_id>/distance', methods=['PUT'])
@capability_required(Capability.OPERATE_TRIPS)
@conceal_foreign_trips(NOT_ASSIGNED_MESSAGE)
def update_distance(trip_id):
    data = json_body()
    trip = get_location_service().update_distance(
        trip_id, current_caller(), data.get('total_distance'), data.get('completed_distance')
    )
    return jsonify(serialize_trip(trip))

"""
JSON shapes for trips, vehicles, routes and their referenced users.

Referenced users and vehicles are embedded as small summaries (id, name,
email / number plate), never as full records.
"""

from typing import Any, Dict, Optional


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_user_ref(user) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {'id': user.id, 'name': user.name, 'email': user.email}


def serialize_vehicle_ref(vehicle) -> Optional[Dict[str, Any]]:
    if vehicle is None:
        return None
    return {'id': vehicle.id, 'name': vehicle.name, 'number_plate': vehicle.number_plate}


def serialize_leg(leg) -> Dict[str, Any]:
    return {
        'employee_id': leg.employee_id,
        'employee': serialize_user_ref(leg.employee),
        'pickup_location': leg.pickup_location,
        'drop_location': leg.drop_location,
        'pickup_time': _iso(leg.pickup_time),
        'drop_time': _iso(leg.drop_time),
        'status': leg.status.value,
    }


def serialize_location_sample(sample) -> Dict[str, Any]:
    return {
        'lat': sample.lat,
        'lng': sample.lng,
        'speed': sample.speed,
        'timestamp': _iso(sample.recorded_at),
    }


def serialize_trip(trip) -> Dict[str, Any]:
    return {
        'id': trip.id,
        'trip_name': trip.trip_name,
        'route_id': trip.route_id,
        'driver_id': trip.driver_id,
        'driver': serialize_user_ref(trip.driver),
        'vehicle_id': trip.vehicle_id,
        'vehicle': serialize_vehicle_ref(trip.vehicle),
        'employees': [serialize_leg(leg) for leg in trip.employees],
        'start_location': trip.start_location,
        'end_location': trip.end_location,
        'scheduled_date': _iso(trip.scheduled_date),
        'scheduled_start_time': trip.scheduled_start_time,
        'scheduled_end_time': trip.scheduled_end_time,
        'actual_start_time': _iso(trip.actual_start_time),
        'actual_end_time': _iso(trip.actual_end_time),
        'status': trip.status.value,
        'current_location': trip.current_location,
        'total_distance': trip.total_distance,
        'completed_distance': trip.completed_distance,
        'estimated_duration': trip.estimated_duration,
        'actual_duration': trip.actual_duration,
        'notes': trip.notes,
        'is_recurring': trip.is_recurring,
        'recurring_days': trip.recurring_days or [],
        'created_at': _iso(trip.created_at),
        'updated_at': _iso(trip.updated_at),
    }


def serialize_trip_status(trip) -> Dict[str, Any]:
    """Payload of the tripStatusUpdate event"""
    return {
        'trip_id': trip.id,
        'driver_id': trip.driver_id,
        'status': trip.status.value,
        'actual_start_time': _iso(trip.actual_start_time),
        'actual_end_time': _iso(trip.actual_end_time),
        'employees': [
            {'employee_id': leg.employee_id, 'status': leg.status.value}
            for leg in trip.employees
        ],
    }


def serialize_vehicle(vehicle) -> Dict[str, Any]:
    return {
        'id': vehicle.id,
        'name': vehicle.name,
        'number_plate': vehicle.number_plate,
        'capacity': vehicle.capacity,
        'driver_id': vehicle.driver_id,
        'driver': serialize_user_ref(vehicle.driver),
        'status': vehicle.status.value,
        'specifications': {
            'make': vehicle.make,
            'model': vehicle.model,
            'year': vehicle.year,
            'fuel_type': vehicle.fuel_type.value if vehicle.fuel_type else None,
            'mileage': vehicle.mileage,
        },
        'maintenance': {
            'last_service_date': _iso(vehicle.last_service_date),
            'next_service_date': _iso(vehicle.next_service_date),
            'total_distance': vehicle.total_distance,
            'service_due': vehicle.is_service_due,
        },
        'created_at': _iso(vehicle.created_at),
        'updated_at': _iso(vehicle.updated_at),
    }


def serialize_route_point(point) -> Dict[str, Any]:
    return {
        'name': point.name,
        'address': point.address,
        'lat': point.lat,
        'lng': point.lng,
        'order': point.stop_order,
    }


def serialize_route(route) -> Dict[str, Any]:
    return {
        'id': route.id,
        'name': route.name,
        'description': route.description,
        'pickup_points': [serialize_route_point(p) for p in route.pickup_points],
        'drop_points': [serialize_route_point(p) for p in route.drop_points],
        'assigned_drivers': [serialize_user_ref(u) for u in route.assigned_drivers],
        'assigned_vehicles': [serialize_vehicle_ref(v) for v in route.assigned_vehicles],
        'schedule': {
            'days': route.schedule_days or [],
            'start_time': route.schedule_start_time,
            'end_time': route.schedule_end_time,
        },
        'is_active': route.is_active,
        'estimated_duration': route.estimated_duration,
        'estimated_distance': route.estimated_distance,
        'created_at': _iso(route.created_at),
        'updated_at': _iso(route.updated_at),
    }

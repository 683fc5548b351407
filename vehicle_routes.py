from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from auth import capability_required, current_caller
from services.access_control import Capability
from services.vehicle_service import VehicleService
from trip_routes import json_body
from utils.serializers import serialize_vehicle

vehicles_bp = Blueprint('vehicles', __name__)

vehicle_service = VehicleService()


@vehicles_bp.route('', methods=['GET'])
@jwt_required()
def list_vehicles():
    return jsonify([serialize_vehicle(v) for v in vehicle_service.list_vehicles()])


@vehicles_bp.route('/driver/<int:driver_id>', methods=['GET'])
@jwt_required()
def driver_vehicle(driver_id):
    return jsonify(serialize_vehicle(vehicle_service.vehicle_for_driver(driver_id)))


@vehicles_bp.route('/<int:vehicle_id>', methods=['GET'])
@jwt_required()
def get_vehicle(vehicle_id):
    return jsonify(serialize_vehicle(vehicle_service.get_vehicle(vehicle_id)))


@vehicles_bp.route('', methods=['POST'])
@capability_required(Capability.MANAGE_VEHICLES)
def create_vehicle():
    vehicle = vehicle_service.create_vehicle(json_body(), current_caller())
    return jsonify(serialize_vehicle(vehicle)), 201


@vehicles_bp.route('/<int:vehicle_id>', methods=['PUT'])
@capability_required(Capability.MANAGE_VEHICLES)
def update_vehicle(vehicle_id):
    vehicle = vehicle_service.update_vehicle(vehicle_id, json_body(), current_caller())
    return jsonify(serialize_vehicle(vehicle))


@vehicles_bp.route('/<int:vehicle_id>', methods=['DELETE'])
@capability_required(Capability.MANAGE_VEHICLES)
def delete_vehicle(vehicle_id):
    vehicle_service.delete_vehicle(vehicle_id, current_caller())
    return jsonify({'message': 'Vehicle deleted successfully'})

from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from auth import capability_required, current_caller
from services.access_control import Capability
from services.route_service import RouteService
from trip_routes import json_body
from utils.serializers import serialize_route

routes_bp = Blueprint('routes', __name__)

route_service = RouteService()


@routes_bp.route('', methods=['GET'])
@jwt_required()
def list_routes():
    """Active routes only; deleted routes stay in the database inactive"""
    return jsonify([serialize_route(r) for r in route_service.list_routes()])


@routes_bp.route('/driver/<int:driver_id>', methods=['GET'])
@jwt_required()
def driver_routes(driver_id):
    return jsonify([serialize_route(r) for r in route_service.routes_for_driver(driver_id)])


@routes_bp.route('/<int:route_id>', methods=['GET'])
@jwt_required()
def get_route(route_id):
    return jsonify(serialize_route(route_service.get_route(route_id)))


@routes_bp.route('', methods=['POST'])
@capability_required(Capability.MANAGE_ROUTES)
def create_route():
    route = route_service.create_route(json_body(), current_caller())
    return jsonify(serialize_route(route)), 201


@routes_bp.route('/<int:route_id>', methods=['PUT'])
@capability_required(Capability.MANAGE_ROUTES)
def update_route(route_id):
    route = route_service.update_route(route_id, json_body(), current_caller())
    return jsonify(serialize_route(route))


@routes_bp.route('/<int:route_id>', methods=['DELETE'])
@capability_required(Capability.MANAGE_ROUTES)
def delete_route(route_id):
    route_service.deactivate_route(route_id, current_caller())
    return jsonify({'message': 'Route deleted successfully'})

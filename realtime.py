"""
Socket.IO handlers for the live relay

Drivers announce themselves with driverJoin; location, trip status and trip
assignment events from any client are re-broadcast to every observer,
including the sender. Registered on the shared SocketIO object at import.
"""

import logging
from flask import request
from app import socketio
from services.broadcast_relay import (get_relay, DRIVER_LOCATION_UPDATE, TRIP_STATUS_UPDATE,
                                      TRIP_ASSIGNED)

logger = logging.getLogger(__name__)


@socketio.on('connect')
def handle_connect():
    logger.info(f"Client connected: {request.sid}")


@socketio.on('driverJoin')
def handle_driver_join(driver_id):
    if isinstance(driver_id, dict):
        driver_id = driver_id.get('driver_id')
    if driver_id in (None, ''):
        logger.warning(f"driverJoin without driver id from {request.sid}")
        return
    get_relay().register_driver(driver_id, request.sid)


@socketio.on(DRIVER_LOCATION_UPDATE)
def handle_driver_location_update(data):
    get_relay().relay(DRIVER_LOCATION_UPDATE, data)


@socketio.on(TRIP_STATUS_UPDATE)
def handle_trip_status_update(data):
    get_relay().relay(TRIP_STATUS_UPDATE, data)


@socketio.on(TRIP_ASSIGNED)
def handle_trip_assigned(data):
    get_relay().relay(TRIP_ASSIGNED, data)


@socketio.on('disconnect')
def handle_disconnect(*args):
    driver_id = get_relay().unregister_sid(request.sid)
    logger.info(f"Client disconnected: {request.sid}" + (f" (driver {driver_id})" if driver_id else ""))

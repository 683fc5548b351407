"""
Live Broadcast Relay

Fan-out channel for realtime clients. Every relayed event goes to every
connected observer unchanged, including the connection that sent it. The relay
also owns the driver registry (driver id -> socket id) and the two periodic
"please report" prompts.

Constructed once by the app factory and reached through
``current_app.extensions['broadcast_relay']``.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

logger = logging.getLogger(__name__)

DRIVER_LOCATION_UPDATE = 'driverLocationUpdate'
TRIP_STATUS_UPDATE = 'tripStatusUpdate'
TRIP_ASSIGNED = 'tripAssigned'
REQUEST_LOCATION_UPDATE = 'requestLocationUpdate'
REQUEST_DRIVER_LOCATION = 'requestDriverLocation'

RELAYED_EVENTS = (DRIVER_LOCATION_UPDATE, TRIP_STATUS_UPDATE, TRIP_ASSIGNED)


class BroadcastRelay:
    """Publish/subscribe relay over a Socket.IO style emitter"""

    def __init__(self, emitter: Callable[..., Any],
                 location_prompt_interval: int = 4,
                 driver_prompt_interval: int = 2):
        if location_prompt_interval < 1 or driver_prompt_interval < 1:
            raise ValueError("Prompt intervals must be at least one time unit")
        self._emit = emitter
        self.location_prompt_interval = location_prompt_interval
        self.driver_prompt_interval = driver_prompt_interval

        self._lock = threading.Lock()
        self._drivers: Dict[str, str] = {}
        self._ticks = 0
        self._timer_running = False

    # Registry -----------------------------------------------------------

    def register_driver(self, driver_id: Any, sid: str) -> None:
        with self._lock:
            self._drivers[str(driver_id)] = sid
        logger.info(f"Driver {driver_id} joined on {sid}")

    def unregister_sid(self, sid: str) -> Optional[str]:
        """Remove the driver bound to a disconnected socket, if any"""
        with self._lock:
            for driver_id, driver_sid in self._drivers.items():
                if driver_sid == sid:
                    del self._drivers[driver_id]
                    break
            else:
                return None
        logger.info(f"Driver {driver_id} disconnected")
        return driver_id

    def active_drivers(self) -> Dict[str, str]:
        """Snapshot of the registry, safe to iterate while drivers come and go"""
        with self._lock:
            return dict(self._drivers)

    def sid_for(self, driver_id: Any) -> Optional[str]:
        with self._lock:
            return self._drivers.get(str(driver_id))

    # Fan-out ------------------------------------------------------------

    def publish(self, event: str, payload: Any = None) -> None:
        """Emit an event to every connected observer"""
        if payload is None:
            self._emit(event)
        else:
            self._emit(event, payload)

    def relay(self, event: str, payload: Any) -> None:
        """Re-broadcast an inbound client event verbatim"""
        if event not in RELAYED_EVENTS:
            raise ValueError(f"Event {event} is not relayed")
        self.publish(event, payload)
        logger.debug(f"Relayed {event}")

    # Periodic prompts ---------------------------------------------------

    def tick(self) -> List[str]:
        """
        Advance the prompt clock by one time unit and emit whatever is due.

        Returns the names of the events emitted, mainly for observability.
        """
        with self._lock:
            self._ticks += 1
            ticks = self._ticks
            drivers = list(self._drivers) if ticks % self.driver_prompt_interval == 0 else []

        emitted = []
        if ticks % self.location_prompt_interval == 0:
            self.publish(REQUEST_LOCATION_UPDATE)
            emitted.append(REQUEST_LOCATION_UPDATE)
        for driver_id in drivers:
            self.publish(REQUEST_DRIVER_LOCATION, {'driver_id': driver_id})
            emitted.append(REQUEST_DRIVER_LOCATION)
        return emitted

    def start_timers(self, socketio, time_unit_seconds: float = 1.0) -> None:
        """Drive tick() from a Flask-SocketIO background task"""
        with self._lock:
            if self._timer_running:
                logger.warning("Relay timers already running")
                return
            self._timer_running = True
        socketio.start_background_task(self._run_timers, socketio, time_unit_seconds)
        logger.info(f"Relay timers started: time unit {time_unit_seconds}s, "
                    f"location prompt every {self.location_prompt_interval}, "
                    f"driver prompt every {self.driver_prompt_interval}")

    def stop_timers(self) -> None:
        with self._lock:
            self._timer_running = False

    @property
    def timers_running(self) -> bool:
        with self._lock:
            return self._timer_running

    def _run_timers(self, socketio, time_unit_seconds: float) -> None:
        while self.timers_running:
            socketio.sleep(time_unit_seconds)
            try:
                self.tick()
            except Exception as e:
                # A failed emit must not kill the prompt loop
                logger.error(f"Error in relay timer tick: {str(e)}")


def get_relay() -> BroadcastRelay:
    return current_app.extensions['broadcast_relay']

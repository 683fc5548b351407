"""
Centralized logging configuration for the commute fleet backend

Structured JSON output (optional), a per-request id echoed in X-Request-ID,
and request completion records that carry the trip, employee, vehicle or
route id taken from the URL.
"""

import os
import sys
import json
import uuid
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from flask import has_request_context, request, g

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# URL parameters lifted into the "fleet" block of a JSON record
FLEET_FIELDS = ('trip_id', 'employee_id', 'driver_id', 'vehicle_id', 'route_id')

# LogRecord attributes that are not user supplied extras
RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'message',
    'taskName', 'request_id', 'request_duration',
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record: metadata, request, fleet ids, exception, extras"""

    def __init__(self):
        super().__init__()
        self.application_name = "commute_fleet"
        self.environment = os.environ.get('FLASK_ENV', 'development')

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'application': self.application_name,
            'environment': self.environment,
        }
        if getattr(record, 'request_id', None):
            log_data['request_id'] = record.request_id

        request_info = self._request_info()
        if request_info:
            log_data['request'] = request_info

        extras = {key: value for key, value in record.__dict__.items()
                  if key not in RESERVED_RECORD_FIELDS}
        fleet = {key: extras.pop(key) for key in FLEET_FIELDS if key in extras}
        if fleet:
            log_data['fleet'] = fleet
        if extras:
            log_data['extra'] = extras

        if record.exc_info:
            log_data['exception'] = self._exception_info(record.exc_info)
        if record.levelno in (logging.DEBUG, logging.ERROR):
            log_data['location'] = {'file': record.pathname, 'function': record.funcName,
                                    'line': record.lineno}

        return json.dumps(log_data, ensure_ascii=False, default=str)

    @staticmethod
    def _request_info() -> Optional[Dict[str, Any]]:
        if not has_request_context():
            return None
        return {
            'method': request.method,
            'path': request.path,
            'remote_addr': request.remote_addr,
            'user_agent': request.headers.get('User-Agent', ''),
        }

    @staticmethod
    def _exception_info(exc_info) -> Dict[str, Any]:
        exc_type, exc_value, _ = exc_info
        return {
            'type': exc_type.__name__ if exc_type else None,
            'message': str(exc_value) if exc_value else None,
            'traceback': traceback.format_exception(*exc_info),
        }


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request id and elapsed seconds"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = None
        if has_request_context():
            record.request_id = getattr(g, 'request_id', None)
            started = getattr(g, 'request_start_time', None)
            if started is not None:
                record.request_duration = datetime.now().timestamp() - started
        return True


def _resolve_level(config) -> str:
    level = str(config.get('LOG_LEVEL') or os.environ.get('LOG_LEVEL', 'INFO')).upper()
    return level if level in LOG_LEVELS else 'INFO'


def _wants_json(config) -> bool:
    if os.environ.get('FLASK_ENV') == 'production':
        return True
    flag = config.get('USE_JSON_LOGGING', os.environ.get('USE_JSON_LOGGING', 'false'))
    return str(flag).lower() == 'true'


def setup_logging(app=None) -> logging.Logger:
    """
    Configure the root logger from LOG_LEVEL, USE_JSON_LOGGING and
    ERROR_LOG_FILE (empty disables the error file).

    Existing root handlers are replaced.
    """
    config = app.config if app is not None else {}
    log_level = _resolve_level(config)
    use_json_logging = _wants_json(config)
    formatter = (JSONFormatter() if use_json_logging
                 else logging.Formatter('[%(asctime)s] %(levelname)s in %(name)s: %(message)s'))

    handlers = [logging.StreamHandler(sys.stdout)]
    error_log_file = config.get('ERROR_LOG_FILE', os.environ.get('ERROR_LOG_FILE', 'logs/error.log'))
    if error_log_file:
        log_dir = os.path.dirname(error_log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        error_handler = logging.FileHandler(error_log_file)
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestContextFilter())
        root_logger.addHandler(handler)

    if os.environ.get('FLASK_ENV') == 'production':
        for noisy in ('werkzeug', 'engineio', 'socketio', 'sqlalchemy.engine'):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    if app is not None:
        app.logger.info(f"Logging configured: level={log_level}, json_format={use_json_logging}")
    return root_logger


def log_request_start():
    """Assign a request id and mark the start of request processing"""
    if has_request_context():
        g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex
        g.request_start_time = datetime.now().timestamp()


def log_request_end(response):
    """Log method, path, status and duration; echo the request id"""
    if not has_request_context() or not hasattr(g, 'request_start_time'):
        return response

    duration_ms = round((datetime.now().timestamp() - g.request_start_time) * 1000, 2)
    extra_data = {'method': request.method, 'path': request.path,
                  'status_code': response.status_code, 'duration_ms': duration_ms}
    for key, value in (request.view_args or {}).items():
        if key in FLEET_FIELDS:
            extra_data[key] = value

    if response.status_code >= 500:
        level = logging.ERROR
    elif response.status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.getLogger('requests').log(
        level, f"{request.method} {request.path} {response.status_code} in {duration_ms}ms", extra=extra_data
    )
    response.headers['X-Request-ID'] = g.request_id
    return response

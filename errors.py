"""
Service error taxonomy

Services raise these; the app factory registers a single error handler that
turns them into ``{"message": ...}`` JSON responses using ``status_code``.
"""


class FleetServiceError(Exception):
    """Base class for every error a service operation can raise"""
    status_code = 500
    default_message = 'Server error'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(FleetServiceError):
    """Malformed or missing input; nothing was persisted"""
    status_code = 400
    default_message = 'Invalid request data'


class NotFoundError(FleetServiceError):
    """No entity matched the requested identity or filter"""
    status_code = 404
    default_message = 'Not found'


class PermissionDeniedError(FleetServiceError):
    """Capability check failed for the caller"""
    status_code = 403
    default_message = 'Access denied'


class ConflictError(FleetServiceError):
    """The entity's state has already moved past the requested transition"""
    status_code = 409
    default_message = 'Request conflicts with current state'


class InfrastructureError(FleetServiceError):
    """Persistence or transport failure"""
    status_code = 500
    default_message = 'Server error'

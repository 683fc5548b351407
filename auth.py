"""
JWT identity for the fleet API

Access tokens carry the user id as identity and the role as an additional
claim. The role is informational; capabilities are always resolved from the
stored user so a demoted or deactivated user loses access immediately.
"""

from functools import wraps
import logging
from flask import jsonify
from flask_jwt_extended import create_access_token, jwt_required, get_current_user
from models import db, User
from services.access_control import AccessControl, Caller

logger = logging.getLogger(__name__)


def issue_access_token(user, expires_delta=None):
    """Mint an access token for a user (CLI and tests)"""
    return create_access_token(
        identity=str(user.id),
        additional_claims={'role': user.role.value},
        expires_delta=expires_delta
    )


def current_caller() -> Caller:
    user = get_current_user()
    return Caller(user_id=user.id, role=user.role)


def capability_required(*capabilities):
    """
    Require a valid access token whose user holds every listed capability.

    Failing the capability check raises PermissionDeniedError, answered as 403
    by the app-level error handler.
    """
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            caller = current_caller()
            for capability in capabilities:
                AccessControl.require(caller, capability)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def register_jwt_callbacks(jwt):
    """Wire user loading and error responses into a JWTManager"""

    @jwt.user_lookup_loader
    def load_user(jwt_header, jwt_data):
        try:
            user_id = int(jwt_data['sub'])
        except (KeyError, TypeError, ValueError):
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @jwt.user_lookup_error_loader
    def user_lookup_failed(jwt_header, jwt_data):
        logger.warning(f"Token presented for unknown or inactive user {jwt_data.get('sub')}")
        return jsonify({'message': 'User not found or inactive'}), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'message': 'No token, authorization denied'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        logger.warning(f"Invalid token: {reason}")
        return jsonify({'message': 'Token is not valid'}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_data):
        return jsonify({'message': 'Token has expired'}), 401

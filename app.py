import os
import logging
from datetime import timedelta
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_compress import Compress
from sqlalchemy.orm import DeclarativeBase
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_socketio import SocketIO
from timezone_utils import get_local_time_naive

API_VERSION = '1.0.0'

logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
socketio = SocketIO()
jwt = JWTManager()
compress = Compress()


def _env_number(name, default, cast=int):
    from utils.config_validator import ConfigValidationError

    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigValidationError(f"{name} must be a number, got {raw!r}")


def _database_config(database_url):
    """SQLAlchemy URI and engine options; PostgreSQL in production, SQLite for development"""
    if database_url.startswith(("postgresql://", "postgres://")):
        # Ensure psycopg2 driver is specified
        database_url = database_url.replace("postgres://", "postgresql://", 1)
        database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)
        return database_url, {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "sslmode": os.environ.get("DATABASE_SSLMODE", "prefer"),
                "connect_timeout": 10,
                "application_name": "commute_fleet",
            }
        }
    return database_url, {"pool_pre_ping": True}


def build_config(config_overrides=None):
    """Assemble settings from the environment, then apply explicit overrides"""
    from utils.config_validator import env_flag

    secret = os.environ.get("SESSION_SECRET")
    database_uri, engine_options = _database_config(
        os.environ.get("DATABASE_URL") or "sqlite:///commute_fleet.db"
    )

    allowed_origins = [origin.strip() for origin in os.environ.get('ALLOWED_ORIGINS', '').split(',')
                       if origin.strip()]
    # Fallback to localhost for development only if no production origins set
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    config = {
        'SECRET_KEY': secret,
        'JWT_SECRET_KEY': os.environ.get('JWT_SECRET_KEY') or secret,
        'JWT_ACCESS_TOKEN_EXPIRES': timedelta(hours=_env_number('JWT_ACCESS_TOKEN_HOURS', 24)),
        'JWT_ALGORITHM': 'HS256',
        'SQLALCHEMY_DATABASE_URI': database_uri,
        'SQLALCHEMY_ENGINE_OPTIONS': engine_options,
        'ALLOWED_ORIGINS': allowed_origins,
        'LOCATION_HISTORY_LIMIT': _env_number('LOCATION_HISTORY_LIMIT', 5000),
        'LOCATION_RETENTION_DAYS': _env_number('LOCATION_RETENTION_DAYS', 30),
        'LOCATION_PROMPT_INTERVAL': _env_number('LOCATION_PROMPT_INTERVAL', 4),
        'DRIVER_PROMPT_INTERVAL': _env_number('DRIVER_PROMPT_INTERVAL', 2),
        'RELAY_TIME_UNIT_SECONDS': _env_number('RELAY_TIME_UNIT_SECONDS', 1.0, float),
        'RELAY_TIMERS_ENABLED': env_flag('RELAY_TIMERS_ENABLED', 'true'),
        'RETENTION_SCHEDULER_ENABLED': env_flag('RETENTION_SCHEDULER_ENABLED', 'true'),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'USE_JSON_LOGGING': os.environ.get('USE_JSON_LOGGING', 'false'),
        'ERROR_LOG_FILE': os.environ.get('ERROR_LOG_FILE', 'logs/error.log'),
        'DEMO_SEED': env_flag('DEMO_SEED'),
        'COMPRESS_MIMETYPES': ['application/json', 'text/plain'],
        'COMPRESS_LEVEL': 6,
        'COMPRESS_MIN_SIZE': 500,
    }
    config.update(config_overrides or {})
    return config


def create_app(config_overrides=None):
    from utils.config_validator import validate_config
    from utils.logging_config import setup_logging, log_request_start, log_request_end

    app = Flask(__name__)
    app.config.update(build_config(config_overrides))
    setup_logging(app)
    validate_config(app.config)

    # Trust one proxy for X-Forwarded-For, X-Forwarded-Proto and X-Forwarded-Host
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    CORS(app, origins=app.config['ALLOWED_ORIGINS'],
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
    compress.init_app(app)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)

    from auth import register_jwt_callbacks
    register_jwt_callbacks(jwt)

    # Socket handlers must be registered before init_app binds them to this app
    import realtime  # noqa: F401
    socketio.init_app(app, cors_allowed_origins=app.config['ALLOWED_ORIGINS'], async_mode='threading')

    from services.broadcast_relay import BroadcastRelay
    from services.transaction_helper import TripLockRegistry
    app.extensions['broadcast_relay'] = BroadcastRelay(
        socketio.emit,
        location_prompt_interval=app.config['LOCATION_PROMPT_INTERVAL'],
        driver_prompt_interval=app.config['DRIVER_PROMPT_INTERVAL'],
    )
    app.extensions['trip_locks'] = TripLockRegistry()

    # Register blueprints
    from trip_routes import trips_bp
    from vehicle_routes import vehicles_bp
    from commute_routes import routes_bp

    app.register_blueprint(trips_bp, url_prefix='/api/trips')
    app.register_blueprint(vehicles_bp, url_prefix='/api/vehicles')
    app.register_blueprint(routes_bp, url_prefix='/api/routes')

    from cli import register_commands
    register_commands(app)

    app.before_request(log_request_start)
    app.after_request(log_request_end)

    from errors import FleetServiceError

    @app.errorhandler(FleetServiceError)
    def handle_service_error(error):
        if error.status_code >= 500:
            logger.error(f"Service error: {error.message}", exc_info=error.__cause__ is not None)
        return jsonify({'message': error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception(f"Unhandled error: {str(error)}")
        return jsonify({'message': 'Server error'}), 500

    with app.app_context():
        import models  # noqa: F401
        db.create_all()

        # Only create demo data if explicitly enabled
        if app.config['DEMO_SEED']:
            from cli import seed_demo_data
            demo_password = os.environ.get('DEMO_PASSWORD')
            if not demo_password:
                raise RuntimeError("DEMO_PASSWORD environment variable is required for demo mode but not set")
            seed_demo_data(demo_password)

    @app.route('/api')
    def api_info():
        return jsonify({
            'message': 'Commute Fleet API',
            'version': API_VERSION,
            'endpoints': {
                'trips': '/api/trips',
                'vehicles': '/api/vehicles',
                'routes': '/api/routes',
            }
        })

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        """Simple health check endpoint for deployment readiness"""
        return {'status': 'ok', 'timestamp': get_local_time_naive().isoformat()}, 200

    logger.info("Application created")
    return app

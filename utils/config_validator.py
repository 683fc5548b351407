"""
Configuration validation for the fleet backend
Checks the settings create_app assembled before any extension is initialized
"""
import os
import logging
from typing import Dict, List, Tuple, Any

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 'yes')

POSITIVE_INT_SETTINGS = (
    'LOCATION_HISTORY_LIMIT',
    'LOCATION_RETENTION_DAYS',
    'LOCATION_PROMPT_INTERVAL',
    'DRIVER_PROMPT_INTERVAL',
)


class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""
    pass


def env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).strip().lower() in TRUE_VALUES


def validate_secrets(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate the session and token secrets.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []
    secret = config.get('SECRET_KEY')
    if not secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(secret) < 32 and not config.get('TESTING'):
        logger.warning("SESSION_SECRET should be at least 32 characters for security")

    if not config.get('JWT_SECRET_KEY'):
        issues.append("Missing JWT_SECRET_KEY (defaults to SESSION_SECRET)")
    return len(issues) == 0, issues


def validate_relay_settings(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate retention and relay timing settings.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []
    for name in POSITIVE_INT_SETTINGS:
        value = config.get(name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            issues.append(f"{name} must be a positive integer, got {value!r}")

    time_unit = config.get('RELAY_TIME_UNIT_SECONDS')
    if isinstance(time_unit, bool) or not isinstance(time_unit, (int, float)) or time_unit <= 0:
        issues.append(f"RELAY_TIME_UNIT_SECONDS must be a positive number, got {time_unit!r}")
    return len(issues) == 0, issues


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigValidationError listing every problem found"""
    secrets_valid, secret_issues = validate_secrets(config)
    relay_valid, relay_issues = validate_relay_settings(config)

    all_issues = secret_issues + relay_issues
    if all_issues:
        for issue in all_issues:
            logger.error(f"CONFIG: Issue - {issue}")
        raise ConfigValidationError('; '.join(all_issues))
    logger.debug("CONFIG: validation passed")

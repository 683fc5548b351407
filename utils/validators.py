"""
Field validators shared by the trip, vehicle and route services.

Each validator returns the normalized value or raises ValidationError with a
message naming the offending field.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from errors import ValidationError
from models import WEEKDAYS

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')

LOCATION_KEYS = ('address', 'lat', 'lng', 'name')


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [field for field in fields if data.get(field) in (None, '', [])]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id")
    if parsed < 1:
        raise ValidationError(f"{field} must be an integer id")
    return parsed


def validate_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")


def validate_time_string(value: Any, field: str) -> str:
    if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
        raise ValidationError(f"{field} must be a time in HH:MM format")
    return value.strip()


def validate_number(value: Any, field: str, minimum: Optional[float] = None,
                    maximum: Optional[float] = None) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return number


def validate_coordinates(lat: Any, lng: Any) -> tuple:
    return (validate_number(lat, 'lat', -90, 90),
            validate_number(lng, 'lng', -180, 180))


def validate_location(value: Any, field: str) -> Dict[str, Any]:
    """Validate an {address, lat, lng, name} descriptor; coordinates optional"""
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object")
    location = {key: value.get(key) for key in LOCATION_KEYS}
    if location['lat'] is not None or location['lng'] is not None:
        location['lat'], location['lng'] = validate_coordinates(location['lat'], location['lng'])
    if not any(location[key] not in (None, '') for key in LOCATION_KEYS):
        raise ValidationError(f"{field} must carry an address, name or coordinates")
    return location


def validate_weekdays(value: Any, field: str) -> List[str]:
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list of weekday names")
    invalid = [day for day in value if day not in WEEKDAYS]
    if invalid:
        raise ValidationError(f"{field} contains invalid weekdays: {', '.join(map(str, invalid))}")
    # Keep calendar order, drop duplicates
    return [day for day in WEEKDAYS if day in value]


def validate_enum(value: Any, enum_cls, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")

"""
Unit tests for field validators
"""

from datetime import date, datetime

import pytest

from errors import ValidationError
from models import TripStatus
from utils.validators import (require_fields, validate_id, validate_date, validate_time_string,
                              validate_number, validate_coordinates, validate_location,
                              validate_weekdays, validate_enum)


def test_require_fields_lists_every_missing_field():
    with pytest.raises(ValidationError) as exc_info:
        require_fields({'trip_name': 'A', 'notes': '', 'employees': []}, ('trip_name', 'notes', 'employees', 'driver_id'))
    assert exc_info.value.message == 'Missing required fields: notes, employees, driver_id'


@pytest.mark.parametrize('value,expected', [(5, 5), ('17', 17)])
def test_validate_id_accepts_integers(value, expected):
    assert validate_id(value, 'driver_id') == expected


@pytest.mark.parametrize('value', [0, -3, 'abc', None, True, 1.5j])
def test_validate_id_rejects(value):
    with pytest.raises(ValidationError):
        validate_id(value, 'driver_id')


def test_validate_date_forms():
    assert validate_date('2026-03-01', 'd') == date(2026, 3, 1)
    assert validate_date('2026-03-01T08:15:00Z', 'd') == date(2026, 3, 1)
    assert validate_date(datetime(2026, 3, 1, 9, 30), 'd') == date(2026, 3, 1)
    with pytest.raises(ValidationError):
        validate_date('01/03/2026', 'd')


@pytest.mark.parametrize('value', ['00:00', '08:30', '23:59'])
def test_validate_time_string_accepts(value):
    assert validate_time_string(value, 't') == value


@pytest.mark.parametrize('value', ['24:00', '8:30', '08:60', 830, None])
def test_validate_time_string_rejects(value):
    with pytest.raises(ValidationError):
        validate_time_string(value, 't')


def test_validate_number_bounds():
    assert validate_number('4.5', 'speed', 0) == 4.5
    with pytest.raises(ValidationError):
        validate_number(-0.1, 'speed', 0)
    with pytest.raises(ValidationError):
        validate_number(51, 'capacity', 1, 50)
    with pytest.raises(ValidationError):
        validate_number(False, 'capacity')


def test_validate_coordinates_edges():
    assert validate_coordinates(90, -180) == (90.0, -180.0)
    with pytest.raises(ValidationError) as exc_info:
        validate_coordinates(12.0, 181)
    assert 'lng' in exc_info.value.message


def test_validate_location_normalizes_keys():
    location = validate_location({'address': 'MG Road', 'lat': '12.97', 'lng': 77.59, 'extra': 'x'}, 'pickup')
    assert location == {'address': 'MG Road', 'lat': 12.97, 'lng': 77.59, 'name': None}


@pytest.mark.parametrize('value', [{}, {'address': ''}, 'MG Road', {'lat': 12.9}])
def test_validate_location_rejects(value):
    with pytest.raises(ValidationError):
        validate_location(value, 'pickup')


def test_validate_weekdays_orders_and_dedupes():
    assert validate_weekdays(['Sunday', 'Monday', 'Monday'], 'days') == ['Monday', 'Sunday']
    with pytest.raises(ValidationError):
        validate_weekdays(['Funday'], 'days')


def test_validate_enum_lists_allowed_values():
    assert validate_enum('In Progress', TripStatus, 'status') is TripStatus.IN_PROGRESS
    with pytest.raises(ValidationError) as exc_info:
        validate_enum('Paused', TripStatus, 'status')
    assert 'Scheduled' in exc_info.value.message

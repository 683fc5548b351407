import os
from datetime import datetime
import pytz

DEFAULT_TIMEZONE = 'Asia/Kolkata'

def get_fleet_timezone():
    """Timezone used for every timestamp the fleet backend records"""
    return pytz.timezone(os.environ.get('APP_TIMEZONE', DEFAULT_TIMEZONE))

def get_local_time_naive():
    """Get current fleet-local time as naive datetime for database storage"""
    return datetime.now(get_fleet_timezone()).replace(tzinfo=None)

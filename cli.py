"""
Management commands for the fleet backend

Usage:
    flask --app main seed-demo --password <password>
    flask --app main issue-token driver@company.com
    flask --app main purge-location-history --days 30
"""

import logging
import click
from werkzeug.security import generate_password_hash
from models import db, User, UserRole, Vehicle, VehicleStatus, FuelType

logger = logging.getLogger(__name__)

DEMO_USERS = (
    {'name': 'John Admin', 'email': 'admin@company.com', 'role': UserRole.COMPANY_ADMIN},
    {'name': 'Sarah Travel', 'email': 'travel@company.com', 'role': UserRole.TRAVEL_ADMIN},
    {'name': 'Mike Driver', 'email': 'driver@company.com', 'role': UserRole.DRIVER},
    {'name': 'Alice Employee', 'email': 'employee@company.com', 'role': UserRole.EMPLOYEE},
)

DEMO_VEHICLES = (
    {'name': 'Toyota Innova', 'number_plate': 'KA05MN1234', 'capacity': 7,
     'make': 'Toyota', 'model': 'Innova', 'year': 2022, 'fuel_type': FuelType.DIESEL, 'mileage': 15},
    {'name': 'Honda City', 'number_plate': 'KA01AB5678', 'capacity': 4,
     'make': 'Honda', 'model': 'City', 'year': 2021, 'fuel_type': FuelType.PETROL, 'mileage': 18},
)


def seed_demo_data(password):
    """
    Create one user per role and two vehicles assigned to the demo driver.

    Existing rows (matched by email / number plate) are left untouched, so the
    seed can run on every start.
    """
    created = {'users': 0, 'vehicles': 0}
    password_hash = generate_password_hash(password)

    users = {}
    for spec in DEMO_USERS:
        user = User.query.filter_by(email=spec['email']).first()
        if user is None:
            user = User(name=spec['name'], email=spec['email'], role=spec['role'],
                        password_hash=password_hash, is_active=True)
            db.session.add(user)
            created['users'] += 1
        users[spec['role']] = user
    db.session.flush()

    driver = users[UserRole.DRIVER]
    for spec in DEMO_VEHICLES:
        if Vehicle.query.filter_by(number_plate=spec['number_plate']).first() is None:
            db.session.add(Vehicle(status=VehicleStatus.ACTIVE, driver_id=driver.id, **spec))
            created['vehicles'] += 1

    db.session.commit()
    logger.info(f"Demo data seeded: {created['users']} users, {created['vehicles']} vehicles created")
    return created


def register_commands(app):
    """Attach the management commands to app.cli"""

    @app.cli.command('seed-demo')
    @click.option('--password', envvar='DEMO_PASSWORD', required=True,
                  help='Password for every demo user (or DEMO_PASSWORD)')
    def seed_demo_command(password):
        """Create demo users for each role and two demo vehicles."""
        created = seed_demo_data(password)
        click.echo(f"Created {created['users']} users and {created['vehicles']} vehicles")
        for spec in DEMO_USERS:
            click.echo(f"  {spec['role'].value}: {spec['email']}")

    @app.cli.command('issue-token')
    @click.argument('email')
    def issue_token_command(email):
        """Print an access token for the user with EMAIL."""
        from auth import issue_access_token

        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None or not user.is_active:
            raise click.ClickException(f"No active user with email {email}")
        click.echo(issue_access_token(user))

    @app.cli.command('purge-location-history')
    @click.option('--days', type=int, default=None,
                  help='Retention window in days (defaults to LOCATION_RETENTION_DAYS)')
    def purge_location_history_command(days):
        """Delete location samples of trips that finished before the retention window."""
        from services.location_service import LocationService

        retention_days = days if days is not None else app.config['LOCATION_RETENTION_DAYS']
        if retention_days < 1:
            raise click.BadParameter('must be at least 1', param_hint='--days')
        removed = LocationService().purge_expired_history(retention_days)
        click.echo(f"Removed {removed} location samples older than {retention_days} days")

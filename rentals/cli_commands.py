"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-super-admin: Create the first super admin account
- flask cancel-expired-bookings: Cancel scheduled orders whose start has passed
"""

import click
from rentals.database import create_all, get_session
from rentals.exceptions import RentalError
from rentals.models import Profile


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-super-admin')
    @click.option('--username', prompt=True, help='Login username')
    @click.option('--full-name', prompt=True, help='Display name')
    @click.option('--phone', default=None, help='Contact phone')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
    def create_super_admin_command(username, full_name, phone, password):
        """Create a super admin who can manage every branch."""
        from rentals.services.staff_service import create_super_admin

        db_session = get_session()
        existing = db_session.query(Profile).filter_by(username=username.strip()).first()
        if existing:
            click.echo(click.style(f'A profile with username "{username}" already exists.', fg='red'))
            return

        try:
            profile = create_super_admin(db_session, username, password, full_name, phone)
        except RentalError as e:
            click.echo(click.style(f'Could not create super admin: {e.message}', fg='red'))
            return

        click.echo(click.style('Super admin created.', fg='green', bold=True))
        click.echo(f'   Username: {profile.username}')
        click.echo(f'   ID: {profile.id}')

    @app.cli.command('cancel-expired-bookings')
    def cancel_expired_bookings_command():
        """Cancel scheduled orders that were never activated. Meant for cron."""
        from rentals.blueprints.metrics import orders_cancelled_total
        from rentals.services.order_service import auto_cancel_expired_scheduled_orders

        count = auto_cancel_expired_scheduled_orders(get_session())
        if count:
            orders_cancelled_total.labels(reason='expired').inc(count)
        click.echo(f'Cancelled {count} expired booking(s).')

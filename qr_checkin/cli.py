# cli.py
"""
Flask CLI commands for the check-in station.
"""

import click
from flask.cli import with_appcontext

from qr_checkin.extensions import db, check_in_service


@click.command("init-db")
@with_appcontext
def init_database():
    """Create the key-value table and the station's device identity."""
    try:
        db.create_all()
        click.echo("Database tables created.")

        device_id = check_in_service.device_id()
        click.echo(f"Station device id: {device_id or 'unavailable'}")

    except Exception as e:
        click.echo(f"Database initialization failed: {str(e)}", err=True)
        raise


@click.command("list-records")
@click.option("--limit", type=int, default=None, help="Show only the newest N records")
@with_appcontext
def list_records(limit):
    """Print the roster, newest first."""
    records = check_in_service.records()
    if limit is not None:
        records = records[:limit]

    if not records:
        click.echo("No records.")
        return

    click.echo(f"{'Name':<30} {'Device ID':<38} {'Checked In':<20} {'Method':<8}")
    click.echo("-" * 98)
    for record in records:
        click.echo(
            f"{record.name[:30]:<30} {record.device_id[:38]:<38} "
            f"{record.timestamp.strftime('%Y-%m-%d %H:%M:%S'):<20} {record.check_in_method:<8}")

    click.echo(f"\n{len(records)} record(s)")


@click.command("clear-records")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@with_appcontext
def clear_records(yes):
    """Empty the roster and forget self check-in flags."""
    count = len(check_in_service.ledger)
    if not yes and not click.confirm(f"Delete {count} record(s)?"):
        click.echo("Operation cancelled.")
        return

    check_in_service.ledger.clear()
    check_in_service.attempts.reset()
    click.echo(f"Cleared {count} record(s).")


@click.command("reset-device")
@with_appcontext
def reset_device():
    """Regenerate this station's device identity."""
    device_id = check_in_service.identity.reset()
    click.echo(f"New device id: {device_id or 'unavailable'}")


def register_cli_commands(app):
    """
    Register all CLI commands with the Flask application.

    Args:
        app: Flask application instance
    """
    app.cli.add_command(init_database)
    app.cli.add_command(list_records)
    app.cli.add_command(clear_records)
    app.cli.add_command(reset_device)

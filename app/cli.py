"""
Custom Flask CLI commands.

Registered with the app by ``register_commands()`` in the application
factory.  Run them with ``flask <command_name>``.

Usage::

    flask db-check                  # Verify database connectivity and schema
    flask sweep-allocations         # Complete expired allocations now
    flask create-user EMAIL NAME    # Provision a user
    flask issue-token EMAIL         # Print a bearer token for a user
"""

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import inspect
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import ServiceError
from app.extensions import db
from app.models.user import ROLE_MEMBER, USER_ROLES

# Tables created by the initial migration.
_EXPECTED_TABLES = (
    "app_user",
    "user_push_token",
    "asset",
    "sequence_counter",
    "allocation",
    "purchase_request",
)


@click.command("db-check")
@with_appcontext
def db_check_command():
    """
    Verify database connectivity and confirm the expected tables exist.

    Tests the connection string from the app config, runs a simple
    query, and lists which application tables are present.  Useful for
    confirming DATABASE_URL is correct and ``flask db upgrade`` has run.
    """
    click.echo("=" * 60)
    click.echo("  TAGit — Database Connectivity Check")
    click.echo("=" * 60)

    # Show the connection string with any password masked.
    db_uri = make_url(current_app.config["SQLALCHEMY_DATABASE_URI"])
    click.echo(f"\n  Connection string: {db_uri.render_as_string(hide_password=True)}\n")

    # -- Step 1: Basic connectivity ----------------------------------------
    click.echo("[1/2] Testing connection...")
    try:
        row = db.session.execute(db.text("SELECT 1 AS connected")).fetchone()
    except SQLAlchemyError as exc:
        click.secho(f"      ✗ Connection failed: {exc}", fg="red")
        click.echo("\n  Troubleshooting tips:")
        click.echo("    - Is the database server running and reachable?")
        click.echo("    - Does DATABASE_URL match your server config?")
        click.echo("    - Is the driver for this URL scheme installed?")
        raise SystemExit(1) from exc
    if not row or row[0] != 1:
        click.secho("      ✗ Unexpected result from test query.", fg="red")
        raise SystemExit(1)
    click.secho(
        f"      ✓ Connected ({db.engine.dialect.name}).", fg="green"
    )

    # -- Step 2: Tables ----------------------------------------------------
    click.echo("[2/2] Checking tables...\n")
    existing = set(inspect(db.engine).get_table_names())
    missing = [name for name in _EXPECTED_TABLES if name not in existing]
    for name in _EXPECTED_TABLES:
        mark = "✗" if name in missing else "✓"
        click.echo(f"      {mark} {name}")

    if missing:
        click.secho(
            f"\n      {len(missing)} table(s) missing. Run: flask db upgrade",
            fg="yellow",
        )
        raise SystemExit(1)

    click.echo("\n" + "=" * 60)
    click.secho("  All checks passed. Database is ready.", fg="green", bold=True)
    click.echo("=" * 60)


@click.command("sweep-allocations")
@with_appcontext
def sweep_allocations_command():
    """Complete approved allocations whose end time has passed."""
    from app.services import expiry_service  # pylint: disable=import-outside-toplevel

    click.echo("Running allocation expiry sweep...")
    report = expiry_service.run_expiry_sweep()
    click.echo(
        f"Examined: {report.examined}  "
        f"Completed: {report.completed}  "
        f"Skipped (bad end time): {report.skipped_invalid}  "
        f"Failed: {report.failed}"
    )
    if report.failed:
        click.secho("Some allocations could not be completed; see the log.", fg="red")


@click.command("create-user")
@click.argument("email")
@click.argument("name")
@click.option(
    "--role",
    type=click.Choice(USER_ROLES),
    default=ROLE_MEMBER,
    show_default=True,
)
@click.option("--manager", "is_manager", is_flag=True, help="Flag as a line manager.")
@with_appcontext
def create_user_command(email, name, role, is_manager):
    """Provision a user (EMAIL, NAME)."""
    from app.services import user_service  # pylint: disable=import-outside-toplevel

    try:
        user = user_service.provision_user(email, name, role, is_manager=is_manager)
    except ServiceError as exc:
        click.secho(f"Error: {exc.message}", fg="red")
        raise SystemExit(1) from exc
    click.secho(f"Created user {user.email} ({user.role}) id={user.id}", fg="green")


@click.command("issue-token")
@click.argument("email")
@with_appcontext
def issue_token_command(email):
    """Print a bearer access token for the user with EMAIL."""
    # pylint: disable=import-outside-toplevel
    from app.services import auth_service, user_service

    user = user_service.get_user_by_email(email)
    if user is None or not user.is_active:
        click.secho(f"No active user with email {email}", fg="red")
        raise SystemExit(1)

    user_service.record_login(user)
    click.echo(auth_service.generate_access_token(user))


def register_commands(app):
    """Register all custom CLI commands with the Flask application."""
    app.cli.add_command(db_check_command)
    app.cli.add_command(sweep_allocations_command)
    app.cli.add_command(create_user_command)
    app.cli.add_command(issue_token_command)

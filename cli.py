from __future__ import annotations

from datetime import datetime, timedelta

import click
from flask.cli import with_appcontext

from extensions import db
from models import Notification, Role, User, ensure_roles, ensure_schema
from order_workflow import ALL_ROLES


@click.command("init-db")
@with_appcontext
def init_db() -> None:
    """Create all tables and the five workflow roles."""

    ensure_schema()
    ensure_roles()
    click.echo("Database schema and roles are ready.")


@click.command("ensure-roles")
@with_appcontext
def ensure_roles_command() -> None:
    """Insert any missing workflow role."""

    ensure_roles()
    names = [name for (name,) in db.session.query(Role.name).order_by(Role.name).all()]
    click.echo(f"Roles: {', '.join(names) if names else '(roles table missing)'}")


@click.command("create-user")
@click.option("--email", required=True)
@click.option("--name", "full_name", required=True)
@click.option("--role", "role_name", required=True, type=click.Choice(ALL_ROLES))
@click.password_option()
@with_appcontext
def create_user(email: str, full_name: str, role_name: str, password: str) -> None:
    """Create a user holding one of the workflow roles."""

    email = email.strip().lower()
    if User.query.filter_by(email=email).first() is not None:
        raise click.ClickException(f"user {email} already exists")

    ensure_roles()
    role = Role.query.filter_by(name=role_name).first()
    if role is None:
        raise click.ClickException("roles table is missing; run `flask init-db` first")

    user = User(full_name=full_name.strip(), email=email, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"Created user {user.id} ({email}) with role {role_name}.")


@click.command("purge-read-notifications")
@click.option("--days", default=30, show_default=True, type=int)
@click.option("--dry-run", is_flag=True)
@with_appcontext
def purge_read_notifications(days: int, dry_run: bool) -> None:
    """Delete notifications that were read and are older than --days."""

    if days < 0:
        raise click.BadParameter("--days must be zero or greater")

    cutoff = datetime.utcnow() - timedelta(days=days)
    query = Notification.query.filter(
        Notification.is_read.is_(True),
        Notification.created_at < cutoff,
    )
    notification_ids = [
        notification_id
        for (notification_id,) in query.with_entities(Notification.id).all()
    ]

    click.echo(
        f"Found {len(notification_ids)} read notification(s) older than {cutoff.isoformat()} UTC."
    )

    if dry_run:
        click.echo("Dry run: no deletions applied.")
        click.echo(f"Sample IDs: {notification_ids[:10]}")
        return

    if not notification_ids:
        return

    Notification.query.filter(Notification.id.in_(notification_ids)).delete(
        synchronize_session=False
    )
    db.session.commit()
    click.echo(f"Deleted {len(notification_ids)} notification(s).")


COMMANDS = (init_db, ensure_roles_command, create_user, purge_read_notifications)


def register_commands(app) -> None:
    for command in COMMANDS:
        app.cli.add_command(command)

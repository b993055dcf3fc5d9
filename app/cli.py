import logging
from pathlib import Path

import click
import pandas as pd
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash

from app.extensions import db
from app.models.user import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE, ROLE_CHOICES
from app.services.storage import BOOTSTRAP_USERS, get_storage

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = {"username", "password", "email", "first_name", "last_name", "role", "manager_username"}


def _get_user(username: str) -> User | None:
    return db.session.query(User).filter(User.username == username).one_or_none()


def _require_manager(manager_id: int | None) -> None:
    if manager_id is None:
        return
    manager = db.session.get(User, manager_id)
    if not manager or manager.role != ROLE_MANAGER:
        raise click.ClickException(f"User id {manager_id} is not a manager")


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--username", required=True)
@click.option("--password", required=True)
@click.option("--email", default=None)
@click.option("--first-name", default=None)
@click.option("--last-name", default=None)
@click.option("--role", type=click.Choice(list(ROLE_CHOICES)), default=ROLE_EMPLOYEE)
@click.option("--manager-id", type=int, default=None, help="Existing manager's user id")
@with_appcontext
def users_create(username, password, email, first_name, last_name, role, manager_id):
    # fail fast if user exists
    if _get_user(username):
        raise click.ClickException("User already exists")
    if role == ROLE_EMPLOYEE:
        _require_manager(manager_id)
    else:
        manager_id = None

    user = User(username=username, email=email, first_name=first_name, last_name=last_name,
                role=role, manager_id=manager_id)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(f"User created id={user.id} username={user.username} role={role}")


@users.command("promote")
@click.option("--username", required=True)
@click.option("--role", type=click.Choice(list(ROLE_CHOICES)), required=True)
@click.option("--manager-id", type=int, default=None)
@with_appcontext
def users_promote(username, role, manager_id):
    user = _get_user(username)
    if not user:
        raise click.ClickException("User not found")

    if role == ROLE_EMPLOYEE:
        _require_manager(manager_id)
    else:
        manager_id = None

    # Safety rail: cannot demote the last admin
    if user.role == ROLE_ADMIN and role != ROLE_ADMIN:
        admins = db.session.query(User).filter_by(role=ROLE_ADMIN).count()
        if admins <= 1:
            raise click.ClickException("Refused: cannot demote the last admin")

    user.role = role
    user.manager_id = manager_id
    db.session.commit()
    click.echo(f"Set {username} to {role}" + (f" (manager_id={manager_id})" if manager_id else ""))


@users.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--default-password", default=None, help="Used for rows without a password")
@with_appcontext
def users_import(path, default_password):
    """
    Import a roster from CSV/XLSX with columns:
    username, password, email, first_name, last_name, role, manager_username.
    Existing usernames are skipped. Managers are resolved by username, from the
    database or from earlier rows of the same file.
    """
    df = pd.read_excel(path) if path.suffix.lower() in (".xlsx", ".xls") else pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    unknown = set(df.columns) - IMPORT_COLUMNS
    if "username" not in df.columns:
        raise click.ClickException("Missing required column: username")
    if unknown:
        raise click.ClickException(f"Unknown columns: {', '.join(sorted(unknown))}")

    df = df.astype(object).where(pd.notna(df), None)
    df["role"] = df.get("role", ROLE_EMPLOYEE)
    df["role"] = df["role"].fillna(ROLE_EMPLOYEE).map(lambda r: str(r).strip().lower())
    bad_roles = df[~df["role"].isin(ROLE_CHOICES)]
    if not bad_roles.empty:
        raise click.ClickException(f"Invalid role {bad_roles.iloc[0]['role']!r} for {bad_roles.iloc[0]['username']!r}")

    # Managers first so employees can reference them within the same file
    df["_order"] = df["role"].map({ROLE_ADMIN: 0, ROLE_MANAGER: 1, ROLE_EMPLOYEE: 2})
    df = df.sort_values("_order", kind="stable")

    inserted = skipped = 0
    for _, r in df.iterrows():
        username = str(r["username"] or "").strip()
        if not username or _get_user(username):
            skipped += 1
            continue

        password = r.get("password") or default_password
        if not password:
            raise click.ClickException(f"No password for {username!r}; pass --default-password")

        manager_id = None
        manager_username = r.get("manager_username")
        if r["role"] == ROLE_EMPLOYEE and manager_username:
            manager = _get_user(str(manager_username).strip())
            if not manager or manager.role != ROLE_MANAGER:
                raise click.ClickException(f"Manager {manager_username!r} for {username!r} not found")
            manager_id = manager.id

        user = User(
            username=username,
            email=r.get("email"),
            first_name=r.get("first_name"),
            last_name=r.get("last_name"),
            role=r["role"],
            manager_id=manager_id,
        )
        user.set_password(str(password))
        db.session.add(user)
        db.session.flush()
        inserted += 1

    db.session.commit()
    logger.info("roster import done", extra={"event": "users_imported", "inserted": inserted, "skipped": skipped})
    click.echo(f"Imported users: inserted={inserted} skipped={skipped}")


@click.group()
def bootstrap():
    """Bootstrap helpers."""


@bootstrap.command("demo-users")
@click.option("--password", default=None, help="Shared password (defaults to BOOTSTRAP_PASSWORD)")
@with_appcontext
def bootstrap_demo_users(password):
    """Write the demo roster into the database (admin, two managers, three employees)."""
    from flask import current_app
    shared_hash = generate_password_hash(password or current_app.config.get("BOOTSTRAP_PASSWORD", "password123"))

    # Insert in roster order; manager ids are remapped to whatever ids the store assigns
    id_map = {}
    created = 0
    for entry in BOOTSTRAP_USERS:
        existing = _get_user(entry["username"])
        if existing:
            id_map[entry["id"]] = existing.id
            continue
        user = User(
            username=entry["username"],
            password_hash=shared_hash,
            email=entry["email"],
            first_name=entry["first_name"],
            last_name=entry["last_name"],
            role=entry["role"],
            manager_id=id_map.get(entry["manager_id"]) if entry["manager_id"] else None,
        )
        db.session.add(user)
        db.session.flush()
        id_map[entry["id"]] = user.id
        created += 1

    db.session.commit()
    click.echo(f"Bootstrap complete: created={created} existing={len(BOOTSTRAP_USERS) - created}")


@click.group()
def cache():
    """Storage cache ops (this process only)."""


@cache.command("stats")
@with_appcontext
def cache_stats():
    for key, value in get_storage().cache_stats().items():
        click.echo(f"{key}={value}")


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(bootstrap)
    app.cli.add_command(cache)

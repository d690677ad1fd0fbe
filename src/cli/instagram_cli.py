"""Typer-based operator CLI.

Usage:
    python -m src.cli.instagram_cli auth-url USER_ID --name "Store"
    python -m src.cli.instagram_cli sign payload.json
    python -m src.cli.instagram_cli instances USER_ID
    python -m src.cli.instagram_cli migrate
"""

import os

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_project_root = Path(__file__).resolve().parent.parent.parent
load_dotenv(_project_root / ".env")
load_dotenv(_project_root / ".env.local")

import typer

from src.config import get_settings
from src.constants import WEBHOOK_SIGNATURE_PREFIX
from src.db.repository import find_instances_by_user_id
from src.services.instagram_service import build_authorization_url
from src.services.webhook_security import compute_signature

app = typer.Typer(help="Instagram Bridge operator commands.")

MIGRATIONS_DIR = _project_root / "migrations"


@app.command("auth-url")
def auth_url(
    user_id: str = typer.Argument(..., help="Owning user ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
):
    """Print the Instagram authorization URL for a user."""
    typer.echo(build_authorization_url(get_settings(), user_id, name))


@app.command()
def sign(
    payload_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Raw webhook body"
    ),
):
    """Print the x-hub-signature-256 header value for a payload file."""
    secret = get_settings().instagram_client_secret
    raw_body = payload_file.read_bytes()
    typer.echo(f"{WEBHOOK_SIGNATURE_PREFIX}{compute_signature(raw_body, secret)}")


@app.command()
def instances(user_id: str = typer.Argument(..., help="Owning user ID")):
    """List a user's connected instances."""
    found = find_instances_by_user_id(user_id)
    if not found:
        typer.echo(f"No instances for user {user_id}")
        return

    for instance in found:
        username = f"@{instance.username}" if instance.username else "-"
        typer.echo(
            f"{instance.id}  {instance.name}  {username}  "
            f"{instance.instagram_account_id}  {instance.status}"
        )


@app.command()
def migrate(
    migrations_dir: Path = typer.Option(
        MIGRATIONS_DIR, "--dir", help="Directory of .sql migration files"
    ),
):
    """Apply the SQL migrations in lexicographic order."""
    database_url = get_settings().database_url
    if not database_url:
        typer.secho(
            "DATABASE_URL is not set. Add your Postgres connection string to .env or .env.local.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        typer.secho(f"No .sql files found in {migrations_dir}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    import psycopg

    try:
        with psycopg.connect(database_url, autocommit=True) as conn:
            with conn.cursor() as cur:
                for path in sql_files:
                    typer.echo(f"Applying {path.name}...")
                    cur.execute(path.read_text())
                    typer.echo(f"  OK {path.name}")
    except psycopg.OperationalError as e:
        typer.secho(f"Database connection failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e

    typer.echo("Migrations complete.")


if __name__ == "__main__":
    app()

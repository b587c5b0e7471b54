"""CLI entrypoint for tabkeeper using Typer."""

import asyncio
from pathlib import Path

import typer

from core.config import CONFIG_PATH, config_as_dict, get_config, save_config
from core.errors import TabKeeperError
from core.logging import setup_logging
from persistence.store import SqliteSessionStore

app = typer.Typer()
session_app = typer.Typer(help="Inspect and maintain the saved session.")
config_app = typer.Typer(help="Show or initialise the configuration.")
app.add_typer(session_app, name="session")
app.add_typer(config_app, name="config")


def _open_store(db: str) -> SqliteSessionStore:
    config = get_config()
    setup_logging(config.logging_level)
    return SqliteSessionStore(Path(db or config.session_db_path).expanduser())


@app.callback()
def callback():
    """tabkeeper - session and tab persistence for a multi-document editor."""


@session_app.command("show")
def session_show(
    db: str = typer.Option(None, "--db", help="Session database (defaults to the configured path)"),
    closed: bool = typer.Option(True, "--closed/--no-closed", help="Include the closed-tab history"),
):
    """List the tabs stored in the session database."""
    store = _open_store(db)
    try:
        session = asyncio.run(store.restore_session())
    except TabKeeperError as e:
        typer.echo(f"❌ Could not read session: {e}")
        raise typer.Exit(1)

    typer.echo(f"Open tabs ({len(session.active_tabs)}):")
    for record in session.active_tabs:
        marker = "*" if record.is_dirty else " "
        pin = " [pinned]" if record.is_pinned else ""
        where = record.path or "(untitled)"
        typer.echo(f"  {marker} {record.sort_index or 0:>3}  {record.custom_title or record.title}{pin}  {where}")

    if closed:
        typer.echo(f"\nRecently closed ({len(session.closed_tabs)}):")
        for record in session.closed_tabs:
            where = record.path or "(untitled)"
            typer.echo(f"    {record.sort_index or 0:>3}  {record.custom_title or record.title}  {where}")


@session_app.command("vacuum")
def session_vacuum(
    db: str = typer.Option(None, "--db", help="Session database (defaults to the configured path)"),
    pages: int = typer.Option(100, "--pages", help="Maximum number of pages to reclaim"),
):
    """Reclaim free pages in the session database."""
    store = _open_store(db)
    free = store.vacuum(pages)
    if free:
        typer.echo(f"✅ Reclaimed up to {min(free, pages)} of {free} free pages")
    else:
        typer.echo("✅ Nothing to reclaim")


@session_app.command("clear")
def session_clear(
    db: str = typer.Option(None, "--db", help="Session database (defaults to the configured path)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete every stored tab, open and closed."""
    if not yes:
        typer.confirm("Delete all saved tabs?", abort=True)
    store = _open_store(db)
    store.clear()
    typer.echo("✅ Session cleared")


@app.command()
def doctor():
    """Diagnose configuration, session database and file watching."""
    config = get_config()

    typer.echo("🔍 tabkeeper Doctor")
    typer.echo("===================")

    if CONFIG_PATH.exists():
        typer.echo(f"✅ Config file found at {CONFIG_PATH}")
    else:
        typer.echo(f"⚠️  Config file not found at {CONFIG_PATH} (using defaults)")

    db_path = Path(config.session_db_path).expanduser()
    if db_path.exists():
        try:
            counts = SqliteSessionStore(db_path).stats()
            typer.echo(
                f"✅ Session database at {db_path} "
                f"({counts['active_tabs']} open, {counts['closed_tabs']} closed)"
            )
        except Exception as e:
            typer.echo(f"❌ Session database at {db_path} is unreadable: {e}")
    else:
        typer.echo(f"⚠️  Session database not created yet ({db_path})")

    try:
        from watchdog.observers import Observer
        typer.echo(f"✅ File watching available ({Observer.__name__})")
    except Exception as e:
        typer.echo(f"❌ File watching unavailable: {e}")

    if not config.watch_enabled:
        typer.echo("⚠️  File watching disabled in config")


@config_app.command("show")
def config_show():
    """Print the effective configuration."""
    for key, value in config_as_dict(get_config()).items():
        typer.echo(f"{key} = {value}")


@config_app.command("init")
def config_init(force: bool = typer.Option(False, "--force", help="Overwrite an existing file")):
    """Write the effective configuration to ~/.tabkeeper.toml."""
    if CONFIG_PATH.exists() and not force:
        typer.echo(f"⚠️  {CONFIG_PATH} already exists (use --force to overwrite)")
        raise typer.Exit(1)
    save_config(get_config())
    typer.echo(f"✅ Wrote {CONFIG_PATH}")


if __name__ == "__main__":
    app()

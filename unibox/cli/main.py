"""
Unibox CLI.

Development and production servers plus schema creation.
"""

import asyncio
import subprocess
import sys

import typer

from unibox.core.config.settings import settings

app = typer.Typer(help="Unibox unified inbox gateway CLI")

APP_FACTORY = "unibox.core.unibox_app:create_app"


def _run_server(cmd: list[str], label: str) -> None:
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        typer.echo(
            f"❌ {label} server failed to start (exit code: {e.returncode})", err=True
        )
        typer.echo("", err=True)
        typer.echo("Common issues:", err=True)
        typer.echo("• Port already in use (try --port with different number)", err=True)
        typer.echo("• Invalid DATABASE_URL or unreachable database", err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        typer.echo(f"👋 {label} server stopped")


@app.command()
def dev(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to bind to"),
):
    """
    Run development server with auto-reload.

    Examples:
        unibox dev
        unibox dev --port 8080
    """
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        APP_FACTORY,
        "--factory",
        "--reload",
        "--host",
        host,
        "--port",
        str(port),
    ]

    typer.echo("🚀 Starting Unibox development server...")
    typer.echo(f"🌐 Server: http://{host}:{port}")
    typer.echo(f"📝 Docs: http://{host}:{port}/docs")
    typer.echo(f"🔔 Webhook: http://{host}:{port}/webhooks/meta")
    typer.echo("💡 Press CTRL+C to stop")
    typer.echo()
    _run_server(cmd, "Development")


@app.command()
def prod(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to bind to"),
    workers: int = typer.Option(
        1, "--workers", "-w", help="Number of worker processes"
    ),
):
    """
    Run production server (no auto-reload).

    Examples:
        unibox prod --workers 4
    """
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        APP_FACTORY,
        "--factory",
        "--host",
        host,
        "--port",
        str(port),
        "--workers",
        str(workers),
    ]

    typer.echo("🚀 Starting Unibox production server...")
    typer.echo(f"🌐 Server: http://{host}:{port}")
    typer.echo(f"👥 Workers: {workers}")
    typer.echo()
    _run_server(cmd, "Production")


@app.command("init-db")
def init_db(
    database_url: str = typer.Option(
        settings.database_url, "--database-url", "-d", help="Database URL"
    ),
):
    """Create the conversation store tables (idempotent)."""
    from unibox.database.session_manager import DatabaseSessionManager

    async def _create() -> None:
        manager = DatabaseSessionManager(database_url)
        try:
            await manager.initialize(create_schema=True)
        finally:
            await manager.cleanup()

    try:
        asyncio.run(_create())
    except Exception as e:
        typer.echo(f"❌ Schema creation failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✅ Tables created in {database_url.split('://', 1)[0]} database")


def main():
    """Entry point for the ``unibox`` console script."""
    app()


if __name__ == "__main__":
    main()

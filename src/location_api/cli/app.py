"""Typer CLI root application with serve command."""

import typer

from location_api.core.config import get_settings
from location_api.core.logging import setup_logging

app = typer.Typer(name="location-api", help="Geospatial location hierarchy service CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
    workers: int = typer.Option(1, "--workers", min=1, help="Worker processes (ignored with --reload)"),
) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "location_api.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=None if reload else workers,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from location_api.cli.cache_cmd import cache_app
    from location_api.cli.db_cmd import db_app
    from location_api.cli.tree_cmd import tree_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(cache_app, name="cache", help="Cache maintenance commands")
    app.add_typer(tree_app, name="tree", help="Location hierarchy inspection commands")


_register_subcommands()

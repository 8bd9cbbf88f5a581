"""Database migration CLI commands using Alembic programmatically."""

import typer
from loguru import logger

db_app = typer.Typer()

_CONFIG_OPTION = typer.Option("alembic.ini", "--config", "-c", help="Path to alembic.ini")


def _alembic_config(path: str):
    from alembic.config import Config

    return Config(path)


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Apply migrations up to the target revision (creates the PostGIS schema)."""
    from alembic import command

    logger.info(f"Upgrading location schema to {revision}")
    command.upgrade(_alembic_config(config), revision)
    logger.info("Location schema upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Roll migrations back to the target revision."""
    from alembic import command

    logger.info(f"Downgrading location schema to {revision}")
    command.downgrade(_alembic_config(config), revision)
    logger.info("Location schema downgrade complete")


@db_app.command()
def current(config: str = _CONFIG_OPTION) -> None:
    """Show the current migration revision."""
    from alembic import command

    command.current(_alembic_config(config), verbose=True)

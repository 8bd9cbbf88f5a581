"""Location hierarchy inspection CLI commands."""

import asyncio
import uuid

import typer

from location_api.schemas.location import LocationTreeNode

tree_app = typer.Typer()


def _render(node: LocationTreeNode, depth: int = 0) -> list[str]:
    lines = [f"{'  ' * depth}{node.local_area_name} ({node.county}) [{node.id}]"]
    for child in node.children:
        lines.extend(_render(child, depth + 1))
    return lines


@tree_app.command("show")
def show(
    root: str | None = typer.Option(None, "--root", help="Location ID to start from; all roots when omitted"),
) -> None:
    """Print the location tree as an indented outline."""
    root_id = None
    if root is not None:
        try:
            root_id = uuid.UUID(root)
        except ValueError as e:
            typer.echo(f"Error: invalid location ID {root!r}", err=True)
            raise typer.Exit(code=1) from e
    asyncio.run(_show(root_id))


async def _show(root_id: uuid.UUID | None) -> None:
    """Async implementation of tree printing."""
    from location_api.core.cache import LocationCache
    from location_api.core.config import get_settings
    from location_api.core.database import dispose_engine, get_session_factory, init_engine
    from location_api.core.exceptions import LocationApiError
    from location_api.services.location_service import LocationService

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            service = LocationService(session, LocationCache(None), settings=settings)
            trees = [await service.get_subtree(root_id)] if root_id else await service.get_root_trees()
        if not trees:
            typer.echo("No locations")
        for tree in trees:
            typer.echo("\n".join(_render(tree)))
    except LocationApiError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()

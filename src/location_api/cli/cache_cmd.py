"""Cache maintenance CLI commands."""

import asyncio

import typer

from location_api.core import cache as ns

cache_app = typer.Typer()

NAMESPACES: tuple[str, ...] = (
    ns.LOCATION,
    ns.LOCATION_LIST,
    ns.LOCATION_GEO,
    ns.ADDRESS_COMPONENT,
    ns.ADDRESS_COMPONENT_LIST,
    ns.LINK,
    ns.LINK_LIST_BY_LOCATION,
    ns.LINK_LIST_BY_COMPONENT,
    ns.LINK_GEO,
)


@cache_app.command("flush")
def flush(
    namespace: list[str] = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Namespace to flush (repeatable); all namespaces when omitted",
    ),
) -> None:
    """Delete cached entries."""
    selected = list(namespace) if namespace else list(NAMESPACES)
    unknown = [n for n in selected if n not in NAMESPACES]
    if unknown:
        typer.echo(f"Error: unknown namespace(s): {', '.join(unknown)}", err=True)
        typer.echo(f"Known namespaces: {', '.join(NAMESPACES)}", err=True)
        raise typer.Exit(code=1)
    deleted = asyncio.run(_flush(selected))
    if deleted is None:
        typer.echo("Cache disabled (REDIS_URL not set); nothing to flush")
        return
    typer.echo(f"Deleted {deleted} cache entr{'y' if deleted == 1 else 'ies'}")


async def _flush(namespaces: list[str]) -> int | None:
    """Async implementation of cache flushing."""
    from location_api.core.cache import create_cache
    from location_api.core.config import get_settings

    cache = create_cache(get_settings())
    if not cache.enabled:
        return None
    try:
        total = 0
        for name in namespaces:
            total += await cache.delete_pattern(cache.pattern(name))
        return total
    finally:
        await cache.close()

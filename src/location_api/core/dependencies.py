"""FastAPI dependency injection for database sessions, the cache handle and services.

Each request gets one session; services are built per request around that
session and the process-wide cache handle created in the app lifespan.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from location_api.core.cache import LocationCache
from location_api.core.config import Settings, get_settings
from location_api.core.database import get_session_factory
from location_api.services.address_component_service import AddressComponentService
from location_api.services.location_address_component_service import LocationAddressComponentService
from location_api.services.location_service import LocationService
from location_api.services.spatial_service import SpatialService


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_cache(request: Request) -> LocationCache:
    """Return the cache handle attached to the application state."""
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        return LocationCache(None)
    return cache


SessionDep = Annotated[AsyncSession, Depends(get_async_session)]
CacheDep = Annotated[LocationCache, Depends(get_cache)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_address_component_service(
    session: SessionDep, cache: CacheDep, settings: SettingsDep
) -> AddressComponentService:
    return AddressComponentService(session, cache, settings=settings)


def get_location_service(session: SessionDep, cache: CacheDep, settings: SettingsDep) -> LocationService:
    return LocationService(session, cache, settings=settings)


def get_link_service(session: SessionDep, cache: CacheDep, settings: SettingsDep) -> LocationAddressComponentService:
    return LocationAddressComponentService(session, cache, settings=settings)


def get_spatial_service(session: SessionDep, cache: CacheDep, settings: SettingsDep) -> SpatialService:
    return SpatialService(session, cache, settings=settings)

"""E2E test fixtures: real PostGIS database migrated with Alembic.

These tests run against a live PostgreSQL/PostGIS database (``DATABASE_URL``).
The CI workflow runs ``alembic upgrade head`` before pytest, so tables already
exist.  Every row created through the API is tagged with :data:`RUN_TAG` and
removed when the session ends.
"""

import os
import uuid
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport
from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from location_api.core.config import Settings, get_settings
from location_api.core.database import get_engine
from location_api.main import create_app, lifespan
from location_api.models.address_component import AddressComponent
from location_api.models.location import Location
from location_api.models.location_address_component import LocationAddressComponent

# Unique per run so concurrent or stale runs never collide on natural keys.
RUN_TAG = f"e2e-{uuid.uuid4().hex[:8]}"


@pytest.fixture(scope="session")
def settings() -> Settings:
    """Return the live application settings."""
    if not os.environ.get("DATABASE_URL"):
        pytest.skip("DATABASE_URL is not set; skipping end-to-end tests")
    return get_settings()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def app(settings: Settings) -> AsyncGenerator[FastAPI]:
    """Create the FastAPI app and run its lifespan to initialise the DB engine and cache."""
    _app = create_app()
    async with lifespan(_app):
        yield _app


@pytest_asyncio.fixture(loop_scope="session")
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient]:
    """Async HTTP client wired to the real FastAPI app via ASGI transport."""
    transport = ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://e2e") as c:
        yield c


class Seeder:
    """Create tagged rows through the API."""

    def __init__(self, client: httpx.AsyncClient, tag: str, prefix: str) -> None:
        self.client = client
        self.tag = tag
        self.prefix = prefix

    async def location(
        self,
        *,
        parent_id: str | None = None,
        point: tuple[float, float] | None = None,
        geofence: list[list[float]] | None = None,
    ) -> dict:
        body: dict = {"local_area_name": uuid.uuid4().hex[:10], "county": self.tag, "parent_id": parent_id}
        if point is not None:
            body["center_point"] = {"type": "Point", "coordinates": list(point)}
        if geofence is not None:
            body["geofence"] = {"type": "Polygon", "coordinates": [geofence]}
        resp = await self.client.post(f"{self.prefix}/locations", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def component(self, type_: str, parent_id: str | None = None) -> dict:
        resp = await self.client.post(
            f"{self.prefix}/address-components",
            json={"type": type_, "value": f"{self.tag}-{uuid.uuid4().hex[:10]}", "parent_component_id": parent_id},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()


@pytest.fixture
def seed(client: httpx.AsyncClient, settings: Settings) -> Seeder:
    return Seeder(client, RUN_TAG, settings.api_v1_prefix)


@pytest.fixture
def run_tag() -> str:
    return RUN_TAG


@pytest_asyncio.fixture(loop_scope="session")
async def db_session(app: FastAPI) -> AsyncGenerator[AsyncSession]:
    """Yield a real async DB session for direct assertions."""
    factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture(scope="session", loop_scope="session", autouse=True)
async def cleanup(app: FastAPI) -> AsyncGenerator[None]:
    """Hard delete every row tagged with this run once the session ends."""
    yield

    factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with factory() as session:
        location_ids = select(Location.id).where(Location.county.startswith(RUN_TAG))
        component_ids = select(AddressComponent.id).where(AddressComponent.value.startswith(RUN_TAG))
        await session.execute(
            delete(LocationAddressComponent).where(
                LocationAddressComponent.location_id.in_(location_ids)
                | LocationAddressComponent.address_component_id.in_(component_ids)
            )
        )
        await session.execute(delete(Location).where(Location.county.startswith(RUN_TAG)))

        # Parent references are RESTRICT: remove leaves until nothing tagged remains.
        child = aliased(AddressComponent)
        while True:
            result = await session.execute(
                delete(AddressComponent).where(
                    AddressComponent.value.startswith(RUN_TAG),
                    ~exists().where(child.parent_component_id == AddressComponent.id),
                )
            )
            if result.rowcount == 0:
                break
        await session.commit()

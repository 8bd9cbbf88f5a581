"""Fixtures for API tests: the real app factory with service dependencies overridden."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from location_api.core.config import Settings
from location_api.main import create_app
from location_api.schemas.address_component import AddressComponentResponse
from location_api.schemas.location import LocationResponse
from location_api.schemas.location_address_component import LinkResponse


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    """The application with exception handlers and middleware, no lifespan."""
    with patch("location_api.main.get_settings", return_value=settings):
        return create_app()


@pytest.fixture
def client(app: FastAPI) -> AsyncClient:
    """Create an async test client."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def mock_service() -> AsyncMock:
    return AsyncMock()


def _timestamps() -> dict[str, datetime]:
    now = datetime.now(UTC)
    return {"created_at": now, "updated_at": now}


@pytest.fixture
def location_response() -> Callable[..., LocationResponse]:
    def _make(**overrides: Any) -> LocationResponse:
        values = {"id": uuid.uuid4(), "local_area_name": "Kilimani", "county": "Nairobi", **_timestamps()}
        values.update(overrides)
        return LocationResponse(**values)

    return _make


@pytest.fixture
def component_response() -> Callable[..., AddressComponentResponse]:
    def _make(**overrides: Any) -> AddressComponentResponse:
        values = {"id": uuid.uuid4(), "type": "county", "value": "Nairobi", **_timestamps()}
        values.update(overrides)
        return AddressComponentResponse(**values)

    return _make


@pytest.fixture
def link_response() -> Callable[..., LinkResponse]:
    def _make(**overrides: Any) -> LinkResponse:
        values = {
            "id": uuid.uuid4(),
            "location_id": uuid.uuid4(),
            "address_component_id": uuid.uuid4(),
            **_timestamps(),
        }
        values.update(overrides)
        return LinkResponse(**values)

    return _make

"""Unit tests for the location ↔ address component link endpoints."""

import uuid
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from location_api.core.dependencies import get_link_service
from location_api.core.exceptions import ConstraintViolationError, NotFoundError, ValidationError
from location_api.schemas.location_address_component import LinkDistanceResponse


@pytest.fixture(autouse=True)
def _override(app: FastAPI, mock_service: AsyncMock) -> None:
    app.dependency_overrides[get_link_service] = lambda: mock_service


class TestLinks:
    async def test_create(self, client: AsyncClient, mock_service, link_response) -> None:
        link = link_response(is_primary=True)
        mock_service.create_link.return_value = link

        resp = await client.post(
            "/api/v1/location-address-components",
            json={
                "location_id": str(link.location_id),
                "address_component_id": str(link.address_component_id),
                "is_primary": True,
            },
        )

        assert resp.status_code == 201
        assert resp.json()["is_primary"] is True

    async def test_existing_pair_is_409(self, client: AsyncClient, mock_service) -> None:
        mock_service.create_link.side_effect = ConstraintViolationError("already linked")

        resp = await client.post(
            "/api/v1/location-address-components",
            json={"location_id": str(uuid.uuid4()), "address_component_id": str(uuid.uuid4())},
        )

        assert resp.status_code == 409

    async def test_primary_absent_is_404(self, client: AsyncClient, mock_service) -> None:
        mock_service.get_primary_component.return_value = None

        resp = await client.get(f"/api/v1/location-address-components/by-location/{uuid.uuid4()}/primary")

        assert resp.status_code == 404

    async def test_primary_present(self, client: AsyncClient, mock_service, link_response) -> None:
        link = link_response(is_primary=True)
        mock_service.get_primary_component.return_value = link

        resp = await client.get(f"/api/v1/location-address-components/by-location/{link.location_id}/primary")

        assert resp.json()["id"] == str(link.id)

    async def test_reorder(self, client: AsyncClient, mock_service, link_response) -> None:
        location_id = uuid.uuid4()
        first, second = link_response(location_id=location_id, sequence=1), link_response(
            location_id=location_id, sequence=2
        )
        mock_service.reorder_sequences.return_value = [first, second]

        resp = await client.post(
            f"/api/v1/location-address-components/by-location/{location_id}/reorder",
            json={"ordered_ids": [str(first.id), str(second.id)]},
        )

        assert [row["sequence"] for row in resp.json()] == [1, 2]
        mock_service.reorder_sequences.assert_awaited_once_with(location_id, [first.id, second.id])

    async def test_reorder_stranger_is_400(self, client: AsyncClient, mock_service) -> None:
        mock_service.reorder_sequences.side_effect = ValidationError("Link ids do not belong to location")

        resp = await client.post(
            f"/api/v1/location-address-components/by-location/{uuid.uuid4()}/reorder",
            json={"ordered_ids": [str(uuid.uuid4())]},
        )

        assert resp.status_code == 400

    async def test_near_point(self, client: AsyncClient, mock_service, link_response) -> None:
        link = link_response(center_point={"type": "Point", "coordinates": [36.8, -1.3]})
        mock_service.find_components_near_point.return_value = [
            LinkDistanceResponse(**link.model_dump(), distance_meters=3.5)
        ]

        resp = await client.get(
            "/api/v1/location-address-components/near-point",
            params={"lng": 36.8, "lat": -1.3, "distance_meters": 10, "limit": 5},
        )

        assert resp.status_code == 200
        assert resp.json()[0]["center_point"]["coordinates"] == [36.8, -1.3]

    async def test_update_missing_is_404(self, client: AsyncClient, mock_service) -> None:
        link_id = uuid.uuid4()
        mock_service.update_link.side_effect = NotFoundError("LocationAddressComponent", link_id)

        resp = await client.patch(f"/api/v1/location-address-components/{link_id}", json={"label": "Gate"})

        assert resp.status_code == 404

    async def test_delete(self, client: AsyncClient, mock_service) -> None:
        link_id = uuid.uuid4()

        resp = await client.delete(f"/api/v1/location-address-components/{link_id}")

        assert resp.status_code == 204
        mock_service.delete_link.assert_awaited_once_with(link_id)

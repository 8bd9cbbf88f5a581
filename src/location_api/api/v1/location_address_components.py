"""Location ↔ address component link API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from location_api.core.dependencies import get_link_service
from location_api.lib.geo import point_from_lng_lat
from location_api.schemas.common import BulkDeleteRequest, BulkDeleteResponse, UpsertCounts
from location_api.schemas.location_address_component import (
    LinkBulkUpsertRequest,
    LinkCreateRequest,
    LinkDistanceResponse,
    LinkResponse,
    LinkUpdateRequest,
    LinkUpsertRequest,
    ReorderRequest,
)
from location_api.services.location_address_component_service import LocationAddressComponentService

location_address_components_router = APIRouter(
    prefix="/location-address-components",
    tags=["location-address-components"],
)

ServiceDep = Annotated[LocationAddressComponentService, Depends(get_link_service)]


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@location_address_components_router.post("", status_code=status.HTTP_201_CREATED)
async def create_link(body: LinkCreateRequest, service: ServiceDep) -> LinkResponse:
    """Link a location to an address component."""
    return await service.create_link(body)


@location_address_components_router.post("/upsert")
async def upsert_link(body: LinkUpsertRequest, service: ServiceDep) -> LinkResponse:
    """Insert or update the link for a (location, component) pair."""
    return await service.upsert_link(body)


@location_address_components_router.post("/bulk-upsert")
async def bulk_upsert_links(body: LinkBulkUpsertRequest, service: ServiceDep) -> UpsertCounts:
    """Upsert many links in one all-or-nothing transaction."""
    return await service.bulk_upsert_links(body.rows)


@location_address_components_router.post("/bulk-delete")
async def bulk_delete_links(body: BulkDeleteRequest, service: ServiceDep) -> BulkDeleteResponse:
    """Delete many links in one transaction."""
    return BulkDeleteResponse(deleted=await service.bulk_delete_links(body.ids))


@location_address_components_router.get("/near-point")
async def find_links_near_point(
    service: ServiceDep,
    lng: Annotated[float, Query(ge=-180, le=180)],
    lat: Annotated[float, Query(ge=-90, le=90)],
    distance_meters: Annotated[float, Query(ge=0)],
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[LinkDistanceResponse]:
    """Links whose point lies within a geodesic radius, nearest first."""
    return await service.find_components_near_point(point_from_lng_lat(lng, lat), distance_meters, limit)


@location_address_components_router.get("/by-location/{location_id}")
async def get_links_by_location(location_id: uuid.UUID, service: ServiceDep) -> list[LinkResponse]:
    """A location's links in sequence order."""
    return await service.get_by_location(location_id)


@location_address_components_router.get("/by-location/{location_id}/primary")
async def get_primary_link(location_id: uuid.UUID, service: ServiceDep) -> LinkResponse:
    """The primary link of a location."""
    link = await service.get_primary_component(location_id)
    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Location {location_id} has no primary address component",
        )
    return link


@location_address_components_router.post("/by-location/{location_id}/reorder")
async def reorder_links(location_id: uuid.UUID, body: ReorderRequest, service: ServiceDep) -> list[LinkResponse]:
    """Renumber a location's links 1..N in the given order."""
    return await service.reorder_sequences(location_id, body.ordered_ids)


@location_address_components_router.get("/by-address-component/{component_id}")
async def get_links_by_component(component_id: uuid.UUID, service: ServiceDep) -> list[LinkResponse]:
    """Every link referencing an address component."""
    return await service.get_by_address_component(component_id)


# ---------------------------------------------------------------------------
# Parameterized routes (/{link_id} paths AFTER fixed-prefix routes)
# ---------------------------------------------------------------------------


@location_address_components_router.get("/{link_id}")
async def get_link(link_id: uuid.UUID, service: ServiceDep) -> LinkResponse:
    """Get one link."""
    return await service.get_link(link_id)


@location_address_components_router.patch("/{link_id}")
async def update_link(link_id: uuid.UUID, body: LinkUpdateRequest, service: ServiceDep) -> LinkResponse:
    """Partially update a link."""
    return await service.update_link(link_id, body)


@location_address_components_router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(link_id: uuid.UUID, service: ServiceDep) -> Response:
    """Delete one link."""
    await service.delete_link(link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@location_address_components_router.delete("/{link_id}/center-point")
async def clear_link_center_point(link_id: uuid.UUID, service: ServiceDep) -> LinkResponse:
    """Remove a link's point."""
    return await service.clear_center_point(link_id)

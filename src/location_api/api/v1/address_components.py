"""Address component API endpoints.

Domain errors raised by the service propagate to the application-level
handler, which renders them with their status code.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from location_api.core.dependencies import get_address_component_service
from location_api.schemas.address_component import (
    AddressComponentBulkUpsertRequest,
    AddressComponentCreateRequest,
    AddressComponentFilter,
    AddressComponentMoveRequest,
    AddressComponentResponse,
    AddressComponentUpdateRequest,
    AddressComponentUpsertRequest,
    PaginatedAddressComponentResponse,
)
from location_api.schemas.common import BulkDeleteRequest, BulkDeleteResponse, UpsertCounts
from location_api.services.address_component_service import AddressComponentService

address_components_router = APIRouter(
    prefix="/address-components",
    tags=["address-components"],
)

ServiceDep = Annotated[AddressComponentService, Depends(get_address_component_service)]


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@address_components_router.post("", status_code=status.HTTP_201_CREATED)
async def create_component(body: AddressComponentCreateRequest, service: ServiceDep) -> AddressComponentResponse:
    """Create an address component."""
    return await service.create(body)


@address_components_router.get("")
async def search_components(
    service: ServiceDep,
    q: Annotated[str | None, Query(description="Substring over type and value")] = None,
    type_: Annotated[list[str] | None, Query(alias="type", description="Restrict to these types")] = None,
    parent_component_id: Annotated[uuid.UUID | None, Query()] = None,
    root_only: Annotated[bool, Query(description="Only components without a parent")] = False,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
) -> PaginatedAddressComponentResponse:
    """Search address components with pagination."""
    filters = AddressComponentFilter(
        q=q,
        types=type_,
        parent_component_id=parent_component_id,
        root_only=root_only,
        page=page,
        limit=limit,
    )
    return await service.search_paginated(filters)


@address_components_router.get("/by-type-value")
async def get_component_by_type_value(
    service: ServiceDep,
    type_: Annotated[str, Query(alias="type", min_length=1)],
    value: Annotated[str, Query(min_length=1)],
) -> AddressComponentResponse:
    """Look up a component by type and value (roots preferred)."""
    return await service.get_by_type_and_value(type_, value)


@address_components_router.get("/by-types")
async def list_components_by_types(
    service: ServiceDep,
    type_: Annotated[list[str], Query(alias="type", min_length=1)],
) -> list[AddressComponentResponse]:
    """List every component of the given types."""
    return await service.list_by_types(type_)


@address_components_router.post("/upsert")
async def upsert_component(body: AddressComponentUpsertRequest, service: ServiceDep) -> AddressComponentResponse:
    """Insert or update a component keyed on (type, value, parent)."""
    return await service.upsert_by_type_value_parent(body)


@address_components_router.post("/bulk-upsert")
async def bulk_upsert_components(body: AddressComponentBulkUpsertRequest, service: ServiceDep) -> UpsertCounts:
    """Upsert many components in one all-or-nothing transaction."""
    return await service.bulk_upsert(body.rows)


@address_components_router.post("/bulk-delete")
async def bulk_delete_components(body: BulkDeleteRequest, service: ServiceDep) -> BulkDeleteResponse:
    """Delete many components in one all-or-nothing transaction."""
    return BulkDeleteResponse(deleted=await service.bulk_delete(body.ids))


# ---------------------------------------------------------------------------
# Parameterized routes (/{component_id} paths AFTER fixed-prefix routes)
# ---------------------------------------------------------------------------


@address_components_router.get("/{component_id}")
async def get_component(component_id: uuid.UUID, service: ServiceDep) -> AddressComponentResponse:
    """Get one address component."""
    return await service.get(component_id)


@address_components_router.patch("/{component_id}")
async def update_component(
    component_id: uuid.UUID,
    body: AddressComponentUpdateRequest,
    service: ServiceDep,
) -> AddressComponentResponse:
    """Partially update an address component."""
    return await service.update(component_id, body)


@address_components_router.delete("/{component_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_component(component_id: uuid.UUID, service: ServiceDep) -> Response:
    """Delete a leaf component and its links."""
    await service.delete(component_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@address_components_router.get("/{component_id}/children")
async def get_component_children(component_id: uuid.UUID, service: ServiceDep) -> list[AddressComponentResponse]:
    """Direct children of a component."""
    return await service.get_children(component_id)


@address_components_router.get("/{component_id}/ancestors")
async def get_component_ancestors(component_id: uuid.UUID, service: ServiceDep) -> list[AddressComponentResponse]:
    """Ancestor chain of a component, root first."""
    return await service.get_ancestors(component_id)


@address_components_router.get("/{component_id}/descendants")
async def get_component_descendants(component_id: uuid.UUID, service: ServiceDep) -> list[AddressComponentResponse]:
    """Every descendant of a component, shallowest first."""
    return await service.get_descendants(component_id)


@address_components_router.post("/{component_id}/move")
async def move_component(
    component_id: uuid.UUID,
    body: AddressComponentMoveRequest,
    service: ServiceDep,
) -> AddressComponentResponse:
    """Re-parent a component."""
    return await service.move(component_id, body.new_parent_id)

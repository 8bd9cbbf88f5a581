"""Location API endpoints: CRUD, closure-table tree reads and spatial queries."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from location_api.core.dependencies import get_location_service, get_spatial_service
from location_api.lib.geo import point_from_lng_lat
from location_api.schemas.address_component import AddressComponentResponse
from location_api.schemas.common import BulkDeleteRequest, BulkDeleteResponse
from location_api.schemas.location import (
    AttachComponentsRequest,
    LocationCreateRequest,
    LocationDistanceResponse,
    LocationFilter,
    LocationMoveRequest,
    LocationResponse,
    LocationSort,
    LocationTreeNode,
    LocationUpdateRequest,
    LocationUpsertRequest,
    PaginatedLocationResponse,
)
from location_api.schemas.location_address_component import LinkResponse
from location_api.schemas.spatial import (
    GeoJSONFeature,
    GeofenceAreaResponse,
    GeometryExportResponse,
    PolygonQueryRequest,
)
from location_api.services.location_service import LocationService
from location_api.services.spatial_service import SpatialService

locations_router = APIRouter(
    prefix="/locations",
    tags=["locations"],
)

ServiceDep = Annotated[LocationService, Depends(get_location_service)]
SpatialDep = Annotated[SpatialService, Depends(get_spatial_service)]

Longitude = Annotated[float, Query(ge=-180, le=180, description="WGS84 longitude")]
Latitude = Annotated[float, Query(ge=-90, le=90, description="WGS84 latitude")]


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@locations_router.post("", status_code=status.HTTP_201_CREATED)
async def create_location(body: LocationCreateRequest, service: ServiceDep) -> LocationResponse:
    """Create a location, optionally under a parent and with address components."""
    return await service.create(body)


@locations_router.get("")
async def list_locations(
    service: ServiceDep,
    search: Annotated[str | None, Query(description="Match over name, county, town and street")] = None,
    county: Annotated[list[str] | None, Query()] = None,
    town: Annotated[list[str] | None, Query()] = None,
    parent_id: Annotated[uuid.UUID | None, Query()] = None,
    root_only: Annotated[bool, Query()] = False,
    has_geofence: Annotated[bool | None, Query()] = None,
    sort: Annotated[LocationSort, Query()] = LocationSort.CREATED_DESC,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
) -> PaginatedLocationResponse:
    """List locations with filters, sorting and pagination."""
    filters = LocationFilter(
        search=search,
        county=county,
        town=town,
        parent_id=parent_id,
        root_only=root_only,
        has_geofence=has_geofence,
        sort=sort,
        page=page,
        limit=limit,
    )
    return await service.list_with_filters(filters)


@locations_router.get("/trees")
async def get_root_trees(service: ServiceDep) -> list[LocationTreeNode]:
    """Every root location with its full nested subtree."""
    return await service.get_root_trees()


@locations_router.get("/by-name")
async def get_locations_by_name(
    service: ServiceDep,
    name: Annotated[str, Query(min_length=1)],
) -> list[LocationResponse]:
    """Locations with the given local area name."""
    return await service.get_by_name(name)


@locations_router.get("/by-county")
async def get_locations_by_county(
    service: ServiceDep,
    county: Annotated[str, Query(min_length=1)],
) -> list[LocationResponse]:
    """Locations in a county."""
    return await service.list_by_county(county)


@locations_router.post("/upsert")
async def upsert_location(body: LocationUpsertRequest, service: ServiceDep) -> LocationResponse:
    """Insert or update a location keyed on (local_area_name, county)."""
    return await service.upsert_by_name_county(body)


@locations_router.post("/bulk-delete")
async def bulk_delete_locations(body: BulkDeleteRequest, service: ServiceDep) -> BulkDeleteResponse:
    """Soft delete many locations in one transaction."""
    return BulkDeleteResponse(deleted=await service.bulk_delete(body.ids))


# ---------------------------------------------------------------------------
# Spatial queries
# ---------------------------------------------------------------------------


@locations_router.get("/geo/nearest")
async def get_nearest_locations(
    spatial: SpatialDep,
    lng: Longitude,
    lat: Latitude,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
    county: Annotated[str | None, Query()] = None,
) -> list[LocationResponse]:
    """Locations ordered by approximate (planar) distance from a point."""
    return await spatial.get_nearest_locations(point_from_lng_lat(lng, lat), limit, county)


@locations_router.get("/geo/radius")
async def get_locations_near_point(
    spatial: SpatialDep,
    lng: Longitude,
    lat: Latitude,
    distance_meters: Annotated[float, Query(ge=0)],
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[LocationDistanceResponse]:
    """Locations within a geodesic radius, nearest first."""
    return await spatial.get_locations_near_point(point_from_lng_lat(lng, lat), distance_meters, limit)


@locations_router.get("/geo/containing-point")
async def get_locations_containing_point(
    spatial: SpatialDep,
    lng: Longitude,
    lat: Latitude,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[LocationResponse]:
    """Locations whose geofence contains a point."""
    return await spatial.get_locations_containing_point(point_from_lng_lat(lng, lat), limit)


@locations_router.post("/geo/intersecting")
async def get_locations_in_geofence(body: PolygonQueryRequest, spatial: SpatialDep) -> list[LocationResponse]:
    """Locations whose geofence intersects a polygon."""
    return await spatial.get_locations_in_geofence(body.polygon, body.limit)


@locations_router.get("/geo/bbox")
async def get_locations_within_bbox(
    spatial: SpatialDep,
    min_lng: Longitude,
    min_lat: Latitude,
    max_lng: Longitude,
    max_lat: Latitude,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[LocationResponse]:
    """Locations whose geofence overlaps a bounding box."""
    return await spatial.get_locations_within_bbox(min_lng, min_lat, max_lng, max_lat, limit)


# ---------------------------------------------------------------------------
# Parameterized routes (/{location_id} paths AFTER fixed-prefix routes)
# ---------------------------------------------------------------------------


@locations_router.get("/{location_id}")
async def get_location(location_id: uuid.UUID, service: ServiceDep) -> LocationResponse:
    """Get one location."""
    return await service.get(location_id)


@locations_router.patch("/{location_id}")
async def update_location(location_id: uuid.UUID, body: LocationUpdateRequest, service: ServiceDep) -> LocationResponse:
    """Partially update a location.

    Omit a geometry field to leave it unchanged; use ``clear_center_point``
    or ``clear_geofence`` to remove one.
    """
    return await service.update(location_id, body)


@locations_router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(location_id: uuid.UUID, service: ServiceDep) -> Response:
    """Soft delete a leaf location."""
    await service.delete(location_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@locations_router.post("/{location_id}/move")
async def move_location(location_id: uuid.UUID, body: LocationMoveRequest, service: ServiceDep) -> LocationResponse:
    """Re-parent a location together with its subtree."""
    return await service.move(location_id, body.new_parent_id)


@locations_router.get("/{location_id}/ancestors")
async def get_location_ancestors(location_id: uuid.UUID, service: ServiceDep) -> list[LocationResponse]:
    """Ancestor chain, root first."""
    return await service.get_ancestors(location_id)


@locations_router.get("/{location_id}/descendants")
async def get_location_descendants(location_id: uuid.UUID, service: ServiceDep) -> list[LocationResponse]:
    """Every descendant, shallowest first."""
    return await service.get_descendants(location_id)


@locations_router.get("/{location_id}/subtree")
async def get_location_subtree(location_id: uuid.UUID, service: ServiceDep) -> LocationTreeNode:
    """The nested tree rooted at a location."""
    return await service.get_subtree(location_id)


@locations_router.get("/{location_id}/address-components")
async def get_location_address_components(
    location_id: uuid.UUID,
    service: ServiceDep,
) -> list[AddressComponentResponse]:
    """Address components linked to a location, in sequence order."""
    return await service.get_address_components(location_id)


@locations_router.put("/{location_id}/address-components")
async def attach_location_address_components(
    location_id: uuid.UUID,
    body: AttachComponentsRequest,
    service: ServiceDep,
) -> list[LinkResponse]:
    """Attach address components, optionally replacing existing links."""
    return await service.attach_address_components(
        location_id, body.components, replace_existing=body.replace_existing
    )


@locations_router.get("/{location_id}/geofence-area")
async def get_geofence_area(location_id: uuid.UUID, spatial: SpatialDep) -> GeofenceAreaResponse:
    """Geodesic area of the location's geofence in square meters."""
    area = await spatial.get_geofence_area_sq_meters(location_id)
    return GeofenceAreaResponse(id=location_id, area_sq_meters=area)


@locations_router.get("/{location_id}/geojson")
async def export_location_geojson(location_id: uuid.UUID, spatial: SpatialDep) -> GeometryExportResponse:
    """Both geometry fields as GeoJSON."""
    return await spatial.export_geojson(location_id)


@locations_router.get("/{location_id}/feature")
async def export_location_feature(location_id: uuid.UUID, spatial: SpatialDep) -> GeoJSONFeature:
    """The location as a GeoJSON Feature."""
    return await spatial.export_feature(location_id)


@locations_router.delete("/{location_id}/center-point")
async def clear_location_center_point(location_id: uuid.UUID, service: ServiceDep) -> LocationResponse:
    """Remove the location's center point."""
    return await service.clear_center_point(location_id)


@locations_router.delete("/{location_id}/geofence")
async def clear_location_geofence(location_id: uuid.UUID, service: ServiceDep) -> LocationResponse:
    """Remove the location's geofence."""
    return await service.clear_geofence(location_id)

"""Pydantic v2 schemas for location operations.

Geometry inputs are GeoJSON dicts validated by the service layer so that a
malformed geometry surfaces as the same 400 error whether it arrives over
HTTP or from another service.  Geometry updates are three-state: omit the
field to leave it unchanged, send a value to replace it, or set the
``clear_*`` flag to null it.  An explicit ``null`` is rejected.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from location_api.schemas.common import GeoJSONGeometry, PageEnvelope, PaginationParams

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LocationResponse(BaseModel):
    """A single location with GeoJSON geometry."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    local_area_name: str
    county: str
    town: str | None = None
    street: str | None = None
    coverage_details: str | None = None
    parent_id: uuid.UUID | None = None
    center_point: GeoJSONGeometry = None
    geofence: GeoJSONGeometry = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("extra_metadata", "metadata"))
    created_at: datetime
    updated_at: datetime


class LocationTreeNode(LocationResponse):
    """A location with its nested children."""

    children: list["LocationTreeNode"] = Field(default_factory=list)


class LocationDistanceResponse(LocationResponse):
    """A location annotated with its geodesic distance from the query point."""

    distance_meters: float


class PaginatedLocationResponse(PageEnvelope):
    """Paginated list of locations."""

    data: list[LocationResponse]


# ---------------------------------------------------------------------------
# Write schemas
# ---------------------------------------------------------------------------


class LocationComponentInput(BaseModel):
    """Address component link supplied with a location write."""

    address_component_id: uuid.UUID
    label: str | None = Field(default=None, max_length=120)
    sequence: int | None = Field(default=None, ge=0)
    is_primary: bool = False
    center_point: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class LocationCreateRequest(BaseModel):
    """Request body for creating a location."""

    local_area_name: str = Field(min_length=1, max_length=100)
    county: str = Field(min_length=1, max_length=100)
    town: str | None = Field(default=None, max_length=100)
    street: str | None = Field(default=None, max_length=100)
    coverage_details: str | None = None
    parent_id: uuid.UUID | None = None
    center_point: dict[str, Any] | None = None
    geofence: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    components: list[LocationComponentInput] | None = None


class LocationUpdateRequest(BaseModel):
    """Request body for a partial location update.

    ``parent_id`` present in the request (including ``null``) re-parents the
    location.  ``components`` present replaces the location's links.
    """

    local_area_name: str | None = Field(default=None, min_length=1, max_length=100)
    county: str | None = Field(default=None, min_length=1, max_length=100)
    town: str | None = Field(default=None, max_length=100)
    street: str | None = Field(default=None, max_length=100)
    coverage_details: str | None = None
    parent_id: uuid.UUID | None = None
    center_point: dict[str, Any] | None = None
    geofence: dict[str, Any] | None = None
    clear_center_point: bool = False
    clear_geofence: bool = False
    metadata: dict[str, Any] | None = None
    components: list[LocationComponentInput] | None = None


class LocationUpsertRequest(BaseModel):
    """Upsert keyed on ``(local_area_name, county)``."""

    local_area_name: str | None = Field(default=None, max_length=100)
    county: str | None = Field(default=None, max_length=100)
    town: str | None = Field(default=None, max_length=100)
    street: str | None = Field(default=None, max_length=100)
    coverage_details: str | None = None
    parent_id: uuid.UUID | None = None
    center_point: dict[str, Any] | None = None
    geofence: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class LocationMoveRequest(BaseModel):
    """Re-parent a location (``null`` makes it a root)."""

    new_parent_id: uuid.UUID | None = None


class AttachComponentsRequest(BaseModel):
    """Attach address components to a location."""

    components: list[LocationComponentInput] = Field(max_length=500)
    replace_existing: bool = False


# ---------------------------------------------------------------------------
# Query schemas
# ---------------------------------------------------------------------------


class LocationSort(enum.StrEnum):
    """Sort orders for location listings."""

    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"
    CREATED_ASC = "created_asc"
    CREATED_DESC = "created_desc"


class LocationFilter(PaginationParams):
    """Filter for location listings."""

    search: str | None = Field(default=None, description="Case-insensitive match over name, county, town and street")
    county: list[str] | None = None
    town: list[str] | None = None
    parent_id: uuid.UUID | None = None
    root_only: bool = False
    has_geofence: bool | None = None
    sort: LocationSort = LocationSort.CREATED_DESC

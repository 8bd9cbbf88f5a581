"""Pydantic v2 schemas for location ↔ address component links."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from location_api.schemas.common import GeoJSONGeometry

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LinkResponse(BaseModel):
    """A single link row."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    location_id: uuid.UUID
    address_component_id: uuid.UUID
    label: str | None = None
    sequence: int | None = None
    is_primary: bool = False
    center_point: GeoJSONGeometry = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("extra_metadata", "metadata"))
    created_at: datetime
    updated_at: datetime


class LinkDistanceResponse(LinkResponse):
    """A link annotated with its geodesic distance from the query point."""

    distance_meters: float


# ---------------------------------------------------------------------------
# Write schemas
# ---------------------------------------------------------------------------


class LinkCreateRequest(BaseModel):
    """Request body for creating a link."""

    location_id: uuid.UUID
    address_component_id: uuid.UUID
    label: str | None = Field(default=None, max_length=120)
    sequence: int | None = Field(default=None, ge=0)
    is_primary: bool = False
    center_point: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class LinkUpdateRequest(BaseModel):
    """Partial update of a link; ``clear_center_point`` nulls its point."""

    label: str | None = Field(default=None, max_length=120)
    sequence: int | None = Field(default=None, ge=0)
    is_primary: bool | None = None
    center_point: dict[str, Any] | None = None
    clear_center_point: bool = False
    metadata: dict[str, Any] | None = None


class LinkUpsertRequest(BaseModel):
    """Upsert keyed on ``(location_id, address_component_id)``."""

    location_id: uuid.UUID | None = None
    address_component_id: uuid.UUID | None = None
    label: str | None = Field(default=None, max_length=120)
    sequence: int | None = Field(default=None, ge=0)
    is_primary: bool | None = None
    center_point: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class LinkBulkUpsertRequest(BaseModel):
    """Rows applied in one transaction."""

    rows: list[LinkUpsertRequest] = Field(min_length=1, max_length=1000)


class ReorderRequest(BaseModel):
    """Link ids of one location in their new order."""

    ordered_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)

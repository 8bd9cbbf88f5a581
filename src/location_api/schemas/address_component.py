"""Pydantic v2 schemas for address component operations."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from location_api.schemas.common import PageEnvelope, PaginationParams

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AddressComponentResponse(BaseModel):
    """A single address taxonomy node."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    type: str
    value: str
    parent_component_id: uuid.UUID | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("extra_metadata", "metadata"))
    created_at: datetime
    updated_at: datetime


class PaginatedAddressComponentResponse(PageEnvelope):
    """Paginated list of address components."""

    data: list[AddressComponentResponse]


# ---------------------------------------------------------------------------
# Write schemas
# ---------------------------------------------------------------------------


class AddressComponentCreateRequest(BaseModel):
    """Request body for creating an address component."""

    type: str = Field(min_length=1, max_length=50)
    value: str = Field(min_length=1, max_length=100)
    parent_component_id: uuid.UUID | None = None
    metadata: dict[str, Any] | None = None


class AddressComponentUpdateRequest(BaseModel):
    """Request body for updating an address component.

    Only fields present in the request are changed.  Sending
    ``parent_component_id: null`` makes the component a root.
    """

    type: str | None = Field(default=None, min_length=1, max_length=50)
    value: str | None = Field(default=None, min_length=1, max_length=100)
    parent_component_id: uuid.UUID | None = None
    metadata: dict[str, Any] | None = None


class AddressComponentUpsertRequest(BaseModel):
    """Upsert keyed on ``(type, value, parent_component_id)``.

    ``type`` and ``value`` are required; a missing key is reported as a
    validation error by the service so batch rows fail the same way.
    """

    type: str | None = Field(default=None, max_length=50)
    value: str | None = Field(default=None, max_length=100)
    parent_component_id: uuid.UUID | None = None
    metadata: dict[str, Any] | None = None


class AddressComponentBulkUpsertRequest(BaseModel):
    """Rows applied in one transaction."""

    rows: list[AddressComponentUpsertRequest] = Field(min_length=1, max_length=1000)


class AddressComponentMoveRequest(BaseModel):
    """Re-parent a component (``null`` makes it a root)."""

    new_parent_id: uuid.UUID | None = None


# ---------------------------------------------------------------------------
# Query schemas
# ---------------------------------------------------------------------------


class AddressComponentFilter(PaginationParams):
    """Search filter for address components."""

    q: str | None = Field(default=None, description="Case-insensitive substring over type and value")
    types: list[str] | None = None
    parent_component_id: uuid.UUID | None = None
    root_only: bool = False

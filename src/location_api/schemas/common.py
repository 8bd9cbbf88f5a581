"""Common Pydantic v2 schemas shared across the API.

Provides pagination, error response, bulk operation and GeoJSON field types.
"""

import math
import uuid
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field

from location_api.lib.geo import to_geojson

# Stored geometry (WKB element, Shapely shape or cached GeoJSON) rendered as GeoJSON.
GeoJSONGeometry = Annotated[dict[str, Any] | None, BeforeValidator(to_geojson)]


class PaginationParams(BaseModel):
    """Query parameters for paginated endpoints."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    limit: int = Field(default=20, ge=1, le=500, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PageEnvelope(BaseModel):
    """Pagination fields shared by every paginated response."""

    page: int = Field(description="Current page number")
    limit: int = Field(description="Items per page")
    total: int = Field(description="Total number of items")
    total_pages: int = Field(description="Total number of pages")


def page_count(total: int, limit: int) -> int:
    """Number of pages needed for ``total`` items."""
    return math.ceil(total / limit) if total and limit else 0


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error message")
    code: str | None = Field(default=None, description="Machine-readable error code")
    context: dict[str, Any] = Field(default_factory=dict, description="Offending ids or keys")


class BulkDeleteRequest(BaseModel):
    """Ids to delete in one all-or-nothing transaction."""

    ids: list[uuid.UUID] = Field(min_length=1, max_length=1000)


class BulkDeleteResponse(BaseModel):
    """Number of rows removed by a bulk delete."""

    deleted: int


class UpsertCounts(BaseModel):
    """Outcome of a bulk upsert."""

    inserted: int = 0
    updated: int = 0

"""Pydantic v2 schemas for geospatial queries and GeoJSON export."""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from location_api.schemas.common import GeoJSONGeometry


class GeometryExportResponse(BaseModel):
    """Both geometry fields of one location as GeoJSON (absent → null)."""

    id: uuid.UUID
    center_point: GeoJSONGeometry = None
    geofence: GeoJSONGeometry = None


class GeoJSONFeature(BaseModel):
    """A single GeoJSON Feature representing a location."""

    type: str = "Feature"
    id: str
    geometry: dict[str, Any] | None
    properties: dict[str, Any]


class GeofenceAreaResponse(BaseModel):
    """Geodesic geofence area of one location."""

    id: uuid.UUID
    area_sq_meters: float | None = Field(description="Null when the location has no geofence")


class PolygonQueryRequest(BaseModel):
    """GeoJSON polygon used for intersection queries."""

    polygon: dict[str, Any]
    limit: int | None = Field(default=None, ge=1, le=1000)

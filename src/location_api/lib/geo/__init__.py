"""Geo library -- GeoJSON validation, PostGIS conversion and geometry patches.

All geometries are WGS84 (SRID 4326) with ``(longitude, latitude)`` ordering.
"""

from location_api.lib.geo.geometry import (
    SRID,
    GeometryPatch,
    InvalidGeometryError,
    PatchAction,
    bbox_polygon,
    parse_point,
    parse_polygon,
    point_from_lng_lat,
    to_db_geometry,
    to_ewkt,
    to_geojson,
)

__all__ = [
    "SRID",
    "GeometryPatch",
    "InvalidGeometryError",
    "PatchAction",
    "bbox_polygon",
    "parse_point",
    "parse_polygon",
    "point_from_lng_lat",
    "to_db_geometry",
    "to_ewkt",
    "to_geojson",
]

"""GeoJSON parsing, PostGIS conversion and three-state geometry updates.

Coordinates are ``(longitude, latitude)`` decimal degrees in WGS84
(SRID 4326).  Incoming GeoJSON is validated with Shapely and converted to
GeoAlchemy2 WKB elements for storage; stored values are converted back to
plain GeoJSON dicts for responses.
"""

import enum
from dataclasses import dataclass
from typing import Any

from geoalchemy2.elements import WKBElement, WKTElement
from geoalchemy2.shape import from_shape, to_shape
from shapely.errors import GEOSException
from shapely.geometry import Point, Polygon, box, mapping, shape
from shapely.geometry.base import BaseGeometry

from location_api.core.exceptions import ValidationError

SRID = 4326


class InvalidGeometryError(ValidationError):
    """A geometry payload is malformed or outside WGS84 bounds."""

    code = "invalid_geometry"


def _check_lng_lat(lng: float, lat: float) -> None:
    if not -180.0 <= lng <= 180.0:
        msg = f"Longitude {lng} outside [-180, 180]"
        raise InvalidGeometryError(msg)
    if not -90.0 <= lat <= 90.0:
        msg = f"Latitude {lat} outside [-90, 90]"
        raise InvalidGeometryError(msg)


def point_from_lng_lat(lng: float, lat: float) -> Point:
    """Build a validated WGS84 point."""
    _check_lng_lat(lng, lat)
    return Point(lng, lat)


def _shape_from_geojson(data: Any, expected_type: str) -> BaseGeometry:
    if not isinstance(data, dict):
        msg = f"Expected a GeoJSON {expected_type} object"
        raise InvalidGeometryError(msg)
    if data.get("type") != expected_type:
        msg = f"Expected GeoJSON type {expected_type}, got {data.get('type')!r}"
        raise InvalidGeometryError(msg)
    try:
        geom = shape(data)
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        msg = f"Malformed GeoJSON {expected_type}: {e}"
        raise InvalidGeometryError(msg) from e
    if geom.is_empty:
        msg = f"Empty GeoJSON {expected_type}"
        raise InvalidGeometryError(msg)
    return geom


def parse_point(data: Any) -> Point:
    """Parse a GeoJSON Point (or a ``{lat, lng}`` mapping) into a Shapely point.

    Raises:
        InvalidGeometryError: If the payload is malformed or out of bounds.
    """
    if isinstance(data, Point):
        _check_lng_lat(data.x, data.y)
        return data
    if isinstance(data, dict) and "type" not in data and {"lat", "lng"} <= data.keys():
        try:
            return point_from_lng_lat(float(data["lng"]), float(data["lat"]))
        except (TypeError, ValueError) as e:
            msg = f"Malformed lat/lng point: {e}"
            raise InvalidGeometryError(msg) from e
    coords = data.get("coordinates") if isinstance(data, dict) else None
    if not isinstance(coords, (list, tuple)) or len(coords) != 2:
        msg = "Point coordinates must be a [longitude, latitude] pair"
        raise InvalidGeometryError(msg)
    geom = _shape_from_geojson(data, "Point")
    _check_lng_lat(geom.x, geom.y)
    return geom


def parse_polygon(data: Any) -> Polygon:
    """Parse a GeoJSON Polygon into a valid Shapely polygon.

    Raises:
        InvalidGeometryError: If the payload is malformed, self-intersecting
            or out of bounds.
    """
    if isinstance(data, Polygon):
        geom = data
    else:
        geom = _shape_from_geojson(data, "Polygon")
    if len(geom.exterior.coords) < 4:
        msg = "Polygon exterior ring needs at least 4 positions"
        raise InvalidGeometryError(msg)
    for lng, lat, *_ in geom.exterior.coords:
        _check_lng_lat(lng, lat)
    if not geom.is_valid:
        msg = "Polygon is not valid (self-intersecting or degenerate ring)"
        raise InvalidGeometryError(msg)
    return geom


def bbox_polygon(min_lng: float, min_lat: float, max_lng: float, max_lat: float) -> Polygon:
    """Build an axis-aligned box after validating its corners."""
    _check_lng_lat(min_lng, min_lat)
    _check_lng_lat(max_lng, max_lat)
    if min_lng > max_lng or min_lat > max_lat:
        msg = "Bounding box minimums must not exceed maximums"
        raise InvalidGeometryError(msg)
    return box(min_lng, min_lat, max_lng, max_lat)


def to_db_geometry(geom: BaseGeometry) -> WKBElement:
    """Convert a Shapely geometry to a GeoAlchemy2 element tagged with SRID 4326."""
    return from_shape(geom, srid=SRID)


def to_ewkt(geom: BaseGeometry) -> str:
    """Render a geometry as EWKT for use with ``ST_GeomFromEWKT``."""
    return f"SRID={SRID};{geom.wkt}"


def _listify(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_listify(v) for v in value]
    return value


def to_geojson(value: Any) -> dict[str, Any] | None:
    """Convert a stored geometry to a GeoJSON dict (``None`` stays ``None``)."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, (WKBElement, WKTElement)):
        value = to_shape(value)
    if isinstance(value, BaseGeometry):
        geo = mapping(value)
        return {"type": geo["type"], "coordinates": _listify(geo["coordinates"])}
    msg = f"Unsupported geometry value of type {type(value).__name__}"
    raise TypeError(msg)


class PatchAction(enum.StrEnum):
    """What an update does to one geometry field."""

    UNCHANGED = "unchanged"
    CLEAR = "clear"
    SET = "set"


@dataclass(frozen=True)
class GeometryPatch:
    """Tagged three-state update for a nullable geometry field.

    ``unchanged`` leaves the stored value untouched, ``clear`` sets it to
    NULL and ``set`` replaces it.  Omitted and null are never conflated.
    """

    action: PatchAction = PatchAction.UNCHANGED
    value: BaseGeometry | None = None

    @classmethod
    def unchanged(cls) -> "GeometryPatch":
        return cls(PatchAction.UNCHANGED)

    @classmethod
    def clear(cls) -> "GeometryPatch":
        return cls(PatchAction.CLEAR)

    @classmethod
    def set(cls, value: BaseGeometry) -> "GeometryPatch":
        if value is None:
            msg = "GeometryPatch.set requires a geometry; use GeometryPatch.clear() to null a field"
            raise InvalidGeometryError(msg)
        return cls(PatchAction.SET, value)

    @classmethod
    def from_request(cls, value: BaseGeometry | None, clear: bool, field: str) -> "GeometryPatch":
        """Combine a request's value and clear flag for one field.

        Raises:
            InvalidGeometryError: If both a value and the clear flag are given.
        """
        if clear and value is not None:
            msg = f"Cannot both set and clear {field}"
            raise InvalidGeometryError(msg)
        if clear:
            return cls.clear()
        if value is not None:
            return cls.set(value)
        return cls.unchanged()

    @property
    def is_unchanged(self) -> bool:
        return self.action is PatchAction.UNCHANGED

    def apply_to(self, obj: Any, attr: str) -> bool:
        """Apply the patch to ``obj.attr``.

        Returns:
            True if the attribute was assigned.
        """
        if self.action is PatchAction.UNCHANGED:
            return False
        if self.action is PatchAction.CLEAR:
            setattr(obj, attr, None)
        else:
            setattr(obj, attr, to_db_geometry(self.value))
        return True

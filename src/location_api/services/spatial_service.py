"""Spatial query service -- read-only PostGIS queries over location and link geometry.

Nearest-neighbour ordering uses the planar KNN operator (``<->``) so the GiST
index drives it; radius filters and areas cast to ``geography`` so distances
are geodesic meters.  Rows with a NULL geometry never match a predicate and
soft-deleted locations are always excluded.  Results are cached per distinct
query shape with a short TTL.
"""

import uuid
from typing import Any

from geoalchemy2 import Geography
from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy import cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from location_api.core import cache as ns
from location_api.core.cache import LocationCache
from location_api.core.config import Settings
from location_api.core.database import store_operation
from location_api.core.exceptions import NotFoundError, ValidationError
from location_api.lib.geo import SRID, bbox_polygon, parse_point, parse_polygon, to_ewkt, to_geojson
from location_api.models.location import Location
from location_api.models.location_address_component import LocationAddressComponent
from location_api.schemas.location import LocationDistanceResponse, LocationResponse
from location_api.schemas.location_address_component import LinkDistanceResponse, LinkResponse
from location_api.schemas.spatial import GeoJSONFeature, GeometryExportResponse

_LOCATION_LIST_ADAPTER = TypeAdapter(list[LocationResponse])
_LOCATION_DISTANCE_ADAPTER = TypeAdapter(list[LocationDistanceResponse])
_LINK_DISTANCE_ADAPTER = TypeAdapter(list[LinkDistanceResponse])

_FEATURE_PROPERTIES = ("local_area_name", "county", "town", "street", "coverage_details", "parent_id")


def _geom(ewkt: str):
    return func.ST_GeomFromEWKT(ewkt)


def _geog(expr):
    return cast(expr, Geography(srid=SRID))


class SpatialService:
    """Geospatial query engine bound to one session and one cache handle."""

    def __init__(self, session: AsyncSession, cache: LocationCache, *, settings: Settings) -> None:
        self.session = session
        self.cache = cache
        self.settings = settings

    async def _cached(self, namespace: str, shape: dict[str, Any], loader, adapter: TypeAdapter) -> Any:
        return await self.cache.read_through(
            self.cache.query_key(namespace, shape),
            loader,
            adapter,
            self.settings.cache_geo_ttl_seconds,
        )

    @staticmethod
    def _check_distance(distance_meters: float) -> None:
        if distance_meters < 0:
            msg = f"distance_meters must be non-negative, got {distance_meters}"
            raise ValidationError(msg, context={"distance_meters": distance_meters})

    async def _get_location(self, location_id: uuid.UUID) -> Location:
        result = await self.session.execute(
            select(Location).where(Location.id == location_id, Location.deleted_at.is_(None))
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Location", location_id)
        return row

    # ---------------------------------------------------------------------------
    # Location queries
    # ---------------------------------------------------------------------------

    @store_operation
    async def get_nearest_locations(
        self,
        point: Any,
        limit: int | None = None,
        county: str | None = None,
    ) -> list[LocationResponse]:
        """Up to ``limit`` locations ordered by planar distance from ``point``.

        The ordering is index-accelerated and approximate; use
        :meth:`get_locations_near_point` for geodesic radius filtering.
        """
        pt = parse_point(point)
        limit = limit or self.settings.default_nearest_limit
        ewkt = to_ewkt(pt)

        async def load() -> list[LocationResponse]:
            query = select(Location).where(Location.deleted_at.is_(None), Location.center_point.is_not(None))
            if county:
                query = query.where(Location.county == county)
            query = query.order_by(Location.center_point.distance_centroid(_geom(ewkt))).limit(limit)
            result = await self.session.execute(query)
            return [LocationResponse.model_validate(row) for row in result.scalars().all()]

        return await self._cached(
            ns.LOCATION_GEO,
            {"op": "nearest", "point": ewkt, "limit": limit, "county": county},
            load,
            _LOCATION_LIST_ADAPTER,
        )

    @store_operation
    async def get_locations_near_point(
        self,
        point: Any,
        distance_meters: float,
        limit: int | None = None,
    ) -> list[LocationDistanceResponse]:
        """Locations whose center point is within ``distance_meters`` (geodesic), nearest first."""
        pt = parse_point(point)
        self._check_distance(distance_meters)
        ewkt = to_ewkt(pt)

        async def load() -> list[LocationDistanceResponse]:
            target = _geog(_geom(ewkt))
            distance = func.ST_Distance(_geog(Location.center_point), target).label("distance_meters")
            query = (
                select(Location, distance)
                .where(
                    Location.deleted_at.is_(None),
                    Location.center_point.is_not(None),
                    func.ST_DWithin(_geog(Location.center_point), target, distance_meters),
                )
                .order_by(distance)
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return [
                LocationDistanceResponse.model_validate(
                    {**LocationResponse.model_validate(row).model_dump(), "distance_meters": meters}
                )
                for row, meters in result.all()
            ]

        return await self._cached(
            ns.LOCATION_GEO,
            {"op": "radius", "point": ewkt, "distance": distance_meters, "limit": limit},
            load,
            _LOCATION_DISTANCE_ADAPTER,
        )

    @store_operation
    async def get_locations_in_geofence(self, polygon: Any, limit: int | None = None) -> list[LocationResponse]:
        """Locations whose geofence intersects ``polygon`` (partial overlap qualifies)."""
        ewkt = to_ewkt(parse_polygon(polygon))

        async def load() -> list[LocationResponse]:
            query = (
                select(Location)
                .where(
                    Location.deleted_at.is_(None),
                    Location.geofence.is_not(None),
                    func.ST_Intersects(Location.geofence, _geom(ewkt)),
                )
                .order_by(Location.local_area_name)
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return [LocationResponse.model_validate(row) for row in result.scalars().all()]

        return await self._cached(
            ns.LOCATION_GEO, {"op": "intersects", "polygon": ewkt, "limit": limit}, load, _LOCATION_LIST_ADAPTER
        )

    @store_operation
    async def get_locations_containing_point(self, point: Any, limit: int | None = None) -> list[LocationResponse]:
        """Locations whose geofence contains ``point``."""
        ewkt = to_ewkt(parse_point(point))

        async def load() -> list[LocationResponse]:
            query = (
                select(Location)
                .where(
                    Location.deleted_at.is_(None),
                    Location.geofence.is_not(None),
                    func.ST_Contains(Location.geofence, _geom(ewkt)),
                )
                .order_by(Location.local_area_name)
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return [LocationResponse.model_validate(row) for row in result.scalars().all()]

        return await self._cached(
            ns.LOCATION_GEO, {"op": "contains", "point": ewkt, "limit": limit}, load, _LOCATION_LIST_ADAPTER
        )

    @store_operation
    async def get_locations_within_bbox(
        self,
        min_lng: float,
        min_lat: float,
        max_lng: float,
        max_lat: float,
        limit: int | None = None,
    ) -> list[LocationResponse]:
        """Locations whose geofence overlaps the axis-aligned box.

        Raises:
            InvalidGeometryError: If the box is inverted or out of bounds.
        """
        bbox_polygon(min_lng, min_lat, max_lng, max_lat)

        async def load() -> list[LocationResponse]:
            envelope = func.ST_MakeEnvelope(min_lng, min_lat, max_lng, max_lat, SRID)
            query = (
                select(Location)
                .where(
                    Location.deleted_at.is_(None),
                    Location.geofence.is_not(None),
                    Location.geofence.op("&&")(envelope),
                )
                .order_by(Location.local_area_name)
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return [LocationResponse.model_validate(row) for row in result.scalars().all()]

        return await self._cached(
            ns.LOCATION_GEO,
            {"op": "bbox", "box": [min_lng, min_lat, max_lng, max_lat], "limit": limit},
            load,
            _LOCATION_LIST_ADAPTER,
        )

    @store_operation
    async def get_geofence_area_sq_meters(self, location_id: uuid.UUID) -> float | None:
        """Geodesic area of a location's geofence, or None when it has none.

        Raises:
            NotFoundError: If the location does not exist.
        """
        result = await self.session.execute(
            select(Location.id, func.ST_Area(_geog(Location.geofence))).where(
                Location.id == location_id, Location.deleted_at.is_(None)
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Location", location_id)
        area = row[1]
        return float(area) if area is not None else None

    @store_operation
    async def export_geojson(self, location_id: uuid.UUID) -> GeometryExportResponse:
        """Both geometry fields of a location as GeoJSON (absent geometry → null).

        Raises:
            NotFoundError: If the location does not exist.
        """
        row = await self._get_location(location_id)
        return GeometryExportResponse(id=row.id, center_point=row.center_point, geofence=row.geofence)

    @store_operation
    async def export_feature(self, location_id: uuid.UUID) -> GeoJSONFeature:
        """A location as a GeoJSON Feature (geofence, else center point).

        Raises:
            NotFoundError: If the location does not exist.
        """
        row = await self._get_location(location_id)
        geometry = to_geojson(row.geofence) or to_geojson(row.center_point)
        properties = {name: getattr(row, name) for name in _FEATURE_PROPERTIES}
        properties["parent_id"] = str(row.parent_id) if row.parent_id else None
        return GeoJSONFeature(id=str(row.id), geometry=geometry, properties=properties)

    # ---------------------------------------------------------------------------
    # Link queries
    # ---------------------------------------------------------------------------

    @store_operation
    async def find_components_near_point(
        self,
        point: Any,
        distance_meters: float,
        limit: int | None = None,
    ) -> list[LinkDistanceResponse]:
        """Links whose point is within ``distance_meters`` (geodesic), nearest first."""
        pt = parse_point(point)
        self._check_distance(distance_meters)
        ewkt = to_ewkt(pt)

        async def load() -> list[LinkDistanceResponse]:
            target = _geog(_geom(ewkt))
            distance = func.ST_Distance(_geog(LocationAddressComponent.center_point), target).label("distance_meters")
            query = (
                select(LocationAddressComponent, distance)
                .join(Location, Location.id == LocationAddressComponent.location_id)
                .where(
                    Location.deleted_at.is_(None),
                    LocationAddressComponent.center_point.is_not(None),
                    func.ST_DWithin(_geog(LocationAddressComponent.center_point), target, distance_meters),
                )
                .order_by(distance)
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            links = [
                LinkDistanceResponse.model_validate(
                    {**LinkResponse.model_validate(row).model_dump(), "distance_meters": meters}
                )
                for row, meters in result.all()
            ]
            logger.debug(f"{len(links)} link(s) within {distance_meters}m of {ewkt}")
            return links

        return await self._cached(
            ns.LINK_GEO,
            {"op": "radius", "point": ewkt, "distance": distance_meters, "limit": limit},
            load,
            _LINK_DISTANCE_ADAPTER,
        )

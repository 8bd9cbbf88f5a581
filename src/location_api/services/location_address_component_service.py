"""Location ↔ address component link service -- ordering, primary flag and point geometry.

At most one link per location carries ``is_primary``.  Before a link is
promoted, a transaction-scoped advisory lock keyed on the location id is
taken and every other primary link of that location is demoted in the same
transaction.  The partial unique index ``uq_lac_single_primary`` rejects
anything that slips past the lock.
"""

import uuid
from typing import Any

from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from location_api.core import cache as ns
from location_api.core.cache import LocationCache
from location_api.core.config import Settings
from location_api.core.database import atomic, store_operation
from location_api.core.exceptions import ConstraintViolationError, NotFoundError, ValidationError
from location_api.lib.geo import GeometryPatch, InvalidGeometryError, parse_point
from location_api.models.address_component import AddressComponent
from location_api.models.location import Location
from location_api.models.location_address_component import LocationAddressComponent
from location_api.schemas.common import UpsertCounts
from location_api.schemas.location_address_component import (
    LinkCreateRequest,
    LinkDistanceResponse,
    LinkResponse,
    LinkUpdateRequest,
    LinkUpsertRequest,
)
from location_api.services.spatial_service import SpatialService

ENTITY = "LocationAddressComponent"

_LINK_ADAPTER = TypeAdapter(LinkResponse)
_LINK_LIST_ADAPTER = TypeAdapter(list[LinkResponse])

# Request field -> model attribute for fields a link write may set.
_UPDATABLE_FIELDS: dict[str, str] = {
    "label": "label",
    "sequence": "sequence",
    "is_primary": "is_primary",
    "metadata": "extra_metadata",
}

LinkKey = tuple[uuid.UUID, uuid.UUID]


def center_point_patch(data: Any, *, clear: bool = False) -> GeometryPatch:
    """Build the center point patch for a link write.

    Raises:
        InvalidGeometryError: On an explicit null, a malformed point, or
            a value combined with the clear flag.
    """
    if "center_point" in data.model_fields_set and data.center_point is None:
        msg = "center_point: null is not accepted; use clear_center_point to remove the point"
        raise InvalidGeometryError(msg)
    value = parse_point(data.center_point) if data.center_point is not None else None
    return GeometryPatch.from_request(value, clear, "center_point")


def link_values(data: Any) -> dict[str, Any]:
    """Collect the updatable fields explicitly present on a request."""
    values = {}
    for name in _UPDATABLE_FIELDS:
        if name in data.model_fields_set:
            value = getattr(data, name)
            if name == "is_primary" and value is None:
                continue
            values[name] = value
    return values


class LocationAddressComponentService:
    """Link store bound to one session and one cache handle."""

    def __init__(
        self,
        session: AsyncSession,
        cache: LocationCache,
        *,
        settings: Settings,
        timeout: float | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.settings = settings
        self.timeout = timeout if timeout is not None else settings.operation_timeout_seconds
        # Links demoted by a promotion, drained by the next invalidate().
        self._demoted: dict[uuid.UUID, uuid.UUID] = {}

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _get_row(self, link_id: uuid.UUID) -> LocationAddressComponent:
        row = await self.session.get(LocationAddressComponent, link_id)
        if row is None:
            raise NotFoundError(ENTITY, link_id)
        return row

    async def _require_location(self, location_id: uuid.UUID) -> None:
        found = await self.session.scalar(
            select(Location.id).where(Location.id == location_id, Location.deleted_at.is_(None))
        )
        if found is None:
            raise NotFoundError("Location", location_id)

    async def _require_component(self, component_id: uuid.UUID) -> None:
        found = await self.session.scalar(select(AddressComponent.id).where(AddressComponent.id == component_id))
        if found is None:
            raise NotFoundError("AddressComponent", component_id)

    async def _find_by_pair(self, location_id: uuid.UUID, component_id: uuid.UUID) -> LocationAddressComponent | None:
        result = await self.session.execute(
            select(LocationAddressComponent).where(
                LocationAddressComponent.location_id == location_id,
                LocationAddressComponent.address_component_id == component_id,
            )
        )
        return result.scalar_one_or_none()

    async def _claim_primary(self, location_id: uuid.UUID, keep_id: uuid.UUID) -> None:
        """Serialize primary changes for a location and demote every other primary link."""
        await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(str(location_id)))))
        result = await self.session.execute(
            update(LocationAddressComponent)
            .where(
                LocationAddressComponent.location_id == location_id,
                LocationAddressComponent.is_primary.is_(True),
                LocationAddressComponent.id != keep_id,
            )
            .values(is_primary=False)
            .returning(LocationAddressComponent.id, LocationAddressComponent.address_component_id)
            .execution_options(synchronize_session="fetch")
        )
        self._demoted.update(result.all())

    async def apply_values(
        self,
        row: LocationAddressComponent,
        values: dict[str, Any],
        center_point: GeometryPatch,
    ) -> None:
        """Apply field values and a point patch to a link, demoting the previous primary first."""
        if values.get("is_primary") is True and not row.is_primary:
            await self._claim_primary(row.location_id, row.id)
        for name, value in values.items():
            setattr(row, _UPDATABLE_FIELDS[name], value)
        center_point.apply_to(row, "center_point")

    async def stage_link(
        self,
        location_id: uuid.UUID,
        component_id: uuid.UUID,
        values: dict[str, Any],
        center_point: GeometryPatch,
    ) -> tuple[LocationAddressComponent, bool]:
        """Insert or update the link for a pair without committing.

        Returns:
            Tuple of (row, created).
        """
        row = await self._find_by_pair(location_id, component_id)
        created = row is None
        if created:
            row = LocationAddressComponent(
                id=uuid.uuid4(),
                location_id=location_id,
                address_component_id=component_id,
                is_primary=False,
            )
        await self.apply_values(row, values, center_point)
        if created:
            self.session.add(row)
        return row, created

    async def invalidate(
        self,
        *,
        link_ids: list[uuid.UUID] | tuple[uuid.UUID, ...] = (),
        location_ids: list[uuid.UUID] | tuple[uuid.UUID, ...] = (),
        component_ids: list[uuid.UUID] | tuple[uuid.UUID, ...] = (),
    ) -> None:
        """Drop cached links and every list or spatial query that could include them.

        Links demoted by an earlier promotion in this service are dropped too,
        along with the component lists that embed them.
        """
        demoted, self._demoted = self._demoted, {}
        keys = [self.cache.key(ns.LINK, lid) for lid in [*link_ids, *demoted]]
        keys += [self.cache.key(ns.LINK_LIST_BY_LOCATION, lid) for lid in location_ids]
        keys += [self.cache.key(ns.LINK_LIST_BY_COMPONENT, cid) for cid in {*component_ids, *demoted.values()}]
        await self.cache.delete(*keys)
        await self.cache.invalidate_namespaces(ns.LINK_GEO)

    async def _invalidate_rows(self, *rows: LocationAddressComponent) -> None:
        await self.invalidate(
            link_ids=[r.id for r in rows],
            location_ids=list({r.location_id for r in rows}),
            component_ids=list({r.address_component_id for r in rows}),
        )

    # ---------------------------------------------------------------------------
    # Read operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def get_link(self, link_id: uuid.UUID) -> LinkResponse:
        """Get one link by ID (cache-aside).

        Raises:
            NotFoundError: If the link does not exist.
        """

        async def load() -> LinkResponse | None:
            row = await self.session.get(LocationAddressComponent, link_id)
            return LinkResponse.model_validate(row) if row is not None else None

        link = await self.cache.read_through(
            self.cache.key(ns.LINK, link_id), load, _LINK_ADAPTER, self.settings.cache_ttl_seconds
        )
        if link is None:
            raise NotFoundError(ENTITY, link_id)
        return link

    async def _load_by_location(self, location_id: uuid.UUID) -> list[LinkResponse]:
        result = await self.session.execute(
            select(LocationAddressComponent)
            .where(LocationAddressComponent.location_id == location_id)
            .order_by(LocationAddressComponent.sequence.asc().nulls_last(), LocationAddressComponent.created_at)
        )
        return [LinkResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_by_location(self, location_id: uuid.UUID) -> list[LinkResponse]:
        """List a location's links ordered by sequence (nulls last), cache-aside."""
        return await self.cache.read_through(
            self.cache.key(ns.LINK_LIST_BY_LOCATION, location_id),
            lambda: self._load_by_location(location_id),
            _LINK_LIST_ADAPTER,
            self.settings.cache_list_ttl_seconds,
        )

    @store_operation
    async def get_by_address_component(self, component_id: uuid.UUID) -> list[LinkResponse]:
        """List every link that references a component, cache-aside."""

        async def load() -> list[LinkResponse]:
            result = await self.session.execute(
                select(LocationAddressComponent)
                .where(LocationAddressComponent.address_component_id == component_id)
                .order_by(LocationAddressComponent.created_at)
            )
            return [LinkResponse.model_validate(row) for row in result.scalars().all()]

        return await self.cache.read_through(
            self.cache.key(ns.LINK_LIST_BY_COMPONENT, component_id),
            load,
            _LINK_LIST_ADAPTER,
            self.settings.cache_list_ttl_seconds,
        )

    @store_operation
    async def get_primary_component(self, location_id: uuid.UUID) -> LinkResponse | None:
        """Return the primary link of a location, or None when none is flagged."""
        result = await self.session.execute(
            select(LocationAddressComponent).where(
                LocationAddressComponent.location_id == location_id,
                LocationAddressComponent.is_primary.is_(True),
            )
        )
        row = result.scalars().first()
        return LinkResponse.model_validate(row) if row is not None else None

    @store_operation
    async def find_components_near_point(
        self,
        point: Any,
        distance_meters: float,
        limit: int | None = None,
    ) -> list[LinkDistanceResponse]:
        """Links whose point lies within ``distance_meters`` (geodesic), nearest first."""
        spatial = SpatialService(self.session, self.cache, settings=self.settings)
        return await spatial.find_components_near_point(point, distance_meters, limit)

    # ---------------------------------------------------------------------------
    # Write operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def create_link(self, data: LinkCreateRequest) -> LinkResponse:
        """Create a link between an existing location and component.

        Raises:
            NotFoundError: If either side does not exist.
            ConstraintViolationError: If the pair is already linked.
        """
        patch = center_point_patch(data)
        await self._require_location(data.location_id)
        await self._require_component(data.address_component_id)
        if await self._find_by_pair(data.location_id, data.address_component_id) is not None:
            msg = f"Location {data.location_id} is already linked to address component {data.address_component_id}"
            raise ConstraintViolationError(
                msg,
                context={"location_id": data.location_id, "address_component_id": data.address_component_id},
            )
        async with atomic(self.session, "create link", timeout=self.timeout):
            row, _ = await self.stage_link(
                data.location_id,
                data.address_component_id,
                {**link_values(data), "is_primary": data.is_primary},
                patch,
            )
        await self.session.refresh(row)
        await self._invalidate_rows(row)
        logger.info(f"Linked location {row.location_id} to address component {row.address_component_id} ({row.id})")
        return LinkResponse.model_validate(row)

    @store_operation
    async def update_link(self, link_id: uuid.UUID, data: LinkUpdateRequest) -> LinkResponse:
        """Partially update a link.

        Raises:
            NotFoundError: If the link does not exist.
            InvalidGeometryError: On a malformed or contradictory point update.
        """
        patch = center_point_patch(data, clear=data.clear_center_point)
        row = await self._get_row(link_id)
        async with atomic(self.session, "update link", timeout=self.timeout):
            await self.apply_values(row, link_values(data), patch)
        await self.session.refresh(row)
        await self._invalidate_rows(row)
        logger.info(f"Updated link {link_id}")
        return LinkResponse.model_validate(row)

    @store_operation
    async def clear_center_point(self, link_id: uuid.UUID) -> LinkResponse:
        """Set a link's point to null."""
        row = await self._get_row(link_id)
        async with atomic(self.session, "clear link center point", timeout=self.timeout):
            GeometryPatch.clear().apply_to(row, "center_point")
        await self.session.refresh(row)
        await self._invalidate_rows(row)
        logger.info(f"Cleared center point of link {link_id}")
        return LinkResponse.model_validate(row)

    @store_operation
    async def delete_link(self, link_id: uuid.UUID) -> None:
        """Delete one link.

        Raises:
            NotFoundError: If the link does not exist.
        """
        row = await self._get_row(link_id)
        async with atomic(self.session, "delete link", timeout=self.timeout):
            await self.session.delete(row)
        await self._invalidate_rows(row)
        logger.info(f"Deleted link {link_id}")

    @store_operation
    async def bulk_delete_links(self, link_ids: list[uuid.UUID]) -> int:
        """Delete a set of links in one transaction.

        Raises:
            NotFoundError: If any id does not exist (nothing is deleted).
        """
        ids = set(link_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            select(LocationAddressComponent).where(LocationAddressComponent.id.in_(ids))
        )
        rows = list(result.scalars().all())
        missing = ids - {r.id for r in rows}
        if missing:
            raise NotFoundError(ENTITY, sorted(str(m) for m in missing))
        async with atomic(self.session, "bulk delete links", timeout=self.timeout, bulk=True):
            await self.session.execute(delete(LocationAddressComponent).where(LocationAddressComponent.id.in_(ids)))
        await self._invalidate_rows(*rows)
        logger.info(f"Bulk deleted {len(rows)} link(s)")
        return len(rows)

    @staticmethod
    def _pair(data: LinkUpsertRequest, index: int | None = None) -> LinkKey:
        missing = [name for name in ("location_id", "address_component_id") if getattr(data, name) is None]
        if missing:
            where = f" at row {index}" if index is not None else ""
            msg = f"Link upsert requires {' and '.join(missing)}{where}"
            raise ValidationError(msg, context={"missing": missing, "row": index})
        return data.location_id, data.address_component_id

    @store_operation
    async def upsert_link(self, data: LinkUpsertRequest) -> LinkResponse:
        """Insert or update the link for ``(location_id, address_component_id)``.

        Raises:
            ValidationError: If either id is missing.
            NotFoundError: If either side does not exist.
        """
        location_id, component_id = self._pair(data)
        patch = center_point_patch(data)
        await self._require_location(location_id)
        await self._require_component(component_id)
        async with atomic(self.session, "upsert link", timeout=self.timeout):
            row, created = await self.stage_link(location_id, component_id, link_values(data), patch)
        await self.session.refresh(row)
        await self._invalidate_rows(row)
        logger.info(f"{'Inserted' if created else 'Updated'} link {row.id}")
        return LinkResponse.model_validate(row)

    @store_operation
    async def bulk_upsert_links(self, rows: list[LinkUpsertRequest]) -> UpsertCounts:
        """Upsert many links in one all-or-nothing transaction.

        Existing pairs are updated field by field (label, sequence, primary
        flag, metadata and the point when one is supplied); new pairs are
        inserted.

        Raises:
            ValidationError: If a row lacks an id, a pair repeats in the batch,
                or a referenced row does not exist.  Nothing is written.
            TransactionFailureError: If the store fails mid-batch (rolled back).
        """
        staged: list[tuple[LinkKey, dict[str, Any], GeometryPatch]] = []
        seen: set[LinkKey] = set()
        for index, data in enumerate(rows):
            pair = self._pair(data, index)
            if pair in seen:
                msg = f"Duplicate link pair in batch at row {index}"
                raise ValidationError(
                    msg, context={"row": index, "location_id": pair[0], "address_component_id": pair[1]}
                )
            seen.add(pair)
            staged.append((pair, link_values(data), center_point_patch(data)))

        location_ids = {pair[0] for pair in seen}
        component_ids = {pair[1] for pair in seen}
        found_locations = await self.session.execute(
            select(Location.id).where(Location.id.in_(location_ids), Location.deleted_at.is_(None))
        )
        found_components = await self.session.execute(
            select(AddressComponent.id).where(AddressComponent.id.in_(component_ids))
        )
        missing_locations = location_ids - set(found_locations.scalars().all())
        missing_components = component_ids - set(found_components.scalars().all())
        if missing_locations or missing_components:
            msg = "Batch references rows that do not exist"
            raise ValidationError(
                msg,
                context={
                    "missing_locations": sorted(str(i) for i in missing_locations),
                    "missing_address_components": sorted(str(i) for i in missing_components),
                },
            )

        counts = UpsertCounts()
        touched: list[LocationAddressComponent] = []
        async with atomic(self.session, "bulk upsert links", timeout=self.timeout, bulk=True):
            for (location_id, component_id), values, patch in staged:
                row, created = await self.stage_link(location_id, component_id, values, patch)
                touched.append(row)
                if created:
                    counts.inserted += 1
                else:
                    counts.updated += 1
        await self._invalidate_rows(*touched)
        logger.info(f"Bulk upserted links: {counts.inserted} inserted, {counts.updated} updated")
        return counts

    @store_operation
    async def reorder_sequences(self, location_id: uuid.UUID, ordered_ids: list[uuid.UUID]) -> list[LinkResponse]:
        """Assign ``sequence = 1..N`` to a location's links in the given order.

        Raises:
            NotFoundError: If the location does not exist.
            ValidationError: If an id repeats or is not a link of the location.
        """
        await self._require_location(location_id)
        if len(set(ordered_ids)) != len(ordered_ids):
            msg = "Reorder list contains duplicate link ids"
            raise ValidationError(msg, context={"location_id": location_id})
        result = await self.session.execute(
            select(LocationAddressComponent).where(LocationAddressComponent.location_id == location_id)
        )
        by_id = {row.id: row for row in result.scalars().all()}
        strangers = [str(link_id) for link_id in ordered_ids if link_id not in by_id]
        if strangers:
            msg = f"Link ids do not belong to location {location_id}"
            raise ValidationError(msg, context={"location_id": location_id, "ids": strangers})

        async with atomic(self.session, "reorder link sequences", timeout=self.timeout, bulk=True):
            for position, link_id in enumerate(ordered_ids, start=1):
                by_id[link_id].sequence = position
        await self._invalidate_rows(*by_id.values())
        logger.info(f"Reordered {len(ordered_ids)} link(s) of location {location_id}")
        return await self._load_by_location(location_id)

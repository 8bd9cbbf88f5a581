"""Location service -- service-area CRUD over a closure-table tree.

Every location owns a depth-0 self row in ``location_closure`` plus one row
per ancestor.  Tree reads are single joins against that table; a move
detaches the whole subtree from its old ancestor chain and re-attaches it
under the new parent's chain inside one transaction.

Geometry updates are three-state per field (unchanged / clear / set).  An
explicit ``null`` geometry is rejected; callers clear a field through its
``clear_*`` flag.
"""

import uuid
from datetime import UTC, datetime

from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy import delete, exists, func, insert, literal, or_, select, true
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from location_api.core import cache as ns
from location_api.core.cache import LocationCache
from location_api.core.config import Settings
from location_api.core.database import atomic, store_operation
from location_api.core.exceptions import CycleError, NotFoundError, ValidationError
from location_api.lib.geo import GeometryPatch, InvalidGeometryError, parse_point, parse_polygon, to_db_geometry
from location_api.lib.hierarchy import TreeNode, build_forest, build_subtree
from location_api.models.address_component import AddressComponent
from location_api.models.location import Location, LocationClosure
from location_api.models.location_address_component import LocationAddressComponent
from location_api.schemas.address_component import AddressComponentResponse
from location_api.schemas.common import page_count
from location_api.schemas.location import (
    LocationComponentInput,
    LocationCreateRequest,
    LocationFilter,
    LocationResponse,
    LocationSort,
    LocationTreeNode,
    LocationUpdateRequest,
    LocationUpsertRequest,
    PaginatedLocationResponse,
)
from location_api.schemas.location_address_component import LinkResponse
from location_api.services.address_component_service import AddressComponentService
from location_api.services.location_address_component_service import (
    LocationAddressComponentService,
    center_point_patch,
    link_values,
)

ENTITY = "Location"

_LOCATION_ADAPTER = TypeAdapter(LocationResponse)
_PAGE_ADAPTER = TypeAdapter(PaginatedLocationResponse)

# Text fields that may be set via update.  Anything outside this set is
# ignored, preventing mass-assignment of internal fields such as
# ``deleted_at`` or ``id``.
_TEXT_FIELDS: tuple[str, ...] = ("local_area_name", "county", "town", "street", "coverage_details")
_REQUIRED_FIELDS: frozenset[str] = frozenset({"local_area_name", "county"})

_SORT_ORDER = {
    LocationSort.NAME_ASC: (Location.local_area_name.asc(), Location.id),
    LocationSort.NAME_DESC: (Location.local_area_name.desc(), Location.id),
    LocationSort.CREATED_ASC: (Location.created_at.asc(), Location.id),
    LocationSort.CREATED_DESC: (Location.created_at.desc(), Location.id),
}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _tree_node(node: TreeNode) -> LocationTreeNode:
    base = LocationResponse.model_validate(node.item).model_dump()
    return LocationTreeNode.model_validate({**base, "children": [_tree_node(child) for child in node.children]})


def _geometry_patches(data: LocationUpdateRequest) -> tuple[GeometryPatch, GeometryPatch]:
    fields = data.model_fields_set
    for name in ("center_point", "geofence"):
        if name in fields and getattr(data, name) is None:
            msg = f"{name}: null is not accepted; use clear_{name} to remove it"
            raise InvalidGeometryError(msg)
    center = parse_point(data.center_point) if data.center_point is not None else None
    fence = parse_polygon(data.geofence) if data.geofence is not None else None
    return (
        GeometryPatch.from_request(center, data.clear_center_point, "center_point"),
        GeometryPatch.from_request(fence, data.clear_geofence, "geofence"),
    )


class LocationService:
    """Location store bound to one session and one cache handle."""

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
        self.links = LocationAddressComponentService(session, cache, settings=settings, timeout=self.timeout)
        self.components = AddressComponentService(session, cache, settings=settings, timeout=self.timeout)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _get_row(self, location_id: uuid.UUID) -> Location:
        result = await self.session.execute(
            select(Location).where(Location.id == location_id, Location.deleted_at.is_(None))
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(ENTITY, location_id)
        return row

    async def _require_parent(self, parent_id: uuid.UUID) -> None:
        found = await self.session.scalar(
            select(Location.id).where(Location.id == parent_id, Location.deleted_at.is_(None))
        )
        if found is None:
            raise NotFoundError(ENTITY, parent_id)

    async def _is_descendant(self, node_id: uuid.UUID, candidate_id: uuid.UUID) -> bool:
        return bool(
            await self.session.scalar(
                select(
                    exists().where(
                        LocationClosure.ancestor_id == node_id,
                        LocationClosure.descendant_id == candidate_id,
                        LocationClosure.depth > 0,
                    )
                )
            )
        )

    async def _check_move(self, node_id: uuid.UUID, new_parent_id: uuid.UUID | None) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == node_id:
            raise CycleError(ENTITY, node_id, new_parent_id)
        await self._require_parent(new_parent_id)
        if await self._is_descendant(node_id, new_parent_id):
            raise CycleError(ENTITY, node_id, new_parent_id)

    async def _insert_closure(self, node_id: uuid.UUID, parent_id: uuid.UUID | None) -> None:
        """Write the self row and one row per ancestor of the parent."""
        await self.session.execute(insert(LocationClosure).values(ancestor_id=node_id, descendant_id=node_id, depth=0))
        if parent_id is not None:
            await self.session.execute(
                insert(LocationClosure).from_select(
                    ["ancestor_id", "descendant_id", "depth"],
                    select(
                        LocationClosure.ancestor_id,
                        literal(node_id, UUID(as_uuid=True)),
                        LocationClosure.depth + 1,
                    ).where(LocationClosure.descendant_id == parent_id),
                )
            )

    async def _rewire_closure(self, node_id: uuid.UUID, new_parent_id: uuid.UUID | None) -> None:
        """Detach the subtree of ``node_id`` from its ancestors and attach it under ``new_parent_id``."""
        subtree = aliased(LocationClosure)
        subtree_ids = select(subtree.descendant_id).where(subtree.ancestor_id == node_id)
        await self.session.execute(
            delete(LocationClosure).where(
                LocationClosure.descendant_id.in_(subtree_ids),
                LocationClosure.ancestor_id.not_in(subtree_ids),
            ).execution_options(synchronize_session=False)
        )
        if new_parent_id is None:
            return
        supertree = aliased(LocationClosure)
        sub = aliased(LocationClosure)
        await self.session.execute(
            insert(LocationClosure).from_select(
                ["ancestor_id", "descendant_id", "depth"],
                select(supertree.ancestor_id, sub.descendant_id, supertree.depth + sub.depth + 1)
                .select_from(supertree)
                .join(sub, true())
                .where(supertree.descendant_id == new_parent_id, sub.ancestor_id == node_id),
            )
        )

    async def _check_components(self, components: list[LocationComponentInput]) -> None:
        """Validate a component batch before any write."""
        ids = [c.address_component_id for c in components]
        if len(set(ids)) != len(ids):
            msg = "Address component ids repeat in the request"
            raise ValidationError(msg, context={"address_component_ids": [str(i) for i in ids]})
        if sum(1 for c in components if c.is_primary) > 1:
            msg = "At most one address component may be marked primary"
            raise ValidationError(msg)
        if not ids:
            return
        found = await self.session.execute(select(AddressComponent.id).where(AddressComponent.id.in_(ids)))
        missing = set(ids) - set(found.scalars().all())
        if missing:
            msg = "Address components do not exist"
            raise ValidationError(msg, context={"missing": sorted(str(m) for m in missing)})

    async def _stage_components(
        self,
        location_id: uuid.UUID,
        components: list[LocationComponentInput],
        *,
        replace_existing: bool,
    ) -> None:
        if replace_existing:
            await self.session.execute(
                delete(LocationAddressComponent).where(LocationAddressComponent.location_id == location_id)
            )
        for component in components:
            await self.links.stage_link(
                location_id,
                component.address_component_id,
                {**link_values(component), "is_primary": component.is_primary},
                center_point_patch(component),
            )

    async def _invalidate(self, *location_ids: uuid.UUID, links: bool = False) -> None:
        await self.cache.delete(*(self.cache.key(ns.LOCATION, lid) for lid in location_ids))
        await self.cache.invalidate_namespaces(ns.LOCATION_LIST, ns.LOCATION_GEO)
        if links:
            await self.cache.invalidate_namespaces(ns.LINK, ns.LINK_LIST_BY_COMPONENT)
            await self.links.invalidate(location_ids=list(location_ids))

    # ---------------------------------------------------------------------------
    # Read operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def get(self, location_id: uuid.UUID) -> LocationResponse:
        """Get one live location by ID (cache-aside).

        Raises:
            NotFoundError: If the location does not exist or was deleted.
        """

        async def load() -> LocationResponse | None:
            result = await self.session.execute(
                select(Location).where(Location.id == location_id, Location.deleted_at.is_(None))
            )
            row = result.scalar_one_or_none()
            return LocationResponse.model_validate(row) if row is not None else None

        location = await self.cache.read_through(
            self.cache.key(ns.LOCATION, location_id),
            load,
            _LOCATION_ADAPTER,
            self.settings.cache_ttl_seconds,
        )
        if location is None:
            raise NotFoundError(ENTITY, location_id)
        return location

    @store_operation
    async def get_by_name(self, local_area_name: str) -> list[LocationResponse]:
        """Live locations with the given name (case-insensitive), ordered by county."""
        result = await self.session.execute(
            select(Location)
            .where(
                func.lower(Location.local_area_name) == local_area_name.strip().lower(),
                Location.deleted_at.is_(None),
            )
            .order_by(Location.county)
        )
        return [LocationResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def list_by_county(self, county: str) -> list[LocationResponse]:
        """Live locations in a county, ordered by name."""
        result = await self.session.execute(
            select(Location)
            .where(func.lower(Location.county) == county.strip().lower(), Location.deleted_at.is_(None))
            .order_by(Location.local_area_name)
        )
        return [LocationResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def list_with_filters(self, filters: LocationFilter) -> PaginatedLocationResponse:
        """Filtered, sorted, paginated listing (cache-aside per distinct filter)."""

        async def load() -> PaginatedLocationResponse:
            conditions = [Location.deleted_at.is_(None)]
            if filters.search:
                pattern = f"%{filters.search.strip()}%"
                conditions.append(
                    or_(
                        Location.local_area_name.ilike(pattern),
                        Location.county.ilike(pattern),
                        Location.town.ilike(pattern),
                        Location.street.ilike(pattern),
                    )
                )
            if filters.county:
                conditions.append(Location.county.in_(filters.county))
            if filters.town:
                conditions.append(Location.town.in_(filters.town))
            if filters.root_only:
                conditions.append(Location.parent_id.is_(None))
            elif filters.parent_id is not None:
                conditions.append(Location.parent_id == filters.parent_id)
            if filters.has_geofence is True:
                conditions.append(Location.geofence.is_not(None))
            elif filters.has_geofence is False:
                conditions.append(Location.geofence.is_(None))

            total = (await self.session.execute(select(func.count(Location.id)).where(*conditions))).scalar_one()
            result = await self.session.execute(
                select(Location)
                .where(*conditions)
                .order_by(*_SORT_ORDER[filters.sort])
                .offset(filters.offset)
                .limit(filters.limit)
            )
            rows = result.scalars().all()
            logger.debug(f"Listed {len(rows)} location(s) (total={total}, page={filters.page})")
            return PaginatedLocationResponse(
                data=[LocationResponse.model_validate(row) for row in rows],
                page=filters.page,
                limit=filters.limit,
                total=total,
                total_pages=page_count(total, filters.limit),
            )

        return await self.cache.read_through(
            self.cache.query_key(ns.LOCATION_LIST, filters.model_dump(mode="json")),
            load,
            _PAGE_ADAPTER,
            self.settings.cache_list_ttl_seconds,
        )

    @store_operation
    async def get_ancestors(self, location_id: uuid.UUID) -> list[LocationResponse]:
        """Ancestor chain of a location, root first, excluding the location itself."""
        await self._get_row(location_id)
        result = await self.session.execute(
            select(Location)
            .join(LocationClosure, LocationClosure.ancestor_id == Location.id)
            .where(
                LocationClosure.descendant_id == location_id,
                LocationClosure.depth > 0,
                Location.deleted_at.is_(None),
            )
            .order_by(LocationClosure.depth.desc())
        )
        return [LocationResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_descendants(self, location_id: uuid.UUID) -> list[LocationResponse]:
        """Every descendant of a location ordered by depth then name, excluding the location itself."""
        await self._get_row(location_id)
        result = await self.session.execute(
            select(Location)
            .join(LocationClosure, LocationClosure.descendant_id == Location.id)
            .where(
                LocationClosure.ancestor_id == location_id,
                LocationClosure.depth > 0,
                Location.deleted_at.is_(None),
            )
            .order_by(LocationClosure.depth, Location.local_area_name)
        )
        return [LocationResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_subtree(self, location_id: uuid.UUID) -> LocationTreeNode:
        """The nested tree rooted at a location."""
        await self._get_row(location_id)
        result = await self.session.execute(
            select(Location)
            .join(LocationClosure, LocationClosure.descendant_id == Location.id)
            .where(LocationClosure.ancestor_id == location_id, Location.deleted_at.is_(None))
        )
        root = build_subtree(
            result.scalars().all(),
            location_id,
            id_of=lambda loc: loc.id,
            parent_of=lambda loc: loc.parent_id,
            sort_by=lambda loc: loc.local_area_name,
        )
        if root is None:
            raise NotFoundError(ENTITY, location_id)
        return _tree_node(root)

    @store_operation
    async def get_root_trees(self) -> list[LocationTreeNode]:
        """Every root location with its full nested subtree."""
        root = aliased(Location)
        root_ids = select(root.id).where(root.parent_id.is_(None), root.deleted_at.is_(None))
        result = await self.session.execute(
            select(Location)
            .join(LocationClosure, LocationClosure.descendant_id == Location.id)
            .where(LocationClosure.ancestor_id.in_(root_ids), Location.deleted_at.is_(None))
        )
        forest = build_forest(
            result.scalars().all(),
            id_of=lambda loc: loc.id,
            parent_of=lambda loc: loc.parent_id,
            sort_by=lambda loc: loc.local_area_name,
        )
        return [_tree_node(node) for node in forest]

    @store_operation
    async def get_address_components(self, location_id: uuid.UUID) -> list[AddressComponentResponse]:
        """Address components linked to a location, in link-sequence order."""
        await self._get_row(location_id)
        return await self.components.get_for_location(location_id)

    # ---------------------------------------------------------------------------
    # Write operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def create(self, data: LocationCreateRequest) -> LocationResponse:
        """Create a location, its closure rows and optional component links.

        Raises:
            NotFoundError: If the parent does not exist.
            ValidationError: On malformed geometry or invalid components.
        """
        center = parse_point(data.center_point) if data.center_point is not None else None
        fence = parse_polygon(data.geofence) if data.geofence is not None else None
        if data.parent_id is not None:
            await self._require_parent(data.parent_id)
        if data.components:
            await self._check_components(data.components)

        row = Location(
            id=uuid.uuid4(),
            local_area_name=data.local_area_name.strip(),
            county=data.county.strip(),
            town=_clean(data.town),
            street=_clean(data.street),
            coverage_details=_clean(data.coverage_details),
            parent_id=data.parent_id,
            center_point=to_db_geometry(center) if center is not None else None,
            geofence=to_db_geometry(fence) if fence is not None else None,
            extra_metadata=data.metadata,
        )
        async with atomic(self.session, "create location", timeout=self.timeout):
            self.session.add(row)
            await self.session.flush()
            await self._insert_closure(row.id, row.parent_id)
            if data.components:
                await self._stage_components(row.id, data.components, replace_existing=False)
        await self.session.refresh(row)
        await self._invalidate(row.id, links=bool(data.components))
        logger.info(f"Created location {row.id} ({row.local_area_name}, {row.county})")
        return LocationResponse.model_validate(row)

    @store_operation
    async def update(self, location_id: uuid.UUID, data: LocationUpdateRequest) -> LocationResponse:
        """Partially update a location.

        A changed ``parent_id`` is performed as a move; ``components`` replaces
        the location's links.

        Raises:
            NotFoundError: If the location or new parent does not exist.
            CycleError: If the new parent is the location or a descendant.
            InvalidGeometryError: On null, malformed or contradictory geometry.
        """
        center_patch, fence_patch = _geometry_patches(data)
        row = await self._get_row(location_id)
        fields = data.model_fields_set
        for name in _REQUIRED_FIELDS & fields:
            if _clean(getattr(data, name)) is None:
                msg = f"{name} cannot be empty"
                raise ValidationError(msg, context={"id": location_id, "field": name})
        reparent = "parent_id" in fields and data.parent_id != row.parent_id
        if reparent:
            await self._check_move(location_id, data.parent_id)
        replace_links = "components" in fields and data.components is not None
        if replace_links:
            await self._check_components(data.components)

        async with atomic(self.session, "update location", timeout=self.timeout):
            for name in _TEXT_FIELDS:
                if name in fields:
                    setattr(row, name, _clean(getattr(data, name)))
            if "metadata" in fields:
                row.extra_metadata = data.metadata
            center_patch.apply_to(row, "center_point")
            fence_patch.apply_to(row, "geofence")
            if reparent:
                await self._rewire_closure(location_id, data.parent_id)
                row.parent_id = data.parent_id
            if replace_links:
                await self._stage_components(location_id, data.components, replace_existing=True)
        await self.session.refresh(row)
        await self._invalidate(location_id, links=replace_links)
        logger.info(f"Updated location {location_id}")
        return LocationResponse.model_validate(row)

    @store_operation
    async def move(self, location_id: uuid.UUID, new_parent_id: uuid.UUID | None) -> LocationResponse:
        """Re-parent a location and rewrite the closure rows of its whole subtree.

        Raises:
            NotFoundError: If the location or new parent does not exist.
            CycleError: If the new parent is the location or one of its descendants.
        """
        row = await self._get_row(location_id)
        if new_parent_id == row.parent_id:
            return LocationResponse.model_validate(row)
        await self._check_move(location_id, new_parent_id)
        async with atomic(self.session, "move location", timeout=self.timeout):
            await self._rewire_closure(location_id, new_parent_id)
            row.parent_id = new_parent_id
        await self.session.refresh(row)
        await self._invalidate(location_id)
        logger.info(f"Moved location {location_id} under {new_parent_id}")
        return LocationResponse.model_validate(row)

    async def _clear_geometry(self, location_id: uuid.UUID, field: str) -> LocationResponse:
        row = await self._get_row(location_id)
        async with atomic(self.session, f"clear location {field}", timeout=self.timeout):
            GeometryPatch.clear().apply_to(row, field)
        await self.session.refresh(row)
        await self._invalidate(location_id)
        logger.info(f"Cleared {field} of location {location_id}")
        return LocationResponse.model_validate(row)

    @store_operation
    async def clear_center_point(self, location_id: uuid.UUID) -> LocationResponse:
        """Set a location's center point to null."""
        return await self._clear_geometry(location_id, "center_point")

    @store_operation
    async def clear_geofence(self, location_id: uuid.UUID) -> LocationResponse:
        """Set a location's geofence to null."""
        return await self._clear_geometry(location_id, "geofence")

    @store_operation
    async def delete(self, location_id: uuid.UUID) -> None:
        """Soft delete a leaf location, dropping its closure rows and links.

        Raises:
            NotFoundError: If the location does not exist.
            ValidationError: If the location still has live children.
        """
        await self.bulk_delete([location_id])

    @store_operation
    async def bulk_delete(self, location_ids: list[uuid.UUID]) -> int:
        """Soft delete a set of locations in one transaction.

        Children are allowed when they are part of the set.

        Returns:
            Number of locations deleted.

        Raises:
            NotFoundError: If any id does not exist (nothing is deleted).
            ValidationError: If a live location outside the set is a child of one inside it.
        """
        ids = set(location_ids)
        if not ids:
            return 0
        found = await self.session.execute(
            select(Location.id).where(Location.id.in_(ids), Location.deleted_at.is_(None))
        )
        missing = ids - set(found.scalars().all())
        if missing:
            raise NotFoundError(ENTITY, next(iter(missing)) if len(missing) == 1 else sorted(str(m) for m in missing))
        children = (
            await self.session.execute(
                select(func.count(Location.id)).where(
                    Location.parent_id.in_(ids),
                    Location.id.not_in(ids),
                    Location.deleted_at.is_(None),
                )
            )
        ).scalar_one()
        if children:
            msg = f"{children} live child location(s) still reference the location(s); move or delete them first"
            raise ValidationError(msg, context={"ids": sorted(str(i) for i in ids), "children": children})

        async with atomic(self.session, "delete locations", timeout=self.timeout, bulk=len(ids) > 1):
            await self.session.execute(
                delete(LocationClosure).where(
                    or_(LocationClosure.descendant_id.in_(ids), LocationClosure.ancestor_id.in_(ids))
                ).execution_options(synchronize_session=False)
            )
            await self.session.execute(
                delete(LocationAddressComponent).where(LocationAddressComponent.location_id.in_(ids))
            )
            result = await self.session.execute(
                select(Location).where(Location.id.in_(ids), Location.deleted_at.is_(None))
            )
            now = datetime.now(UTC)
            for row in result.scalars().all():
                row.deleted_at = now
        await self._invalidate(*ids, links=True)
        logger.info(f"Soft deleted {len(ids)} location(s)")
        return len(ids)

    @store_operation
    async def upsert_by_name_county(self, data: LocationUpsertRequest) -> LocationResponse:
        """Insert or update the live location keyed on ``(local_area_name, county)``.

        Raises:
            ValidationError: If either key field is missing.
        """
        name = _clean(data.local_area_name)
        county = _clean(data.county)
        missing = [field for field, value in (("local_area_name", name), ("county", county)) if value is None]
        if missing:
            msg = f"Location upsert requires {' and '.join(missing)}"
            raise ValidationError(msg, context={"missing": missing})

        result = await self.session.execute(
            select(Location.id).where(
                Location.local_area_name == name,
                Location.county == county,
                Location.deleted_at.is_(None),
            )
        )
        existing_id = result.scalars().first()
        payload = data.model_dump(exclude_unset=True, exclude={"local_area_name", "county"})
        if existing_id is None:
            return await self.create(LocationCreateRequest(local_area_name=name, county=county, **payload))
        return await self.update(existing_id, LocationUpdateRequest(**payload))

    @store_operation
    async def attach_address_components(
        self,
        location_id: uuid.UUID,
        components: list[LocationComponentInput],
        *,
        replace_existing: bool = False,
    ) -> list[LinkResponse]:
        """Link address components to a location, optionally replacing its current links.

        Raises:
            NotFoundError: If the location does not exist.
            ValidationError: If a component id is unknown or repeats, or more
                than one component is marked primary.
        """
        await self._get_row(location_id)
        await self._check_components(components)
        async with atomic(self.session, "attach address components", timeout=self.timeout, bulk=True):
            await self._stage_components(location_id, components, replace_existing=replace_existing)
        await self._invalidate(location_id, links=True)
        logger.info(
            f"Attached {len(components)} address component(s) to location {location_id} (replace={replace_existing})"
        )
        return await self.links.get_by_location(location_id)

"""Address component service -- taxonomy CRUD, natural-key upserts and recursive hierarchy walks.

Components form an adjacency-list tree over ``parent_component_id``.
Ancestor and descendant sets are computed per call with a recursive CTE
bounded by ``settings.hierarchy_max_depth``.
"""

import uuid

from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy import delete, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from location_api.core import cache as ns
from location_api.core.cache import LocationCache
from location_api.core.config import Settings
from location_api.core.database import atomic, store_operation
from location_api.core.exceptions import CycleError, NotFoundError, ValidationError
from location_api.models.address_component import AddressComponent
from location_api.models.location_address_component import LocationAddressComponent
from location_api.schemas.address_component import (
    AddressComponentCreateRequest,
    AddressComponentFilter,
    AddressComponentResponse,
    AddressComponentUpdateRequest,
    AddressComponentUpsertRequest,
    PaginatedAddressComponentResponse,
)
from location_api.schemas.common import UpsertCounts, page_count

ENTITY = "AddressComponent"

_COMPONENT_ADAPTER = TypeAdapter(AddressComponentResponse)
_PAGE_ADAPTER = TypeAdapter(PaginatedAddressComponentResponse)

# Natural key: (type, value, parent_component_id) with a null parent as a key of its own.
NaturalKey = tuple[str, str, uuid.UUID | None]


class AddressComponentService:
    """Address taxonomy store bound to one session and one cache handle."""

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

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _get_row(self, component_id: uuid.UUID) -> AddressComponent:
        row = await self.session.get(AddressComponent, component_id)
        if row is None:
            raise NotFoundError(ENTITY, component_id)
        return row

    async def _require_parent(self, parent_id: uuid.UUID) -> None:
        found = await self.session.scalar(select(AddressComponent.id).where(AddressComponent.id == parent_id))
        if found is None:
            raise NotFoundError(ENTITY, parent_id)

    def _ancestor_walk(self, component_id: uuid.UUID):
        """Recursive CTE of (id, depth) walking parent links upward from ``component_id``."""
        walk = (
            select(
                AddressComponent.id,
                AddressComponent.parent_component_id,
                literal(0).label("depth"),
            )
            .where(AddressComponent.id == component_id)
            .cte("ancestor_walk", recursive=True)
        )
        parent = aliased(AddressComponent)
        return walk.union_all(
            select(parent.id, parent.parent_component_id, (walk.c.depth + 1).label("depth"))
            .join(walk, parent.id == walk.c.parent_component_id)
            .where(walk.c.depth < self.settings.hierarchy_max_depth)
        )

    def _descendant_walk(self, component_id: uuid.UUID):
        """Recursive CTE of (id, depth) walking child links downward from ``component_id``."""
        walk = (
            select(AddressComponent.id, literal(0).label("depth"))
            .where(AddressComponent.id == component_id)
            .cte("descendant_walk", recursive=True)
        )
        child = aliased(AddressComponent)
        return walk.union_all(
            select(child.id, (walk.c.depth + 1).label("depth"))
            .join(walk, child.parent_component_id == walk.c.id)
            .where(walk.c.depth < self.settings.hierarchy_max_depth)
        )

    async def _descendant_ids(self, component_id: uuid.UUID) -> set[uuid.UUID]:
        walk = self._descendant_walk(component_id)
        result = await self.session.execute(select(walk.c.id).where(walk.c.depth > 0))
        return set(result.scalars().all())

    async def _check_reparent(self, row: AddressComponent, new_parent_id: uuid.UUID | None) -> None:
        """Reject a re-parent that would create a cycle or point at a missing row."""
        if new_parent_id is None:
            return
        if new_parent_id == row.id:
            raise CycleError(ENTITY, row.id, new_parent_id)
        await self._require_parent(new_parent_id)
        if new_parent_id in await self._descendant_ids(row.id):
            raise CycleError(ENTITY, row.id, new_parent_id)

    @staticmethod
    def _natural_key(data: AddressComponentUpsertRequest) -> NaturalKey:
        type_ = (data.type or "").strip()
        value = (data.value or "").strip()
        missing = [name for name, v in (("type", type_), ("value", value)) if not v]
        if missing:
            msg = f"Address component upsert requires {' and '.join(missing)}"
            raise ValidationError(msg, context={"missing": missing})
        return type_, value, data.parent_component_id

    async def _find_by_key(self, key: NaturalKey) -> AddressComponent | None:
        type_, value, parent_id = key
        result = await self.session.execute(
            select(AddressComponent).where(
                AddressComponent.type == type_,
                AddressComponent.value == value,
                AddressComponent.parent_component_id.is_not_distinct_from(parent_id),
            )
        )
        return result.scalar_one_or_none()

    async def _stage_upsert(self, key: NaturalKey, data: AddressComponentUpsertRequest) -> tuple[AddressComponent, bool]:
        """Insert or update the row for ``key`` without committing.

        Returns:
            Tuple of (row, created).
        """
        row = await self._find_by_key(key)
        if row is None:
            type_, value, parent_id = key
            row = AddressComponent(
                id=uuid.uuid4(),
                type=type_,
                value=value,
                parent_component_id=parent_id,
                extra_metadata=data.metadata,
            )
            self.session.add(row)
            return row, True
        if "metadata" in data.model_fields_set:
            row.extra_metadata = data.metadata
        return row, False

    async def _invalidate(self, *component_ids: uuid.UUID, links: bool = False) -> None:
        await self.cache.delete(*(self.cache.key(ns.ADDRESS_COMPONENT, cid) for cid in component_ids))
        await self.cache.invalidate_namespaces(ns.ADDRESS_COMPONENT_LIST)
        if links:
            await self.cache.invalidate_namespaces(
                ns.LINK,
                ns.LINK_LIST_BY_LOCATION,
                ns.LINK_LIST_BY_COMPONENT,
                ns.LINK_GEO,
            )

    # ---------------------------------------------------------------------------
    # Read operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def get(self, component_id: uuid.UUID) -> AddressComponentResponse:
        """Get one address component by ID (cache-aside).

        Raises:
            NotFoundError: If the component does not exist.
        """

        async def load() -> AddressComponentResponse | None:
            row = await self.session.get(AddressComponent, component_id)
            return AddressComponentResponse.model_validate(row) if row is not None else None

        component = await self.cache.read_through(
            self.cache.key(ns.ADDRESS_COMPONENT, component_id),
            load,
            _COMPONENT_ADAPTER,
            self.settings.cache_ttl_seconds,
        )
        if component is None:
            raise NotFoundError(ENTITY, component_id)
        return component

    @store_operation
    async def get_by_type_and_value(self, type_: str, value: str) -> AddressComponentResponse:
        """Get the component with the given type and value, preferring roots.

        Raises:
            NotFoundError: If no component matches.
        """
        result = await self.session.execute(
            select(AddressComponent)
            .where(AddressComponent.type == type_.strip(), AddressComponent.value == value.strip())
            .order_by(AddressComponent.parent_component_id.is_not(None), AddressComponent.created_at)
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(ENTITY, f"{type_}={value}")
        return AddressComponentResponse.model_validate(row)

    @store_operation
    async def list_by_types(self, types: list[str]) -> list[AddressComponentResponse]:
        """List every component whose type is in ``types``, ordered by type then value."""
        if not types:
            return []
        result = await self.session.execute(
            select(AddressComponent)
            .where(AddressComponent.type.in_(types))
            .order_by(AddressComponent.type, AddressComponent.value)
        )
        return [AddressComponentResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_children(self, parent_id: uuid.UUID) -> list[AddressComponentResponse]:
        """List the direct children of a component, ordered by value."""
        await self._get_row(parent_id)
        result = await self.session.execute(
            select(AddressComponent)
            .where(AddressComponent.parent_component_id == parent_id)
            .order_by(AddressComponent.type, AddressComponent.value)
        )
        return [AddressComponentResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_ancestors(self, component_id: uuid.UUID) -> list[AddressComponentResponse]:
        """Return the ancestor chain of a component, root first, excluding the component itself.

        Raises:
            NotFoundError: If the component does not exist.
        """
        await self._get_row(component_id)
        walk = self._ancestor_walk(component_id)
        result = await self.session.execute(
            select(AddressComponent)
            .join(walk, AddressComponent.id == walk.c.id)
            .where(walk.c.depth > 0)
            .order_by(walk.c.depth.desc())
        )
        return [AddressComponentResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def get_descendants(self, component_id: uuid.UUID) -> list[AddressComponentResponse]:
        """Return every descendant of a component ordered by depth then value.

        Raises:
            NotFoundError: If the component does not exist.
        """
        await self._get_row(component_id)
        walk = self._descendant_walk(component_id)
        result = await self.session.execute(
            select(AddressComponent)
            .join(walk, AddressComponent.id == walk.c.id)
            .where(walk.c.depth > 0)
            .order_by(walk.c.depth, AddressComponent.value)
        )
        return [AddressComponentResponse.model_validate(row) for row in result.scalars().all()]

    @store_operation
    async def search_paginated(self, filters: AddressComponentFilter) -> PaginatedAddressComponentResponse:
        """Search components with pagination (cache-aside per distinct filter)."""

        async def load() -> PaginatedAddressComponentResponse:
            conditions = []
            if filters.q:
                pattern = f"%{filters.q.strip()}%"
                conditions.append(or_(AddressComponent.type.ilike(pattern), AddressComponent.value.ilike(pattern)))
            if filters.types:
                conditions.append(AddressComponent.type.in_(filters.types))
            if filters.root_only:
                conditions.append(AddressComponent.parent_component_id.is_(None))
            elif filters.parent_component_id is not None:
                conditions.append(AddressComponent.parent_component_id == filters.parent_component_id)

            total = (await self.session.execute(select(func.count(AddressComponent.id)).where(*conditions))).scalar_one()
            result = await self.session.execute(
                select(AddressComponent)
                .where(*conditions)
                .order_by(AddressComponent.type, AddressComponent.value)
                .offset(filters.offset)
                .limit(filters.limit)
            )
            rows = result.scalars().all()
            logger.debug(f"Address component search matched {total} row(s) (page={filters.page})")
            return PaginatedAddressComponentResponse(
                data=[AddressComponentResponse.model_validate(row) for row in rows],
                page=filters.page,
                limit=filters.limit,
                total=total,
                total_pages=page_count(total, filters.limit),
            )

        return await self.cache.read_through(
            self.cache.query_key(ns.ADDRESS_COMPONENT_LIST, filters.model_dump(mode="json")),
            load,
            _PAGE_ADAPTER,
            self.settings.cache_list_ttl_seconds,
        )

    @store_operation
    async def get_for_location(self, location_id: uuid.UUID) -> list[AddressComponentResponse]:
        """List the components linked to a location in link-sequence order."""
        result = await self.session.execute(
            select(AddressComponent)
            .join(LocationAddressComponent, LocationAddressComponent.address_component_id == AddressComponent.id)
            .where(LocationAddressComponent.location_id == location_id)
            .order_by(LocationAddressComponent.sequence.asc().nulls_last(), AddressComponent.value)
        )
        return [AddressComponentResponse.model_validate(row) for row in result.scalars().all()]

    # ---------------------------------------------------------------------------
    # Write operations
    # ---------------------------------------------------------------------------

    @store_operation
    async def create(self, data: AddressComponentCreateRequest) -> AddressComponentResponse:
        """Create a component.

        Raises:
            NotFoundError: If the parent does not exist.
            ConstraintViolationError: If the natural key already exists.
        """
        if data.parent_component_id is not None:
            await self._require_parent(data.parent_component_id)
        row = AddressComponent(
            id=uuid.uuid4(),
            type=data.type.strip(),
            value=data.value.strip(),
            parent_component_id=data.parent_component_id,
            extra_metadata=data.metadata,
        )
        async with atomic(self.session, "create address component", timeout=self.timeout):
            self.session.add(row)
        await self.session.refresh(row)
        await self._invalidate(row.id)
        logger.info(f"Created address component {row.id} ({row.type}={row.value})")
        return AddressComponentResponse.model_validate(row)

    @store_operation
    async def update(self, component_id: uuid.UUID, data: AddressComponentUpdateRequest) -> AddressComponentResponse:
        """Apply a partial update; a changed parent goes through the cycle check.

        Raises:
            NotFoundError: If the component or the new parent does not exist.
            CycleError: If the new parent is the component or one of its descendants.
        """
        row = await self._get_row(component_id)
        fields = data.model_fields_set
        async with atomic(self.session, "update address component", timeout=self.timeout):
            for name in ("type", "value"):
                if name in fields:
                    new_value = getattr(data, name)
                    if new_value is None or not new_value.strip():
                        msg = f"Address component {name} cannot be empty"
                        raise ValidationError(msg, context={"id": component_id, "field": name})
                    setattr(row, name, new_value.strip())
            if "parent_component_id" in fields and data.parent_component_id != row.parent_component_id:
                await self._check_reparent(row, data.parent_component_id)
                row.parent_component_id = data.parent_component_id
            if "metadata" in fields:
                row.extra_metadata = data.metadata
        await self.session.refresh(row)
        await self._invalidate(component_id)
        logger.info(f"Updated address component {component_id}")
        return AddressComponentResponse.model_validate(row)

    @store_operation
    async def move(self, component_id: uuid.UUID, new_parent_id: uuid.UUID | None) -> AddressComponentResponse:
        """Re-parent a component (``None`` makes it a root).

        Raises:
            NotFoundError: If the component or the new parent does not exist.
            CycleError: If the new parent is the component or one of its descendants.
        """
        row = await self._get_row(component_id)
        if new_parent_id == row.parent_component_id:
            return AddressComponentResponse.model_validate(row)
        await self._check_reparent(row, new_parent_id)
        async with atomic(self.session, "move address component", timeout=self.timeout):
            row.parent_component_id = new_parent_id
        await self.session.refresh(row)
        await self._invalidate(component_id)
        logger.info(f"Moved address component {component_id} under {new_parent_id}")
        return AddressComponentResponse.model_validate(row)

    @store_operation
    async def delete(self, component_id: uuid.UUID) -> None:
        """Delete a leaf component together with the links that reference it.

        Raises:
            NotFoundError: If the component does not exist.
            ValidationError: If the component still has children.
        """
        row = await self._get_row(component_id)
        children = (
            await self.session.execute(
                select(func.count(AddressComponent.id)).where(AddressComponent.parent_component_id == component_id)
            )
        ).scalar_one()
        if children:
            msg = f"Address component {component_id} has {children} child component(s); delete or move them first"
            raise ValidationError(msg, context={"id": component_id, "children": children})

        async with atomic(self.session, "delete address component", timeout=self.timeout):
            await self.session.execute(
                delete(LocationAddressComponent).where(LocationAddressComponent.address_component_id == component_id)
            )
            await self.session.delete(row)
        await self._invalidate(component_id, links=True)
        logger.info(f"Deleted address component {component_id}")

    @store_operation
    async def bulk_delete(self, component_ids: list[uuid.UUID]) -> int:
        """Delete a set of components in one transaction.

        Children are allowed when they are part of the set; rows are removed
        leaves first so the RESTRICT parent reference never fires.

        Returns:
            Number of components deleted.

        Raises:
            NotFoundError: If any id does not exist (nothing is deleted).
            ValidationError: If a component outside the set still references one inside it.
        """
        ids = set(component_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            select(AddressComponent.id, AddressComponent.parent_component_id).where(AddressComponent.id.in_(ids))
        )
        parents = {row_id: parent_id for row_id, parent_id in result.all()}
        missing = ids - parents.keys()
        if missing:
            raise NotFoundError(ENTITY, sorted(str(m) for m in missing))
        outside = (
            await self.session.execute(
                select(func.count(AddressComponent.id)).where(
                    AddressComponent.parent_component_id.in_(ids),
                    AddressComponent.id.not_in(ids),
                )
            )
        ).scalar_one()
        if outside:
            msg = f"{outside} component(s) outside the delete set still reference it"
            raise ValidationError(msg, context={"ids": sorted(str(i) for i in ids), "children": outside})

        async with atomic(self.session, "bulk delete address components", timeout=self.timeout, bulk=True):
            await self.session.execute(
                delete(LocationAddressComponent).where(LocationAddressComponent.address_component_id.in_(ids))
            )
            remaining = dict(parents)
            while remaining:
                referenced = {p for p in remaining.values() if p in remaining}
                leaves = [cid for cid in remaining if cid not in referenced]
                await self.session.execute(delete(AddressComponent).where(AddressComponent.id.in_(leaves)))
                for cid in leaves:
                    del remaining[cid]
        await self._invalidate(*ids, links=True)
        logger.info(f"Bulk deleted {len(ids)} address component(s)")
        return len(ids)

    @store_operation
    async def upsert_by_type_value_parent(self, data: AddressComponentUpsertRequest) -> AddressComponentResponse:
        """Insert or update the component identified by ``(type, value, parent)``.

        Repeated calls with the same key return the same id.

        Raises:
            ValidationError: If ``type`` or ``value`` is missing.
            NotFoundError: If the parent does not exist.
        """
        key = self._natural_key(data)
        if key[2] is not None:
            await self._require_parent(key[2])
        async with atomic(self.session, "upsert address component", timeout=self.timeout):
            row, created = await self._stage_upsert(key, data)
        await self.session.refresh(row)
        await self._invalidate(row.id)
        logger.info(f"{'Inserted' if created else 'Updated'} address component {row.id} ({key[0]}={key[1]})")
        return AddressComponentResponse.model_validate(row)

    @store_operation
    async def bulk_upsert(self, rows: list[AddressComponentUpsertRequest]) -> UpsertCounts:
        """Upsert many components in one all-or-nothing transaction.

        Raises:
            ValidationError: If a row lacks its key, two rows share a key, or a
                parent does not exist.  Nothing is written.
            TransactionFailureError: If the store fails mid-batch (rolled back).
        """
        keys: list[NaturalKey] = []
        seen: set[NaturalKey] = set()
        for index, data in enumerate(rows):
            key = self._natural_key(data)
            if key in seen:
                msg = f"Duplicate natural key in batch at row {index}: ({key[0]}, {key[1]}, {key[2]})"
                raise ValidationError(msg, context={"row": index, "type": key[0], "value": key[1], "parent": key[2]})
            seen.add(key)
            keys.append(key)

        parent_ids = {key[2] for key in keys if key[2] is not None}
        if parent_ids:
            found = await self.session.execute(select(AddressComponent.id).where(AddressComponent.id.in_(parent_ids)))
            missing = parent_ids - set(found.scalars().all())
            if missing:
                msg = "Batch references parent components that do not exist"
                raise ValidationError(msg, context={"missing": sorted(str(m) for m in missing)})

        counts = UpsertCounts()
        touched: list[uuid.UUID] = []
        async with atomic(self.session, "bulk upsert address components", timeout=self.timeout, bulk=True):
            for key, data in zip(keys, rows, strict=True):
                row, created = await self._stage_upsert(key, data)
                touched.append(row.id)
                if created:
                    counts.inserted += 1
                else:
                    counts.updated += 1
        await self._invalidate(*touched)
        logger.info(f"Bulk upserted address components: {counts.inserted} inserted, {counts.updated} updated")
        return counts

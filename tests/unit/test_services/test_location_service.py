"""Tests for the location service: closure-table maintenance, geometry updates and soft deletes."""

import uuid
from unittest.mock import AsyncMock

import pytest
from geoalchemy2.elements import WKBElement
from shapely.geometry import Point
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError, ProgrammingError

from location_api.core.cache import LocationCache
from location_api.core.config import Settings
from location_api.core.exceptions import (
    CycleError,
    NotFoundError,
    StoreUnavailableError,
    TransactionFailureError,
    ValidationError,
)
from location_api.lib.geo import InvalidGeometryError, to_db_geometry
from location_api.schemas.location import (
    LocationComponentInput,
    LocationCreateRequest,
    LocationFilter,
    LocationSort,
    LocationUpdateRequest,
    LocationUpsertRequest,
)
from location_api.services.location_service import LocationService

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[36.78, -1.30], [36.80, -1.30], [36.80, -1.28], [36.78, -1.28], [36.78, -1.30]]],
}


def _compile_query(query) -> str:
    """Compile a SQLAlchemy statement to a PostgreSQL SQL string for inspection."""
    return str(query.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))


def _executed(session: AsyncMock, index: int) -> str:
    return _compile_query(session.execute.call_args_list[index][0][0]).lower()


@pytest.fixture
def service(mock_session: AsyncMock, cache: LocationCache, settings: Settings) -> LocationService:
    return LocationService(mock_session, cache, settings=settings)


class TestReads:
    async def test_get_returns_live_location(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.return_value = make_result([row])

        location = await service.get(row.id)

        assert location.id == row.id
        assert "locations.deleted_at is null" in _executed(mock_session, 0)

    async def test_get_missing(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])
        with pytest.raises(NotFoundError):
            await service.get(uuid.uuid4())

    async def test_by_name_is_case_insensitive(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])

        await service.get_by_name("  KILIMANI ")

        assert "lower(locations.local_area_name) = 'kilimani'" in _executed(mock_session, 0)

    async def test_list_with_filters(self, service, mock_session, make_result, make_location) -> None:
        rows = [make_location(local_area_name="Kilimani"), make_location(local_area_name="Lavington")]
        mock_session.execute.side_effect = [make_result(scalar=21), make_result(rows)]

        page = await service.list_with_filters(
            LocationFilter(root_only=True, has_geofence=True, sort=LocationSort.NAME_ASC, limit=10, page=2)
        )

        assert page.total == 21
        assert page.total_pages == 3
        assert page.page == 2
        count_sql, rows_sql = _executed(mock_session, 0), _executed(mock_session, 1)
        assert "locations.parent_id is null" in count_sql
        assert "locations.geofence is not null" in count_sql
        assert "order by locations.local_area_name asc" in rows_sql
        assert "offset 10" in rows_sql

    async def test_ancestors_ordered_root_first(self, service, mock_session, make_result, make_location) -> None:
        node, root = make_location(), make_location(local_area_name="Nairobi")
        mock_session.execute.side_effect = [make_result([node]), make_result([root])]

        ancestors = await service.get_ancestors(node.id)

        assert [a.id for a in ancestors] == [root.id]
        sql = _executed(mock_session, 1)
        assert "location_closure.depth > 0" in sql
        assert "order by location_closure.depth desc" in sql

    async def test_subtree_nests_children(self, service, mock_session, make_result, make_location) -> None:
        root = make_location(local_area_name="Nairobi")
        west = make_location(local_area_name="Westlands", parent_id=root.id)
        kili = make_location(local_area_name="Kilimani", parent_id=root.id)
        yaya = make_location(local_area_name="Yaya", parent_id=kili.id)
        mock_session.execute.side_effect = [make_result([root]), make_result([yaya, west, root, kili])]

        tree = await service.get_subtree(root.id)

        assert tree.id == root.id
        assert [c.local_area_name for c in tree.children] == ["Kilimani", "Westlands"]
        assert [c.local_area_name for c in tree.children[0].children] == ["Yaya"]

    async def test_root_trees(self, service, mock_session, make_result, make_location) -> None:
        nairobi = make_location(local_area_name="Nairobi")
        mombasa = make_location(local_area_name="Mombasa", county="Mombasa")
        nyali = make_location(local_area_name="Nyali", county="Mombasa", parent_id=mombasa.id)
        mock_session.execute.return_value = make_result([nyali, nairobi, mombasa])

        trees = await service.get_root_trees()

        assert [t.local_area_name for t in trees] == ["Mombasa", "Nairobi"]
        assert trees[0].children[0].id == nyali.id


class TestReadFailures:
    async def test_lost_connection_on_descendants_is_store_unavailable(
        self, service, mock_session, make_result, make_location
    ) -> None:
        row = make_location()
        mock_session.execute.side_effect = [
            make_result([row]),
            OperationalError("SELECT", {}, Exception("server closed the connection unexpectedly")),
        ]

        with pytest.raises(StoreUnavailableError) as exc_info:
            await service.get_descendants(row.id)

        assert exc_info.value.status_code == 503
        assert exc_info.value.context == {"operation": "LocationService.get_descendants"}

    async def test_failed_filter_query_is_transaction_failure(self, service, mock_session) -> None:
        mock_session.execute.side_effect = ProgrammingError("SELECT", {}, Exception("syntax error"))

        with pytest.raises(TransactionFailureError):
            await service.list_by_county("Nairobi")

    async def test_missing_row_stays_not_found(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])
        with pytest.raises(NotFoundError):
            await service.get_descendants(uuid.uuid4())


class TestCreate:
    async def test_root_writes_self_closure_row(self, service, mock_session) -> None:
        location = await service.create(
            LocationCreateRequest(
                local_area_name=" Kilimani ",
                county="Nairobi",
                center_point={"type": "Point", "coordinates": [36.78, -1.29]},
                geofence=SQUARE,
            )
        )

        assert location.local_area_name == "Kilimani"
        assert location.center_point == {"type": "Point", "coordinates": [36.78, -1.29]}
        assert location.geofence == SQUARE
        assert mock_session.execute.await_count == 1
        sql = _executed(mock_session, 0)
        assert "insert into location_closure" in sql
        assert f"'{location.id}'" in sql
        mock_session.flush.assert_awaited_once()
        mock_session.commit.assert_awaited_once()

    async def test_child_copies_parent_ancestors(self, service, mock_session) -> None:
        parent_id = uuid.uuid4()
        mock_session.scalar.return_value = parent_id

        location = await service.create(
            LocationCreateRequest(local_area_name="Yaya", county="Nairobi", parent_id=parent_id)
        )

        assert location.parent_id == parent_id
        assert mock_session.execute.await_count == 2
        sql = _executed(mock_session, 1)
        assert "insert into location_closure" in sql
        assert "location_closure.depth + 1" in sql
        assert f"location_closure.descendant_id = '{parent_id}'" in sql

    async def test_missing_parent(self, service, mock_session) -> None:
        mock_session.scalar.return_value = None
        with pytest.raises(NotFoundError):
            await service.create(
                LocationCreateRequest(local_area_name="Yaya", county="Nairobi", parent_id=uuid.uuid4())
            )
        mock_session.add.assert_not_called()

    async def test_invalid_geofence_rejected_before_writes(self, service, mock_session) -> None:
        bowtie = {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]]}
        with pytest.raises(InvalidGeometryError):
            await service.create(LocationCreateRequest(local_area_name="X", county="Y", geofence=bowtie))
        mock_session.execute.assert_not_awaited()
        mock_session.add.assert_not_called()

    async def test_two_primary_components_rejected(self, service, mock_session) -> None:
        components = [
            LocationComponentInput(address_component_id=uuid.uuid4(), is_primary=True),
            LocationComponentInput(address_component_id=uuid.uuid4(), is_primary=True),
        ]
        with pytest.raises(ValidationError, match="At most one"):
            await service.create(LocationCreateRequest(local_area_name="X", county="Y", components=components))

    async def test_unknown_component_rejected(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])
        components = [LocationComponentInput(address_component_id=uuid.uuid4())]

        with pytest.raises(ValidationError, match="do not exist"):
            await service.create(LocationCreateRequest(local_area_name="X", county="Y", components=components))

        mock_session.commit.assert_not_awaited()


class TestUpdate:
    async def test_explicit_null_geometry_rejected(self, service, mock_session) -> None:
        with pytest.raises(InvalidGeometryError, match="clear_center_point"):
            await service.update(uuid.uuid4(), LocationUpdateRequest.model_validate({"center_point": None}))
        mock_session.execute.assert_not_awaited()

    async def test_set_and_clear_together_rejected(self, service) -> None:
        with pytest.raises(InvalidGeometryError):
            await service.update(uuid.uuid4(), LocationUpdateRequest(geofence=SQUARE, clear_geofence=True))

    async def test_omitted_geometry_is_untouched(self, service, mock_session, make_result, make_location) -> None:
        stored = to_db_geometry(Point(36.78, -1.29))
        row = make_location(center_point=stored)
        mock_session.execute.return_value = make_result([row])

        location = await service.update(row.id, LocationUpdateRequest(town="Westlands"))

        assert row.center_point is stored
        assert location.town == "Westlands"
        assert location.center_point == {"type": "Point", "coordinates": [36.78, -1.29]}

    async def test_clear_flag_nulls_geofence(self, service, mock_session, make_result, make_location) -> None:
        row = make_location(geofence=to_db_geometry(Point(0, 0).buffer(0.01)))
        mock_session.execute.return_value = make_result([row])

        location = await service.update(row.id, LocationUpdateRequest(clear_geofence=True))

        assert row.geofence is None
        assert location.geofence is None
        mock_session.commit.assert_awaited_once()

    async def test_new_geometry_replaces(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.return_value = make_result([row])

        await service.update(row.id, LocationUpdateRequest(geofence=SQUARE))

        assert isinstance(row.geofence, WKBElement)

    async def test_blank_required_field_rejected(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.return_value = make_result([row])

        with pytest.raises(ValidationError, match="county cannot be empty"):
            await service.update(row.id, LocationUpdateRequest(county="   "))

        mock_session.commit.assert_not_awaited()

    async def test_reparent_under_descendant_is_cycle(
        self, service, mock_session, make_result, make_location
    ) -> None:
        row = make_location()
        descendant_id = uuid.uuid4()
        mock_session.execute.return_value = make_result([row])
        mock_session.scalar.side_effect = [descendant_id, True]

        with pytest.raises(CycleError):
            await service.update(row.id, LocationUpdateRequest(parent_id=descendant_id))

        mock_session.commit.assert_not_awaited()


class TestMove:
    async def test_move_under_self_is_cycle(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.return_value = make_result([row])

        with pytest.raises(CycleError):
            await service.move(row.id, row.id)

    async def test_move_to_current_parent_is_noop(self, service, mock_session, make_result, make_location) -> None:
        parent_id = uuid.uuid4()
        row = make_location(parent_id=parent_id)
        mock_session.execute.return_value = make_result([row])

        await service.move(row.id, parent_id)

        assert mock_session.execute.await_count == 1
        mock_session.commit.assert_not_awaited()

    async def test_move_rewrites_subtree_closure(self, service, mock_session, make_result, make_location) -> None:
        row = make_location(parent_id=uuid.uuid4())
        new_parent_id = uuid.uuid4()
        mock_session.execute.side_effect = [make_result([row]), make_result(), make_result()]
        mock_session.scalar.side_effect = [new_parent_id, False]

        moved = await service.move(row.id, new_parent_id)

        assert moved.parent_id == new_parent_id
        detach, attach = _executed(mock_session, 1), _executed(mock_session, 2)
        assert detach.startswith("delete from location_closure")
        assert "not in" in detach
        assert attach.startswith("insert into location_closure")
        assert "on true" in attach
        assert ".depth + 1" in attach
        mock_session.commit.assert_awaited_once()

    async def test_move_to_root_only_detaches(self, service, mock_session, make_result, make_location) -> None:
        row = make_location(parent_id=uuid.uuid4())
        mock_session.execute.side_effect = [make_result([row]), make_result()]

        moved = await service.move(row.id, None)

        assert moved.parent_id is None
        assert mock_session.execute.await_count == 2


class TestDelete:
    async def test_soft_deletes_leaf(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.side_effect = [
            make_result([row.id]),
            make_result(scalar=0),
            make_result(),
            make_result(),
            make_result([row]),
        ]

        await service.delete(row.id)

        assert row.deleted_at is not None
        assert "delete from location_closure" in _executed(mock_session, 2)
        assert "delete from location_address_components" in _executed(mock_session, 3)
        mock_session.commit.assert_awaited_once()

    async def test_live_children_block_delete(self, service, mock_session, make_result, make_location) -> None:
        row = make_location()
        mock_session.execute.side_effect = [make_result([row.id]), make_result(scalar=1)]

        with pytest.raises(ValidationError, match="live child"):
            await service.delete(row.id)

        assert row.deleted_at is None
        mock_session.commit.assert_not_awaited()

    async def test_missing_location(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])
        with pytest.raises(NotFoundError):
            await service.delete(uuid.uuid4())

    async def test_bulk_delete_empty(self, service, mock_session) -> None:
        assert await service.bulk_delete([]) == 0
        mock_session.execute.assert_not_awaited()


class TestUpsert:
    async def test_missing_key_rejected(self, service) -> None:
        with pytest.raises(ValidationError, match="county"):
            await service.upsert_by_name_county(LocationUpsertRequest(local_area_name="Kilimani"))

    async def test_existing_key_updates(self, service, mock_session, make_result) -> None:
        existing_id = uuid.uuid4()
        mock_session.execute.return_value = make_result([existing_id])
        service.update = AsyncMock()
        service.create = AsyncMock()

        await service.upsert_by_name_county(
            LocationUpsertRequest(local_area_name="Kilimani", county="Nairobi", town="Westlands")
        )

        service.create.assert_not_awaited()
        location_id, update = service.update.await_args.args
        assert location_id == existing_id
        assert update.town == "Westlands"
        assert "local_area_name" not in update.model_fields_set

    async def test_new_key_creates(self, service, mock_session, make_result) -> None:
        mock_session.execute.return_value = make_result([])
        service.update = AsyncMock()
        service.create = AsyncMock()

        await service.upsert_by_name_county(LocationUpsertRequest(local_area_name=" Kilimani ", county="Nairobi"))

        service.update.assert_not_awaited()
        created = service.create.await_args.args[0]
        assert created.local_area_name == "Kilimani"
        assert created.county == "Nairobi"


class TestAttachComponents:
    async def test_duplicate_component_ids_rejected(self, service, mock_session, make_result, make_location) -> None:
        component_id = uuid.uuid4()
        mock_session.execute.return_value = make_result([make_location()])

        with pytest.raises(ValidationError, match="repeat"):
            await service.attach_address_components(
                uuid.uuid4(),
                [
                    LocationComponentInput(address_component_id=component_id),
                    LocationComponentInput(address_component_id=component_id),
                ],
            )

    async def test_replace_existing_clears_links_first(
        self, service, mock_session, make_result, make_location, make_link
    ) -> None:
        location = make_location()
        component_id = uuid.uuid4()
        link = make_link(location_id=location.id, address_component_id=component_id)
        mock_session.execute.side_effect = [
            make_result([location]),
            make_result([component_id]),
            make_result(),
            make_result([]),
            make_result([link]),
        ]

        links = await service.attach_address_components(
            location.id,
            [LocationComponentInput(address_component_id=component_id, label="Ward")],
            replace_existing=True,
        )

        assert [link.id for link in links] == [link.id]
        assert "delete from location_address_components" in _executed(mock_session, 2)
        staged = mock_session.add.call_args[0][0]
        assert staged.label == "Ward"
        assert staged.is_primary is False
        mock_session.commit.assert_awaited_once()

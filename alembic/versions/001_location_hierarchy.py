"""Create location hierarchy tables.

Enables PostGIS and creates address_components, locations, location_closure
and location_address_components with their constraints and spatial indexes.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

import geoalchemy2  # noqa: F401
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _point(name: str) -> sa.Column:
    return sa.Column(
        name,
        geoalchemy2.types.Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=True,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    op.create_table(
        "address_components",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("value", sa.String(100), nullable=False),
        sa.Column("parent_component_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["parent_component_id"], ["address_components.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "type",
            "value",
            "parent_component_id",
            name="uq_address_component_type_value_parent",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index("ix_address_components_parent_component_id", "address_components", ["parent_component_id"])
    op.create_index("ix_address_components_type", "address_components", ["type"])

    op.create_table(
        "locations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("local_area_name", sa.String(100), nullable=False),
        sa.Column("county", sa.String(100), nullable=False),
        sa.Column("town", sa.String(100), nullable=True),
        sa.Column("street", sa.String(100), nullable=True),
        sa.Column("coverage_details", sa.Text(), nullable=True),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
        _point("center_point"),
        sa.Column(
            "geofence",
            geoalchemy2.types.Geometry(geometry_type="POLYGON", srid=4326, spatial_index=False),
            nullable=True,
        ),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["parent_id"], ["locations.id"]),
    )
    op.create_index("idx_locations_center_point", "locations", ["center_point"], postgresql_using="gist")
    op.create_index("idx_locations_geofence", "locations", ["geofence"], postgresql_using="gist")
    op.create_index("ix_locations_local_area_name", "locations", ["local_area_name"])
    op.create_index("ix_locations_county", "locations", ["county"])
    op.create_index("ix_locations_parent_id", "locations", ["parent_id"])

    op.create_table(
        "location_closure",
        sa.Column("ancestor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("descendant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("ancestor_id", "descendant_id", name="pk_location_closure"),
        sa.ForeignKeyConstraint(["ancestor_id"], ["locations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["descendant_id"], ["locations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_location_closure_descendant_id", "location_closure", ["descendant_id"])

    op.create_table(
        "location_address_components",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("location_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("address_component_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("label", sa.String(120), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _point("center_point"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["address_component_id"], ["address_components.id"]),
        sa.UniqueConstraint("location_id", "address_component_id", name="uq_location_address_component"),
    )
    op.create_index(
        "uq_lac_single_primary",
        "location_address_components",
        ["location_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )
    op.create_index("ix_lac_location_id", "location_address_components", ["location_id"])
    op.create_index("ix_lac_address_component_id", "location_address_components", ["address_component_id"])
    op.create_index("idx_lac_center_point", "location_address_components", ["center_point"], postgresql_using="gist")


def downgrade() -> None:
    op.drop_index("idx_lac_center_point", table_name="location_address_components")
    op.drop_index("ix_lac_address_component_id", table_name="location_address_components")
    op.drop_index("ix_lac_location_id", table_name="location_address_components")
    op.drop_index("uq_lac_single_primary", table_name="location_address_components")
    op.drop_table("location_address_components")
    op.drop_index("ix_location_closure_descendant_id", table_name="location_closure")
    op.drop_table("location_closure")
    op.drop_index("ix_locations_parent_id", table_name="locations")
    op.drop_index("ix_locations_county", table_name="locations")
    op.drop_index("ix_locations_local_area_name", table_name="locations")
    op.drop_index("idx_locations_geofence", table_name="locations")
    op.drop_index("idx_locations_center_point", table_name="locations")
    op.drop_table("locations")
    op.drop_index("ix_address_components_type", table_name="address_components")
    op.drop_index("ix_address_components_parent_component_id", table_name="address_components")
    op.drop_table("address_components")

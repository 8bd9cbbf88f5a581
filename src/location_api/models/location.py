"""Location model -- service areas organized as a closure-table tree.

Every ancestor/descendant pair (including a depth-0 self pair) is stored in
``location_closure`` so subtree and ancestor-chain reads are single joins.
Re-parenting rewrites the closure rows of the moved subtree.
"""

import uuid
from typing import Any

from geoalchemy2 import Geometry
from sqlalchemy import ForeignKey, Index, Integer, PrimaryKeyConstraint, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from location_api.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin


class Location(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """A serviceable area, optionally carrying a center point and a geofence polygon."""

    __tablename__ = "locations"

    local_area_name: Mapped[str] = mapped_column(String(100), nullable=False)
    county: Mapped[str] = mapped_column(String(100), nullable=False)
    town: Mapped[str | None] = mapped_column(String(100), nullable=True)
    street: Mapped[str | None] = mapped_column(String(100), nullable=True)
    coverage_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("locations.id"),
        nullable=True,
    )
    center_point: Mapped[Any] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=True,
    )
    geofence: Mapped[Any] = mapped_column(
        Geometry(geometry_type="POLYGON", srid=4326, spatial_index=False),
        nullable=True,
    )
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        Index("idx_locations_center_point", "center_point", postgresql_using="gist"),
        Index("idx_locations_geofence", "geofence", postgresql_using="gist"),
        Index("ix_locations_local_area_name", "local_area_name"),
        Index("ix_locations_county", "county"),
        Index("ix_locations_parent_id", "parent_id"),
    )


class LocationClosure(Base):
    """One ancestor→descendant pair of the Location tree."""

    __tablename__ = "location_closure"

    ancestor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
    )
    descendant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
    )
    depth: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("ancestor_id", "descendant_id", name="pk_location_closure"),
        Index("ix_location_closure_descendant_id", "descendant_id"),
    )

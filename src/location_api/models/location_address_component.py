"""LocationAddressComponent model -- ordered, flagged link between a Location and an AddressComponent."""

import uuid
from typing import Any

from geoalchemy2 import Geometry
from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from location_api.models.base import Base, TimestampMixin, UUIDMixin


class LocationAddressComponent(Base, UUIDMixin, TimestampMixin):
    """Association row carrying a label, a sequence, a primary flag and an optional point.

    At most one row per location has ``is_primary`` set; the partial unique
    index below backs the application-level enforcement.
    """

    __tablename__ = "location_address_components"

    location_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("locations.id"),
        nullable=False,
    )
    address_component_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("address_components.id"),
        nullable=False,
    )
    label: Mapped[str | None] = mapped_column(String(120), nullable=True)
    sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    center_point: Mapped[Any] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=True,
    )
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        UniqueConstraint("location_id", "address_component_id", name="uq_location_address_component"),
        Index(
            "uq_lac_single_primary",
            "location_id",
            unique=True,
            postgresql_where=text("is_primary"),
        ),
        Index("ix_lac_location_id", "location_id"),
        Index("ix_lac_address_component_id", "address_component_id"),
        Index("idx_lac_center_point", "center_point", postgresql_using="gist"),
    )

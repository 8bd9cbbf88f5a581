"""AddressComponent model -- typed address fragments organized as a parent-pointer tree.

Examples are a county, a town, an estate or a block.  Ancestor/descendant
sets are not materialized; they are computed per call with a recursive walk
over ``parent_component_id``.
"""

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from location_api.models.base import Base, TimestampMixin, UUIDMixin


class AddressComponent(Base, UUIDMixin, TimestampMixin):
    """One node of the address taxonomy."""

    __tablename__ = "address_components"

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_component_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("address_components.id", ondelete="RESTRICT"),
        nullable=True,
    )
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        # NULLS NOT DISTINCT: a null parent is a key of its own, still unique.
        UniqueConstraint(
            "type",
            "value",
            "parent_component_id",
            name="uq_address_component_type_value_parent",
            postgresql_nulls_not_distinct=True,
        ),
        Index("ix_address_components_parent_component_id", "parent_component_id"),
        Index("ix_address_components_type", "type"),
    )

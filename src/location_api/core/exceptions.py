"""Error taxonomy for the location hierarchy.

Every error raised across the service boundary derives from
:class:`LocationApiError` and carries the HTTP status the API layer renders
it with, a machine-readable ``code`` and a ``context`` dict naming the
offending ids or keys.  Storage-engine exceptions never cross the boundary;
they are logged and re-raised as one of the coarse kinds below.
"""

from typing import Any


class LocationApiError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a response body (pass through ``jsonable_encoder``)."""
        return {"detail": self.message, "code": self.code, "context": self.context}


class NotFoundError(LocationApiError):
    """Requested row does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} not found with ID: {entity_id}", context={"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(LocationApiError, ValueError):
    """Missing natural-key fields, malformed geometry or an invalid request."""

    status_code = 400
    code = "validation_error"


class CycleError(ValidationError):
    """A move would place a node under itself or one of its descendants."""

    code = "cycle"

    def __init__(self, entity: str, node_id: Any, new_parent_id: Any) -> None:
        super().__init__(
            f"Cannot move {entity} {node_id} under {new_parent_id}: target is the node itself or one of its descendants",
            context={"entity": entity, "id": node_id, "new_parent_id": new_parent_id},
        )


class ConstraintViolationError(LocationApiError):
    """A natural-key uniqueness constraint was violated."""

    status_code = 409
    code = "constraint_violation"


class TransactionFailureError(LocationApiError):
    """A transactional operation failed and was rolled back."""

    status_code = 500
    code = "transaction_failure"


class StoreUnavailableError(LocationApiError):
    """The relational store cannot be reached."""

    status_code = 503
    code = "store_unavailable"

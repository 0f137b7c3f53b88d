"""Error taxonomy for the assignment and delegation core."""


class OrgError(Exception):
    """Base class for errors raised by org assignment operations."""

    status_code = 400


class NotFoundError(OrgError):
    """A company, department, position, assignment, delegation or swap is absent."""

    status_code = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ValidationError(OrgError):
    """Input rejected before any mutation took place."""

    status_code = 400


class ConflictError(OrgError):
    """A concurrent ledger mutation won the race for the same position."""

    status_code = 409


class InvalidStateError(OrgError):
    """Operation not allowed from the entity's current status."""

    status_code = 409

    def __init__(self, entity_type: str, entity_id, current_status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id}: status is {current_status!r}"
        )


class SLAWarning(UserWarning):
    """Log category for operations that exceeded the resolution SLA. Never raised."""

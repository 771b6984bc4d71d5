"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.  The four families are kept
distinct so callers can tell "fix your input" (ValidationError) from "this
object is not in the right state" (StateTransitionError) from "someone else
changed it first" (ConcurrencyError).

Usage:
    from mocflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MocRequest", resource_id=42)
    raise ValidationError("Title is required.", details={"title": "required"})
    raise StateTransitionError("Only draft requests can be submitted.", current="submitted")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist, or does not belong to
    the parent it was addressed through.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "MocRequest").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Always carries a message naming the violated field or rule.  Raised
    before any mutation.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StateTransitionError(Exception):
    """Raised when an operation is not allowed from the object's current state
    (submit a non-draft, re-complete a slot, advance past the final stage).

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        current: The state the object was found in.
    """

    def __init__(self, message: str, current: str | None = None) -> None:
        self.current = current
        super().__init__(message)

    @property
    def details(self) -> dict:
        return {"current": self.current} if self.current is not None else {}


class StageGateError(StateTransitionError):
    """Raised when stage advancement is blocked by gate roles that have not
    completed-and-approved their slots.

    Args:
        stage: Stage the request is stuck in.
        missing_roles: Distinct unsatisfied role keys, in chain order.
    """

    def __init__(self, stage: str, missing_roles: list[str]) -> None:
        self.stage = stage
        self.missing_roles = list(missing_roles)
        msg = (
            "Cannot advance: the following approver(s) must approve before advancing: "
            + ", ".join(self.missing_roles) + "."
        )
        super().__init__(msg, current=stage)

    @property
    def details(self) -> dict:
        return {"stage": self.stage, "required_roles": self.missing_roles}


class ConcurrencyError(Exception):
    """Raised when a row changed underneath the caller (stale version token).

    Nothing is retried; the caller reloads and decides.  Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " was modified concurrently; reload and retry"
        super().__init__(msg)

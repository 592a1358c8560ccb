"""
Service-wide exception hierarchy.

Every service raises these types; blueprints register handlers against
them once and get consistent HTTP status codes everywhere.

Usage:
    from routine_selection.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="SelectionProcess", resource_id=process_id)
    raise ValidationError("name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organization access
    attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "SelectionProcess").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidInputError(ValidationError):
    """Raised by the turn-order algorithm for unusable input.

    Empty member list, duplicate member ids, unknown algorithm or an
    inverted selection period.
    """


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AlreadySelectedError(ConflictError):
    """Raised when a routine instance is already claimed.

    Either another entry of the same process references it, or the
    instance was assigned outside the process. The caller should refresh
    the list of available instances.
    """

    def __init__(self, routine_instance_id: str) -> None:
        super().__init__("SelectionEntry", "routine_instance_id", routine_instance_id)
        self.routine_instance_id = routine_instance_id


class InvalidStateError(Exception):
    """Raised when an operation is not permitted from the current status.

    Maps to HTTP 409. The caller must refresh state before retrying.
    """

    def __init__(self, resource: str, status: str, action: str, message: str | None = None) -> None:
        self.resource = resource
        self.status = status
        self.action = action
        super().__init__(message or f"Cannot {action} a {status} {resource}")


class NotYourTurnError(Exception):
    """Raised when a turn-bound mutation comes from a user who does not hold the active turn.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: str, current_turn_user_id: str | None) -> None:
        self.user_id = user_id
        self.current_turn_user_id = current_turn_user_id
        super().__init__(f"It is not user {user_id!r}'s turn")


class ConcurrentModificationError(Exception):
    """Raised when another writer committed first (optimistic lock lost).

    Maps to HTTP 409. Recoverable: retry the whole operation from a fresh read.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} was modified concurrently; reload and retry")


class PermissionDenied(Exception):
    """Raised when the acting user may not manage the stable.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: str | None, stable_id: str, action: str = "manage") -> None:
        self.user_id = user_id
        self.stable_id = stable_id
        self.action = action
        super().__init__(f"User {user_id!r} may not {action} selection processes of stable {stable_id}")

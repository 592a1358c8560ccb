"""
Routine Selection Service
Blueprint registry.
"""

from flask import g, jsonify, request
from werkzeug.exceptions import HTTPException

from routine_selection.core.exceptions import (
    AlreadySelectedError,
    ConcurrentModificationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    NotYourTurnError,
    PermissionDenied,
    ValidationError,
)
from routine_selection.utils.errors import E, api_error


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default default_limit, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    limit = max(limit, 1)
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body():
    """Request JSON as a dict; None when a body was sent but is not a JSON object."""
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def current_identity():
    return g.organization_id, g.user_id


def register_error_handlers(bp, logger):
    """Map service exceptions to standard API errors on a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        return api_error(E.CONFLICT_STATE, str(error), details={"status": error.status})

    @bp.errorhandler(NotYourTurnError)
    def _handle_not_your_turn(error: NotYourTurnError):
        return api_error(
            E.NOT_YOUR_TURN, "It is not your turn",
            details={"current_turn_user_id": error.current_turn_user_id},
        )

    @bp.errorhandler(AlreadySelectedError)
    def _handle_already_selected(error: AlreadySelectedError):
        return api_error(
            E.ALREADY_SELECTED, "Routine instance is already selected",
            details={"routine_instance_id": error.routine_instance_id},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_concurrent(error: ConcurrentModificationError):
        return api_error(E.CONFLICT_CONCURRENT, str(error))

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

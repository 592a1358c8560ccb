"""
Organization-scoped query helpers.

Every get-by-id in the service goes through these helpers instead of
db.session.get(Model, pk). A bare primary-key lookup ignores tenant
isolation; these helpers refuse to run without a scope.

Usage:
    # Scope by organization (every OrganizationModel subclass)
    process = get_scoped(SelectionProcess, process_id, organization_id=org_id)

    # Narrow further to one stable
    instance = get_scoped(RoutineInstance, instance_id,
                          organization_id=org_id, stable_id=stable_id)

    # Row lock for a check-then-write (no-op on SQLite)
    stable = get_scoped(Stable, stable_id, organization_id=org_id, with_for_update=True)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    A scope the model cannot honour raises ValueError at call time, so the
    bug surfaces in tests rather than as an unscoped lookup in production.
"""

import logging

from sqlalchemy import select

from routine_selection.core.exceptions import NotFoundError
from routine_selection.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk,
    *,
    organization_id: str | None = None,
    stable_id: str | None = None,
    with_for_update: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-organization access is indistinguishable from a missing record:
    both raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        organization_id: Scope by organization_id column.
        stable_id: Scope by stable_id column.
        with_for_update: Emit SELECT ... FOR UPDATE (ignored by SQLite).

    Raises:
        ValueError: No scope given, or a scope column missing on the model.
        NotFoundError: Entity missing or outside the given scope.
    """
    scopes = {
        field: value
        for field, value in (("organization_id", organization_id), ("stable_id", stable_id))
        if value is not None
    }
    if not scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id or stable_id). Unscoped lookups are forbidden."
        )

    missing = sorted(field for field in scopes if not hasattr(model, field))
    if missing:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {missing}; "
            "refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if with_for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, scopes)
        raise NotFoundError(
            resource=model.__name__, resource_id=pk, organization_id=organization_id,
        )

    return result

"""
Membership collaborator — who belongs to a stable and who may manage it.

The owner is tracked on the Stable row, not as a StableMember; every
resolver here treats the owner as an implicit active member.
"""

import logging

from sqlalchemy import select

from routine_selection.core.exceptions import PermissionDenied, ValidationError
from routine_selection.models import db
from routine_selection.models.stable import MANAGER_ROLES, Stable, StableMember
from routine_selection.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)


def get_stable(stable_id, organization_id, lock=False):
    return get_scoped(Stable, stable_id, organization_id=organization_id, with_for_update=lock)


def active_members(stable):
    """Active StableMember rows of a stable."""
    stmt = (
        select(StableMember)
        .where(StableMember.stable_id == stable.id, StableMember.status == "active")
        .order_by(StableMember.id)
    )
    return db.session.execute(stmt).scalars().all()


def _owner_snapshot(stable):
    return {
        "user_id": stable.owner_id,
        "user_name": stable.owner_name or stable.owner_email or stable.owner_id,
        "user_email": stable.owner_email or "",
    }


def _member_snapshot(member):
    return {
        "user_id": member.user_id,
        "user_name": member.display_name,
        "user_email": member.email or "",
    }


def resolve_members(stable, user_ids):
    """Turn requested user ids into identity snapshots, keeping their order.

    Raises ValidationError listing every id that is neither the owner nor
    an active member of the stable. Duplicates are left for the turn-order
    validation to report.
    """
    rows = {m.user_id: m for m in active_members(stable)}
    snapshots = []
    unknown = []
    for user_id in user_ids:
        if user_id == stable.owner_id:
            snapshots.append(_owner_snapshot(stable))
        elif user_id in rows:
            snapshots.append(_member_snapshot(rows[user_id]))
        else:
            unknown.append(user_id)
    if unknown:
        raise ValidationError(
            "Members must be active members of the stable",
            details={"unknown_user_ids": unknown},
        )
    return snapshots


def can_manage(stable, user_id) -> bool:
    """Owner, or an active administrator / schedule planner."""
    if not user_id:
        return False
    if user_id == stable.owner_id:
        return True
    stmt = select(StableMember.role).where(
        StableMember.stable_id == stable.id,
        StableMember.user_id == user_id,
        StableMember.status == "active",
    )
    role = db.session.execute(stmt).scalar_one_or_none()
    return role in MANAGER_ROLES


def require_manager(stable, user_id, action="manage"):
    if not can_manage(stable, user_id):
        logger.info(
            "Permission denied: %s may not %s", user_id, action,
            extra={"user_id": user_id, "stable_id": stable.id,
                   "organization_id": stable.organization_id},
        )
        raise PermissionDenied(user_id, stable.id, action)

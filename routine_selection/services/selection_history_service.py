"""
Selection history archive.

One immutable SelectionProcessHistory row per completed process, written
after the completion commit. Archival is idempotent: the unique
process_id means a retry returns the existing row rather than a second
one. Processes that completed but were never archived (the post-commit
write failed) are picked up by archive_pending_histories(), run from
the ``flask archive-selection-history`` command.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from routine_selection.core.exceptions import InvalidStateError
from routine_selection.models import db
from routine_selection.models.selection import (
    SelectionProcess,
    SelectionProcessHistory,
)

logger = logging.getLogger(__name__)


def _existing(process_id):
    stmt = select(SelectionProcessHistory).where(SelectionProcessHistory.process_id == process_id)
    return db.session.execute(stmt).scalar_one_or_none()


def build_final_turn_order(process):
    """Per-member order, selection count and points picked."""
    points = {}
    for entry in process.entries:
        points[entry.selected_by] = points.get(entry.selected_by, 0) + (entry.points_value or 0)
    return [
        {
            "user_id": turn.user_id,
            "user_name": turn.user_name,
            "order": turn.order,
            "selections_count": turn.selections_count,
            "total_points_picked": points.get(turn.user_id, 0),
        }
        for turn in sorted(process.turns, key=lambda t: t.order)
    ]


def archive_completed_process(process):
    """Write (or return the existing) history row for a completed process.

    Commits on its own. Raises InvalidStateError for a process that is
    not completed.
    """
    if process.status != "completed":
        raise InvalidStateError("selection process", process.status, "archive")

    existing = _existing(process.id)
    if existing is not None:
        return existing

    history = SelectionProcessHistory(
        organization_id=process.organization_id,
        stable_id=process.stable_id,
        process_id=process.id,
        process_name=process.name,
        algorithm=process.algorithm,
        final_turn_order=build_final_turn_order(process),
        completed_at=process.completed_at,
    )
    db.session.add(history)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent archiver won the unique process_id race
        db.session.rollback()
        existing = _existing(process.id)
        if existing is None:
            raise
        return existing

    logger.info(
        "Archived selection process history",
        extra={"process_id": process.id, "stable_id": process.stable_id,
               "organization_id": process.organization_id},
    )
    return history


def archive_pending_histories():
    """Archive every completed process that has no history row yet.

    Returns the number of histories written. One failure does not stop
    the rest; it is logged and retried on the next run.
    """
    stmt = (
        select(SelectionProcess)
        .outerjoin(SelectionProcessHistory, SelectionProcessHistory.process_id == SelectionProcess.id)
        .where(SelectionProcess.status == "completed", SelectionProcessHistory.id.is_(None))
        .order_by(SelectionProcess.completed_at)
    )
    archived = 0
    for process in db.session.execute(stmt).scalars().all():
        try:
            archive_completed_process(process)
            archived += 1
        except Exception:
            db.session.rollback()
            logger.exception(
                "Retrying history archival failed",
                extra={"process_id": process.id, "organization_id": process.organization_id},
            )
    return archived


def latest_history(organization_id, stable_id):
    stmt = (
        select(SelectionProcessHistory)
        .where(
            SelectionProcessHistory.organization_id == organization_id,
            SelectionProcessHistory.stable_id == stable_id,
        )
        .order_by(SelectionProcessHistory.completed_at.desc(), SelectionProcessHistory.archived_at.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def list_histories(organization_id, stable_id):
    """Query for a stable's archive, newest first."""
    return (
        SelectionProcessHistory.query_for_organization(organization_id)
        .filter_by(stable_id=stable_id)
        .order_by(SelectionProcessHistory.completed_at.desc())
    )


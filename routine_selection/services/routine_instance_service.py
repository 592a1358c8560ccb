"""
Routine instance collaborator.

Supplies the read-only snapshots the turn-order algorithms need and the
single write the selection process performs on an instance: assigning it
to the member who picked it.
"""

from datetime import date, datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func, select

from routine_selection.models import db
from routine_selection.models.routine import RoutineInstance
from routine_selection.models.selection import SelectionProcessHistory


def memory_horizon_days(stable) -> int:
    if stable.memory_horizon_days:
        return stable.memory_horizon_days
    return current_app.config.get("SELECTION_MEMORY_HORIZON_DAYS", 90)


def selectable_instances_query(stable, start, end):
    """Unassigned, scheduled instances of the stable within [start, end]."""
    return (
        select(RoutineInstance)
        .where(
            RoutineInstance.organization_id == stable.organization_id,
            RoutineInstance.stable_id == stable.id,
            RoutineInstance.scheduled_date >= start,
            RoutineInstance.scheduled_date <= end,
            RoutineInstance.status == "scheduled",
            RoutineInstance.assignment_type == "unassigned",
            RoutineInstance.assigned_to.is_(None),
        )
        .order_by(RoutineInstance.scheduled_date, RoutineInstance.id)
    )


def period_instance_points(stable, start, end):
    """Points of every selectable instance in the period."""
    stmt = selectable_instances_query(stable, start, end).with_only_columns(
        RoutineInstance.points_value,
    )
    return [p or 0 for p in db.session.execute(stmt).scalars().all()]


def member_points(stable, user_ids, today=None):
    """Points each member earned from completed routines within the horizon.

    points_awarded wins over points_value when the completion credited a
    different amount.
    """
    today = today or date.today()
    since = today - timedelta(days=memory_horizon_days(stable))
    earned = func.coalesce(RoutineInstance.points_awarded, RoutineInstance.points_value)
    stmt = (
        select(RoutineInstance.completed_by, func.sum(earned))
        .where(
            RoutineInstance.organization_id == stable.organization_id,
            RoutineInstance.stable_id == stable.id,
            RoutineInstance.status == "completed",
            RoutineInstance.completed_by.in_(list(user_ids)),
            RoutineInstance.scheduled_date >= since,
            RoutineInstance.scheduled_date <= today,
        )
        .group_by(RoutineInstance.completed_by)
    )
    totals = {user_id: 0 for user_id in user_ids}
    for user_id, points in db.session.execute(stmt).all():
        totals[user_id] = int(points or 0)
    return totals


def accumulated_history_points(stable, user_ids, now=None):
    """Points picked per member across archived processes within the horizon."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=memory_horizon_days(stable))
    stmt = select(SelectionProcessHistory.final_turn_order).where(
        SelectionProcessHistory.organization_id == stable.organization_id,
        SelectionProcessHistory.stable_id == stable.id,
        SelectionProcessHistory.completed_at >= since,
    )
    wanted = set(user_ids)
    totals = {user_id: 0 for user_id in user_ids}
    for final_turn_order in db.session.execute(stmt).scalars().all():
        for entry in final_turn_order or []:
            if entry.get("user_id") in wanted:
                totals[entry["user_id"]] += int(entry.get("total_points_picked") or 0)
    return totals


def get_instance_for_update(instance_id, stable):
    """Instance of the stable, locked for the rest of the transaction; None if absent."""
    stmt = (
        select(RoutineInstance)
        .where(
            RoutineInstance.id == instance_id,
            RoutineInstance.organization_id == stable.organization_id,
            RoutineInstance.stable_id == stable.id,
        )
        .with_for_update()
    )
    return db.session.execute(stmt).scalar_one_or_none()


def assign_to_member(instance, user_id, user_name, when):
    instance.assignment_type = "selection"
    instance.assigned_to = user_id
    instance.assigned_to_name = user_name
    instance.assigned_at = when

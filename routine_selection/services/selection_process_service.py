"""
Selection Process Service — turn-based routine selection lifecycle.

Lifecycle:
    create (draft) → start (active) → record selections / complete turns
    → completed, or cancel from draft/active.

Design decisions:
    - Every mutation is one read-modify-write committed in one transaction.
      The process row carries a version counter (SQLAlchemy version_id_col);
      a writer that loses the race gets ConcurrentModificationError and must
      retry from a fresh read. Mutations always touch updated_at so the
      version moves even when only child rows change.
    - SelectionEntry rows are append-only. The unique
      (process_id, routine_instance_id) index backs the double-booking check.
    - Turns are computed once (create/update in draft) and never reordered
      after start.
    - History archival and notifications run after the commit and are
      best-effort: their failure never reverts a transition.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from routine_selection.core.exceptions import (
    AlreadySelectedError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    NotYourTurnError,
    ValidationError,
)
from routine_selection.models import db
from routine_selection.models.audit import write_audit
from routine_selection.models.base import as_utc
from routine_selection.models.selection import (
    PROCESS_TRANSITIONS,
    SelectionEntry,
    SelectionProcess,
    SelectionProcessTurn,
)
from routine_selection.services import selection_history_service
from routine_selection.services.helpers.scoped_queries import get_scoped
from routine_selection.services.membership_service import (
    get_stable,
    require_manager,
    resolve_members,
)
from routine_selection.services.notification import NotificationService
from routine_selection.services.routine_instance_service import (
    accumulated_history_points,
    assign_to_member,
    get_instance_for_update,
    member_points,
    period_instance_points,
)
from routine_selection.services.turn_order import compute_turn_order, period_contains
from routine_selection.utils.helpers import require_date

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 200
RESOURCE = "selection process"


# ── Private helpers ────────────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _log_extra(process, **extra):
    extra.update({
        "process_id": process.id,
        "stable_id": process.stable_id,
        "organization_id": process.organization_id,
    })
    return extra


@contextmanager
def _optimistic_write(process_id):
    """Unit of work on one process.

    Any failure rolls the session back so no half-applied change can be
    committed by a later request. A lost version race surfaces as
    ConcurrentModificationError.
    """
    try:
        yield
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent modification of selection process",
            extra={"process_id": process_id},
        )
        raise ConcurrentModificationError("SelectionProcess", process_id) from None
    except Exception:
        db.session.rollback()
        raise


def _touch(process, actor_id):
    process.updated_at = _now()
    process.updated_by = actor_id


def _audit(process, action, actor_id, diff=None):
    write_audit(
        entity_type="selection_process",
        entity_id=process.id,
        action=f"selection_process.{action}",
        actor=actor_id or "system",
        organization_id=process.organization_id,
        stable_id=process.stable_id,
        diff=diff,
    )


def _require_status(process, action):
    allowed = PROCESS_TRANSITIONS[action]["from"]
    if process.status not in allowed:
        raise InvalidStateError(RESOURCE, process.status, action.replace("_", " "))


def _require_turn_holder(process, user_id):
    turn = process.current_turn
    if (
        turn is None
        or turn.status != "active"
        or turn.user_id != user_id
        or process.current_turn_user_id != user_id
    ):
        raise NotYourTurnError(user_id, process.current_turn_user_id)
    return turn


def _clean_name(value):
    name = (value or "").strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"name must be at most {NAME_MAX_LENGTH} characters",
            details={"name": "too_long"},
        )
    return name


def _member_ids(data):
    """Accept ``members`` as user ids or as dicts with ``user_id``."""
    raw = data.get("members", data.get("member_ids"))
    if not isinstance(raw, list):
        raise ValidationError("members must be a list of user ids", details={"members": "invalid"})
    ids = []
    for item in raw:
        user_id = item.get("user_id") if isinstance(item, dict) else item
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("members must be a list of user ids", details={"members": "invalid"})
        ids.append(user_id.strip())
    return ids


def _check_period(start, end):
    if end < start:
        raise ValidationError(
            "selection_end_date must not be before selection_start_date",
            details={"selection_end_date": "before_start"},
        )


def _compute(stable, algorithm, snapshots, start, end, new_member_placement=None):
    """Gather the algorithm's data snapshots and rank the members."""
    placement = new_member_placement or current_app.config.get("SELECTION_NEW_MEMBER_PLACEMENT", "end")
    user_ids = [m["user_id"] for m in snapshots]
    kwargs = {}
    if algorithm == "quota_based":
        kwargs["instance_points"] = period_instance_points(stable, start, end)
        kwargs["accumulated_points"] = accumulated_history_points(stable, user_ids)
    elif algorithm == "points_balance":
        kwargs["member_points"] = member_points(stable, user_ids)
    elif algorithm == "fair_rotation":
        last = selection_history_service.latest_history(stable.organization_id, stable.id)
        kwargs["last_history"] = last.to_dict() if last else None
    return compute_turn_order(
        algorithm, snapshots, start, end, new_member_placement=placement, **kwargs,
    )


def _apply_computed(process, computed):
    process.turns = [
        SelectionProcessTurn(
            user_id=t["user_id"],
            user_name=t["user_name"],
            user_email=t.get("user_email") or "",
            order=t["order"],
            status="pending",
            selections_count=0,
        )
        for t in computed["turns"]
    ]
    metadata = computed["metadata"]
    if computed["algorithm"] == "quota_based":
        process.quota_per_member = metadata["quota_per_member"]
        process.total_available_points = metadata["total_available_points"]
    else:
        process.quota_per_member = None
        process.total_available_points = None


def _default_algorithm(stable):
    return (
        stable.default_selection_algorithm
        or current_app.config.get("SELECTION_DEFAULT_ALGORITHM", "manual")
    )


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_process(process_id, organization_id):
    return get_scoped(SelectionProcess, process_id, organization_id=organization_id)


def list_processes(organization_id, stable_id=None, status=None):
    """Query of the organization's processes, newest first."""
    q = SelectionProcess.query_for_organization(organization_id)
    if stable_id:
        q = q.filter_by(stable_id=stable_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(SelectionProcess.created_at.desc(), SelectionProcess.id)


def list_entries(process):
    """Ledger of a process in chronological order."""
    stmt = (
        select(SelectionEntry)
        .where(SelectionEntry.process_id == process.id)
        .order_by(SelectionEntry.sequence)
    )
    return db.session.execute(stmt).scalars().all()


def active_process_for_stable(organization_id, stable_id, exclude_id=None):
    stmt = select(SelectionProcess).where(
        SelectionProcess.organization_id == organization_id,
        SelectionProcess.stable_id == stable_id,
        SelectionProcess.status == "active",
    )
    if exclude_id is not None:
        stmt = stmt.where(SelectionProcess.id != exclude_id)
    return db.session.execute(stmt.limit(1)).scalar_one_or_none()


# ── Order preview ──────────────────────────────────────────────────────────────


def preview_turn_order(organization_id, actor_id, data):
    """Compute a turn order without persisting anything."""
    stable_id = data.get("stable_id")
    if not stable_id:
        raise ValidationError("stable_id is required", details={"stable_id": "required"})
    stable = get_stable(stable_id, organization_id)
    require_manager(stable, actor_id, "plan")

    start = require_date(data, "selection_start_date")
    end = require_date(data, "selection_end_date")
    algorithm = data.get("algorithm") or _default_algorithm(stable)
    snapshots = resolve_members(stable, _member_ids(data))
    return _compute(stable, algorithm, snapshots, start, end, data.get("new_member_placement"))


# ── Lifecycle ──────────────────────────────────────────────────────────────────


def create_process(organization_id, actor_id, data):
    """Create a draft process with its computed turn order.

    Raises:
        ValidationError / InvalidInputError: bad name, dates, members or algorithm.
        NotFoundError: stable outside the organization.
        PermissionDenied: actor may not manage the stable.
    """
    stable_id = data.get("stable_id")
    if not stable_id:
        raise ValidationError("stable_id is required", details={"stable_id": "required"})
    stable = get_stable(stable_id, organization_id)
    require_manager(stable, actor_id, "create")

    name = _clean_name(data.get("name"))
    start = require_date(data, "selection_start_date")
    end = require_date(data, "selection_end_date")
    _check_period(start, end)
    algorithm = data.get("algorithm") or _default_algorithm(stable)

    snapshots = resolve_members(stable, _member_ids(data))
    computed = _compute(stable, algorithm, snapshots, start, end, data.get("new_member_placement"))

    now = _now()
    process = SelectionProcess(
        organization_id=organization_id,
        stable_id=stable.id,
        name=name,
        description=(data.get("description") or "").strip() or None,
        selection_start_date=start,
        selection_end_date=end,
        algorithm=algorithm,
        status="draft",
        current_turn_index=-1,
        current_turn_user_id=None,
        created_at=now,
        created_by=actor_id,
        updated_at=now,
        updated_by=actor_id,
    )
    _apply_computed(process, computed)
    db.session.add(process)
    db.session.flush()
    _audit(process, "create", actor_id, diff={
        "algorithm": algorithm,
        "member_count": len(process.turns),
        "metadata": computed["metadata"],
    })
    db.session.commit()

    logger.info("Selection process created", extra=_log_extra(process, user_id=actor_id))
    return process


def update_process(process_id, organization_id, actor_id, data):
    """Edit a draft: name, description, dates, member list.

    A new member list or period recomputes the turn order with the
    process's own algorithm, which cannot change. Every field is validated
    and the new order computed before the process is touched.
    """
    process = get_process(process_id, organization_id)
    stable = get_stable(process.stable_id, organization_id)
    require_manager(stable, actor_id, "update")
    _require_status(process, "update")

    if "algorithm" in data and data["algorithm"] != process.algorithm:
        raise ValidationError(
            "algorithm cannot be changed after creation",
            details={"algorithm": "immutable"},
        )

    name = _clean_name(data["name"]) if "name" in data else process.name
    description = (
        (data.get("description") or "").strip() or None
        if "description" in data else process.description
    )
    start = require_date(data, "selection_start_date") if "selection_start_date" in data \
        else process.selection_start_date
    end = require_date(data, "selection_end_date") if "selection_end_date" in data \
        else process.selection_end_date
    _check_period(start, end)
    dates_changed = (start, end) != (process.selection_start_date, process.selection_end_date)

    members_given = "members" in data or "member_ids" in data
    computed = None
    if members_given or dates_changed:
        if members_given:
            snapshots = resolve_members(stable, _member_ids(data))
        else:
            snapshots = [
                {"user_id": t.user_id, "user_name": t.user_name, "user_email": t.user_email}
                for t in process.turns
            ]
        computed = _compute(
            stable, process.algorithm, snapshots, start, end, data.get("new_member_placement"),
        )

    diff = {}
    if name != process.name:
        diff["name"] = {"old": process.name, "new": name}
    if description != process.description:
        diff["description"] = {"old": process.description, "new": description}
    if dates_changed:
        diff["selection_start_date"] = {"old": process.selection_start_date, "new": start}
        diff["selection_end_date"] = {"old": process.selection_end_date, "new": end}

    with _optimistic_write(process.id):
        process.name = name
        process.description = description
        process.selection_start_date = start
        process.selection_end_date = end
        _touch(process, actor_id)

        if computed is not None:
            old_order = [t.user_id for t in process.turns]
            # Old turns go first so the (process, turn_order) unique index holds
            process.turns.clear()
            db.session.flush()
            _apply_computed(process, computed)
            new_order = [t.user_id for t in process.turns]
            if new_order != old_order:
                diff["turns"] = {"old": old_order, "new": new_order}

        _audit(process, "update", actor_id, diff=diff)
        db.session.commit()

    logger.info("Selection process updated", extra=_log_extra(process, user_id=actor_id))
    return process


def start_process(process_id, organization_id, actor_id):
    """draft → active. The first turn becomes active and its member is notified.

    The stable row is locked before the one-active-per-stable check, and a
    partial unique index on active processes backs it up where row locks
    are unavailable. Losing that race raises ConcurrentModificationError.
    """
    process = get_process(process_id, organization_id)
    stable = get_stable(process.stable_id, organization_id, lock=True)
    require_manager(stable, actor_id, "start")
    _require_status(process, "start")

    other = active_process_for_stable(organization_id, process.stable_id, exclude_id=process.id)
    if other is not None:
        raise InvalidStateError(
            RESOURCE, process.status, "start",
            message=f"Stable already has an active selection process ({other.name})",
        )
    if not process.turns:
        raise ValidationError("Process has no members", details={"members": "empty"})

    with _optimistic_write(process.id):
        now = _now()
        first = process.turns[0]
        first.status = "active"
        process.status = "active"
        process.started_at = now
        process.current_turn_index = 0
        process.current_turn_user_id = first.user_id
        _touch(process, actor_id)
        try:
            _audit(process, "start", actor_id, diff={"first_turn_user_id": first.user_id})
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning(
                "Another selection process became active first",
                extra={"process_id": process_id},
            )
            raise ConcurrentModificationError("SelectionProcess", process_id) from None

    logger.info("Selection process started", extra=_log_extra(process, user_id=actor_id))
    NotificationService.notify_turn_started(process, first)
    return process


def record_selection(process_id, organization_id, user_id, routine_instance_id):
    """Append a pick for the member holding the active turn.

    Does not advance the turn.

    Raises:
        InvalidStateError: process not active.
        NotYourTurnError: user does not hold the active turn.
        NotFoundError: instance unknown in the process's stable.
        ValidationError: instance outside the period or not open.
        AlreadySelectedError: instance already in the ledger or assigned.
    """
    process = get_process(process_id, organization_id)
    _require_status(process, "record_selection")
    turn = _require_turn_holder(process, user_id)

    if not routine_instance_id or not isinstance(routine_instance_id, str):
        raise ValidationError(
            "routine_instance_id is required", details={"routine_instance_id": "required"},
        )

    stable = get_stable(process.stable_id, organization_id)
    instance = get_instance_for_update(routine_instance_id, stable)
    if instance is None:
        raise NotFoundError(
            resource="RoutineInstance", resource_id=routine_instance_id,
            organization_id=organization_id,
        )
    if not period_contains(process.selection_start_date, process.selection_end_date, instance.scheduled_date):
        raise ValidationError(
            "Routine instance is outside the selection period",
            details={"scheduled_date": instance.scheduled_date.isoformat()},
        )

    already = db.session.execute(
        select(SelectionEntry.id).where(
            SelectionEntry.process_id == process.id,
            SelectionEntry.routine_instance_id == routine_instance_id,
        )
    ).first()
    if already is not None or instance.is_claimed:
        raise AlreadySelectedError(routine_instance_id)
    if instance.status != "scheduled":
        raise ValidationError(
            "Routine instance is not open for selection",
            details={"status": instance.status},
        )

    entries = process.entries
    now = _now()
    if entries:
        last = as_utc(entries[-1].selected_at)
        if now <= last:
            now = last + timedelta(microseconds=1)

    with _optimistic_write(process.id):
        entry = SelectionEntry(
            sequence=len(entries) + 1,
            routine_instance_id=routine_instance_id,
            selected_by=user_id,
            selected_by_name=turn.user_name,
            turn_order=turn.order,
            routine_template_name=instance.template_name,
            scheduled_date=instance.scheduled_date,
            selected_at=now,
            points_value=instance.points_value or 0,
        )
        process.entries.append(entry)
        turn.selections_count += 1
        assign_to_member(instance, user_id, turn.user_name, now)
        _touch(process, user_id)
        try:
            _audit(process, "record_selection", user_id, diff={
                "routine_instance_id": routine_instance_id,
                "sequence": entry.sequence,
                "points_value": entry.points_value,
            })
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadySelectedError(routine_instance_id) from None

    logger.info(
        "Routine selected",
        extra=_log_extra(process, user_id=user_id),
    )
    return entry


def complete_turn(process_id, organization_id, user_id):
    """Finish the caller's turn and hand over to the next pending member.

    Returns:
        {"success", "next_turn_user_id", "next_turn_user_name", "process_completed"}
    """
    process = get_process(process_id, organization_id)
    _require_status(process, "complete_turn")
    turn = _require_turn_holder(process, user_id)

    with _optimistic_write(process.id):
        now = _now()
        turn.status = "completed"
        turn.completed_at = now

        next_turn = next((t for t in process.turns if t.status == "pending"), None)
        if next_turn is not None:
            next_turn.status = "active"
            process.current_turn_index = process.turns.index(next_turn)
            process.current_turn_user_id = next_turn.user_id
        else:
            process.status = "completed"
            process.completed_at = now
            process.current_turn_index = -1
            process.current_turn_user_id = None

        _touch(process, user_id)
        _audit(process, "complete_turn", user_id, diff={
            "turn_order": turn.order,
            "selections_count": turn.selections_count,
            "next_turn_user_id": next_turn.user_id if next_turn else None,
        })
        if next_turn is None:
            _audit(process, "complete", user_id)
        db.session.commit()

    if next_turn is not None:
        logger.info("Turn completed", extra=_log_extra(process, user_id=user_id))
        NotificationService.notify_turn_started(process, next_turn)
        return {
            "success": True,
            "next_turn_user_id": next_turn.user_id,
            "next_turn_user_name": next_turn.user_name,
            "process_completed": False,
        }

    logger.info("Selection process completed", extra=_log_extra(process, user_id=user_id))
    _archive_best_effort(process)
    NotificationService.notify_process_completed(process)
    return {
        "success": True,
        "next_turn_user_id": None,
        "next_turn_user_name": None,
        "process_completed": True,
    }


def _archive_best_effort(process):
    try:
        selection_history_service.archive_completed_process(process)
    except Exception:
        db.session.rollback()
        logger.exception(
            "History archival failed; process stays completed and will be retried",
            extra=_log_extra(process),
        )


def cancel_process(process_id, organization_id, actor_id, reason=None):
    """draft|active → cancelled. No history is written."""
    process = get_process(process_id, organization_id)
    stable = get_stable(process.stable_id, organization_id)
    require_manager(stable, actor_id, "cancel")
    _require_status(process, "cancel")

    with _optimistic_write(process.id):
        previous_status = process.status
        for turn in process.turns:
            if turn.status == "active":
                turn.status = "pending"
        process.status = "cancelled"
        process.cancelled_at = _now()
        process.cancelled_by = actor_id
        process.cancellation_reason = (reason or "").strip() or None
        process.current_turn_index = -1
        process.current_turn_user_id = None
        _touch(process, actor_id)
        _audit(process, "cancel", actor_id, diff={
            "status": {"old": previous_status, "new": "cancelled"},
            "reason": process.cancellation_reason,
        })
        db.session.commit()

    logger.info("Selection process cancelled", extra=_log_extra(process, user_id=actor_id))
    return process


def update_dates(process_id, organization_id, actor_id, data):
    """Move the selection period of an active process.

    A date that changes may not lie in the past, and the end may not
    precede the start.
    """
    process = get_process(process_id, organization_id)
    stable = get_stable(process.stable_id, organization_id)
    require_manager(stable, actor_id, "update dates of")
    _require_status(process, "update_dates")

    if "selection_start_date" not in data and "selection_end_date" not in data:
        raise ValidationError(
            "selection_start_date or selection_end_date is required",
            details={"selection_start_date": "required", "selection_end_date": "required"},
        )
    start = require_date(data, "selection_start_date") if "selection_start_date" in data \
        else process.selection_start_date
    end = require_date(data, "selection_end_date") if "selection_end_date" in data \
        else process.selection_end_date

    today = _now().date()
    if start != process.selection_start_date and start < today:
        raise ValidationError(
            "selection_start_date cannot be in the past",
            details={"selection_start_date": "past"},
        )
    if end != process.selection_end_date and end < today:
        raise ValidationError(
            "selection_end_date cannot be in the past",
            details={"selection_end_date": "past"},
        )
    _check_period(start, end)

    with _optimistic_write(process.id):
        diff = {
            "selection_start_date": {"old": process.selection_start_date, "new": start},
            "selection_end_date": {"old": process.selection_end_date, "new": end},
        }
        process.selection_start_date = start
        process.selection_end_date = end
        _touch(process, actor_id)
        _audit(process, "update_dates", actor_id, diff=diff)
        db.session.commit()

    logger.info("Selection period changed", extra=_log_extra(process, user_id=actor_id))
    return process

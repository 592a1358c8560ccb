"""
Read-side projections of selection processes.

Everything here is derived on each read from the stored process, its
turns and its ledger; nothing is persisted. ``invariant_violations``
re-checks the structural rules of a process.
"""

from collections import Counter

from routine_selection.models.base import as_utc, iso


def user_context(process, user_id, can_manage=False):
    """Per-user view of a process.

    turns_ahead counts turns ordered before the user's that are not yet
    completed; 0 for non-participants.
    """
    turn = process.turn_for(user_id)
    if turn is None:
        return {
            "is_current_turn": False,
            "user_turn_order": None,
            "user_turn_status": None,
            "turns_ahead": 0,
            "can_manage": bool(can_manage),
        }
    turns_ahead = sum(
        1 for t in process.turns if t.order < turn.order and t.status != "completed"
    )
    return {
        "is_current_turn": (
            process.status == "active" and process.current_turn_user_id == user_id
        ),
        "user_turn_order": turn.order,
        "user_turn_status": turn.status,
        "turns_ahead": turns_ahead,
        "can_manage": bool(can_manage),
    }


def process_detail(process, user_id, can_manage=False):
    data = process.to_dict()
    data.update(user_context(process, user_id, can_manage))
    return data


def process_summary(process, user_id):
    """Compact list row."""
    current = process.current_turn if process.status == "active" else None
    return {
        "id": process.id,
        "stable_id": process.stable_id,
        "name": process.name,
        "status": process.status,
        "algorithm": process.algorithm,
        "selection_start_date": process.selection_start_date.isoformat(),
        "selection_end_date": process.selection_end_date.isoformat(),
        "total_members": len(process.turns),
        "completed_turns": sum(1 for t in process.turns if t.status == "completed"),
        "current_turn_user_name": current.user_name if current else None,
        "is_current_turn": (
            process.status == "active" and process.current_turn_user_id == user_id
        ),
        "created_at": iso(process.created_at),
    }


def invariant_violations(process):
    """List every broken structural rule of a process (empty when sound)."""
    problems = []
    turns = list(process.turns)
    entries = list(process.entries)

    orders = sorted(t.order for t in turns)
    if orders != list(range(1, len(turns) + 1)):
        problems.append(f"turn orders are {orders}, expected 1..{len(turns)}")

    duplicate_users = [u for u, n in Counter(t.user_id for t in turns).items() if n > 1]
    if duplicate_users:
        problems.append(f"users with more than one turn: {sorted(duplicate_users)}")

    active = [t for t in turns if t.status == "active"]
    if process.status == "active":
        if len(active) != 1:
            problems.append(f"active process has {len(active)} active turns")
        current = process.current_turn
        if current is None or current.status != "active":
            problems.append("current_turn_index does not point at the active turn")
        elif current.user_id != process.current_turn_user_id:
            problems.append("current_turn_user_id does not match the active turn")
    else:
        if active:
            problems.append(f"{process.status} process has an active turn")
        if process.current_turn_index != -1 or process.current_turn_user_id is not None:
            problems.append(f"{process.status} process still points at a turn")

    if process.status == "completed" and any(t.status != "completed" for t in turns):
        problems.append("completed process has unfinished turns")
    if process.status == "draft" and entries:
        problems.append("draft process has ledger entries")

    duplicate_instances = [
        i for i, n in Counter(e.routine_instance_id for e in entries).items() if n > 1
    ]
    if duplicate_instances:
        problems.append(f"instances selected twice: {sorted(duplicate_instances)}")

    sequences = [e.sequence for e in sorted(entries, key=lambda e: e.sequence)]
    if sequences != list(range(1, len(entries) + 1)):
        problems.append("ledger sequence is not contiguous from 1")

    stamps = [as_utc(e.selected_at) for e in sorted(entries, key=lambda e: e.sequence)]
    if any(later <= earlier for earlier, later in zip(stamps, stamps[1:])):
        problems.append("selected_at does not strictly increase with sequence")

    per_user = Counter(e.selected_by for e in entries)
    for t in turns:
        if t.selections_count != per_user.get(t.user_id, 0):
            problems.append(
                f"{t.user_id} selections_count={t.selections_count} "
                f"but ledger has {per_user.get(t.user_id, 0)}"
            )
    strangers = set(per_user) - {t.user_id for t in turns}
    if strangers:
        problems.append(f"entries by non-participants: {sorted(strangers)}")

    return problems

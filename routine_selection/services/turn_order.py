"""
Turn-order computation for selection processes.

Pure functions: every input is a plain snapshot (dicts, lists, numbers)
gathered by the caller, nothing here touches the database or the clock.
The same input always yields the same order.

Members are dicts with at least ``user_id`` and ``user_name``
(``user_email`` is carried through untouched).

Algorithms:
    manual          input order as given
    quota_based     least accumulated points over recent processes first;
                    also reports an equal share of the period's points
    points_balance  least points earned from completed routines first
    fair_rotation   previous process order rotated by one position
"""

from routine_selection.core.exceptions import InvalidInputError
from routine_selection.models.selection import SELECTION_ALGORITHMS

NEW_MEMBER_PLACEMENTS = ("end", "start")


def name_key(member):
    """Sort key: case-folded display name, then user id."""
    return ((member.get("user_name") or "").casefold(), member["user_id"])


def validate_members(members):
    """Raise InvalidInputError for an empty list or duplicate user ids."""
    if not members:
        raise InvalidInputError("At least one member is required", details={"members": "empty"})
    seen = set()
    duplicates = []
    for member in members:
        user_id = member.get("user_id")
        if not user_id:
            raise InvalidInputError("Every member needs a user_id", details={"members": "missing user_id"})
        if user_id in seen:
            duplicates.append(user_id)
        seen.add(user_id)
    if duplicates:
        raise InvalidInputError(
            "Duplicate members in turn order",
            details={"duplicate_user_ids": sorted(set(duplicates))},
        )


def compute_turn_order(
    algorithm,
    members,
    start,
    end,
    *,
    instance_points=None,
    member_points=None,
    accumulated_points=None,
    last_history=None,
    new_member_placement="end",
):
    """Rank members for a selection process.

    Args:
        algorithm: One of SELECTION_ALGORITHMS.
        members: Participating member snapshots, in the caller's order.
        start, end: Inclusive selection period.
        instance_points: quota_based — points of each selectable instance in the period.
        member_points: points_balance — {user_id: points earned in the memory horizon}.
        accumulated_points: quota_based — {user_id: points picked in archived processes}.
        last_history: fair_rotation — latest archive as a dict with
            ``process_id``, ``process_name`` and ``final_turn_order``; None when
            the stable has no completed process.
        new_member_placement: fair_rotation — "end" or "start".

    Returns:
        {"turns": [member + {"order"}], "algorithm": str, "metadata": dict}

    Raises:
        InvalidInputError: empty/duplicate members, unknown algorithm,
            end before start, unknown placement.
    """
    if algorithm not in SELECTION_ALGORITHMS:
        raise InvalidInputError(
            f"Unknown selection algorithm: {algorithm!r}",
            details={"algorithm": algorithm, "allowed": list(SELECTION_ALGORITHMS)},
        )
    validate_members(members)
    if start is None or end is None:
        raise InvalidInputError("Selection period requires start and end dates")
    if end < start:
        raise InvalidInputError(
            "selection_end_date must not be before selection_start_date",
            details={"selection_start_date": start.isoformat(), "selection_end_date": end.isoformat()},
        )

    members = [dict(m) for m in members]
    if algorithm == "quota_based":
        ordered, metadata = _quota_based(members, instance_points or [], accumulated_points or {})
    elif algorithm == "points_balance":
        ordered, metadata = _points_balance(members, member_points or {})
    elif algorithm == "fair_rotation":
        if new_member_placement not in NEW_MEMBER_PLACEMENTS:
            raise InvalidInputError(
                f"Unknown new member placement: {new_member_placement!r}",
                details={"new_member_placement": new_member_placement,
                         "allowed": list(NEW_MEMBER_PLACEMENTS)},
            )
        ordered, metadata = _fair_rotation(members, last_history, new_member_placement)
    else:
        ordered, metadata = members, {}

    turns = []
    for position, member in enumerate(ordered, start=1):
        member["order"] = position
        turns.append(member)
    return {"turns": turns, "algorithm": algorithm, "metadata": metadata}


# ── Algorithms ───────────────────────────────────────────────────────────────


def _quota_based(members, instance_points, accumulated_points):
    total = sum(int(p or 0) for p in instance_points)
    count = len(members)

    ordered = sorted(
        members,
        key=lambda m: (accumulated_points.get(m["user_id"], 0), m["user_id"]),
    )

    # Integer shares: floor for everyone, remainder +1 to the first in order
    base, remainder = divmod(total, count)
    member_quotas = {
        m["user_id"]: base + (1 if index < remainder else 0)
        for index, m in enumerate(ordered)
    }

    metadata = {
        "total_available_points": total,
        "quota_per_member": round(total / count, 1),
        "member_quotas": member_quotas,
        "accumulated_points_map": {
            m["user_id"]: accumulated_points.get(m["user_id"], 0) for m in ordered
        },
    }
    return ordered, metadata


def _points_balance(members, member_points):
    def key(member):
        name, user_id = name_key(member)
        return (member_points.get(user_id, 0), name, user_id)

    ordered = sorted(members, key=key)
    metadata = {
        "member_points_map": {m["user_id"]: member_points.get(m["user_id"], 0) for m in ordered},
    }
    return ordered, metadata


def _fair_rotation(members, last_history, placement):
    by_id = {m["user_id"]: m for m in members}
    metadata = {"new_member_placement": placement}

    if not last_history or not last_history.get("final_turn_order"):
        metadata["new_member_ids"] = []
        return sorted(members, key=name_key), metadata

    previous = sorted(last_history["final_turn_order"], key=lambda e: e["order"])
    previous_ids = [e["user_id"] for e in previous]
    if previous_ids:
        previous_ids = previous_ids[1:] + previous_ids[:1]

    returning = [by_id[uid] for uid in previous_ids if uid in by_id]
    known = set(previous_ids)
    newcomers = sorted((m for m in members if m["user_id"] not in known), key=name_key)

    ordered = newcomers + returning if placement == "start" else returning + newcomers

    metadata.update({
        "previous_process_id": last_history.get("process_id"),
        "previous_process_name": last_history.get("process_name"),
        "new_member_ids": [m["user_id"] for m in newcomers],
    })
    return ordered, metadata


def period_contains(start, end, day):
    """Inclusive period membership test."""
    return day is not None and start <= day <= end


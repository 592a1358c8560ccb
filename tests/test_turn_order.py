"""
Tests: turn-order algorithms (pure functions, no database access).

Covers manual / quota_based / points_balance / fair_rotation ordering,
the quota remainder policy, new-member placement and input validation.
"""

from datetime import date

import pytest

from routine_selection.core.exceptions import InvalidInputError, ValidationError
from routine_selection.services.turn_order import compute_turn_order

START = date(2026, 11, 2)
END = date(2026, 11, 8)


def _member(user_id, name):
    return {"user_id": user_id, "user_name": name, "user_email": f"{user_id}@example.com"}


A = _member("a", "Anna")
B = _member("b", "bertil")
C = _member("c", "Cecilia")
D = _member("d", "David")


def _ids(result):
    return [t["user_id"] for t in result["turns"]]


class TestManual:
    def test_preserves_input_order(self):
        result = compute_turn_order("manual", [C, A, B], START, END)
        assert _ids(result) == ["c", "a", "b"]
        assert [t["order"] for t in result["turns"]] == [1, 2, 3]
        assert result["algorithm"] == "manual"

    def test_snapshot_fields_carried_through(self):
        result = compute_turn_order("manual", [A], START, END)
        assert result["turns"][0]["user_email"] == "a@example.com"
        assert result["turns"][0]["user_name"] == "Anna"

    def test_input_members_not_mutated(self):
        members = [dict(A), dict(B)]
        compute_turn_order("manual", members, START, END)
        assert "order" not in members[0]


class TestQuotaBased:
    def test_orders_by_accumulated_points_ascending(self):
        result = compute_turn_order(
            "quota_based", [A, B, C], START, END,
            instance_points=[3, 3, 4],
            accumulated_points={"a": 12, "b": 2, "c": 7},
        )
        assert _ids(result) == ["b", "c", "a"]

    def test_ties_broken_by_user_id(self):
        result = compute_turn_order(
            "quota_based", [C, B, A], START, END,
            instance_points=[1], accumulated_points={},
        )
        assert _ids(result) == ["a", "b", "c"]

    def test_quota_metadata_and_remainder_policy(self):
        # 10 points over 3 members: 3.3 each for display, 4/3/3 allocated
        result = compute_turn_order(
            "quota_based", [A, B, C], START, END,
            instance_points=[2, 3, 5],
            accumulated_points={"a": 0, "b": 1, "c": 2},
        )
        meta = result["metadata"]
        assert meta["total_available_points"] == 10
        assert meta["quota_per_member"] == 3.3
        assert meta["member_quotas"] == {"a": 4, "b": 3, "c": 3}
        assert sum(meta["member_quotas"].values()) == 10

    def test_no_instances_gives_zero_quota(self):
        result = compute_turn_order("quota_based", [A, B], START, END, instance_points=[])
        assert result["metadata"]["total_available_points"] == 0
        assert result["metadata"]["quota_per_member"] == 0.0
        assert result["metadata"]["member_quotas"] == {"a": 0, "b": 0}


class TestPointsBalance:
    def test_least_points_first(self):
        result = compute_turn_order(
            "points_balance", [A, B, C], START, END,
            member_points={"a": 30, "b": 10, "c": 20},
        )
        assert _ids(result) == ["b", "c", "a"]
        assert result["metadata"]["member_points_map"] == {"b": 10, "c": 20, "a": 30}

    def test_ties_broken_by_casefolded_name(self):
        # "bertil" sorts between "Anna" and "Cecilia" once case-folded
        result = compute_turn_order(
            "points_balance", [C, B, A], START, END, member_points={},
        )
        assert _ids(result) == ["a", "b", "c"]

    def test_missing_members_count_as_zero(self):
        result = compute_turn_order(
            "points_balance", [A, B], START, END, member_points={"a": 5},
        )
        assert _ids(result) == ["b", "a"]


class TestFairRotation:
    HISTORY = {
        "process_id": "p-prev",
        "process_name": "October",
        "final_turn_order": [
            {"user_id": "b", "user_name": "bertil", "order": 2},
            {"user_id": "a", "user_name": "Anna", "order": 1},
            {"user_id": "c", "user_name": "Cecilia", "order": 3},
        ],
    }

    def test_previous_first_goes_last(self):
        result = compute_turn_order("fair_rotation", [A, B, C], START, END, last_history=self.HISTORY)
        assert _ids(result) == ["b", "c", "a"]
        assert result["metadata"]["previous_process_id"] == "p-prev"
        assert result["metadata"]["previous_process_name"] == "October"

    def test_departed_members_dropped(self):
        result = compute_turn_order("fair_rotation", [A, C], START, END, last_history=self.HISTORY)
        assert _ids(result) == ["c", "a"]

    def test_new_member_placed_at_end_by_default(self):
        result = compute_turn_order("fair_rotation", [D, A, B, C], START, END, last_history=self.HISTORY)
        assert _ids(result) == ["b", "c", "a", "d"]
        assert result["metadata"]["new_member_ids"] == ["d"]
        assert result["metadata"]["new_member_placement"] == "end"

    def test_new_member_placed_at_start_when_configured(self):
        result = compute_turn_order(
            "fair_rotation", [D, A, B, C], START, END,
            last_history=self.HISTORY, new_member_placement="start",
        )
        assert _ids(result) == ["d", "b", "c", "a"]

    def test_without_history_orders_by_name(self):
        result = compute_turn_order("fair_rotation", [D, C, B, A], START, END, last_history=None)
        assert _ids(result) == ["a", "b", "c", "d"]
        assert "previous_process_id" not in result["metadata"]

    def test_unknown_placement_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_turn_order(
                "fair_rotation", [A], START, END, new_member_placement="middle",
            )


class TestValidation:
    def test_empty_members_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_turn_order("manual", [], START, END)

    def test_duplicate_members_rejected(self):
        with pytest.raises(InvalidInputError) as exc:
            compute_turn_order("manual", [A, B, A], START, END)
        assert exc.value.details["duplicate_user_ids"] == ["a"]

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_turn_order("manual", [A], END, START)

    def test_single_day_period_allowed(self):
        result = compute_turn_order("manual", [A], START, START)
        assert _ids(result) == ["a"]

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_turn_order("lottery", [A], START, END)

    def test_invalid_input_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            compute_turn_order("manual", [], START, END)


@pytest.mark.parametrize("algorithm", ["manual", "quota_based", "points_balance", "fair_rotation"])
def test_deterministic_for_identical_input(algorithm):
    kwargs = {
        "instance_points": [1, 2, 3],
        "accumulated_points": {"a": 1, "b": 1, "c": 0},
        "member_points": {"a": 4, "b": 4, "c": 4},
        "last_history": TestFairRotation.HISTORY,
    }
    first = compute_turn_order(algorithm, [C, A, B], START, END, **kwargs)
    second = compute_turn_order(algorithm, [C, A, B], START, END, **kwargs)
    assert first == second

"""
Selection Process API tests.

Test blocks:
  1. Identity headers
  2. Create / get / list
  3. Turn flow over HTTP (start → selections → complete-turn)
  4. Error mapping (status codes + ERR_ codes)
  5. Cancel / dates / history
  6. Health endpoints
"""

from datetime import date, timedelta

from routine_selection.models import db as _db
from routine_selection.models.routine import RoutineInstance

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
OWNER_ID = "u-owner"
ALICE, BOB, CAROL = "u-alice", "u-bob", "u-carol"

START = date.today() + timedelta(days=7)
END = START + timedelta(days=6)
BASE = "/api/v1/selection-processes"


def _make_instance(stable, instance_id, day=None, points=1):
    inst = RoutineInstance(
        id=instance_id,
        organization_id=stable.organization_id,
        stable_id=stable.id,
        template_name="Evening mucking",
        scheduled_date=day or START,
        points_value=points,
    )
    _db.session.add(inst)
    _db.session.commit()
    return inst


def _payload(stable, **overrides):
    data = {
        "stable_id": stable.id,
        "name": "November week 1",
        "algorithm": "manual",
        "selection_start_date": START.isoformat(),
        "selection_end_date": END.isoformat(),
        "members": [ALICE, BOB, CAROL],
    }
    data.update(overrides)
    return data


def _create(client, auth_headers, stable, **overrides):
    res = client.post(BASE, json=_payload(stable, **overrides), headers=auth_headers())
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _start(client, auth_headers, process_id):
    res = client.post(f"{BASE}/{process_id}/start", headers=auth_headers())
    assert res.status_code == 200, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Identity
# ═════════════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_missing_headers_rejected(self, client, stable):
        res = client.get(BASE)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_missing_organization_rejected(self, client, stable):
        res = client.get(BASE, headers={"X-User-Id": OWNER_ID})
        assert res.status_code == 401

    def test_request_id_header_set(self, client, stable, auth_headers):
        res = client.get(BASE, headers=auth_headers())
        assert res.headers.get("X-Request-ID")

    def test_other_organization_sees_nothing(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        res = client.get(f"{BASE}/{process['id']}", headers=auth_headers(OWNER_ID, OTHER_ORG_ID))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Create / get / list
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateAndRead:
    def test_create_returns_detail(self, client, stable, auth_headers):
        data = _create(client, auth_headers, stable)
        assert data["status"] == "draft"
        assert [t["user_id"] for t in data["turns"]] == [ALICE, BOB, CAROL]
        assert [t["order"] for t in data["turns"]] == [1, 2, 3]
        assert data["can_manage"] is True
        assert data["is_current_turn"] is False

    def test_get_includes_caller_context(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])

        res = client.get(f"{BASE}/{process['id']}", headers=auth_headers(BOB))
        data = res.get_json()
        assert res.status_code == 200
        assert data["user_turn_order"] == 2
        assert data["user_turn_status"] == "pending"
        assert data["turns_ahead"] == 1
        assert data["is_current_turn"] is False
        assert data["can_manage"] is False

    def test_list_summaries(self, client, stable, auth_headers):
        _create(client, auth_headers, stable, name="First")
        second = _create(client, auth_headers, stable, name="Second")
        _start(client, auth_headers, second["id"])

        res = client.get(f"{BASE}?stable_id={stable.id}", headers=auth_headers(ALICE))
        data = res.get_json()
        assert res.status_code == 200
        assert data["total"] == 2
        rows = {row["name"]: row for row in data["items"]}
        assert rows["Second"]["is_current_turn"] is True
        assert rows["Second"]["current_turn_user_name"] == "Alice Andersson"
        assert rows["Second"]["total_members"] == 3
        assert rows["First"]["current_turn_user_name"] is None

    def test_list_status_filter(self, client, stable, auth_headers):
        _create(client, auth_headers, stable)
        res = client.get(f"{BASE}?status=active", headers=auth_headers())
        assert res.get_json()["total"] == 0

    def test_list_invalid_status(self, client, stable, auth_headers):
        res = client.get(f"{BASE}?status=paused", headers=auth_headers())
        assert res.status_code == 400

    def test_list_pagination(self, client, stable, auth_headers):
        for n in range(3):
            _create(client, auth_headers, stable, name=f"P{n}")
        res = client.get(f"{BASE}?limit=2&offset=0", headers=auth_headers())
        data = res.get_json()
        assert data["total"] == 3
        assert len(data["items"]) == 2

    def test_compute_order_preview(self, client, stable, auth_headers):
        res = client.post(
            f"{BASE}/compute-order",
            json=_payload(stable, algorithm="fair_rotation", members=[CAROL, ALICE]),
            headers=auth_headers(),
        )
        data = res.get_json()
        assert res.status_code == 200
        assert [t["user_id"] for t in data["turns"]] == [ALICE, CAROL]
        assert data["metadata"]["new_member_placement"] == "end"

    def test_update_draft(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        res = client.put(
            f"{BASE}/{process['id']}",
            json={"name": "Renamed", "members": [BOB, ALICE]},
            headers=auth_headers(),
        )
        data = res.get_json()
        assert res.status_code == 200
        assert data["name"] == "Renamed"
        assert [t["user_id"] for t in data["turns"]] == [BOB, ALICE]


# ═════════════════════════════════════════════════════════════════════════════
# 3. Turn flow
# ═════════════════════════════════════════════════════════════════════════════


class TestTurnFlow:
    def test_full_round(self, client, stable, auth_headers):
        _make_instance(stable, "instance-17", points=3)
        process = _create(client, auth_headers, stable, members=[ALICE, BOB])
        started = _start(client, auth_headers, process["id"])
        assert started["status"] == "active"
        assert started["current_turn_user_id"] == ALICE
        assert started["current_turn_index"] == 0

        res = client.post(
            f"{BASE}/{process['id']}/selections",
            json={"routine_instance_id": "instance-17"},
            headers=auth_headers(ALICE),
        )
        assert res.status_code == 201
        entry = res.get_json()
        assert entry["sequence"] == 1
        assert entry["points_value"] == 3
        assert entry["selected_by"] == ALICE

        res = client.post(f"{BASE}/{process['id']}/complete-turn", headers=auth_headers(ALICE))
        assert res.get_json() == {
            "success": True,
            "next_turn_user_id": BOB,
            "next_turn_user_name": "Bob Berg",
            "process_completed": False,
        }

        res = client.post(f"{BASE}/{process['id']}/complete-turn", headers=auth_headers(BOB))
        assert res.get_json()["process_completed"] is True

        res = client.get(f"{BASE}/{process['id']}/selections", headers=auth_headers(BOB))
        ledger = res.get_json()
        assert ledger["total"] == 1
        assert ledger["items"][0]["routine_instance_id"] == "instance-17"

        res = client.get(f"/api/v1/stables/{stable.id}/selection-history", headers=auth_headers())
        history = res.get_json()
        assert history["total"] == 1
        assert history["items"][0]["process_id"] == process["id"]


# ═════════════════════════════════════════════════════════════════════════════
# 4. Error mapping
# ═════════════════════════════════════════════════════════════════════════════


class TestErrors:
    def test_validation_error_is_422(self, client, stable, auth_headers):
        res = client.post(BASE, json=_payload(stable, members=[]), headers=auth_headers())
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_non_object_body_is_400(self, client, stable, auth_headers):
        res = client.post(BASE, json=["not", "an", "object"], headers=auth_headers())
        assert res.status_code == 400

    def test_non_json_content_type_is_415(self, client, stable, auth_headers):
        res = client.post(BASE, data="name=x", content_type="text/plain", headers=auth_headers())
        assert res.status_code == 415

    def test_permission_denied_is_403(self, client, stable, auth_headers):
        res = client.post(BASE, json=_payload(stable), headers=auth_headers(ALICE))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_not_your_turn_is_403(self, client, stable, auth_headers):
        _make_instance(stable, "instance-5")
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])

        res = client.post(
            f"{BASE}/{process['id']}/selections",
            json={"routine_instance_id": "instance-5"},
            headers=auth_headers(BOB),
        )
        body = res.get_json()
        assert res.status_code == 403
        assert body["code"] == "ERR_NOT_YOUR_TURN"
        assert body["details"]["current_turn_user_id"] == ALICE

    def test_already_selected_is_409(self, client, stable, auth_headers):
        _make_instance(stable, "instance-17")
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])
        url = f"{BASE}/{process['id']}/selections"

        first = client.post(url, json={"routine_instance_id": "instance-17"}, headers=auth_headers(ALICE))
        second = client.post(url, json={"routine_instance_id": "instance-17"}, headers=auth_headers(ALICE))
        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()["code"] == "ERR_ALREADY_SELECTED"

    def test_invalid_state_is_409(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])
        res = client.post(f"{BASE}/{process['id']}/start", headers=auth_headers())
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_unknown_process_is_404(self, client, stable, auth_headers):
        res = client.get(f"{BASE}/does-not-exist", headers=auth_headers())
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 5. Cancel / dates
# ═════════════════════════════════════════════════════════════════════════════


class TestCancelAndDates:
    def test_cancel_with_reason(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        res = client.post(
            f"{BASE}/{process['id']}/cancel",
            json={"reason": "Holiday week"},
            headers=auth_headers(CAROL),
        )
        data = res.get_json()
        assert res.status_code == 200
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "Holiday week"
        assert data["cancelled_by"] == CAROL

    def test_patch_dates(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])
        new_end = (END + timedelta(days=3)).isoformat()
        res = client.patch(
            f"{BASE}/{process['id']}/dates",
            json={"selection_end_date": new_end},
            headers=auth_headers(),
        )
        assert res.status_code == 200
        assert res.get_json()["selection_end_date"] == new_end

    def test_patch_dates_in_past_rejected(self, client, stable, auth_headers):
        process = _create(client, auth_headers, stable)
        _start(client, auth_headers, process["id"])
        res = client.patch(
            f"{BASE}/{process['id']}/dates",
            json={"selection_start_date": (date.today() - timedelta(days=2)).isoformat()},
            headers=auth_headers(),
        )
        assert res.status_code == 422

    def test_history_of_unknown_stable_is_404(self, client, stable, auth_headers):
        res = client.get("/api/v1/stables/nope/selection-history", headers=auth_headers())
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 6. Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_health_needs_no_identity(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200

    def test_liveness_counts_open_processes(self, client, stable, auth_headers):
        _create(client, auth_headers, stable)
        res = client.get("/api/v1/health/live")
        data = res.get_json()
        assert res.status_code == 200
        assert data["database"]["status"] == "ok"
        assert data["open_processes"] == {"draft": 1, "active": 0}

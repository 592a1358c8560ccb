"""
Tests: selection history archive.

Exactly one archive row per completed process, none for cancelled ones,
and later fair_rotation / quota_based processes reading it back.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

import routine_selection.services.selection_process_service as sps
from routine_selection.core.exceptions import InvalidStateError
from routine_selection.models import db
from routine_selection.models.routine import RoutineInstance
from routine_selection.models.selection import SelectionProcessHistory
from routine_selection.services import selection_history_service as history_service

ORG_ID = "org-1"
OWNER_ID = "u-owner"
ALICE, BOB, CAROL = "u-alice", "u-bob", "u-carol"

START = date.today() + timedelta(days=7)
END = START + timedelta(days=6)


def _make_instance(stable, instance_id, points=1):
    inst = RoutineInstance(
        id=instance_id,
        organization_id=stable.organization_id,
        stable_id=stable.id,
        template_name="Hay round",
        scheduled_date=START,
        points_value=points,
    )
    db.session.add(inst)
    db.session.flush()
    return inst


def _run(stable, members, algorithm="manual", picks=None, name="Round"):
    """Create, start and play a process to completion.

    picks: {user_id: [instance ids]} chosen on that member's turn.
    """
    picks = picks or {}
    process = sps.create_process(ORG_ID, OWNER_ID, {
        "stable_id": stable.id,
        "name": name,
        "algorithm": algorithm,
        "selection_start_date": START.isoformat(),
        "selection_end_date": END.isoformat(),
        "members": list(members),
    })
    sps.start_process(process.id, ORG_ID, OWNER_ID)
    for turn in list(process.turns):
        for instance_id in picks.get(turn.user_id, []):
            sps.record_selection(process.id, ORG_ID, turn.user_id, instance_id)
        sps.complete_turn(process.id, ORG_ID, turn.user_id)
    return process


class TestArchive:
    def test_one_row_per_completed_process(self, stable):
        process = _run(stable, [ALICE, BOB])
        rows = SelectionProcessHistory.query.filter_by(process_id=process.id).all()
        assert len(rows) == 1
        assert rows[0].stable_id == stable.id
        assert rows[0].organization_id == ORG_ID
        assert rows[0].algorithm == "manual"
        assert rows[0].process_name == "Round"

    def test_archive_is_idempotent(self, stable):
        process = _run(stable, [ALICE])
        first = history_service.latest_history(ORG_ID, stable.id)
        again = history_service.archive_completed_process(process)
        assert again.id == first.id
        assert SelectionProcessHistory.query.count() == 1

    def test_archiving_an_active_process_is_refused(self, stable):
        process = sps.create_process(ORG_ID, OWNER_ID, {
            "stable_id": stable.id,
            "name": "Open",
            "selection_start_date": START.isoformat(),
            "selection_end_date": END.isoformat(),
            "members": [ALICE],
        })
        sps.start_process(process.id, ORG_ID, OWNER_ID)
        with pytest.raises(InvalidStateError):
            history_service.archive_completed_process(process)

    def test_final_turn_order_summarises_picks(self, stable):
        _make_instance(stable, "i-1", points=2)
        _make_instance(stable, "i-2", points=5)
        process = _run(stable, [BOB, ALICE], picks={ALICE: ["i-1", "i-2"]})

        history = history_service.latest_history(ORG_ID, stable.id)
        assert history.process_id == process.id
        assert history.final_turn_order == [
            {"user_id": BOB, "user_name": "Bob Berg", "order": 1,
             "selections_count": 0, "total_points_picked": 0},
            {"user_id": ALICE, "user_name": "Alice Andersson", "order": 2,
             "selections_count": 2, "total_points_picked": 7},
        ]

    def test_list_histories_newest_first(self, stable):
        _run(stable, [ALICE], name="Older")
        _run(stable, [ALICE], name="Newer")
        names = [h.process_name for h in history_service.list_histories(ORG_ID, stable.id)]
        assert names == ["Newer", "Older"]

    def test_histories_scoped_to_organization(self, stable):
        _run(stable, [ALICE])
        assert history_service.list_histories("org-2", stable.id).count() == 0
        assert history_service.latest_history("org-2", stable.id) is None


class TestFairRotationFromHistory:
    def test_previous_first_member_moves_to_end(self, stable):
        first = _run(stable, [ALICE, BOB, CAROL], algorithm="fair_rotation")
        assert [t.user_id for t in first.turns] == [ALICE, BOB, CAROL]

        second = _run(stable, [ALICE, BOB, CAROL], algorithm="fair_rotation")
        assert [t.user_id for t in second.turns] == [BOB, CAROL, ALICE]

        third = sps.create_process(ORG_ID, OWNER_ID, {
            "stable_id": stable.id,
            "name": "Third",
            "algorithm": "fair_rotation",
            "selection_start_date": START.isoformat(),
            "selection_end_date": END.isoformat(),
            "members": [ALICE, BOB, CAROL],
        })
        assert [t.user_id for t in third.turns] == [CAROL, ALICE, BOB]

    def test_newcomer_appended_by_configured_placement(self, app, stable):
        _run(stable, [ALICE, BOB], algorithm="fair_rotation")

        app.config["SELECTION_NEW_MEMBER_PLACEMENT"] = "start"
        try:
            process = sps.create_process(ORG_ID, OWNER_ID, {
                "stable_id": stable.id,
                "name": "With Carol",
                "algorithm": "fair_rotation",
                "selection_start_date": START.isoformat(),
                "selection_end_date": END.isoformat(),
                "members": [ALICE, BOB, CAROL],
            })
        finally:
            app.config["SELECTION_NEW_MEMBER_PLACEMENT"] = "end"
        assert [t.user_id for t in process.turns] == [CAROL, BOB, ALICE]

    def test_cancelled_process_does_not_count(self, stable):
        _run(stable, [ALICE, BOB], algorithm="fair_rotation")
        cancelled = sps.create_process(ORG_ID, OWNER_ID, {
            "stable_id": stable.id,
            "name": "Abandoned",
            "algorithm": "fair_rotation",
            "selection_start_date": START.isoformat(),
            "selection_end_date": END.isoformat(),
            "members": [ALICE, BOB],
        })
        sps.cancel_process(cancelled.id, ORG_ID, OWNER_ID)

        latest = history_service.latest_history(ORG_ID, stable.id)
        assert latest.process_name == "Round"


class TestQuotaFromHistory:
    def test_members_who_picked_more_go_later(self, stable):
        _make_instance(stable, "big", points=8)
        _make_instance(stable, "small", points=1)
        _run(stable, [ALICE, BOB], picks={ALICE: ["big"], BOB: ["small"]})

        process = sps.create_process(ORG_ID, OWNER_ID, {
            "stable_id": stable.id,
            "name": "Next",
            "algorithm": "quota_based",
            "selection_start_date": START.isoformat(),
            "selection_end_date": END.isoformat(),
            "members": [ALICE, BOB, CAROL],
        })
        assert [t.user_id for t in process.turns] == [CAROL, BOB, ALICE]

    def test_archives_outside_horizon_ignored(self, stable):
        _make_instance(stable, "big", points=8)
        _run(stable, [ALICE], picks={ALICE: ["big"]})
        history = history_service.latest_history(ORG_ID, stable.id)
        history.completed_at = datetime.now(timezone.utc) - timedelta(days=365)
        db.session.commit()

        process = sps.create_process(ORG_ID, OWNER_ID, {
            "stable_id": stable.id,
            "name": "Next",
            "algorithm": "quota_based",
            "selection_start_date": START.isoformat(),
            "selection_end_date": END.isoformat(),
            "members": [BOB, ALICE],
        })
        # tie at zero, broken by user id
        assert [t.user_id for t in process.turns] == [ALICE, BOB]

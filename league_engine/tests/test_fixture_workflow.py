"""
Tests for the fixture result workflow: submit/confirm/reject, counter-claims,
disputes, admin resolution, cancellation and replay safety.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from league_engine.errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from league_engine.models import Fixture, FixtureParticipant, FixtureScore
from league_engine.persistence.repositories import FixtureRepository, LeagueRepository, SubmissionRepository
from league_engine.rules import parse_rules
from league_engine.services.fixture_workflow import (
    ResultPayload,
    merge_fixtures,
    validate_result,
    validate_sets,
)

from .conftest import OWNER, actor


@pytest.fixture
def singles_fixture(db_conn, league_service, make_league):
    """Singles league (owner, a, b, c) with one ad-hoc fixture a vs b."""
    league = make_league(["a", "b", "c"])
    return league_service.create_fixture(db_conn, OWNER, league.id, ["a"], ["b"])


def _submissions(conn, fixture_id):
    return SubmissionRepository().list_by_fixture(conn, fixture_id)


# ---------- happy path ----------


def test_submit_then_opponent_confirms(db_conn, workflow_service, singles_fixture):
    fixture = workflow_service.submit_result(
        db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A", sets=[[6, 4], [6, 2]])
    )
    assert fixture.status == "awaiting_confirmation"
    pending = fixture.latest_submission
    assert pending.status == "pending" and pending.submitted_by == "a"

    fixture = workflow_service.confirm_result(db_conn, actor("b"), fixture.id, pending.id, "confirm")
    assert fixture.status == "completed"
    assert fixture.winner == "A"
    assert fixture.score.sets == [[6, 4], [6, 2]]
    assert fixture.latest_submission.status == "confirmed"
    assert fixture.latest_submission.reviewed_by == "b"


def test_reject_returns_to_scheduled_then_resubmit_completes(db_conn, workflow_service, singles_fixture):
    fixture = workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    first = fixture.latest_submission
    fixture = workflow_service.confirm_result(
        db_conn, actor("b"), fixture.id, first.id, "reject", reason="I won the third set"
    )
    assert fixture.status == "scheduled"
    assert fixture.latest_submission.status == "rejected"
    assert fixture.latest_submission.review_reason == "I won the third set"

    fixture = workflow_service.submit_result(db_conn, actor("b"), fixture.id, ResultPayload(winner="B"))
    assert fixture.status == "awaiting_confirmation"
    fixture = workflow_service.confirm_result(db_conn, actor("a"), fixture.id, fixture.latest_submission.id, "confirm")
    assert fixture.status == "completed"
    assert fixture.winner == "B"


# ---------- authorization ----------


def test_only_participants_submit(db_conn, workflow_service, singles_fixture):
    with pytest.raises(Unauthorized):
        workflow_service.submit_result(db_conn, actor("c"), singles_fixture.id, ResultPayload(winner="A"))
    with pytest.raises(Unauthorized):
        workflow_service.submit_result(db_conn, OWNER, singles_fixture.id, ResultPayload(winner="A"))


def test_submitter_and_bystanders_cannot_confirm(db_conn, workflow_service, singles_fixture):
    fixture = workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    sid = fixture.latest_submission.id
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("a"), fixture.id, sid, "confirm")
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("c"), fixture.id, sid, "confirm")
    fixture = workflow_service.confirm_result(db_conn, OWNER, fixture.id, sid, "confirm")
    assert fixture.status == "completed"


# ---------- counter-claims and disputes ----------


def test_agreeing_counter_claim_auto_confirms(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(
        db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="B", sets=[[3, 6], [4, 6]])
    )
    fixture = workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B"))
    assert fixture.status == "completed"
    assert fixture.winner == "B"
    assert fixture.score.sets == [[3, 6], [4, 6]]
    assert [s.status for s in _submissions(db_conn, fixture.id)] == ["confirmed", "confirmed"]


def test_conflicting_claims_dispute_and_keep_both(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    fixture = workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B"))
    assert fixture.status == "disputed"
    assert fixture.winner is None
    subs = _submissions(db_conn, fixture.id)
    assert [(s.submitted_by, s.winner, s.status) for s in subs] == [("a", "A", "pending"), ("b", "B", "pending")]
    with pytest.raises(InvalidTransition):
        workflow_service.submit_result(db_conn, actor("a"), fixture.id, ResultPayload(winner="A"))


def test_resolve_dispute(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A", sets=[[6, 1], [6, 1]]))
    workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B"))
    with pytest.raises(Unauthorized):
        workflow_service.resolve_dispute(db_conn, actor("a"), singles_fixture.id, "A")
    fixture = workflow_service.resolve_dispute(db_conn, OWNER, singles_fixture.id, "A", reason="Checked the scorecard")
    assert fixture.status == "completed"
    assert fixture.winner == "A"
    assert fixture.score.sets == [[6, 1], [6, 1]]
    assert fixture.notes == "Checked the scorecard"
    subs = _submissions(db_conn, fixture.id)
    assert [s.status for s in subs] == ["confirmed", "rejected"]
    # The losing claim cannot be revived afterwards.
    with pytest.raises(InvalidTransition):
        workflow_service.confirm_result(db_conn, actor("a"), fixture.id, subs[1].id, "confirm")


def test_resolve_requires_disputed(db_conn, workflow_service, singles_fixture):
    with pytest.raises(InvalidTransition):
        workflow_service.resolve_dispute(db_conn, OWNER, singles_fixture.id, "A")
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    with pytest.raises(InvalidTransition):
        workflow_service.resolve_dispute(db_conn, OWNER, singles_fixture.id, "A")


def test_admin_confirms_one_side_of_dispute(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    fixture = workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B"))
    b_claim = fixture.latest_submission
    fixture = workflow_service.confirm_result(db_conn, OWNER, fixture.id, b_claim.id, "confirm")
    assert fixture.status == "completed"
    assert fixture.winner == "B"
    assert [s.status for s in _submissions(db_conn, fixture.id)] == ["rejected", "confirmed"]


def test_admin_reject_keeps_fixture_disputed(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    fixture = workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B"))
    fixture = workflow_service.confirm_result(db_conn, OWNER, fixture.id, fixture.latest_submission.id, "reject")
    assert fixture.status == "disputed"
    assert [s.status for s in _submissions(db_conn, fixture.id)] == ["pending", "rejected"]
    fixture = workflow_service.resolve_dispute(db_conn, OWNER, fixture.id, "A")
    assert fixture.status == "completed"
    assert fixture.winner == "A"


def test_players_cannot_settle_a_dispute_themselves(db_conn, workflow_service, singles_fixture):
    a_claim = workflow_service.submit_result(
        db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A")
    ).latest_submission
    b_claim = workflow_service.submit_result(
        db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B")
    ).latest_submission
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("a"), singles_fixture.id, b_claim.id, "reject")
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("b"), singles_fixture.id, a_claim.id, "reject")
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("b"), singles_fixture.id, a_claim.id, "confirm")
    assert FixtureRepository().get(db_conn, singles_fixture.id).status == "disputed"
    assert [s.status for s in _submissions(db_conn, singles_fixture.id)] == ["pending", "pending"]


def test_same_side_resubmission_supersedes(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    fixture = workflow_service.submit_result(
        db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A", sets=[[7, 5], [6, 4]])
    )
    assert fixture.status == "awaiting_confirmation"
    assert [s.status for s in _submissions(db_conn, fixture.id)] == ["superseded", "pending"]


# ---------- replay safety ----------


def test_replayed_submission_id_is_a_no_op(db_conn, workflow_service, singles_fixture):
    payload = ResultPayload(winner="A")
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, payload, submission_id="sub-1")
    fixture = workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, payload, submission_id="sub-1")
    assert fixture.status == "awaiting_confirmation"
    assert len(_submissions(db_conn, fixture.id)) == 1

    workflow_service.confirm_result(db_conn, actor("b"), fixture.id, "sub-1", "confirm")
    again = workflow_service.confirm_result(db_conn, actor("b"), fixture.id, "sub-1", "confirm")
    assert again.status == "completed"
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("c"), fixture.id, "sub-1", "confirm")
    with pytest.raises(Unauthorized):
        workflow_service.confirm_result(db_conn, actor("a"), fixture.id, "sub-1", "confirm")
    replay = workflow_service.submit_result(db_conn, actor("a"), fixture.id, payload, submission_id="sub-1")
    assert replay.status == "completed"
    assert len(_submissions(db_conn, fixture.id)) == 1


def test_submission_id_reused_on_other_fixture(db_conn, workflow_service, league_service, singles_fixture):
    other = league_service.create_fixture(db_conn, OWNER, singles_fixture.league_id, ["a"], ["c"])
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"), submission_id="dup")
    with pytest.raises(ValidationError):
        workflow_service.submit_result(db_conn, actor("a"), other.id, ResultPayload(winner="A"), submission_id="dup")


def test_unknown_fixture_and_submission(db_conn, workflow_service, singles_fixture):
    with pytest.raises(NotFound):
        workflow_service.submit_result(db_conn, actor("a"), "missing", ResultPayload(winner="A"))
    with pytest.raises(NotFound):
        workflow_service.confirm_result(db_conn, actor("b"), singles_fixture.id, "missing", "confirm")


# ---------- forfeits and validation ----------


def test_forfeit_skips_score_validation(db_conn, workflow_service, singles_fixture):
    fixture = workflow_service.submit_result(
        db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="B", outcome_type="forfeit")
    )
    assert fixture.latest_submission.forfeit_reason == "other"
    fixture = workflow_service.confirm_result(db_conn, actor("a"), fixture.id, fixture.latest_submission.id, "confirm")
    assert fixture.outcome_type == "forfeit"
    assert fixture.forfeit_reason == "other"
    assert fixture.score is None


def test_invalid_payloads(db_conn, workflow_service, singles_fixture):
    for payload in (
        ResultPayload(winner="C"),
        ResultPayload(winner="A", sets=[[6, 6]]),
        ResultPayload(winner="A", sets=[[2, 6], [3, 6]]),
        ResultPayload(winner="A", outcome_type="forfeit", forfeit_reason="boredom"),
        ResultPayload(winner="A", outcome_type="walkover"),
    ):
        with pytest.raises(ValidationError):
            workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, payload)
    assert singles_fixture.status == "scheduled"
    assert _submissions(db_conn, singles_fixture.id) == []


def test_validate_sets():
    assert validate_sets([[6, 4], [3, 6], [7, 5]], "A") == [[6, 4], [3, 6], [7, 5]]
    with pytest.raises(ValidationError):
        validate_sets([[6, 4], [4, 6]], "A")
    with pytest.raises(ValidationError):
        validate_sets([[6, -1]], "A")
    with pytest.raises(ValidationError):
        validate_sets([[6.5, 4]], "A")


def test_team_result_derives_winner():
    result = validate_result("team_vs_team", ResultPayload(score_a=3, score_b=1))
    assert result.winner == "A"
    draw = validate_result("team_vs_team", ResultPayload(score_a=2, score_b=2))
    assert draw.winner is None
    with pytest.raises(ValidationError):
        validate_result("team_vs_team", ResultPayload(winner="B", score_a=3, score_b=1))
    with pytest.raises(ValidationError):
        validate_result("team_vs_team", ResultPayload(score_a=3))


def test_team_claims_must_agree_on_score(db_conn, league_service, workflow_service, make_league):
    league = make_league(["a", "b", "c"], scoring_format="team_vs_team")
    fixture = league_service.create_fixture(db_conn, OWNER, league.id, ["owner", "a"], ["b", "c"])
    workflow_service.submit_result(db_conn, actor("a"), fixture.id, ResultPayload(score_a=3, score_b=1))
    disputed = workflow_service.submit_result(db_conn, actor("b"), fixture.id, ResultPayload(score_a=3, score_b=2))
    assert disputed.status == "disputed"

    second = league_service.create_fixture(db_conn, OWNER, league.id, ["owner", "a"], ["b", "c"])
    workflow_service.submit_result(db_conn, actor("owner"), second.id, ResultPayload(score_a=1, score_b=1))
    done = workflow_service.submit_result(db_conn, actor("c"), second.id, ResultPayload(score_a=1, score_b=1))
    assert done.status == "completed"
    assert done.winner is None
    assert (done.score.score_a, done.score.score_b) == (1, 1)


def test_workflow_not_used_for_individual_formats(db_conn, league_service, workflow_service, make_league):
    league = make_league(["x"], scoring_format="individual_points")
    recorded = league_service.record_match(db_conn, OWNER, league.id, [FixtureParticipant("x", points=4)])
    with pytest.raises(ValidationError):
        workflow_service.submit_result(db_conn, actor("x"), recorded.id, ResultPayload(winner="A"))


def _set_submission_rules(conn, league_id, **flags):
    repo = LeagueRepository()
    rules = parse_rules(repo.get(conn, league_id).rules)
    for name, value in flags.items():
        setattr(rules.submissions, name, value)
    repo.update_rules(conn, league_id, rules.to_dict(), rules.version)


def test_result_completes_without_opponent_confirmation(db_conn, workflow_service, singles_fixture):
    _set_submission_rules(db_conn, singles_fixture.league_id, require_opponent_confirmation=False)
    fixture = workflow_service.submit_result(
        db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A", sets=[[6, 2], [6, 3]])
    )
    assert fixture.status == "completed"
    assert fixture.winner == "A"
    assert fixture.latest_submission.status == "confirmed"


def test_participant_submission_can_be_disabled(db_conn, workflow_service, singles_fixture):
    _set_submission_rules(db_conn, singles_fixture.league_id, allow_participant_submission=False)
    with pytest.raises(Unauthorized):
        workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    assert _submissions(db_conn, singles_fixture.id) == []


# ---------- cancellation ----------


def test_cancel_fixture(db_conn, workflow_service, singles_fixture):
    fixture = workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    with pytest.raises(Unauthorized):
        workflow_service.cancel_fixture(db_conn, actor("a"), fixture.id)
    fixture = workflow_service.cancel_fixture(db_conn, OWNER, fixture.id, reason="Rained off")
    assert fixture.status == "cancelled"
    assert fixture.notes == "Rained off"
    assert fixture.latest_submission.status == "rejected"
    assert workflow_service.cancel_fixture(db_conn, OWNER, fixture.id).status == "cancelled"
    with pytest.raises(InvalidTransition):
        workflow_service.submit_result(db_conn, actor("b"), fixture.id, ResultPayload(winner="B"))


def test_cannot_cancel_completed(db_conn, workflow_service, singles_fixture):
    workflow_service.submit_result(db_conn, actor("a"), singles_fixture.id, ResultPayload(winner="A"))
    workflow_service.submit_result(db_conn, actor("b"), singles_fixture.id, ResultPayload(winner="A"))
    with pytest.raises(InvalidTransition):
        workflow_service.cancel_fixture(db_conn, OWNER, singles_fixture.id)


# ---------- merge ----------


def _fixture(fid, source, created, starts=None, status="completed"):
    return Fixture(
        id=fid, league_id="L", source=source, status=status,
        created_at=datetime(2026, 1, created, tzinfo=timezone.utc),
        starts_at=datetime(2026, 1, starts, tzinfo=timezone.utc) if starts else None,
    )


def test_merge_prefers_workflow_on_id_collision():
    legacy = [_fixture("m1", "legacy", 1), _fixture("m2", "legacy", 2)]
    workflow = [_fixture("m2", "workflow", 3, status="awaiting_confirmation"), _fixture("m3", "workflow", 4)]
    merged = merge_fixtures(legacy, workflow)
    assert [f.id for f in merged] == ["m3", "m2", "m1"]
    assert {f.id: f.source for f in merged}["m2"] == "workflow"


def test_merge_orders_by_start_time_before_creation():
    early_created_late_start = _fixture("a", "workflow", 1, starts=20)
    late_created = _fixture("b", "legacy", 10)
    assert [f.id for f in merge_fixtures([late_created], [early_created_late_start])] == ["a", "b"]
    assert merge_fixtures([], []) == []


def test_score_dataclass_empty():
    assert FixtureScore().is_empty()

"""
Tests for the standings calculator. Mostly pure: fixtures and sessions are
built in memory. The last tests go through the league service end to end.
"""
from __future__ import annotations

from datetime import datetime, timezone

from league_engine.models import (
    AssignedPair,
    Fixture,
    FixtureParticipant,
    FixtureScore,
    LeagueMember,
    RunningSession,
    SessionRun,
)
from league_engine.services.fixture_workflow import ResultPayload
from league_engine.services.standings import compute_standings

from .conftest import OWNER, actor

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _member(uid, name=None):
    return LeagueMember(league_id="L", user_id=uid, role="member", joined_at=T0, name=name)


def _match(fid, side_a, side_b, winner, sets=None, score_a=None, score_b=None, status="completed"):
    score = None
    if sets or score_a is not None:
        score = FixtureScore(sets=sets, score_a=score_a, score_b=score_b)
    participants = [FixtureParticipant(uid, side="A") for uid in side_a] + [
        FixtureParticipant(uid, side="B") for uid in side_b
    ]
    return Fixture(
        id=fid, league_id="L", source="workflow", status=status, created_at=T0,
        winner=winner, outcome_type="played", score=score, participants=participants,
    )


def _individual(fid, **entries):
    participants = []
    for uid, value in entries.items():
        if isinstance(value, tuple):
            participants.append(FixtureParticipant(uid, time_seconds=value[0]))
        else:
            participants.append(FixtureParticipant(uid, points=value))
    return Fixture(id=fid, league_id="L", source="legacy", status="completed", created_at=T0, participants=participants)


def _session(sid, week, runs, status="finalized", distance=5000.0):
    return RunningSession(
        id=sid, league_id="L", week_number=week, distance_meters=distance,
        comparison_mode="personal_progress", status=status, created_at=T0,
        runs=[
            SessionRun(
                id=f"{sid}-{uid}", session_id=sid, user_id=uid, elapsed_seconds=secs,
                distance_meters=dist, status=run_status, submitted_at=T0,
            )
            for uid, secs, dist, run_status in runs
        ],
    )


# ---------- general ----------


def test_empty_fixture_set_gives_empty_standings():
    for fmt in ("singles", "doubles", "team_vs_team", "individual_points", "individual_time"):
        result = compute_standings(fmt, [], members=[_member("a"), _member("b")])
        assert result.standings == []
        assert result.team_standings == []


def test_members_without_completed_results_are_left_out():
    fixtures = [
        _match("f1", ["a"], ["b"], "A"),
        _match("f2", ["c"], ["d"], None, status="scheduled"),
        _match("f3", ["c"], ["d"], None, status="cancelled"),
    ]
    result = compute_standings("singles", fixtures, members=[_member(u) for u in "abcd"])
    assert [s.user_id for s in result.standings] == ["a", "b"]
    assert [s.rank for s in result.standings] == [1, 2]


# ---------- singles / doubles individual view ----------


def test_individual_view_tiebreaks():
    members = [_member("a", "Zed"), _member("b", "Bo"), _member("c", "Amy"), _member("d", "Dee")]
    fixtures = [
        _match("f1", ["a"], ["b"], "A"),
        _match("f2", ["c"], ["d"], "A"),
        _match("f3", ["b"], ["d"], "A"),
    ]
    result = compute_standings("singles", fixtures, members=members)
    # a and c are both 1-0; name breaks the tie.
    assert [s.user_id for s in result.standings] == ["c", "a", "b", "d"]
    b = result.standings[2]
    assert (b.played, b.wins, b.losses, b.name) == (2, 1, 1, "Bo")


def test_more_games_ranks_higher_on_equal_win_pct():
    fixtures = [
        _match("f1", ["a"], ["b"], "A"),
        _match("f2", ["c"], ["d"], "A"),
        _match("f3", ["c"], ["b"], "A"),
    ]
    result = compute_standings("singles", fixtures, members=[_member(u) for u in "abcd"])
    assert [s.user_id for s in result.standings][:2] == ["c", "a"]


# ---------- doubles team view ----------


def test_team_view_head_to_head_beats_point_differential():
    fixtures = [
        _match("f1", ["a", "b"], ["c", "d"], "A", sets=[[6, 4], [6, 4]]),
        _match("f2", ["c", "d"], ["e", "f"], "A", sets=[[6, 0], [6, 0]]),
        _match("f3", ["g", "h"], ["a", "b"], "A", sets=[[6, 0], [6, 0]]),
    ]
    result = compute_standings("doubles", fixtures, members=[_member(u) for u in "abcdefgh"])
    keys = [t.team_key for t in result.team_standings]
    assert keys == ["g:h", "a:b", "c:d", "e:f"]
    ab = result.team_standings[1]
    cd = result.team_standings[2]
    assert ab.win_pct == cd.win_pct == 0.5
    assert ab.point_differential < cd.point_differential
    assert all(t.kind == "adhoc" for t in result.team_standings)


def test_team_view_point_differential_when_head_to_head_is_level():
    fixtures = [
        _match("f1", ["a", "b"], ["c", "d"], "A", sets=[[6, 0], [6, 0]]),
        _match("f2", ["c", "d"], ["e", "f"], "A", sets=[[6, 4], [6, 4]]),
        _match("f3", ["e", "f"], ["a", "b"], "A", sets=[[6, 4], [6, 4]]),
    ]
    result = compute_standings("doubles", fixtures, members=[_member(u) for u in "abcdef"])
    assert [t.team_key for t in result.team_standings] == ["a:b", "e:f", "c:d"]


def test_team_view_groups_assigned_before_adhoc():
    pairs = [AssignedPair("L", "a", "b", 0), AssignedPair("L", "c", "d", 1)]
    fixtures = [
        _match("f1", ["a", "b"], ["c", "d"], "B"),
        _match("f2", ["a", "c"], ["b", "d"], "A"),
    ]
    result = compute_standings("doubles", fixtures, members=[_member(u) for u in "abcd"], assigned_pairs=pairs)
    rows = [(t.team_key, t.kind, t.rank) for t in result.team_standings]
    assert rows == [("c:d", "assigned", 1), ("a:b", "assigned", 2), ("a:c", "adhoc", 1), ("b:d", "adhoc", 2)]
    # The individual view is still produced alongside.
    assert len(result.standings) == 4


# ---------- team_vs_team ----------


def test_team_vs_team_three_one_is_deterministic():
    fixtures = [_match("f1", ["a1", "a2"], ["b1", "b2"], "A", score_a=3, score_b=1)]
    members = [_member(u) for u in ("b1", "b2", "a1", "a2")]
    first = compute_standings("team_vs_team", fixtures, members=members)
    second = compute_standings("team_vs_team", fixtures, members=members)
    assert first.to_dict() == second.to_dict()
    top = first.standings[0]
    assert (top.user_id, top.points, top.goals_for, top.goal_difference) == ("a1", 3, 3, 2)
    assert [s.user_id for s in first.standings] == ["a1", "a2", "b1", "b2"]
    assert first.standings[-1].losses == 1


def test_team_vs_team_draw_and_goal_tiebreaks():
    fixtures = [
        _match("f1", ["a"], ["b"], None, score_a=2, score_b=2),
        _match("f2", ["c"], ["d"], "A", score_a=1, score_b=0),
        _match("f3", ["e"], ["f"], "A", score_a=4, score_b=3),
    ]
    result = compute_standings("team_vs_team", fixtures, members=[_member(u) for u in "abcdef"])
    # c and e: 3 pts, +1 each; e scored more.
    assert [s.user_id for s in result.standings] == ["e", "c", "a", "b", "f", "d"]
    assert result.standings[2].draws == 1 and result.standings[2].points == 1


def test_team_vs_team_custom_points():
    fixtures = [_match("f1", ["a"], ["b"], "A", score_a=1, score_b=0)]
    result = compute_standings("team_vs_team", fixtures, points=(2, 1, 0))
    assert result.standings[0].points == 2


# ---------- individual_points ----------


def test_individual_points_ranks_by_total():
    result = compute_standings("individual_points", [_individual("f1", X=10, Y=7)])
    assert [(s.user_id, s.total_points, s.rank) for s in result.standings] == [("X", 10, 1), ("Y", 7, 2)]


def test_individual_points_fewer_games_wins_tie():
    fixtures = [_individual("f1", X=5, Y=10), _individual("f2", X=5)]
    result = compute_standings("individual_points", fixtures)
    assert [s.user_id for s in result.standings] == ["Y", "X"]


# ---------- individual_time ----------


def test_absolute_performance_fastest_first():
    sessions = [_session("s1", 1, [("slow", 75, 5000, "approved"), ("fast", 60, 5000, "approved")])]
    result = compute_standings("individual_time", [], sessions=sessions, running_mode="absolute_performance")
    assert result.running_mode == "absolute_performance"
    assert [s.user_id for s in result.standings] == ["fast", "slow"]
    assert result.standings[0].best_time == 60


def test_absolute_performance_distance_tiebreak_and_legacy_times():
    sessions = [
        _session("s1", 1, [("a", 1500, 5000, "approved"), ("b", 1500, 5000, "approved")]),
        _session("s2", 2, [("b", 1600, 5000, "approved")]),
    ]
    legacy = [_individual("f1", c=(1400.0,))]
    result = compute_standings("individual_time", legacy, sessions=sessions, running_mode="absolute_performance")
    assert [s.user_id for s in result.standings] == ["c", "b", "a"]


def test_only_approved_runs_of_finalized_sessions_count():
    sessions = [
        _session("s1", 1, [("a", 1500, 5000, "approved"), ("b", 1200, 5000, "rejected"), ("c", 1100, 5000, "pending")]),
        _session("s2", 2, [("d", 1000, 5000, "approved")], status="open"),
    ]
    result = compute_standings("individual_time", [], sessions=sessions, running_mode="absolute_performance")
    assert [s.user_id for s in result.standings] == ["a"]


def test_personal_progress_improvement():
    sessions = [
        _session("s2", 2, [("p", 1425, 5000, "approved"), ("q", 1400, 5000, "approved")]),
        _session("s1", 1, [("p", 1500, 5000, "approved"), ("q", 1400, 5000, "approved"), ("r", 1300, 5000, "approved")]),
    ]
    result = compute_standings("individual_time", [], sessions=sessions, running_mode="personal_progress")
    assert result.running_mode == "personal_progress"
    assert [s.user_id for s in result.standings] == ["p", "r", "q"]
    p = result.standings[0]
    assert round(p.improvement_pct, 6) == 5.0
    assert result.standings[1].improvement_pct == 0.0


def test_timed_legacy_fixtures_ignored_in_personal_progress():
    legacy = [_individual("f1", c=(1400.0,))]
    result = compute_standings("individual_time", legacy, sessions=[], running_mode="personal_progress")
    assert result.standings == []


# ---------- through the service ----------


def test_service_standings_follow_workflow(db_conn, league_service, workflow_service, make_league):
    league = make_league(["a", "b"])
    f1 = league_service.create_fixture(db_conn, OWNER, league.id, ["a"], ["b"])
    f2 = league_service.create_fixture(db_conn, OWNER, league.id, ["owner"], ["a"])
    workflow_service.submit_result(db_conn, actor("a"), f1.id, ResultPayload(winner="A"))
    assert league_service.get_standings(db_conn, league.id).standings == []

    workflow_service.submit_result(db_conn, actor("b"), f1.id, ResultPayload(winner="A"))
    workflow_service.submit_result(db_conn, actor("owner"), f2.id, ResultPayload(winner="B"))
    workflow_service.submit_result(db_conn, actor("a"), f2.id, ResultPayload(winner="B"))
    result = league_service.get_standings(db_conn, league.id)
    rows = [(s.user_id, s.name, s.wins, s.losses) for s in result.standings]
    # Equal records fall back to name order.
    assert rows == [("a", "A", 2, 0), ("b", "B", 0, 1), ("owner", "Olivia", 0, 1)]
    assert result.running_mode is None
    assert result.to_dict() == league_service.get_standings(db_conn, league.id).to_dict()


def test_service_standings_running_mode(db_conn, league_service, make_league):
    league = make_league(sport_type="running", scoring_format="individual_time", comparison_mode="absolute_performance")
    result = league_service.get_standings(db_conn, league.id)
    assert result.running_mode == "absolute_performance"
    assert result.standings == []

"""
Standings calculator. Pure: reads completed fixtures and finalized running
sessions, never mutates them, and returns freshly built rows on every call.

Entities with no completed result are left out entirely. Ranks are 1-based
and strict; the last tiebreak everywhere is first-seen order (roster order,
then order of appearance), so equal inputs always give equal output.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from league_engine.models import (
    AssignedPair,
    ComparisonMode,
    Fixture,
    FixtureStatus,
    LeagueMember,
    RunningSession,
    RunStatus,
    ScoringFormat,
    SessionStatus,
    Side,
    Standing,
    TeamStanding,
    team_key,
)

WIN_POINTS = 3
DRAW_POINTS = 1
LOSS_POINTS = 0


@dataclass
class StandingsResult:
    standings: list[Standing] = field(default_factory=list)
    team_standings: list[TeamStanding] = field(default_factory=list)
    running_mode: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "standings": [s.to_dict() for s in self.standings],
            "team_standings": [t.to_dict() for t in self.team_standings],
            "running_mode": self.running_mode,
        }


class _Roster:
    """Names and deterministic first-seen order for every user id encountered."""

    def __init__(self, members: Sequence[LeagueMember]) -> None:
        self._order: dict[str, int] = {}
        self._names: dict[str, str | None] = {}
        for m in members:
            self.see(m.user_id, m.name)

    def see(self, user_id: str, name: str | None = None) -> None:
        if user_id not in self._order:
            self._order[user_id] = len(self._order)
        if name and not self._names.get(user_id):
            self._names[user_id] = name

    def order(self, user_id: str) -> int:
        return self._order.get(user_id, len(self._order))

    def name(self, user_id: str) -> str | None:
        return self._names.get(user_id)


def _completed(fixtures: Iterable[Fixture]) -> list[Fixture]:
    return [f for f in fixtures if f.status == FixtureStatus.COMPLETED.value]


def _assign_ranks(rows: list) -> list:
    for i, row in enumerate(rows, start=1):
        row.rank = i
    return rows


def _row(rows: dict[str, Standing], roster: _Roster, user_id: str) -> Standing:
    if user_id not in rows:
        rows[user_id] = Standing(user_id=user_id, name=roster.name(user_id))
    return rows[user_id]


def _side_games(fixture: Fixture) -> tuple[int, int]:
    """Total games won by side A and side B across all sets."""
    if fixture.score is None or not fixture.score.sets:
        return 0, 0
    return sum(s[0] for s in fixture.score.sets), sum(s[1] for s in fixture.score.sets)


# ---------- singles / doubles: individual view ----------


def individual_win_loss_standings(fixtures: Iterable[Fixture], roster: _Roster) -> list[Standing]:
    """Win % desc, then games played desc, then name, then roster order."""
    rows: dict[str, Standing] = {}
    for f in _completed(fixtures):
        if f.winner not in (Side.A.value, Side.B.value):
            continue
        for p in f.participants:
            if p.side is None:
                continue
            roster.see(p.user_id, p.name)
            row = _row(rows, roster, p.user_id)
            row.played += 1
            if p.side == f.winner:
                row.wins += 1
            else:
                row.losses += 1
    ordered = sorted(
        rows.values(),
        key=lambda s: (
            -s.win_pct,
            -s.played,
            s.name is None,
            (s.name or "").lower(),
            roster.order(s.user_id),
        ),
    )
    return _assign_ranks(ordered)


# ---------- doubles: team view ----------


def _rank_teams(teams: list[TeamStanding], h2h: dict[tuple[str, str], int], first_seen: dict[str, int]) -> list[TeamStanding]:
    """
    Win % desc; within a group tied on win %, wins against the other tied teams
    (head-to-head mini table), then point differential, then first-seen order.
    """
    by_pct = sorted(teams, key=lambda t: (-t.win_pct, first_seen[t.team_key]))
    ordered: list[TeamStanding] = []
    i = 0
    while i < len(by_pct):
        j = i
        while j < len(by_pct) and by_pct[j].win_pct == by_pct[i].win_pct:
            j += 1
        tied = by_pct[i:j]
        if len(tied) > 1:
            keys = {t.team_key for t in tied}

            def h2h_wins(t: TeamStanding) -> int:
                return sum(h2h.get((t.team_key, other), 0) for other in keys if other != t.team_key)

            tied = sorted(tied, key=lambda t: (-h2h_wins(t), -t.point_differential, first_seen[t.team_key]))
        ordered.extend(tied)
        i = j
    return _assign_ranks(ordered)


def doubles_team_standings(
    fixtures: Iterable[Fixture],
    roster: _Roster,
    assigned_pairs: Sequence[AssignedPair] = (),
) -> list[TeamStanding]:
    """
    One row per unordered pair of partners. Assigned pairs and ad-hoc pairs are
    ranked as separate groups; assigned rows come first.
    """
    assigned_keys = {p.key for p in assigned_pairs}
    teams: dict[str, TeamStanding] = {}
    first_seen: dict[str, int] = {}
    h2h: dict[tuple[str, str], int] = {}
    for f in _completed(fixtures):
        if f.winner not in (Side.A.value, Side.B.value):
            continue
        side_a = f.side_members(Side.A.value)
        side_b = f.side_members(Side.B.value)
        if len(side_a) != 2 or len(side_b) != 2:
            continue
        games_a, games_b = _side_games(f)
        sides = {Side.A.value: (side_a, games_a, games_b), Side.B.value: (side_b, games_b, games_a)}
        keys = {s: team_key(members) for s, (members, _, _) in sides.items()}
        for side, (members, pts_for, pts_against) in sides.items():
            key = keys[side]
            if key not in teams:
                ids = sorted(members, key=roster.order)
                teams[key] = TeamStanding(
                    team_key=key,
                    player_ids=ids,
                    player_names=[roster.name(uid) for uid in ids],
                    kind="assigned" if key in assigned_keys else "adhoc",
                )
                first_seen[key] = len(first_seen)
            t = teams[key]
            t.played += 1
            t.points_for += pts_for
            t.points_against += pts_against
            if side == f.winner:
                t.wins += 1
                opp = keys[Side(side).opposite.value]
                h2h[(key, opp)] = h2h.get((key, opp), 0) + 1
            else:
                t.losses += 1
    assigned = [t for t in teams.values() if t.kind == "assigned"]
    adhoc = [t for t in teams.values() if t.kind == "adhoc"]
    return _rank_teams(assigned, h2h, first_seen) + _rank_teams(adhoc, h2h, first_seen)


# ---------- team_vs_team ----------


def team_vs_team_standings(
    fixtures: Iterable[Fixture],
    roster: _Roster,
    win_points: int = WIN_POINTS,
    draw_points: int = DRAW_POINTS,
    loss_points: int = LOSS_POINTS,
) -> list[Standing]:
    """League points desc, then goal differential desc, then goals scored desc."""
    rows: dict[str, Standing] = {}
    for f in _completed(fixtures):
        score_a = f.score.score_a if f.score and f.score.score_a is not None else 0.0
        score_b = f.score.score_b if f.score and f.score.score_b is not None else 0.0
        for p in f.participants:
            if p.side not in (Side.A.value, Side.B.value):
                continue
            roster.see(p.user_id, p.name)
            row = _row(rows, roster, p.user_id)
            own, other = (score_a, score_b) if p.side == Side.A.value else (score_b, score_a)
            row.played += 1
            row.goals_for += own
            row.goals_against += other
            if f.winner is None:
                row.draws += 1
                row.points += draw_points
            elif f.winner == p.side:
                row.wins += 1
                row.points += win_points
            else:
                row.losses += 1
                row.points += loss_points
    ordered = sorted(
        rows.values(),
        key=lambda s: (-s.points, -s.goal_difference, -s.goals_for, roster.order(s.user_id)),
    )
    return _assign_ranks(ordered)


# ---------- individual_points ----------


def individual_points_standings(fixtures: Iterable[Fixture], roster: _Roster) -> list[Standing]:
    """Total points desc; fewer games played ranks higher on equal points."""
    rows: dict[str, Standing] = {}
    for f in _completed(fixtures):
        for p in f.participants:
            if p.points is None:
                continue
            roster.see(p.user_id, p.name)
            row = _row(rows, roster, p.user_id)
            row.played += 1
            row.total_points += p.points
    ordered = sorted(rows.values(), key=lambda s: (-s.total_points, s.played, roster.order(s.user_id)))
    return _assign_ranks(ordered)


# ---------- individual_time ----------


def _finalized_chronological(sessions: Iterable[RunningSession]) -> list[RunningSession]:
    finalized = [s for s in sessions if s.status == SessionStatus.FINALIZED.value]
    return sorted(
        finalized,
        key=lambda s: (
            s.week_number,
            s.starts_at is None,
            s.starts_at.isoformat() if s.starts_at else "",
            s.created_at.isoformat(),
        ),
    )


def absolute_performance_standings(
    sessions: Iterable[RunningSession],
    roster: _Roster,
    timed_fixtures: Iterable[Fixture] = (),
) -> list[Standing]:
    """Best single elapsed time asc, then total distance covered desc."""
    rows: dict[str, Standing] = {}

    def add(user_id: str, elapsed: float, distance: float) -> None:
        row = _row(rows, roster, user_id)
        row.played += 1
        row.total_time += elapsed
        row.total_distance += distance
        if row.best_time is None or elapsed < row.best_time:
            row.best_time = elapsed
        if distance > 0:
            pace = elapsed / (distance / 1000.0)
            if row.best_pace is None or pace < row.best_pace:
                row.best_pace = pace

    for session in _finalized_chronological(sessions):
        for run in session.runs:
            if run.status != RunStatus.APPROVED.value:
                continue
            roster.see(run.user_id)
            add(run.user_id, run.elapsed_seconds, run.distance_meters)
    for f in _completed(timed_fixtures):
        for p in f.participants:
            if p.time_seconds is None or p.time_seconds <= 0:
                continue
            roster.see(p.user_id, p.name)
            add(p.user_id, p.time_seconds, 0.0)
    ordered = sorted(
        rows.values(),
        key=lambda s: (s.best_time, -s.total_distance, roster.order(s.user_id)),
    )
    return _assign_ranks(ordered)


def personal_progress_standings(sessions: Iterable[RunningSession], roster: _Roster) -> list[Standing]:
    """
    Each runner is compared against their own previous finalized run, in week
    order. Improvement % summed across consecutive runs desc, then best pace asc.
    """
    rows: dict[str, Standing] = {}
    last_pace: dict[str, float] = {}
    for session in _finalized_chronological(sessions):
        for run in session.runs:
            if run.status != RunStatus.APPROVED.value or run.distance_meters <= 0:
                continue
            roster.see(run.user_id)
            row = _row(rows, roster, run.user_id)
            pace = run.pace
            prev = last_pace.get(run.user_id)
            if prev is not None and prev > 0:
                row.improvement_pct += (prev - pace) / prev * 100.0
            last_pace[run.user_id] = pace
            row.played += 1
            row.total_time += run.elapsed_seconds
            row.total_distance += run.distance_meters
            if row.best_time is None or run.elapsed_seconds < row.best_time:
                row.best_time = run.elapsed_seconds
            if row.best_pace is None or pace < row.best_pace:
                row.best_pace = pace
    ordered = sorted(
        rows.values(),
        key=lambda s: (-s.improvement_pct, s.best_pace, roster.order(s.user_id)),
    )
    return _assign_ranks(ordered)


# ---------- entry point ----------


def compute_standings(
    scoring_format: str,
    fixtures: Sequence[Fixture],
    members: Sequence[LeagueMember] = (),
    sessions: Sequence[RunningSession] = (),
    assigned_pairs: Sequence[AssignedPair] = (),
    running_mode: str | None = None,
    points: tuple[int, int, int] = (WIN_POINTS, DRAW_POINTS, LOSS_POINTS),
) -> StandingsResult:
    """
    Full standings for one league from its fixtures and running sessions.
    running_mode applies to individual_time leagues only.
    """
    roster = _Roster(members)
    result = StandingsResult()
    builders: dict[str, Callable[[], list[Standing]]] = {
        ScoringFormat.SINGLES.value: lambda: individual_win_loss_standings(fixtures, roster),
        ScoringFormat.DOUBLES.value: lambda: individual_win_loss_standings(fixtures, roster),
        ScoringFormat.TEAM_VS_TEAM.value: lambda: team_vs_team_standings(fixtures, roster, *points),
        ScoringFormat.INDIVIDUAL_POINTS.value: lambda: individual_points_standings(fixtures, roster),
    }
    if scoring_format == ScoringFormat.INDIVIDUAL_TIME.value:
        mode = running_mode or ComparisonMode.PERSONAL_PROGRESS.value
        result.running_mode = mode
        if mode == ComparisonMode.ABSOLUTE_PERFORMANCE.value:
            result.standings = absolute_performance_standings(sessions, roster, fixtures)
        else:
            result.standings = personal_progress_standings(sessions, roster)
        return result
    builder = builders.get(scoring_format)
    if builder is not None:
        result.standings = builder()
    if scoring_format == ScoringFormat.DOUBLES.value:
        result.team_standings = doubles_team_standings(fixtures, roster, assigned_pairs)
    return result

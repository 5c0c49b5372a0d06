"""
Data models for the league competition engine.
Domain objects only; no persistence or API logic.

A league owns members, fixtures (two-sided or individual) and running sessions.
Standings are derived from terminal-state records and never stored.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------- Enums ----------
class SportType(str, Enum):
    TENNIS = "tennis"
    PICKLEBALL = "pickleball"
    RUNNING = "running"


class ScoringFormat(str, Enum):
    SINGLES = "singles"
    DOUBLES = "doubles"
    TEAM_VS_TEAM = "team_vs_team"
    INDIVIDUAL_TIME = "individual_time"
    INDIVIDUAL_POINTS = "individual_points"


TWO_SIDED_FORMATS = frozenset(
    {ScoringFormat.SINGLES, ScoringFormat.DOUBLES, ScoringFormat.TEAM_VS_TEAM}
)


class RotationType(str, Enum):
    """Doubles only."""
    RANDOM = "random"
    ASSIGNED = "assigned"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


MANAGER_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


class Side(str, Enum):
    A = "A"
    B = "B"

    @property
    def opposite(self) -> "Side":
        return Side.B if self is Side.A else Side.A


# ---------- Fixture status (state machine) ----------
class FixtureStatus(str, Enum):
    """scheduled → awaiting_confirmation → completed, with disputed and cancelled branches."""
    SCHEDULED = "scheduled"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FixtureSource(str, Enum):
    LEGACY = "legacy"      # recorded directly as a completed match
    WORKFLOW = "workflow"  # generated or ad-hoc, goes through submit/confirm


class OutcomeType(str, Enum):
    PLAYED = "played"
    FORFEIT = "forfeit"


class ForfeitReason(str, Enum):
    OPPONENT_NO_SHOW = "opponent_no_show"
    OPPONENT_INJURY = "opponent_injury"
    SELF_INJURY = "self_injury"
    WEATHER = "weather"
    FACILITY_ISSUE = "facility_issue"
    OTHER = "other"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class ReviewDecision(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"


# ---------- Running ----------
class ComparisonMode(str, Enum):
    PERSONAL_PROGRESS = "personal_progress"
    ABSOLUTE_PERFORMANCE = "absolute_performance"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    OPEN = "open"
    FINALIZED = "finalized"


class RunStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RunDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


# ---------- Caller identity ----------
@dataclass(frozen=True)
class ActorContext:
    """
    Authenticated caller. League role is resolved per league from membership;
    is_premium is the only capability consulted (league creation).
    """
    user_id: str
    is_premium: bool = False


# ---------- League ----------
@dataclass
class League:
    """
    Competition container. Structural fields (format, rotation, season length)
    are fixed once fixtures exist.
    """
    id: str
    name: str
    sport_type: str  # SportType value
    scoring_format: str  # ScoringFormat value
    rotation_type: str | None  # RotationType value; doubles only
    season_weeks: int | None
    max_members: int
    creator_id: str
    rules_version: int
    rules: dict[str, Any]  # typed via rules.parse_rules
    created_at: datetime
    start_date: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sport_type": self.sport_type,
            "scoring_format": self.scoring_format,
            "rotation_type": self.rotation_type,
            "season_weeks": self.season_weeks,
            "start_date": self.start_date,
            "max_members": self.max_members,
            "creator_id": self.creator_id,
            "rules_version": self.rules_version,
            "rules": self.rules,
            "created_at": self.created_at.isoformat(),
        }


# ---------- LeagueMember ----------
@dataclass
class LeagueMember:
    """One user's membership in a league. Exactly one owner per league."""
    league_id: str
    user_id: str
    role: str  # MemberRole value
    joined_at: datetime
    name: str | None = None

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    def to_dict(self) -> dict[str, Any]:
        return {
            "league_id": self.league_id,
            "user_id": self.user_id,
            "role": self.role,
            "name": self.name,
            "joined_at": self.joined_at.isoformat(),
        }


# ---------- AssignedPair ----------
@dataclass
class AssignedPair:
    """Fixed doubles partners for the season (assigned rotation)."""
    league_id: str
    player_a_id: str
    player_b_id: str
    position: int

    @property
    def key(self) -> str:
        return team_key([self.player_a_id, self.player_b_id])

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_a_id": self.player_a_id,
            "player_b_id": self.player_b_id,
        }


def team_key(player_ids: list[str]) -> str:
    """Unordered pair key: same two players always map to the same key."""
    return ":".join(sorted(player_ids))


# ---------- Fixture ----------
@dataclass
class FixtureScore:
    """
    Structured score. sets: [[a, b], ...] for racket sports;
    score_a/score_b for team_vs_team.
    """
    sets: list[list[int]] | None = None
    score_a: float | None = None
    score_b: float | None = None

    def is_empty(self) -> bool:
        return not self.sets and self.score_a is None and self.score_b is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.sets:
            d["sets"] = [list(s) for s in self.sets]
        if self.score_a is not None:
            d["score_a"] = self.score_a
        if self.score_b is not None:
            d["score_b"] = self.score_b
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FixtureScore | None":
        if not data:
            return None
        sets = data.get("sets")
        return cls(
            sets=[list(s) for s in sets] if sets else None,
            score_a=data.get("score_a"),
            score_b=data.get("score_b"),
        )


@dataclass
class FixtureParticipant:
    """
    One entrant. side is A/B for two-sided formats, None for individual formats.
    time_seconds / points carry individual results recorded directly.
    """
    user_id: str
    side: str | None = None  # Side value
    time_seconds: float | None = None
    points: float | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"user_id": self.user_id, "side": self.side, "name": self.name}
        if self.time_seconds is not None:
            d["time_seconds"] = self.time_seconds
        if self.points is not None:
            d["points"] = self.points
        return d


@dataclass
class ResultSubmission:
    """A proposed result for a fixture, pending confirmation."""
    id: str
    fixture_id: str
    submitted_by: str
    outcome_type: str  # OutcomeType value
    winner: str | None  # Side value; None only for team_vs_team draws
    status: str  # SubmissionStatus value
    created_at: datetime
    score: FixtureScore | None = None
    forfeit_reason: str | None = None
    notes: str | None = None
    review_reason: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fixture_id": self.fixture_id,
            "submitted_by": self.submitted_by,
            "outcome_type": self.outcome_type,
            "winner": self.winner,
            "status": self.status,
            "score": self.score.to_dict() if self.score else None,
            "forfeit_reason": self.forfeit_reason,
            "notes": self.notes,
            "review_reason": self.review_reason,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Fixture:
    """
    A scheduled or ad-hoc match. week_number None = ad-hoc/unscheduled.
    slot orders generated fixtures within a week; None for ad-hoc and legacy.
    """
    id: str
    league_id: str
    source: str  # FixtureSource value
    status: str  # FixtureStatus value
    created_at: datetime
    week_number: int | None = None
    slot: int | None = None
    starts_at: datetime | None = None
    winner: str | None = None  # Side value
    outcome_type: str | None = None
    score: FixtureScore | None = None
    forfeit_reason: str | None = None
    notes: str | None = None
    participants: list[FixtureParticipant] = field(default_factory=list)
    latest_submission: ResultSubmission | None = None

    def side_of(self, user_id: str) -> str | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p.side
        return None

    def is_participant(self, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self.participants)

    def side_members(self, side: str) -> list[str]:
        return [p.user_id for p in self.participants if p.side == side]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "league_id": self.league_id,
            "source": self.source,
            "status": self.status,
            "week_number": self.week_number,
            "starts_at": _iso(self.starts_at),
            "winner": self.winner,
            "outcome_type": self.outcome_type,
            "score": self.score.to_dict() if self.score else None,
            "forfeit_reason": self.forfeit_reason,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "participants": [p.to_dict() for p in self.participants],
            "latest_submission": self.latest_submission.to_dict() if self.latest_submission else None,
        }


# ---------- Running ----------
@dataclass
class SessionRun:
    """One runner's time-trial entry. One active run per user per session."""
    id: str
    session_id: str
    user_id: str
    elapsed_seconds: float
    distance_meters: float
    status: str  # RunStatus value
    submitted_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_note: str | None = None

    @property
    def pace(self) -> float:
        """Seconds per kilometre."""
        return self.elapsed_seconds / (self.distance_meters / 1000.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "elapsed_seconds": self.elapsed_seconds,
            "distance_meters": self.distance_meters,
            "status": self.status,
            "submitted_at": self.submitted_at.isoformat(),
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "review_note": self.review_note,
        }


@dataclass
class RunningSession:
    """Time-trial competition unit: scheduled → open → finalized."""
    id: str
    league_id: str
    week_number: int
    distance_meters: float
    comparison_mode: str  # ComparisonMode value
    status: str  # SessionStatus value
    created_at: datetime
    starts_at: datetime | None = None
    submission_deadline: datetime | None = None
    finalized_at: datetime | None = None
    runs: list[SessionRun] = field(default_factory=list)

    def run_for(self, user_id: str) -> SessionRun | None:
        for r in self.runs:
            if r.user_id == user_id:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "league_id": self.league_id,
            "week_number": self.week_number,
            "distance_meters": self.distance_meters,
            "comparison_mode": self.comparison_mode,
            "status": self.status,
            "starts_at": _iso(self.starts_at),
            "submission_deadline": _iso(self.submission_deadline),
            "finalized_at": _iso(self.finalized_at),
            "created_at": self.created_at.isoformat(),
            "runs": [r.to_dict() for r in self.runs],
        }


# ---------- Standings (derived) ----------
@dataclass
class Standing:
    """Per-player row. Metrics unused by a format stay at zero."""
    user_id: str
    name: str | None
    rank: int = 0
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    points: int = 0
    goals_for: float = 0.0
    goals_against: float = 0.0
    total_points: float = 0.0
    best_time: float | None = None
    total_time: float = 0.0
    total_distance: float = 0.0
    best_pace: float | None = None
    improvement_pct: float = 0.0

    @property
    def win_pct(self) -> float:
        return self.wins / self.played if self.played else 0.0

    @property
    def goal_difference(self) -> float:
        return self.goals_for - self.goals_against

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "rank": self.rank,
            "played": self.played,
            "wins": self.wins,
            "draws": self.draws,
            "losses": self.losses,
            "win_pct": round(self.win_pct, 4),
            "points": self.points,
            "goal_difference": self.goal_difference,
            "goals_for": self.goals_for,
            "total_points": self.total_points,
            "best_time": self.best_time,
            "total_time": self.total_time,
            "total_distance": self.total_distance,
            "best_pace": round(self.best_pace, 2) if self.best_pace is not None else None,
            "improvement_pct": round(self.improvement_pct, 2),
        }


@dataclass
class TeamStanding:
    """Doubles pairing row. kind: 'assigned' (fixed partners) or 'adhoc'."""
    team_key: str
    player_ids: list[str]
    player_names: list[str | None]
    kind: str
    rank: int = 0
    played: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0

    @property
    def win_pct(self) -> float:
        return self.wins / self.played if self.played else 0.0

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_key": self.team_key,
            "player_ids": list(self.player_ids),
            "player_names": list(self.player_names),
            "kind": self.kind,
            "rank": self.rank,
            "played": self.played,
            "wins": self.wins,
            "losses": self.losses,
            "win_pct": round(self.win_pct, 4),
            "point_differential": self.point_differential,
        }

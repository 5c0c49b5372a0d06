"""
Versioned league rules.

Rules are stored as a JSON payload next to the league. Older payloads are
migrated to the current version before being parsed into typed dataclasses,
so services never read raw dict keys.

Version history:
  1: flat keys (season_weeks, comparison_mode / running_comparison_mode,
     doubles_partner_mode, points_win, ...)
  2: nested sections (schedule, match, sessions, submissions, standings)
"""
from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any

from league_engine.errors import ValidationError
from league_engine.models import ComparisonMode, RotationType, ScoringFormat, SportType

RULES_VERSION = 2

DEFAULT_DISTANCE_TOLERANCE_PERCENT = 5.0


@dataclass
class ScheduleRules:
    cadence: str = "weekly"
    starts_on: str | None = None
    season_weeks: int = 1


@dataclass
class MatchRules:
    mode: str = "singles"  # singles | doubles
    doubles_partner_mode: str | None = None  # random_weekly | fixed_pairs
    scoring_input: str = "set_by_set"
    best_of: int = 3
    points_win: int = 3
    points_draw: int = 1
    points_loss: int = 0


@dataclass
class SessionRules:
    default_session_type: str = "time_trial"
    comparison_mode: str = ComparisonMode.PERSONAL_PROGRESS.value
    distance_tolerance_percent: float = DEFAULT_DISTANCE_TOLERANCE_PERCENT


@dataclass
class SubmissionRules:
    allow_participant_submission: bool = True
    require_opponent_confirmation: bool = True


def default_submission_rules(sport: str) -> SubmissionRules:
    """Running results are reviewed by admins, so no opponent confirms them."""
    return SubmissionRules(require_opponent_confirmation=sport != SportType.RUNNING.value)


@dataclass
class RunningStandingsRules:
    mode: str = ComparisonMode.PERSONAL_PROGRESS.value


@dataclass
class LeagueRules:
    sport: str
    version: int = RULES_VERSION
    schedule: ScheduleRules = field(default_factory=ScheduleRules)
    match: MatchRules | None = None
    sessions: SessionRules | None = None
    submissions: SubmissionRules = field(default_factory=SubmissionRules)
    standings: RunningStandingsRules | None = None

    @property
    def is_running(self) -> bool:
        return self.sport == SportType.RUNNING.value

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None}


def build_league_rules(
    sport: str,
    match_type: str | None = None,
    rotation_type: str | None = None,
    comparison_mode: str = ComparisonMode.PERSONAL_PROGRESS.value,
    start_date: str | None = None,
    season_weeks: int = 1,
) -> LeagueRules:
    """Default rules written at league creation."""
    schedule = ScheduleRules(starts_on=start_date or None, season_weeks=season_weeks)
    if sport == SportType.RUNNING.value:
        return LeagueRules(
            sport=sport,
            schedule=schedule,
            sessions=SessionRules(comparison_mode=comparison_mode),
            submissions=default_submission_rules(sport),
            standings=RunningStandingsRules(mode=comparison_mode),
        )
    mode = "doubles" if match_type == ScoringFormat.DOUBLES.value else "singles"
    partner_mode = None
    if mode == "doubles":
        partner_mode = "fixed_pairs" if rotation_type == RotationType.ASSIGNED.value else "random_weekly"
    scoring_input = "game_by_game" if sport == SportType.PICKLEBALL.value else "set_by_set"
    return LeagueRules(
        sport=sport,
        schedule=schedule,
        match=MatchRules(
            mode=mode,
            doubles_partner_mode=partner_mode,
            scoring_input=scoring_input,
        ),
        submissions=default_submission_rules(sport),
    )


def _migrate_v1(payload: dict[str, Any]) -> dict[str, Any]:
    sport = payload.get("sport") or payload.get("sport_type") or SportType.TENNIS.value
    mode = payload.get("comparison_mode") or payload.get("running_comparison_mode")
    if mode not in (ComparisonMode.PERSONAL_PROGRESS.value, ComparisonMode.ABSOLUTE_PERFORMANCE.value):
        mode = ComparisonMode.PERSONAL_PROGRESS.value
    defaults = default_submission_rules(sport)
    out: dict[str, Any] = {
        "version": RULES_VERSION,
        "sport": sport,
        "schedule": {
            "cadence": "weekly",
            "starts_on": payload.get("starts_on") or payload.get("start_date"),
            "season_weeks": int(payload.get("season_weeks") or 1),
        },
        "submissions": {
            "allow_participant_submission": bool(
                payload.get("allow_participant_submission", defaults.allow_participant_submission)
            ),
            "require_opponent_confirmation": bool(
                payload.get("require_opponent_confirmation", defaults.require_opponent_confirmation)
            ),
        },
    }
    if sport == SportType.RUNNING.value:
        out["sessions"] = {
            "default_session_type": "time_trial",
            "comparison_mode": mode,
            "distance_tolerance_percent": float(
                payload.get("distance_tolerance_percent", DEFAULT_DISTANCE_TOLERANCE_PERCENT)
            ),
        }
        out["standings"] = {"mode": mode}
    else:
        out["match"] = {
            "mode": payload.get("match_mode") or payload.get("mode") or "singles",
            "doubles_partner_mode": payload.get("doubles_partner_mode"),
            "scoring_input": payload.get("scoring_input") or "set_by_set",
            "best_of": int(payload.get("best_of") or payload.get("best_of_sets") or 3),
            "points_win": int(payload.get("points_win", 3)),
            "points_draw": int(payload.get("points_draw", 1)),
            "points_loss": int(payload.get("points_loss", 0)),
        }
    return out


def _normalize_v2(payload: dict[str, Any]) -> dict[str, Any]:
    """Accept the nested shape as written by the web client (no version, points under standings)."""
    out = copy.deepcopy(payload)
    out["version"] = RULES_VERSION
    match = out.get("match")
    if isinstance(match, dict):
        match.pop("fixed_pairs", None)
        if "best_of" not in match:
            match["best_of"] = match.pop("best_of_sets", None) or match.pop("best_of_games", None) or 3
        for k in ("tiebreak_at_games", "game_points_to", "win_by", "serving_model"):
            match.pop(k, None)
        standings = out.get("standings")
        if isinstance(standings, dict) and isinstance(standings.get("points"), dict):
            pts = standings.pop("points")
            match.setdefault("points_win", pts.get("win", 3))
            match.setdefault("points_draw", pts.get("draw", 1))
            match.setdefault("points_loss", pts.get("loss", 0))
        if isinstance(standings, dict) and "mode" not in standings:
            out.pop("standings")
        out["match"] = {k: v for k, v in match.items() if k in MatchRules.__dataclass_fields__}
    sessions = out.get("sessions")
    if isinstance(sessions, dict):
        sessions = {k: v for k, v in sessions.items() if k in SessionRules.__dataclass_fields__}
        out["sessions"] = sessions
        standings = out.get("standings")
        if isinstance(standings, dict):
            out["standings"] = {"mode": standings.get("mode", sessions.get("comparison_mode"))}
    defaults = default_submission_rules(out.get("sport") or SportType.TENNIS.value)
    submissions = out.get("submissions")
    if not isinstance(submissions, dict):
        submissions = {}
    out["submissions"] = {
        "allow_participant_submission": submissions.get(
            "allow_participant_submission",
            submissions.get("allow_runner_submission", defaults.allow_participant_submission),
        ),
        "require_opponent_confirmation": submissions.get(
            "require_opponent_confirmation", defaults.require_opponent_confirmation
        ),
    }
    out.pop("attendance", None)
    return out


def migrate_rules(payload: dict[str, Any] | None) -> dict[str, Any]:
    """Bring any stored rules payload up to RULES_VERSION. Unknown versions are rejected."""
    if not payload:
        return _migrate_v1({})
    if not isinstance(payload, dict):
        raise ValidationError("League rules must be an object")
    version = payload.get("version")
    if version is None:
        nested = any(isinstance(payload.get(k), dict) for k in ("schedule", "match", "sessions"))
        version = 2 if nested else 1
    if version == 1:
        return _migrate_v1(payload)
    if version == RULES_VERSION:
        return _normalize_v2(payload)
    raise ValidationError(f"Unsupported rules version: {version}")


def parse_rules(payload: dict[str, Any] | None) -> LeagueRules:
    data = migrate_rules(payload)
    try:
        return LeagueRules(
            sport=data["sport"],
            version=data["version"],
            schedule=ScheduleRules(**data.get("schedule", {})),
            match=MatchRules(**data["match"]) if data.get("match") else None,
            sessions=SessionRules(**data["sessions"]) if data.get("sessions") else None,
            submissions=SubmissionRules(**data.get("submissions", {})),
            standings=RunningStandingsRules(**data["standings"]) if data.get("standings") else None,
        )
    except (KeyError, TypeError) as e:
        raise ValidationError(f"Malformed league rules: {e}") from e


def get_running_mode(rules: LeagueRules | dict[str, Any] | None) -> str:
    """absolute_performance only when the sessions section says so."""
    if rules is None:
        return ComparisonMode.PERSONAL_PROGRESS.value
    if isinstance(rules, dict):
        rules = parse_rules(rules)
    if rules.sessions and rules.sessions.comparison_mode == ComparisonMode.ABSOLUTE_PERFORMANCE.value:
        return ComparisonMode.ABSOLUTE_PERFORMANCE.value
    return ComparisonMode.PERSONAL_PROGRESS.value

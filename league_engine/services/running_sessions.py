"""
Running session lifecycle: scheduled -> open -> finalized.

Runners submit one run per session (resubmission overwrites a pending or
rejected run). Owners/admins approve or reject runs and finalize the session,
which freezes its approved runs as standings input.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from league_engine.errors import (
    InsufficientPlayers,
    InvalidTransition,
    NotFound,
    Unauthorized,
    ValidationError,
)
from league_engine.models import (
    ActorContext,
    League,
    RunDecision,
    RunningSession,
    RunStatus,
    ScoringFormat,
    SessionRun,
    SessionStatus,
)
from league_engine.persistence import (
    LeagueMemberRepository,
    LeagueRepository,
    RunningSessionRepository,
    SessionRunRepository,
    transaction,
)
from league_engine.rules import DEFAULT_DISTANCE_TOLERANCE_PERCENT, get_running_mode, parse_rules
from league_engine.services.league_service import as_utc

logger = logging.getLogger(__name__)

NO_APPROVED_RUNS = "no_approved_runs"
PENDING_RUNS_EXCLUDED = "pending_runs_excluded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FinalizeResult:
    session: RunningSession
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"session": self.session.to_dict(), "warnings": list(self.warnings)}


class RunningSessionService:
    """Time-trial sessions for individual_time leagues."""

    def __init__(
        self,
        league_repo: LeagueRepository | None = None,
        member_repo: LeagueMemberRepository | None = None,
        session_repo: RunningSessionRepository | None = None,
        run_repo: SessionRunRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._league_repo = league_repo or LeagueRepository()
        self._member_repo = member_repo or LeagueMemberRepository()
        self._run_repo = run_repo or SessionRunRepository()
        self._session_repo = session_repo or RunningSessionRepository(self._run_repo)
        self._clock = clock or _utcnow

    # ---------- guards ----------

    def _league(self, conn: sqlite3.Connection, league_id: str) -> League:
        league = self._league_repo.get(conn, league_id)
        if league is None:
            raise NotFound(f"League not found: {league_id}")
        return league

    def _session(self, conn: sqlite3.Connection, session_id: str) -> RunningSession:
        session = self._session_repo.get(conn, session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        return session

    def _require_manager(self, conn: sqlite3.Connection, league_id: str, actor: ActorContext, action: str) -> None:
        member = self._member_repo.get(conn, league_id, actor.user_id)
        if member is None or not member.is_manager:
            raise Unauthorized(f"Only the league owner or an admin can {action}")

    def _tolerance_percent(self, league: League) -> float:
        rules = parse_rules(league.rules)
        if rules.sessions is None:
            return DEFAULT_DISTANCE_TOLERANCE_PERCENT
        return rules.sessions.distance_tolerance_percent

    # ---------- operations ----------

    def create_session(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        league_id: str,
        week_number: int,
        distance_meters: float,
        starts_at: datetime | None = None,
        submission_deadline: datetime | None = None,
    ) -> RunningSession:
        """Owner/admin only. The comparison mode is taken from the league rules."""
        with transaction(conn):
            league = self._league(conn, league_id)
            self._require_manager(conn, league_id, actor, "create running sessions")
            if league.scoring_format != ScoringFormat.INDIVIDUAL_TIME.value:
                raise ValidationError("Running sessions are only available in running leagues")
            if self._member_repo.count(conn, league_id) < 1:
                raise InsufficientPlayers("Need at least 1 member to create a running session")
            if week_number is None or week_number < 1:
                raise ValidationError("Week number must be at least 1")
            if distance_meters is None or distance_meters <= 0:
                raise ValidationError("Distance must be greater than zero")
            starts_at, submission_deadline = as_utc(starts_at), as_utc(submission_deadline)
            if starts_at and submission_deadline and submission_deadline < starts_at:
                raise ValidationError("Submission deadline cannot be before the session starts")
            session = self._session_repo.create(
                conn,
                league_id,
                week_number,
                distance_meters,
                get_running_mode(league.rules),
                starts_at=starts_at,
                submission_deadline=submission_deadline,
            )
        logger.info("Running session %s created for league %s week %d", session.id, league_id, week_number)
        return session

    def open_session(self, conn: sqlite3.Connection, actor: ActorContext, session_id: str) -> RunningSession:
        with transaction(conn):
            session = self._session(conn, session_id)
            self._require_manager(conn, session.league_id, actor, "open running sessions")
            if session.status == SessionStatus.OPEN.value:
                return session
            if session.status != SessionStatus.SCHEDULED.value:
                raise InvalidTransition(f"Cannot open a {session.status} session")
            self._session_repo.update_status(conn, session.id, SessionStatus.OPEN.value)
            logger.info("Session %s: scheduled -> open", session.id)
            return self._session(conn, session.id)

    def submit_run(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        session_id: str,
        elapsed_seconds: float,
        distance_meters: float,
    ) -> SessionRun:
        """
        Members submit their own run. The first run opens a scheduled session;
        an approved run is final until the session closes.
        """
        with transaction(conn):
            session = self._session(conn, session_id)
            if self._member_repo.get(conn, session.league_id, actor.user_id) is None:
                raise Unauthorized("Only league members can submit runs")
            if session.status == SessionStatus.FINALIZED.value:
                raise InvalidTransition("This session is finalized")
            if session.submission_deadline is not None and self._clock() > session.submission_deadline:
                raise InvalidTransition("The submission deadline for this session has passed")
            if elapsed_seconds is None or elapsed_seconds <= 0:
                raise ValidationError("Elapsed time must be greater than zero")
            if distance_meters is None or distance_meters <= 0:
                raise ValidationError("Distance must be greater than zero")
            league = self._league(conn, session.league_id)
            tolerance = self._tolerance_percent(league)
            off_by = abs(distance_meters - session.distance_meters) / session.distance_meters * 100.0
            if off_by > tolerance:
                raise ValidationError(
                    f"Distance must be within {tolerance:g}% of the session distance ({session.distance_meters:g} m)"
                )
            existing = session.run_for(actor.user_id)
            if existing is not None and existing.status == RunStatus.APPROVED.value:
                raise InvalidTransition("Your run has already been approved")
            run = self._run_repo.upsert(conn, session.id, actor.user_id, elapsed_seconds, distance_meters)
            if session.status == SessionStatus.SCHEDULED.value:
                self._session_repo.update_status(conn, session.id, SessionStatus.OPEN.value)
                logger.info("Session %s: scheduled -> open", session.id)
            return run

    def review_run(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        session_id: str,
        run_id: str,
        decision: str,
        note: str | None = None,
    ) -> SessionRun:
        if decision not in (RunDecision.APPROVE.value, RunDecision.REJECT.value):
            raise ValidationError(f"Decision must be approve or reject, not {decision}")
        status = RunStatus.APPROVED.value if decision == RunDecision.APPROVE.value else RunStatus.REJECTED.value
        with transaction(conn):
            session = self._session(conn, session_id)
            self._require_manager(conn, session.league_id, actor, "review runs")
            run = self._run_repo.get(conn, run_id)
            if run is None or run.session_id != session.id:
                raise NotFound(f"Run not found: {run_id}")
            if run.status == status:
                return run
            if session.status == SessionStatus.FINALIZED.value:
                raise InvalidTransition("Runs of a finalized session cannot be reviewed")
            self._run_repo.update_review(conn, run.id, status, actor.user_id, note)
            reviewed = self._run_repo.get(conn, run.id)
            if reviewed is None:
                raise NotFound(f"Run not found: {run_id}")
            return reviewed

    def finalize_session(self, conn: sqlite3.Connection, actor: ActorContext, session_id: str) -> FinalizeResult:
        """
        Freeze the session. Finalizing with no approved runs is allowed and
        reported as a warning; runs still pending are left out of standings.
        """
        with transaction(conn):
            session = self._session(conn, session_id)
            self._require_manager(conn, session.league_id, actor, "finalize sessions")
            if session.status == SessionStatus.FINALIZED.value:
                return FinalizeResult(session=session)
            warnings: list[str] = []
            if not any(r.status == RunStatus.APPROVED.value for r in session.runs):
                warnings.append(NO_APPROVED_RUNS)
                logger.warning("Session %s finalized with no approved runs", session.id)
            if any(r.status == RunStatus.PENDING.value for r in session.runs):
                warnings.append(PENDING_RUNS_EXCLUDED)
            self._session_repo.update_status(conn, session.id, SessionStatus.FINALIZED.value)
            logger.info("Session %s: %s -> finalized", session.id, session.status)
            return FinalizeResult(session=self._session(conn, session.id), warnings=warnings)

    def get_session(self, conn: sqlite3.Connection, session_id: str) -> RunningSession:
        return self._session(conn, session_id)

    def list_sessions(self, conn: sqlite3.Connection, league_id: str) -> list[RunningSession]:
        self._league(conn, league_id)
        return self._session_repo.list_by_league(conn, league_id)

"""
Fixture result workflow: submit -> confirm/reject, counter-claims, disputes,
admin resolution and cancellation.

    scheduled -> awaiting_confirmation -> completed
    awaiting_confirmation -> disputed -> completed
    scheduled | awaiting_confirmation -> cancelled

Two claims from opposing sides that agree complete the fixture at once; two
that disagree are both kept and the fixture waits for an owner/admin. Every
operation runs in one transaction and is safe to replay.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from league_engine.errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from league_engine.models import (
    ActorContext,
    Fixture,
    FixtureScore,
    FixtureStatus,
    ForfeitReason,
    League,
    LeagueMember,
    OutcomeType,
    ResultSubmission,
    ReviewDecision,
    ScoringFormat,
    Side,
    SubmissionStatus,
    TWO_SIDED_FORMATS,
)
from league_engine.persistence import (
    FixtureRepository,
    LeagueMemberRepository,
    LeagueRepository,
    SubmissionRepository,
    transaction,
)
from league_engine.rules import parse_rules

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (FixtureStatus.SCHEDULED.value, FixtureStatus.AWAITING_CONFIRMATION.value)
_REVIEWABLE_STATUSES = (FixtureStatus.AWAITING_CONFIRMATION.value, FixtureStatus.DISPUTED.value)


@dataclass
class ResultPayload:
    """A proposed outcome as sent by a participant."""
    winner: str | None = None
    outcome_type: str = OutcomeType.PLAYED.value
    sets: list[list[int]] | None = None
    score_a: float | None = None
    score_b: float | None = None
    forfeit_reason: str | None = None
    notes: str | None = None


@dataclass
class ValidatedResult:
    outcome_type: str
    winner: str | None
    score: FixtureScore | None
    forfeit_reason: str | None
    notes: str | None


# ---------- Pure helpers ----------


def merge_fixtures(legacy: Iterable[Fixture], workflow: Iterable[Fixture]) -> list[Fixture]:
    """
    One list from both record systems. On id collision the workflow record wins.
    Newest first: start time (or creation time when unscheduled), then creation.
    """
    by_id: dict[str, Fixture] = {}
    for f in legacy:
        by_id[f.id] = f
    for f in workflow:
        by_id[f.id] = f

    def when(f: Fixture) -> tuple[datetime, datetime]:
        return (f.starts_at or f.created_at, f.created_at)

    return sorted(by_id.values(), key=when, reverse=True)


def _is_int(v: object) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_number(v: object) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_sets(sets: list[list[int]], winner: str) -> list[list[int]]:
    """Each set is [games_a, games_b], no tied sets, and the set majority matches winner."""
    if not isinstance(sets, list) or not sets:
        raise ValidationError("Sets must be a non-empty list of [side A, side B] scores")
    won = {Side.A.value: 0, Side.B.value: 0}
    clean: list[list[int]] = []
    for s in sets:
        if not isinstance(s, (list, tuple)) or len(s) != 2 or not all(_is_int(x) for x in s):
            raise ValidationError("Each set must be a pair of whole numbers")
        a, b = s
        if a < 0 or b < 0:
            raise ValidationError("Set scores cannot be negative")
        if a == b:
            raise ValidationError("A set cannot end level")
        won[Side.A.value if a > b else Side.B.value] += 1
        clean.append([a, b])
    if won[Side.A.value] == won[Side.B.value]:
        raise ValidationError("Sets are level; the match has no winner")
    majority = Side.A.value if won[Side.A.value] > won[Side.B.value] else Side.B.value
    if majority != winner:
        raise ValidationError("Set scores do not match the declared winner")
    return clean


def validate_result(scoring_format: str, payload: ResultPayload) -> ValidatedResult:
    """
    Normalize a proposed outcome for a two-sided format.
    Forfeits need only a winner; played team_vs_team results derive the winner
    from the score (level score is a draw).
    """
    if payload.outcome_type not in (OutcomeType.PLAYED.value, OutcomeType.FORFEIT.value):
        raise ValidationError(f"Unknown outcome type: {payload.outcome_type}")
    if payload.outcome_type == OutcomeType.FORFEIT.value:
        if payload.winner not in (Side.A.value, Side.B.value):
            raise ValidationError("A forfeit needs a winning side (A or B)")
        reason = payload.forfeit_reason or ForfeitReason.OTHER.value
        if reason not in {r.value for r in ForfeitReason}:
            raise ValidationError(f"Unknown forfeit reason: {reason}")
        return ValidatedResult(OutcomeType.FORFEIT.value, payload.winner, None, reason, payload.notes)

    if scoring_format == ScoringFormat.TEAM_VS_TEAM.value:
        if not (_is_number(payload.score_a) and _is_number(payload.score_b)):
            raise ValidationError("Team results need a score for both sides")
        if payload.score_a < 0 or payload.score_b < 0:
            raise ValidationError("Scores cannot be negative")
        if payload.score_a > payload.score_b:
            winner: str | None = Side.A.value
        elif payload.score_b > payload.score_a:
            winner = Side.B.value
        else:
            winner = None
        if payload.winner is not None and payload.winner != winner:
            raise ValidationError("Score does not match the declared winner")
        score = FixtureScore(score_a=payload.score_a, score_b=payload.score_b)
        return ValidatedResult(OutcomeType.PLAYED.value, winner, score, None, payload.notes)

    if payload.winner not in (Side.A.value, Side.B.value):
        raise ValidationError("Winner must be side A or side B")
    score = None
    if payload.sets:
        score = FixtureScore(sets=validate_sets(payload.sets, payload.winner))
    return ValidatedResult(OutcomeType.PLAYED.value, payload.winner, score, None, payload.notes)


def _same_score(a: FixtureScore | None, b: FixtureScore | None) -> bool:
    a = a or FixtureScore()
    b = b or FixtureScore()
    return a.score_a == b.score_a and a.score_b == b.score_b


def claims_agree(scoring_format: str, first: ResultSubmission, second: ResultSubmission) -> bool:
    """Opposing claims agree on the winner; team results must also agree on the score."""
    if first.winner != second.winner:
        return False
    if scoring_format == ScoringFormat.TEAM_VS_TEAM.value and first.outcome_type == OutcomeType.PLAYED.value:
        return second.outcome_type == OutcomeType.PLAYED.value and _same_score(first.score, second.score)
    return True


# ---------- FixtureWorkflowService ----------


class FixtureWorkflowService:
    """
    State machine over workflow fixtures. Role checks resolve the caller's
    membership of the fixture's league on every call.
    """

    def __init__(
        self,
        league_repo: LeagueRepository | None = None,
        member_repo: LeagueMemberRepository | None = None,
        fixture_repo: FixtureRepository | None = None,
        submission_repo: SubmissionRepository | None = None,
    ) -> None:
        self._league_repo = league_repo or LeagueRepository()
        self._member_repo = member_repo or LeagueMemberRepository()
        self._submission_repo = submission_repo or SubmissionRepository()
        self._fixture_repo = fixture_repo or FixtureRepository(self._submission_repo)

    # ---------- guards ----------

    def _load(self, conn: sqlite3.Connection, fixture_id: str) -> tuple[Fixture, League]:
        fixture = self._fixture_repo.get(conn, fixture_id)
        if fixture is None:
            raise NotFound(f"Fixture not found: {fixture_id}")
        league = self._league_repo.get(conn, fixture.league_id)
        if league is None:
            raise NotFound(f"League not found: {fixture.league_id}")
        return fixture, league

    def _membership(self, conn: sqlite3.Connection, league_id: str, actor: ActorContext) -> LeagueMember | None:
        return self._member_repo.get(conn, league_id, actor.user_id)

    def _is_manager(self, conn: sqlite3.Connection, league_id: str, actor: ActorContext) -> bool:
        member = self._membership(conn, league_id, actor)
        return member is not None and member.is_manager

    def _require_manager(self, conn: sqlite3.Connection, league_id: str, actor: ActorContext, action: str) -> None:
        if not self._is_manager(conn, league_id, actor):
            raise Unauthorized(f"Only the league owner or an admin can {action}")

    def _reload(self, conn: sqlite3.Connection, fixture_id: str) -> Fixture:
        fixture = self._fixture_repo.get(conn, fixture_id)
        if fixture is None:
            raise NotFound(f"Fixture not found: {fixture_id}")
        return fixture

    def _log_transition(self, fixture: Fixture, new_status: str) -> None:
        if fixture.status != new_status:
            logger.info("Fixture %s: %s -> %s", fixture.id, fixture.status, new_status)

    def _complete(
        self,
        conn: sqlite3.Connection,
        fixture: Fixture,
        winner: str | None,
        outcome_type: str,
        score: FixtureScore | None,
        forfeit_reason: str | None = None,
        notes: str | None = None,
    ) -> None:
        if not fixture.side_members(Side.A.value) or not fixture.side_members(Side.B.value):
            raise ValidationError("A fixture needs players on both sides to be completed")
        self._fixture_repo.update_result(
            conn, fixture.id, FixtureStatus.COMPLETED.value, winner, outcome_type, score,
            forfeit_reason=forfeit_reason, notes=notes,
        )
        self._log_transition(fixture, FixtureStatus.COMPLETED.value)

    # ---------- operations ----------

    def submit_result(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        fixture_id: str,
        payload: ResultPayload,
        submission_id: str | None = None,
    ) -> Fixture:
        """
        Propose a result. Only participants may submit. A claim from the side that
        already has a pending claim replaces it; a claim from the opposing side is
        a counter-claim that either confirms (agreement) or disputes the fixture.
        """
        with transaction(conn):
            if submission_id:
                existing = self._submission_repo.get(conn, submission_id)
                if existing is not None:
                    if existing.fixture_id != fixture_id:
                        raise ValidationError("Submission id already used for another fixture")
                    return self._reload(conn, fixture_id)
            fixture, league = self._load(conn, fixture_id)
            if league.scoring_format not in TWO_SIDED_FORMATS:
                raise ValidationError(f"Results for {league.scoring_format} leagues are recorded directly")
            side = fixture.side_of(actor.user_id)
            if side not in (Side.A.value, Side.B.value):
                raise Unauthorized("Only participants of this fixture can submit a result")
            submission_rules = parse_rules(league.rules).submissions
            if not submission_rules.allow_participant_submission:
                raise Unauthorized("Results in this league are recorded by the league admins")
            if fixture.status == FixtureStatus.DISPUTED.value:
                raise InvalidTransition("This fixture is disputed and awaits a decision from the league admins")
            if fixture.status not in _OPEN_STATUSES:
                raise InvalidTransition(f"Cannot submit a result for a {fixture.status} fixture")
            result = validate_result(league.scoring_format, payload)
            if not fixture.side_members(Side.A.value) or not fixture.side_members(Side.B.value):
                raise ValidationError("A fixture needs players on both sides before a result can be submitted")

            pending = self._submission_repo.list_pending(conn, fixture.id)
            opposing: list[ResultSubmission] = []
            for p in pending:
                if fixture.side_of(p.submitted_by) == side:
                    self._submission_repo.update_status(conn, p.id, SubmissionStatus.SUPERSEDED.value)
                else:
                    opposing.append(p)
            submission = self._submission_repo.create(
                conn,
                fixture.id,
                actor.user_id,
                result.outcome_type,
                result.winner,
                score=result.score,
                forfeit_reason=result.forfeit_reason,
                notes=result.notes,
                id=submission_id,
            )
            if not opposing and not submission_rules.require_opponent_confirmation:
                self._submission_repo.update_status(conn, submission.id, SubmissionStatus.CONFIRMED.value)
                self._complete(
                    conn, fixture, submission.winner, submission.outcome_type, submission.score,
                    forfeit_reason=submission.forfeit_reason, notes=submission.notes,
                )
                return self._reload(conn, fixture.id)
            if not opposing:
                self._fixture_repo.update_status(conn, fixture.id, FixtureStatus.AWAITING_CONFIRMATION.value)
                self._log_transition(fixture, FixtureStatus.AWAITING_CONFIRMATION.value)
                return self._reload(conn, fixture.id)

            claim = opposing[-1]
            if claims_agree(league.scoring_format, claim, submission):
                for s in (claim, submission):
                    self._submission_repo.update_status(conn, s.id, SubmissionStatus.CONFIRMED.value)
                self._complete(
                    conn, fixture, claim.winner, claim.outcome_type, claim.score or submission.score,
                    forfeit_reason=claim.forfeit_reason, notes=claim.notes,
                )
            else:
                self._fixture_repo.update_status(conn, fixture.id, FixtureStatus.DISPUTED.value)
                logger.warning(
                    "Fixture %s disputed: %s claims %s, %s claims %s",
                    fixture.id, claim.submitted_by, claim.winner, actor.user_id, submission.winner,
                )
                self._log_transition(fixture, FixtureStatus.DISPUTED.value)
            return self._reload(conn, fixture.id)

    def confirm_result(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        fixture_id: str,
        submission_id: str,
        decision: str,
        reason: str | None = None,
    ) -> Fixture:
        """
        Confirm or reject a pending claim. Allowed for a participant on the side
        opposing the submitter, or for any owner/admin. Once a fixture is
        disputed only an owner/admin may review its claims, and rejecting one
        leaves the fixture disputed until it is confirmed or resolved.
        """
        if decision not in (ReviewDecision.CONFIRM.value, ReviewDecision.REJECT.value):
            raise ValidationError(f"Decision must be confirm or reject, not {decision}")
        with transaction(conn):
            fixture, league = self._load(conn, fixture_id)
            submission = self._submission_repo.get(conn, submission_id)
            if submission is None or submission.fixture_id != fixture.id:
                raise NotFound(f"Submission not found: {submission_id}")

            is_manager = self._is_manager(conn, league.id, actor)
            if fixture.status == FixtureStatus.DISPUTED.value and not is_manager:
                raise Unauthorized("Only a league admin can settle a disputed result")
            reviewer_side = fixture.side_of(actor.user_id)
            submitter_side = fixture.side_of(submission.submitted_by)
            is_opponent = reviewer_side is not None and submitter_side is not None and reviewer_side != submitter_side
            if not is_opponent and not is_manager:
                raise Unauthorized("Only the opposing side or a league admin can review this result")

            if decision == ReviewDecision.CONFIRM.value and submission.status == SubmissionStatus.CONFIRMED.value:
                return fixture
            if decision == ReviewDecision.REJECT.value and submission.status == SubmissionStatus.REJECTED.value:
                return fixture
            if submission.status != SubmissionStatus.PENDING.value:
                raise InvalidTransition(f"Submission is already {submission.status}")
            if fixture.status not in _REVIEWABLE_STATUSES:
                raise InvalidTransition(f"Cannot review a result for a {fixture.status} fixture")

            others = [
                p for p in self._submission_repo.list_pending(conn, fixture.id) if p.id != submission.id
            ]
            if decision == ReviewDecision.CONFIRM.value:
                self._submission_repo.update_status(
                    conn, submission.id, SubmissionStatus.CONFIRMED.value, reviewed_by=actor.user_id,
                    review_reason=reason,
                )
                for p in others:
                    self._submission_repo.update_status(
                        conn, p.id, SubmissionStatus.REJECTED.value, reviewed_by=actor.user_id,
                        review_reason="Another result was confirmed",
                    )
                self._complete(
                    conn, fixture, submission.winner, submission.outcome_type, submission.score,
                    forfeit_reason=submission.forfeit_reason, notes=submission.notes,
                )
            else:
                self._submission_repo.update_status(
                    conn, submission.id, SubmissionStatus.REJECTED.value, reviewed_by=actor.user_id,
                    review_reason=reason,
                )
                if fixture.status != FixtureStatus.DISPUTED.value:
                    new_status = FixtureStatus.AWAITING_CONFIRMATION.value if others else FixtureStatus.SCHEDULED.value
                    self._fixture_repo.update_status(conn, fixture.id, new_status)
                    self._log_transition(fixture, new_status)
            return self._reload(conn, fixture.id)

    def resolve_dispute(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        fixture_id: str,
        winner: str | None,
        reason: str | None = None,
        score: FixtureScore | None = None,
    ) -> Fixture:
        """
        Owner/admin decision on a disputed fixture. The matching claim, if any,
        is confirmed and supplies the score unless one is given.
        """
        with transaction(conn):
            fixture, league = self._load(conn, fixture_id)
            self._require_manager(conn, league.id, actor, "resolve disputes")
            if fixture.status != FixtureStatus.DISPUTED.value:
                raise InvalidTransition(f"Only disputed fixtures can be resolved (current: {fixture.status})")
            draw_allowed = league.scoring_format == ScoringFormat.TEAM_VS_TEAM.value
            if winner not in (Side.A.value, Side.B.value) and not (draw_allowed and winner is None):
                raise ValidationError("Winner must be side A or side B")

            pending = self._submission_repo.list_pending(conn, fixture.id)
            chosen = next((p for p in pending if p.winner == winner), None)
            for p in pending:
                status = SubmissionStatus.CONFIRMED if p is chosen else SubmissionStatus.REJECTED
                self._submission_repo.update_status(
                    conn, p.id, status.value, reviewed_by=actor.user_id,
                    review_reason=reason or "Resolved by league admin",
                )
            if score is None and chosen is not None:
                score = chosen.score
            outcome = chosen.outcome_type if chosen is not None else OutcomeType.PLAYED.value
            forfeit_reason = chosen.forfeit_reason if chosen is not None else None
            self._complete(conn, fixture, winner, outcome, score, forfeit_reason=forfeit_reason, notes=reason)
            return self._reload(conn, fixture.id)

    def cancel_fixture(
        self,
        conn: sqlite3.Connection,
        actor: ActorContext,
        fixture_id: str,
        reason: str | None = None,
    ) -> Fixture:
        """Owner/admin only. Pending claims are rejected along with the fixture."""
        with transaction(conn):
            fixture, league = self._load(conn, fixture_id)
            self._require_manager(conn, league.id, actor, "cancel fixtures")
            if fixture.status == FixtureStatus.CANCELLED.value:
                return fixture
            if fixture.status not in _OPEN_STATUSES:
                raise InvalidTransition(f"Cannot cancel a {fixture.status} fixture")
            for p in self._submission_repo.list_pending(conn, fixture.id):
                self._submission_repo.update_status(
                    conn, p.id, SubmissionStatus.REJECTED.value, reviewed_by=actor.user_id,
                    review_reason="Fixture cancelled",
                )
            self._fixture_repo.update_status(conn, fixture.id, FixtureStatus.CANCELLED.value, notes=reason)
            self._log_transition(fixture, FixtureStatus.CANCELLED.value)
            return self._reload(conn, fixture.id)

    def list_submissions(self, conn: sqlite3.Connection, fixture_id: str) -> list[ResultSubmission]:
        fixture, _ = self._load(conn, fixture_id)
        return self._submission_repo.list_by_fixture(conn, fixture.id)

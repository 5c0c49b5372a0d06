"""
Repository interfaces for league engine records.
No business logic, only read/write operations. Callers own the transaction.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from league_engine.models import (
    AssignedPair,
    Fixture,
    FixtureParticipant,
    FixtureScore,
    League,
    LeagueMember,
    ResultSubmission,
    RunningSession,
    SessionRun,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _parse_optional_datetime(s: str | None) -> datetime | None:
    return _parse_datetime(s) if s else None


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _score_json(score: FixtureScore | None) -> str | None:
    if score is None or score.is_empty():
        return None
    return json.dumps(score.to_dict())


def _load_score(s: str | None) -> FixtureScore | None:
    return FixtureScore.from_dict(json.loads(s)) if s else None


# ---------- LeagueRepository ----------


class LeagueRepository:
    """CRUD for leagues. No business logic."""

    _COLS = (
        "id, name, description, sport_type, scoring_format, rotation_type, season_weeks, "
        "start_date, max_members, creator_id, rules_version, rules_json, created_at"
    )

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        sport_type: str,
        scoring_format: str,
        creator_id: str,
        max_members: int,
        rules: dict[str, Any],
        rules_version: int,
        rotation_type: str | None = None,
        season_weeks: int | None = None,
        start_date: str | None = None,
        description: str | None = None,
        id: str | None = None,
    ) -> League:
        lid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO leagues ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                lid, name, description, sport_type, scoring_format, rotation_type, season_weeks,
                start_date, max_members, creator_id, rules_version, json.dumps(rules), now.isoformat(),
            ),
        )
        return League(
            id=lid, name=name, description=description, sport_type=sport_type,
            scoring_format=scoring_format, rotation_type=rotation_type, season_weeks=season_weeks,
            start_date=start_date, max_members=max_members, creator_id=creator_id,
            rules_version=rules_version, rules=rules, created_at=now,
        )

    def _row_to_league(self, r: sqlite3.Row) -> League:
        return League(
            id=r["id"],
            name=r["name"],
            description=r["description"],
            sport_type=r["sport_type"],
            scoring_format=r["scoring_format"],
            rotation_type=r["rotation_type"],
            season_weeks=r["season_weeks"],
            start_date=r["start_date"],
            max_members=r["max_members"],
            creator_id=r["creator_id"],
            rules_version=r["rules_version"],
            rules=json.loads(r["rules_json"]),
            created_at=_parse_datetime(r["created_at"]),
        )

    def get(self, conn: sqlite3.Connection, league_id: str) -> League | None:
        row = conn.execute(f"SELECT {self._COLS} FROM leagues WHERE id = ?", (league_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_league(row)

    def list_all(self, conn: sqlite3.Connection) -> list[League]:
        rows = conn.execute(f"SELECT {self._COLS} FROM leagues ORDER BY created_at DESC").fetchall()
        return [self._row_to_league(r) for r in rows]

    def update_rules(self, conn: sqlite3.Connection, league_id: str, rules: dict[str, Any], rules_version: int) -> None:
        conn.execute(
            "UPDATE leagues SET rules_json = ?, rules_version = ? WHERE id = ?",
            (json.dumps(rules), rules_version, league_id),
        )

    def delete(self, conn: sqlite3.Connection, league_id: str) -> None:
        """Children cascade via foreign keys."""
        conn.execute("DELETE FROM leagues WHERE id = ?", (league_id,))


# ---------- LeagueMemberRepository ----------


class LeagueMemberRepository:
    """CRUD for league_members."""

    def create(
        self,
        conn: sqlite3.Connection,
        league_id: str,
        user_id: str,
        role: str,
        name: str | None = None,
    ) -> LeagueMember:
        now = _now()
        conn.execute(
            "INSERT INTO league_members (league_id, user_id, role, name, joined_at) VALUES (?, ?, ?, ?, ?)",
            (league_id, user_id, role, name, now.isoformat()),
        )
        return LeagueMember(league_id=league_id, user_id=user_id, role=role, name=name, joined_at=now)

    def get(self, conn: sqlite3.Connection, league_id: str, user_id: str) -> LeagueMember | None:
        row = conn.execute(
            "SELECT league_id, user_id, role, name, joined_at FROM league_members WHERE league_id = ? AND user_id = ?",
            (league_id, user_id),
        ).fetchone()
        if row is None:
            return None
        return LeagueMember(
            league_id=row["league_id"], user_id=row["user_id"], role=row["role"],
            name=row["name"], joined_at=_parse_datetime(row["joined_at"]),
        )

    def list_by_league(self, conn: sqlite3.Connection, league_id: str) -> list[LeagueMember]:
        """Ordered by join time: the roster order scheduling uses."""
        rows = conn.execute(
            "SELECT league_id, user_id, role, name, joined_at FROM league_members "
            "WHERE league_id = ? ORDER BY joined_at, rowid",
            (league_id,),
        ).fetchall()
        return [
            LeagueMember(
                league_id=r["league_id"], user_id=r["user_id"], role=r["role"],
                name=r["name"], joined_at=_parse_datetime(r["joined_at"]),
            )
            for r in rows
        ]

    def count(self, conn: sqlite3.Connection, league_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) FROM league_members WHERE league_id = ?", (league_id,)).fetchone()
        return row[0]

    def update_role(self, conn: sqlite3.Connection, league_id: str, user_id: str, role: str) -> None:
        conn.execute(
            "UPDATE league_members SET role = ? WHERE league_id = ? AND user_id = ?",
            (role, league_id, user_id),
        )

    def delete(self, conn: sqlite3.Connection, league_id: str, user_id: str) -> None:
        conn.execute("DELETE FROM league_members WHERE league_id = ? AND user_id = ?", (league_id, user_id))


# ---------- AssignedPairRepository ----------


class AssignedPairRepository:
    """Fixed doubles pairs. Saved as a whole set."""

    def replace_all(self, conn: sqlite3.Connection, league_id: str, pairs: list[tuple[str, str]]) -> list[AssignedPair]:
        conn.execute("DELETE FROM assigned_pairs WHERE league_id = ?", (league_id,))
        result: list[AssignedPair] = []
        for pos, (a, b) in enumerate(pairs):
            conn.execute(
                "INSERT INTO assigned_pairs (league_id, position, player_a_id, player_b_id) VALUES (?, ?, ?, ?)",
                (league_id, pos, a, b),
            )
            result.append(AssignedPair(league_id=league_id, player_a_id=a, player_b_id=b, position=pos))
        return result

    def list_by_league(self, conn: sqlite3.Connection, league_id: str) -> list[AssignedPair]:
        rows = conn.execute(
            "SELECT league_id, position, player_a_id, player_b_id FROM assigned_pairs WHERE league_id = ? ORDER BY position",
            (league_id,),
        ).fetchall()
        return [
            AssignedPair(
                league_id=r["league_id"], player_a_id=r["player_a_id"],
                player_b_id=r["player_b_id"], position=r["position"],
            )
            for r in rows
        ]


# ---------- SubmissionRepository ----------


class SubmissionRepository:
    """CRUD for result_submissions."""

    _COLS = (
        "id, fixture_id, submitted_by, outcome_type, winner, score_json, forfeit_reason, notes, "
        "status, review_reason, reviewed_by, reviewed_at, created_at"
    )

    def create(
        self,
        conn: sqlite3.Connection,
        fixture_id: str,
        submitted_by: str,
        outcome_type: str,
        winner: str | None,
        score: FixtureScore | None = None,
        forfeit_reason: str | None = None,
        notes: str | None = None,
        status: str = "pending",
        id: str | None = None,
    ) -> ResultSubmission:
        sid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO result_submissions ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, NULL, ?)",
            (
                sid, fixture_id, submitted_by, outcome_type, winner, _score_json(score),
                forfeit_reason, notes, status, now.isoformat(),
            ),
        )
        return ResultSubmission(
            id=sid, fixture_id=fixture_id, submitted_by=submitted_by, outcome_type=outcome_type,
            winner=winner, status=status, created_at=now, score=score,
            forfeit_reason=forfeit_reason, notes=notes,
        )

    def _row_to_submission(self, r: sqlite3.Row) -> ResultSubmission:
        return ResultSubmission(
            id=r["id"],
            fixture_id=r["fixture_id"],
            submitted_by=r["submitted_by"],
            outcome_type=r["outcome_type"],
            winner=r["winner"],
            status=r["status"],
            created_at=_parse_datetime(r["created_at"]),
            score=_load_score(r["score_json"]),
            forfeit_reason=r["forfeit_reason"],
            notes=r["notes"],
            review_reason=r["review_reason"],
            reviewed_by=r["reviewed_by"],
            reviewed_at=_parse_optional_datetime(r["reviewed_at"]),
        )

    def get(self, conn: sqlite3.Connection, submission_id: str) -> ResultSubmission | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM result_submissions WHERE id = ?", (submission_id,)
        ).fetchone()
        return self._row_to_submission(row) if row else None

    def list_by_fixture(self, conn: sqlite3.Connection, fixture_id: str) -> list[ResultSubmission]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM result_submissions WHERE fixture_id = ? ORDER BY created_at, rowid",
            (fixture_id,),
        ).fetchall()
        return [self._row_to_submission(r) for r in rows]

    def list_pending(self, conn: sqlite3.Connection, fixture_id: str) -> list[ResultSubmission]:
        return [s for s in self.list_by_fixture(conn, fixture_id) if s.status == "pending"]

    def latest(self, conn: sqlite3.Connection, fixture_id: str) -> ResultSubmission | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM result_submissions WHERE fixture_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (fixture_id,),
        ).fetchone()
        return self._row_to_submission(row) if row else None

    def update_status(
        self,
        conn: sqlite3.Connection,
        submission_id: str,
        status: str,
        reviewed_by: str | None = None,
        review_reason: str | None = None,
    ) -> None:
        reviewed_at = _now().isoformat() if reviewed_by else None
        conn.execute(
            "UPDATE result_submissions SET status = ?, reviewed_by = COALESCE(?, reviewed_by), "
            "reviewed_at = COALESCE(?, reviewed_at), review_reason = COALESCE(?, review_reason) WHERE id = ?",
            (status, reviewed_by, reviewed_at, review_reason, submission_id),
        )


# ---------- FixtureRepository ----------


class FixtureRepository:
    """CRUD for fixtures and fixture_participants. No business logic."""

    _COLS = (
        "id, league_id, source, status, week_number, slot, starts_at, winner, outcome_type, "
        "score_json, forfeit_reason, notes, created_at"
    )

    def __init__(self, submission_repo: SubmissionRepository | None = None) -> None:
        self._submission_repo = submission_repo or SubmissionRepository()

    def create(
        self,
        conn: sqlite3.Connection,
        league_id: str,
        source: str = "workflow",
        status: str = "scheduled",
        week_number: int | None = None,
        slot: int | None = None,
        starts_at: datetime | None = None,
        winner: str | None = None,
        outcome_type: str | None = None,
        score: FixtureScore | None = None,
        forfeit_reason: str | None = None,
        notes: str | None = None,
        id: str | None = None,
    ) -> Fixture:
        fid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO fixtures ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                fid, league_id, source, status, week_number, slot, _iso(starts_at), winner,
                outcome_type, _score_json(score), forfeit_reason, notes, now.isoformat(),
            ),
        )
        return Fixture(
            id=fid, league_id=league_id, source=source, status=status, created_at=now,
            week_number=week_number, slot=slot, starts_at=starts_at, winner=winner,
            outcome_type=outcome_type, score=score, forfeit_reason=forfeit_reason, notes=notes,
        )

    def add_participant(
        self,
        conn: sqlite3.Connection,
        fixture_id: str,
        participant: FixtureParticipant,
        position: int,
    ) -> None:
        conn.execute(
            "INSERT INTO fixture_participants (fixture_id, user_id, side, time_seconds, points, position) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (fixture_id, participant.user_id, participant.side, participant.time_seconds, participant.points, position),
        )

    def _participants(self, conn: sqlite3.Connection, fixture_id: str) -> list[FixtureParticipant]:
        rows = conn.execute(
            "SELECT p.user_id, p.side, p.time_seconds, p.points, m.name "
            "FROM fixture_participants p "
            "JOIN fixtures f ON f.id = p.fixture_id "
            "LEFT JOIN league_members m ON m.league_id = f.league_id AND m.user_id = p.user_id "
            "WHERE p.fixture_id = ? ORDER BY p.position",
            (fixture_id,),
        ).fetchall()
        return [
            FixtureParticipant(
                user_id=r["user_id"], side=r["side"], time_seconds=r["time_seconds"],
                points=r["points"], name=r["name"],
            )
            for r in rows
        ]

    def _row_to_fixture(self, conn: sqlite3.Connection, r: sqlite3.Row) -> Fixture:
        return Fixture(
            id=r["id"],
            league_id=r["league_id"],
            source=r["source"],
            status=r["status"],
            created_at=_parse_datetime(r["created_at"]),
            week_number=r["week_number"],
            slot=r["slot"],
            starts_at=_parse_optional_datetime(r["starts_at"]),
            winner=r["winner"],
            outcome_type=r["outcome_type"],
            score=_load_score(r["score_json"]),
            forfeit_reason=r["forfeit_reason"],
            notes=r["notes"],
            participants=self._participants(conn, r["id"]),
            latest_submission=self._submission_repo.latest(conn, r["id"]),
        )

    def get(self, conn: sqlite3.Connection, fixture_id: str) -> Fixture | None:
        row = conn.execute(f"SELECT {self._COLS} FROM fixtures WHERE id = ?", (fixture_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_fixture(conn, row)

    def list_by_league(
        self, conn: sqlite3.Connection, league_id: str, source: str | None = None
    ) -> list[Fixture]:
        sql = f"SELECT {self._COLS} FROM fixtures WHERE league_id = ?"
        args: tuple = (league_id,)
        if source is not None:
            sql += " AND source = ?"
            args = (league_id, source)
        sql += " ORDER BY week_number IS NULL, week_number, slot, created_at, rowid"
        rows = conn.execute(sql, args).fetchall()
        return [self._row_to_fixture(conn, r) for r in rows]

    def count_by_league(self, conn: sqlite3.Connection, league_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) FROM fixtures WHERE league_id = ?", (league_id,)).fetchone()
        return row[0]

    def update_status(self, conn: sqlite3.Connection, fixture_id: str, status: str, notes: str | None = None) -> None:
        if notes is not None:
            conn.execute("UPDATE fixtures SET status = ?, notes = ? WHERE id = ?", (status, notes, fixture_id))
        else:
            conn.execute("UPDATE fixtures SET status = ? WHERE id = ?", (status, fixture_id))

    def update_result(
        self,
        conn: sqlite3.Connection,
        fixture_id: str,
        status: str,
        winner: str | None,
        outcome_type: str | None,
        score: FixtureScore | None,
        forfeit_reason: str | None = None,
        notes: str | None = None,
    ) -> None:
        conn.execute(
            "UPDATE fixtures SET status = ?, winner = ?, outcome_type = ?, score_json = ?, "
            "forfeit_reason = ?, notes = COALESCE(?, notes) WHERE id = ?",
            (status, winner, outcome_type, _score_json(score), forfeit_reason, notes, fixture_id),
        )

    def delete(self, conn: sqlite3.Connection, fixture_id: str) -> None:
        conn.execute("DELETE FROM fixtures WHERE id = ?", (fixture_id,))


# ---------- RunningSessionRepository ----------


class RunningSessionRepository:
    """CRUD for running_sessions. Runs are loaded through SessionRunRepository."""

    _COLS = (
        "id, league_id, week_number, distance_meters, comparison_mode, status, starts_at, "
        "submission_deadline, finalized_at, created_at"
    )

    def __init__(self, run_repo: "SessionRunRepository | None" = None) -> None:
        self._run_repo = run_repo or SessionRunRepository()

    def create(
        self,
        conn: sqlite3.Connection,
        league_id: str,
        week_number: int,
        distance_meters: float,
        comparison_mode: str,
        starts_at: datetime | None = None,
        submission_deadline: datetime | None = None,
        id: str | None = None,
    ) -> RunningSession:
        sid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO running_sessions ({self._COLS}) VALUES (?, ?, ?, ?, ?, 'scheduled', ?, ?, NULL, ?)",
            (
                sid, league_id, week_number, distance_meters, comparison_mode,
                _iso(starts_at), _iso(submission_deadline), now.isoformat(),
            ),
        )
        return RunningSession(
            id=sid, league_id=league_id, week_number=week_number, distance_meters=distance_meters,
            comparison_mode=comparison_mode, status="scheduled", created_at=now,
            starts_at=starts_at, submission_deadline=submission_deadline,
        )

    def _row_to_session(self, conn: sqlite3.Connection, r: sqlite3.Row) -> RunningSession:
        return RunningSession(
            id=r["id"],
            league_id=r["league_id"],
            week_number=r["week_number"],
            distance_meters=r["distance_meters"],
            comparison_mode=r["comparison_mode"],
            status=r["status"],
            created_at=_parse_datetime(r["created_at"]),
            starts_at=_parse_optional_datetime(r["starts_at"]),
            submission_deadline=_parse_optional_datetime(r["submission_deadline"]),
            finalized_at=_parse_optional_datetime(r["finalized_at"]),
            runs=self._run_repo.list_by_session(conn, r["id"]),
        )

    def get(self, conn: sqlite3.Connection, session_id: str) -> RunningSession | None:
        row = conn.execute(f"SELECT {self._COLS} FROM running_sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_session(conn, row)

    def list_by_league(self, conn: sqlite3.Connection, league_id: str) -> list[RunningSession]:
        """Chronological: week, then start, then creation."""
        rows = conn.execute(
            f"SELECT {self._COLS} FROM running_sessions WHERE league_id = ? "
            "ORDER BY week_number, starts_at IS NULL, starts_at, created_at, rowid",
            (league_id,),
        ).fetchall()
        return [self._row_to_session(conn, r) for r in rows]

    def update_status(self, conn: sqlite3.Connection, session_id: str, status: str) -> None:
        if status == "finalized":
            conn.execute(
                "UPDATE running_sessions SET status = ?, finalized_at = ? WHERE id = ?",
                (status, _now().isoformat(), session_id),
            )
        else:
            conn.execute("UPDATE running_sessions SET status = ? WHERE id = ?", (status, session_id))


# ---------- SessionRunRepository ----------


class SessionRunRepository:
    """CRUD for session_runs. One row per (session, user)."""

    _COLS = (
        "id, session_id, user_id, elapsed_seconds, distance_meters, status, submitted_at, "
        "reviewed_by, reviewed_at, review_note"
    )

    def _row_to_run(self, r: sqlite3.Row) -> SessionRun:
        return SessionRun(
            id=r["id"],
            session_id=r["session_id"],
            user_id=r["user_id"],
            elapsed_seconds=r["elapsed_seconds"],
            distance_meters=r["distance_meters"],
            status=r["status"],
            submitted_at=_parse_datetime(r["submitted_at"]),
            reviewed_by=r["reviewed_by"],
            reviewed_at=_parse_optional_datetime(r["reviewed_at"]),
            review_note=r["review_note"],
        )

    def upsert(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        user_id: str,
        elapsed_seconds: float,
        distance_meters: float,
    ) -> SessionRun:
        """Insert, or overwrite the user's existing run and reset it to pending."""
        now = _now().isoformat()
        existing = self.get_for_user(conn, session_id, user_id)
        if existing is None:
            rid = str(uuid.uuid4())
            conn.execute(
                f"INSERT INTO session_runs ({self._COLS}) VALUES (?, ?, ?, ?, ?, 'pending', ?, NULL, NULL, NULL)",
                (rid, session_id, user_id, elapsed_seconds, distance_meters, now),
            )
        else:
            rid = existing.id
            conn.execute(
                "UPDATE session_runs SET elapsed_seconds = ?, distance_meters = ?, status = 'pending', "
                "submitted_at = ?, reviewed_by = NULL, reviewed_at = NULL, review_note = NULL WHERE id = ?",
                (elapsed_seconds, distance_meters, now, rid),
            )
        return self.get(conn, rid) or SessionRun(
            id=rid, session_id=session_id, user_id=user_id, elapsed_seconds=elapsed_seconds,
            distance_meters=distance_meters, status="pending", submitted_at=datetime.fromisoformat(now),
        )

    def get(self, conn: sqlite3.Connection, run_id: str) -> SessionRun | None:
        row = conn.execute(f"SELECT {self._COLS} FROM session_runs WHERE id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def get_for_user(self, conn: sqlite3.Connection, session_id: str, user_id: str) -> SessionRun | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM session_runs WHERE session_id = ? AND user_id = ?",
            (session_id, user_id),
        ).fetchone()
        return self._row_to_run(row) if row else None

    def list_by_session(self, conn: sqlite3.Connection, session_id: str) -> list[SessionRun]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM session_runs WHERE session_id = ? ORDER BY rowid",
            (session_id,),
        ).fetchall()
        return [self._row_to_run(r) for r in rows]

    def update_review(
        self,
        conn: sqlite3.Connection,
        run_id: str,
        status: str,
        reviewed_by: str,
        review_note: str | None,
    ) -> None:
        conn.execute(
            "UPDATE session_runs SET status = ?, reviewed_by = ?, reviewed_at = ?, review_note = ? WHERE id = ?",
            (status, reviewed_by, _now().isoformat(), review_note, run_id),
        )

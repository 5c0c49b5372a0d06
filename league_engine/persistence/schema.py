"""
SQLite schema for league engine records.
Migration-friendly: each table created with IF NOT EXISTS.
Child rows cascade on league delete (requires PRAGMA foreign_keys = ON).
"""
from __future__ import annotations


def leagues_schema() -> str:
    """rules_json carries the versioned rules payload (see league_engine.rules)."""
    return """
    CREATE TABLE IF NOT EXISTS leagues (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        sport_type TEXT NOT NULL,
        scoring_format TEXT NOT NULL,
        rotation_type TEXT,
        season_weeks INTEGER,
        start_date TEXT,
        max_members INTEGER NOT NULL,
        creator_id TEXT NOT NULL,
        rules_version INTEGER NOT NULL,
        rules_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_leagues_creator ON leagues(creator_id);
    """


def league_members_schema() -> str:
    """role: owner | admin | member. One owner per league."""
    return """
    CREATE TABLE IF NOT EXISTS league_members (
        league_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'member',
        name TEXT,
        joined_at TEXT NOT NULL,
        PRIMARY KEY (league_id, user_id),
        FOREIGN KEY (league_id) REFERENCES leagues(id) ON DELETE CASCADE
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_league_members_owner ON league_members(league_id) WHERE role = 'owner';
    """


def assigned_pairs_schema() -> str:
    """Fixed doubles partners. A player appears in at most one pair per league."""
    return """
    CREATE TABLE IF NOT EXISTS assigned_pairs (
        league_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        player_a_id TEXT NOT NULL,
        player_b_id TEXT NOT NULL,
        PRIMARY KEY (league_id, position),
        FOREIGN KEY (league_id) REFERENCES leagues(id) ON DELETE CASCADE
    );
    """


def fixtures_schema() -> str:
    """
    source: legacy | workflow. week_number NULL = ad-hoc.
    The unique (league_id, week_number, slot) index is the generate-once guard:
    a second concurrent generator conflicts on its first insert.
    """
    return """
    CREATE TABLE IF NOT EXISTS fixtures (
        id TEXT PRIMARY KEY,
        league_id TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT 'workflow',
        status TEXT NOT NULL DEFAULT 'scheduled',
        week_number INTEGER,
        slot INTEGER,
        starts_at TEXT,
        winner TEXT,
        outcome_type TEXT,
        score_json TEXT,
        forfeit_reason TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (league_id) REFERENCES leagues(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_fixtures_league ON fixtures(league_id);
    CREATE UNIQUE INDEX IF NOT EXISTS ix_fixtures_league_week_slot
        ON fixtures(league_id, week_number, slot) WHERE slot IS NOT NULL;
    """


def fixture_participants_schema() -> str:
    """side: A | B, NULL for individual formats."""
    return """
    CREATE TABLE IF NOT EXISTS fixture_participants (
        fixture_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        side TEXT,
        time_seconds REAL,
        points REAL,
        position INTEGER NOT NULL,
        PRIMARY KEY (fixture_id, user_id),
        FOREIGN KEY (fixture_id) REFERENCES fixtures(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_fixture_participants_user ON fixture_participants(user_id);
    """


def result_submissions_schema() -> str:
    """status: pending | confirmed | rejected | superseded."""
    return """
    CREATE TABLE IF NOT EXISTS result_submissions (
        id TEXT PRIMARY KEY,
        fixture_id TEXT NOT NULL,
        submitted_by TEXT NOT NULL,
        outcome_type TEXT NOT NULL,
        winner TEXT,
        score_json TEXT,
        forfeit_reason TEXT,
        notes TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        review_reason TEXT,
        reviewed_by TEXT,
        reviewed_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (fixture_id) REFERENCES fixtures(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_result_submissions_fixture ON result_submissions(fixture_id);
    """


def running_sessions_schema() -> str:
    """status: scheduled | open | finalized."""
    return """
    CREATE TABLE IF NOT EXISTS running_sessions (
        id TEXT PRIMARY KEY,
        league_id TEXT NOT NULL,
        week_number INTEGER NOT NULL,
        distance_meters REAL NOT NULL,
        comparison_mode TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'scheduled',
        starts_at TEXT,
        submission_deadline TEXT,
        finalized_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (league_id) REFERENCES leagues(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_running_sessions_league ON running_sessions(league_id);
    """


def session_runs_schema() -> str:
    """One run per user per session; resubmission updates the row. status: pending | approved | rejected."""
    return """
    CREATE TABLE IF NOT EXISTS session_runs (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        elapsed_seconds REAL NOT NULL,
        distance_meters REAL NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        submitted_at TEXT NOT NULL,
        reviewed_by TEXT,
        reviewed_at TEXT,
        review_note TEXT,
        FOREIGN KEY (session_id) REFERENCES running_sessions(id) ON DELETE CASCADE
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_session_runs_session_user ON session_runs(session_id, user_id);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution. Parents before children."""
    return "\n".join([
        leagues_schema(),
        league_members_schema(),
        assigned_pairs_schema(),
        fixtures_schema(),
        fixture_participants_schema(),
        result_submissions_schema(),
        running_sessions_schema(),
        session_runs_schema(),
    ])

"""
Shared fixtures: a temporary sqlite database per test and small builders for
leagues with members.
"""
from __future__ import annotations

import random

import pytest

from league_engine.models import ActorContext
from league_engine.persistence.db import get_connection, init_db, set_db_path
from league_engine.services.fixture_workflow import FixtureWorkflowService
from league_engine.services.league_service import LeagueService
from league_engine.services.running_sessions import RunningSessionService

OWNER = ActorContext(user_id="owner", is_premium=True)


@pytest.fixture
def db_conn(tmp_path):
    """Temporary DB with the full schema."""
    db_path = tmp_path / "league_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def league_service():
    return LeagueService(rng=random.Random(7))


@pytest.fixture
def workflow_service():
    return FixtureWorkflowService()


@pytest.fixture
def make_league(db_conn, league_service):
    """
    Build a league owned by OWNER with extra members joined in order.
    Returns the League; member ids are "owner" then the given ids.
    """

    def _make(member_ids=(), **kwargs):
        kwargs.setdefault("name", "Tuesday Ladder")
        kwargs.setdefault("sport_type", "tennis")
        kwargs.setdefault("scoring_format", "singles")
        league = league_service.create_league(db_conn, OWNER, owner_name="Olivia", **kwargs)
        for uid in member_ids:
            league_service.join_league(db_conn, ActorContext(user_id=uid), league.id, name=uid.upper())
        return league

    return _make


def actor(user_id: str) -> ActorContext:
    return ActorContext(user_id=user_id)


def make_session_service(now):
    """RunningSessionService with a fixed clock."""
    return RunningSessionService(clock=lambda: now)

"""
Persistence layer for league engine records.
No business logic, only read/write interfaces and transactions.
"""
from .db import get_connection, init_db, set_db_path, transaction
from .repositories import (
    LeagueRepository,
    LeagueMemberRepository,
    AssignedPairRepository,
    FixtureRepository,
    SubmissionRepository,
    RunningSessionRepository,
    SessionRunRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "set_db_path",
    "transaction",
    "LeagueRepository",
    "LeagueMemberRepository",
    "AssignedPairRepository",
    "FixtureRepository",
    "SubmissionRepository",
    "RunningSessionRepository",
    "SessionRunRepository",
]

"""
Service layer: domain logic and state machines.
Schedule generation and standings are pure; the services orchestrate persistence.
"""
from .scheduling import ScheduledMatch, generate_schedule
from .standings import StandingsResult, compute_standings
from .fixture_workflow import FixtureWorkflowService, ResultPayload, merge_fixtures
from .league_service import AssignedTeamsResult, LeagueService
from .running_sessions import FinalizeResult, RunningSessionService

__all__ = [
    "ScheduledMatch",
    "generate_schedule",
    "StandingsResult",
    "compute_standings",
    "FixtureWorkflowService",
    "ResultPayload",
    "merge_fixtures",
    "AssignedTeamsResult",
    "LeagueService",
    "FinalizeResult",
    "RunningSessionService",
]

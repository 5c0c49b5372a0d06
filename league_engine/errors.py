"""
Typed errors raised at the service boundary.
Each kind has a stable code and a default message the calling layer can render.
"""
from __future__ import annotations


class LeagueError(Exception):
    """Base for all engine errors. Raised only after the failed operation's writes are rolled back."""

    code = "league_error"
    status_code = 400
    default_message = "League operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class InsufficientPlayers(LeagueError):
    code = "insufficient_players"
    default_message = "Not enough members to schedule this league"


class TeamsNotConfigured(LeagueError):
    code = "teams_not_configured"
    default_message = "Assigned doubles teams must be configured before generating a schedule"


class ScheduleAlreadyExists(LeagueError):
    code = "schedule_already_exists"
    status_code = 409
    default_message = "A schedule has already been generated for this league"


class Unauthorized(LeagueError):
    """Wrong role or not a participant. Distinct from validation failures."""
    code = "unauthorized"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class InvalidTransition(LeagueError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This action is not valid in the current state"


class ValidationError(LeagueError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class NotFound(LeagueError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


def insufficient_players_for(scoring_format: str, minimum: int) -> InsufficientPlayers:
    label = {"singles": "singles", "doubles": "doubles"}.get(scoring_format, "this league")
    noun = "member" if minimum == 1 else "members"
    return InsufficientPlayers(f"Need at least {minimum} {noun} for {label}")

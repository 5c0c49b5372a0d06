"""
REST API for the league competition engine.
Thin wrappers around the services; every engine error maps to {"error", "code"}.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Generator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from league_engine.auth import actor_from_token, decode_token
from league_engine.errors import LeagueError
from league_engine.models import ActorContext, FixtureParticipant, FixtureScore
from league_engine.persistence import get_connection, init_db
from league_engine.persistence.db import get_db_path
from league_engine.services import (
    FixtureWorkflowService,
    LeagueService,
    ResultPayload,
    RunningSessionService,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    init_db(db_path=get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="League Competition Engine API",
    description="Schedules, result confirmation, running sessions and standings for recreational leagues",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LeagueError)
async def league_error_handler(request: Request, exc: LeagueError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


league_service = LeagueService()
workflow_service = FixtureWorkflowService()
session_service = RunningSessionService()

security = HTTPBearer(auto_error=False)


def _get_actor(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> ActorContext:
    """Caller identity from the bearer token; 401 when missing or invalid."""
    actor = actor_from_token(credentials.credentials) if credentials is not None else None
    if actor is None:
        raise HTTPException(status_code=401, detail="Login required")
    return actor


def _get_display_name(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str | None:
    if credentials is None:
        return None
    payload = decode_token(credentials.credentials)
    return payload.get("name") if payload else None


# ---------- Request models ----------


class CreateLeagueRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sport_type: str = Field(..., description="tennis | pickleball | running")
    scoring_format: str = Field(..., description="singles | doubles | team_vs_team | individual_time | individual_points")
    rotation_type: str | None = Field(None, description="random | assigned (doubles only)")
    season_weeks: int = Field(1, ge=1, le=52)
    start_date: str | None = Field(None, description="YYYY-MM-DD")
    max_members: int = Field(32, ge=2, le=256)
    comparison_mode: str | None = Field(None, description="personal_progress | absolute_performance (running)")
    description: str | None = None


class SetRoleRequest(BaseModel):
    role: str = Field(..., description="admin | member")


class AssignedTeamsRequest(BaseModel):
    pairs: list[list[str]] = Field(default_factory=list)


class CreateFixtureRequest(BaseModel):
    side_a: list[str] = Field(..., min_length=1)
    side_b: list[str] = Field(..., min_length=1)
    week_number: int | None = Field(None, ge=1)
    starts_at: datetime | None = None


class ResultBody(BaseModel):
    winner: str | None = Field(None, description="A | B")
    outcome_type: str = "played"
    sets: list[list[int]] | None = None
    score_a: float | None = None
    score_b: float | None = None
    forfeit_reason: str | None = None
    notes: str | None = Field(None, max_length=1000)

    def to_payload(self) -> ResultPayload:
        return ResultPayload(
            winner=self.winner,
            outcome_type=self.outcome_type,
            sets=self.sets,
            score_a=self.score_a,
            score_b=self.score_b,
            forfeit_reason=self.forfeit_reason,
            notes=self.notes,
        )


class SubmitResultRequest(ResultBody):
    submission_id: str | None = Field(None, description="Client-generated id; replays are no-ops")


class ParticipantEntry(BaseModel):
    user_id: str
    side: str | None = None
    time_seconds: float | None = None
    points: float | None = None


class RecordMatchRequest(ResultBody):
    participants: list[ParticipantEntry] = Field(..., min_length=1)
    week_number: int | None = Field(None, ge=1)
    played_at: datetime | None = None


class ReviewSubmissionRequest(BaseModel):
    decision: str = Field(..., description="confirm | reject")
    reason: str | None = None


class ResolveDisputeRequest(BaseModel):
    winner: str | None = Field(None, description="A | B (null for a team_vs_team draw)")
    reason: str | None = None
    sets: list[list[int]] | None = None
    score_a: float | None = None
    score_b: float | None = None


class CancelFixtureRequest(BaseModel):
    reason: str | None = None


class CreateSessionRequest(BaseModel):
    week_number: int = Field(..., ge=1)
    distance_meters: float = Field(..., gt=0)
    starts_at: datetime | None = None
    submission_deadline: datetime | None = None


class SubmitRunRequest(BaseModel):
    elapsed_seconds: float
    distance_meters: float


class ReviewRunRequest(BaseModel):
    decision: str = Field(..., description="approve | reject")
    note: str | None = None


# ---------- Leagues ----------


@app.post("/leagues")
def create_league(
    req: CreateLeagueRequest,
    actor: ActorContext = Depends(_get_actor),
    display_name: str | None = Depends(_get_display_name),
) -> dict[str, Any]:
    """Create a league (premium). Creator is the owner."""
    with db_conn() as conn:
        league = league_service.create_league(
            conn,
            actor,
            name=req.name,
            sport_type=req.sport_type,
            scoring_format=req.scoring_format,
            rotation_type=req.rotation_type,
            season_weeks=req.season_weeks,
            start_date=req.start_date,
            max_members=req.max_members,
            comparison_mode=req.comparison_mode,
            description=req.description,
            owner_name=display_name,
        )
        return league.to_dict()


@app.get("/leagues/{league_id}")
def get_league(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        league = league_service.get_league(conn, league_id)
        members = league_service.list_members(conn, league_id)
        return {**league.to_dict(), "members": [m.to_dict() for m in members]}


@app.delete("/leagues/{league_id}")
def delete_league(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        league_service.delete_league(conn, actor, league_id)
        return {"deleted": league_id}


@app.post("/leagues/{league_id}/join")
def join_league(
    league_id: str,
    actor: ActorContext = Depends(_get_actor),
    display_name: str | None = Depends(_get_display_name),
) -> dict[str, Any]:
    with db_conn() as conn:
        member = league_service.join_league(conn, actor, league_id, name=display_name)
        return member.to_dict()


@app.post("/leagues/{league_id}/leave")
def leave_league(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        league_service.leave_league(conn, actor, league_id)
        return {"left": league_id}


@app.put("/leagues/{league_id}/members/{user_id}/role")
def set_member_role(
    league_id: str, user_id: str, req: SetRoleRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        member = league_service.set_member_role(conn, actor, league_id, user_id, req.role)
        return member.to_dict()


@app.get("/leagues/{league_id}/teams")
def get_assigned_teams(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return league_service.get_assigned_teams(conn, league_id).to_dict()


@app.put("/leagues/{league_id}/teams")
def save_assigned_teams(
    league_id: str, req: AssignedTeamsRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        return league_service.save_assigned_teams(conn, actor, league_id, req.pairs).to_dict()


@app.post("/leagues/{league_id}/schedule")
def generate_schedule(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    """Generate the season's fixtures once."""
    with db_conn() as conn:
        fixtures = league_service.generate_schedule(conn, actor, league_id)
        return {"fixtures": [f.to_dict() for f in fixtures]}


@app.get("/leagues/{league_id}/fixtures")
def list_fixtures(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"fixtures": [f.to_dict() for f in league_service.list_fixtures(conn, league_id)]}


@app.post("/leagues/{league_id}/fixtures")
def create_fixture(
    league_id: str, req: CreateFixtureRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        fixture = league_service.create_fixture(
            conn, actor, league_id, req.side_a, req.side_b,
            week_number=req.week_number, starts_at=req.starts_at,
        )
        return fixture.to_dict()


@app.post("/leagues/{league_id}/matches")
def record_match(
    league_id: str, req: RecordMatchRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    """Record a finished match directly (no confirmation step)."""
    participants = [
        FixtureParticipant(user_id=p.user_id, side=p.side, time_seconds=p.time_seconds, points=p.points)
        for p in req.participants
    ]
    with db_conn() as conn:
        fixture = league_service.record_match(
            conn, actor, league_id, participants, req.to_payload(),
            week_number=req.week_number, played_at=req.played_at,
        )
        return fixture.to_dict()


@app.get("/leagues/{league_id}/standings")
def get_standings(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return league_service.get_standings(conn, league_id).to_dict()


# ---------- Fixture workflow ----------


@app.get("/fixtures/{fixture_id}/submissions")
def list_submissions(fixture_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"submissions": [s.to_dict() for s in workflow_service.list_submissions(conn, fixture_id)]}


@app.post("/fixtures/{fixture_id}/submissions")
def submit_result(
    fixture_id: str, req: SubmitResultRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        fixture = workflow_service.submit_result(
            conn, actor, fixture_id, req.to_payload(), submission_id=req.submission_id
        )
        return fixture.to_dict()


@app.post("/fixtures/{fixture_id}/submissions/{submission_id}/review")
def review_submission(
    fixture_id: str,
    submission_id: str,
    req: ReviewSubmissionRequest,
    actor: ActorContext = Depends(_get_actor),
) -> dict[str, Any]:
    with db_conn() as conn:
        fixture = workflow_service.confirm_result(
            conn, actor, fixture_id, submission_id, req.decision, reason=req.reason
        )
        return fixture.to_dict()


@app.post("/fixtures/{fixture_id}/resolve")
def resolve_dispute(
    fixture_id: str, req: ResolveDisputeRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    score = FixtureScore(sets=req.sets, score_a=req.score_a, score_b=req.score_b)
    with db_conn() as conn:
        fixture = workflow_service.resolve_dispute(
            conn, actor, fixture_id, req.winner, reason=req.reason,
            score=None if score.is_empty() else score,
        )
        return fixture.to_dict()


@app.post("/fixtures/{fixture_id}/cancel")
def cancel_fixture(
    fixture_id: str, req: CancelFixtureRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        return workflow_service.cancel_fixture(conn, actor, fixture_id, reason=req.reason).to_dict()


# ---------- Running sessions ----------


@app.get("/leagues/{league_id}/sessions")
def list_sessions(league_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"sessions": [s.to_dict() for s in session_service.list_sessions(conn, league_id)]}


@app.post("/leagues/{league_id}/sessions")
def create_session(
    league_id: str, req: CreateSessionRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        session = session_service.create_session(
            conn, actor, league_id, req.week_number, req.distance_meters,
            starts_at=req.starts_at, submission_deadline=req.submission_deadline,
        )
        return session.to_dict()


@app.post("/sessions/{session_id}/open")
def open_session(session_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return session_service.open_session(conn, actor, session_id).to_dict()


@app.post("/sessions/{session_id}/runs")
def submit_run(
    session_id: str, req: SubmitRunRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        run = session_service.submit_run(conn, actor, session_id, req.elapsed_seconds, req.distance_meters)
        return run.to_dict()


@app.post("/sessions/{session_id}/runs/{run_id}/review")
def review_run(
    session_id: str, run_id: str, req: ReviewRunRequest, actor: ActorContext = Depends(_get_actor)
) -> dict[str, Any]:
    with db_conn() as conn:
        run = session_service.review_run(conn, actor, session_id, run_id, req.decision, note=req.note)
        return run.to_dict()


@app.post("/sessions/{session_id}/finalize")
def finalize_session(session_id: str, actor: ActorContext = Depends(_get_actor)) -> dict[str, Any]:
    with db_conn() as conn:
        return session_service.finalize_session(conn, actor, session_id).to_dict()

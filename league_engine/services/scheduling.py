"""
Schedule generation for leagues. Pure functions: no persistence, no clock.

Singles uses round-robin by the circle method: fix the first slot, rotate the
others each round. With N players (N even) a full cycle is N-1 rounds and every
pair meets exactly once; when N is odd a virtual BYE is added and whoever is
paired with it sits out that week. Seasons longer than one cycle repeat the
cycle, so no pair meets more than ceil(weeks / cycle_length) times.

Doubles random rotation reshuffles partners every week. Members that sat out
least so far are the first candidates to sit out again when the roster does
not divide into groups of four.

Doubles assigned rotation keeps partners fixed and runs the same circle method
over the fixed teams.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Sequence

from league_engine.errors import TeamsNotConfigured, ValidationError, insufficient_players_for
from league_engine.models import RotationType, ScoringFormat

# Sentinel for bye when number of entrants is odd
BYE = "BYE"

MIN_SINGLES_PLAYERS = 2
MIN_DOUBLES_PLAYERS = 4


@dataclass(frozen=True)
class ScheduledMatch:
    """One pairing in one week. team_a / team_b hold 1 (singles) or 2 (doubles) user ids."""
    week_number: int
    team_a: tuple[str, ...]
    team_b: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "week_number": self.week_number,
            "team_a": list(self.team_a),
            "team_b": list(self.team_b),
        }


def round_robin_rounds(entrant_ids: Sequence[str]) -> list[list[tuple[str, str | None]]]:
    """
    One full round-robin cycle: list of rounds, each a list of (home, away) pairs.
    away is None when home has a bye (odd number of entrants).
    Deterministic: same entrant ordering => same rounds.
    """
    if not entrant_ids:
        return []
    ids = list(entrant_ids)
    if len(ids) % 2 == 1:
        ids.append(BYE)
    n = len(ids)
    rounds: list[list[tuple[str, str | None]]] = []
    # Circle method: indices 0..n-1. Fix 0, rotate 1..n-1 each round.
    order = list(range(n))
    for _ in range(n - 1):
        pairs: list[tuple[str, str | None]] = []
        for i in range(n // 2):
            home_id, away_id = ids[order[i]], ids[order[n - 1 - i]]
            if home_id == BYE:
                home_id, away_id = away_id, None
            elif away_id == BYE:
                away_id = None
            pairs.append((home_id, away_id))
        rounds.append(pairs)
        # Rotate: keep 0, then order[n-1], order[1], order[2], ..., order[n-2]
        order = [order[0]] + [order[n - 1]] + order[1 : n - 1]
    return rounds


def byes_by_week(entrant_ids: Sequence[str], weeks: int) -> dict[int, list[str]]:
    """Entrants sitting out each week of a singles schedule (empty lists when roster is even)."""
    rounds = round_robin_rounds(entrant_ids)
    out: dict[int, list[str]] = {}
    for week in range(1, weeks + 1):
        pairs = rounds[(week - 1) % len(rounds)] if rounds else []
        out[week] = [home for home, away in pairs if away is None]
    return out


def _check_weeks(weeks: int) -> None:
    if weeks < 1:
        raise ValidationError("Season length must be at least 1 week")


def generate_singles_schedule(member_ids: Sequence[str], weeks: int) -> list[ScheduledMatch]:
    """
    Singles round-robin over the roster for `weeks` weeks, cycling full round-robins.
    Each player plays once per week unless on a bye.
    """
    _check_weeks(weeks)
    if len(member_ids) < MIN_SINGLES_PLAYERS:
        raise insufficient_players_for(ScoringFormat.SINGLES.value, MIN_SINGLES_PLAYERS)
    rounds = round_robin_rounds(member_ids)
    result: list[ScheduledMatch] = []
    for week in range(1, weeks + 1):
        for home_id, away_id in rounds[(week - 1) % len(rounds)]:
            if away_id is None:
                continue
            result.append(ScheduledMatch(week_number=week, team_a=(home_id,), team_b=(away_id,)))
    return result


def generate_doubles_random_schedule(
    member_ids: Sequence[str],
    weeks: int,
    rng: random.Random | None = None,
) -> list[ScheduledMatch]:
    """
    Random partners each week: shuffle, then [0,1] vs [2,3], [4,5] vs [6,7], ...
    The remainder (n mod 4) sits out; sit-outs rotate to whoever has sat out least.
    """
    _check_weeks(weeks)
    if len(member_ids) < MIN_DOUBLES_PLAYERS:
        raise insufficient_players_for(ScoringFormat.DOUBLES.value, MIN_DOUBLES_PLAYERS)
    rng = rng or random.Random()
    sit_outs = {uid: 0 for uid in member_ids}
    remainder = len(member_ids) % 4
    result: list[ScheduledMatch] = []
    for week in range(1, weeks + 1):
        shuffled = list(member_ids)
        rng.shuffle(shuffled)
        # Stable sort keeps the shuffle as tiebreak; most sat-out first, so they play.
        shuffled.sort(key=lambda uid: -sit_outs[uid])
        playing = shuffled[: len(shuffled) - remainder]
        for uid in shuffled[len(shuffled) - remainder :]:
            sit_outs[uid] += 1
        rng.shuffle(playing)
        for i in range(0, len(playing), 4):
            result.append(
                ScheduledMatch(
                    week_number=week,
                    team_a=(playing[i], playing[i + 1]),
                    team_b=(playing[i + 2], playing[i + 3]),
                )
            )
    return result


def validate_assigned_pairs(
    pairs: Sequence[tuple[str, str]],
    member_ids: Sequence[str],
) -> None:
    """Raise TeamsNotConfigured unless pairs form an even set of disjoint teams of current members."""
    if len(pairs) < 2:
        raise TeamsNotConfigured("At least two assigned teams are required")
    if len(pairs) % 2 != 0:
        raise TeamsNotConfigured("Assigned teams must be an even number of teams")
    roster = set(member_ids)
    seen: set[str] = set()
    for a, b in pairs:
        if not a or not b or a == b:
            raise TeamsNotConfigured("Each assigned team needs two different players")
        for uid in (a, b):
            if uid in seen:
                raise TeamsNotConfigured("A player cannot be in two assigned teams")
            if uid not in roster:
                raise TeamsNotConfigured("Assigned teams include a player who is no longer a member")
            seen.add(uid)


def generate_doubles_assigned_schedule(
    pairs: Sequence[tuple[str, str]],
    weeks: int,
    member_ids: Sequence[str] | None = None,
) -> list[ScheduledMatch]:
    """
    Fixed partners for the season; only opponents rotate.
    Teams play a round-robin of one another, cycling when weeks exceed a cycle.
    """
    _check_weeks(weeks)
    if member_ids is None:
        member_ids = [uid for pair in pairs for uid in pair]
    if len(member_ids) < MIN_DOUBLES_PLAYERS:
        raise insufficient_players_for(ScoringFormat.DOUBLES.value, MIN_DOUBLES_PLAYERS)
    validate_assigned_pairs(pairs, member_ids)
    teams = {str(i): tuple(p) for i, p in enumerate(pairs)}
    rounds = round_robin_rounds(list(teams))
    result: list[ScheduledMatch] = []
    for week in range(1, weeks + 1):
        for home_key, away_key in rounds[(week - 1) % len(rounds)]:
            if away_key is None:
                continue
            result.append(ScheduledMatch(week_number=week, team_a=teams[home_key], team_b=teams[away_key]))
    return result


def generate_schedule(
    member_ids: Sequence[str],
    weeks: int,
    scoring_format: str,
    rotation_type: str | None = None,
    pairs: Sequence[tuple[str, str]] | None = None,
    rng: random.Random | None = None,
) -> list[ScheduledMatch]:
    """
    Dispatch on league format. Returns matches ordered by week.
    Side-effect-free; persisting the result is the caller's job.
    """
    if scoring_format == ScoringFormat.SINGLES.value:
        return generate_singles_schedule(member_ids, weeks)
    if scoring_format == ScoringFormat.DOUBLES.value:
        if rotation_type == RotationType.ASSIGNED.value:
            return generate_doubles_assigned_schedule(pairs or [], weeks, member_ids)
        return generate_doubles_random_schedule(member_ids, weeks, rng)
    raise ValidationError(f"Schedules are not generated for {scoring_format} leagues")

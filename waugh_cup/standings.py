"""Pool standings and result helpers.

Everything here is a pure function of its arguments: callers fetch teams,
matches and results (see ``repository.TournamentRepository``) and pass them
in. Tables are rebuilt from scratch on every call.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping, NamedTuple, Sequence

from sqlmodel import SQLModel

from .database import POOL_LABELS, STAGE_POOL, Match, MatchResult, Player, PlayerStat, Team

POINTS_FOR_WIN = 3
POINTS_FOR_DRAW = 1


class DataIntegrityError(ValueError):
    """Raised when completed matches disagree with the registered teams."""


class PlayedMatch(NamedTuple):
    match: Match
    result: MatchResult | None


class Standing(SQLModel):
    team_id: int
    school_name: str
    pool: str
    rank: int = 0
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    tied: bool = False


class Scorer(SQLModel):
    player_id: int
    name: str
    cap_number: int
    school_name: str
    goals: int


def is_counted(entry: PlayedMatch) -> bool:
    """Return True when a match feeds the pool tables."""
    return entry.match.stage == STAGE_POOL and entry.match.completed and entry.result is not None


def compute_standings(
    teams: Sequence[Team], played_matches: Iterable[PlayedMatch]
) -> dict[str, list[Standing]]:
    """Build ranked tables for every pool from completed pool-stage matches."""
    records: dict[int, dict[str, int]] = {}
    team_lookup: dict[int, Team] = {}
    for team in teams:
        if not team.pool:
            continue
        team_lookup[team.id] = team
        records[team.id] = defaultdict(int)

    for entry in played_matches:
        if not is_counted(entry):
            continue
        match, result = entry
        home = team_lookup.get(match.home_team_id)
        away = team_lookup.get(match.away_team_id)
        if home is None or away is None:
            missing = match.home_team_id if home is None else match.away_team_id
            raise DataIntegrityError(f"Match {match.id} references unknown or unallocated team {missing}.")
        if home.pool != away.pool:
            raise DataIntegrityError(
                f"Match {match.id} pairs pool {home.pool} with pool {away.pool}."
            )
        _credit(records[home.id], result.home_score, result.away_score)
        _credit(records[away.id], result.away_score, result.home_score)

    tables: dict[str, list[Standing]] = {label: [] for label in POOL_LABELS}
    for team_id, record in records.items():
        team = team_lookup[team_id]
        won = record["won"]
        drawn = record["drawn"]
        tables.setdefault(team.pool, []).append(
            Standing(
                team_id=team_id,
                school_name=team.school_name,
                pool=team.pool,
                played=record["played"],
                won=won,
                drawn=drawn,
                lost=record["lost"],
                goals_for=record["goals_for"],
                goals_against=record["goals_against"],
                goal_difference=record["goals_for"] - record["goals_against"],
                points=POINTS_FOR_WIN * won + POINTS_FOR_DRAW * drawn,
            )
        )

    for pool in tables:
        tables[pool] = rank_pool(tables[pool])
    return dict(sorted(tables.items()))


def _credit(record: dict[str, int], scored: int, conceded: int) -> None:
    record["played"] += 1
    record["goals_for"] += scored
    record["goals_against"] += conceded
    if scored > conceded:
        record["won"] += 1
    elif scored == conceded:
        record["drawn"] += 1
    else:
        record["lost"] += 1


def _table_key(row: Standing) -> tuple:
    return (-row.points, -row.goal_difference, -row.goals_for)


def rank_pool(rows: Iterable[Standing]) -> list[Standing]:
    """Order a pool by points, goal difference, goals for, then school name."""
    ordered = sorted(rows, key=lambda row: (*_table_key(row), row.school_name.casefold(), row.team_id))
    key_counts: dict[tuple, int] = defaultdict(int)
    for row in ordered:
        key_counts[_table_key(row)] += 1
    for index, row in enumerate(ordered, start=1):
        row.rank = index
        # Mini-league and disciplinary tie-breaks are not applied; surface the fallback.
        row.tied = key_counts[_table_key(row)] > 1
    return ordered


def pool_stage_complete(matches: Iterable[Match], pool: str | None = None) -> bool:
    """Return True once every scheduled pool match (per pool) is completed."""
    by_pool: dict[str | None, list[Match]] = defaultdict(list)
    for match in matches:
        if match.stage == STAGE_POOL:
            by_pool[match.pool].append(match)

    labels = [pool] if pool else list(POOL_LABELS)
    for label in labels:
        pool_matches = by_pool.get(label, [])
        if not pool_matches or not all(match.completed for match in pool_matches):
            return False
    return True


def _decided(match: Match, result: MatchResult | None) -> tuple[int, int] | None:
    if result is None or not match.completed:
        return None
    if result.home_score != result.away_score:
        home_ahead = result.home_score > result.away_score
    elif result.home_penalties is not None and result.away_penalties is not None:
        if result.home_penalties == result.away_penalties:
            return None
        home_ahead = result.home_penalties > result.away_penalties
    else:
        return None
    if home_ahead:
        return match.home_team_id, match.away_team_id
    return match.away_team_id, match.home_team_id


def match_winner(match: Match, result: MatchResult | None) -> int | None:
    decided = _decided(match, result)
    return decided[0] if decided else None


def match_loser(match: Match, result: MatchResult | None) -> int | None:
    decided = _decided(match, result)
    return decided[1] if decided else None


def top_scorers(
    stats: Iterable[PlayerStat],
    players: Sequence[Player],
    teams: Sequence[Team],
    limit: int = 5,
) -> tuple[list[Scorer], int]:
    """Rank players by goals across every recorded match."""
    goals: dict[int, int] = defaultdict(int)
    total = 0
    for stat in stats:
        goals[stat.player_id] += stat.goals
        total += stat.goals

    player_lookup = {player.id: player for player in players}
    school_lookup = {team.id: team.school_name for team in teams}
    scorers: list[Scorer] = []
    for player_id, count in goals.items():
        if count <= 0:
            continue
        player = player_lookup.get(player_id)
        scorers.append(
            Scorer(
                player_id=player_id,
                name=player.name if player else "Unknown",
                cap_number=player.cap_number if player else 0,
                school_name=school_lookup.get(player.team_id, "Unknown") if player else "Unknown",
                goals=count,
            )
        )
    scorers.sort(key=lambda scorer: (-scorer.goals, scorer.name.casefold(), scorer.player_id))
    return scorers[: max(limit, 0)], total


def tournament_summary(played_matches: Iterable[PlayedMatch]) -> Mapping[str, object]:
    pool_matches = [entry for entry in played_matches if entry.match.stage == STAGE_POOL]
    completed = [entry for entry in pool_matches if is_counted(entry)]
    total_goals = sum(entry.result.home_score + entry.result.away_score for entry in completed)
    average = round(total_goals / len(completed), 1) if completed else 0.0
    return {
        "total_matches": len(pool_matches),
        "completed_matches": len(completed),
        "pending_matches": len(pool_matches) - len(completed),
        "total_goals": total_goals,
        "average_goals_per_match": average,
    }

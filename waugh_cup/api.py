"""JSON endpoints for the scoreboard, admin tools and integrations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Field, Session, SQLModel

from .auth import require_admin
from .bracket import bracket_ready, group_bracket
from .database import KNOCKOUT_STAGES, POOL_LABELS, Match, Team, get_session
from .repository import (
    BracketLockedError,
    DuplicateTeamError,
    PoolsLockedError,
    TournamentError,
    TournamentRepository,
)
from .standings import pool_stage_complete
from .storage import logo_url

router = APIRouter(prefix="/api", tags=["api"])


class PlayerIn(SQLModel):
    name: str
    cap_number: int


class TeamCreate(SQLModel):
    school_name: str
    coach_name: str
    manager_name: str
    pool: Optional[str] = None
    players: list[PlayerIn] = Field(default_factory=list)


class TeamUpdate(SQLModel):
    school_name: Optional[str] = None
    coach_name: Optional[str] = None
    manager_name: Optional[str] = None
    pool: Optional[str] = None


class MatchCreate(SQLModel):
    home_team_id: int
    away_team_id: int
    stage: str
    pool: Optional[str] = None
    round: Optional[str] = None
    bracket_position: Optional[int] = None
    day: int = 1
    time_slot: str = "08:00"
    arena: int = 1


class MatchUpdate(SQLModel):
    day: Optional[int] = None
    time_slot: Optional[str] = None
    arena: Optional[int] = None


class PlayerStatIn(SQLModel):
    player_id: int
    goals: int = 0
    kick_outs: int = 0
    yellow_cards: int = 0
    red_cards: int = 0


class PlayerStatCreate(PlayerStatIn):
    match_result_id: int


class ResultIn(SQLModel):
    match_id: int
    home_score: int
    away_score: int
    home_penalties: Optional[int] = None
    away_penalties: Optional[int] = None
    completed: bool = True
    player_stats: list[PlayerStatIn] = Field(default_factory=list)


def get_repository(session: Session = Depends(get_session)) -> TournamentRepository:
    return TournamentRepository.for_active(session)


def _rejected(repo: TournamentRepository, exc: TournamentError) -> HTTPException:
    repo.session.rollback()
    conflicts = (DuplicateTeamError, PoolsLockedError, BracketLockedError)
    status_code = 409 if isinstance(exc, conflicts) else 400
    return HTTPException(status_code=status_code, detail=str(exc))


def _team_payload(repo: TournamentRepository, team: Team, *, with_players: bool = True) -> dict[str, object]:
    payload = team.model_dump()
    payload["logo_url"] = logo_url(team.logo)
    if with_players:
        payload["players"] = [player.model_dump() for player in repo.players(team.id)]
    return payload


def _match_payload(match: Match, results: dict, teams: dict[int, Team]) -> dict[str, object]:
    payload = match.model_dump()
    result = results.get(match.id)
    payload["result"] = result.model_dump() if result else None
    home = teams.get(match.home_team_id)
    away = teams.get(match.away_team_id)
    payload["home_team"] = {"id": home.id, "school_name": home.school_name} if home else None
    payload["away_team"] = {"id": away.id, "school_name": away.school_name} if away else None
    return payload


@router.get("/teams")
def list_teams(repo: TournamentRepository = Depends(get_repository)):
    return [_team_payload(repo, team) for team in repo.teams()]


@router.post("/teams", status_code=201, dependencies=[Depends(require_admin)])
def create_team(body: TeamCreate, repo: TournamentRepository = Depends(get_repository)):
    try:
        team = repo.register_team(
            body.school_name,
            body.coach_name,
            body.manager_name,
            [(player.cap_number, player.name) for player in body.players],
            pool=body.pool,
        )
    except TournamentError as exc:
        raise _rejected(repo, exc) from exc
    return _team_payload(repo, team)


@router.get("/teams/{team_id}")
def get_team(team_id: int, repo: TournamentRepository = Depends(get_repository)):
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return _team_payload(repo, team)


@router.put("/teams/{team_id}", dependencies=[Depends(require_admin)])
def update_team(team_id: int, body: TeamUpdate, repo: TournamentRepository = Depends(get_repository)):
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    try:
        team = repo.update_team(
            team,
            school_name=body.school_name,
            coach_name=body.coach_name,
            manager_name=body.manager_name,
            pool=body.pool,
        )
    except TournamentError as exc:
        raise _rejected(repo, exc) from exc
    return _team_payload(repo, team)


@router.delete("/teams/{team_id}", dependencies=[Depends(require_admin)])
def delete_team(team_id: int, repo: TournamentRepository = Depends(get_repository)):
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    repo.delete_team(team)
    return {"message": "Team deleted"}


@router.get("/matches")
def list_matches(
    day: Optional[int] = None,
    stage: Optional[str] = None,
    pool: Optional[str] = Query(default=None, alias="poolId"),
    completed: Optional[bool] = None,
    repo: TournamentRepository = Depends(get_repository),
):
    matches = repo.matches(stage=stage, pool=pool, day=day, completed=completed)
    results = repo.results(match.id for match in matches)
    teams = {team.id: team for team in repo.teams()}
    return [_match_payload(match, results, teams) for match in matches]


@router.post("/matches", status_code=201, dependencies=[Depends(require_admin)])
def create_match(body: MatchCreate, repo: TournamentRepository = Depends(get_repository)):
    try:
        match = repo.create_match(**body.model_dump())
    except TournamentError as exc:
        raise _rejected(repo, exc) from exc
    return match


@router.get("/matches/{match_id}")
def get_match(match_id: int, repo: TournamentRepository = Depends(get_repository)):
    match = repo.match(match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    teams = {team.id: team for team in repo.teams()}
    return _match_payload(match, repo.results([match.id]), teams)


@router.put("/matches/{match_id}", dependencies=[Depends(require_admin)])
def update_match(match_id: int, body: MatchUpdate, repo: TournamentRepository = Depends(get_repository)):
    match = repo.match(match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    return repo.reschedule_match(match, **body.model_dump())


@router.get("/results")
def list_results(repo: TournamentRepository = Depends(get_repository)):
    return list(repo.results(match.id for match in repo.matches()).values())


@router.post("/results", status_code=201, dependencies=[Depends(require_admin)])
def save_result(body: ResultIn, repo: TournamentRepository = Depends(get_repository)):
    match = repo.match(body.match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    try:
        result = repo.record_result(
            match,
            body.home_score,
            body.away_score,
            home_penalties=body.home_penalties,
            away_penalties=body.away_penalties,
            player_stats=[stat.model_dump() for stat in body.player_stats],
            completed=body.completed,
        )
    except TournamentError as exc:
        raise _rejected(repo, exc) from exc
    return result


@router.get("/results/{match_id}")
def get_result(match_id: int, repo: TournamentRepository = Depends(get_repository)):
    if not repo.match(match_id):
        raise HTTPException(status_code=404, detail="Match not found")
    result = repo.result(match_id)
    if not result:
        raise HTTPException(status_code=404, detail="Result not found")
    return result


@router.get("/player-stats")
def list_player_stats(
    match_result_id: Optional[int] = Query(default=None, alias="matchResultId"),
    repo: TournamentRepository = Depends(get_repository),
):
    if match_result_id is None:
        raise HTTPException(status_code=400, detail="Match Result ID is required")
    return repo.player_stats(match_result_id)


@router.post("/player-stats", status_code=201, dependencies=[Depends(require_admin)])
def save_player_stat(body: PlayerStatCreate, repo: TournamentRepository = Depends(get_repository)):
    values = body.model_dump(exclude={"match_result_id", "player_id"})
    try:
        return repo.upsert_player_stat(body.match_result_id, body.player_id, values)
    except TournamentError as exc:
        raise _rejected(repo, exc) from exc


@router.get("/standings")
def standings(pool: Optional[str] = None, repo: TournamentRepository = Depends(get_repository)):
    tables = repo.standings()
    if pool:
        if pool not in tables:
            raise HTTPException(status_code=404, detail="Pool not found")
        return {"pool": pool, "standings": tables[pool]}
    return {"standings": [row for table in tables.values() for row in table]}


@router.get("/standings/all")
def all_standings(repo: TournamentRepository = Depends(get_repository)):
    tables = repo.standings()
    matches = repo.matches()
    return {
        "standings": tables,
        "completion_status": {pool: pool_stage_complete(matches, pool) for pool in POOL_LABELS},
        "team_counts": {pool: len(tables.get(pool, [])) for pool in POOL_LABELS},
        "total_teams": len(repo.teams()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/bracket")
def bracket(stage: Optional[str] = None, repo: TournamentRepository = Depends(get_repository)):
    if stage and stage not in KNOCKOUT_STAGES:
        raise HTTPException(status_code=404, detail="Unknown stage")
    stages = [stage] if stage else list(KNOCKOUT_STAGES)
    matches = repo.matches()
    results = repo.results(match.id for match in matches)
    teams = {team.id: team for team in repo.teams()}
    standings_tables = repo.standings()
    payload = {}
    for name in stages:
        rounds = group_bracket([match for match in matches if match.stage == name], name)
        payload[name] = {
            "ready": bracket_ready(standings_tables, name),
            "rounds": [
                {
                    "round": entry["round"],
                    "matches": [_match_payload(match, results, teams) for match in entry["matches"]],
                }
                for entry in rounds
            ],
        }
    return payload


@router.post("/bracket/{stage}/next", dependencies=[Depends(require_admin)])
def next_round(stage: str, repo: TournamentRepository = Depends(get_repository)):
    if stage not in KNOCKOUT_STAGES:
        raise HTTPException(status_code=404, detail="Unknown stage")
    created = repo.generate_knockout_round(stage)
    return {"created": created}


@router.get("/top-scorers")
def scorers(limit: int = Query(default=5, ge=1, le=100), repo: TournamentRepository = Depends(get_repository)):
    ranked, total_goals = repo.top_scorers(limit)
    return {"scorers": ranked, "total_goals": total_goals}


@router.get("/tournament")
def tournament(repo: TournamentRepository = Depends(get_repository)):
    teams = repo.teams()
    return {
        "tournament": repo.tournament,
        "teams": [_team_payload(repo, team) for team in teams],
        "pools": [
            {"id": pool, "name": f"Pool {pool}", "teams": [team.id for team in teams if team.pool == pool]}
            for pool in POOL_LABELS
        ],
        "matches": repo.matches(),
    }

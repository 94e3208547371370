from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from urllib.parse import quote, urljoin

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from . import config
from .auth import credentials_match, encode_session, is_admin
from .bracket import ROUND_ORDER, bracket_ready, group_bracket
from .database import KNOCKOUT_STAGES, POOL_LABELS, STAGE_POOL, Match, Team, get_session
from .repository import (
    BracketLockedError,
    GoalTallyError,
    PoolsLockedError,
    RegistrationError,
    ShootoutRequiredError,
    TournamentError,
    TournamentRepository,
)
from .standings import pool_stage_complete, tournament_summary
from .storage import logo_url, save_logo

BASE_DIR = Path(__file__).resolve().parent

router = APIRouter()
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.globals["logo_url"] = logo_url

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 100
MAX_ROSTER_LENGTH = 2000

STAGE_TITLES = {
    "cup": "Cup",
    "plate": "Plate",
    "shield": "Shield",
    "playoff": "Classification Playoffs",
    "festival": "Festival",
}

TEAM_MESSAGES = {
    "created": ("Team registered.", False),
    "updated": ("Team updated.", False),
    "deleted": ("Team removed.", False),
    "logo": ("Logo uploaded.", False),
    "logo-invalid": ("That file type can't be used as a logo.", True),
    "allocated": ("Teams allocated to pools.", False),
    "locked": ("Pool results are already recorded; pools are locked.", True),
}

SCHEDULE_MESSAGES = {
    "generated": ("Pool fixtures generated.", False),
    "needs-pools": ("Allocate at least two teams to pools first.", True),
    "locked": ("Pool results are already recorded; fixtures are locked.", True),
    "updated": ("Score saved.", False),
    "needs-winner": ("Knockout matches need a winner. Record the penalty shootout.", True),
    "invalid-score": ("Scores must be zero or greater.", True),
    "goal-mismatch": ("Player goals must add up to the team score.", True),
    "bracket-locked": ("A later round already uses this result. Its winner can no longer change.", True),
}

BRACKET_MESSAGES = {
    "generated": ("Next round created.", False),
    "up-to-date": ("Nothing new to create yet. Finish the current round first.", True),
    "not-ready": ("Pool play must be complete, with enough teams in every pool, before seeding.", True),
}

# Result rejections with their own schedule message.
RESULT_FLAGS = (
    (ShootoutRequiredError, "needs-winner"),
    (GoalTallyError, "goal-mismatch"),
    (BracketLockedError, "bracket-locked"),
)


def _result_flag(exc: TournamentError) -> str:
    for error_type, flag in RESULT_FLAGS:
        if isinstance(exc, error_type):
            return flag
    return "invalid-score"


def _admin_redirect(request: Request) -> RedirectResponse:
    next_path = request.url.path
    if request.url.query:
        next_path += f"?{request.url.query}"
    login_url = request.url_for("admin_login")
    redirect_target = f"{login_url}?next={quote(next_path, safe='')}"
    return RedirectResponse(redirect_target, status_code=303)


def _sanitize_next(next_param: str | None) -> str:
    if next_param and next_param.startswith("/"):
        return next_param
    return "/"


def _absolute_next(request: Request, next_param: str) -> str:
    return urljoin(str(request.base_url), next_param.lstrip("/"))


def _redirect(request: Request, name: str, flag: str, value: str, **path_params) -> RedirectResponse:
    redirect_url = str(request.url_for(name, **path_params)) + f"?{flag}={value}"
    return RedirectResponse(redirect_url, status_code=303)


def _render(
    request: Request,
    template_name: str,
    context: dict[str, object],
    *,
    status_code: int | None = None,
) -> HTMLResponse:
    payload = dict(context)
    payload.setdefault("tournament_name", config.TOURNAMENT_NAME)
    payload["is_admin"] = is_admin(request)
    response = templates.TemplateResponse(request, template_name, payload)
    if status_code is not None:
        response.status_code = status_code
    return response


def _apply_message(context: dict[str, object], messages: dict[str, tuple[str, bool]], status: str | None) -> None:
    if status in messages:
        message, is_error = messages[status]
        context.update({"message": message, "message_error": is_error})


def _parse_roster(raw: str) -> list[tuple[int, str]]:
    """Read one ``cap name`` pair per line, e.g. ``7 Sam Botha``."""
    players: list[tuple[int, str]] = []
    for line in raw.splitlines():
        cleaned = line.strip()
        if not cleaned:
            continue
        cap, _, name = cleaned.partition(" ")
        if not cap.isdigit() or not name.strip():
            raise RegistrationError(f"Could not read roster line '{cleaned}'. Use 'cap name'.")
        players.append((int(cap), name.strip()))
    return players


def _team_lookup(teams: list[Team]) -> dict[int, Team]:
    return {team.id: team for team in teams}


@router.get("/", response_class=HTMLResponse, name="index")
async def index(request: Request, session: Session = Depends(get_session)):
    repo = TournamentRepository.for_active(session)
    matches = repo.matches()
    scorers, total_goals = repo.top_scorers()
    context = {
        "standings": repo.standings(),
        "pool_complete": {pool: pool_stage_complete(matches, pool) for pool in POOL_LABELS},
        "summary": tournament_summary(repo.played_matches(STAGE_POOL)),
        "scorers": scorers,
        "total_goals": total_goals,
    }
    return _render(request, "index.html", context)


@router.get("/rules", response_class=HTMLResponse, name="rules")
async def rules_page(request: Request):
    context = {
        "min_squad": config.MIN_SQUAD_SIZE,
        "max_squad": config.MAX_SQUAD_SIZE,
        "min_cap": config.MIN_CAP_NUMBER,
        "max_cap": config.MAX_CAP_NUMBER,
    }
    return _render(request, "rules.html", context)


@router.get("/admin/login", response_class=HTMLResponse, name="admin_login")
async def admin_login(request: Request, next: str | None = None):
    next_raw = _sanitize_next(next or request.query_params.get("next"))
    if is_admin(request):
        return RedirectResponse(_absolute_next(request, next_raw), status_code=303)
    context = {"next": next_raw, "error": request.query_params.get("error")}
    return _render(request, "admin_login.html", context)


@router.post("/admin/login", response_class=HTMLResponse, name="admin_login_submit")
async def admin_login_submit(
    request: Request,
    username: str = Form(..., max_length=MAX_TEXT_LENGTH),
    password: str = Form(..., max_length=MAX_TEXT_LENGTH),
    next: str = Form(default="/", max_length=MAX_TEXT_LENGTH),
):
    next_raw = _sanitize_next(next)
    if credentials_match(username, password):
        response = RedirectResponse(_absolute_next(request, next_raw), status_code=303)
        response.set_cookie(
            key=config.SESSION_COOKIE_NAME,
            value=encode_session(),
            max_age=config.SESSION_MAX_AGE,
            httponly=True,
            secure=config.ADMIN_COOKIE_SECURE,
            samesite="lax",
            path="/",
        )
        return response

    logger.warning("Rejected admin login for %s", username)
    context = {"next": next_raw, "error": "Invalid username or password."}
    return _render(request, "admin_login.html", context, status_code=401)


@router.post("/admin/logout", response_class=HTMLResponse, name="admin_logout")
async def admin_logout(
    request: Request,
    next: str | None = Form(default=None, max_length=MAX_TEXT_LENGTH),
):
    next_raw = _sanitize_next(next or request.query_params.get("next"))
    response = RedirectResponse(_absolute_next(request, next_raw), status_code=303)
    response.delete_cookie(config.SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/teams", response_class=HTMLResponse, name="team_directory")
async def team_directory(request: Request, session: Session = Depends(get_session)):
    repo = TournamentRepository.for_active(session)
    context = _team_context(repo)
    _apply_message(context, TEAM_MESSAGES, request.query_params.get("team"))
    return _render(request, "teams.html", context)


@router.post("/teams", response_class=HTMLResponse, name="create_team")
async def create_team(
    request: Request,
    session: Session = Depends(get_session),
    school_name: str = Form(default="", max_length=MAX_TEXT_LENGTH),
    coach_name: str = Form(default="", max_length=MAX_TEXT_LENGTH),
    manager_name: str = Form(default="", max_length=MAX_TEXT_LENGTH),
    pool: str = Form(default="", max_length=1),
    roster: str = Form(default="", max_length=MAX_ROSTER_LENGTH),
):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    try:
        players = _parse_roster(roster)
        repo.register_team(school_name, coach_name, manager_name, players, pool=pool or None)
    except TournamentError as exc:
        session.rollback()
        context = _team_context(
            repo,
            form={
                "school_name": school_name,
                "coach_name": coach_name,
                "manager_name": manager_name,
                "pool": pool,
                "roster": roster,
            },
        )
        context.update({"message": str(exc), "message_error": True})
        return _render(request, "teams.html", context, status_code=400)

    return _redirect(request, "team_directory", "team", "created")


@router.get("/teams/{team_id}", response_class=HTMLResponse, name="team_detail")
async def team_detail(request: Request, team_id: int, session: Session = Depends(get_session)):
    repo = TournamentRepository.for_active(session)
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    played = [
        entry
        for entry in repo.played_matches()
        if team.id in (entry.match.home_team_id, entry.match.away_team_id)
    ]
    standing = next(
        (row for row in repo.standings().get(team.pool or "", []) if row.team_id == team.id),
        None,
    )
    context = {
        "team": team,
        "players": repo.players(team.id),
        "played": played,
        "standing": standing,
        "teams": _team_lookup(repo.teams()),
        "pools": POOL_LABELS,
    }
    _apply_message(context, TEAM_MESSAGES, request.query_params.get("team"))
    return _render(request, "team_detail.html", context)


@router.post("/teams/{team_id}/update", response_class=HTMLResponse, name="update_team")
async def update_team(
    request: Request,
    team_id: int,
    session: Session = Depends(get_session),
    school_name: str = Form(..., max_length=MAX_TEXT_LENGTH),
    coach_name: str = Form(..., max_length=MAX_TEXT_LENGTH),
    manager_name: str = Form(..., max_length=MAX_TEXT_LENGTH),
    pool: str = Form(default="", max_length=1),
):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    try:
        repo.update_team(
            team,
            school_name=school_name,
            coach_name=coach_name,
            manager_name=manager_name,
            pool=pool or None,
            clear_pool=not pool,
        )
    except PoolsLockedError:
        session.rollback()
        return _redirect(request, "team_detail", "team", "locked", team_id=team_id)
    except TournamentError as exc:
        session.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _redirect(request, "team_detail", "team", "updated", team_id=team_id)


@router.post("/teams/{team_id}/delete", response_class=HTMLResponse, name="delete_team")
async def delete_team(request: Request, team_id: int, session: Session = Depends(get_session)):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    repo.delete_team(team)
    return _redirect(request, "team_directory", "team", "deleted")


@router.post("/teams/{team_id}/logo", response_class=HTMLResponse, name="upload_logo")
async def upload_logo(
    request: Request,
    team_id: int,
    session: Session = Depends(get_session),
    logo: UploadFile = File(...),
):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    team = repo.team(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    try:
        identifier = save_logo(
            logo.file,
            team_id=team.id,
            original_name=logo.filename or "",
            content_type=logo.content_type or "application/octet-stream",
        )
    except ValueError:
        return _redirect(request, "team_detail", "team", "logo-invalid", team_id=team_id)
    repo.set_logo(team, identifier)
    return _redirect(request, "team_detail", "team", "logo", team_id=team_id)


@router.post("/pools/allocate", response_class=HTMLResponse, name="allocate_pools")
async def allocate_pools_route(request: Request, session: Session = Depends(get_session)):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    try:
        repo.allocate_pools()
    except TournamentError:
        session.rollback()
        return _redirect(request, "team_directory", "team", "locked")
    return _redirect(request, "team_directory", "team", "allocated")


@router.get("/schedule", response_class=HTMLResponse, name="schedule")
async def schedule_page(request: Request, session: Session = Depends(get_session)):
    repo = TournamentRepository.for_active(session)
    context = _schedule_context(repo, request.query_params.get("day"), request.query_params.get("stage"))
    _apply_message(context, SCHEDULE_MESSAGES, request.query_params.get("schedule"))
    return _render(request, "schedule.html", context)


@router.post("/fixtures/generate", response_class=HTMLResponse, name="generate_fixtures")
async def generate_fixtures(request: Request, session: Session = Depends(get_session)):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    try:
        repo.generate_pool_fixtures()
    except TournamentError as exc:
        session.rollback()
        state = "locked" if isinstance(exc, PoolsLockedError) else "needs-pools"
        return _redirect(request, "schedule", "schedule", state)
    return _redirect(request, "schedule", "schedule", "generated")


@router.post("/matches/{match_id}/score", response_class=HTMLResponse, name="record_score")
async def record_score(
    request: Request,
    match_id: int,
    session: Session = Depends(get_session),
    home_score: int = Form(...),
    away_score: int = Form(...),
    home_penalties: str = Form(default=""),
    away_penalties: str = Form(default=""),
):
    if not is_admin(request):
        return _admin_redirect(request)
    repo = TournamentRepository.for_active(session)
    match = repo.match(match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")

    home_pens = int(home_penalties) if home_penalties.strip().isdigit() else None
    away_pens = int(away_penalties) if away_penalties.strip().isdigit() else None
    try:
        repo.record_result(
            match,
            home_score,
            away_score,
            home_penalties=home_pens,
            away_penalties=away_pens,
        )
    except TournamentError as exc:
        session.rollback()
        return _redirect(request, "schedule", "schedule", _result_flag(exc))
    return _redirect(request, "schedule", "schedule", "updated")


@router.get("/bracket", response_class=HTMLResponse, name="bracket")
async def bracket_page(request: Request, session: Session = Depends(get_session)):
    repo = TournamentRepository.for_active(session)
    context = _bracket_context(repo)
    _apply_message(context, BRACKET_MESSAGES, request.query_params.get("bracket"))
    return _render(request, "bracket.html", context)


@router.post("/bracket/{stage}/next", response_class=HTMLResponse, name="generate_round")
async def generate_round(request: Request, stage: str, session: Session = Depends(get_session)):
    if not is_admin(request):
        return _admin_redirect(request)
    if stage not in KNOCKOUT_STAGES:
        raise HTTPException(status_code=404, detail="Unknown stage")
    repo = TournamentRepository.for_active(session)
    matches = repo.matches()
    standings = repo.standings()
    if not bracket_ready(standings, stage) or (stage != "playoff" and not pool_stage_complete(matches)):
        return _redirect(request, "bracket", "bracket", "not-ready")
    created = repo.generate_knockout_round(stage)
    return _redirect(request, "bracket", "bracket", "generated" if created else "up-to-date")


def _team_context(repo: TournamentRepository, form: dict[str, str] | None = None) -> dict[str, object]:
    teams = repo.teams()
    by_pool: dict[str, list[Team]] = defaultdict(list)
    for team in teams:
        by_pool[team.pool or "Unallocated"].append(team)
    return {
        "teams": teams,
        "teams_by_pool": dict(sorted(by_pool.items())),
        "player_counts": _player_counts(repo),
        "pools": POOL_LABELS,
        "form": form or {},
        "min_squad": config.MIN_SQUAD_SIZE,
        "max_squad": config.MAX_SQUAD_SIZE,
    }


def _player_counts(repo: TournamentRepository) -> dict[int, int]:
    counts: dict[int, int] = defaultdict(int)
    for player in repo.players():
        counts[player.team_id] += 1
    return counts


def _schedule_context(repo: TournamentRepository, day: str | None, stage: str | None) -> dict[str, object]:
    day_filter = int(day) if day and day.isdigit() else None
    matches = repo.matches(stage=stage or None, day=day_filter)
    results = repo.results(match.id for match in matches)
    by_day: dict[int, list[Match]] = defaultdict(list)
    for match in matches:
        by_day[match.day].append(match)
    return {
        "matches_by_day": dict(sorted(by_day.items())),
        "results": results,
        "teams": _team_lookup(repo.teams()),
        "day": day_filter,
        "stage": stage,
        "has_pool_matches": any(match.stage == STAGE_POOL for match in matches),
    }


def _bracket_context(repo: TournamentRepository) -> dict[str, object]:
    matches = repo.matches()
    results = repo.results(match.id for match in matches)
    standings = repo.standings()
    brackets = []
    for stage in KNOCKOUT_STAGES:
        stage_matches = [match for match in matches if match.stage == stage]
        brackets.append(
            {
                "stage": stage,
                "title": STAGE_TITLES[stage],
                "rounds": group_bracket(stage_matches, stage) if stage_matches else [],
                "round_names": ROUND_ORDER[stage],
                "ready": bracket_ready(standings, stage),
            }
        )
    return {
        "brackets": brackets,
        "results": results,
        "teams": _team_lookup(repo.teams()),
        "pool_stage_complete": pool_stage_complete(matches),
    }

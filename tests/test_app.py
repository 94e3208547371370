import pytest
from sqlalchemy import inspect
from sqlmodel import Session, select

from waugh_cup import config
from waugh_cup.database import Team, Tournament, init_db
from waugh_cup.repository import (
    BracketLockedError,
    GoalTallyError,
    ResultError,
    ShootoutRequiredError,
)
from waugh_cup.routes import _result_flag


def _roster(size: int = 10) -> str:
    return "\n".join(f"{cap} Player {cap}" for cap in range(1, size + 1))


def _team_payload(name: str, pool: str = "A") -> dict:
    return {
        "school_name": name,
        "coach_name": "Coach Smith",
        "manager_name": "Manager Jones",
        "pool": pool,
        "players": [{"cap_number": cap, "name": f"Player {cap}"} for cap in range(1, 11)],
    }


def test_tournament_seeded(app_db):
    with Session(app_db) as session:
        tournaments = session.exec(select(Tournament)).all()
    assert [tournament.slug for tournament in tournaments] == [config.TOURNAMENT_SLUG]


def test_init_db_is_repeatable(app_db):
    init_db()

    inspector = inspect(app_db)
    team_columns = {column["name"] for column in inspector.get_columns("team")}
    result_columns = {column["name"] for column in inspector.get_columns("matchresult")}
    assert "logo" in team_columns
    assert {"home_penalties", "away_penalties"} <= result_columns
    with Session(app_db) as session:
        assert len(session.exec(select(Tournament)).all()) == 1


@pytest.mark.parametrize(
    "error, flag",
    [
        (ShootoutRequiredError("level"), "needs-winner"),
        (GoalTallyError("tally"), "goal-mismatch"),
        (BracketLockedError("drawn"), "bracket-locked"),
        (ResultError("negative"), "invalid-score"),
    ],
)
def test_result_errors_map_to_schedule_flags(error, flag):
    assert _result_flag(error) == flag


@pytest.mark.asyncio
async def test_index_returns_200(async_client):
    response = await async_client.get("/")
    assert response.status_code == 200
    assert config.TOURNAMENT_NAME in response.text
    assert "Pool A" in response.text


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/teams", "/schedule", "/bracket", "/rules", "/admin/login"])
async def test_public_pages_render(async_client, path):
    response = await async_client.get(path)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_admin_forms_redirect_to_login(async_client):
    response = await async_client.post("/teams", data={"school_name": "Grey High"})
    assert response.status_code == 303
    assert "/admin/login?next=" in response.headers["location"]


@pytest.mark.asyncio
async def test_bad_login_is_rejected(async_client):
    response = await async_client.post("/admin/login", data={"username": "admin", "password": "nope"})
    assert response.status_code == 401
    assert "Invalid username or password." in response.text


@pytest.mark.asyncio
async def test_admin_registers_team_from_form(admin_client):
    response = await admin_client.post(
        "/teams",
        data={
            "school_name": "Grey High",
            "coach_name": "Coach Smith",
            "manager_name": "Manager Jones",
            "pool": "B",
            "roster": _roster(),
        },
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("/teams?team=created")

    page = await admin_client.get("/teams?team=created")
    assert "Grey High" in page.text
    assert "Team registered." in page.text


@pytest.mark.asyncio
async def test_short_roster_rerenders_form(admin_client):
    response = await admin_client.post(
        "/teams",
        data={
            "school_name": "Grey High",
            "coach_name": "Coach Smith",
            "manager_name": "Manager Jones",
            "roster": _roster(5),
        },
    )
    assert response.status_code == 400
    assert f"at least {config.MIN_SQUAD_SIZE} players" in response.text


@pytest.mark.asyncio
async def test_api_writes_require_admin(async_client):
    response = await async_client.post("/api/teams", json=_team_payload("Grey High"))
    assert response.status_code == 401

    response = await async_client.post("/api/bracket/cup/next")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_api_team_lifecycle(admin_client):
    created = await admin_client.post("/api/teams", json=_team_payload("Grey High"))
    assert created.status_code == 201
    team = created.json()
    assert len(team["players"]) == 10

    duplicate = await admin_client.post("/api/teams", json=_team_payload("Grey High"))
    assert duplicate.status_code == 409

    invalid = await admin_client.post("/api/teams", json=_team_payload("G"))
    assert invalid.status_code == 400

    missing = await admin_client.get("/api/teams/9999")
    assert missing.status_code == 404

    updated = await admin_client.put(f"/api/teams/{team['id']}", json={"coach_name": "Coach Naidoo"})
    assert updated.json()["coach_name"] == "Coach Naidoo"

    deleted = await admin_client.delete(f"/api/teams/{team['id']}")
    assert deleted.status_code == 200
    listing = await admin_client.get("/api/teams")
    assert listing.json() == []


@pytest.mark.asyncio
async def test_api_results_update_standings(admin_client):
    home = (await admin_client.post("/api/teams", json=_team_payload("Grey High"))).json()
    away = (await admin_client.post("/api/teams", json=_team_payload("Kearsney"))).json()

    match = await admin_client.post(
        "/api/matches",
        json={"home_team_id": home["id"], "away_team_id": away["id"], "stage": "pool", "pool": "A"},
    )
    assert match.status_code == 201
    match_id = match.json()["id"]

    scorer = home["players"][0]["id"]
    result = await admin_client.post(
        "/api/results",
        json={
            "match_id": match_id,
            "home_score": 5,
            "away_score": 3,
            "player_stats": [{"player_id": scorer, "goals": 5}],
        },
    )
    assert result.status_code == 201

    standings = (await admin_client.get("/api/standings", params={"pool": "A"})).json()
    rows = {row["team_id"]: row for row in standings["standings"]}
    assert rows[home["id"]]["points"] == 3
    assert rows[home["id"]]["goals_for"] == 5
    assert rows[away["id"]]["lost"] == 1

    overview = (await admin_client.get("/api/standings/all")).json()
    assert overview["team_counts"]["A"] == 2
    assert overview["total_teams"] == 2
    assert overview["completion_status"]["A"] is True
    assert overview["completion_status"]["B"] is False

    scorers = (await admin_client.get("/api/top-scorers")).json()
    assert scorers["total_goals"] == 5
    assert scorers["scorers"][0]["player_id"] == scorer

    stats = await admin_client.get("/api/player-stats", params={"matchResultId": result.json()["id"]})
    assert [row["goals"] for row in stats.json()] == [5]


@pytest.mark.asyncio
async def test_api_rejects_mismatched_player_goals(admin_client):
    home = (await admin_client.post("/api/teams", json=_team_payload("Grey High"))).json()
    away = (await admin_client.post("/api/teams", json=_team_payload("Kearsney"))).json()
    match_id = (
        await admin_client.post(
            "/api/matches",
            json={"home_team_id": home["id"], "away_team_id": away["id"], "stage": "pool"},
        )
    ).json()["id"]

    response = await admin_client.post(
        "/api/results",
        json={
            "match_id": match_id,
            "home_score": 2,
            "away_score": 0,
            "player_stats": [{"player_id": home["players"][0]["id"], "goals": 1}],
        },
    )
    assert response.status_code == 400

    missing = await admin_client.get(f"/api/results/{match_id}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_api_bracket_not_ready(admin_client):
    response = await admin_client.post("/api/bracket/cup/next")
    assert response.status_code == 200
    assert response.json() == {"created": []}

    bracket = (await admin_client.get("/api/bracket", params={"stage": "cup"})).json()
    assert bracket["cup"]["ready"] is False

    unknown = await admin_client.get("/api/bracket", params={"stage": "bowl"})
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_schedule_page_lists_generated_fixtures(admin_client, app_db):
    for name in ("Grey High", "Kearsney", "Hilton"):
        await admin_client.post("/api/teams", json=_team_payload(name, pool="C"))

    response = await admin_client.post("/fixtures/generate")
    assert response.status_code == 303
    assert response.headers["location"].endswith("/schedule?schedule=generated")

    page = await admin_client.get("/schedule?schedule=generated")
    assert "Pool fixtures generated." in page.text
    assert page.text.count("Pool C") >= 3

    with Session(app_db) as session:
        teams = session.exec(select(Team)).all()
    assert {team.pool for team in teams} == {"C"}


@pytest.mark.asyncio
async def test_score_form_reports_why_a_result_was_refused(admin_client):
    home = (await admin_client.post("/api/teams", json=_team_payload("Grey High"))).json()
    away = (await admin_client.post("/api/teams", json=_team_payload("Kearsney"))).json()
    final = await admin_client.post(
        "/api/matches",
        json={"home_team_id": home["id"], "away_team_id": away["id"], "stage": "cup", "round": "final"},
    )
    match_id = final.json()["id"]

    level = await admin_client.post(f"/matches/{match_id}/score", data={"home_score": 6, "away_score": 6})
    assert level.status_code == 303
    assert level.headers["location"].endswith("/schedule?schedule=needs-winner")

    negative = await admin_client.post(f"/matches/{match_id}/score", data={"home_score": -1, "away_score": 2})
    assert negative.headers["location"].endswith("/schedule?schedule=invalid-score")

    shootout = await admin_client.post(
        f"/matches/{match_id}/score",
        data={"home_score": 6, "away_score": 6, "home_penalties": "4", "away_penalties": "2"},
    )
    assert shootout.headers["location"].endswith("/schedule?schedule=updated")


@pytest.mark.asyncio
async def test_team_pool_change_after_results_is_refused(admin_client):
    home = (await admin_client.post("/api/teams", json=_team_payload("Grey High"))).json()
    away = (await admin_client.post("/api/teams", json=_team_payload("Kearsney"))).json()
    match_id = (
        await admin_client.post(
            "/api/matches",
            json={"home_team_id": home["id"], "away_team_id": away["id"], "stage": "pool"},
        )
    ).json()["id"]
    await admin_client.post("/api/results", json={"match_id": match_id, "home_score": 4, "away_score": 2})

    response = await admin_client.post(
        f"/teams/{home['id']}/update",
        data={
            "school_name": "Grey High",
            "coach_name": "Coach Smith",
            "manager_name": "Manager Jones",
            "pool": "B",
        },
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith(f"/teams/{home['id']}?team=locked")

    moved = await admin_client.put(f"/api/teams/{away['id']}", json={"pool": "C"})
    assert moved.status_code == 409

    standings = (await admin_client.get("/api/standings", params={"pool": "A"})).json()
    assert len(standings["standings"]) == 2

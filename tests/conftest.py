import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
import httpx
from sqlmodel import SQLModel, Session, create_engine

TEST_DB = Path(tempfile.gettempdir()) / "waugh_cup_test_app.sqlite3"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["ADMIN_COOKIE_SECURE"] = "false"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "test-password"

from waugh_cup import app  # noqa: E402
from waugh_cup.database import Tournament, engine, init_db  # noqa: E402
from waugh_cup.repository import TournamentRepository  # noqa: E402


@pytest.fixture
def app_db():
    if TEST_DB.exists():
        TEST_DB.unlink()
    init_db()
    yield engine
    engine.dispose()
    if TEST_DB.exists():
        TEST_DB.unlink()


@pytest_asyncio.fixture
async def async_client(app_db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture
async def admin_client(async_client):
    response = await async_client.post(
        "/admin/login",
        data={"username": "admin", "password": "test-password", "next": "/"},
    )
    assert response.status_code == 303
    yield async_client


@pytest.fixture
def session():
    memory_engine = create_engine("sqlite://")
    SQLModel.metadata.create_all(memory_engine)
    with Session(memory_engine) as db_session:
        yield db_session


@pytest.fixture
def repo(session):
    tournament = Tournament(name="Test Cup", slug="test-cup")
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return TournamentRepository(session, tournament)

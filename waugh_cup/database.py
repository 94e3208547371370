"""Database models and helpers for teams, fixtures and results."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

from . import config

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"
UPLOAD_DIR = STATIC_DIR / "uploads"

POOL_LABELS = ("A", "B", "C", "D")

STAGE_POOL = "pool"
STAGE_CUP = "cup"
STAGE_PLATE = "plate"
STAGE_SHIELD = "shield"
STAGE_PLAYOFF = "playoff"
STAGE_FESTIVAL = "festival"
STAGES = (STAGE_POOL, STAGE_CUP, STAGE_PLATE, STAGE_SHIELD, STAGE_PLAYOFF, STAGE_FESTIVAL)
KNOCKOUT_STAGES = (STAGE_CUP, STAGE_PLATE, STAGE_SHIELD, STAGE_PLAYOFF, STAGE_FESTIVAL)

logger = logging.getLogger(__name__)


def _build_engine() -> Engine:
    url = config.database_url()
    engine_kwargs = {}
    if url.startswith("sqlite"):
        # SQLite needs check_same_thread disabled for FastAPI concurrency,
        # but passing this flag to other drivers (e.g., psycopg2) raises errors.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **engine_kwargs)


engine = _build_engine()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tournament(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    slug: str = Field(nullable=False, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Team(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("tournament_id", "school_name"),)

    id: int | None = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", nullable=False, index=True)
    school_name: str = Field(index=True, min_length=2, max_length=50, nullable=False)
    coach_name: str = Field(default="", max_length=30)
    manager_name: str = Field(default="", max_length=30)
    pool: str | None = Field(default=None, max_length=1, index=True)
    logo: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Player(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("team_id", "cap_number"),)

    id: int | None = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="team.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=30)
    cap_number: int = Field(nullable=False, ge=1, le=15)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Match(SQLModel, table=True):
    # One match per bracket slot.
    __table_args__ = (UniqueConstraint("tournament_id", "stage", "round", "bracket_position"),)

    id: int | None = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", nullable=False, index=True)
    home_team_id: int = Field(foreign_key="team.id", nullable=False)
    away_team_id: int = Field(foreign_key="team.id", nullable=False)
    stage: str = Field(default=STAGE_POOL, nullable=False, index=True)
    pool: str | None = Field(default=None, max_length=1, index=True)
    round: str | None = Field(default=None, max_length=50)
    bracket_position: int | None = Field(default=None)
    day: int = Field(default=1, nullable=False)
    time_slot: str = Field(default="08:00", nullable=False, max_length=10)
    arena: int = Field(default=1, nullable=False)
    completed: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class MatchResult(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", nullable=False, unique=True, index=True)
    home_score: int = Field(default=0, nullable=False)
    away_score: int = Field(default=0, nullable=False)
    home_penalties: int | None = Field(default=None)
    away_penalties: int | None = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class PlayerStat(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("match_result_id", "player_id"),)

    id: int | None = Field(default=None, primary_key=True)
    match_result_id: int = Field(foreign_key="matchresult.id", nullable=False, index=True)
    player_id: int = Field(foreign_key="player.id", nullable=False, index=True)
    cap_number: int = Field(nullable=False)
    goals: int = Field(default=0, nullable=False)
    kick_outs: int = Field(default=0, nullable=False)
    yellow_cards: int = Field(default=0, nullable=False)
    red_cards: int = Field(default=0, nullable=False)


def init_db() -> None:
    """Create tables if they don't already exist."""
    SQLModel.metadata.create_all(engine)
    _ensure_upload_dir()
    _ensure_tournament()


def get_session() -> Iterator[Session]:
    """Yield a SQLModel session for dependency injection."""
    with Session(engine) as session:
        yield session


def get_active_tournament(session: Session) -> Tournament:
    tournament = session.exec(select(Tournament).where(Tournament.slug == config.TOURNAMENT_SLUG)).first()
    if tournament:
        return tournament
    raise RuntimeError("Active tournament not found. Verify TOURNAMENT_SLUG and database state.")


def _ensure_upload_dir() -> None:
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


def _ensure_tournament() -> Tournament:
    with Session(engine, expire_on_commit=False) as session:
        tournament = session.exec(select(Tournament).where(Tournament.slug == config.TOURNAMENT_SLUG)).first()
        if not tournament:
            tournament = Tournament(name=config.TOURNAMENT_NAME, slug=config.TOURNAMENT_SLUG)
            session.add(tournament)
            session.commit()
            session.refresh(tournament)
            logger.info("Seeded tournament %s", tournament.slug)
        session.expunge(tournament)
    return tournament


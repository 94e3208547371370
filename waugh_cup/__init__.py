import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from . import config
from .api import router as api_router
from .database import STATIC_DIR, init_db
from .routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    logging.basicConfig(level=config.LOG_LEVEL)
    init_db()
    logger.info("Serving %s", config.TOURNAMENT_NAME)
    yield


def create_app() -> FastAPI:
    """Application factory for the tournament scoreboard site."""
    app = FastAPI(title=config.TOURNAMENT_NAME, lifespan=lifespan)
    app.include_router(router)
    app.include_router(api_router)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    return app


app = create_app()

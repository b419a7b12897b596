"""
app/main.py
FastAPI entry point for the betting challenge service.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

import database.models as _models  # noqa: F401, registers tables with SQLModel metadata
from app.routes.bets import router as bets_router
from app.routes.challenges import router as challenges_router
from app.routes.rulesets import router as rulesets_router
from app.routes.settlements import router as settlements_router
from core.config import get_settings
from core.constants import SYSTEM_VERSION
from core.exceptions import AppError, ValidationError
from database.connection import get_session, init_db

logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Startup: create DB tables."""
    await init_db()
    logger.info("Database initialized: tables created")
    yield


app = FastAPI(
    title="Betting Challenge API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(rulesets_router)
app.include_router(challenges_router)
app.include_router(bets_router)
app.include_router(settlements_router)


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    """Translate service errors into {"error", "status_code"[, "details"]}."""
    if exc.status_code >= 500:
        logger.error("Unhandled application error: %s", exc.message)
    content: dict = {"error": exc.message, "status_code": exc.status_code}
    if isinstance(exc, ValidationError) and exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)) -> dict:
    """Prove the API and database are alive."""
    try:
        await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "db": "connected",
            "version": SYSTEM_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "db": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

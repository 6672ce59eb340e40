"""
Main entry point for the FastAPI application.
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from podcore.config import settings
from podcore.logging_config import setup_logging
from podcore.routes import episodes, podcasts, tasks, transcription
from podcore.services.errors import EpisodeCoreError
from podcore.utils.db_async import DATABASE_URL, describe_database_url, dispose_engine, init_db

logger = logging.getLogger(__name__)

setup_logging(level=settings.log_level, access_log=settings.access_log)


def _should_create_tables() -> bool:
    # Managed deployments run alembic instead
    if os.getenv("FLY_APP_NAME"):
        return False
    return settings.is_dev and settings.auto_init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _should_create_tables():
        logger.info(f"Creating podcore tables on {describe_database_url(DATABASE_URL)}")
        try:
            await init_db()
        except Exception:
            logger.exception("init_db failed")
            raise
    else:
        logger.info("Schema managed by alembic; skipping init_db()")

    yield

    try:
        await dispose_engine()
    except Exception:
        logger.exception("Failed to dispose DB engine")


app = FastAPI(title="podcore", lifespan=lifespan)


@app.exception_handler(EpisodeCoreError)
async def episode_core_error_handler(request: Request, exc: EpisodeCoreError) -> JSONResponse:
    """Distinguishable codes so callers can tell "busy" from "not ready"."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


app.include_router(episodes.router)
app.include_router(transcription.queue_router)
app.include_router(transcription.router)
app.include_router(podcasts.router)
app.include_router(tasks.router)


@app.get("/health")
async def health_check():
    """Health Check Endpoint"""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)

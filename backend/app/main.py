"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring and the
    background scheduler that drives live score sync, game status flips
    and shooters refresh.

Dependencies:
    - app.database
    - app.workers.live_sync
    - app.workers.game_status
    - app.workers.shooters
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, DuplicateKeyError, OperationFailure

from app.config import settings
import app.database as _db
from app.database import connect_db, close_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.routers import admin, bets, competitions, games, stats, users
from app.workers.game_status import update_game_statuses
from app.workers.live_sync import close_providers, run_all_live_syncs
from app.workers.shooters import refresh_all_shooters

logger = logging.getLogger("pronofoot")
scheduler = AsyncIOScheduler()


def _register_jobs() -> None:
    scheduler.add_job(
        run_all_live_syncs,
        "interval",
        seconds=settings.LIVE_SYNC_INTERVAL_SECONDS,
        id="live_sync",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        update_game_statuses,
        "interval",
        seconds=settings.GAME_STATUS_INTERVAL_SECONDS,
        id="game_status",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        refresh_all_shooters,
        "interval",
        minutes=settings.SHOOTERS_REFRESH_MINUTES,
        id="shooters",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await connect_db()

    _register_jobs()
    scheduler.start()
    if settings.LIVE_SYNC_ENABLED:
        logger.info("Live sync every %ds", settings.LIVE_SYNC_INTERVAL_SECONDS)
    else:
        logger.info("Live sync disabled via config")
    logger.info("Scheduler started with jobs: %s", ", ".join(job.id for job in scheduler.get_jobs()))

    yield

    scheduler.shutdown(wait=False)
    await close_providers()
    await close_db()


app = FastAPI(
    title="Pronofoot",
    description="Score prediction game between friends",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type"],
)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(bets.router)
app.include_router(competitions.router)
app.include_router(games.router)
app.include_router(stats.router)
app.include_router(users.router)
app.include_router(admin.router)


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Malformed id."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """422 with one {field, message} entry per failing body/query field."""
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({"field": ".".join(loc) or "request", "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": fields})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Already exists."})


@app.exception_handler(ConnectionFailure)
async def db_unavailable_handler(request: Request, exc: ConnectionFailure):
    # ServerSelectionTimeoutError is a ConnectionFailure too
    logger.error("MongoDB unreachable during %s %s: %s", request.method, request.url.path, type(exc).__name__)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable, retry shortly."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("MongoDB operation failed during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error during %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


@app.get("/health")
async def health():
    """DB ping, scheduler state and whether live sync is switched on."""
    try:
        ping = await _db.db.command("ping")
        mongo_up = ping.get("ok") == 1.0
    except Exception:
        mongo_up = False

    return {
        "status": "ok" if mongo_up else "degraded",
        "mongo": "up" if mongo_up else "down",
        "scheduler": "running" if scheduler.running else "stopped",
        "live_sync_enabled": settings.LIVE_SYNC_ENABLED,
    }

"""FastAPI server for SupportQ"""

from __future__ import annotations

import os
import sqlite3
import threading
import time
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from supportq.api.routes.agent import router as agent_router
from supportq.api.routes.cron import router as cron_router
from supportq.api.routes.dev import router as dev_router
from supportq.api.routes.gmail import router as gmail_router
from supportq.api.routes.health import router as health_router
from supportq.api.routes.proposals import router as proposals_router
from supportq.api.routes.settings import router as settings_router
from supportq.api.routes.shopify import router as shopify_router
from supportq.config import APP_VERSION, DB_WAL_CHECKPOINT_INTERVAL
from supportq.gmail.scheduler import PollScheduler
from supportq.infrastructure import settings
from supportq.infrastructure.database import checkpoint_wal, init_database, validate_schema
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event
from supportq.utils.redaction import redact

load_dotenv()

logger = get_logger(__name__)

app = FastAPI(title="SupportQ API", version=APP_VERSION)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Return field names only, never the validation rules.

    Side Effects:
        - Logs the full errors (URL redacted)
        - Increments api.validation_errors
    """
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


ALLOWED_ORIGINS = [settings.APP_BASE_URL]

if settings.ENV == "development":
    ALLOWED_ORIGINS.extend(
        [
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000",
        ]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Cron-Secret"],
)

app.include_router(health_router)
app.include_router(settings_router)
app.include_router(gmail_router)
app.include_router(shopify_router)
app.include_router(proposals_router)
app.include_router(agent_router)
app.include_router(cron_router)
app.include_router(dev_router)

_background_lock = threading.Lock()
_checkpoint_thread: threading.Thread | None = None
_scheduler: PollScheduler | None = None


def _wal_checkpoint_loop() -> None:
    """
    Periodically checkpoint the WAL file

    Side Effects:
        - Calls checkpoint_wal() which writes to supportq.db
        - Runs until process termination
    """
    while True:
        time.sleep(DB_WAL_CHECKPOINT_INTERVAL)
        try:
            stats = checkpoint_wal()
            if stats["bytes_freed"] > 1024 * 1024:
                logger.info("WAL checkpoint freed %d MB", stats["bytes_freed"] // (1024 * 1024))
        except Exception as e:
            logger.error("WAL checkpoint failed: %s", e)


def _scheduler_enabled() -> bool:
    return os.getenv("SUPPORTQ_SCHEDULER_ENABLED", "false").lower() in ("true", "1", "yes")


def _start_background_tasks() -> None:
    global _checkpoint_thread, _scheduler

    with _background_lock:
        if _checkpoint_thread is None:
            _checkpoint_thread = threading.Thread(
                target=_wal_checkpoint_loop, name="wal-checkpoint", daemon=True
            )
            _checkpoint_thread.start()
            logger.info(
                "WAL checkpoint background task started (%ds interval)",
                DB_WAL_CHECKPOINT_INTERVAL,
            )

        if _scheduler is None and _scheduler_enabled():
            _scheduler = PollScheduler()
            _scheduler.start()
            logger.info("Gmail poll scheduler started")


@app.on_event("startup")
async def startup() -> None:
    """
    Initialize and validate the database, then start background tasks

    Side Effects:
        - Creates tables if missing
        - May raise RuntimeError (crashes the app) if the schema is broken
        - Starts the WAL checkpoint thread and, if enabled, the poll scheduler
    """
    try:
        init_database()
        validate_schema()
        logger.info("Database schema validation passed")
    except ValueError as e:
        logger.critical("Database schema invalid: %s", e)
        raise RuntimeError(f"Database schema validation failed: {e}") from e
    except sqlite3.OperationalError as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e

    if settings.ENV == "production" and not settings.CRON_SECRET:
        logger.warning("CRON_SECRET is not set; /api/cron/gmail-poll will reject every call")

    _start_background_tasks()
    log_event("api.startup", service="supportq", version=APP_VERSION)


@app.on_event("shutdown")
async def shutdown() -> None:
    if _scheduler is not None:
        _scheduler.stop()


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "SupportQ API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "settings": "/api/settings",
            "gmail_poll": "/api/gmail/poll",
            "proposals": "/api/proposals",
            "agent": "/api/agent/propose",
            "cron": "/api/cron/gmail-poll",
        },
    }

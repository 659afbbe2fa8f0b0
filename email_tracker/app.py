"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from email_tracker.broadcast import BroadcastSink
from email_tracker.config import Settings
from email_tracker.db import DatabaseEngine
from email_tracker.exceptions import PersistenceError
from email_tracker.liveness import LivenessTracker, SessionRegistry
from email_tracker.pipeline import IngestionPipeline
from email_tracker.store import EmailStore

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: build collaborators, start the loops. Shutdown: stop, dispose."""
    settings: Settings = app.state.settings

    db = DatabaseEngine(settings.database)
    if settings.database.create_schema:
        await db.create_schema()
    store = EmailStore(db.session)
    registry = SessionRegistry()
    sink = BroadcastSink(registry)
    tracker = LivenessTracker(registry, sink, settings.liveness)
    pipeline = IngestionPipeline(settings.imap, store, sink, settings.retry)

    app.state.db = db
    app.state.store = store
    app.state.sink = sink
    app.state.tracker = tracker
    app.state.pipeline = pipeline
    logger.info("database_engine_created", url=db.engine.url.render_as_string(hide_password=True))

    tasks = [asyncio.create_task(tracker.run(), name="liveness")]
    if settings.imap.enabled:
        tasks.append(asyncio.create_task(pipeline.run(), name="poller"))
    else:
        logger.warning("poller_disabled")

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await db.close()
    logger.info("shutdown_complete")


async def _persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Server error"})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Email Tracker",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PersistenceError, _persistence_error_handler)

    from email_tracker.routers.emails import router as emails_router
    from email_tracker.routers.health import router as health_router
    from email_tracker.routers.realtime import router as realtime_router

    app.include_router(emails_router)
    app.include_router(realtime_router)
    app.include_router(health_router)

    return app

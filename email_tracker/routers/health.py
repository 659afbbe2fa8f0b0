"""Health and readiness endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from email_tracker.models import HealthStatus

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthStatus)
async def health(request: Request) -> HealthStatus:
    state = request.app.state
    pipeline = state.pipeline
    return HealthStatus(
        poller_state=pipeline.state,
        poller_enabled=state.settings.imap.enabled,
        last_cycle_at=pipeline.last_cycle_at,
        last_cycle=pipeline.last_result,
        emails_ingested=pipeline.emails_ingested,
        pending_records=pipeline.pending_count,
        active_sessions=len(state.tracker.registry),
    )


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    is_ready = getattr(request.app.state, "pipeline", None) is not None
    return JSONResponse(
        content={"ready": is_ready},
        status_code=200 if is_ready else 503,
    )

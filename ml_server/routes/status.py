"""
Liveness and ops routes.

GET /health     - Plain-text liveness check
GET /ops/status - Uptime, open streams, executor revisions
GET /metrics    - Prometheus text exposition
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response

from ml_server.common.metrics import REGISTRY
from ml_server.config import APP_VERSION
from ml_server.routes import get_session
from ml_server.state import SessionState

router = APIRouter()

HEALTH_TEXT = "ML Server is running"


@router.get("/health", response_class=PlainTextResponse)
async def health_check() -> str:
    """Health check endpoint."""
    return HEALTH_TEXT


@router.get("/ops/status")
async def ops_status(session: SessionState = Depends(get_session)) -> dict:
    return {
        "service": session.settings.service_name,
        "version": APP_VERSION,
        "started_at": session.started_at_utc.isoformat(),
        "uptime_seconds": session.uptime_seconds(),
        "active_connections": session.active_connections(),
        "models": session.registry.revisions(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=REGISTRY.render_prometheus_text(), media_type="text/plain; version=0.0.4")

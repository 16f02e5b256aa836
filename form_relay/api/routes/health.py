"""Health check endpoint for monitoring receiver availability."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from form_relay import __version__

router = APIRouter(prefix="/api")


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status: healthy when the durable store is reachable, degraded otherwise
        timestamp: Current server timestamp
        version: Receiver version
        database: connected / disconnected / not_configured
        signing: enabled / open
        mirror: enabled / disabled
    """

    status: str
    timestamp: datetime
    version: str
    database: str = "not_configured"
    signing: str = "open"
    mirror: str = "disabled"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report store connectivity and which optional stages are active.

    The mirror is best-effort, so it never degrades the status.
    """
    state = request.app.state
    database = getattr(state, "database", None)
    pipeline = getattr(state, "pipeline", None)

    if database is None:
        db_status = "not_configured"
    else:
        db_status = "connected" if await database.ping() else "disconnected"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        timestamp=datetime.now(UTC),
        version=__version__,
        database=db_status,
        signing="enabled" if pipeline is not None and pipeline.signing_secret else "open",
        mirror="enabled" if pipeline is not None and pipeline.mirror is not None else "disabled",
    )

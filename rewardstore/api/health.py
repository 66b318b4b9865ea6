"""
Liveness and readiness checks.

/ready reports the database and, when purchases go through a remote
ledger, that ledger too. A store that cannot charge points is not ready.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rewardstore.config import settings
from rewardstore.db.database import get_session, ping
from rewardstore.services.redemption import RedemptionEngine, get_redemption_engine

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """
    Health check result.

    ledger is "local" when the points tables share the database,
    otherwise the remote ledger's reachability.
    """

    status: str
    database: str | None = None
    ledger: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Process is up. No dependency is contacted."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    engine: Annotated[RedemptionEngine, Depends(get_redemption_engine)],
) -> HealthResponse:
    """Database reachable and, in remote mode, ledger reachable; 503 otherwise."""
    database = "connected" if await ping(session) else "disconnected"

    ledger = settings.ledger_mode
    ledger_ok = True
    if engine.remote_ledger is not None:
        ledger_ok = await engine.remote_ledger.health_check()
        ledger = "connected" if ledger_ok else "disconnected"

    if database != "connected" or not ledger_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database=database, ledger=ledger)

    return HealthResponse(status="ready", database=database, ledger=ledger)

"""
Audit and repair endpoints for purchases left pending.

Only the remote-ledger saga can leave a record pending. These endpoints
list such records and settle them.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardstore.db import list_pending, ownership_to_model
from rewardstore.db.database import get_session
from rewardstore.models.cosmetic import OwnershipRecord
from rewardstore.services.redemption import RedemptionEngine, get_redemption_engine

router = APIRouter(prefix="/admin", tags=["admin"])


class PendingPurchase(BaseModel):
    student_id: str
    item_id: str
    category: str


class PendingPurchasesResponse(BaseModel):
    """Purchases whose ledger deduction is not confirmed."""

    pending: list[PendingPurchase] = Field(default_factory=list)
    total: int = 0


class ReconcileResponse(BaseModel):
    """Outcome of a reconciliation pass."""

    settled: list[PendingPurchase] = Field(default_factory=list)
    revoked: list[PendingPurchase] = Field(default_factory=list)
    still_pending: list[PendingPurchase] = Field(default_factory=list)


def _pending(record: OwnershipRecord) -> PendingPurchase:
    return PendingPurchase(
        student_id=record.student_id,
        item_id=record.item_id,
        category=record.category,
    )


@router.get("/pending-purchases", response_model=PendingPurchasesResponse)
async def get_pending_purchases(
    session: Annotated[AsyncSession, Depends(get_session)],
    student_id: Annotated[str | None, Query(description="Limit to one student")] = None,
) -> PendingPurchasesResponse:
    """List purchases stuck between ownership grant and ledger confirmation."""
    records = [ownership_to_model(r) for r in await list_pending(session, student_id)]
    return PendingPurchasesResponse(pending=[_pending(r) for r in records], total=len(records))


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(
    engine: Annotated[RedemptionEngine, Depends(get_redemption_engine)],
    student_id: Annotated[str | None, Query(description="Limit to one student")] = None,
) -> ReconcileResponse:
    """
    Settle pending purchases.

    Safe to run repeatedly: deductions are retried with their original
    idempotency key, so no student is charged twice.
    """
    report = await engine.reconcile_pending(student_id)
    return ReconcileResponse(
        settled=[_pending(r) for r in report.settled],
        revoked=[_pending(r) for r in report.revoked],
        still_pending=[_pending(r) for r in report.still_pending],
    )

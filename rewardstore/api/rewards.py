"""
Reward API endpoints.

Per-student reward state, purchase, equip and unequip.

Engine calls are shielded from request cancellation: a client that
disconnects mid-purchase does not abort the transaction server-side.
Its view catches up on the next state read.
"""

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rewardstore.models.cosmetic import OwnershipRecord, RewardState
from rewardstore.models.failure import ApiResponse, TransientIOError
from rewardstore.services.redemption import RedemptionEngine, get_redemption_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students/{student_id}/rewards", tags=["rewards"])

Engine = Annotated[RedemptionEngine, Depends(get_redemption_engine)]

FAILURE_RESPONSES: dict[int | str, dict[str, object]] = {
    402: {"model": ApiResponse[None], "description": "Insufficient funds"},
    404: {"model": ApiResponse[None], "description": "Unknown student or item"},
    409: {"model": ApiResponse[None], "description": "Rejected by a precondition"},
    503: {"model": ApiResponse[None], "description": "Storage or ledger unavailable"},
}


class OwnedItemResponse(BaseModel):
    """One owned item and its equip flag."""

    item_id: str
    category: str
    equipped: bool = False


class RewardStateResponse(BaseModel):
    """Authoritative reward state. Clients replace their local view with this."""

    student_id: str
    balance: int = Field(..., ge=0)
    owned: list[OwnedItemResponse] = Field(default_factory=list)
    equipped_by_category: dict[str, str] = Field(
        default_factory=dict,
        description="Category -> equipped item id",
    )


class PurchaseResponse(BaseModel):
    """
    Response model for a successful purchase.

    state is null when the purchase committed but the follow-up state
    read failed; the client must reload before trusting its view.
    """

    record: OwnedItemResponse
    balance: int = Field(..., ge=0, description="Balance after paying")
    state: RewardStateResponse | None = None


class EquipResponse(BaseModel):
    """Response model for equip/unequip. state is null as for PurchaseResponse."""

    item_id: str
    equipped: bool
    state: RewardStateResponse | None = None


def record_to_response(record: OwnershipRecord) -> OwnedItemResponse:
    return OwnedItemResponse(
        item_id=record.item_id,
        category=record.category,
        equipped=record.equipped,
    )


def state_to_response(state: RewardState) -> RewardStateResponse:
    return RewardStateResponse(
        student_id=state.student_id,
        balance=state.balance,
        owned=[record_to_response(r) for r in state.owned],
        equipped_by_category=state.equipped_by_category(),
    )


async def state_after_commit(
    engine: RedemptionEngine, student_id: str, action: str
) -> RewardStateResponse | None:
    """
    Read the state after a committed action.

    The action already happened, so a failed read must not turn the
    response into an error.
    """
    try:
        state = await engine.get_state(student_id)
    except TransientIOError as e:
        logger.warning(
            "State read after %s failed: %s",
            action,
            e.detail,
            extra={"student_id": student_id},
        )
        return None
    return state_to_response(state)


@router.get("", response_model=RewardStateResponse, responses=FAILURE_RESPONSES)
async def get_reward_state(student_id: str, engine: Engine) -> RewardStateResponse:
    """Get a student's balance, owned items and equipped items."""
    state = await engine.get_state(student_id)
    return state_to_response(state)


@router.post(
    "/{item_id}/purchase",
    response_model=PurchaseResponse,
    responses=FAILURE_RESPONSES,
)
async def purchase_item(student_id: str, item_id: str, engine: Engine) -> PurchaseResponse:
    """
    Redeem an item.

    Affordability and ownership are re-checked against storage;
    what the client believed its balance to be does not matter.
    On success the item is owned and unequipped.
    """
    receipt = await asyncio.shield(engine.purchase(student_id, item_id))
    return PurchaseResponse(
        record=record_to_response(receipt.record),
        balance=receipt.balance,
        state=await state_after_commit(engine, student_id, "purchase"),
    )


@router.post("/{item_id}/equip", response_model=EquipResponse, responses=FAILURE_RESPONSES)
async def equip_item(student_id: str, item_id: str, engine: Engine) -> EquipResponse:
    """
    Equip an owned item.

    The previously equipped item of the same category is unequipped.
    Items of other categories keep their state.
    """
    await asyncio.shield(engine.equip(student_id, item_id))
    state = await state_after_commit(engine, student_id, "equip")
    return EquipResponse(item_id=item_id, equipped=True, state=state)


@router.post("/{item_id}/unequip", response_model=EquipResponse, responses=FAILURE_RESPONSES)
async def unequip_item(student_id: str, item_id: str, engine: Engine) -> EquipResponse:
    """Unequip an owned item."""
    await asyncio.shield(engine.unequip(student_id, item_id))
    state = await state_after_commit(engine, student_id, "unequip")
    return EquipResponse(item_id=item_id, equipped=False, state=state)

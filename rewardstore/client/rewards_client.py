"""
HTTP client for the reward store.

Wraps the API with the optimistic view-state and a single-flight guard:
every action is predicted locally and dispatched once per item. A reply
with state reconciles the view, a refusal rolls the prediction back, and
an unknown outcome rolls it back and marks the view stale.
"""

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from rewardstore.client.view_state import (
    ClientViewState,
    Delta,
    EquipDelta,
    PurchaseDelta,
    UnequipDelta,
)
from rewardstore.models.cosmetic import CosmeticItem, OwnershipRecord, RewardState
from rewardstore.models.failure import (
    FailureDetail,
    InsufficientFundsError,
    ItemNotFoundError,
    NotOwnedError,
    PartialFailureError,
    TransientIOError,
    error_from_failure,
)
from rewardstore.services.concurrency import SingleFlightGuard

logger = logging.getLogger(__name__)


def state_from_json(data: dict[str, Any]) -> RewardState:
    """Build a RewardState from a RewardStateResponse payload."""
    return RewardState(
        student_id=data["student_id"],
        balance=int(data["balance"]),
        owned=[
            OwnershipRecord(
                student_id=data["student_id"],
                item_id=o["item_id"],
                category=o["category"],
                equipped=bool(o.get("equipped", False)),
            )
            for o in data.get("owned", [])
        ],
    )


class RewardsClient:
    """
    Reward store client for one student.

    Args:
        http: AsyncClient pointed at the API (base_url set).
        student_id: The resolved student identity.
    """

    def __init__(self, http: httpx.AsyncClient, student_id: str) -> None:
        self.http = http
        self.student_id = student_id
        self.view = ClientViewState()
        self.catalog: dict[str, CosmeticItem] = {}
        self._guard = SingleFlightGuard()

    async def load(self) -> ClientViewState:
        """Fetch catalog and state, replacing the local view."""
        catalog = await self._request("GET", "/catalog")
        self.catalog = {
            i["id"]: CosmeticItem(
                id=i["id"],
                name=i["name"],
                category=i["category"],
                cost=int(i["cost"]),
                image_url=i.get("image_url"),
            )
            for i in catalog.get("items", [])
        }
        state = await self._request("GET", f"/students/{self.student_id}/rewards")
        self.view.reconcile(state_from_json(state))
        return self.view

    def can_afford(self, item_id: str) -> bool:
        """Advisory: the server re-checks the balance at purchase time."""
        return self.view.balance >= self._item(item_id).cost

    def shortfall(self, item_id: str) -> int:
        """Points still missing for an item, 0 if affordable."""
        return max(self._item(item_id).cost - self.view.balance, 0)

    def in_flight(self, item_id: str) -> bool:
        return self._guard.in_flight(item_id)

    async def purchase(self, item_id: str, check_balance: bool = True) -> RewardState | None:
        """
        Redeem an item.

        Returns:
            The server's state, or None when the purchase committed but no
            state came back; the view then keeps the prediction and is stale.

        Raises:
            InsufficientFundsError: locally when check_balance and the view
                says the item is unaffordable (nothing dispatched), or from the server.
            OperationInFlightError: an action on this item is already running.
            TransientIOError, PartialFailureError: outcome unknown; the view
                is rolled back and marked stale.
            KnownError subclasses from the server; the view is rolled back.
        """
        item = self._item(item_id)
        if check_balance and not self.can_afford(item_id):
            raise InsufficientFundsError(balance=self.view.balance, cost=item.cost)
        delta = PurchaseDelta(item_id=item.id, category=item.category, cost=item.cost)
        return await self._dispatch(item_id, "purchase", delta)

    async def equip(self, item_id: str) -> RewardState | None:
        """Equip an owned item, replacing the equipped item of its category."""
        category = self._owned_category(item_id)
        return await self._dispatch(item_id, "equip", EquipDelta(item_id, category))

    async def unequip(self, item_id: str) -> RewardState | None:
        category = self._owned_category(item_id)
        return await self._dispatch(item_id, "unequip", UnequipDelta(item_id, category))

    def _item(self, item_id: str) -> CosmeticItem:
        item = self.catalog.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _owned_category(self, item_id: str) -> str:
        category = self.view.owned.get(item_id)
        if category is None:
            raise NotOwnedError(self.student_id, item_id)
        return category

    async def _dispatch(self, item_id: str, action: str, delta: Delta) -> RewardState | None:
        async with self._guard.claim(item_id):
            token = self.view.apply_optimistic(delta)
            try:
                data = await self._request(
                    "POST", f"/students/{self.student_id}/rewards/{item_id}/{action}"
                )
            except (asyncio.CancelledError, TransientIOError, PartialFailureError):
                # The server may have committed; the next load() settles it
                self.view.rollback(token)
                self.view.stale = True
                raise
            except Exception:
                self.view.rollback(token)
                raise

            if data.get("state") is None:
                logger.warning("%s of %s succeeded without a state", action, item_id)
                self.view.confirm(token)
                self.view.stale = True
                return None

        state = state_from_json(data["state"])
        self.view.reconcile(state)
        return state

    async def _request(self, method: str, path: str) -> dict[str, Any]:
        """
        Send a request and decode the body.

        Raises:
            TransientIOError: transport failure or undecodable error body.
            KnownError subclass rebuilt from the failure envelope.
        """
        try:
            response = await self.http.request(method, path)
        except httpx.HTTPError as e:
            logger.warning("Request to %s failed: %s", path, e)
            raise TransientIOError(f"{method} {path} failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            try:
                failure = FailureDetail.model_validate(response.json()["failure"])
            except (ValueError, KeyError, TypeError, ValidationError) as e:
                detail = f"{method} {path} returned HTTP {response.status_code}"
                raise TransientIOError(detail) from e
            raise error_from_failure(failure, response.status_code)

        body: dict[str, Any] = response.json()
        return body

"""
Client View-State: optimistic local projection of a student's rewards.

The projection is a cache, never a source of truth:
- apply_optimistic() changes it before the server answers
- rollback() undoes exactly one optimistic change after a failure
- confirm() keeps one change when the server succeeded but sent no state
- reconcile() overwrites everything with the server's state

INVARIANT: a failed action leaves no ghost ownership and no ghost
deduction behind, even while other actions are still in flight.
"""

from dataclasses import dataclass, field

from rewardstore.models.cosmetic import RewardState


@dataclass(frozen=True)
class PurchaseDelta:
    item_id: str
    category: str
    cost: int


@dataclass(frozen=True)
class EquipDelta:
    item_id: str
    category: str


@dataclass(frozen=True)
class UnequipDelta:
    item_id: str
    category: str


Delta = PurchaseDelta | EquipDelta | UnequipDelta


@dataclass
class _Applied:
    """What an optimistic delta changed, so it can be reverted precisely."""

    delta: Delta
    added_ownership: bool = False
    previous_equipped: str | None = None


@dataclass
class ClientViewState:
    """
    Balance, owned items and equipped-per-category as the client shows them.

    owned maps item id to category; equipped_by_category maps category
    to the equipped item id. stale is set when an action was abandoned
    and the next load must reconcile.
    """

    balance: int = 0
    owned: dict[str, str] = field(default_factory=dict)
    equipped_by_category: dict[str, str] = field(default_factory=dict)
    stale: bool = False
    _pending: dict[int, _Applied] = field(default_factory=dict, repr=False)
    _next_token: int = field(default=0, repr=False)

    def owns(self, item_id: str) -> bool:
        return item_id in self.owned

    def is_equipped(self, item_id: str) -> bool:
        category = self.owned.get(item_id)
        return category is not None and self.equipped_by_category.get(category) == item_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def apply_optimistic(self, delta: Delta) -> int:
        """
        Apply a predicted change immediately.

        Returns:
            Token identifying this change for rollback().
        """
        if isinstance(delta, PurchaseDelta):
            added = delta.item_id not in self.owned
            self.balance -= delta.cost
            if added:
                self.owned[delta.item_id] = delta.category
            applied = _Applied(delta=delta, added_ownership=added)
        elif isinstance(delta, EquipDelta):
            previous = self.equipped_by_category.get(delta.category)
            self.equipped_by_category[delta.category] = delta.item_id
            applied = _Applied(delta=delta, previous_equipped=previous)
        else:
            previous = self.equipped_by_category.get(delta.category)
            if previous == delta.item_id:
                del self.equipped_by_category[delta.category]
            applied = _Applied(delta=delta, previous_equipped=previous)

        token = self._next_token
        self._next_token += 1
        self._pending[token] = applied
        return token

    def rollback(self, token: int) -> bool:
        """
        Revert one optimistic change.

        Only the fields this delta touched are restored, and only if no
        later change has overwritten them. Returns False for unknown or
        already reconciled tokens.
        """
        applied = self._pending.pop(token, None)
        if applied is None:
            return False

        delta = applied.delta
        if isinstance(delta, PurchaseDelta):
            self.balance += delta.cost
            if applied.added_ownership:
                self.owned.pop(delta.item_id, None)
                if self.equipped_by_category.get(delta.category) == delta.item_id:
                    del self.equipped_by_category[delta.category]
        elif isinstance(delta, EquipDelta):
            if self.equipped_by_category.get(delta.category) == delta.item_id:
                self._restore_equipped(delta.category, applied.previous_equipped)
        else:
            if (
                applied.previous_equipped == delta.item_id
                and delta.category not in self.equipped_by_category
            ):
                self.equipped_by_category[delta.category] = delta.item_id
        return True

    def confirm(self, token: int) -> bool:
        """Keep an optimistic change as applied and stop tracking it."""
        return self._pending.pop(token, None) is not None

    def _restore_equipped(self, category: str, item_id: str | None) -> None:
        if item_id is None:
            self.equipped_by_category.pop(category, None)
        else:
            self.equipped_by_category[category] = item_id

    def reconcile(self, state: RewardState) -> None:
        """
        Replace the projection with the server's state.

        Whatever was predicted is discarded, including deltas of actions
        still in flight; their own responses reconcile again.
        """
        self.balance = state.balance
        self.owned = {r.item_id: r.category for r in state.owned}
        self.equipped_by_category = state.equipped_by_category()
        self._pending.clear()
        self.stale = False

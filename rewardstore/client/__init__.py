from rewardstore.client.rewards_client import RewardsClient, state_from_json
from rewardstore.client.view_state import (
    ClientViewState,
    Delta,
    EquipDelta,
    PurchaseDelta,
    UnequipDelta,
)

__all__ = [
    "ClientViewState",
    "Delta",
    "EquipDelta",
    "PurchaseDelta",
    "RewardsClient",
    "UnequipDelta",
    "state_from_json",
]

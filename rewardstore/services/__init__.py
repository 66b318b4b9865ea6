"""
RewardStore services.

Redemption transactions, ledger adapters and per-item concurrency control.
"""

from rewardstore.services.concurrency import KeyedLock, SingleFlightGuard
from rewardstore.services.ledger import LedgerService, RemoteLedgerClient, SqlLedger
from rewardstore.services.redemption import (
    RedemptionEngine,
    get_redemption_engine,
    purchase_key,
    reset_redemption_engine,
)

__all__ = [
    "KeyedLock",
    "LedgerService",
    "RedemptionEngine",
    "RemoteLedgerClient",
    "SingleFlightGuard",
    "SqlLedger",
    "get_redemption_engine",
    "purchase_key",
    "reset_redemption_engine",
]

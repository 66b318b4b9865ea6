from rewardstore.models.cosmetic import (
    CosmeticItem,
    OwnershipRecord,
    PurchaseReceipt,
    ReconcileReport,
    RewardState,
)
from rewardstore.models.failure import (
    AlreadyOwnedError,
    ApiResponse,
    FailureDetail,
    FailureKind,
    InsufficientFundsError,
    ItemInactiveError,
    ItemNotFoundError,
    KnownError,
    NotOwnedError,
    OperationInFlightError,
    OutcomeType,
    PartialFailureError,
    RefusalError,
    StudentNotFoundError,
    TransientIOError,
    error_from_failure,
)

__all__ = [
    "AlreadyOwnedError",
    "ApiResponse",
    "CosmeticItem",
    "FailureDetail",
    "FailureKind",
    "InsufficientFundsError",
    "ItemInactiveError",
    "ItemNotFoundError",
    "KnownError",
    "NotOwnedError",
    "OperationInFlightError",
    "OutcomeType",
    "OwnershipRecord",
    "PartialFailureError",
    "PurchaseReceipt",
    "ReconcileReport",
    "RefusalError",
    "RewardState",
    "StudentNotFoundError",
    "TransientIOError",
    "error_from_failure",
]

"""
Failure Envelope: Typed Redemption Errors.

Every failed store action is classified and explained to the caller.
Nothing is hidden: each error below maps to exactly one JSON envelope
and one HTTP status, and the client library maps the envelope back to
the same exception type.

Response types:
- Success: Operation completed successfully
- Refusal: Action rejected by a precondition, nothing was mutated
- KnownFailure: System knows why it failed
- UnknownFailure: System does not know why it failed

INVARIANT: A refusal or known failure never leaves a partial mutation,
with the single exception of PartialFailureError, which exists to report one.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Preconditions (no mutation)
    ITEM_INACTIVE = "item_inactive"
    ALREADY_OWNED = "already_owned"
    NOT_OWNED = "not_owned"

    # Resource failures
    NOT_FOUND = "not_found"

    # Ledger
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Client-side concurrency
    OPERATION_IN_FLIGHT = "operation_in_flight"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"

    # Consistency faults
    PARTIAL_FAILURE = "partial_failure"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    REFUSAL = "refusal"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")

UNKNOWN_FAILURE_MESSAGE = "Something went wrong and the action was not completed. Please retry."


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured values the client can use (balance, shortfall, ...)",
    )


class ApiResponse(BaseModel, Generic[T]):
    """
    Universal response envelope for failed actions.

    outcome is always present; failure is present on every non-success.
    """

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (present on success)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        """Create a success response."""
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def unknown_failure(cls, detail: str | None = None) -> "ApiResponse[Any]":
        """
        Create an unknown failure response.

        The message is fixed. Only the exception type name goes in detail.
        """
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message=UNKNOWN_FAILURE_MESSAGE,
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


# Standard exception types that map to known failures


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    outcome: OutcomeType = OutcomeType.KNOWN_FAILURE

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse(
            outcome=self.outcome,
            failure=FailureDetail(
                kind=self.kind,
                message=self.message,
                detail=self.detail,
                suggestion=self.suggestion,
                context=self.context,
            ),
        )


class RefusalError(KnownError):
    """
    A rejected action: a precondition did not hold and nothing was mutated.

    These are the locally recoverable validation errors.
    """

    outcome = OutcomeType.REFUSAL


class ItemNotFoundError(KnownError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message="This reward does not exist.",
            detail=f"cosmetic {item_id} not found",
            status_code=404,
            context={"item_id": item_id},
        )


class StudentNotFoundError(KnownError):
    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message="Student not found.",
            detail=f"student {student_id} not found",
            status_code=404,
            context={"student_id": student_id},
        )


class ItemInactiveError(RefusalError):
    """Raised when the item is no longer offered, including after it was listed."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(
            kind=FailureKind.ITEM_INACTIVE,
            message="This reward is no longer available.",
            detail=f"cosmetic {item_id} is inactive",
            suggestion="Refresh the store to see the current rewards.",
            status_code=409,
            context={"item_id": item_id},
        )


class AlreadyOwnedError(RefusalError):
    def __init__(self, student_id: str, item_id: str):
        self.student_id = student_id
        self.item_id = item_id
        super().__init__(
            kind=FailureKind.ALREADY_OWNED,
            message="You already own this reward.",
            detail=f"student {student_id} already owns {item_id}",
            suggestion="Equip it from your profile.",
            status_code=409,
            context={"student_id": student_id, "item_id": item_id},
        )


class NotOwnedError(RefusalError):
    def __init__(self, student_id: str, item_id: str):
        self.student_id = student_id
        self.item_id = item_id
        super().__init__(
            kind=FailureKind.NOT_OWNED,
            message="You need to redeem this reward before equipping it.",
            detail=f"student {student_id} does not own {item_id}",
            status_code=409,
            context={"student_id": student_id, "item_id": item_id},
        )


class InsufficientFundsError(KnownError):
    """
    Raised when the balance does not cover the cost.

    The ledger raises this without having mutated the balance.
    """

    def __init__(self, balance: int, cost: int):
        self.balance = balance
        self.cost = cost
        self.shortfall = max(cost - balance, 0)
        super().__init__(
            kind=FailureKind.INSUFFICIENT_FUNDS,
            message="You don't have enough points for this reward.",
            detail=f"balance {balance} < cost {cost}",
            suggestion=f"You need {self.shortfall} more points.",
            status_code=402,
            context={"balance": balance, "cost": cost, "shortfall": self.shortfall},
        )


class OperationInFlightError(KnownError):
    """Raised client-side when an action on the same item is already in flight."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            kind=FailureKind.OPERATION_IN_FLIGHT,
            message="This action is already in progress.",
            detail=f"in-flight key {key}",
            status_code=409,
            context={"key": key},
        )


class TransientIOError(KnownError):
    """
    Network or storage unavailability.

    Retrying is the caller's decision; nothing retries automatically.
    """

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message="The rewards service is temporarily unavailable.",
            detail=detail,
            suggestion="Please try again in a moment.",
            status_code=503,
        )


class PartialFailureError(KnownError):
    """
    Ownership was recorded but the deduction outcome is not confirmed.

    This is a consistency fault. The ownership record stays pending until
    the reconciliation pass settles or revokes it.
    """

    def __init__(self, student_id: str, item_id: str, detail: str):
        self.student_id = student_id
        self.item_id = item_id
        super().__init__(
            kind=FailureKind.PARTIAL_FAILURE,
            message="Your redemption could not be confirmed and is under review.",
            detail=detail,
            suggestion="Your points will not be charged twice. Check back shortly.",
            status_code=500,
            context={"student_id": student_id, "item_id": item_id},
        )


def error_from_failure(failure: FailureDetail, status_code: int) -> KnownError:
    """
    Rebuild a typed exception from a failure envelope.

    Used by the client library so callers can catch the same types
    the server raised. Kinds without a dedicated constructor come back
    as a plain KnownError carrying the original message.
    """
    ctx = failure.context
    kind = failure.kind

    if kind == FailureKind.ITEM_INACTIVE:
        return ItemInactiveError(ctx.get("item_id", ""))
    if kind == FailureKind.ALREADY_OWNED:
        return AlreadyOwnedError(ctx.get("student_id", ""), ctx.get("item_id", ""))
    if kind == FailureKind.NOT_OWNED:
        return NotOwnedError(ctx.get("student_id", ""), ctx.get("item_id", ""))
    if kind == FailureKind.NOT_FOUND and "item_id" in ctx:
        return ItemNotFoundError(ctx["item_id"])
    if kind == FailureKind.NOT_FOUND and "student_id" in ctx:
        return StudentNotFoundError(ctx["student_id"])
    if kind == FailureKind.INSUFFICIENT_FUNDS:
        return InsufficientFundsError(int(ctx.get("balance", 0)), int(ctx.get("cost", 0)))
    if kind == FailureKind.SERVICE_UNAVAILABLE:
        return TransientIOError(failure.detail or "")
    if kind == FailureKind.PARTIAL_FAILURE:
        return PartialFailureError(
            ctx.get("student_id", ""), ctx.get("item_id", ""), failure.detail or ""
        )

    return KnownError(
        kind=kind,
        message=failure.message,
        detail=failure.detail,
        suggestion=failure.suggestion,
        status_code=status_code,
        context=ctx,
    )

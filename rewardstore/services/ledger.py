"""
Points ledger adapters.

The ledger is the single authority for spendable balances. Two
implementations share one contract:

- SqlLedger: ledger tables in our own database. Bound to the caller's
  session, so a deduction commits or rolls back with the ownership grant.
- RemoteLedgerClient: an external ledger reached over HTTP. Deductions
  are idempotent by key, which is what lets a purchase saga retry safely.

INVARIANTS:
- deduct never drives a balance negative
- InsufficientFundsError means the balance was not touched
- the same idempotency_key is applied at most once
"""

import logging
from typing import Any, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from rewardstore.config import settings
from rewardstore.db.operations import deduct_points, get_balance
from rewardstore.models.failure import InsufficientFundsError, TransientIOError

logger = logging.getLogger(__name__)


class LedgerService(Protocol):
    """What the redemption engine needs from a points ledger."""

    async def balance(self, user_id: str) -> int: ...

    async def deduct(
        self, user_id: str, amount: int, reason: str, *, idempotency_key: str
    ) -> int: ...


class SqlLedger:
    """Ledger backed by the points tables, inside the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def balance(self, user_id: str) -> int:
        return await get_balance(self.session, user_id)

    async def deduct(
        self, user_id: str, amount: int, reason: str, *, idempotency_key: str
    ) -> int:
        return await deduct_points(
            self.session, user_id, amount, reason, idempotency_key=idempotency_key
        )


class RemoteLedgerClient:
    """
    Client for an external points ledger API.

    Endpoints:
        GET  /balances/{user_id}  -> {"balance": int}
        POST /deduct              -> {"balance": int}
             402/409 with {"error": "insufficient_funds", "balance": int}
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        """
        Initialize the ledger client.

        Args:
            base_url: Ledger API base URL. Defaults to settings.ledger_url.
            timeout: Request timeout in seconds. Defaults to settings.ledger_timeout_seconds.
        """
        self.base_url = (base_url or settings.ledger_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ledger_timeout_seconds

    async def balance(self, user_id: str) -> int:
        """
        Fetch the authoritative balance.

        Raises:
            TransientIOError: If the ledger cannot be reached or errors.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/balances/{user_id}")
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Ledger balance lookup failed: %s", e, extra={"ledger_mode": "remote"})
            raise TransientIOError(f"ledger balance lookup failed: {type(e).__name__}") from e

        return _balance_from(response, "balance lookup")

    async def deduct(
        self, user_id: str, amount: int, reason: str, *, idempotency_key: str
    ) -> int:
        """
        Deduct points and return the new balance.

        Raises:
            InsufficientFundsError: The ledger refused; balance unchanged.
            TransientIOError: Outcome unknown (network failure, 5xx or an
                unreadable reply, which may follow a successful charge).
        """
        payload = {
            "user_id": user_id,
            "amount": amount,
            "reason": reason,
            "idempotency_key": idempotency_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/deduct", json=payload)
        except httpx.HTTPError as e:
            logger.warning("Ledger deduct failed: %s", e, extra={"ledger_mode": "remote"})
            raise TransientIOError(f"ledger deduct failed: {type(e).__name__}") from e

        if response.status_code in (402, 409):
            data = _json_body(response, "deduct")
            if data.get("error") == "insufficient_funds":
                balance = _balance_from(response, "deduct") if "balance" in data else 0
                raise InsufficientFundsError(balance=balance, cost=amount)

        if response.status_code >= 400:
            raise TransientIOError(f"ledger deduct returned HTTP {response.status_code}")

        return _balance_from(response, "deduct")

    async def health_check(self) -> bool:
        """
        Check if the ledger API is available.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False


def _json_body(response: httpx.Response, what: str) -> dict[str, Any]:
    """Decode a ledger reply; anything but a JSON object is an unreadable reply."""
    try:
        data = response.json()
    except ValueError as e:
        logger.warning(
            "Ledger %s returned an unreadable body (HTTP %d)",
            what,
            response.status_code,
            extra={"ledger_mode": "remote"},
        )
        raise TransientIOError(f"ledger {what} returned a non-JSON body") from e
    if not isinstance(data, dict):
        raise TransientIOError(f"ledger {what} returned {type(data).__name__}, expected object")
    return data


def _balance_from(response: httpx.Response, what: str) -> int:
    data = _json_body(response, what)
    try:
        return int(data["balance"])
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(
            "Ledger %s reply has no usable balance", what, extra={"ledger_mode": "remote"}
        )
        raise TransientIOError(f"ledger {what} reply has no usable balance") from e

"""
Tests for purchases against a remote ledger.

With no shared transaction, a purchase records a pending grant, charges
the ledger with an idempotency key, then confirms or compensates.
"""

import json

import httpx
import pytest
import respx

from rewardstore.db.operations import list_by_student
from rewardstore.models.db import OWNERSHIP_ACTIVE, OWNERSHIP_PENDING
from rewardstore.models.failure import (
    AlreadyOwnedError,
    InsufficientFundsError,
    PartialFailureError,
    TransientIOError,
)
from rewardstore.services.ledger import RemoteLedgerClient
from rewardstore.services.redemption import RedemptionEngine

LEDGER = "https://ledger.example.com"
BALANCE_URL = f"{LEDGER}/balances/user-1"
DEDUCT_URL = f"{LEDGER}/deduct"


@pytest.fixture
async def saga(session_factory, seed) -> RedemptionEngine:
    await seed(balance=0)
    return RedemptionEngine(session_factory, remote_ledger=RemoteLedgerClient(base_url=LEDGER))


async def _records(session_factory) -> dict[str, str]:
    async with session_factory() as s:
        records = await list_by_student(s, "student-1", include_pending=True)
    return {r.cosmetic_id: r.status for r in records}


def _refused(balance: int) -> httpx.Response:
    return httpx.Response(402, json={"error": "insufficient_funds", "balance": balance})


class TestSagaPurchase:
    def test_not_atomic(self, saga: RedemptionEngine) -> None:
        assert saga.atomic is False

    @respx.mock
    async def test_success_activates_record(self, saga: RedemptionEngine, session_factory) -> None:
        """Charged purchases end with an active record."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(return_value=httpx.Response(200, json={"balance": 20}))

        receipt = await saga.purchase("student-1", "hat-1")

        assert receipt.balance == 20
        assert receipt.record.status == OWNERSHIP_ACTIVE
        assert await _records(session_factory) == {"hat-1": OWNERSHIP_ACTIVE}

    @respx.mock
    async def test_precheck_refusal_creates_nothing(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """An unaffordable item never reaches the deduct call."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 50}))

        with pytest.raises(InsufficientFundsError):
            await saga.purchase("student-1", "hat-1")

        assert await _records(session_factory) == {}

    @respx.mock
    async def test_ledger_refusal_revokes_pending(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """If the ledger refuses after the pre-check, the pending grant is compensated."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(return_value=_refused(10))

        with pytest.raises(InsufficientFundsError):
            await saga.purchase("student-1", "hat-1")

        assert await _records(session_factory) == {}

    @respx.mock
    async def test_unknown_outcome_is_partial_failure(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """A failed deduct call leaves the record pending and reports a partial failure."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(PartialFailureError) as exc_info:
            await saga.purchase("student-1", "hat-1")

        assert exc_info.value.status_code == 500
        assert await _records(session_factory) == {"hat-1": OWNERSHIP_PENDING}

    @respx.mock
    async def test_unreadable_deduct_reply_is_partial_failure(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """A 200 the client cannot read may hide a charge, so the grant stays pending."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(return_value=httpx.Response(200, text="OK"))

        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")

        assert await _records(session_factory) == {"hat-1": OWNERSHIP_PENDING}

    @respx.mock
    async def test_pending_blocks_second_purchase(self, saga: RedemptionEngine) -> None:
        """A purchase in limbo still counts for the one-record rule."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")
        with pytest.raises(AlreadyOwnedError):
            await saga.purchase("student-1", "hat-1")

    @respx.mock
    async def test_balance_unreachable_creates_nothing(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """If the ledger is down before the grant, nothing is recorded."""
        respx.get(BALANCE_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(TransientIOError):
            await saga.purchase("student-1", "hat-1")

        assert await _records(session_factory) == {}


class TestReconcile:
    @respx.mock
    async def test_settles_charged_purchase(self, saga: RedemptionEngine, session_factory) -> None:
        """A retry with the same key confirms the purchase."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        deduct = respx.post(DEDUCT_URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json={"balance": 20})]
        )
        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")

        report = await saga.reconcile_pending()

        assert [r.item_id for r in report.settled] == ["hat-1"]
        assert report.revoked == []
        assert report.still_pending == []
        assert await _records(session_factory) == {"hat-1": OWNERSHIP_ACTIVE}
        keys = [json.loads(c.request.content)["idempotency_key"] for c in deduct.calls]
        assert keys == ["purchase:student-1:hat-1", "purchase:student-1:hat-1"]

    @respx.mock
    async def test_revokes_refused_purchase(self, saga: RedemptionEngine, session_factory) -> None:
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(side_effect=[httpx.Response(503), _refused(0)])
        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")

        report = await saga.reconcile_pending("student-1")

        assert [r.item_id for r in report.revoked] == ["hat-1"]
        assert await _records(session_factory) == {}

    @respx.mock
    async def test_leaves_unreachable_pending(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(side_effect=[httpx.Response(503), httpx.Response(503)])
        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")

        report = await saga.reconcile_pending()

        assert [r.item_id for r in report.still_pending] == ["hat-1"]
        assert await _records(session_factory) == {"hat-1": OWNERSHIP_PENDING}

    @respx.mock
    async def test_unreadable_reply_keeps_going(
        self, saga: RedemptionEngine, session_factory
    ) -> None:
        """One unreadable reply leaves that record pending; the rest still settle."""
        respx.get(BALANCE_URL).mock(return_value=httpx.Response(200, json={"balance": 100}))
        respx.post(DEDUCT_URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(503),
                httpx.Response(200, json={"ok": True}),
                httpx.Response(200, json={"balance": 50}),
            ]
        )
        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-1")
        with pytest.raises(PartialFailureError):
            await saga.purchase("student-1", "hat-2")

        report = await saga.reconcile_pending()

        assert len(report.still_pending) == 1
        assert len(report.settled) == 1
        statuses = await _records(session_factory)
        assert sorted(statuses.values()) == [OWNERSHIP_ACTIVE, OWNERSHIP_PENDING]

    async def test_nothing_pending(self, saga: RedemptionEngine) -> None:
        report = await saga.reconcile_pending()

        assert report.settled == report.revoked == report.still_pending == []

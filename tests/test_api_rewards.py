"""Tests for catalog, reward and admin API endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from rewardstore.main import app
from rewardstore.models.failure import TransientIOError
from rewardstore.services.redemption import get_redemption_engine


class TestCatalogEndpoint:
    async def test_lists_active_items(self, client: AsyncClient, seed) -> None:
        """Only active items are offered."""
        await seed()

        response = await client.get("/catalog")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 4
        assert "retired-1" not in {i["id"] for i in data["items"]}
        assert data["items"][0] == {
            "id": "bg-1",
            "name": "Sunset",
            "category": "background",
            "cost": 0,
            "image_url": None,
        }

    async def test_empty_catalog(self, client: AsyncClient) -> None:
        response = await client.get("/catalog")

        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}


class TestRewardStateEndpoint:
    async def test_get_state(self, client: AsyncClient, seed) -> None:
        await seed(balance=100)

        response = await client.get("/students/student-1/rewards")

        assert response.status_code == 200
        assert response.json() == {
            "student_id": "student-1",
            "balance": 100,
            "owned": [],
            "equipped_by_category": {},
        }

    async def test_unknown_student(self, client: AsyncClient) -> None:
        response = await client.get("/students/ghost/rewards")

        assert response.status_code == 404
        failure = response.json()["failure"]
        assert failure["kind"] == "not_found"


class TestPurchaseEndpoint:
    async def test_purchase_success(self, client: AsyncClient, seed) -> None:
        """Successful purchase returns the record, the new balance and full state."""
        await seed(balance=100)

        response = await client.post("/students/student-1/rewards/hat-1/purchase")

        assert response.status_code == 200
        data = response.json()
        assert data["record"] == {"item_id": "hat-1", "category": "hat", "equipped": False}
        assert data["balance"] == 20
        assert data["state"]["balance"] == 20
        assert [o["item_id"] for o in data["state"]["owned"]] == ["hat-1"]

    async def test_insufficient_funds(self, client: AsyncClient, seed) -> None:
        """402 with the shortfall in the envelope's context."""
        await seed(balance=50)

        response = await client.post("/students/student-1/rewards/hat-1/purchase")

        assert response.status_code == 402
        body = response.json()
        assert body["outcome"] == "known_failure"
        assert body["failure"]["kind"] == "insufficient_funds"
        assert body["failure"]["context"] == {"balance": 50, "cost": 80, "shortfall": 30}

    async def test_already_owned(self, client: AsyncClient, seed) -> None:
        await seed(balance=200)
        await client.post("/students/student-1/rewards/hat-2/purchase")

        response = await client.post("/students/student-1/rewards/hat-2/purchase")

        assert response.status_code == 409
        body = response.json()
        assert body["outcome"] == "refusal"
        assert body["failure"]["kind"] == "already_owned"

    async def test_inactive_item(self, client: AsyncClient, seed) -> None:
        await seed()

        response = await client.post("/students/student-1/rewards/retired-1/purchase")

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "item_inactive"

    async def test_unknown_item(self, client: AsyncClient, seed) -> None:
        await seed()

        response = await client.post("/students/student-1/rewards/nope/purchase")

        assert response.status_code == 404

    async def test_committed_purchase_survives_state_read_failure(
        self, client: AsyncClient, seed, redemption
    ) -> None:
        """Once the purchase commits, a failed state read still answers 200."""
        await seed(balance=100)

        with patch.object(
            redemption, "get_state", AsyncMock(side_effect=TransientIOError("db blip"))
        ):
            response = await client.post("/students/student-1/rewards/hat-1/purchase")

        assert response.status_code == 200
        data = response.json()
        assert data["record"]["item_id"] == "hat-1"
        assert data["balance"] == 20
        assert data["state"] is None
        state = await redemption.get_state("student-1")
        assert state.balance == 20


class TestEquipEndpoints:
    async def test_equip_and_switch(self, client: AsyncClient, seed) -> None:
        """Equipping another hat moves the equipped flag."""
        await seed(balance=200)
        await client.post("/students/student-1/rewards/hat-1/purchase")
        await client.post("/students/student-1/rewards/hat-2/purchase")
        await client.post("/students/student-1/rewards/hat-1/equip")

        response = await client.post("/students/student-1/rewards/hat-2/equip")

        assert response.status_code == 200
        data = response.json()
        assert data["item_id"] == "hat-2"
        assert data["equipped"] is True
        assert data["state"]["equipped_by_category"] == {"hat": "hat-2"}

    async def test_equip_not_owned(self, client: AsyncClient, seed) -> None:
        await seed()

        response = await client.post("/students/student-1/rewards/hat-1/equip")

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "not_owned"

    async def test_unequip(self, client: AsyncClient, seed) -> None:
        await seed(balance=100)
        await client.post("/students/student-1/rewards/frame-1/purchase")
        await client.post("/students/student-1/rewards/frame-1/equip")

        response = await client.post("/students/student-1/rewards/frame-1/unequip")

        assert response.status_code == 200
        data = response.json()
        assert data["equipped"] is False
        assert data["state"]["equipped_by_category"] == {}

    async def test_committed_equip_survives_state_read_failure(
        self, client: AsyncClient, seed, redemption
    ) -> None:
        await seed(balance=100)
        await client.post("/students/student-1/rewards/frame-1/purchase")

        with patch.object(
            redemption, "get_state", AsyncMock(side_effect=TransientIOError("db blip"))
        ):
            response = await client.post("/students/student-1/rewards/frame-1/equip")

        assert response.status_code == 200
        assert response.json() == {"item_id": "frame-1", "equipped": True, "state": None}
        state = await redemption.get_state("student-1")
        assert state.equipped_by_category() == {"frame": "frame-1"}


class TestAdminEndpoints:
    async def test_no_pending_purchases(self, client: AsyncClient, seed) -> None:
        """Local-ledger purchases are never left pending."""
        await seed(balance=100)
        await client.post("/students/student-1/rewards/hat-1/purchase")

        response = await client.get("/admin/pending-purchases")

        assert response.status_code == 200
        assert response.json() == {"pending": [], "total": 0}

    async def test_reconcile_nothing(self, client: AsyncClient, seed) -> None:
        await seed()

        response = await client.post("/admin/reconcile", params={"student_id": "student-1"})

        assert response.status_code == 200
        assert response.json() == {"settled": [], "revoked": [], "still_pending": []}


class _BrokenEngine:
    async def get_state(self, student_id: str) -> None:
        raise RuntimeError("connection string postgres://secret@db")


class TestUnknownFailure:
    @pytest.fixture
    async def broken_client(self):
        app.dependency_overrides[get_redemption_engine] = lambda: _BrokenEngine()
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
        app.dependency_overrides.clear()

    async def test_unhandled_error_envelope(self, broken_client: AsyncClient) -> None:
        """Unexpected errors return the fixed envelope without internals."""
        response = await broken_client.get("/students/student-1/rewards")

        assert response.status_code == 500
        body = response.json()
        assert body["outcome"] == "unknown_failure"
        assert body["failure"]["kind"] == "unknown"
        assert body["failure"]["detail"] == "RuntimeError"
        assert "secret" not in response.text

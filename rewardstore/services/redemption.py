"""
Redemption Engine: Purchase and Equip Transactions.

Students spend points on cosmetic items and equip at most one item per
category. This module owns the transaction boundaries for both.

PURCHASE:
1. Re-read student, item, ownership and balance at transaction time.
   Client-side affordability checks are advisory only.
2. Insert the ownership record (unique per student and item).
3. Deduct the cost through the ledger.

With the local ledger, steps 2 and 3 share one database transaction:
either both apply or neither does. With a remote ledger no shared
transaction exists, so the purchase runs as a saga: the record is
committed as "pending", the ledger is called with an idempotency key,
and the record is then activated or revoked. A pending record that
outlives its request is found and settled by reconcile_pending().

EQUIP:
One UPDATE equips the target and unequips the rest of its category.
Other categories are never touched.

INVARIANTS:
- At most one ownership record per (student, item)
- At most one equipped item per (student, category)
- Balance never negative; a failed purchase changes neither balance nor ownership
- Same (student, item) actions are serialized; different items never wait
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewardstore.config import REDEEM_REASON_PREFIX, settings
from rewardstore.db.database import async_session_factory
from rewardstore.db.operations import (
    get_item,
    get_ownership,
    get_student,
    insert_if_absent,
    ledger_account,
    list_by_student,
    list_pending,
    mark_active,
    ownership_to_model,
    revoke_ownership,
    set_equipped_exclusive,
    set_unequipped,
)
from rewardstore.models.cosmetic import (
    OwnershipRecord,
    PurchaseReceipt,
    ReconcileReport,
    RewardState,
)
from rewardstore.models.db import OWNERSHIP_ACTIVE, OWNERSHIP_PENDING, CosmeticDB, StudentDB
from rewardstore.models.failure import (
    AlreadyOwnedError,
    InsufficientFundsError,
    ItemInactiveError,
    ItemNotFoundError,
    NotOwnedError,
    PartialFailureError,
    StudentNotFoundError,
    TransientIOError,
)
from rewardstore.services.concurrency import KeyedLock
from rewardstore.services.ledger import LedgerService, RemoteLedgerClient, SqlLedger

logger = logging.getLogger(__name__)


def purchase_key(student_id: str, item_id: str) -> str:
    """Ledger idempotency key for a purchase. Stable across retries."""
    return f"purchase:{student_id}:{item_id}"


def redeem_reason(item: CosmeticDB) -> str:
    return f"{REDEEM_REASON_PREFIX}{item.name}"


class RedemptionEngine:
    """
    Orchestrates purchase and equip transactions.

    Holds no balance or ownership state of its own; every decision is
    made against freshly read storage.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        remote_ledger: RemoteLedgerClient | None = None,
    ) -> None:
        """
        Args:
            session_factory: Opens sessions on the ownership/catalog database.
            remote_ledger: External ledger. When None, the ledger tables in
                the same database are used and purchases are atomic.
        """
        self.session_factory = session_factory
        self.remote_ledger = remote_ledger
        self._locks = KeyedLock()

    @property
    def atomic(self) -> bool:
        """True when purchases commit ownership and deduction together."""
        return self.remote_ledger is None

    def _ledger_for(self, session: AsyncSession) -> LedgerService:
        if self.remote_ledger is not None:
            return self.remote_ledger
        return SqlLedger(session)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """One session, committed on success and rolled back on any error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                await session.rollback()
                raise TransientIOError(f"storage unavailable: {type(e).__name__}") from e
            except Exception:
                await session.rollback()
                raise

    async def _load_purchase_target(
        self, session: AsyncSession, student_id: str, item_id: str
    ) -> tuple[StudentDB, CosmeticDB]:
        student = await get_student(session, student_id)
        if student is None:
            raise StudentNotFoundError(student_id)

        item = await get_item(session, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        # Also covers an item deactivated after the student saw it listed
        if not item.active:
            raise ItemInactiveError(item_id)

        if await get_ownership(session, student_id, item_id, include_pending=True) is not None:
            raise AlreadyOwnedError(student_id, item_id)

        return student, item

    # --- Purchase ---

    async def purchase(self, student_id: str, item_id: str) -> PurchaseReceipt:
        """
        Redeem an item for a student.

        Returns:
            PurchaseReceipt with the new (unequipped) record and the balance after paying.

        Raises:
            StudentNotFoundError, ItemNotFoundError: unknown ids.
            ItemInactiveError: item is not offered.
            AlreadyOwnedError: student already owns it (or is mid-purchase).
            InsufficientFundsError: balance does not cover the cost.
            TransientIOError: storage or ledger unreachable; nothing applied.
            PartialFailureError: remote ledger outcome unknown; record left pending.
        """
        async with self._locks.hold((student_id, item_id)):
            if self.atomic:
                receipt = await self._purchase_atomic(student_id, item_id)
            else:
                receipt = await self._purchase_saga(student_id, item_id)

        logger.info(
            "Purchase completed",
            extra={"student_id": student_id, "item_id": item_id, "balance": receipt.balance},
        )
        return receipt

    async def _purchase_atomic(self, student_id: str, item_id: str) -> PurchaseReceipt:
        async with self._transaction() as session:
            student, item = await self._load_purchase_target(session, student_id, item_id)
            ledger = SqlLedger(session)
            account = ledger_account(student)

            balance = await ledger.balance(account)
            if item.cost_points > balance:
                raise InsufficientFundsError(balance=balance, cost=item.cost_points)

            record = await insert_if_absent(session, student_id, item)
            if record is None:
                raise AlreadyOwnedError(student_id, item_id)

            # Raises without touching the balance; the ownership insert rolls back with it
            new_balance = await ledger.deduct(
                account,
                item.cost_points,
                redeem_reason(item),
                idempotency_key=purchase_key(student_id, item_id),
            )
            model = ownership_to_model(record)

        return PurchaseReceipt(record=model, balance=new_balance)

    async def _purchase_saga(self, student_id: str, item_id: str) -> PurchaseReceipt:
        assert self.remote_ledger is not None
        ledger = self.remote_ledger

        # Phase 1: validate and record the pending grant
        async with self._transaction() as session:
            student, item = await self._load_purchase_target(session, student_id, item_id)
            account = ledger_account(student)
            cost = item.cost_points
            reason = redeem_reason(item)

            balance = await ledger.balance(account)
            if cost > balance:
                raise InsufficientFundsError(balance=balance, cost=cost)

            record = await insert_if_absent(session, student_id, item, status=OWNERSHIP_PENDING)
            if record is None:
                raise AlreadyOwnedError(student_id, item_id)
            model = ownership_to_model(record)

        # Phase 2: charge
        try:
            new_balance = await ledger.deduct(
                account, cost, reason, idempotency_key=purchase_key(student_id, item_id)
            )
        except InsufficientFundsError:
            async with self._transaction() as session:
                await revoke_ownership(session, student_id, item_id)
            logger.warning(
                "Purchase compensated: ledger refused deduction",
                extra={"student_id": student_id, "item_id": item_id, "cost": cost},
            )
            raise
        except TransientIOError as e:
            logger.error(
                "Purchase left pending: ledger outcome unknown",
                extra={"student_id": student_id, "item_id": item_id, "failure_kind": "partial"},
            )
            raise PartialFailureError(student_id, item_id, detail=str(e.detail)) from e

        # Phase 3: confirm
        try:
            async with self._transaction() as session:
                await mark_active(session, student_id, item_id)
        except (SQLAlchemyError, TransientIOError) as e:
            logger.error(
                "Purchase left pending: charged but not confirmed",
                extra={"student_id": student_id, "item_id": item_id, "failure_kind": "partial"},
            )
            raise PartialFailureError(
                student_id, item_id, detail="ledger charged, ownership confirmation failed"
            ) from e

        model.status = OWNERSHIP_ACTIVE
        return PurchaseReceipt(record=model, balance=new_balance)

    async def reconcile_pending(self, student_id: str | None = None) -> ReconcileReport:
        """
        Settle purchases stuck between ownership grant and ledger confirmation.

        Each pending record retries its deduction with the original
        idempotency key, so a charge that already went through is not
        applied twice. Charged records become active, refused ones are
        revoked, unreachable ones stay pending.
        """
        report = ReconcileReport()

        async with self._transaction() as session:
            pending = await list_pending(session, student_id)

        for stale in pending:
            key = (stale.student_id, stale.cosmetic_id)
            async with self._locks.hold(key), self._transaction() as session:
                record = await get_ownership(session, *key, include_pending=True)
                if record is None or record.status != OWNERSHIP_PENDING:
                    continue
                model = ownership_to_model(record)
                student = await get_student(session, record.student_id)
                if student is None:
                    continue

                try:
                    await self._ledger_for(session).deduct(
                        ledger_account(student),
                        record.cosmetic.cost_points,
                        redeem_reason(record.cosmetic),
                        idempotency_key=purchase_key(*key),
                    )
                except InsufficientFundsError:
                    await revoke_ownership(session, *key)
                    report.revoked.append(model)
                    continue
                except TransientIOError:
                    report.still_pending.append(model)
                    continue

                await mark_active(session, *key)
                model.status = OWNERSHIP_ACTIVE
                report.settled.append(model)

        logger.info(
            "Reconciled pending purchases: %d settled, %d revoked, %d still pending",
            len(report.settled),
            len(report.revoked),
            len(report.still_pending),
        )
        return report

    # --- Equip ---

    async def equip(self, student_id: str, item_id: str) -> None:
        """
        Equip an owned item, unequipping the rest of its category.

        Equipping the currently equipped item is a no-op success.

        Raises:
            NotOwnedError: student has no active record for the item.
        """
        async with self._locks.hold((student_id, item_id)), self._transaction() as session:
            record = await get_ownership(session, student_id, item_id)
            if record is None:
                raise NotOwnedError(student_id, item_id)

            category = record.cosmetic.category
            await set_equipped_exclusive(session, student_id, category, item_id)

        logger.info(
            "Equipped item",
            extra={"student_id": student_id, "item_id": item_id, "category": category},
        )

    async def unequip(self, student_id: str, item_id: str) -> None:
        """
        Unequip an owned item. Other items keep their state.

        Raises:
            NotOwnedError: student has no active record for the item.
        """
        async with self._locks.hold((student_id, item_id)), self._transaction() as session:
            record = await get_ownership(session, student_id, item_id)
            if record is None:
                raise NotOwnedError(student_id, item_id)
            await set_unequipped(session, student_id, item_id)

    # --- Reads ---

    async def get_state(self, student_id: str) -> RewardState:
        """Authoritative balance and ownership for a student."""
        async with self._transaction() as session:
            student = await get_student(session, student_id)
            if student is None:
                raise StudentNotFoundError(student_id)

            balance = await self._ledger_for(session).balance(ledger_account(student))
            owned: list[OwnershipRecord] = [
                ownership_to_model(r) for r in await list_by_student(session, student_id)
            ]

        return RewardState(student_id=student_id, balance=balance, owned=owned)


# Default engine instance
_engine: RedemptionEngine | None = None


def get_redemption_engine() -> RedemptionEngine:
    """
    Get the process-wide redemption engine.

    A single instance is required: the per-item locks live on it.
    """
    global _engine
    if _engine is None:
        remote = RemoteLedgerClient() if settings.ledger_mode == "remote" else None
        _engine = RedemptionEngine(async_session_factory, remote_ledger=remote)
    return _engine


def reset_redemption_engine() -> None:
    """Drop the default engine (for testing)."""
    global _engine
    _engine = None

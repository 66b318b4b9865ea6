"""
Database CRUD operations.

Provides async functions for the catalog, the ownership store and the
local points ledger. None of these commit: transaction boundaries belong
to the caller (the redemption engine or the request session).
"""

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rewardstore.models.cosmetic import CosmeticItem, OwnershipRecord
from rewardstore.models.db import (
    OWNERSHIP_ACTIVE,
    OWNERSHIP_PENDING,
    CosmeticDB,
    PointsBalanceDB,
    PointsLedgerEntryDB,
    StudentCosmeticDB,
    StudentDB,
)
from rewardstore.models.failure import InsufficientFundsError

# --- Catalog Operations ---


async def get_item(session: AsyncSession, item_id: str) -> CosmeticDB | None:
    """
    Get a cosmetic by id, active or not.

    Always re-reads the row so a purchase sees the current active flag.
    """
    result = await session.execute(
        select(CosmeticDB)
        .where(CosmeticDB.id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_active_items(session: AsyncSession) -> list[CosmeticDB]:
    """List the items currently offered, ordered by category, cost and name."""
    result = await session.execute(
        select(CosmeticDB)
        .where(CosmeticDB.active.is_(True))
        .order_by(CosmeticDB.category, CosmeticDB.cost_points, CosmeticDB.name)
    )
    return list(result.scalars().all())


async def upsert_cosmetic(session: AsyncSession, item: CosmeticItem) -> CosmeticDB:
    """
    Insert or update a catalog item.

    Catalog authoring happens elsewhere; this exists for seeding.
    """
    existing = await get_item(session, item.id)

    if existing:
        existing.name = item.name
        existing.category = item.category
        existing.cost_points = item.cost
        existing.active = item.active
        existing.image_url = item.image_url
        await session.flush()
        return existing

    db_item = CosmeticDB(
        id=item.id,
        name=item.name,
        category=item.category,
        cost_points=item.cost,
        active=item.active,
        image_url=item.image_url,
    )
    session.add(db_item)
    await session.flush()
    return db_item


def cosmetic_to_model(db_item: CosmeticDB) -> CosmeticItem:
    """Convert a database cosmetic to a domain model."""
    return CosmeticItem(
        id=db_item.id,
        name=db_item.name,
        category=db_item.category,
        cost=db_item.cost_points,
        active=db_item.active,
        image_url=db_item.image_url,
    )


# --- Student Operations ---


async def get_student(session: AsyncSession, student_id: str) -> StudentDB | None:
    """Get a student by id. Returns None if unknown."""
    return await session.get(StudentDB, student_id)


async def create_student(
    session: AsyncSession, student_id: str, user_id: str | None = None, name: str = ""
) -> StudentDB:
    """
    Create a student profile.

    Raises IntegrityError if the student or user link already exists.
    """
    student = StudentDB(id=student_id, user_id=user_id, name=name)
    session.add(student)
    await session.flush()
    return student


def ledger_account(student: StudentDB) -> str:
    """
    The ledger key for a student.

    The ledger is keyed by user identity; students without a linked
    user fall back to their own id.
    """
    return student.user_id or student.id


# --- Ownership Operations ---


async def get_ownership(
    session: AsyncSession,
    student_id: str,
    item_id: str,
    include_pending: bool = False,
) -> StudentCosmeticDB | None:
    """Get one ownership record. Pending records are hidden unless asked for."""
    query = (
        select(StudentCosmeticDB)
        .where(
            StudentCosmeticDB.student_id == student_id,
            StudentCosmeticDB.cosmetic_id == item_id,
        )
        .options(selectinload(StudentCosmeticDB.cosmetic))
        .execution_options(populate_existing=True)
    )
    if not include_pending:
        query = query.where(StudentCosmeticDB.status == OWNERSHIP_ACTIVE)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list_by_student(
    session: AsyncSession, student_id: str, include_pending: bool = False
) -> list[StudentCosmeticDB]:
    """
    List a student's ownership records.

    populate_existing matters here: equip updates are bulk statements
    that bypass the identity map.
    """
    query = (
        select(StudentCosmeticDB)
        .where(StudentCosmeticDB.student_id == student_id)
        .options(selectinload(StudentCosmeticDB.cosmetic))
        .order_by(StudentCosmeticDB.id)
        .execution_options(populate_existing=True)
    )
    if not include_pending:
        query = query.where(StudentCosmeticDB.status == OWNERSHIP_ACTIVE)
    result = await session.execute(query)
    return list(result.scalars().all())


async def insert_if_absent(
    session: AsyncSession,
    student_id: str,
    cosmetic: CosmeticDB,
    status: str = OWNERSHIP_ACTIVE,
) -> StudentCosmeticDB | None:
    """
    Insert an unequipped ownership record.

    Returns None if the student already has a record for this item,
    pending or not. A uniqueness violation raised by a concurrent insert
    rolls back the session's transaction before returning None.
    """
    existing = await get_ownership(session, student_id, cosmetic.id, include_pending=True)
    if existing is not None:
        return None

    record = StudentCosmeticDB(
        student_id=student_id,
        cosmetic_id=cosmetic.id,
        equipped=False,
        status=status,
    )
    record.cosmetic = cosmetic
    session.add(record)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        return None
    return record


async def set_equipped_exclusive(
    session: AsyncSession, student_id: str, category: str, item_id: str
) -> int:
    """
    Equip one item and unequip every other item of the same category.

    A single UPDATE, so exclusivity holds under any interleaving.
    Items in other categories are not touched. Returns rows updated.
    """
    same_category = select(CosmeticDB.id).where(CosmeticDB.category == category)
    result = await session.execute(
        update(StudentCosmeticDB)
        .where(
            StudentCosmeticDB.student_id == student_id,
            StudentCosmeticDB.status == OWNERSHIP_ACTIVE,
            StudentCosmeticDB.cosmetic_id.in_(same_category),
        )
        .values(equipped=case((StudentCosmeticDB.cosmetic_id == item_id, True), else_=False))
        .execution_options(synchronize_session=False)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    return int(result.rowcount)  # type: ignore[attr-defined]


async def set_unequipped(session: AsyncSession, student_id: str, item_id: str) -> int:
    """Clear the equipped flag on one record. Returns rows updated."""
    result = await session.execute(
        update(StudentCosmeticDB)
        .where(
            StudentCosmeticDB.student_id == student_id,
            StudentCosmeticDB.cosmetic_id == item_id,
        )
        .values(equipped=False)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)  # type: ignore[attr-defined]


async def mark_active(session: AsyncSession, student_id: str, item_id: str) -> int:
    """Promote a pending record to active. Returns rows updated."""
    result = await session.execute(
        update(StudentCosmeticDB)
        .where(
            StudentCosmeticDB.student_id == student_id,
            StudentCosmeticDB.cosmetic_id == item_id,
            StudentCosmeticDB.status == OWNERSHIP_PENDING,
        )
        .values(status=OWNERSHIP_ACTIVE)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)  # type: ignore[attr-defined]


async def revoke_ownership(session: AsyncSession, student_id: str, item_id: str) -> bool:
    """
    Delete a pending record (compensating step of a failed purchase).

    Active records are never deleted. Returns True if a row was removed.
    """
    result = await session.execute(
        delete(StudentCosmeticDB).where(
            StudentCosmeticDB.student_id == student_id,
            StudentCosmeticDB.cosmetic_id == item_id,
            StudentCosmeticDB.status == OWNERSHIP_PENDING,
        )
    )
    return int(result.rowcount) > 0  # type: ignore[attr-defined]


async def list_pending(
    session: AsyncSession, student_id: str | None = None
) -> list[StudentCosmeticDB]:
    """List purchases stuck between ownership grant and ledger confirmation."""
    query = (
        select(StudentCosmeticDB)
        .where(StudentCosmeticDB.status == OWNERSHIP_PENDING)
        .options(selectinload(StudentCosmeticDB.cosmetic))
        .order_by(StudentCosmeticDB.id)
        .execution_options(populate_existing=True)
    )
    if student_id is not None:
        query = query.where(StudentCosmeticDB.student_id == student_id)
    result = await session.execute(query)
    return list(result.scalars().all())


def ownership_to_model(record: StudentCosmeticDB) -> OwnershipRecord:
    """Convert a database ownership record to a domain model."""
    return OwnershipRecord(
        student_id=record.student_id,
        item_id=record.cosmetic_id,
        category=record.cosmetic.category,
        equipped=record.equipped,
        status=record.status,
    )


# --- Ledger Operations ---


async def get_balance(session: AsyncSession, user_id: str) -> int:
    """Current balance for a user. Users without a balance row have 0."""
    result = await session.execute(
        select(PointsBalanceDB.balance).where(PointsBalanceDB.user_id == user_id)
    )
    balance = result.scalar_one_or_none()
    return int(balance) if balance is not None else 0


async def find_ledger_entry(
    session: AsyncSession, idempotency_key: str
) -> PointsLedgerEntryDB | None:
    result = await session.execute(
        select(PointsLedgerEntryDB).where(PointsLedgerEntryDB.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def grant_points(
    session: AsyncSession,
    user_id: str,
    amount: int,
    reason: str,
    idempotency_key: str | None = None,
) -> int:
    """
    Credit points to a user and return the new balance.

    Earning rules live outside this service; this is the seeding primitive.
    """
    if amount < 0:
        msg = f"Grant amount must be non-negative, got {amount}"
        raise ValueError(msg)

    result = await session.execute(
        update(PointsBalanceDB)
        .where(PointsBalanceDB.user_id == user_id)
        .values(balance=PointsBalanceDB.balance + amount)
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount) == 0:  # type: ignore[attr-defined]
        session.add(PointsBalanceDB(user_id=user_id, balance=amount))
        await session.flush()

    balance_after = await get_balance(session, user_id)
    session.add(
        PointsLedgerEntryDB(
            user_id=user_id,
            delta=amount,
            reason=reason,
            idempotency_key=idempotency_key,
            balance_after=balance_after,
        )
    )
    await session.flush()
    return balance_after


async def deduct_points(
    session: AsyncSession,
    user_id: str,
    amount: int,
    reason: str,
    idempotency_key: str | None = None,
) -> int:
    """
    Deduct points if the balance covers them and return the new balance.

    The check and the decrement are one conditional UPDATE, so concurrent
    deductions serialize on the row and the balance never goes negative.
    A key that was already applied returns the recorded balance without
    deducting again.

    Raises:
        InsufficientFundsError: balance < amount; nothing was changed.
    """
    if amount < 0:
        msg = f"Deduct amount must be non-negative, got {amount}"
        raise ValueError(msg)

    if idempotency_key is not None:
        applied = await find_ledger_entry(session, idempotency_key)
        if applied is not None:
            return applied.balance_after

    if amount == 0:
        return await get_balance(session, user_id)

    result = await session.execute(
        update(PointsBalanceDB)
        .where(PointsBalanceDB.user_id == user_id, PointsBalanceDB.balance >= amount)
        .values(balance=PointsBalanceDB.balance - amount)
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount) == 0:  # type: ignore[attr-defined]
        raise InsufficientFundsError(balance=await get_balance(session, user_id), cost=amount)

    balance_after = await get_balance(session, user_id)
    session.add(
        PointsLedgerEntryDB(
            user_id=user_id,
            delta=-amount,
            reason=reason,
            idempotency_key=idempotency_key,
            balance_after=balance_after,
        )
    )
    await session.flush()
    return balance_after

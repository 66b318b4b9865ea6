"""
SQLAlchemy ORM models for persistent storage.

Table names match the hosted backend the dashboard already uses
(`cosmetics`, `student_cosmetics`, `students`) plus the points ledger.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

OWNERSHIP_ACTIVE = "active"
OWNERSHIP_PENDING = "pending"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CosmeticDB(Base):
    """
    A purchasable cosmetic item.

    Read-only from the redemption engine's point of view.
    """

    __tablename__ = "cosmetics"
    __table_args__ = (CheckConstraint("cost_points >= 0", name="ck_cosmetic_cost_non_negative"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    # The hosted schema calls this column "type"
    category: Mapped[str] = mapped_column("type", String(50), index=True)
    cost_points: Mapped[int] = mapped_column(Integer)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CosmeticDB(id={self.id}, category={self.category}, cost={self.cost_points})>"


class StudentDB(Base):
    """
    A student profile.

    Only the link to the user identity matters here: the points ledger
    is keyed by user_id, ownership is keyed by student id.
    """

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), unique=True, index=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255), default="")

    def __repr__(self) -> str:
        return f"<StudentDB(id={self.id}, user_id={self.user_id})>"


class StudentCosmeticDB(Base):
    """
    Ownership record: one row per (student, cosmetic).

    status is "active" for settled purchases and "pending" while a
    remote-ledger purchase is between its two writes.
    """

    __tablename__ = "student_cosmetics"
    __table_args__ = (UniqueConstraint("student_id", "cosmetic_id", name="uq_student_cosmetic"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("students.id", ondelete="CASCADE"), index=True
    )
    cosmetic_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("cosmetics.id", ondelete="RESTRICT"), index=True
    )
    equipped: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default=OWNERSHIP_ACTIVE, index=True)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    cosmetic: Mapped["CosmeticDB"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<StudentCosmeticDB(student={self.student_id}, cosmetic={self.cosmetic_id}, "
            f"equipped={self.equipped}, status={self.status})>"
        )


class PointsBalanceDB(Base):
    """Spendable balance per user. Never negative."""

    __tablename__ = "points_balances"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_balance_non_negative"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PointsBalanceDB(user_id={self.user_id}, balance={self.balance})>"


class PointsLedgerEntryDB(Base):
    """
    Append-only record of every balance change.

    idempotency_key makes a retried deduction a no-op.
    """

    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    delta: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(255))
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<PointsLedgerEntryDB(user_id={self.user_id}, delta={self.delta})>"

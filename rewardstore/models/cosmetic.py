from dataclasses import dataclass, field


@dataclass(frozen=True)
class CosmeticItem:
    """
    A catalog entry.

    cost is a non-negative point amount. Only active items are offered.
    """

    id: str
    name: str
    category: str
    cost: int
    active: bool = True
    image_url: str | None = None

    def __post_init__(self) -> None:
        if self.cost < 0:
            raise ValueError(f"Cosmetic '{self.id}' has negative cost {self.cost}")


@dataclass
class OwnershipRecord:
    """A student's ownership of one item, with its equip flag."""

    student_id: str
    item_id: str
    category: str
    equipped: bool = False
    status: str = "active"


@dataclass
class PurchaseReceipt:
    """Result of a successful purchase: the new record and the balance after paying."""

    record: OwnershipRecord
    balance: int


@dataclass
class RewardState:
    """
    Authoritative reward state for one student.

    This is what clients reconcile their local projection against.
    """

    student_id: str
    balance: int
    owned: list[OwnershipRecord] = field(default_factory=list)

    def equipped_by_category(self) -> dict[str, str]:
        """Map each category to its equipped item id."""
        return {r.category: r.item_id for r in self.owned if r.equipped}

    def owns(self, item_id: str) -> bool:
        return any(r.item_id == item_id for r in self.owned)


@dataclass
class ReconcileReport:
    """Outcome of a pass over pending purchases."""

    settled: list[OwnershipRecord] = field(default_factory=list)
    revoked: list[OwnershipRecord] = field(default_factory=list)
    still_pending: list[OwnershipRecord] = field(default_factory=list)

from rewardstore.db.database import get_session, init_db
from rewardstore.db.operations import (
    cosmetic_to_model,
    create_student,
    deduct_points,
    get_balance,
    get_item,
    get_ownership,
    get_student,
    grant_points,
    insert_if_absent,
    ledger_account,
    list_active_items,
    list_by_student,
    list_pending,
    mark_active,
    ownership_to_model,
    revoke_ownership,
    set_equipped_exclusive,
    set_unequipped,
    upsert_cosmetic,
)

__all__ = [
    "cosmetic_to_model",
    "create_student",
    "deduct_points",
    "get_balance",
    "get_item",
    "get_ownership",
    "get_session",
    "get_student",
    "grant_points",
    "init_db",
    "insert_if_absent",
    "ledger_account",
    "list_active_items",
    "list_by_student",
    "list_pending",
    "mark_active",
    "ownership_to_model",
    "revoke_ownership",
    "set_equipped_exclusive",
    "set_unequipped",
    "upsert_cosmetic",
]

from rewardstore.api.admin import router as admin_router
from rewardstore.api.catalog import router as catalog_router
from rewardstore.api.health import router as health_router
from rewardstore.api.rewards import router as rewards_router

__all__ = [
    "admin_router",
    "catalog_router",
    "health_router",
    "rewards_router",
]

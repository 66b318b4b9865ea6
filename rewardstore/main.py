import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rewardstore.api import (
    admin_router,
    catalog_router,
    health_router,
    rewards_router,
)
from rewardstore.api.error_handlers import register_error_handlers
from rewardstore.config import settings
from rewardstore.db.database import init_db
from rewardstore.observability import setup_logging
from rewardstore.services.redemption import reset_redemption_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and create tables on startup; drop the shared engine on shutdown."""
    setup_logging(settings.log_level, settings.log_format)
    await init_db()
    logger.info(
        "RewardStore started",
        extra={"ledger_mode": settings.ledger_mode},
    )
    yield
    reset_redemption_engine()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("rewardstore"),
    lifespan=lifespan,
)

app.include_router(catalog_router)
app.include_router(rewards_router)
app.include_router(admin_router)
app.include_router(health_router)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

"""
Catalog API endpoints.

Lists the cosmetic items currently offered in the store.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardstore.db import cosmetic_to_model, list_active_items
from rewardstore.db.database import get_session
from rewardstore.models.cosmetic import CosmeticItem

router = APIRouter(prefix="/catalog", tags=["catalog"])


class CatalogItemResponse(BaseModel):
    """One purchasable item."""

    id: str
    name: str
    category: str = Field(..., description="Equip exclusivity applies within a category")
    cost: int = Field(..., ge=0, description="Price in points")
    image_url: str | None = Field(default=None, description="Display asset, if any")


class CatalogResponse(BaseModel):
    """Response model for the active catalog."""

    items: list[CatalogItemResponse] = Field(default_factory=list)
    total: int = 0


def item_to_response(item: CosmeticItem) -> CatalogItemResponse:
    return CatalogItemResponse(
        id=item.id,
        name=item.name,
        category=item.category,
        cost=item.cost,
        image_url=item.image_url,
    )


@router.get("", response_model=CatalogResponse)
async def get_catalog(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CatalogResponse:
    """
    List active catalog items.

    Inactive items are never offered.
    """
    db_items = await list_active_items(session)
    items = [item_to_response(cosmetic_to_model(db_item)) for db_item in db_items]
    return CatalogResponse(items=items, total=len(items))

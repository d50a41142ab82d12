"""Catalog wallpaper listing, purchase and owned download routes."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.wallpaper import Wallpaper
from routers.dependencies import AuthContext, commerce_http_error, get_auth_context, get_runtime, rate_limit
from services.commerce import get_owned_original, purchase_wallpaper
from services.errors import CommerceError
from services.materializer import IMAGE_CONTENT_TYPE
from services.runtime import Runtime

router = APIRouter()
logger = logging.getLogger(__name__)


class WallpaperResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    style: Optional[str] = None
    tags: List[str] = []
    price: int
    sales_count: int
    thumbnail_path: Optional[str] = None


class PurchaseResponse(BaseModel):
    owned: bool
    already_owned: bool = False
    charged: int = 0
    balance_after: Optional[int] = None


def _serialize_wallpaper(wallpaper: Wallpaper) -> WallpaperResponse:
    return WallpaperResponse(
        id=wallpaper.id,
        title=wallpaper.title,
        description=wallpaper.description,
        category=wallpaper.category,
        style=wallpaper.style,
        tags=list(wallpaper.tags or []),
        price=int(wallpaper.price or 1),
        sales_count=int(wallpaper.sales_count or 0),
        thumbnail_path=wallpaper.thumbnail_path,
    )


@router.get("", response_model=List[WallpaperResponse])
async def list_wallpapers(
    category: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Wallpaper).where(Wallpaper.is_active.is_(True))
    if category:
        stmt = stmt.where(Wallpaper.category == category)
    result = await db.execute(stmt.order_by(Wallpaper.created_at.desc()).limit(limit))
    return [_serialize_wallpaper(wallpaper) for wallpaper in result.scalars().all()]


@router.post("/{wallpaper_id}/purchase", response_model=PurchaseResponse)
async def purchase(
    wallpaper_id: str,
    _rate_limit: None = Depends(rate_limit("wallpaper_purchase", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await purchase_wallpaper(auth.user_id, db, wallpaper_id)
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Purchase wallpaper error: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to purchase wallpaper") from exc


@router.get("/{wallpaper_id}/original")
async def download_wallpaper(
    wallpaper_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    """Full-resolution wallpaper for owners only."""
    try:
        data = await get_owned_original(
            auth.user_id,
            db,
            runtime.blob_store,
            item_type="wallpaper",
            reference_id=wallpaper_id,
        )
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    return Response(content=data, media_type=IMAGE_CONTENT_TYPE)

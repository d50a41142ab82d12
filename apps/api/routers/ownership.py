"""Ownership listing route."""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.dependencies import AuthContext, get_auth_context
from services.ownership import list_ownership

router = APIRouter()


class OwnershipResponse(BaseModel):
    id: str
    item_type: str
    reference_id: str
    source: str
    created_at: Optional[str] = None


@router.get("", response_model=List[OwnershipResponse])
async def list_owned_items(
    item_type: Optional[Literal["wallpaper", "generation"]] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_ownership(auth.user_id, db, item_type=item_type)

"""Ownership store helpers: at most one record per (user, reference)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.ownership_record import OwnershipRecord


ITEM_TYPES = ("wallpaper", "generation")
OWNERSHIP_SOURCES = ("purchase", "unlock")


async def find_ownership(user_id: str, reference_id: str, db: AsyncSession) -> Optional[OwnershipRecord]:
    result = await db.execute(
        select(OwnershipRecord).where(
            OwnershipRecord.user_id == user_id,
            OwnershipRecord.reference_id == reference_id,
        )
    )
    return result.scalar_one_or_none()


def add_ownership(
    user_id: str,
    db: AsyncSession,
    *,
    item_type: str,
    reference_id: str,
    source: str,
) -> OwnershipRecord:
    """Stage a new ownership row in the caller's transaction.

    Callers check `find_ownership` first; the unique constraint on
    (user_id, reference_id) rejects a concurrent duplicate at commit time.
    """
    if item_type not in ITEM_TYPES:
        raise ValueError(f"Unsupported item type: {item_type}")
    if source not in OWNERSHIP_SOURCES:
        raise ValueError(f"Unsupported ownership source: {source}")
    record = OwnershipRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        item_type=item_type,
        reference_id=reference_id,
        source=source,
    )
    db.add(record)
    return record


async def list_ownership(user_id: str, db: AsyncSession, *, item_type: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = select(OwnershipRecord).where(OwnershipRecord.user_id == user_id)
    if item_type:
        stmt = stmt.where(OwnershipRecord.item_type == item_type)
    result = await db.execute(stmt.order_by(OwnershipRecord.created_at.desc()))
    return [serialize_ownership(record) for record in result.scalars().all()]


def serialize_ownership(record: OwnershipRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "item_type": record.item_type,
        "reference_id": record.reference_id,
        "source": record.source,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }

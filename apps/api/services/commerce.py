"""User-facing commerce operations over the ledger, ownership and job stores.

Each operation either commits all of its writes in one transaction or none
of them: a generation job only exists if its cost was debited, a wallpaper
purchase charges, records ownership and counts the sale together, and a
store receipt credits the account exactly once.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.generation_job import GenerationJob
from models.receipt import Receipt
from models.wallpaper import Wallpaper
from services.blob_store import BlobNotFoundError, BlobStore
from services.errors import (
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ReceiptRejectedError,
)
from services.job_store import JOB_QUEUED, JOB_SUCCEEDED, get_job, serialize_job
from services.ledger import debit_credits, grant_credits
from services.ownership import add_ownership, find_ownership
from services.pricing import ASPECT_DIMENSIONS, PRODUCT_CREDITS, credit_cost_for_aspect, product_type
from services.receipts import STORE_BY_PLATFORM, ReceiptValidator
from services.session_token import create_spend_token

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 1000
DEFAULT_STYLE_PRESET = "realistic"
DEFAULT_CHROMATIC = 1.0


async def request_generation(
    user_id: str,
    db: AsyncSession,
    *,
    prompt: str,
    aspect: str,
    style_preset: Optional[str] = None,
    chromatic: Optional[float] = None,
) -> Dict[str, Any]:
    prompt_text = str(prompt or "").strip()
    if len(prompt_text) < MIN_PROMPT_LENGTH:
        raise InvalidRequestError(f"Prompt must be at least {MIN_PROMPT_LENGTH} characters")
    if len(prompt_text) > MAX_PROMPT_LENGTH:
        raise InvalidRequestError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")
    if aspect not in ASPECT_DIMENSIONS:
        raise InvalidRequestError("Invalid aspect ratio")

    credit_cost = credit_cost_for_aspect(aspect)
    job_id = str(uuid.uuid4())

    entry = await debit_credits(
        user_id,
        db,
        amount=credit_cost,
        reason="generation",
        reference_id=job_id,
        commit=False,
    )
    job = GenerationJob(
        id=job_id,
        user_id=user_id,
        prompt=prompt_text,
        aspect=aspect,
        style_preset=(style_preset or "").strip() or DEFAULT_STYLE_PRESET,
        chromatic=float(chromatic) if chromatic is not None else DEFAULT_CHROMATIC,
        status=JOB_QUEUED,
        credit_cost=credit_cost,
        created_at=datetime.now(timezone.utc),
    )
    db.add(job)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Generation requested: %s by %s - %s credits", job_id, user_id, credit_cost)
    return {
        "job_id": job_id,
        "status": JOB_QUEUED,
        "credit_cost": credit_cost,
        "balance_after": entry.balance_after,
    }


async def get_user_job(user_id: str, db: AsyncSession, job_id: str) -> GenerationJob:
    job = await get_job(db, job_id)
    if not job or job.user_id != user_id:
        raise NotFoundError("Generation not found")
    return job


async def list_user_jobs(user_id: str, db: AsyncSession, *, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(GenerationJob)
        .where(GenerationJob.user_id == user_id)
        .order_by(GenerationJob.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    return [serialize_job(job) for job in result.scalars().all()]


async def purchase_wallpaper(user_id: str, db: AsyncSession, wallpaper_id: str) -> Dict[str, Any]:
    result = await db.execute(select(Wallpaper).where(Wallpaper.id == wallpaper_id))
    wallpaper = result.scalar_one_or_none()
    if not wallpaper or not wallpaper.is_active:
        raise NotFoundError("Wallpaper not found")

    if await find_ownership(user_id, wallpaper_id, db):
        logger.info("Wallpaper already owned: %s", wallpaper_id)
        return {"owned": True, "already_owned": True, "charged": 0}

    price = max(int(wallpaper.price or 1), 1)
    entry = await debit_credits(
        user_id,
        db,
        amount=price,
        reason="unlock",
        reference_id=wallpaper_id,
        commit=False,
    )
    add_ownership(user_id, db, item_type="wallpaper", reference_id=wallpaper_id, source="purchase")
    await db.execute(
        update(Wallpaper)
        .where(Wallpaper.id == wallpaper_id)
        .values(sales_count=Wallpaper.sales_count + 1)
        .execution_options(synchronize_session=False)
    )
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent purchase recorded ownership first; this charge is rolled back with it.
        await db.rollback()
        logger.info("Concurrent purchase of %s by %s resolved as already owned", wallpaper_id, user_id)
        return {"owned": True, "already_owned": True, "charged": 0}
    except Exception:
        await db.rollback()
        raise

    logger.info("Wallpaper purchased: %s by %s", wallpaper_id, user_id)
    return {
        "owned": True,
        "already_owned": False,
        "charged": price,
        "balance_after": entry.balance_after,
    }


async def unlock_generated(user_id: str, db: AsyncSession, job_id: str) -> Dict[str, Any]:
    """Grant ownership of a finished generation; its cost was paid at request time."""
    job = await get_job(db, job_id)
    if not job:
        raise NotFoundError("Generation not found")
    if job.user_id != user_id:
        raise PermissionDeniedError("You don't own this generation")
    if job.status != JOB_SUCCEEDED:
        raise PreconditionFailedError("Generation is not completed")

    if await find_ownership(user_id, job_id, db):
        return {"owned": True, "already_owned": True}

    add_ownership(user_id, db, item_type="generation", reference_id=job_id, source="purchase")
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return {"owned": True, "already_owned": True}

    logger.info("Generation unlocked: %s for %s", job_id, user_id)
    return {"owned": True, "already_owned": False}


async def _find_receipt(user_id: str, transaction_id: str, db: AsyncSession) -> Optional[Receipt]:
    result = await db.execute(
        select(Receipt).where(
            Receipt.user_id == user_id,
            Receipt.transaction_id == transaction_id,
        )
    )
    return result.scalar_one_or_none()


async def validate_receipt(
    user_id: str,
    db: AsyncSession,
    *,
    raw: str,
    platform: str,
    validator: ReceiptValidator,
) -> Dict[str, Any]:
    validation = await validator.validate(raw, platform)
    if not validation.validated or not validation.transaction_id:
        raise ReceiptRejectedError("Receipt validation failed")

    existing = await _find_receipt(user_id, validation.transaction_id, db)
    if existing:
        logger.info("Receipt already processed: %s", validation.transaction_id)
        return {
            "validated": True,
            "credits_granted": int(existing.credits_granted or 0),
            "already_processed": True,
        }

    credits = PRODUCT_CREDITS.get(validation.product_id)
    if credits is None:
        raise InvalidRequestError(f"Unknown product: {validation.product_id or '<empty>'}")

    await grant_credits(
        user_id,
        db,
        amount=credits,
        reason="grant",
        reference_id=validation.transaction_id,
        commit=False,
    )
    db.add(
        Receipt(
            id=str(uuid.uuid4()),
            user_id=user_id,
            store=STORE_BY_PLATFORM.get(platform, platform),
            product_id=validation.product_id,
            product_type=product_type(validation.product_id),
            transaction_id=validation.transaction_id,
            credits_granted=credits,
            raw=raw,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _find_receipt(user_id, validation.transaction_id, db)
        return {
            "validated": True,
            "credits_granted": int(existing.credits_granted or 0) if existing else 0,
            "already_processed": True,
        }
    except Exception:
        await db.rollback()
        raise

    logger.info("Receipt validated for %s: %s credits granted", user_id, credits)
    return {"validated": True, "credits_granted": credits, "already_processed": False}


async def spend_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    entry = await debit_credits(user_id, db, amount=amount, reason=reason, reference_id=reference_id)
    token = create_spend_token(user_id, reason=reason, reference_id=reference_id)
    return {"ok": True, "auth_token": token["token"], "expires_at": token["expires_at"], "balance_after": entry.balance_after}


async def _original_path_for(db: AsyncSession, item_type: str, reference_id: str) -> Optional[str]:
    if item_type == "generation":
        job = await get_job(db, reference_id)
        return job.original_path if job and job.status == JOB_SUCCEEDED else None
    result = await db.execute(select(Wallpaper.original_path).where(Wallpaper.id == reference_id))
    return result.scalar_one_or_none()


async def get_owned_original(
    user_id: str,
    db: AsyncSession,
    blob_store: BlobStore,
    *,
    item_type: str,
    reference_id: str,
) -> bytes:
    """Return unwatermarked bytes, only for items the user owns."""
    record = await find_ownership(user_id, reference_id, db)
    if not record or record.item_type != item_type:
        raise PermissionDeniedError("Purchase or unlock this item first")
    path = await _original_path_for(db, item_type, reference_id)
    if not path:
        raise NotFoundError("Original image not found")
    try:
        return await blob_store.get(path)
    except BlobNotFoundError as exc:
        raise NotFoundError("Original image not found") from exc


async def get_generation_preview(user_id: str, db: AsyncSession, blob_store: BlobStore, job_id: str) -> bytes:
    job = await get_user_job(user_id, db, job_id)
    if job.status != JOB_SUCCEEDED or not job.thumbnail_path:
        raise PreconditionFailedError("Generation is not completed")
    try:
        return await blob_store.get(job.thumbnail_path)
    except BlobNotFoundError as exc:
        raise NotFoundError("Preview image not found") from exc

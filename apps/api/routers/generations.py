"""AI generation request, status polling, unlock and worker trigger routes."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.dependencies import (
    AuthContext,
    commerce_http_error,
    get_auth_context,
    get_runtime,
    rate_limit,
    require_worker_token,
)
from services.commerce import (
    MAX_PROMPT_LENGTH,
    get_generation_preview,
    get_owned_original,
    get_user_job,
    list_user_jobs,
    request_generation,
    unlock_generated,
)
from services.errors import CommerceError
from services.job_store import serialize_job
from services.materializer import IMAGE_CONTENT_TYPE
from services.runtime import Runtime

router = APIRouter()
logger = logging.getLogger(__name__)


class GenerationStyle(BaseModel):
    aspect: str
    style_preset: str
    chromatic: float


class CreateGenerationRequest(BaseModel):
    prompt: str = Field(max_length=MAX_PROMPT_LENGTH)
    aspect: Literal["9:16", "1:1", "2:3"]
    style_preset: Optional[str] = Field(default=None, max_length=64)
    chromatic: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class CreateGenerationResponse(BaseModel):
    job_id: str
    status: str
    credit_cost: int
    balance_after: int


class GenerationJobResponse(BaseModel):
    job_id: str
    user_id: str
    prompt: str
    style: GenerationStyle
    status: str
    credit_cost: int
    original_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class UnlockResponse(BaseModel):
    owned: bool
    already_owned: bool = False


class WorkerRunResponse(BaseModel):
    processed_count: int
    succeeded_count: int
    failed_count: int
    skipped_count: int


@router.post("", response_model=CreateGenerationResponse)
async def create_generation(
    request: CreateGenerationRequest,
    _rate_limit: None = Depends(rate_limit("generation_request", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Charge the generation cost and queue the job for the dispatcher."""
    try:
        return await request_generation(
            auth.user_id,
            db,
            prompt=request.prompt,
            aspect=request.aspect,
            style_preset=request.style_preset,
            chromatic=request.chromatic,
        )
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Request generation error: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to request generation") from exc


@router.get("", response_model=List[GenerationJobResponse])
async def list_generations(
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_user_jobs(auth.user_id, db, limit=limit)


@router.post("/worker/run", response_model=WorkerRunResponse)
async def run_generation_worker(
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    _token: None = Depends(require_worker_token),
    runtime: Runtime = Depends(get_runtime),
):
    """Process one bounded batch of queued generations now."""
    try:
        return await runtime.dispatcher.poll_batch(limit)
    except Exception as exc:
        logger.exception("Generation worker error: %s", exc)
        raise HTTPException(status_code=500, detail="Worker failed") from exc


@router.get("/{job_id}", response_model=GenerationJobResponse)
async def get_generation(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Poll a generation job owned by the caller."""
    try:
        job = await get_user_job(auth.user_id, db, job_id)
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    return serialize_job(job)


@router.post("/{job_id}/unlock", response_model=UnlockResponse)
async def unlock_generation(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await unlock_generated(auth.user_id, db, job_id)
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Unlock generated error: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to unlock generation") from exc


@router.get("/{job_id}/preview")
async def get_generation_preview_image(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    """Watermarked preview; available to the job owner before unlocking."""
    try:
        data = await get_generation_preview(auth.user_id, db, runtime.blob_store, job_id)
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    return Response(content=data, media_type=IMAGE_CONTENT_TYPE)


@router.get("/{job_id}/original")
async def get_generation_original(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        data = await get_owned_original(
            auth.user_id,
            db,
            runtime.blob_store,
            item_type="generation",
            reference_id=job_id,
        )
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    return Response(content=data, media_type=IMAGE_CONTENT_TYPE)

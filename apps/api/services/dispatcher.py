"""Polling dispatcher that drives queued generation jobs to a terminal state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from models.generation_job import GenerationJob
from services.job_store import (
    JOB_FAILED,
    JOB_SUCCEEDED,
    claim_job,
    complete_job,
    fail_job,
    list_queued_jobs,
    list_stalled_jobs,
)
from services.ledger import grant_credits
from services.materializer import ImageMaterializer, generation_storage_paths
from services.pricing import resolve_dimensions
from services.providers import BaseImageProvider, GenerationRequest, ImageProviderError, get_image_provider

logger = logging.getLogger(__name__)

OUTCOME_SKIPPED = "skipped"


class GenerationDispatcher:
    """Selects a bounded batch of queued jobs and processes them concurrently.

    A job is only processed by the dispatcher that wins its queued -> running
    transition. Failures are recorded on the job and never raised to callers.
    Credits charged for a failed job are forfeit unless `refund_failed` is set.

    The image provider is resolved once here and reused for every job. A
    provider that cannot be resolved fails each claimed job with that error
    without making any request.
    """

    def __init__(
        self,
        *,
        session_maker: async_sessionmaker,
        materializer: ImageMaterializer,
        http_client: httpx.AsyncClient,
        provider_kind: str,
        api_key: str,
        refund_failed: bool = False,
        batch_size: int = 5,
    ) -> None:
        self.session_maker = session_maker
        self.materializer = materializer
        self.http_client = http_client
        self.provider_kind = provider_kind
        self.refund_failed = refund_failed
        self.batch_size = max(int(batch_size), 1)
        self.provider: Optional[BaseImageProvider] = None
        self.provider_error: Optional[str] = None
        try:
            self.provider = get_image_provider(provider_kind, api_key, http_client=http_client)
        except ImageProviderError as exc:
            self.provider_error = str(exc)
            logger.error("Image provider unavailable; queued generations will fail: %s", exc)

    async def aclose(self) -> None:
        if self.provider is not None:
            await self.provider.aclose()

    async def poll_batch(self, limit: Optional[int] = None) -> Dict[str, Any]:
        batch_limit = max(int(limit if limit is not None else self.batch_size), 0)
        async with self.session_maker() as db:
            jobs = await list_queued_jobs(db, batch_limit)

        summary = {
            "processed_count": len(jobs),
            "succeeded_count": 0,
            "failed_count": 0,
            "skipped_count": 0,
        }
        if not jobs:
            return summary

        outcomes = await asyncio.gather(*(self.process_job(job) for job in jobs))
        for outcome in outcomes:
            summary[f"{outcome}_count"] += 1
        logger.info(
            "Generation batch processed=%s succeeded=%s failed=%s skipped=%s",
            summary["processed_count"],
            summary["succeeded_count"],
            summary["failed_count"],
            summary["skipped_count"],
        )
        return summary

    async def process_job(self, job: GenerationJob) -> str:
        try:
            async with self.session_maker() as db:
                claimed = await claim_job(db, job.id)
        except Exception:
            logger.exception("Could not claim generation %s; leaving it queued", job.id)
            return OUTCOME_SKIPPED
        if not claimed:
            logger.info("Generation %s already claimed by another worker", job.id)
            return OUTCOME_SKIPPED

        if self.provider is None:
            logger.error("Generation %s failed: %s", job.id, self.provider_error)
            await self._mark_failed(job, self.provider_error or "AI provider unavailable")
            return JOB_FAILED

        try:
            width, height = resolve_dimensions(job.aspect)
            logger.info("Generating %sx%s image with %s", width, height, self.provider.provider_kind)
            handle = await self.provider.generate(
                GenerationRequest(prompt=job.prompt, width=width, height=height, style_preset=job.style_preset)
            )
            original_path, thumbnail_path = generation_storage_paths(job.user_id, job.id)
            await self.materializer.persist_original(handle, original_path)
            await self.materializer.persist_watermarked_derivative(original_path, thumbnail_path)
            async with self.session_maker() as db:
                completed = await complete_job(
                    db,
                    job.id,
                    original_path=original_path,
                    thumbnail_path=thumbnail_path,
                )
        except Exception as exc:
            logger.exception("Generation %s failed: %s", job.id, exc)
            await self._mark_failed(job, str(exc) or exc.__class__.__name__)
            return JOB_FAILED

        if not completed:
            # Stalled-job recovery or another worker already finalized it.
            logger.warning("Generation %s left running state before completion; result discarded", job.id)
            return OUTCOME_SKIPPED

        logger.info("Generation completed: %s", job.id)
        return JOB_SUCCEEDED

    async def _mark_failed(self, job: GenerationJob, error: str) -> None:
        try:
            async with self.session_maker() as db:
                if not self.refund_failed:
                    await fail_job(db, job.id, error)
                    return
                try:
                    if await fail_job(db, job.id, error, commit=False):
                        await grant_credits(
                            job.user_id,
                            db,
                            amount=int(job.credit_cost),
                            reason="refund",
                            reference_id=job.id,
                        )
                        logger.info("Refunded %s credits for failed generation %s", job.credit_cost, job.id)
                    else:
                        await db.commit()
                except Exception:
                    logger.exception("Refund for generation %s failed; recording failure only", job.id)
                    await fail_job(db, job.id, error)
        except Exception:
            logger.exception("Could not record failure for generation %s", job.id)

    async def recover_stalled(self, max_age_minutes: int) -> int:
        """Fail jobs left running by an interrupted worker; returns how many were recovered."""
        async with self.session_maker() as db:
            stalled = await list_stalled_jobs(db, max_age_minutes)
        for job in stalled:
            await self._mark_failed(job, "Generation was interrupted before completion.")
        return len(stalled)


async def run_dispatch_loop(dispatcher: GenerationDispatcher, interval_seconds: int) -> None:
    """Poll forever on a fixed interval; each tick processes one bounded batch."""
    interval = max(int(interval_seconds), 1)
    while True:
        try:
            await dispatcher.poll_batch()
        except Exception as exc:
            logger.warning("Generation worker tick failed: %s", exc)
        await asyncio.sleep(interval)


def build_dispatcher(
    *,
    session_maker: async_sessionmaker,
    materializer: ImageMaterializer,
    http_client: httpx.AsyncClient,
) -> GenerationDispatcher:
    return GenerationDispatcher(
        session_maker=session_maker,
        materializer=materializer,
        http_client=http_client,
        provider_kind=settings.AI_PROVIDER,
        api_key=settings.AI_PROVIDER_API_KEY,
        refund_failed=settings.REFUND_FAILED_GENERATIONS,
        batch_size=settings.GENERATION_BATCH_SIZE,
    )

import asyncio
import io
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image
from sqlalchemy.future import select

from config import settings
from main import app
from models.credit_audit import CreditAuditEntry
from models.generation_job import GenerationJob
from services.dispatcher import GenerationDispatcher
from services.job_store import (
    JOB_FAILED,
    JOB_QUEUED,
    JOB_RUNNING,
    JOB_SUCCEEDED,
    claim_job,
    fail_job,
    list_queued_jobs,
)
from services.ledger import get_credit_balance
from services.pricing import credit_cost_for_aspect, credit_cost_for_pixels
from services.providers import BaseImageProvider, ImageHandle
from services.session_token import create_session_token


GEN_USER_ID = "generation-user"
OTHER_USER_ID = "generation-other"
GEN_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(GEN_USER_ID)['token']}"}
OTHER_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(OTHER_USER_ID)['token']}"}


def _dispatcher(runtime, session_maker, **overrides):
    options = {
        "session_maker": session_maker,
        "materializer": runtime.materializer,
        "http_client": runtime.http_client,
        "provider_kind": "stability",
        "api_key": "test-stability-key",
    }
    options.update(overrides)
    return GenerationDispatcher(**options)


async def _insert_job(session_maker, job_id, *, status=JOB_QUEUED, created_at=None, started_at=None, cost=2):
    async with session_maker() as db:
        db.add(
            GenerationJob(
                id=job_id,
                user_id=GEN_USER_ID,
                prompt=f"prompt for {job_id}",
                aspect="2:3",
                style_preset="realistic",
                chromatic=1.0,
                status=status,
                credit_cost=cost,
                created_at=created_at or datetime.now(timezone.utc),
                started_at=started_at,
            )
        )
        await db.commit()


async def _job(session_maker, job_id):
    async with session_maker() as db:
        return (await db.execute(select(GenerationJob).where(GenerationJob.id == job_id))).scalar_one()


async def _balance(session_maker, user_id):
    async with session_maker() as db:
        return await get_credit_balance(user_id, db)


def test_generation_cost_tiers():
    assert credit_cost_for_aspect("1:1") == 1
    assert credit_cost_for_aspect("9:16") == 2
    assert credit_cost_for_aspect("2:3") == 2
    assert credit_cost_for_pixels(1024, 2048) == 2
    assert credit_cost_for_pixels(2048, 2048) == 3


@pytest.mark.asyncio
async def test_request_dispatch_preview_and_unlock_flow(api_client, create_account, upstream, session_maker):
    await create_account(GEN_USER_ID, credits=5)

    created = await api_client.post(
        "/generations",
        json={"prompt": "  neon city skyline at dusk  ", "aspect": "2:3", "style_preset": "cinematic"},
        headers=GEN_AUTH_HEADER,
    )
    assert created.status_code == 200
    payload = created.json()
    assert payload["status"] == "queued"
    assert payload["credit_cost"] == 2
    assert payload["balance_after"] == 3
    job_id = payload["job_id"]

    queued = await api_client.get(f"/generations/{job_id}", headers=GEN_AUTH_HEADER)
    assert queued.json()["status"] == "queued"
    assert queued.json()["prompt"] == "neon city skyline at dusk"
    assert queued.json()["style"] == {"aspect": "2:3", "style_preset": "cinematic", "chromatic": 1.0}

    run = await api_client.post("/generations/worker/run")
    assert run.status_code == 200
    assert run.json() == {"processed_count": 1, "succeeded_count": 1, "failed_count": 0, "skipped_count": 0}

    stability_calls = upstream.host_requests("api.stability.ai")
    assert len(stability_calls) == 1
    assert stability_calls[0].headers["Authorization"] == "Bearer test-stability-key"
    sent = json.loads(stability_calls[0].content)
    assert (sent["width"], sent["height"]) == (1024, 1536)
    assert sent["text_prompts"][0]["text"] == "neon city skyline at dusk"
    assert sent["style_preset"] == "cinematic"

    done = await api_client.get(f"/generations/{job_id}", headers=GEN_AUTH_HEADER)
    body = done.json()
    assert body["status"] == "succeeded"
    assert body["original_path"] == f"protected/users/{GEN_USER_ID}/generations/{job_id}/full.jpg"
    assert body["thumbnail_path"] == f"protected/users/{GEN_USER_ID}/generations/{job_id}/thumb.jpg"
    assert body["completed_at"]

    preview = await api_client.get(f"/generations/{job_id}/preview", headers=GEN_AUTH_HEADER)
    assert preview.status_code == 200
    assert preview.headers["content-type"] == "image/jpeg"
    assert Image.open(io.BytesIO(preview.content)).size == (540, 960)

    locked = await api_client.get(f"/generations/{job_id}/original", headers=GEN_AUTH_HEADER)
    assert locked.status_code == 403

    unlock = await api_client.post(f"/generations/{job_id}/unlock", headers=GEN_AUTH_HEADER)
    assert unlock.status_code == 200
    assert unlock.json() == {"owned": True, "already_owned": False}

    again = await api_client.post(f"/generations/{job_id}/unlock", headers=GEN_AUTH_HEADER)
    assert again.json() == {"owned": True, "already_owned": True}

    original = await api_client.get(f"/generations/{job_id}/original", headers=GEN_AUTH_HEADER)
    assert original.status_code == 200
    assert original.content == upstream.image

    # Unlocking a generation never charges a second time.
    assert await _balance(session_maker, GEN_USER_ID) == 3

    listed = await api_client.get("/generations", headers=GEN_AUTH_HEADER)
    assert [item["job_id"] for item in listed.json()] == [job_id]
    owned = await api_client.get("/ownership", params={"item_type": "generation"}, headers=GEN_AUTH_HEADER)
    assert [item["reference_id"] for item in owned.json()] == [job_id]


@pytest.mark.asyncio
async def test_request_without_enough_credits_creates_no_job(api_client, create_account, session_maker):
    await create_account(GEN_USER_ID, credits=0)

    response = await api_client.post(
        "/generations",
        json={"prompt": "a quiet forest lake", "aspect": "9:16"},
        headers=GEN_AUTH_HEADER,
    )
    assert response.status_code == 402
    assert "Insufficient credits" in response.json()["detail"]

    async with session_maker() as db:
        jobs = (await db.execute(select(GenerationJob))).scalars().all()
        entries = (await db.execute(select(CreditAuditEntry))).scalars().all()
    assert jobs == []
    assert entries == []


@pytest.mark.asyncio
async def test_request_validation_errors(api_client, create_account, session_maker):
    await create_account(GEN_USER_ID, credits=5)

    short = await api_client.post("/generations", json={"prompt": " a ", "aspect": "1:1"}, headers=GEN_AUTH_HEADER)
    assert short.status_code == 422
    bad_aspect = await api_client.post("/generations", json={"prompt": "mountains", "aspect": "4:3"}, headers=GEN_AUTH_HEADER)
    assert bad_aspect.status_code == 422
    anonymous = await api_client.post("/generations", json={"prompt": "mountains", "aspect": "1:1"})
    assert anonymous.status_code == 401

    assert await _balance(session_maker, GEN_USER_ID) == 5


@pytest.mark.asyncio
async def test_jobs_are_private_to_their_owner(api_client, create_account):
    await create_account(GEN_USER_ID, credits=5)
    await create_account(OTHER_USER_ID, credits=5)

    created = await api_client.post(
        "/generations",
        json={"prompt": "desert dunes at noon", "aspect": "1:1"},
        headers=GEN_AUTH_HEADER,
    )
    job_id = created.json()["job_id"]

    peek = await api_client.get(f"/generations/{job_id}", headers=OTHER_AUTH_HEADER)
    assert peek.status_code == 404
    preview = await api_client.get(f"/generations/{job_id}/preview", headers=OTHER_AUTH_HEADER)
    assert preview.status_code == 404
    unlock = await api_client.post(f"/generations/{job_id}/unlock", headers=OTHER_AUTH_HEADER)
    assert unlock.status_code == 403


@pytest.mark.asyncio
async def test_unlock_requires_a_succeeded_job(api_client, create_account):
    await create_account(GEN_USER_ID, credits=5)

    created = await api_client.post(
        "/generations",
        json={"prompt": "aurora over fjords", "aspect": "9:16"},
        headers=GEN_AUTH_HEADER,
    )
    job_id = created.json()["job_id"]

    pending = await api_client.post(f"/generations/{job_id}/unlock", headers=GEN_AUTH_HEADER)
    assert pending.status_code == 409
    preview = await api_client.get(f"/generations/{job_id}/preview", headers=GEN_AUTH_HEADER)
    assert preview.status_code == 409
    missing = await api_client.post("/generations/does-not-exist/unlock", headers=GEN_AUTH_HEADER)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_unknown_provider_fails_job_without_network_call(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=5)
    await _insert_job(session_maker, "job-unknown-provider")
    dispatcher = _dispatcher(wpv_runtime, session_maker, provider_kind="unknown")

    summary = await dispatcher.poll_batch()

    assert summary == {"processed_count": 1, "succeeded_count": 0, "failed_count": 1, "skipped_count": 0}
    job = await _job(session_maker, "job-unknown-provider")
    assert job.status == JOB_FAILED
    assert job.error == "Unknown AI provider: unknown"
    assert job.completed_at is not None
    assert upstream.requests == []
    # Without the refund policy a failed generation keeps its charge.
    assert await _balance(session_maker, GEN_USER_ID) == 5


@pytest.mark.asyncio
async def test_empty_provider_result_fails_job(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=5)
    await _insert_job(session_maker, "job-empty")
    upstream.stability_body = {"artifacts": []}

    summary = await wpv_runtime.dispatcher.poll_batch()

    assert summary["failed_count"] == 1
    job = await _job(session_maker, "job-empty")
    assert job.status == JOB_FAILED
    assert job.error == "No image generated"
    assert job.original_path is None


@pytest.mark.asyncio
async def test_failed_generation_is_refunded_when_enabled(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=1)
    await _insert_job(session_maker, "job-refund", cost=2)
    upstream.stability_status = 500
    dispatcher = _dispatcher(wpv_runtime, session_maker, refund_failed=True)

    summary = await dispatcher.poll_batch()

    assert summary["failed_count"] == 1
    job = await _job(session_maker, "job-refund")
    assert job.status == JOB_FAILED
    assert "500" in job.error
    assert await _balance(session_maker, GEN_USER_ID) == 3
    async with session_maker() as db:
        refund = (
            await db.execute(select(CreditAuditEntry).where(CreditAuditEntry.reason == "refund"))
        ).scalar_one()
    assert refund.amount == 2
    assert refund.reference_id == "job-refund"


@pytest.mark.asyncio
async def test_already_claimed_job_is_skipped(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=5)
    await _insert_job(session_maker, "job-claimed")
    job = await _job(session_maker, "job-claimed")
    async with session_maker() as db:
        assert await claim_job(db, "job-claimed") is True
        assert await claim_job(db, "job-claimed") is False

    outcome = await wpv_runtime.dispatcher.process_job(job)

    assert outcome == "skipped"
    assert upstream.host_requests("api.stability.ai") == []
    assert (await _job(session_maker, "job-claimed")).status == JOB_RUNNING


@pytest.mark.asyncio
async def test_concurrent_dispatchers_process_each_job_once(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=5)
    await _insert_job(session_maker, "job-contended")
    first = _dispatcher(wpv_runtime, session_maker)
    second = _dispatcher(wpv_runtime, session_maker)

    summaries = await asyncio.gather(first.poll_batch(), second.poll_batch())

    assert sum(summary["succeeded_count"] for summary in summaries) == 1
    assert sum(summary["failed_count"] for summary in summaries) == 0
    assert len(upstream.host_requests("api.stability.ai")) == 1
    assert (await _job(session_maker, "job-contended")).status == JOB_SUCCEEDED


@pytest.mark.asyncio
async def test_batches_take_oldest_queued_jobs_first(wpv_runtime, session_maker, create_account):
    await create_account(GEN_USER_ID, credits=5)
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for offset, job_id in enumerate(["job-c", "job-a", "job-b"]):
        await _insert_job(session_maker, job_id, created_at=base + timedelta(minutes=[2, 0, 1][offset]))

    async with session_maker() as db:
        assert [job.id for job in await list_queued_jobs(db, 10)] == ["job-a", "job-b", "job-c"]

    summary = await wpv_runtime.dispatcher.poll_batch(limit=2)

    assert summary["succeeded_count"] == 2
    assert (await _job(session_maker, "job-a")).status == JOB_SUCCEEDED
    assert (await _job(session_maker, "job-b")).status == JOB_SUCCEEDED
    assert (await _job(session_maker, "job-c")).status == JOB_QUEUED


@pytest.mark.asyncio
async def test_stalled_running_jobs_are_failed_on_recovery(wpv_runtime, session_maker, create_account):
    await create_account(GEN_USER_ID, credits=0)
    now = datetime.now(timezone.utc)
    await _insert_job(session_maker, "job-stalled", status=JOB_RUNNING, started_at=now - timedelta(hours=2))
    await _insert_job(session_maker, "job-fresh", status=JOB_RUNNING, started_at=now)
    dispatcher = _dispatcher(wpv_runtime, session_maker, refund_failed=True)

    recovered = await dispatcher.recover_stalled(30)

    assert recovered == 1
    stalled = await _job(session_maker, "job-stalled")
    assert stalled.status == JOB_FAILED
    assert stalled.error == "Generation was interrupted before completion."
    assert (await _job(session_maker, "job-fresh")).status == JOB_RUNNING
    assert await _balance(session_maker, GEN_USER_ID) == 2


@pytest.mark.asyncio
async def test_worker_trigger_requires_configured_token(api_client):
    with patch.object(settings, "WORKER_TRIGGER_TOKEN", "worker-secret"):
        denied = await api_client.post("/generations/worker/run")
        assert denied.status_code == 403
        allowed = await api_client.post("/generations/worker/run", headers={"X-Worker-Token": "worker-secret"})
        assert allowed.status_code == 200
        assert allowed.json()["processed_count"] == 0


class _RecoveredDuringGeneration(BaseImageProvider):
    """Provider whose job is failed by stalled-job recovery while the image renders."""

    provider_kind = "stability"

    def __init__(self, session_maker, image):
        self.session_maker = session_maker
        self.image = image
        self.calls = 0

    async def generate(self, request):
        self.calls += 1
        async with self.session_maker() as db:
            await fail_job(db, "job-recovered", "Generation was interrupted before completion.")
        return ImageHandle.inline(self.image)


@pytest.mark.asyncio
async def test_openai_client_is_created_once_per_dispatcher(wpv_runtime, session_maker, create_account, upstream):
    await create_account(GEN_USER_ID, credits=10)
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for index in range(3):
        await _insert_job(session_maker, f"job-openai-{index}", created_at=base + timedelta(minutes=index))
    image_url = "https://images.example.com/openai/out.jpg"
    upstream.remote_images[image_url] = upstream.image

    openai_client = MagicMock()
    openai_client.images.generate.return_value = SimpleNamespace(
        data=[SimpleNamespace(url=image_url, b64_json=None)]
    )
    with patch("services.providers.providers.OpenAI", return_value=openai_client) as openai_cls:
        dispatcher = _dispatcher(wpv_runtime, session_maker, provider_kind="openai", api_key="sk-openai-test")
        summary = await dispatcher.poll_batch()
        assert openai_cls.call_count == 1
        openai_client.close.assert_not_called()

        await dispatcher.aclose()

    assert summary == {"processed_count": 3, "succeeded_count": 3, "failed_count": 0, "skipped_count": 0}
    assert openai_client.images.generate.call_count == 3
    openai_client.close.assert_called_once_with()
    for index in range(3):
        assert (await _job(session_maker, f"job-openai-{index}")).status == JOB_SUCCEEDED


@pytest.mark.asyncio
async def test_job_failed_by_recovery_mid_generation_is_reported_skipped(
    wpv_runtime, session_maker, create_account, upstream
):
    await create_account(GEN_USER_ID, credits=5)
    await _insert_job(session_maker, "job-recovered")
    dispatcher = _dispatcher(wpv_runtime, session_maker)
    dispatcher.provider = _RecoveredDuringGeneration(session_maker, upstream.image)

    summary = await dispatcher.poll_batch()

    assert dispatcher.provider.calls == 1
    assert summary == {"processed_count": 1, "succeeded_count": 0, "failed_count": 0, "skipped_count": 1}
    job = await _job(session_maker, "job-recovered")
    assert job.status == JOB_FAILED
    assert job.error == "Generation was interrupted before completion."
    assert job.original_path is None


@pytest.mark.asyncio
async def test_generation_requests_are_rate_limited_per_client_address(api_client, create_account):
    await create_account(GEN_USER_ID, credits=0)
    app.state.disable_rate_limits = False

    statuses = []
    with patch("routers.dependencies.redis.from_url", side_effect=ConnectionError("redis unavailable")):
        for index in range(61):
            response = await api_client.post(
                "/generations",
                json={"prompt": "a quiet forest lake", "aspect": "9:16"},
                headers={**GEN_AUTH_HEADER, "X-Forwarded-For": f"10.0.0.{index}"},
            )
            statuses.append(response.status_code)

    # A rotating forwarded-for header does not reset the per-client quota.
    assert statuses[:60] == [402] * 60
    assert statuses[60] == 429

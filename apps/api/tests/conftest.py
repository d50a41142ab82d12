import base64
import io

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.account import Account
from models.user import User
from routers import dependencies
from services.blob_store import LocalBlobStore
from services.dispatcher import GenerationDispatcher
from services.runtime import build_runtime

STABILITY_TEST_KEY = "test-stability-key"


def make_jpeg(size=(1024, 1536), color=(20, 40, 120)) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", size, color).save(output, format="JPEG")
    return output.getvalue()


class FakeUpstream:
    """Routes outbound httpx calls to canned provider and store responses."""

    def __init__(self):
        self.image = make_jpeg()
        self.requests = []
        self.stability_status = 200
        self.stability_body = None
        self.apple_body = {"status": 21003}
        self.remote_images = {}

    def host_requests(self, host):
        return [request for request in self.requests if request.url.host == host]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "api.stability.ai":
            body = self.stability_body
            if body is None:
                body = {"artifacts": [{"base64": base64.b64encode(self.image).decode("ascii")}]}
            return httpx.Response(self.stability_status, json=body)
        if host == "sandbox.itunes.apple.com":
            return httpx.Response(200, json=self.apple_body)
        if str(request.url) in self.remote_images:
            return httpx.Response(200, content=self.remote_images[str(request.url)])
        return httpx.Response(404)


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    dependencies._local_counters.clear()
    yield
    dependencies._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wallpaperverse.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest.fixture
def create_account(session_maker):
    async def _create(user_id: str, credits: int = 0):
        async with session_maker() as db:
            db.add(User(id=user_id, email=f"{user_id}@example.com"))
            await db.flush()
            db.add(Account(user_id=user_id, credits=credits))
            await db.commit()

    return _create


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest_asyncio.fixture
async def wpv_runtime(tmp_path, session_maker, upstream):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    runtime = build_runtime(
        session_maker=session_maker,
        http_client=http_client,
        blob_store=LocalBlobStore(str(tmp_path / "blobs")),
    )
    runtime.dispatcher = GenerationDispatcher(
        session_maker=session_maker,
        materializer=runtime.materializer,
        http_client=http_client,
        provider_kind="stability",
        api_key=STABILITY_TEST_KEY,
    )
    yield runtime
    await runtime.aclose()


@pytest_asyncio.fixture
async def api_client(session_maker, wpv_runtime):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    previous_runtime = getattr(app.state, "runtime", None)
    app.state.runtime = wpv_runtime
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)
    app.state.runtime = previous_runtime

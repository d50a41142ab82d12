"""Explicitly constructed process resources shared by the API and the worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from database import async_session_maker
from services.blob_store import BlobStore, LocalBlobStore
from services.dispatcher import GenerationDispatcher, build_dispatcher
from services.materializer import ImageMaterializer
from services.receipts import ReceiptValidator, build_receipt_validator


@dataclass
class Runtime:
    session_maker: async_sessionmaker
    http_client: httpx.AsyncClient
    blob_store: BlobStore
    materializer: ImageMaterializer
    dispatcher: GenerationDispatcher
    receipt_validator: ReceiptValidator

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        await self.http_client.aclose()


def build_runtime(
    *,
    session_maker: Optional[async_sessionmaker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    blob_store: Optional[BlobStore] = None,
) -> Runtime:
    """Wire default resources; tests pass their own session maker, transport or store."""
    maker = session_maker or async_session_maker
    client = http_client or httpx.AsyncClient(
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        follow_redirects=True,
    )
    store = blob_store or LocalBlobStore(settings.BLOB_STORAGE_ROOT)
    materializer = ImageMaterializer(store, client)
    return Runtime(
        session_maker=maker,
        http_client=client,
        blob_store=store,
        materializer=materializer,
        dispatcher=build_dispatcher(session_maker=maker, materializer=materializer, http_client=client),
        receipt_validator=build_receipt_validator(client),
    )

"""Image generation provider abstraction with a closed registry."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Type

import httpx
from openai import OpenAI, OpenAIError

from config import settings
from services.providers.types import (
    EmptyResultError,
    GenerationRequest,
    ImageHandle,
    ProviderError,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)


class BaseImageProvider(ABC):
    provider_kind: str

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> ImageHandle:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release clients the provider created itself."""


class StabilityImageProvider(BaseImageProvider):
    """Diffusion-style provider returning one inline base64 artifact."""

    provider_kind = "stability"
    cfg_scale = 7
    steps = 30

    def __init__(self, *, api_key: str, http_client: httpx.AsyncClient, endpoint: Optional[str] = None) -> None:
        self.api_key = api_key
        self.http_client = http_client
        self.endpoint = endpoint or settings.STABILITY_API_URL

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "text_prompts": [{"text": request.prompt, "weight": 1}],
            "cfg_scale": self.cfg_scale,
            "width": request.width,
            "height": request.height,
            "samples": 1,
            "steps": self.steps,
        }
        if request.style_preset:
            payload["style_preset"] = request.style_preset
        return payload

    async def generate(self, request: GenerationRequest) -> ImageHandle:
        try:
            response = await self.http_client.post(
                self.endpoint,
                json=self._payload(request),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Stability request failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Stability request failed: {exc}") from exc

        artifacts = body.get("artifacts") or []
        if not artifacts:
            raise EmptyResultError()
        encoded = artifacts[0].get("base64") or ""
        try:
            data = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise ProviderError("Stability returned malformed image data") from exc
        if not data:
            raise EmptyResultError()
        return ImageHandle.inline(data)


class OpenAIImageProvider(BaseImageProvider):
    """Prompt-to-image provider restricted to a fixed palette of sizes."""

    provider_kind = "openai"
    model = "dall-e-3"
    quality = "hd"

    SUPPORTED_SIZES: Dict[str, Tuple[int, int]] = {
        "square": (1024, 1024),
        "portrait": (1024, 1792),
        "landscape": (1792, 1024),
    }

    def __init__(self, *, api_key: str, client: Optional[OpenAI] = None) -> None:
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or OpenAI(api_key=api_key, timeout=settings.PROVIDER_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        if self._owns_client:
            await asyncio.to_thread(self.client.close)

    @classmethod
    def nearest_size(cls, width: int, height: int) -> str:
        """Return the supported `WxH` size whose aspect ratio is closest."""
        requested = math.log(max(int(width), 1) / max(int(height), 1))
        _, (best_w, best_h) = min(
            cls.SUPPORTED_SIZES.items(),
            key=lambda item: abs(math.log(item[1][0] / item[1][1]) - requested),
        )
        return f"{best_w}x{best_h}"

    def _generate_sync(self, prompt: str, size: str) -> Any:
        return self.client.images.generate(
            model=self.model,
            prompt=prompt,
            n=1,
            size=size,
            quality=self.quality,
        )

    async def generate(self, request: GenerationRequest) -> ImageHandle:
        size = self.nearest_size(request.width, request.height)
        try:
            response = await asyncio.to_thread(self._generate_sync, request.prompt, size)
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI image request failed: {exc}") from exc

        images = list(getattr(response, "data", None) or [])
        if not images:
            raise EmptyResultError()
        url = getattr(images[0], "url", None)
        if url:
            return ImageHandle.remote(url)
        encoded = getattr(images[0], "b64_json", None)
        if encoded:
            return ImageHandle.inline(base64.b64decode(encoded))
        raise EmptyResultError()


PROVIDER_REGISTRY: Dict[str, Type[BaseImageProvider]] = {
    StabilityImageProvider.provider_kind: StabilityImageProvider,
    OpenAIImageProvider.provider_kind: OpenAIImageProvider,
}


def get_image_provider(
    provider_kind: str,
    api_key: str,
    *,
    http_client: httpx.AsyncClient,
) -> BaseImageProvider:
    """Resolve a provider from the registry; never touches the network."""
    kind = str(provider_kind or "").strip().lower()
    provider_cls = PROVIDER_REGISTRY.get(kind)
    if provider_cls is None:
        raise UnknownProviderError(provider_kind)
    if not (api_key or "").strip():
        raise ProviderError("AI provider API key not configured")
    if provider_cls is StabilityImageProvider:
        return StabilityImageProvider(api_key=api_key, http_client=http_client)
    return provider_cls(api_key=api_key)


async def generate_image(
    provider_kind: str,
    api_key: str,
    prompt: str,
    width: int,
    height: int,
    style_preset: Optional[str],
    *,
    http_client: httpx.AsyncClient,
) -> ImageHandle:
    """One-shot generation; long-lived callers resolve a provider once and reuse it."""
    provider = get_image_provider(provider_kind, api_key, http_client=http_client)
    logger.info("Generating %sx%s image with %s", width, height, provider.provider_kind)
    try:
        return await provider.generate(
            GenerationRequest(prompt=prompt, width=width, height=height, style_preset=style_preset)
        )
    finally:
        await provider.aclose()

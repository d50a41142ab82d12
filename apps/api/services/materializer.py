"""Image materialization: persist generated originals and watermarked previews."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional, Tuple

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from config import settings
from services.blob_store import BlobStore
from services.providers.types import ImageHandle

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPE = "image/jpeg"
PREVIEW_SIZE: Tuple[int, int] = (540, 960)
PREVIEW_JPEG_QUALITY = 85
WATERMARK_FONT_SIZE = 40
WATERMARK_OPACITY = 0.3
WATERMARK_ANGLE = 45


class MaterializationError(RuntimeError):
    """Raised when an image cannot be fetched, decoded or stored."""


def generation_storage_paths(owner_id: str, job_id: str) -> Tuple[str, str]:
    base = f"protected/users/{owner_id}/generations/{job_id}"
    return f"{base}/full.jpg", f"{base}/thumb.jpg"


def wallpaper_storage_paths(wallpaper_id: str) -> Tuple[str, str]:
    base = f"public/wallpapers/{wallpaper_id}"
    return f"{base}/full.jpg", f"{base}/thumb.jpg"


def _watermark_font(size: int) -> ImageFont.ImageFont:
    for name in ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arial.ttf"):
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def render_watermarked_preview(
    data: bytes,
    *,
    text: Optional[str] = None,
    size: Tuple[int, int] = PREVIEW_SIZE,
    quality: int = PREVIEW_JPEG_QUALITY,
) -> bytes:
    """Cover-fit `data` to `size`, overlay a rotated translucent mark, encode JPEG."""
    try:
        source = Image.open(io.BytesIO(data))
        source.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise MaterializationError("Stored original is not a decodable image") from exc

    base = ImageOps.fit(source.convert("RGBA"), size, method=Image.Resampling.LANCZOS)

    layer = Image.new("RGBA", size, (255, 255, 255, 0))
    draw = ImageDraw.Draw(layer)
    font = _watermark_font(WATERMARK_FONT_SIZE)
    label = text or settings.WATERMARK_TEXT
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    x = (size[0] - (right - left)) / 2 - left
    y = (size[1] - (bottom - top)) / 2 - top
    draw.text((x, y), label, font=font, fill=(255, 255, 255, int(255 * WATERMARK_OPACITY)))
    layer = layer.rotate(WATERMARK_ANGLE, resample=Image.Resampling.BICUBIC, center=(size[0] / 2, size[1] / 2))

    composed = Image.alpha_composite(base, layer).convert("RGB")
    output = io.BytesIO()
    composed.save(output, format="JPEG", quality=quality)
    return output.getvalue()


class ImageMaterializer:
    """Turns provider handles into stored originals and watermarked previews."""

    def __init__(self, blob_store: BlobStore, http_client: httpx.AsyncClient):
        self.blob_store = blob_store
        self.http_client = http_client

    async def _fetch(self, url: str) -> bytes:
        try:
            response = await self.http_client.get(url, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MaterializationError(f"Could not download generated image: {exc}") from exc
        if not response.content:
            raise MaterializationError("Downloaded generated image is empty")
        return response.content

    async def persist_original(self, handle: ImageHandle, path: str) -> None:
        data = handle.data if handle.is_inline else await self._fetch(handle.url or "")
        await self.blob_store.put(path, data, content_type=IMAGE_CONTENT_TYPE)

    async def persist_watermarked_derivative(self, original_path: str, output_path: str) -> None:
        original = await self.blob_store.get(original_path)
        preview = await asyncio.to_thread(render_watermarked_preview, original)
        await self.blob_store.put(output_path, preview, content_type=IMAGE_CONTENT_TYPE)
        logger.info("Stored watermarked preview %s", output_path)

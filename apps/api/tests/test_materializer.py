import io

import httpx
import pytest
from PIL import Image

from services.blob_store import BlobNotFoundError, LocalBlobStore
from services.materializer import (
    ImageMaterializer,
    MaterializationError,
    generation_storage_paths,
    render_watermarked_preview,
    wallpaper_storage_paths,
)
from services.providers import ImageHandle


def _jpeg(size=(1080, 1920), color=(0, 0, 0)) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", size, color).save(output, format="JPEG")
    return output.getvalue()


def _materializer(tmp_path, handler=None):
    store = LocalBlobStore(str(tmp_path / "blobs"))
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler or (lambda request: httpx.Response(404))))
    return ImageMaterializer(store, client), store, client


def test_storage_paths_separate_protected_and_public_trees():
    assert generation_storage_paths("u1", "j1") == (
        "protected/users/u1/generations/j1/full.jpg",
        "protected/users/u1/generations/j1/thumb.jpg",
    )
    assert wallpaper_storage_paths("w1") == ("public/wallpapers/w1/full.jpg", "public/wallpapers/w1/thumb.jpg")


@pytest.mark.asyncio
async def test_inline_handle_is_stored_verbatim(tmp_path):
    materializer, store, client = _materializer(tmp_path)
    original = _jpeg()
    async with client:
        await materializer.persist_original(ImageHandle.inline(original), "protected/users/u1/generations/j1/full.jpg")

    assert await store.get("protected/users/u1/generations/j1/full.jpg") == original
    assert await store.content_type("protected/users/u1/generations/j1/full.jpg") == "image/jpeg"


@pytest.mark.asyncio
async def test_remote_handle_is_downloaded(tmp_path):
    original = _jpeg(size=(64, 64))

    def _handler(request):
        if request.url.path == "/generated/out.jpg":
            return httpx.Response(200, content=original)
        return httpx.Response(404)

    materializer, store, client = _materializer(tmp_path, _handler)
    async with client:
        await materializer.persist_original(ImageHandle.remote("https://cdn.example.com/generated/out.jpg"), "a/full.jpg")
        with pytest.raises(MaterializationError):
            await materializer.persist_original(ImageHandle.remote("https://cdn.example.com/missing.jpg"), "b/full.jpg")

    assert await store.get("a/full.jpg") == original
    with pytest.raises(BlobNotFoundError):
        await store.get("b/full.jpg")


@pytest.mark.asyncio
async def test_watermarked_preview_is_cover_fitted_jpeg(tmp_path):
    materializer, store, client = _materializer(tmp_path)
    await store.put("p/full.jpg", _jpeg(size=(1024, 1536)), content_type="image/jpeg")

    async with client:
        await materializer.persist_watermarked_derivative("p/full.jpg", "p/thumb.jpg")

    preview = Image.open(io.BytesIO(await store.get("p/thumb.jpg")))
    assert preview.format == "JPEG"
    assert preview.size == (540, 960)
    # The translucent mark lightens part of an all-black source.
    _, brightest = preview.convert("L").getextrema()
    assert brightest > 40


def test_render_rejects_undecodable_bytes():
    with pytest.raises(MaterializationError):
        render_watermarked_preview(b"not an image")


def test_render_accepts_custom_size_and_text():
    preview = render_watermarked_preview(_jpeg(size=(300, 300)), text="SAMPLE", size=(200, 100))
    assert Image.open(io.BytesIO(preview)).size == (200, 100)


@pytest.mark.asyncio
async def test_blob_store_rejects_escaping_paths(tmp_path):
    store = LocalBlobStore(str(tmp_path / "blobs"))
    with pytest.raises(ValueError):
        await store.put("../outside.jpg", b"x", content_type="image/jpeg")
    with pytest.raises(BlobNotFoundError):
        await store.get("never/written.jpg")

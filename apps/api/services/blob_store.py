"""Blob storage contract and local-disk implementation."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath


class BlobNotFoundError(LookupError):
    """Raised when a blob path has never been written."""


class BlobStore(ABC):
    """Durable put/get of bytes by slash-separated path."""

    @abstractmethod
    async def put(self, path: str, data: bytes, *, content_type: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, path: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def content_type(self, path: str) -> str:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores each blob as a file under `root`, with a JSON metadata sidecar."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(str(path or "").lstrip("/"))
        if not relative.parts or ".." in relative.parts:
            raise ValueError(f"Invalid blob path: {path!r}")
        return self.root.joinpath(*relative.parts)

    @staticmethod
    def _meta_path(target: Path) -> Path:
        return target.with_name(f"{target.name}.meta.json")

    def _write(self, target: Path, data: bytes, content_type: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        temp = target.with_name(f"{target.name}.tmp")
        temp.write_bytes(data)
        temp.replace(target)
        self._meta_path(target).write_text(json.dumps({"content_type": content_type}))

    async def put(self, path: str, data: bytes, *, content_type: str) -> None:
        target = self._resolve(path)
        await asyncio.to_thread(self._write, target, bytes(data), content_type)

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        return await asyncio.to_thread(target.read_bytes)

    async def content_type(self, path: str) -> str:
        meta = self._meta_path(self._resolve(path))
        if not meta.is_file():
            raise BlobNotFoundError(path)
        payload = json.loads(meta.read_text())
        return str(payload.get("content_type") or "application/octet-stream")

"""Image provider contracts."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Literal, Optional


ProviderKind = Literal["stability", "openai"]


class ImageProviderError(RuntimeError):
    """Base class for image generation failures."""


class UnknownProviderError(ImageProviderError):
    """Raised before any network call when the provider kind is not registered."""

    def __init__(self, provider_kind: str):
        super().__init__(f"Unknown AI provider: {provider_kind}")
        self.provider_kind = provider_kind


class ProviderError(ImageProviderError):
    """Raised when the provider is misconfigured or its call fails."""


class EmptyResultError(ProviderError):
    """Raised when the provider answers successfully with no image."""

    def __init__(self, message: str = "No image generated"):
        super().__init__(message)


@dataclass(frozen=True)
class ImageHandle:
    """Either inline image bytes or a URL the bytes can be fetched from."""

    data: Optional[bytes] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.url is None):
            raise ValueError("ImageHandle requires exactly one of data or url")

    @classmethod
    def inline(cls, data: bytes) -> "ImageHandle":
        return cls(data=bytes(data))

    @classmethod
    def remote(cls, url: str) -> "ImageHandle":
        if url.startswith("data:"):
            return cls.from_data_url(url)
        return cls(url=url)

    @classmethod
    def from_data_url(cls, data_url: str) -> "ImageHandle":
        header, _, encoded = data_url.partition(",")
        if not header.startswith("data:") or ";base64" not in header or not encoded:
            raise ValueError("Unsupported data URL")
        try:
            return cls(data=base64.b64decode(encoded, validate=True))
        except binascii.Error as exc:
            raise ValueError("Malformed base64 image data") from exc

    @property
    def is_inline(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    width: int
    height: int
    style_preset: Optional[str] = None

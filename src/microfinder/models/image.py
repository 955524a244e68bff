"""Wire encoding for captured images sent to the vision model."""
from __future__ import annotations

import base64
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from microfinder.errors import InvalidImageError

DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024

ImageMimeType = Literal["image/jpeg", "image/png"]

_SIGNATURES: tuple[tuple[bytes, ImageMimeType], ...] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)


class ImagePayload(BaseModel):
    """Base64 image data ready to embed in a vision request."""

    model_config = ConfigDict(frozen=True)

    data: str = Field(..., min_length=1, description="Base64 encoded image bytes.")
    mime_type: ImageMimeType = "image/jpeg"

    @classmethod
    def from_bytes(cls, content: bytes, *, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> "ImagePayload":
        """Encode raw image bytes, rejecting empty, oversized or unsupported input."""

        if not content:
            raise InvalidImageError("The selected image is empty.")
        if len(content) > max_bytes:
            limit_mb = max_bytes / (1024 * 1024)
            raise InvalidImageError(f"The selected image is larger than {limit_mb:g} MB.")
        mime_type = sniff_mime_type(content)
        if mime_type is None:
            raise InvalidImageError("Only JPEG and PNG images are supported.")
        return cls(data=base64.b64encode(content).decode("ascii"), mime_type=mime_type)

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def sniff_mime_type(content: bytes) -> ImageMimeType | None:
    for signature, mime_type in _SIGNATURES:
        if content.startswith(signature):
            return mime_type
    return None

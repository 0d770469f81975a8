from __future__ import annotations

import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Phone photos are far larger than vision models need; cap width before upload.
MAX_IMAGE_WIDTH_PX = 2048


class ImageReadError(Exception):
    pass


@dataclass(frozen=True)
class ImagePayload:
    """An image ready for transmission, held as a data URL."""

    data_url: str

    @property
    def mime_type(self) -> str:
        return self.data_url.split(";", 1)[0].split(":", 1)[-1]

    @property
    def base64_data(self) -> str:
        return self.data_url.split(",", 1)[-1]

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.base64_data)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ImagePayload":
        b64 = base64.b64encode(data).decode("ascii")
        return cls(data_url=f"data:{mime_type};base64,{b64}")


def _downscale(data: bytes, mime_type: str) -> tuple[bytes, str]:
    """Downscale very large images. Keeps aspect ratio and returns input unchanged when small enough."""

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageReadError(f"Unreadable image: {exc}") from exc

    w, h = img.size
    if w <= MAX_IMAGE_WIDTH_PX:
        return data, mime_type

    scale = MAX_IMAGE_WIDTH_PX / float(w)
    fmt = "PNG" if mime_type == "image/png" else "JPEG"
    buf = io.BytesIO()
    try:
        resized = img.resize((MAX_IMAGE_WIDTH_PX, max(1, int(h * scale))), Image.Resampling.LANCZOS)
        if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")
        resized.save(buf, format=fmt)
    except (OSError, ValueError) as exc:
        raise ImageReadError(f"Could not resize image: {exc}") from exc
    logger.debug("Downscaled image from %dx%d to %dx%d", w, h, *resized.size)
    return buf.getvalue(), f"image/{fmt.lower()}"


def encode_image(content_type: Optional[str], data: bytes) -> ImagePayload:
    if not content_type or not content_type.startswith("image/"):
        raise ImageReadError(f"Unsupported file type: {content_type or 'unknown'}")
    if not data:
        raise ImageReadError("Empty upload")
    data, mime_type = _downscale(data, content_type)
    return ImagePayload.from_bytes(data, mime_type)


async def load_image(content_type: Optional[str], data: bytes) -> ImagePayload:
    """Validate and encode an uploaded image off the event loop."""
    return await asyncio.to_thread(encode_image, content_type, data)

"""Helpers for image attachments sent alongside a prompt.

The client delivers images as ``data:<mime>;base64,<payload>`` strings. They
are split into an :class:`InlineImage` for the model request and, when larger
than ``settings.image_max_dim``, downscaled with Pillow first.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Tuple

from PIL import Image

from tripchat.config import get_settings
from tripchat.errors import ImageError

logger = logging.getLogger(__name__)
settings = get_settings()

_VALID_IMAGE_PREFIX = "image/"
_MAX_UPLOAD_BYTES = 20 * 1024 * 1024  # 20 MB


@dataclass(frozen=True)
class InlineImage:
    mime_type: str
    data: str  # base64, no data-URI prefix


def parse_data_uri(data_uri: str) -> InlineImage:
    """Split a base64 data URI into MIME type and payload."""

    try:
        meta, data = data_uri.split(",", 1)
    except ValueError as exc:
        raise ImageError("Image is not a data URI") from exc

    if not meta.startswith("data:") or ";base64" not in meta:
        raise ImageError("Image must be a base64 data URI")
    mime_type = meta[len("data:"):].split(";", 1)[0].strip().lower()
    if not mime_type.startswith(_VALID_IMAGE_PREFIX):
        raise ImageError(f"Unsupported content type; expected image/*, got {mime_type or 'nothing'}")
    if not data:
        raise ImageError("Image payload is empty")
    return InlineImage(mime_type=mime_type, data=data)


def prepare_image(data_uri: str, *, max_dim: int | None = None, quality: int | None = None) -> InlineImage:
    """Parse *data_uri* and downscale the image if it exceeds *max_dim*.

    Images that already fit are passed through untouched so the MIME type the
    client declared is what the model receives.
    """

    image = parse_data_uri(data_uri)
    max_dim = max_dim or settings.image_max_dim
    quality = quality or settings.image_quality

    try:
        raw = base64.b64decode(image.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageError("Image payload is not valid base64") from exc
    if len(raw) > _MAX_UPLOAD_BYTES:
        raise ImageError("Image exceeds 20 MB size limit.")

    try:
        resized = _downscale(raw, max_dim=max_dim, quality=quality)
    except Exception as exc:
        logger.warning("Image downscale failed, sending original bytes: %s", exc)
        return image
    if resized is None:
        return image

    data, mime_type = resized
    logger.debug("Downscaled image from %d to %d bytes", len(raw), len(data))
    return InlineImage(mime_type=mime_type, data=base64.b64encode(data).decode("ascii"))


def _downscale(file_bytes: bytes, *, max_dim: int, quality: int) -> Tuple[bytes, str] | None:
    """Return (bytes, content_type) for an oversized image, ``None`` otherwise."""

    with Image.open(io.BytesIO(file_bytes)) as img:
        width, height = img.size
        if max(width, height) <= max_dim:
            return None
        img = img.convert("RGB")  # ensure RGB for JPEG
        img.thumbnail((max_dim, max_dim))
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
        return buffer.getvalue(), "image/jpeg"

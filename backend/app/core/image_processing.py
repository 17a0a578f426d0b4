"""Image processing utilities for document uploads.

Normalises uploaded receipt photos before they are sent to the vision model:
auto-orientation, downscaling to a maximum edge, and JPEG re-encoding for
large or model-unsupported formats. PDFs pass through untouched.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from app.schemas.finance import DocumentKind

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------

IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/bmp", "image/webp"}
PDF_TYPE = "application/pdf"
ACCEPTED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "bmp", "webp", "pdf"}

# Formats the vision endpoint accepts as-is.
MODEL_NATIVE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

JPEG_QUALITY = 85

# Files larger than this are re-compressed to JPEG_QUALITY JPEG.
COMPRESS_THRESHOLD = 2 * 1024 * 1024  # 2 MB

_EXTENSION_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "pdf": PDF_TYPE,
}


@dataclass
class PreparedImage:
    """Bytes ready to embed in a model request."""

    content: bytes
    content_type: str
    resized: bool = False


def _extension(filename: Optional[str]) -> str:
    if filename and "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    return ""


def guess_content_type(content_type: Optional[str], filename: Optional[str]) -> str:
    """Declared MIME type, or one inferred from the file extension."""
    if content_type and content_type.lower() not in {"", "application/octet-stream"}:
        return content_type.lower()
    return _EXTENSION_TYPES.get(_extension(filename), "application/octet-stream")


def is_supported(content_type: Optional[str], filename: Optional[str]) -> bool:
    """Return True for images and PDFs we accept for extraction."""
    ct = guess_content_type(content_type, filename)
    if ct in IMAGE_TYPES or ct == PDF_TYPE:
        return True
    return _extension(filename) in ACCEPTED_EXTENSIONS


def detect_kind(content_type: Optional[str], filename: Optional[str] = None) -> DocumentKind:
    """``image/*`` uploads are images; everything else is treated as a PDF."""
    ct = guess_content_type(content_type, filename)
    return DocumentKind.IMAGE if ct.startswith("image/") else DocumentKind.PDF


def prepare_image(content: bytes, content_type: str, *, max_dimension: int) -> PreparedImage:
    """Orient, downscale and (when needed) re-encode an uploaded image.

    Returns the original bytes when nothing needs to change or when Pillow
    cannot read the file; the model then sees exactly what was uploaded.
    """
    try:
        img = Image.open(io.BytesIO(content))
        img = ImageOps.exif_transpose(img)  # auto-orient
    except (UnidentifiedImageError, OSError):
        logger.warning("Failed to read image (%s, %d bytes), sending original", content_type, len(content))
        return PreparedImage(content=content, content_type=content_type)

    too_large = max(img.size) > max_dimension
    must_reencode = (
        too_large
        or content_type not in MODEL_NATIVE_TYPES
        or len(content) > COMPRESS_THRESHOLD
    )
    if not must_reencode:
        return PreparedImage(content=content, content_type=content_type)

    if too_large:
        img.thumbnail((max_dimension, max_dimension), Image.LANCZOS)

    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    encoded = buf.getvalue()
    logger.info(
        "Prepared image for model: %s %d bytes -> image/jpeg %d bytes (resized=%s)",
        content_type,
        len(content),
        len(encoded),
        too_large,
    )
    return PreparedImage(content=encoded, content_type="image/jpeg", resized=too_large)


def to_data_url(content: bytes, content_type: str) -> str:
    """Encode *content* as a base64 ``data:`` URL."""
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"

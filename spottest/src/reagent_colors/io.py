from __future__ import annotations

import io
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import requests
from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from .config import DEFAULT_MAX_UPLOAD_BYTES
from .errors import DecodeError, ValidationError
from .models import DetectedColor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedImage:
    pixels: np.ndarray
    width: int
    height: int
    format: str | None = None


def read_image_bytes(image_path: str | Path) -> tuple[bytes, str | None]:
    """Read raw image bytes from a local path or an HTTP(S) URL."""
    path_str = str(image_path)
    if path_str.startswith(("http://", "https://")):
        response = requests.get(path_str, timeout=10)
        response.raise_for_status()
        content_type = response.headers.get("Content-Type")
        mime_type = content_type.split(";")[0].strip() if content_type else None
        return response.content, mime_type or mimetypes.guess_type(path_str)[0]

    path = Path(image_path)
    return path.read_bytes(), mimetypes.guess_type(path.name)[0]


def sniff_mime_type(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return Image.MIME.get(image.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def validate_upload(
    data: bytes,
    mime_hint: str | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> str:
    if not data:
        raise ValidationError("no image data was supplied")

    mime_type = mime_hint or sniff_mime_type(data)
    if not mime_type or not mime_type.lower().startswith("image/"):
        raise ValidationError("please select a valid image file")

    if len(data) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"file size too large (max {limit_mb:g}MB)")
    return mime_type


def decode_image(data: bytes) -> DecodedImage:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            image_format = image.format
            rgba = ImageOps.exif_transpose(image).convert("RGBA")
        width, height = rgba.size
        pixels = np.asarray(rgba, dtype=np.uint8)
    except MemoryError as exc:
        raise DecodeError("not enough memory to decode the image") from exc
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(
            "failed to load image, please check the file is valid"
        ) from exc

    if width == 0 or height == 0:
        raise DecodeError(f"invalid image dimensions {width}x{height}")

    logger.debug("decoded %s image %dx%d", image_format, width, height)
    return DecodedImage(
        pixels=pixels,
        width=width,
        height=height,
        format=image_format,
    )


def save_marker_overlay(
    image: DecodedImage,
    colors: Sequence[DetectedColor],
    output_path: str | Path,
    radius: int | None = None,
) -> None:
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    canvas = Image.fromarray(image.pixels).convert("RGB")
    draw = ImageDraw.Draw(canvas)
    if radius is None:
        radius = max(4, min(image.width, image.height) // 40)

    for color in colors:
        x, y = color.centroid
        box = (x - radius, y - radius, x + radius, y + radius)
        draw.ellipse(box, fill=color.hex, outline="#FFFFFF", width=max(1, radius // 3))
    canvas.save(path)

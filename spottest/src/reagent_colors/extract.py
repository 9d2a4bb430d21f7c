from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from .cancel import CancellationToken
from .colors import fit_within, rgb_to_hex, to_original_space
from .config import EngineSettings
from .errors import ExtractionError
from .models import DetectedColor

logger = logging.getLogger(__name__)

NEUTRAL_GRAY = (128, 128, 128)
NEUTRAL_CONFIDENCE = 50

# (pixel count above which the step applies, sample every Nth pixel)
_SAMPLING_BANDS = ((100_000, 20), (50_000, 10))
_DEFAULT_SAMPLING_STEP = 5

_CHUNK_SIZE = 16_384


@dataclass
class _Bucket:
    first_seen: int
    count: int = 0
    sum_x: int = 0
    sum_y: int = 0
    sum_r: int = 0
    sum_g: int = 0
    sum_b: int = 0


def extract_dominant_colors(
    pixel_buffer: bytes | bytearray | memoryview | np.ndarray,
    width: int,
    height: int,
    settings: EngineSettings | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[DetectedColor]:
    """Return up to ``settings.max_colors`` dominant colors of an RGBA buffer.

    Pixels are sampled with a stride that grows with the image size, colors
    are grouped into fixed-width RGB buckets and the buckets are ranked by
    how many samples fell into them. Centroids are reported in the
    coordinate space of the buffer passed in, even when the work happens on
    a downscaled copy.

    An image with no opaque samples yields a single neutral gray color so
    callers always have something to select.
    """
    settings = settings or EngineSettings()
    rgba = _as_rgba_array(pixel_buffer, width, height)
    work = _downscale(rgba, settings.max_side)
    work_h, work_w = work.shape[:2]

    flat = work.reshape(-1, 4)
    step = sampling_step(flat.shape[0])
    sample_indices = np.arange(0, flat.shape[0], step, dtype=np.int64)
    logger.debug(
        "sampling every %d pixels of %dx%d (%d samples)",
        step,
        work_w,
        work_h,
        sample_indices.size,
    )

    buckets: dict[int, _Bucket] = {}
    for start in range(0, sample_indices.size, _CHUNK_SIZE):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        _accumulate(
            flat,
            sample_indices[start : start + _CHUNK_SIZE],
            work_w,
            settings,
            buckets,
        )

    if not buckets:
        logger.warning("no opaque pixels sampled, using neutral fallback color")
        return [_neutral_color(width, height)]

    ranked = sorted(
        buckets.items(), key=lambda item: (-item[1].count, item[1].first_seen)
    )[: settings.max_colors]

    colors: list[DetectedColor] = []
    for rank, (key, bucket) in enumerate(ranked):
        rgb = (
            bucket.sum_r // bucket.count,
            bucket.sum_g // bucket.count,
            bucket.sum_b // bucket.count,
        )
        centroid = to_original_space(
            bucket.sum_x // bucket.count,
            bucket.sum_y // bucket.count,
            scaled_size=(work_w, work_h),
            original_size=(width, height),
        )
        colors.append(
            DetectedColor(
                color_key=_unpack_key(key),
                rgb=rgb,
                hex=rgb_to_hex(rgb),
                centroid=centroid,
                occurrence_count=bucket.count,
                confidence=rank_confidence(rank),
            )
        )
    return colors


def sampling_step(pixel_count: int) -> int:
    for threshold, step in _SAMPLING_BANDS:
        if pixel_count > threshold:
            return step
    return _DEFAULT_SAMPLING_STEP


def rank_confidence(rank: int) -> int:
    """Heuristic confidence for the color at ``rank`` (0 is most frequent).

    This only encodes ordering; it is not a statistical confidence interval.
    """
    if rank == 0:
        return 95
    return max(0, min(95, 60 + (25 - 5 * rank)))


def _as_rgba_array(
    pixel_buffer: bytes | bytearray | memoryview | np.ndarray,
    width: int,
    height: int,
) -> np.ndarray:
    if width <= 0 or height <= 0:
        raise ExtractionError(
            f"image dimensions must be positive, got {width}x{height}"
        )

    if isinstance(pixel_buffer, np.ndarray):
        if pixel_buffer.dtype != np.uint8:
            raise ExtractionError("pixel buffer must contain uint8 values")
        flat = np.ascontiguousarray(pixel_buffer).reshape(-1)
    else:
        flat = np.frombuffer(pixel_buffer, dtype=np.uint8)

    if flat.size == 0:
        raise ExtractionError("pixel buffer is empty")
    if flat.size % 4 != 0:
        raise ExtractionError("pixel buffer length must be a multiple of 4 (RGBA)")
    if flat.size != width * height * 4:
        raise ExtractionError(
            f"pixel buffer holds {flat.size // 4} pixels, expected {width * height}"
        )
    return flat.reshape(height, width, 4)


def _downscale(rgba: np.ndarray, max_side: int) -> np.ndarray:
    height, width = rgba.shape[:2]
    new_w, new_h = fit_within(width, height, max_side)
    if (new_w, new_h) == (width, height):
        return rgba

    logger.info("downscaling %dx%d to %dx%d before sampling", width, height, new_w, new_h)
    resized = Image.fromarray(rgba).resize((new_w, new_h), Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


def _accumulate(
    flat: np.ndarray,
    indices: np.ndarray,
    width: int,
    settings: EngineSettings,
    buckets: dict[int, _Bucket],
) -> None:
    pixels = flat[indices]
    opaque = pixels[:, 3] >= settings.alpha_threshold
    if not np.any(opaque):
        return
    pixels = pixels[opaque].astype(np.int64)
    indices = indices[opaque]

    binned = (pixels[:, :3] // settings.bucket_width) * settings.bucket_width
    keys = (binned[:, 0] << 16) | (binned[:, 1] << 8) | binned[:, 2]
    unique_keys, first_pos, inverse, counts = np.unique(
        keys, return_index=True, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)
    size = unique_keys.size

    def _sums(values: np.ndarray) -> np.ndarray:
        return np.bincount(inverse, weights=values, minlength=size)

    sum_x = _sums(indices % width)
    sum_y = _sums(indices // width)
    sum_r = _sums(pixels[:, 0])
    sum_g = _sums(pixels[:, 1])
    sum_b = _sums(pixels[:, 2])

    for pos, key in enumerate(unique_keys.tolist()):
        bucket = buckets.get(key)
        if bucket is None:
            bucket = _Bucket(first_seen=int(indices[first_pos[pos]]))
            buckets[key] = bucket
        bucket.count += int(counts[pos])
        bucket.sum_x += int(round(sum_x[pos]))
        bucket.sum_y += int(round(sum_y[pos]))
        bucket.sum_r += int(round(sum_r[pos]))
        bucket.sum_g += int(round(sum_g[pos]))
        bucket.sum_b += int(round(sum_b[pos]))


def _unpack_key(key: int) -> tuple[int, int, int]:
    return ((key >> 16) & 0xFF, (key >> 8) & 0xFF, key & 0xFF)


def _neutral_color(width: int, height: int) -> DetectedColor:
    return DetectedColor(
        color_key=NEUTRAL_GRAY,
        rgb=NEUTRAL_GRAY,
        hex=rgb_to_hex(NEUTRAL_GRAY),
        centroid=(width // 2, height // 2),
        occurrence_count=0,
        confidence=NEUTRAL_CONFIDENCE,
    )

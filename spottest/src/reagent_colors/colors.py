from __future__ import annotations

import re

RGB = tuple[int, int, int]

_HEX_PATTERN = re.compile(r"^#?[0-9A-Fa-f]{6}$")


def rgb_to_hex(rgb: RGB) -> str:
    return f"#{rgb[0]:02X}{rgb[1]:02X}{rgb[2]:02X}"


def parse_hex(value: str | None) -> RGB | None:
    if value is None:
        return None
    text = str(value).strip()
    if not _HEX_PATTERN.match(text):
        return None
    normalized = text[1:] if text.startswith("#") else text
    return (
        int(normalized[0:2], 16),
        int(normalized[2:4], 16),
        int(normalized[4:6], 16),
    )


def hex_to_rgb(value: str) -> RGB:
    rgb = parse_hex(value)
    if rgb is None:
        raise ValueError(f"invalid hex color '{value}'")
    return rgb


def normalize_hex(value: str) -> str:
    return rgb_to_hex(hex_to_rgb(value))


def fit_within(width: int, height: int, max_side: int) -> tuple[int, int]:
    """Return ``(width, height)`` scaled uniformly so neither side exceeds
    ``max_side``. Sizes already within bounds are returned unchanged."""
    if width <= max_side and height <= max_side:
        return width, height

    ratio = min(max_side / float(width), max_side / float(height))
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def to_original_space(
    x: int,
    y: int,
    scaled_size: tuple[int, int],
    original_size: tuple[int, int],
) -> tuple[int, int]:
    scaled_w, scaled_h = scaled_size
    original_w, original_h = original_size
    if (scaled_w, scaled_h) == (original_w, original_h):
        return x, y

    # Map pixel centers, then clamp so the result stays inside the source.
    mapped_x = int((x + 0.5) * original_w / scaled_w)
    mapped_y = int((y + 0.5) * original_h / scaled_h)
    return (
        min(max(mapped_x, 0), original_w - 1),
        min(max(mapped_y, 0), original_h - 1),
    )

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .colors import RGB
from .config import DEFAULT_MAX_DISTANCE
from .models import (
    ColorChoice,
    ConfidenceTier,
    MatchResult,
    ReferenceEntry,
    ResolvedColor,
)

UNCLASSIFIED_DISPLAY_COLOR = "Color detected from image"
UNCLASSIFIED_SUBSTANCE = "Requires additional analysis"


def closest_match(
    target: RGB,
    palette: Sequence[ReferenceEntry],
    max_distance: float = DEFAULT_MAX_DISTANCE,
) -> MatchResult:
    """Find the palette entry nearest to ``target`` in raw RGB space.

    The threshold is inclusive: a nearest entry exactly ``max_distance``
    away is accepted. Entries whose hex cannot be parsed are ignored, and
    an empty palette yields an unaccepted result with infinite distance.
    """
    usable: list[ReferenceEntry] = []
    usable_rgb: list[RGB] = []
    for entry in palette:
        rgb = entry.rgb
        if rgb is None:
            continue
        usable.append(entry)
        usable_rgb.append(rgb)

    if not usable:
        return MatchResult(matched_entry=None, distance=math.inf, accepted=False)

    palette_rgb = np.asarray(usable_rgb, dtype=np.float64)
    source = np.asarray(target, dtype=np.float64).reshape(1, 3)
    distances = np.sqrt(np.sum(np.square(palette_rgb - source), axis=1))

    best_idx = int(np.argmin(distances))
    distance = float(distances[best_idx])
    return MatchResult(
        matched_entry=usable[best_idx],
        distance=distance,
        accepted=distance <= max_distance,
    )


def unclassified_entry(hex_value: str, test_id: str | None = None) -> ReferenceEntry:
    return ReferenceEntry(
        test_id=test_id or "",
        display_color=UNCLASSIFIED_DISPLAY_COLOR,
        reference_hex=hex_value,
        substance_label=UNCLASSIFIED_SUBSTANCE,
        confidence_tier=ConfidenceTier.MEDIUM,
    )


def resolve_choice(
    choice: ColorChoice,
    palette: Sequence[ReferenceEntry],
    max_distance: float = DEFAULT_MAX_DISTANCE,
    test_id: str | None = None,
) -> ResolvedColor:
    match = closest_match(choice.rgb, palette, max_distance=max_distance)
    if match.accepted and match.matched_entry is not None:
        entry = match.matched_entry
    else:
        entry = unclassified_entry(choice.hex, test_id=test_id)
    return ResolvedColor(choice=choice, match=match, entry=entry)

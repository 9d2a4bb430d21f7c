from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .colors import RGB, parse_hex, rgb_to_hex
from .config import MANUAL_PICK_CONFIDENCE

Position = tuple[int, int]


class ConfidenceTier(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def score(self) -> int:
        return _TIER_SCORES[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceTier":
        if score >= 85:
            return cls.VERY_HIGH
        if score >= 75:
            return cls.HIGH
        if score >= 60:
            return cls.MEDIUM
        if score >= 40:
            return cls.LOW
        return cls.VERY_LOW


_TIER_SCORES = {
    ConfidenceTier.VERY_HIGH: 90,
    ConfidenceTier.HIGH: 80,
    ConfidenceTier.MEDIUM: 65,
    ConfidenceTier.LOW: 45,
    ConfidenceTier.VERY_LOW: 25,
}


class ColorSource(str, Enum):
    EXTRACTED = "extracted"
    MANUAL_PICK = "manual_pick"
    CATALOG_DEFAULT = "catalog_default"


@dataclass(frozen=True)
class PixelSample:
    r: int
    g: int
    b: int
    a: int = 255

    @property
    def rgb(self) -> RGB:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class DetectedColor:
    color_key: RGB
    rgb: RGB
    hex: str
    centroid: Position
    occurrence_count: int
    confidence: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "color_key": list(self.color_key),
            "rgb": list(self.rgb),
            "hex": self.hex,
            "centroid": {"x": self.centroid[0], "y": self.centroid[1]},
            "occurrence_count": int(self.occurrence_count),
            "confidence": int(self.confidence),
        }


@dataclass(frozen=True)
class ReferenceEntry:
    test_id: str
    display_color: str
    reference_hex: str
    substance_label: str
    confidence_tier: ConfidenceTier = ConfidenceTier.MEDIUM
    entry_id: str | None = None

    @property
    def rgb(self) -> RGB | None:
        return parse_hex(self.reference_hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "test_id": self.test_id,
            "display_color": self.display_color,
            "reference_hex": self.reference_hex,
            "substance": self.substance_label,
            "confidence_tier": self.confidence_tier.value,
        }


@dataclass(frozen=True)
class MatchResult:
    matched_entry: ReferenceEntry | None
    distance: float
    accepted: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched_entry": (
                None if self.matched_entry is None else self.matched_entry.to_dict()
            ),
            "distance": None if math.isinf(self.distance) else float(self.distance),
            "accepted": self.accepted,
        }


@dataclass(frozen=True)
class ColorChoice:
    """A color handed to the matcher, whatever produced it."""

    rgb: RGB
    confidence: int
    source: ColorSource
    position: Position | None = None

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.rgb)

    @classmethod
    def from_detected(cls, color: DetectedColor) -> "ColorChoice":
        return cls(
            rgb=color.rgb,
            confidence=color.confidence,
            source=ColorSource.EXTRACTED,
            position=color.centroid,
        )

    @classmethod
    def from_pixel(
        cls,
        sample: PixelSample,
        x: int,
        y: int,
        confidence: int = MANUAL_PICK_CONFIDENCE,
    ) -> "ColorChoice":
        # Exact pixel value, never a quantized bucket.
        return cls(
            rgb=sample.rgb,
            confidence=confidence,
            source=ColorSource.MANUAL_PICK,
            position=(x, y),
        )

    @classmethod
    def from_reference(cls, entry: ReferenceEntry) -> "ColorChoice":
        rgb = entry.rgb
        if rgb is None:
            raise ValueError(f"invalid hex color '{entry.reference_hex}'")
        return cls(
            rgb=rgb,
            confidence=entry.confidence_tier.score,
            source=ColorSource.CATALOG_DEFAULT,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "hex": self.hex,
            "rgb": list(self.rgb),
            "confidence": int(self.confidence),
            "source": self.source.value,
            "position": (
                None
                if self.position is None
                else {"x": self.position[0], "y": self.position[1]}
            ),
        }


@dataclass(frozen=True)
class ResolvedColor:
    choice: ColorChoice
    match: MatchResult
    entry: ReferenceEntry

    @property
    def hex(self) -> str:
        return self.choice.hex

    @property
    def rgb(self) -> RGB:
        return self.choice.rgb

    @property
    def accepted(self) -> bool:
        return self.match.accepted

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.choice.to_dict(),
            "confidence_label": ConfidenceTier.from_score(self.choice.confidence).label,
            "accepted": self.match.accepted,
            "distance": self.match.to_dict()["distance"],
            "substance": self.entry.substance_label,
            "display_color": self.entry.display_color,
            "reference": self.entry.to_dict(),
        }


@dataclass(frozen=True)
class AnalysisReport:
    primary: ResolvedColor
    colors: list[ResolvedColor]
    palette_source: str
    image_size: tuple[int, int]
    elapsed_seconds: float
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary.to_dict(),
            "colors": [color.to_dict() for color in self.colors],
            "palette_source": self.palette_source,
            "image_size": {"width": self.image_size[0], "height": self.image_size[1]},
            "elapsed_seconds": float(self.elapsed_seconds),
            "warnings": list(self.warnings),
        }

"""Tuning constants for color extraction, matching and session limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv

DEFAULT_BUCKET_WIDTH = 20
DEFAULT_MAX_SIDE = 1000
DEFAULT_MAX_COLORS = 5
DEFAULT_ALPHA_THRESHOLD = 128
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 30.0
# Upper bound of RGB distance is ~441; 100 trades recall for fewer false hits.
DEFAULT_MAX_DISTANCE = 100.0
MANUAL_PICK_CONFIDENCE = 85


@dataclass(frozen=True)
class EngineSettings:
    bucket_width: int = DEFAULT_BUCKET_WIDTH
    max_side: int = DEFAULT_MAX_SIDE
    max_colors: int = DEFAULT_MAX_COLORS
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_distance: float = DEFAULT_MAX_DISTANCE
    manual_pick_confidence: int = MANUAL_PICK_CONFIDENCE

    def __post_init__(self) -> None:
        if not 1 <= self.bucket_width <= 255:
            raise ValueError("bucket_width must be between 1 and 255")
        if self.max_side < 1:
            raise ValueError("max_side must be at least 1")
        if self.max_colors < 1:
            raise ValueError("max_colors must be at least 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be positive")

    @classmethod
    def from_env(cls, prefix: str = "SPOTTEST_") -> "EngineSettings":
        """Build settings from ``<PREFIX><FIELD>`` environment variables.

        A ``.env`` file in the working directory is loaded first. Unset
        variables keep their defaults.
        """
        load_dotenv()

        overrides: dict[str, object] = {}
        for field in fields(cls):
            env_name = f"{prefix}{field.name.upper()}"
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            caster = float if field.type in ("float", float) else int
            try:
                overrides[field.name] = caster(raw.strip())
            except ValueError as exc:
                raise ValueError(
                    f"{env_name} must be a {caster.__name__}, got {raw!r}"
                ) from exc
        return cls(**overrides)

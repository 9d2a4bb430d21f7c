from __future__ import annotations

import asyncio
from pathlib import Path

from .config import EngineSettings
from .errors import AnalysisError
from .io import read_image_bytes, save_marker_overlay
from .matching import resolve_choice
from .models import AnalysisReport, ColorChoice, ResolvedColor
from .palette import load_palette
from .session import AnalysisSession, SessionStatus


class SpotTestPipeline:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        fallback_palette_path: str | Path | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()

        self.default_fallback_palette_path = (
            Path(__file__).resolve().parents[2] / "data" / "reference_palette.csv"
        )
        if fallback_palette_path is None:
            fallback_palette_path = self.default_fallback_palette_path
        self.fallback_palette_path = Path(fallback_palette_path)

    def run(
        self,
        image_path: str,
        palette_path: str | None = None,
        test_id: str | None = None,
        overlay_out: str | None = None,
    ) -> AnalysisReport:
        image_bytes, mime_type = read_image_bytes(image_path)
        return asyncio.run(
            self.analyze(
                image_bytes,
                mime_type,
                palette_path=palette_path,
                test_id=test_id,
                overlay_out=overlay_out,
            )
        )

    async def analyze(
        self,
        image_bytes: bytes,
        mime_type: str | None = None,
        palette_path: str | None = None,
        test_id: str | None = None,
        overlay_out: str | None = None,
    ) -> AnalysisReport:
        palette, palette_source = await asyncio.to_thread(
            load_palette,
            palette_path=palette_path,
            fallback_palette_path=self.fallback_palette_path,
            test_id=test_id,
        )

        warnings: list[str] = []
        if not palette:
            warnings.append("no_reference_entries_for_test")

        session = AnalysisSession(palette=palette, settings=self.settings, test_id=test_id)
        await session.analyze_image(image_bytes, mime_type)
        if session.status is not SessionStatus.READY:
            error = session.error or AnalysisError(
                f"analysis ended in state {session.status.value}"
            )
            raise error

        detected = session.detected_colors
        if not detected:
            raise AnalysisError("no colors were extracted from the image")
        if len(detected) == 1 and detected[0].occurrence_count == 0:
            warnings.append("no_opaque_pixels_neutral_fallback")

        resolved: list[ResolvedColor] = [
            resolve_choice(
                ColorChoice.from_detected(color),
                palette,
                max_distance=self.settings.max_distance,
                test_id=test_id,
            )
            for color in detected
        ]
        if palette and not any(color.accepted for color in resolved):
            warnings.append("no_palette_match_within_threshold")

        image = session.image
        if overlay_out and image is not None:
            await asyncio.to_thread(save_marker_overlay, image, detected, overlay_out)

        report = AnalysisReport(
            primary=resolved[0],
            colors=resolved,
            palette_source=palette_source,
            image_size=session.image_size or (0, 0),
            elapsed_seconds=session.elapsed or 0.0,
            warnings=warnings,
        )
        session.reset()
        return report

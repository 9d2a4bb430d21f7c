from __future__ import annotations

import asyncio

import numpy as np
import pytest
from PIL import Image

from spottest.src.reagent_colors.config import EngineSettings
from spottest.src.reagent_colors.errors import DecodeError
from spottest.src.reagent_colors.io import save_marker_overlay
from spottest.src.reagent_colors.palette import load_palette
from spottest.src.reagent_colors.pipeline import SpotTestPipeline


def _write_image(path, array):
    Image.fromarray(array.astype(np.uint8)).save(path)


def _write_palette(path):
    path.write_text(
        "test_id,color_result,color_hex,possible_substance,confidence_level\n"
        "marquis-test,Purple,#800080,MDMA,high\n"
        "mecke-test,Blue to green,#008B8B,Heroin,very_high\n"
        "ferric-sulfate-test,Orange,#FFA500,Morphine,medium\n",
        encoding="utf-8",
    )


def test_solid_color_maps_to_palette_match(tmp_path):
    image = np.zeros((120, 120, 3), dtype=np.uint8)
    image[:, :] = [125, 5, 130]
    image_path = tmp_path / "solid.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    pipeline = SpotTestPipeline()
    result = pipeline.run(str(image_path), palette_path=str(palette_path))

    assert result.palette_source == "catalog_user"
    assert result.image_size == (120, 120)
    assert result.primary.accepted is True
    assert result.primary.entry.substance_label == "MDMA"
    assert result.primary.choice.confidence == 95
    assert result.warnings == []


def test_bicolor_image_resolves_each_color(tmp_path):
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    image[:, :70] = [0, 139, 139]
    image[:, 70:] = [255, 165, 0]
    image_path = tmp_path / "bicolor.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    result = SpotTestPipeline().run(str(image_path), palette_path=str(palette_path))

    substances = [color.entry.substance_label for color in result.colors]
    assert substances[:2] == ["Heroin", "Morphine"]
    assert result.colors[0].choice.confidence > result.colors[1].choice.confidence


def test_test_id_restricts_candidates(tmp_path):
    image = np.zeros((50, 50, 3), dtype=np.uint8)
    image[:, :] = [128, 0, 128]
    image_path = tmp_path / "purple.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    result = SpotTestPipeline().run(
        str(image_path), palette_path=str(palette_path), test_id="mecke-test"
    )

    assert result.primary.accepted is False
    assert result.primary.entry.substance_label == "Requires additional analysis"
    assert result.primary.entry.test_id == "mecke-test"
    assert "no_palette_match_within_threshold" in result.warnings


def test_missing_palette_uses_bundled_fallback(tmp_path):
    image = np.zeros((64, 64, 3), dtype=np.uint8)
    image[:, :] = [255, 165, 0]
    image_path = tmp_path / "orange.png"
    _write_image(image_path, image)

    result = SpotTestPipeline().run(str(image_path), test_id="ferric-sulfate-test")

    assert result.palette_source == "bundled_fallback"
    assert result.primary.entry.substance_label == "Morphine, Heroin"


def test_transparent_image_reports_neutral_fallback(tmp_path):
    image = np.zeros((10, 10, 4), dtype=np.uint8)
    image_path = tmp_path / "clear.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    result = SpotTestPipeline().run(str(image_path), palette_path=str(palette_path))

    assert result.primary.hex == "#808080"
    assert "no_opaque_pixels_neutral_fallback" in result.warnings


def test_overlay_is_written(tmp_path):
    image = np.zeros((80, 80, 3), dtype=np.uint8)
    image[:, :] = [0, 139, 139]
    image_path = tmp_path / "overlay-src.png"
    _write_image(image_path, image)
    overlay_path = tmp_path / "out" / "overlay.png"

    SpotTestPipeline().run(str(image_path), overlay_out=str(overlay_path))

    assert overlay_path.exists()


def test_corrupt_image_raises_session_error(tmp_path):
    image_path = tmp_path / "broken.png"
    image_path.write_bytes(b"\x89PNG\r\n\x1a\nbroken")

    with pytest.raises(DecodeError):
        SpotTestPipeline().run(str(image_path))


def test_custom_threshold_changes_acceptance(tmp_path):
    image = np.zeros((40, 40, 3), dtype=np.uint8)
    image[:, :] = [150, 20, 150]
    image_path = tmp_path / "near-purple.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    strict = SpotTestPipeline(settings=EngineSettings(max_distance=10)).run(
        str(image_path), palette_path=str(palette_path)
    )
    loose = SpotTestPipeline().run(str(image_path), palette_path=str(palette_path))

    assert strict.primary.accepted is False
    assert loose.primary.accepted is True


def test_repeated_runs_are_deterministic(tmp_path):
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    image[:, :50] = [160, 40, 140]
    image[:, 50:] = [30, 200, 90]
    image_path = tmp_path / "repeat.png"
    _write_image(image_path, image)

    result_a = SpotTestPipeline().run(str(image_path))
    result_b = SpotTestPipeline().run(str(image_path))

    assert [c.hex for c in result_a.colors] == [c.hex for c in result_b.colors]
    assert [c.choice.position for c in result_a.colors] == [
        c.choice.position for c in result_b.colors
    ]


def test_palette_and_overlay_io_run_off_the_event_loop(monkeypatch, tmp_path):
    image = np.zeros((40, 40, 3), dtype=np.uint8)
    image[:, :] = [128, 0, 128]
    image_path = tmp_path / "offload.png"
    _write_image(image_path, image)
    palette_path = tmp_path / "palette.csv"
    _write_palette(palette_path)

    offloaded = []
    original = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func)
        return await original(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

    result = SpotTestPipeline().run(
        str(image_path),
        palette_path=str(palette_path),
        overlay_out=str(tmp_path / "marked.png"),
    )

    assert result.primary.entry.substance_label == "MDMA"
    assert load_palette in offloaded
    assert save_marker_overlay in offloaded

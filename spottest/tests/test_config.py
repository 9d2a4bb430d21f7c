from __future__ import annotations

import pytest

from spottest.src.reagent_colors.colors import (
    fit_within,
    hex_to_rgb,
    parse_hex,
    rgb_to_hex,
    to_original_space,
)
from spottest.src.reagent_colors.config import EngineSettings


def test_defaults_match_reference_tuning():
    settings = EngineSettings()

    assert settings.bucket_width == 20
    assert settings.max_side == 1000
    assert settings.max_colors == 5
    assert settings.timeout_seconds == 30.0
    assert settings.max_distance == 100.0
    assert settings.max_upload_bytes == 10 * 1024 * 1024


def test_from_env_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SPOTTEST_BUCKET_WIDTH", "25")
    monkeypatch.setenv("SPOTTEST_TIMEOUT_SECONDS", "2.5")

    settings = EngineSettings.from_env()

    assert settings.bucket_width == 25
    assert settings.timeout_seconds == 2.5
    assert settings.max_distance == 100.0


def test_from_env_rejects_bad_values(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SPOTTEST_MAX_COLORS", "five")

    with pytest.raises(ValueError, match="SPOTTEST_MAX_COLORS"):
        EngineSettings.from_env()


def test_invalid_settings_raise():
    with pytest.raises(ValueError):
        EngineSettings(bucket_width=0)
    with pytest.raises(ValueError):
        EngineSettings(timeout_seconds=0)


def test_hex_helpers():
    assert rgb_to_hex((255, 0, 16)) == "#FF0010"
    assert parse_hex("ff0010") == (255, 0, 16)
    assert parse_hex("#GG0000") is None
    assert parse_hex(None) is None
    with pytest.raises(ValueError):
        hex_to_rgb("#123")


def test_fit_within_keeps_aspect_ratio():
    assert fit_within(800, 600, 1000) == (800, 600)
    assert fit_within(4000, 3000, 1000) == (1000, 750)
    assert fit_within(3000, 4000, 1000) == (750, 1000)
    assert fit_within(5000, 1, 1000) == (1000, 1)


def test_to_original_space_stays_in_bounds():
    assert to_original_space(3, 4, (10, 10), (10, 10)) == (3, 4)
    assert to_original_space(0, 0, (1000, 750), (4000, 3000)) == (2, 2)
    assert to_original_space(999, 749, (1000, 750), (4000, 3000)) == (3998, 2998)

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Iterable

from .colors import normalize_hex, parse_hex
from .models import ConfidenceTier, ReferenceEntry

logger = logging.getLogger(__name__)

_FIELD_ALIASES = {
    "test_id": ("test_id", "test"),
    "display_color": ("display_color", "color_result", "color_name", "name"),
    "reference_hex": ("reference_hex", "color_hex", "hex"),
    "substance_label": ("substance_label", "possible_substance", "substance"),
    "confidence": ("confidence_tier", "confidence_level", "confidence"),
    "entry_id": ("id", "entry_id"),
}


class PaletteValidationError(ValueError):
    pass


def load_palette(
    palette_path: str | Path | None,
    fallback_palette_path: str | Path,
    test_id: str | None = None,
) -> tuple[list[ReferenceEntry], str]:
    if palette_path is None:
        entries = _load_palette_file(fallback_palette_path)
        source = "bundled_fallback"
    else:
        entries = _load_palette_file(palette_path)
        source = "catalog_user"

    if test_id:
        entries = filter_by_test(entries, test_id)
        if not entries:
            logger.warning("palette has no entries for test %r", test_id)
    return entries, source


def filter_by_test(
    entries: Iterable[ReferenceEntry], test_id: str
) -> list[ReferenceEntry]:
    return [entry for entry in entries if entry.test_id == test_id]


def _load_palette_file(path_like: str | Path) -> list[ReferenceEntry]:
    path = Path(path_like)
    if not path.exists():
        raise PaletteValidationError(f"palette file does not exist: {path}")

    if path.suffix.lower() == ".csv":
        entries = _load_csv(path)
    elif path.suffix.lower() == ".json":
        entries = _load_json(path)
    else:
        raise PaletteValidationError(
            f"unsupported palette format '{path.suffix}'. Use .csv or .json"
        )

    if not entries:
        raise PaletteValidationError(f"palette has no usable entries: {path}")
    logger.debug("loaded %d reference entries from %s", len(entries), path)
    return entries


def _load_csv(path: Path) -> list[ReferenceEntry]:
    with path.open("r", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise PaletteValidationError(f"palette csv has no header: {path}")

        entries: list[ReferenceEntry] = []
        for idx, row in enumerate(reader, start=2):
            entries.append(_parse_entry(row, f"{path}:{idx}"))
        return entries


def _load_json(path: Path) -> list[ReferenceEntry]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PaletteValidationError(f"palette json at {path} is invalid") from exc

    if isinstance(payload, dict):
        records = payload.get("colors", payload.get("color_results"))
        if not isinstance(records, list):
            raise PaletteValidationError(
                f"json palette at {path} must be a list or include a 'colors' list"
            )
    elif isinstance(payload, list):
        records = payload
    else:
        raise PaletteValidationError(
            f"json palette at {path} must be a list or object with 'colors'"
        )

    entries: list[ReferenceEntry] = []
    for idx, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            raise PaletteValidationError(
                f"invalid palette entry at {path}:{idx} (expected object)"
            )
        entries.append(_parse_entry(record, f"{path}:{idx}"))
    return entries


def _parse_entry(raw_entry: dict[str, object], location: str) -> ReferenceEntry:
    normalized: dict[str, object] = {
        str(key).strip().lower(): value
        for key, value in raw_entry.items()
        if key is not None
    }

    test_id = _lookup(normalized, "test_id")
    if not test_id:
        raise PaletteValidationError(f"{location}: missing required field 'test_id'")

    hex_value = _lookup(normalized, "reference_hex")
    if not hex_value:
        raise PaletteValidationError(f"{location}: missing required field 'color_hex'")
    if parse_hex(hex_value) is None:
        raise PaletteValidationError(
            f"{location}: invalid hex color '{hex_value}' (expected #RRGGBB)"
        )

    substance = _lookup(normalized, "substance_label")
    if not substance:
        raise PaletteValidationError(
            f"{location}: missing required field 'possible_substance'"
        )

    return ReferenceEntry(
        test_id=test_id,
        display_color=_lookup(normalized, "display_color") or normalize_hex(hex_value),
        reference_hex=normalize_hex(hex_value),
        substance_label=substance,
        confidence_tier=_parse_tier(_lookup(normalized, "confidence"), location),
        entry_id=_lookup(normalized, "entry_id"),
    )


def _lookup(normalized: dict[str, object], field: str) -> str | None:
    for alias in _FIELD_ALIASES[field]:
        value = _as_clean_str(normalized.get(alias))
        if value:
            return value
    return None


def _parse_tier(value: str | None, location: str) -> ConfidenceTier:
    if value is None:
        return ConfidenceTier.MEDIUM

    key = value.lower().replace(" ", "_").replace("-", "_")
    try:
        return ConfidenceTier(key)
    except ValueError:
        pass

    try:
        score = float(value)
    except ValueError as exc:
        raise PaletteValidationError(
            f"{location}: invalid confidence level '{value}'"
        ) from exc
    return ConfidenceTier.from_score(score)


def _as_clean_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None

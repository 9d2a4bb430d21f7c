from __future__ import annotations

import base64
import binascii

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, model_validator
from starlette.concurrency import run_in_threadpool

from spottest.src.reagent_colors.colors import parse_hex
from spottest.src.reagent_colors.config import EngineSettings
from spottest.src.reagent_colors.errors import AnalysisError, AnalysisTimeoutError
from spottest.src.reagent_colors.io import read_image_bytes
from spottest.src.reagent_colors.matching import resolve_choice
from spottest.src.reagent_colors.models import ColorChoice, ColorSource
from spottest.src.reagent_colors.palette import PaletteValidationError, load_palette
from spottest.src.reagent_colors.pipeline import SpotTestPipeline


class AnalyzeRequest(BaseModel):
    image_url: str | None = Field(default=None, description="HTTP(S) image URL")
    image_base64: str | None = Field(
        default=None, description="Base64 encoded image bytes"
    )
    mime_type: str | None = Field(
        default=None, description="MIME type of the base64 payload, e.g. image/png"
    )
    test_id: str | None = Field(
        default=None, description="Restrict matching to one reagent test"
    )
    palette_path: str | None = Field(
        default=None,
        description="Optional local path to a reference palette (.csv/.json)",
    )

    @model_validator(mode="after")
    def _one_image_source(self) -> "AnalyzeRequest":
        if bool(self.image_url) == bool(self.image_base64):
            raise ValueError("provide exactly one of image_url or image_base64")
        return self


class MatchRequest(BaseModel):
    hex: str = Field(..., description="Color to match, #RRGGBB")
    test_id: str | None = None
    palette_path: str | None = None
    max_distance: float | None = Field(default=None, ge=0)


class MatchItem(BaseModel):
    hex: str
    confidence: int
    confidence_label: str
    source: str
    accepted: bool
    distance: float | None
    substance: str
    display_color: str
    position: dict[str, int] | None = None


class AnalyzeResponse(BaseModel):
    colors: list[MatchItem]
    palette_source: str
    warnings: list[str]
    image_size: dict[str, int]


app = FastAPI(
    title="Spot Test Color API",
    version="1.0.0",
    description="Extract dominant colors from reagent test photos and match them against a reference palette.",
)


def _build_pipeline() -> SpotTestPipeline:
    return SpotTestPipeline(settings=EngineSettings.from_env())


def _match_item(payload: dict) -> MatchItem:
    return MatchItem(
        hex=payload["hex"],
        confidence=payload["confidence"],
        confidence_label=payload["confidence_label"],
        source=payload["source"],
        accepted=payload["accepted"],
        distance=payload["distance"],
        substance=payload["substance"],
        display_color=payload["display_color"],
        position=payload["position"],
    )


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze_image(payload: AnalyzeRequest) -> AnalyzeResponse:
    pipeline = _build_pipeline()
    if payload.image_base64:
        try:
            image_bytes = base64.b64decode(payload.image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail="invalid_base64_image") from exc
        mime_type = payload.mime_type
    else:
        try:
            image_bytes, mime_type = await run_in_threadpool(
                read_image_bytes, payload.image_url
            )
        except Exception as exc:
            raise HTTPException(
                status_code=400, detail=f"failed_to_fetch_image: {exc}"
            ) from exc

    try:
        report = await pipeline.analyze(
            image_bytes,
            mime_type,
            palette_path=payload.palette_path,
            test_id=payload.test_id,
        )
    except AnalysisTimeoutError as exc:
        raise HTTPException(status_code=504, detail=f"analysis_timeout: {exc}") from exc
    except (AnalysisError, PaletteValidationError) as exc:
        raise HTTPException(
            status_code=400, detail=f"failed_to_analyze_image: {exc}"
        ) from exc

    result = report.to_dict()
    return AnalyzeResponse(
        colors=[_match_item(color) for color in result["colors"]],
        palette_source=result["palette_source"],
        warnings=result["warnings"],
        image_size=result["image_size"],
    )


@app.post("/match", response_model=MatchItem)
async def match_color(payload: MatchRequest) -> MatchItem:
    rgb = parse_hex(payload.hex)
    if rgb is None:
        raise HTTPException(status_code=400, detail=f"invalid_hex_color: {payload.hex}")

    pipeline = _build_pipeline()
    try:
        palette, _ = await run_in_threadpool(
            load_palette,
            palette_path=payload.palette_path,
            fallback_palette_path=pipeline.fallback_palette_path,
            test_id=payload.test_id,
        )
    except PaletteValidationError as exc:
        raise HTTPException(status_code=400, detail=f"invalid_palette: {exc}") from exc

    max_distance = (
        pipeline.settings.max_distance
        if payload.max_distance is None
        else payload.max_distance
    )
    choice = ColorChoice(
        rgb=rgb,
        confidence=pipeline.settings.manual_pick_confidence,
        source=ColorSource.MANUAL_PICK,
    )
    resolved = resolve_choice(
        choice, palette, max_distance=max_distance, test_id=payload.test_id
    )
    return _match_item(resolved.to_dict())

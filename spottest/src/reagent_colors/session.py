"""Per-image analysis lifecycle: validation, decode, extraction, selection.

An :class:`AnalysisSession` is owned by whoever hosts the UI. It moves through
``idle -> loading -> processing -> ready | failed | timed_out`` and back to
``idle`` on :meth:`AnalysisSession.reset`. Decode and extraction run on worker
threads so the event loop stays responsive; a wall-clock budget covers both.

Every analysis gets a generation number and its own cancellation token.
Results that arrive after the session has moved on (reset, timeout or a newer
image) are dropped, and the token stops the extractor at its next chunk.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Protocol, Sequence

import numpy as np

from .cancel import CancellationToken
from .config import EngineSettings
from .errors import (
    AnalysisError,
    AnalysisTimeoutError,
    DecodeError,
    ExtractionCancelled,
    ExtractionError,
    SelectionError,
    SessionStateError,
    ValidationError,
)
from .extract import extract_dominant_colors
from .io import DecodedImage, decode_image, validate_upload
from .matching import resolve_choice
from .models import ColorChoice, DetectedColor, PixelSample, ReferenceEntry, ResolvedColor

logger = logging.getLogger(__name__)

LOADING_MESSAGE = "Loading image..."
PROCESSING_MESSAGE = "Processing image..."
EXTRACTING_MESSAGE = "Extracting colors..."


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Extractor(Protocol):
    def __call__(
        self,
        pixel_buffer: np.ndarray,
        width: int,
        height: int,
        settings: EngineSettings | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[DetectedColor]:
        ...


Observer = Callable[[SessionStatus, str], None]


class AnalysisSession:
    def __init__(
        self,
        palette: Sequence[ReferenceEntry] = (),
        settings: EngineSettings | None = None,
        extractor: Extractor | None = None,
        test_id: str | None = None,
    ) -> None:
        self.palette: list[ReferenceEntry] = list(palette)
        self.settings = settings or EngineSettings()
        self.test_id = test_id
        self._extractor: Extractor = extractor or extract_dominant_colors
        self._observers: list[Observer] = []

        self._generation = 0
        self._cancel_token: CancellationToken | None = None
        self._source_bytes: bytes | None = None
        self._image: DecodedImage | None = None

        self.status = SessionStatus.IDLE
        self.progress = ""
        self.error: AnalysisError | None = None
        self.detected_colors: list[DetectedColor] = []
        self.selected_color: ColorChoice | None = None
        self.started_at: float | None = None
        self.finished_at: float | None = None

    @property
    def image(self) -> DecodedImage | None:
        return self._image

    @property
    def image_size(self) -> tuple[int, int] | None:
        if self._image is None:
            return None
        return self._image.width, self._image.height

    @property
    def elapsed(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register ``callback(status, message)``; returns an unsubscribe function."""
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    async def analyze_image(self, data: bytes, mime_hint: str | None = None) -> None:
        """Start a fresh analysis of ``data``.

        Returns once the session reaches a terminal state; the outcome is read
        from :attr:`status`, :attr:`detected_colors` and :attr:`error`.
        """
        self.reset()
        generation = self._generation
        token = CancellationToken()
        self._cancel_token = token

        try:
            validate_upload(data, mime_hint, max_bytes=self.settings.max_upload_bytes)
        except ValidationError as exc:
            logger.info("rejected upload: %s", exc)
            self._fail(exc)
            return

        self._source_bytes = data
        self.started_at = time.monotonic()
        self._transition(SessionStatus.LOADING, LOADING_MESSAGE)

        try:
            await asyncio.wait_for(
                self._decode_and_extract(data, generation, token),
                timeout=self.settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            token.cancel()
            if not self._is_current(generation):
                return
            logger.warning(
                "image analysis timed out after %.1f seconds",
                self.settings.timeout_seconds,
            )
            self._fail(
                AnalysisTimeoutError(
                    "image analysis timed out, please try a smaller image "
                    "or use manual color selection"
                ),
                status=SessionStatus.TIMED_OUT,
            )

    async def _decode_and_extract(
        self, data: bytes, generation: int, token: CancellationToken
    ) -> None:
        try:
            image = await asyncio.to_thread(decode_image, data)
        except DecodeError as exc:
            if self._is_current(generation):
                self._fail(exc)
            return
        except MemoryError as exc:
            if self._is_current(generation):
                self._fail(DecodeError("not enough memory to decode the image"))
                logger.error("image decode failed: %r", exc)
            return

        if not self._is_current(generation):
            return
        self._image = image
        self._transition(SessionStatus.PROCESSING, PROCESSING_MESSAGE)
        self._notify(EXTRACTING_MESSAGE)

        try:
            colors = await asyncio.to_thread(
                self._extractor,
                image.pixels,
                image.width,
                image.height,
                settings=self.settings,
                cancel_token=token,
            )
        except ExtractionCancelled:
            if self._is_current(generation):
                self._fail(ExtractionError("color extraction was interrupted"))
            return
        except ExtractionError as exc:
            if self._is_current(generation):
                self._fail(exc)
            return
        except MemoryError as exc:
            if self._is_current(generation):
                self._fail(
                    ExtractionError("not enough memory to read the image pixels")
                )
                logger.error("pixel readback failed: %r", exc)
            return

        if not self._is_current(generation):
            logger.debug("discarding stale extraction result (generation %d)", generation)
            return

        self.detected_colors = list(colors)
        if self.detected_colors:
            self.selected_color = ColorChoice.from_detected(self.detected_colors[0])
        self.finished_at = time.monotonic()
        self._transition(SessionStatus.READY, "")
        logger.info(
            "extracted %d colors in %.3f seconds",
            len(self.detected_colors),
            self.elapsed or 0.0,
        )

    def select_detected_color(self, index: int) -> ColorChoice:
        self._require_ready("select a detected color")
        if not 0 <= index < len(self.detected_colors):
            raise SelectionError(
                f"color index {index} out of range (0..{len(self.detected_colors) - 1})"
            )
        self.selected_color = ColorChoice.from_detected(self.detected_colors[index])
        return self.selected_color

    def select_pixel_at(self, x: float, y: float) -> ColorChoice:
        """Select the exact color of the pixel at ``(x, y)`` in image coordinates.

        Fractional coordinates address the pixel they fall inside.
        """
        self._require_ready("pick a pixel")
        image = self._image
        if image is None:
            raise SessionStateError("no decoded image is available")
        x, y = int(math.floor(x)), int(math.floor(y))
        if not (0 <= x < image.width and 0 <= y < image.height):
            raise SelectionError(
                f"pixel ({x}, {y}) is outside the image bounds "
                f"{image.width}x{image.height}"
            )

        r, g, b, a = (int(v) for v in image.pixels[y, x])
        self.selected_color = ColorChoice.from_pixel(
            PixelSample(r=r, g=g, b=b, a=a),
            x,
            y,
            confidence=self.settings.manual_pick_confidence,
        )
        return self.selected_color

    def confirm_selection(self) -> ResolvedColor:
        """Match the current selection against the palette and end the session."""
        if self.selected_color is None:
            raise SessionStateError("no color has been selected")

        resolved = resolve_choice(
            self.selected_color,
            self.palette,
            max_distance=self.settings.max_distance,
            test_id=self.test_id,
        )
        logger.info(
            "confirmed %s (%s, accepted=%s)",
            resolved.hex,
            resolved.entry.substance_label,
            resolved.accepted,
        )
        self.reset()
        return resolved

    def reset(self) -> None:
        self._generation += 1
        if self._cancel_token is not None:
            self._cancel_token.cancel()
            self._cancel_token = None

        self._source_bytes = None
        self._image = None
        self.detected_colors = []
        self.selected_color = None
        self.error = None
        self.started_at = None
        self.finished_at = None
        if self.status is not SessionStatus.IDLE or self.progress:
            self._transition(SessionStatus.IDLE, "")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _require_ready(self, action: str) -> None:
        if self.status is not SessionStatus.READY:
            raise SessionStateError(
                f"cannot {action} while the session is {self.status.value}"
            )

    def _fail(
        self, error: AnalysisError, status: SessionStatus = SessionStatus.FAILED
    ) -> None:
        self.error = error
        self.finished_at = time.monotonic()
        # The pixel buffer is only useful in the ready state.
        self._image = None
        self._source_bytes = None
        self._transition(status, str(error))

    def _transition(self, status: SessionStatus, message: str) -> None:
        logger.debug("session %s -> %s", self.status.value, status.value)
        self.status = status
        self._notify(message)

    def _notify(self, message: str) -> None:
        self.progress = message
        for callback in list(self._observers):
            callback(self.status, message)
